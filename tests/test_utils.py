import logging
import re
from dataclasses import dataclass

import pytest

from treehole.utils import (
    ERR_CODE_NOT_ANSWERED_QUESTIONS,
    BadRequest,
    Forbidden,
    HttpError,
    InternalServerError,
    NotFound,
    Role,
    difference,
    ids_of,
    intersect,
    ints_from_matches,
    log_action,
    order_in_given_order,
    request_log,
    require_answered_questions,
    strip_content,
)

TEXT = (
    "愿中国青年都摆脱冷气，只是向上走，不必听自暴自弃者流的话。能做事的做事，能发声的发声。"
    "有一分热，发一分光。就令萤火一般，也可以在黑暗里发一点光，不必等候炬火。"
)


@dataclass
class Item:
    id: int


def test_strip_content_cuts_characters():
    assert strip_content(TEXT, 10) == "愿中国青年都摆脱冷气"


def test_strip_content_keeps_short_text():
    assert strip_content(TEXT, 100) == TEXT


def test_ints_from_matches():
    matches = re.finditer(r"##(\d+)", "a ##12 b ##7")
    assert ints_from_matches(matches) == [12, 7]


def test_ints_from_matches_rejects_non_numbers():
    with pytest.raises(ValueError):
        ints_from_matches([("x", "abc")])


def test_intersect_keeps_order_of_first():
    assert intersect([3, 1, 2], [2, 3]) == [3, 2]


def test_difference():
    assert difference([1, 2, 3, 4], [2, 4]) == [1, 3]
    assert difference([1], [1]) == []


def test_order_in_given_order_skips_missing():
    models = [Item(1), Item(3), Item(5), Item(8)]
    result = order_in_given_order(models, [8, 2, 1, 5])
    assert ids_of(result) == [8, 1, 5]


def test_ids_of():
    assert ids_of([Item(4), Item(2)]) == [4, 2]


def test_http_error_codes():
    assert BadRequest("x").code == 400
    assert Forbidden("x").code == 403
    assert NotFound("x").code == 404
    assert InternalServerError("x").code == 500
    assert str(Forbidden("nope")) == "nope"


def test_require_answered_questions_raises():
    with pytest.raises(HttpError) as info:
        require_answered_questions({"has_answered_questions": False}, "production")
    assert info.value.code == ERR_CODE_NOT_ANSWERED_QUESTIONS


def test_require_answered_questions_allows():
    assert require_answered_questions({"has_answered_questions": True}, "production") is True
    assert require_answered_questions({}, "test") is True


def test_log_action_records_fields(caplog):
    caplog.set_level(logging.INFO, logger="treehole")
    log_action("Hole", "create", 5, 7, Role.ADMIN, "made ", "hole")
    record = caplog.records[-1]
    assert record.getMessage() == "made hole"
    assert record.role == "admin"
    assert record.object_id == 5
    assert record.user_id == 7


def test_request_log_records_fields(caplog):
    caplog.set_level(logging.INFO, logger="treehole")
    request_log("checked", "Floor", 42, True)
    record = caplog.records[-1]
    assert record.getMessage() == "checked"
    assert record.type_name == "Floor"
    assert record.request_id == 42
    assert record.check_answer is True
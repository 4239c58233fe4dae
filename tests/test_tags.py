import pytest

from treehole.cache import Cache
from treehole.db import Database
from treehole.tags import (
    TAG_CACHE_KEY,
    Tag,
    find_or_create_tags,
    preprocess_tags,
    update_tag_cache,
)
from treehole.textcheck import CheckType
from treehole.users import User
from treehole.utils import BadRequest, Forbidden


@pytest.fixture
def db():
    database = Database(":memory:")
    yield database
    database.close()


@pytest.fixture
def admin():
    return User(id=1, is_admin=True)


@pytest.fixture
def member():
    return User(id=2, is_admin=False)


def test_creates_new_tags_with_ids(db, admin):
    tags = find_or_create_tags(db, admin, [" physics ", "math"])
    assert [tag.name for tag in tags] == ["physics", "math"]
    assert all(tag.id > 0 for tag in tags)
    assert len({tag.id for tag in tags}) == 2


def test_existing_tags_are_reused_case_insensitively(db, admin):
    first = find_or_create_tags(db, admin, ["Physics"])
    again = find_or_create_tags(db, admin, ["physics"])
    assert [tag.id for tag in again] == [first[0].id]
    assert again[0].name == "Physics"


def test_star_prefix_makes_nsfw(db, admin):
    tags = find_or_create_tags(db, admin, ["*night", "day"])
    by_name = {tag.name: tag for tag in tags}
    assert by_name["*night"].nsfw is True
    assert by_name["day"].nsfw is False


@pytest.mark.parametrize("name", ["#news", "@helper", "*secret"])
def test_member_cannot_create_prefixed_tags(db, member, name):
    with pytest.raises(BadRequest):
        find_or_create_tags(db, member, [name])


def test_member_cannot_create_long_tag(db, member):
    with pytest.raises(BadRequest) as info:
        find_or_create_tags(db, member, ["一二三四五六七八九十十"])
    assert info.value.code == 400


def test_member_may_reuse_prefixed_tag_made_by_admin(db, admin, member):
    created = find_or_create_tags(db, admin, ["#news"])
    reused = find_or_create_tags(db, member, ["#news"])
    assert [tag.id for tag in reused] == [created[0].id]


def test_admin_only_tags_are_forbidden_for_members(db, admin, member):
    created = find_or_create_tags(db, admin, ["announce"])
    with pytest.raises(Forbidden):
        find_or_create_tags(db, member, ["announce"], admin_only_tag_ids=[created[0].id])
    allowed = find_or_create_tags(db, admin, ["announce"], admin_only_tag_ids=[created[0].id])
    assert allowed[0].id == created[0].id


def test_checker_marks_sensitive_tags(db, admin):
    calls = []

    def checker(content, kind):
        calls.append(kind)
        return content != "bad"

    tags = find_or_create_tags(db, admin, ["good", "bad"], checker=checker)
    by_name = {tag.name: tag for tag in tags}
    assert by_name["bad"].sensitive() is True
    assert by_name["good"].sensitive() is False
    assert calls == [CheckType.TAG, CheckType.TAG]


def test_sensitive_prefers_manual_review():
    assert Tag(name="x", is_sensitive=True, is_actual_sensitive=False).sensitive() is False
    assert Tag(name="x", is_sensitive=False, is_actual_sensitive=True).sensitive() is True
    assert Tag(name="x", is_sensitive=True).sensitive() is True


def test_preprocess_blanks_sensitive_names():
    tags = preprocess_tags([Tag(name="ok"), Tag(name="no", is_sensitive=True)])
    assert [tag.name for tag in tags] == ["ok", ""]


def test_to_dict_repeats_id_as_tag_id():
    data = Tag(name="math", id=7, temperature=3).to_dict()
    assert data["tag_id"] == data["id"] == 7
    assert data["name"] == "math"


def test_update_tag_cache_orders_by_temperature(db, admin):
    find_or_create_tags(db, admin, ["cold", "hot", "warm"])
    with db.transaction() as conn:
        conn.execute("UPDATE tag SET temperature = 10 WHERE name = 'hot'")
        conn.execute("UPDATE tag SET temperature = 5 WHERE name = 'warm'")
    cache = Cache()
    tags = update_tag_cache(db, cache)
    assert [tag.name for tag in tags] == ["hot", "warm", "cold"]
    assert [item["name"] for item in cache.get(TAG_CACHE_KEY)] == ["hot", "warm", "cold"]
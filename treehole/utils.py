"""Shared helpers: HTTP errors, list utilities, model ordering and logging."""

from __future__ import annotations

import logging
from bisect import bisect_left
from collections.abc import Iterable, Mapping, Sequence
from enum import Enum
from typing import Any, TypeVar

logger = logging.getLogger("treehole")

T = TypeVar("T")

ERR_CODE_NOT_ANSWERED_QUESTIONS = 403001


class HttpError(Exception):
    """An error that carries an HTTP-style status code."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class BadRequest(HttpError):
    def __init__(self, message: str = "Bad Request") -> None:
        super().__init__(400, message)


class Forbidden(HttpError):
    def __init__(self, message: str = "Forbidden") -> None:
        super().__init__(403, message)


class NotFound(HttpError):
    def __init__(self, message: str = "Not Found") -> None:
        super().__init__(404, message)


class InternalServerError(HttpError):
    def __init__(self, message: str = "Internal Server Error") -> None:
        super().__init__(500, message)


class Role(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    OPERATOR = "operator"


def strip_content(content: str, max_size: int) -> str:
    """Cut ``content`` to at most ``max_size`` characters."""
    return content[:max_size]


def ints_from_matches(matches: Iterable[Sequence[str]]) -> list[int]:
    """Convert the first capture group of each regex match to an int."""
    return [int(match[1]) for match in matches]


def intersect(x: Iterable[T], y: Iterable[T]) -> list[T]:
    """Elements of ``x`` that also occur in ``y``, in the order of ``x``."""
    others = list(y)
    return [item for item in x if item in others]


def difference(a: Iterable[T], b: Iterable[T]) -> list[T]:
    """Elements of ``a`` that are not in ``b``, in the order of ``a``."""
    excluded = set(b)
    return [item for item in a if item not in excluded]


def order_in_given_order(models: Sequence[Any], order: Iterable[int]) -> list[Any]:
    """Pick models (sorted by ``id``) in the order of the given ids.

    Ids that have no model are skipped.
    """
    result = []
    for target in order:
        index = bisect_left(models, target, key=lambda model: model.id)
        if index < len(models) and models[index].id == target:
            result.append(models[index])
    return result


def ids_of(models: Iterable[Any]) -> list[int]:
    return [model.id for model in models]


def require_answered_questions(claims: Mapping[str, Any], mode: str) -> bool:
    """Return True if the user may proceed; raise HttpError otherwise."""
    if mode in ("test", "bench"):
        return True
    if not claims.get("has_answered_questions"):
        raise HttpError(ERR_CODE_NOT_ANSWERED_QUESTIONS, "请先通过注册答题")
    return True


def log_action(
    model: str,
    action: str,
    object_id: int,
    user_id: int,
    role: Role | str,
    *args: str,
) -> None:
    """Log an action performed on a model object."""
    role_name = role.value if isinstance(role, Role) else str(role)
    logger.info(
        "".join(args),
        extra={
            "model": model,
            "user_id": user_id,
            "object_id": object_id,
            "action": action,
            "role": role_name,
        },
    )


def request_log(msg: str, type_name: str, request_id: int, answer: bool) -> None:
    """Log an outgoing request to an external service."""
    logger.info(
        msg,
        extra={"type_name": type_name, "request_id": request_id, "check_answer": answer},
    )
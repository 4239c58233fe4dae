"""Hole tags: lookup, creation with checks, caching and preprocessing."""

from __future__ import annotations

import sqlite3
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from .cache import Cache
from .db import Database
from .textcheck import CheckType
from .utils import BadRequest, Forbidden

TAG_CACHE_KEY = "tags"
TAG_CACHE_EXPIRATION = timedelta(minutes=10)

_ADMIN_PREFIXES = ("#", "@", "*")

Checker = Callable[[str, CheckType], bool]


@dataclass
class Tag:
    name: str
    id: int = 0
    temperature: int = 0
    is_zzmg: bool = False
    is_sensitive: bool = False
    is_actual_sensitive: bool | None = None
    nsfw: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def sensitive(self) -> bool:
        """Manual review wins over the automatic check."""
        if self.is_actual_sensitive is not None:
            return self.is_actual_sensitive
        return self.is_sensitive

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "temperature": self.temperature,
            "tag_id": self.id,
            "nsfw": self.nsfw,
        }


def _from_row(row: sqlite3.Row) -> Tag:
    actual = row["is_actual_sensitive"]
    return Tag(
        id=row["id"],
        name=row["name"],
        temperature=row["temperature"],
        is_zzmg=bool(row["is_zzmg"]),
        is_sensitive=bool(row["is_sensitive"]),
        is_actual_sensitive=None if actual is None else bool(actual),
        nsfw=bool(row["nsfw"]),
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


def _validate_new_tag(name: str) -> None:
    if len(name.encode("utf-8")) > 15 and len(name) > 10:
        raise BadRequest("标签长度不能超过 10 个字符")
    for prefix in _ADMIN_PREFIXES:
        if name.startswith(prefix):
            raise BadRequest(f"只有管理员才能创建 {prefix} 开头的 tag")


def find_or_create_tags(
    db: Database,
    user: Any,
    names: Iterable[str],
    admin_only_tag_ids: Iterable[int] = (),
    checker: Checker | None = None,
) -> list[Tag]:
    """Return the tags with ``names``, creating the missing ones.

    Existing tags are matched case-insensitively. Non-admin users may not use
    admin-only tags nor create long or prefixed tags. ``checker`` tells whether
    a new tag name passes the sensitive check; without it every name passes.
    """
    names = [name.strip() for name in names]
    admin_only = set(admin_only_tag_ids)

    tags: list[Tag] = []
    if names:
        placeholders = ", ".join("?" * len(names))
        with db.transaction() as conn:
            rows = conn.execute(
                f"SELECT * FROM tag WHERE name COLLATE NOCASE IN ({placeholders}) ORDER BY id",
                names,
            ).fetchall()
        tags = [_from_row(row) for row in rows]

    if not user.is_admin:
        for tag in tags:
            if tag.id in admin_only:
                raise Forbidden(f"标签 {tag.name} 为管理员专用标签")

    seen = {tag.name.casefold() for tag in tags}
    new_tags: list[Tag] = []
    for name in names:
        key = name.casefold()
        if key in seen:
            continue
        seen.add(key)
        new_tags.append(Tag(name=name))

    if not new_tags:
        return tags

    if not user.is_admin:
        for tag in new_tags:
            _validate_new_tag(tag.name)

    for tag in new_tags:
        if checker is not None:
            tag.is_sensitive = not checker(tag.name, CheckType.TAG)
        tag.nsfw = tag.name.startswith("*")

    moment = datetime.now(timezone.utc)
    stamp = moment.isoformat(timespec="microseconds")
    with db.transaction() as conn:
        for tag in new_tags:
            cursor = conn.execute(
                "INSERT INTO tag (created_at, updated_at, name, temperature, is_zzmg,"
                " is_sensitive, is_actual_sensitive, nsfw)"
                " VALUES (?, ?, ?, 0, 0, ?, NULL, ?) ON CONFLICT DO NOTHING",
                (stamp, stamp, tag.name, int(tag.is_sensitive), int(tag.nsfw)),
            )
            if cursor.rowcount:
                tag.id = cursor.lastrowid
                tag.created_at = moment
                tag.updated_at = moment
            else:
                row = conn.execute("SELECT * FROM tag WHERE name = ?", (tag.name,)).fetchone()
                if row is not None:
                    stored = _from_row(row)
                    tag.__dict__.update(stored.__dict__)

    return tags + new_tags


def update_tag_cache(db: Database, cache: Cache) -> list[Tag]:
    """Cache all tags, hottest first, and return them."""
    with db.transaction() as conn:
        rows = conn.execute("SELECT * FROM tag ORDER BY temperature DESC, id").fetchall()
    tags = [_from_row(row) for row in rows]
    cache.set(TAG_CACHE_KEY, [tag.to_dict() for tag in tags], TAG_CACHE_EXPIRATION)
    return tags


def preprocess_tags(tags: Iterable[Tag]) -> list[Tag]:
    """Blank the names of sensitive tags before they are shown."""
    result = list(tags)
    for tag in result:
        if tag.sensitive():
            tag.name = ""
    return result
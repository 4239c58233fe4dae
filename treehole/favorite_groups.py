"""Per-user favorite groups (folders of favorite holes)."""

from __future__ import annotations

import re
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone

from .db import Database
from .utils import BadRequest, Forbidden, NotFound

MAX_GROUP_PER_USER = 10
DEFAULT_GROUP_NAME = "默认收藏夹"

_ORDER_RE = re.compile(r"^\s*(\w+)(?:\s+(asc|desc))?\s*$", re.IGNORECASE)
_ORDER_COLUMNS = {
    "favorite_group_id": "favorite_group_id",
    "user_id": "user_id",
    "name": "name",
    "created_at": "created_at",
    "updated_at": "updated_at",
    "time_created": "created_at",
    "time_updated": "updated_at",
    "count": "count",
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


@dataclass
class FavoriteGroup:
    favorite_group_id: int
    user_id: int
    name: str = "默认"
    created_at: datetime | None = None
    updated_at: datetime | None = None
    deleted: bool = False
    count: int = 0


def _from_row(row: sqlite3.Row) -> FavoriteGroup:
    return FavoriteGroup(
        favorite_group_id=row["favorite_group_id"],
        user_id=row["user_id"],
        name=row["name"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
        deleted=bool(row["deleted"]),
        count=row["count"],
    )


def _order_clause(order: str) -> str:
    match = _ORDER_RE.match(order)
    if not match or match.group(1).lower() not in _ORDER_COLUMNS:
        raise BadRequest(f"invalid order: {order}")
    column = _ORDER_COLUMNS[match.group(1).lower()]
    direction = (match.group(2) or "asc").upper()
    return f" ORDER BY {column} {direction}"


def ensure_default_favorite_group(db: Database, user_id: int) -> None:
    """Create the user's default group (id 0) if it does not exist yet."""
    with db.transaction() as conn:
        exists = conn.execute(
            "SELECT 1 FROM favorite_groups WHERE user_id = ? AND favorite_group_id = 0",
            (user_id,),
        ).fetchone()
        if exists:
            return
        moment = _now()
        conn.execute(
            "INSERT INTO favorite_groups (favorite_group_id, user_id, name, created_at, updated_at)"
            " VALUES (0, ?, ?, ?, ?)",
            (user_id, DEFAULT_GROUP_NAME, moment, moment),
        )
        conn.execute(
            'UPDATE "user" SET favorite_group_count = favorite_group_count + 1 WHERE id = ?',
            (user_id,),
        )


def get_favorite_groups(
    db: Database, user_id: int, order: str | None = None
) -> list[FavoriteGroup]:
    """List the user's live groups, creating the default group first."""
    with db.transaction() as conn:
        ensure_default_favorite_group(db, user_id)
        sql = "SELECT * FROM favorite_groups WHERE user_id = ? AND deleted = 0"
        if order is not None:
            sql += _order_clause(order)
        rows = conn.execute(sql, (user_id,)).fetchall()
    return [_from_row(row) for row in rows]


def delete_favorite_group(db: Database, user_id: int, group_id: int) -> None:
    """Mark an empty, non-default group deleted."""
    if group_id == 0:
        raise Forbidden("默认收藏夹不可删除")
    with db.transaction() as conn:
        has_content = conn.execute(
            "SELECT 1 FROM user_favorites WHERE user_id = ? AND favorite_group_id = ? LIMIT 1",
            (user_id, group_id),
        ).fetchone()
        if has_content:
            raise Forbidden("收藏夹中存在收藏内容，请先移除")
        cursor = conn.execute(
            "UPDATE favorite_groups SET deleted = 1, updated_at = ?"
            " WHERE user_id = ? AND favorite_group_id = ?",
            (_now(), user_id, group_id),
        )
        if cursor.rowcount == 0:
            raise NotFound("收藏夹不存在")
        conn.execute(
            "DELETE FROM user_favorites WHERE user_id = ? AND favorite_group_id = ?",
            (user_id, group_id),
        )
        conn.execute(
            'UPDATE "user" SET favorite_group_count = favorite_group_count - 1 WHERE id = ?',
            (user_id,),
        )


def add_favorite_group(db: Database, user_id: int, name: str) -> int:
    """Create a group and return its id; deleted ids are reused at the limit."""
    with db.transaction() as conn:
        group_id = (
            conn.execute(
                "SELECT IFNULL(MAX(favorite_group_id), 0) FROM favorite_groups"
                " WHERE user_id = ? AND deleted = 0",
                (user_id,),
            ).fetchone()[0]
            + 1
        )
        if group_id >= MAX_GROUP_PER_USER:
            row = conn.execute(
                "SELECT favorite_group_id FROM favorite_groups"
                " WHERE user_id = ? AND deleted = 1 ORDER BY favorite_group_id LIMIT 1",
                (user_id,),
            ).fetchone()
            if row is None:
                raise Forbidden("收藏夹数量已达上限")
            group_id = row[0]
        moment = _now()
        conn.execute(
            "INSERT INTO favorite_groups"
            " (favorite_group_id, user_id, name, created_at, updated_at, deleted, count)"
            " VALUES (?, ?, ?, ?, ?, 0, 0)"
            " ON CONFLICT (user_id, favorite_group_id) DO UPDATE SET"
            " name = excluded.name, created_at = excluded.created_at,"
            " updated_at = excluded.updated_at, deleted = 0, count = 0",
            (group_id, user_id, name, moment, moment),
        )
        conn.execute(
            'UPDATE "user" SET favorite_group_count = favorite_group_count + 1 WHERE id = ?',
            (user_id,),
        )
    return group_id


def modify_favorite_group(db: Database, user_id: int, group_id: int, name: str) -> None:
    """Rename a group; an empty name only touches the update time."""
    with db.transaction() as conn:
        if name:
            conn.execute(
                "UPDATE favorite_groups SET name = ?, updated_at = ?"
                " WHERE user_id = ? AND favorite_group_id = ?",
                (name, _now(), user_id, group_id),
            )
        else:
            conn.execute(
                "UPDATE favorite_groups SET updated_at = ?"
                " WHERE user_id = ? AND favorite_group_id = ?",
                (_now(), user_id, group_id),
            )
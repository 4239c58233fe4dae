"""Favorite holes of users, kept in favorite groups."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timezone

from .db import Database
from .utils import Forbidden, NotFound


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _placeholders(count: int) -> str:
    return ", ".join("?" * count)


def favorite_group_exists(db: Database, user_id: int, group_id: int) -> bool:
    with db.transaction() as conn:
        count = conn.execute(
            "SELECT COUNT(*) FROM favorite_groups"
            " WHERE user_id = ? AND favorite_group_id = ? AND deleted = 0",
            (user_id, group_id),
        ).fetchone()[0]
    return count > 0


def holes_exist(db: Database, hole_ids: Sequence[int]) -> bool:
    """True when every id names a hole that is not deleted."""
    hole_ids = list(hole_ids)
    if not hole_ids:
        return True
    with db.transaction() as conn:
        count = conn.execute(
            f"SELECT COUNT(*) FROM hole WHERE id IN ({_placeholders(len(hole_ids))})"
            " AND deleted_at IS NULL",
            hole_ids,
        ).fetchone()[0]
    return count == len(hole_ids)


def modify_favorites(
    db: Database, user_id: int, hole_ids: Sequence[int], group_id: int
) -> None:
    """Make the group hold exactly ``hole_ids``."""
    hole_ids = list(hole_ids)
    if not hole_ids:
        return
    if not favorite_group_exists(db, user_id, group_id):
        raise NotFound("收藏夹不存在")
    if not holes_exist(db, hole_ids):
        raise Forbidden("帖子不存在")
    with db.transaction() as conn:
        old_ids = {
            row[0]
            for row in conn.execute(
                "SELECT hole_id FROM user_favorites WHERE user_id = ? AND favorite_group_id = ?",
                (user_id, group_id),
            )
        }
        wanted = set(hole_ids)
        conn.executemany(
            "DELETE FROM user_favorites"
            " WHERE user_id = ? AND favorite_group_id = ? AND hole_id = ?",
            [(user_id, group_id, hole_id) for hole_id in old_ids - wanted],
        )
        moment = _now()
        conn.executemany(
            "INSERT INTO user_favorites (user_id, favorite_group_id, hole_id, created_at)"
            " VALUES (?, ?, ?, ?)",
            [
                (user_id, group_id, hole_id, moment)
                for hole_id in dict.fromkeys(hole_ids)
                if hole_id not in old_ids
            ],
        )
        conn.execute(
            "UPDATE favorite_groups SET count = ? WHERE user_id = ? AND favorite_group_id = ?",
            (len(hole_ids), user_id, group_id),
        )


def add_favorite(db: Database, user_id: int, hole_id: int, group_id: int) -> None:
    """Add a hole to a group; re-adding refreshes its time."""
    if not favorite_group_exists(db, user_id, group_id):
        raise NotFound("收藏夹不存在")
    if not holes_exist(db, [hole_id]):
        raise NotFound("帖子不存在")
    with db.transaction() as conn:
        conn.execute(
            "INSERT INTO user_favorites (user_id, favorite_group_id, hole_id, created_at)"
            " VALUES (?, ?, ?, ?)"
            " ON CONFLICT (user_id, favorite_group_id, hole_id)"
            " DO UPDATE SET created_at = excluded.created_at",
            (user_id, group_id, hole_id, _now()),
        )
        conn.execute(
            "UPDATE favorite_groups SET count = count + 1"
            " WHERE user_id = ? AND favorite_group_id = ?",
            (user_id, group_id),
        )
        conn.execute(
            "UPDATE hole SET favorite_count = favorite_count + 1 WHERE id = ?",
            (hole_id,),
        )


def get_favorite_hole_ids(db: Database, user_id: int) -> list[int]:
    """Distinct ids of all holes the user has in any group."""
    with db.transaction() as conn:
        rows = conn.execute(
            "SELECT hole_id FROM user_favorites WHERE user_id = ?"
            " GROUP BY hole_id ORDER BY MIN(rowid)",
            (user_id,),
        ).fetchall()
    return [row[0] for row in rows]


def get_favorite_hole_ids_in_group(db: Database, user_id: int, group_id: int) -> list[int]:
    if not favorite_group_exists(db, user_id, group_id):
        raise NotFound("收藏夹不存在")
    with db.transaction() as conn:
        rows = conn.execute(
            "SELECT hole_id FROM user_favorites WHERE user_id = ? AND favorite_group_id = ?"
            " ORDER BY rowid",
            (user_id, group_id),
        ).fetchall()
    return [row[0] for row in rows]


def delete_favorite(db: Database, user_id: int, hole_id: int, group_id: int) -> None:
    """Remove a hole from one group; nothing happens if it is not there."""
    if not favorite_group_exists(db, user_id, group_id):
        raise NotFound("收藏夹不存在")
    if not holes_exist(db, [hole_id]):
        raise NotFound("帖子不存在")
    with db.transaction() as conn:
        count = conn.execute(
            "SELECT COUNT(*) FROM user_favorites"
            " WHERE user_id = ? AND hole_id = ? AND favorite_group_id = ?",
            (user_id, hole_id, group_id),
        ).fetchone()[0]
        if count == 0:
            return
        conn.execute(
            "DELETE FROM user_favorites"
            " WHERE user_id = ? AND hole_id = ? AND favorite_group_id = ?",
            (user_id, hole_id, group_id),
        )
        conn.execute(
            "UPDATE favorite_groups SET count = count - 1"
            " WHERE favorite_group_id = ? AND user_id = ?",
            (group_id, user_id),
        )
        conn.execute(
            "UPDATE hole SET favorite_count = favorite_count - 1 WHERE id = ?",
            (hole_id,),
        )


def move_favorites(
    db: Database,
    user_id: int,
    hole_ids: Sequence[int],
    from_group_id: int,
    to_group_id: int,
) -> None:
    """Move those of ``hole_ids`` that are in the source group to the target."""
    hole_ids = list(hole_ids)
    if from_group_id == to_group_id or not hole_ids:
        return
    if not favorite_group_exists(db, user_id, from_group_id) or not favorite_group_exists(
        db, user_id, to_group_id
    ):
        raise NotFound("收藏夹不存在")
    if not holes_exist(db, hole_ids):
        raise Forbidden("帖子不存在")
    with db.transaction() as conn:
        old_ids = {
            row[0]
            for row in conn.execute(
                "SELECT hole_id FROM user_favorites WHERE user_id = ? AND favorite_group_id = ?",
                (user_id, from_group_id),
            )
        }
        moving = [hole_id for hole_id in hole_ids if hole_id in old_ids]
        if moving:
            conn.execute(
                "UPDATE user_favorites SET favorite_group_id = ?"
                " WHERE user_id = ? AND favorite_group_id = ?"
                f" AND hole_id IN ({_placeholders(len(moving))})",
                (to_group_id, user_id, from_group_id, *moving),
            )
        conn.execute(
            "UPDATE favorite_groups SET count = count - ?"
            " WHERE user_id = ? AND favorite_group_id = ?",
            (len(moving), user_id, from_group_id),
        )
        conn.execute(
            "UPDATE favorite_groups SET count = count + ?"
            " WHERE user_id = ? AND favorite_group_id = ?",
            (len(moving), user_id, to_group_id),
        )
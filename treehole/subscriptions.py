"""Hole subscriptions of users."""

from __future__ import annotations

from datetime import datetime, timezone

from .db import Database


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def get_subscriptions(db: Database, user_id: int) -> list[int]:
    """Ids of holes the user subscribed to, oldest subscription first."""
    with db.transaction() as conn:
        rows = conn.execute(
            "SELECT hole_id FROM user_subscription WHERE user_id = ?"
            " ORDER BY created_at, rowid",
            (user_id,),
        ).fetchall()
    return [row["hole_id"] for row in rows]


def add_subscription(db: Database, user_id: int, hole_id: int) -> None:
    """Subscribe, refreshing the time of an existing subscription."""
    with db.transaction() as conn:
        exists = conn.execute(
            "SELECT COUNT(*) FROM user_subscription WHERE user_id = ? AND hole_id = ?",
            (user_id, hole_id),
        ).fetchone()[0]
        conn.execute(
            "INSERT INTO user_subscription (user_id, hole_id, created_at) VALUES (?, ?, ?)"
            " ON CONFLICT (user_id, hole_id) DO UPDATE SET created_at = excluded.created_at",
            (user_id, hole_id, _now()),
        )
        if exists == 0:
            conn.execute(
                "UPDATE hole SET subscription_count = subscription_count + 1 WHERE id = ?",
                (hole_id,),
            )


def remove_subscription(db: Database, user_id: int, hole_id: int) -> None:
    """Unsubscribe; nothing happens when there is no subscription."""
    with db.transaction() as conn:
        exists = conn.execute(
            "SELECT COUNT(*) FROM user_subscription WHERE user_id = ? AND hole_id = ?",
            (user_id, hole_id),
        ).fetchone()[0]
        if exists > 0:
            conn.execute(
                "DELETE FROM user_subscription WHERE user_id = ? AND hole_id = ?",
                (user_id, hole_id),
            )
            conn.execute(
                "UPDATE hole SET subscription_count = subscription_count - 1 WHERE id = ?",
                (hole_id,),
            )
"""Floors (posts inside a hole): mentions, display defaults, creation and likes."""

from __future__ import annotations

import logging
import re
import sqlite3
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from .anonynames import find_or_generate_anonyname
from .cache import Cache
from .db import Database, Message, MessageType
from .names import NameGenerator
from .notifications import AdminList, Notification, Notifier, merge_notifications
from .textcheck import CheckType
from .utils import NotFound

logger = logging.getLogger("treehole")

_HOLE_MENTION_RE = re.compile(r"[^#]#(\d+)", re.ASCII)
_FLOOR_MENTION_RE = re.compile(r"##(\d+)", re.ASCII)

DELETED_CONTENT = "该内容因违反社区规范被删除"
REVIEWING_CONTENT = "该内容正在审核中"

CheckResult = bool | tuple[bool, str]
Checker = Callable[[str, CheckType], CheckResult]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _stamp(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _placeholders(count: int) -> str:
    return ", ".join("?" * count)


@dataclass
class Floor:
    content: str = ""
    hole_id: int = 0
    user_id: int = 0
    id: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None
    anonyname: str = ""
    ranking: int = 0
    reply_to: int = 0
    like: int = 0
    dislike: int = 0
    deleted: bool = False
    modified: int = 0
    fold: str = ""
    special_tag: str = ""
    is_sensitive: bool = False
    is_actual_sensitive: bool | None = None
    sensitive_detail: str = ""
    mention: list[Floor] = field(default_factory=list)
    fold_frontend: list[str] = field(default_factory=list)
    liked: int = 0
    liked_frontend: bool = False
    disliked_frontend: bool = False
    is_me: bool = False

    def sensitive(self) -> bool:
        """Manual review wins over the automatic check."""
        if self.is_actual_sensitive is not None:
            return self.is_actual_sensitive
        return self.is_sensitive

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "time_created": self.created_at.isoformat() if self.created_at else None,
            "time_updated": self.updated_at.isoformat() if self.updated_at else None,
            "content": self.content,
            "anonyname": self.anonyname,
            "ranking": self.ranking,
            "reply_to": self.reply_to,
            "like": self.like,
            "dislike": self.dislike,
            "deleted": self.deleted,
            "modified": self.modified,
            "fold_v2": self.fold,
            "special_tag": self.special_tag,
            "is_sensitive": self.is_sensitive,
            "is_actual_sensitive": self.is_actual_sensitive,
            "hole_id": self.hole_id,
            "mention": [floor.to_dict() for floor in self.mention],
            "floor_id": self.id,
            "fold": list(self.fold_frontend),
            "liked": self.liked_frontend,
            "disliked": self.disliked_frontend,
            "is_me": self.is_me,
        }
        if self.sensitive_detail:
            data["sensitive_detail"] = self.sensitive_detail
        return data


def _floor_from_row(row: sqlite3.Row) -> Floor:
    actual = row["is_actual_sensitive"]
    return Floor(
        id=row["id"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
        content=row["content"],
        anonyname=row["anonyname"],
        ranking=row["ranking"],
        reply_to=row["reply_to"],
        like=row["like"],
        dislike=row["dislike"],
        deleted=bool(row["deleted"]),
        modified=row["modified"],
        fold=row["fold"] or "",
        special_tag=row["special_tag"] or "",
        is_sensitive=bool(row["is_sensitive"]),
        is_actual_sensitive=None if actual is None else bool(actual),
        sensitive_detail=row["sensitive_detail"] or "",
        user_id=row["user_id"],
        hole_id=row["hole_id"],
    )


def parse_mention_ids(content: str) -> tuple[list[int], list[int]]:
    """Return the hole ids (``#n``) and floor ids (``##n``) mentioned in content."""
    padded = " " + content
    hole_ids = [int(match.group(1)) for match in _HOLE_MENTION_RE.finditer(padded)]
    floor_ids = [int(match.group(1)) for match in _FLOOR_MENTION_RE.finditer(padded)]
    return hole_ids, floor_ids


def load_floor_mentions(db: Database, content: str) -> list[Floor]:
    """Floors mentioned in content: first floors of mentioned holes and mentioned floors."""
    hole_ids, floor_ids = parse_mention_ids(content)
    parts: list[str] = []
    params: list[int] = []
    if hole_ids:
        parts.append(
            f"SELECT * FROM floor WHERE hole_id IN ({_placeholders(len(hole_ids))})"
            " AND ranking = 0"
        )
        params.extend(hole_ids)
    if floor_ids:
        parts.append(f"SELECT * FROM floor WHERE id IN ({_placeholders(len(floor_ids))})")
        params.extend(floor_ids)
    if not parts:
        return []
    sql = "SELECT * FROM (" + " UNION ".join(parts) + ") ORDER BY id"
    with db.transaction() as conn:
        rows = conn.execute(sql, params).fetchall()
    return [_floor_from_row(row) for row in rows]


class FloorService:
    """Operations on floors that need storage, names, cache and notifications."""

    def __init__(
        self,
        db: Database,
        notifier: Notifier,
        names: NameGenerator,
        cache: Cache,
        checker: Checker | None = None,
        admin_list: AdminList | None = None,
    ) -> None:
        self.db = db
        self.notifier = notifier
        self.names = names
        self.cache = cache
        self.checker = checker
        self.admin_list = admin_list if admin_list is not None else AdminList()

    def _attach_mentions(self, conn: sqlite3.Connection, floors: Sequence[Floor]) -> None:
        if not floors:
            return
        by_id = {floor.id: floor for floor in floors}
        for floor in floors:
            floor.mention = []
        rows = conn.execute(
            "SELECT f.*, fm.floor_id AS owner_id FROM floor_mention fm"
            " JOIN floor f ON f.id = fm.mention_id"
            f" WHERE fm.floor_id IN ({_placeholders(len(by_id))}) ORDER BY f.id",
            list(by_id),
        ).fetchall()
        for row in rows:
            by_id[row["owner_id"]].mention.append(_floor_from_row(row))

    def query(
        self,
        hole_id: int | None = None,
        offset: int | None = None,
        size: int | None = None,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
    ) -> list[Floor]:
        """Floors with their mentions, filtered by hole and creation time."""
        conditions: list[str] = []
        params: list[Any] = []
        if hole_id is not None:
            conditions.append("hole_id = ?")
            params.append(hole_id)
        if start_time is not None:
            conditions.append("created_at >= ?")
            params.append(_stamp(start_time))
        if end_time is not None:
            conditions.append("created_at <= ?")
            params.append(_stamp(end_time))
        sql = "SELECT * FROM floor"
        if conditions:
            sql += " WHERE " + " AND ".join(conditions)
        sql += " ORDER BY id LIMIT ? OFFSET ?"
        params.append(-1 if size is None else size)
        params.append(0 if offset is None else offset)
        with self.db.transaction() as conn:
            floors = [_floor_from_row(row) for row in conn.execute(sql, params).fetchall()]
            self._attach_mentions(conn, floors)
        return floors

    def preprocess(self, floors: Iterable[Floor], user: Any) -> list[Floor]:
        """Fill in the user's likes, authorship and display defaults."""
        floors = list(floors)
        if floors:
            by_id = {floor.id: floor for floor in floors}
            with self.db.transaction() as conn:
                rows = conn.execute(
                    "SELECT floor_id, like_data FROM floor_like WHERE user_id = ?"
                    f" AND floor_id IN ({_placeholders(len(by_id))})",
                    [user.id, *by_id],
                ).fetchall()
            for row in rows:
                floor = by_id[row["floor_id"]]
                floor.liked = row["like_data"]
                if floor.liked == 1:
                    floor.liked_frontend = True
                elif floor.liked == -1:
                    floor.disliked_frontend = True
        for floor in floors:
            floor.is_me = user.id == floor.user_id
        for floor in floors:
            self.set_defaults(floor, user)
        return floors

    def set_defaults(self, floor: Floor, user: Any) -> Floor:
        """Prepare a floor for display to ``user``, hiding sensitive content."""
        floor.anonyname = self.names.fuzz_name(floor.anonyname)
        if floor.sensitive():
            if user.is_admin:
                floor.special_tag = "sensitive"
            if not floor.deleted:
                if floor.is_actual_sensitive:
                    floor.content = DELETED_CONTENT
                    floor.deleted = True
                else:
                    floor.content = REVIEWING_CONTENT
                floor.fold_frontend = [floor.content]
                floor.fold = floor.content
        if not user.is_admin:
            floor.sensitive_detail = ""
        for mentioned in floor.mention:
            self.set_defaults(mentioned, user)
        floor.fold_frontend = [floor.fold] if floor.fold else []
        return floor

    def _check(self, content: str) -> tuple[bool, str]:
        if self.checker is None:
            return True, ""
        result = self.checker(content, CheckType.FLOOR)
        if isinstance(result, tuple):
            passed, detail = result
            return bool(passed), detail or ""
        return bool(result), ""

    def create(self, floor: Floor, user: Any) -> Floor:
        """Store a new floor in its hole, notify people and drop the hole cache."""
        if not floor.user_id:
            floor.user_id = user.id
        passed, detail = self._check(floor.content)
        floor.is_sensitive = not passed
        floor.sensitive_detail = detail

        floor.mention = load_floor_mentions(self.db, floor.content)

        moment = _now()
        with self.db.transaction() as conn:
            floor.anonyname = find_or_generate_anonyname(
                self.db, floor.hole_id, floor.user_id, self.names
            )
            row = conn.execute("SELECT reply FROM hole WHERE id = ?", (floor.hole_id,)).fetchone()
            if row is None:
                raise NotFound("帖子不存在")
            reply = row["reply"] + 1
            floor.ranking = reply
            cursor = conn.execute(
                "INSERT INTO floor (created_at, updated_at, content, anonyname, ranking,"
                ' reply_to, "like", dislike, deleted, modified, fold, special_tag,'
                " is_sensitive, is_actual_sensitive, sensitive_detail, user_id, hole_id)"
                " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    _stamp(moment),
                    _stamp(moment),
                    floor.content,
                    floor.anonyname,
                    floor.ranking,
                    floor.reply_to,
                    floor.like,
                    floor.dislike,
                    int(floor.deleted),
                    floor.modified,
                    floor.fold,
                    floor.special_tag,
                    int(floor.is_sensitive),
                    None if floor.is_actual_sensitive is None else int(floor.is_actual_sensitive),
                    floor.sensitive_detail,
                    floor.user_id,
                    floor.hole_id,
                ),
            )
            floor.id = cursor.lastrowid
            floor.created_at = moment
            floor.updated_at = moment
            conn.executemany(
                "INSERT OR IGNORE INTO floor_mention (floor_id, mention_id) VALUES (?, ?)",
                [(floor.id, mentioned.id) for mentioned in floor.mention],
            )
            conn.execute(
                "UPDATE hole SET reply = ?, updated_at = ? WHERE id = ?",
                (reply, _stamp(moment), floor.hole_id),
            )

        self.set_defaults(floor, user)

        if not floor.sensitive():
            notifications: list[Notification] = []
            notifications = merge_notifications(notifications, self.reply_notification(floor))
            notifications = merge_notifications(notifications, self.mention_notification(floor))
            notifications = merge_notifications(
                notifications, self.subscription_notification(floor)
            )
            try:
                self.notifier.send_all(notifications)
            except Exception as exc:
                logger.error("send notification failed: %s", exc)
        else:
            try:
                self.send_sensitive(floor)
            except Exception as exc:
                logger.error("send sensitive notification failed: %s", exc)

        self.cache.delete(f"hole_{floor.hole_id}")
        return floor

    def backup(self, floor: Floor, user_id: int, reason: str) -> int:
        """Save the floor's current content to its history; return the record id."""
        stamp = _stamp(_now())
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO floor_history (created_at, updated_at, content, reason, floor_id,"
                " is_sensitive, is_actual_sensitive, sensitive_detail, user_id)"
                " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    stamp,
                    stamp,
                    floor.content,
                    reason,
                    floor.id,
                    int(floor.is_sensitive),
                    None if floor.is_actual_sensitive is None else int(floor.is_actual_sensitive),
                    floor.sensitive_detail,
                    user_id,
                ),
            )
            return cursor.lastrowid

    def modify_like(self, floor: Floor, user_id: int, like_option: int) -> Floor:
        """Set the user's like (1), dislike (-1) or neither (0) and recount."""
        if user_id == floor.user_id:
            floor.is_me = True
        with self.db.transaction() as conn:
            if like_option == 0:
                conn.execute(
                    "DELETE FROM floor_like WHERE floor_id = ? AND user_id = ?",
                    (floor.id, user_id),
                )
            else:
                conn.execute(
                    "INSERT INTO floor_like (floor_id, user_id, like_data) VALUES (?, ?, ?)"
                    " ON CONFLICT (floor_id, user_id) DO UPDATE SET like_data = excluded.like_data",
                    (floor.id, user_id, like_option),
                )
            like = conn.execute(
                "SELECT COUNT(*) FROM floor_like WHERE floor_id = ? AND like_data = 1",
                (floor.id,),
            ).fetchone()[0]
            dislike = conn.execute(
                "SELECT COUNT(*) FROM floor_like WHERE floor_id = ? AND like_data = -1",
                (floor.id,),
            ).fetchone()[0]
            conn.execute(
                'UPDATE floor SET "like" = ?, dislike = ? WHERE id = ?',
                (like, dislike, floor.id),
            )
        floor.like = like
        floor.dislike = dislike
        floor.liked = like_option
        floor.liked_frontend = like_option == 1
        floor.disliked_frontend = like_option == -1
        return floor

    def _notification(
        self, floor: Floor, recipients: list[int], title: str, kind: MessageType,
        description: str | None = None,
    ) -> Notification:
        return Notification(
            title=title,
            description=floor.content if description is None else description,
            type=kind,
            data=floor,
            url=f"/api/floors/{floor.id}",
            recipients=recipients,
        )

    def reply_notification(self, floor: Floor) -> Notification:
        """Notify the hole's owner, unless the owner wrote the floor."""
        with self.db.transaction() as conn:
            row = conn.execute("SELECT user_id FROM hole WHERE id = ?", (floor.hole_id,)).fetchone()
        owner = row["user_id"] if row is not None else 0
        recipients = [owner] if owner and owner != floor.user_id else []
        return self._notification(floor, recipients, "您的内容有新回复", MessageType.REPLY)

    def mention_notification(self, floor: Floor) -> Notification:
        """Notify the authors of mentioned floors other than the writer."""
        recipients = [m.user_id for m in floor.mention if m.user_id != floor.user_id]
        return self._notification(floor, recipients, "您的内容被引用了", MessageType.MENTION)

    def subscription_notification(self, floor: Floor) -> Notification:
        """Notify the hole's subscribers other than the writer."""
        with self.db.transaction() as conn:
            rows = conn.execute(
                "SELECT user_id FROM user_subscription WHERE hole_id = ?", (floor.hole_id,)
            ).fetchall()
        recipients = [row["user_id"] for row in rows if row["user_id"] != floor.user_id]
        return self._notification(
            floor, recipients, "您关注的帖子有新回复", MessageType.FAVORITE
        )

    def send_modify(self, floor: Floor) -> Message | None:
        """Tell the author that an admin changed the floor."""
        notification = self._notification(
            floor, [floor.user_id], "您的内容被管理员修改了", MessageType.MODIFY
        )
        return self.notifier.send(notification)

    def send_sensitive(self, floor: Floor) -> Message | None:
        """Ask the admins to review a sensitive floor."""
        admins = self.admin_list.ids
        if not admins:
            return None
        notification = self._notification(
            floor,
            admins,
            "您有待审核的内容",
            MessageType.SENSITIVE,
            description="Sensitive Review Required",
        )
        return self.notifier.send(notification)
"""SQLite storage: schema, transactions, admin logs and stored messages."""

from __future__ import annotations

import dataclasses
import json
import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

logger = logging.getLogger("treehole")

SCHEMA = """
CREATE TABLE IF NOT EXISTS division (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    name TEXT UNIQUE,
    description TEXT NOT NULL DEFAULT '',
    hidden INTEGER NOT NULL DEFAULT 0,
    pinned TEXT NOT NULL DEFAULT '[]'
);
CREATE TABLE IF NOT EXISTS tag (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    name TEXT NOT NULL UNIQUE,
    temperature INTEGER NOT NULL DEFAULT 0,
    is_zzmg INTEGER NOT NULL DEFAULT 0,
    is_sensitive INTEGER NOT NULL DEFAULT 0,
    is_actual_sensitive INTEGER,
    nsfw INTEGER NOT NULL DEFAULT 0
);
CREATE TABLE IF NOT EXISTS "user" (
    id INTEGER PRIMARY KEY,
    config TEXT NOT NULL DEFAULT '{}',
    ban_division TEXT NOT NULL DEFAULT '{}',
    offence_count INTEGER NOT NULL DEFAULT 0,
    ban_report TEXT,
    ban_report_count INTEGER NOT NULL DEFAULT 0,
    default_special_tag TEXT NOT NULL DEFAULT '',
    special_tags TEXT NOT NULL DEFAULT '[]',
    favorite_group_count INTEGER NOT NULL DEFAULT 0
);
CREATE TABLE IF NOT EXISTS hole (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    deleted_at TEXT,
    view INTEGER NOT NULL DEFAULT 0,
    reply INTEGER NOT NULL DEFAULT 0,
    hidden INTEGER NOT NULL DEFAULT 0,
    locked INTEGER NOT NULL DEFAULT 0,
    good INTEGER NOT NULL DEFAULT 0,
    no_purge INTEGER NOT NULL DEFAULT 0,
    division_id INTEGER NOT NULL,
    user_id INTEGER NOT NULL,
    favorite_count INTEGER NOT NULL DEFAULT 0,
    subscription_count INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_hole_div_upd ON hole (division_id, updated_at DESC);
CREATE INDEX IF NOT EXISTS idx_hole_div_cre ON hole (division_id, created_at DESC);
CREATE TABLE IF NOT EXISTS floor (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    content TEXT NOT NULL,
    anonyname TEXT NOT NULL DEFAULT '',
    ranking INTEGER NOT NULL DEFAULT 0,
    reply_to INTEGER NOT NULL DEFAULT 0,
    "like" INTEGER NOT NULL DEFAULT 0,
    dislike INTEGER NOT NULL DEFAULT 0,
    deleted INTEGER NOT NULL DEFAULT 0,
    modified INTEGER NOT NULL DEFAULT 0,
    fold TEXT NOT NULL DEFAULT '',
    special_tag TEXT NOT NULL DEFAULT '',
    is_sensitive INTEGER NOT NULL DEFAULT 0,
    is_actual_sensitive INTEGER,
    sensitive_detail TEXT NOT NULL DEFAULT '',
    user_id INTEGER NOT NULL,
    hole_id INTEGER NOT NULL,
    UNIQUE (hole_id, ranking)
);
CREATE TABLE IF NOT EXISTS floor_mention (
    floor_id INTEGER NOT NULL,
    mention_id INTEGER NOT NULL,
    PRIMARY KEY (floor_id, mention_id)
);
CREATE TABLE IF NOT EXISTS floor_like (
    floor_id INTEGER NOT NULL,
    user_id INTEGER NOT NULL,
    like_data INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (floor_id, user_id)
);
CREATE TABLE IF NOT EXISTS floor_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    content TEXT NOT NULL DEFAULT '',
    reason TEXT NOT NULL DEFAULT '',
    floor_id INTEGER NOT NULL,
    is_sensitive INTEGER NOT NULL DEFAULT 0,
    is_actual_sensitive INTEGER,
    sensitive_detail TEXT NOT NULL DEFAULT '',
    user_id INTEGER NOT NULL
);
CREATE TABLE IF NOT EXISTS hole_tags (
    hole_id INTEGER NOT NULL,
    tag_id INTEGER NOT NULL,
    PRIMARY KEY (hole_id, tag_id)
);
CREATE INDEX IF NOT EXISTS idx_hole_tags_tag ON hole_tags (tag_id);
CREATE TABLE IF NOT EXISTS anonyname_mapping (
    hole_id INTEGER NOT NULL,
    user_id INTEGER NOT NULL,
    anonyname TEXT NOT NULL,
    PRIMARY KEY (hole_id, user_id)
);
CREATE TABLE IF NOT EXISTS user_subscription (
    user_id INTEGER NOT NULL,
    hole_id INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    PRIMARY KEY (user_id, hole_id)
);
CREATE TABLE IF NOT EXISTS user_favorites (
    user_id INTEGER NOT NULL,
    favorite_group_id INTEGER NOT NULL,
    hole_id INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    PRIMARY KEY (user_id, favorite_group_id, hole_id)
);
CREATE TABLE IF NOT EXISTS favorite_groups (
    favorite_group_id INTEGER NOT NULL,
    user_id INTEGER NOT NULL,
    name TEXT NOT NULL DEFAULT '默认',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    deleted INTEGER NOT NULL DEFAULT 0,
    count INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (user_id, favorite_group_id)
);
CREATE TABLE IF NOT EXISTS message (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT NOT NULL,
    data TEXT,
    type TEXT NOT NULL,
    url TEXT NOT NULL DEFAULT '',
    has_read INTEGER NOT NULL DEFAULT 0
);
CREATE TABLE IF NOT EXISTS message_user (
    message_id INTEGER NOT NULL,
    user_id INTEGER NOT NULL,
    has_read INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (message_id, user_id)
);
CREATE TABLE IF NOT EXISTS admin_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    created_at TEXT NOT NULL,
    type TEXT NOT NULL,
    user_id INTEGER NOT NULL,
    data TEXT
);
CREATE TABLE IF NOT EXISTS url_hostname_whitelist (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    hostname TEXT NOT NULL
);
"""


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _timestamp(moment: datetime) -> str:
    return moment.isoformat(timespec="microseconds")


def _json_default(value: Any) -> Any:
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    raise TypeError(f"cannot serialize value of type {type(value).__name__}")


def _dumps(value: Any) -> str:
    return json.dumps(value, default=_json_default, ensure_ascii=False)


class Database:
    """A SQLite database with the forum schema and nestable transactions."""

    def __init__(self, path: str | Path = ":memory:") -> None:
        self.path = str(path)
        is_uri = self.path.startswith("file:")
        if self.path != ":memory:" and not is_uri:
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(
            self.path, isolation_level=None, check_same_thread=False, uri=is_uri
        )
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._depth = 0
        self._conn.executescript(SCHEMA)

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block in a transaction; nested blocks use savepoints."""
        with self._lock:
            depth = self._depth
            savepoint = f"sp_{depth}"
            if depth == 0:
                self._conn.execute("BEGIN")
            else:
                self._conn.execute(f"SAVEPOINT {savepoint}")
            self._depth += 1
            try:
                yield self._conn
            except BaseException:
                self._depth -= 1
                if depth == 0:
                    self._conn.execute("ROLLBACK")
                else:
                    self._conn.execute(f"ROLLBACK TO SAVEPOINT {savepoint}")
                    self._conn.execute(f"RELEASE SAVEPOINT {savepoint}")
                raise
            else:
                self._depth -= 1
                if depth == 0:
                    self._conn.execute("COMMIT")
                else:
                    self._conn.execute(f"RELEASE SAVEPOINT {savepoint}")

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> Database:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def url_hostname_whitelist(self) -> list[str]:
        """Hostnames that links in content may point to."""
        with self.transaction() as conn:
            rows = conn.execute(
                "SELECT hostname FROM url_hostname_whitelist ORDER BY id"
            ).fetchall()
        return [row["hostname"] for row in rows]


class AdminLogType(str, Enum):
    HOLE = "edit_hole"
    HIDE_HOLE = "hide_hole"
    TAG = "edit_tag"
    DIVISION = "edit_division"
    MESSAGE = "send_message"
    DELETE_REPORT = "delete_report"
    CHANGE_SENSITIVE = "change_sensitive"


class MessageType(str, Enum):
    FAVORITE = "favorite"
    REPLY = "reply"
    MENTION = "mention"
    MODIFY = "modify"
    PERMISSION = "permission"
    REPORT = "report"
    REPORT_DEALT = "report_dealt"
    MAIL = "mail"
    SENSITIVE = "sensitive"


def create_admin_log(
    db: Database, log_type: AdminLogType | str, user_id: int, data: Any
) -> int | None:
    """Record an admin action for auditing; failures are logged, not raised."""
    kind = log_type.value if isinstance(log_type, AdminLogType) else str(log_type)
    try:
        with db.transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO admin_log (created_at, type, user_id, data) VALUES (?, ?, ?, ?)",
                (_timestamp(_now()), kind, user_id, _dumps(data)),
            )
            return cursor.lastrowid
    except (sqlite3.Error, TypeError) as exc:
        logger.error("failed to create admin log: %s", exc)
        return None


@dataclass
class Message:
    """A notification message stored for its recipients."""

    title: str
    description: str
    type: MessageType | str
    data: Any = None
    url: str = ""
    recipients: list[int] = field(default_factory=list)
    id: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None
    has_read: bool = False

    def to_dict(self) -> dict[str, Any]:
        kind = self.type.value if isinstance(self.type, Enum) else self.type
        return {
            "id": self.id,
            "time_created": self.created_at.isoformat() if self.created_at else None,
            "time_updated": self.updated_at.isoformat() if self.updated_at else None,
            "message": self.title,
            "description": self.description,
            "data": self.data,
            "code": kind,
            "url": self.url,
            "message_id": self.id,
            "has_read": self.has_read,
        }


def save_message(db: Database, message: Message) -> Message:
    """Store a message and link it to each recipient; sets id and times."""
    moment = _now()
    kind = message.type.value if isinstance(message.type, Enum) else str(message.type)
    with db.transaction() as conn:
        cursor = conn.execute(
            "INSERT INTO message (created_at, updated_at, title, description, data, type, url, has_read)"
            " VALUES (?, ?, ?, ?, ?, ?, ?, 0)",
            (
                _timestamp(moment),
                _timestamp(moment),
                message.title,
                message.description,
                _dumps(message.data),
                kind,
                message.url,
            ),
        )
        message_id = cursor.lastrowid
        conn.executemany(
            "INSERT INTO message_user (message_id, user_id, has_read) VALUES (?, ?, 0)",
            [(message_id, user_id) for user_id in message.recipients],
        )
    message.id = message_id
    message.created_at = moment
    message.updated_at = moment
    message.has_read = False
    return message
"""Forum users: loading, permission checks and ban messages."""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from .db import Database
from .favorite_groups import ensure_default_favorite_group
from .utils import HttpError

DEFAULT_NOTIFY = ("mention", "favorite", "report")
DEFAULT_SHOW_FOLDED = "hide"
SHOW_FOLDED_OPTIONS = ("hide", "fold", "show")

MAX_TIME = datetime(9999, 1, 1, tzinfo=timezone.utc)
MIN_TIME = datetime.fromtimestamp(0, tz=timezone.utc)

_BAN_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass
class UserConfig:
    """Per-user preferences.

    ``notify`` lists the message types the user wants; ``show_folded`` is one
    of "hide", "fold" or "show".
    """

    notify: list[str] | None = None
    show_folded: str = ""


def _default_config() -> UserConfig:
    return UserConfig(notify=list(DEFAULT_NOTIFY), show_folded=DEFAULT_SHOW_FOLDED)


@dataclass
class User:
    id: int
    config: UserConfig = field(default_factory=UserConfig)
    ban_division: dict[int, datetime | None] = field(default_factory=dict)
    offence_count: int = 0
    ban_report: datetime | None = None
    ban_report_count: int = 0
    default_special_tag: str = ""
    special_tags: list[str] = field(default_factory=list)
    favorite_group_count: int = 0
    admin_until: datetime = MIN_TIME
    is_admin: bool = False
    joined_time: datetime | None = None
    nickname: str = ""
    has_answered_questions: bool = False

    def ban_division_message(self, division_id: int) -> str:
        end_time = self.ban_division.get(division_id)
        if end_time is None:
            return "您在此板块已被禁言"
        return f"您在此板块已被禁言，解封时间：{end_time.strftime(_BAN_TIME_FORMAT)}"

    def ban_report_message(self) -> str:
        if self.ban_report is None:
            return "您已被限制使用举报功能"
        return f"您已被限制使用举报功能，解封时间：{self.ban_report.strftime(_BAN_TIME_FORMAT)}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.id,
            "config": {
                "notify": self.config.notify,
                "show_folded": self.config.show_folded,
            },
            "default_special_tag": self.default_special_tag,
            "special_tags": list(self.special_tags),
            "favorite_group_count": self.favorite_group_count,
            "permission": {
                "admin": self.admin_until.isoformat(),
                "silent": {
                    str(division_id): end.isoformat() if end else None
                    for division_id, end in self.ban_division.items()
                },
                "offense_count": self.offence_count,
            },
            "is_admin": self.is_admin,
            "joined_time": self.joined_time.isoformat() if self.joined_time else None,
            "nickname": self.nickname,
            "has_answered_questions": self.has_answered_questions,
        }


def _parse_time(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        moment = value
    else:
        text = str(value)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        moment = datetime.fromisoformat(text)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def _config_from_json(text: str | None) -> UserConfig:
    data = json.loads(text or "{}") or {}
    notify = data.get("notify")
    return UserConfig(
        notify=list(notify) if notify is not None else None,
        show_folded=data.get("show_folded") or "",
    )


def _config_to_json(config: UserConfig) -> str:
    return json.dumps(
        {"notify": config.notify, "show_folded": config.show_folded}, ensure_ascii=False
    )


def _ban_division_to_json(bans: Mapping[int, datetime | None]) -> str:
    return json.dumps(
        {str(key): end.isoformat() if end else None for key, end in bans.items()}
    )


def _user_from_row(row: sqlite3.Row) -> User:
    bans = json.loads(row["ban_division"] or "{}") or {}
    ban_report = json.loads(row["ban_report"]) if row["ban_report"] else None
    return User(
        id=row["id"],
        config=_config_from_json(row["config"]),
        ban_division={int(key): _parse_time(end) for key, end in bans.items()},
        offence_count=row["offence_count"],
        ban_report=_parse_time(ban_report),
        ban_report_count=row["ban_report_count"],
        default_special_tag=row["default_special_tag"] or "",
        special_tags=list(json.loads(row["special_tags"] or "[]") or []),
        favorite_group_count=row["favorite_group_count"],
    )


def load_user(db: Database, user_id: int) -> User:
    """Load a user, creating it on first sight, and refresh stale state.

    Expired division bans are dropped and an invalid config is reset to the
    defaults; such changes are saved back.
    """
    with db.transaction() as conn:
        row = conn.execute('SELECT id FROM "user" WHERE id = ?', (user_id,)).fetchone()
        if row is None:
            conn.execute(
                'INSERT INTO "user" (id, config) VALUES (?, ?)',
                (user_id, _config_to_json(_default_config())),
            )
        ensure_default_favorite_group(db, user_id)
        user = _user_from_row(
            conn.execute('SELECT * FROM "user" WHERE id = ?', (user_id,)).fetchone()
        )

        now = datetime.now(timezone.utc)
        expired = [
            division_id
            for division_id, end in user.ban_division.items()
            if end is not None and end < now
        ]
        for division_id in expired:
            del user.ban_division[division_id]
        modified = bool(expired)

        if user.config.show_folded not in SHOW_FOLDED_OPTIONS:
            user.config.show_folded = DEFAULT_SHOW_FOLDED
            modified = True
        if user.config.notify is None:
            user.config.notify = list(DEFAULT_NOTIFY)
            modified = True

        if modified:
            conn.execute(
                'UPDATE "user" SET ban_division = ?, config = ? WHERE id = ?',
                (_ban_division_to_json(user.ban_division), _config_to_json(user.config), user_id),
            )
    return user


def get_current_user(
    db: Database,
    claims: Mapping[str, Any],
    mode: str,
    all_show_hidden: bool = False,
) -> User:
    """Build the logged-in user from token claims and the database.

    In dev and test mode a default admin user with id 1 is returned.
    """
    if mode in ("dev", "test"):
        return User(id=1, is_admin=True, has_answered_questions=True)

    user_id = claims.get("id")
    if user_id is None:
        raise HttpError(401, "Unauthorized")
    try:
        user_id = int(user_id)
    except (TypeError, ValueError) as exc:
        raise HttpError(401, "Unauthorized") from exc

    user = load_user(db, user_id)
    user.is_admin = bool(claims.get("is_admin", False))
    user.nickname = str(claims.get("nickname") or "")
    user.has_answered_questions = bool(claims.get("has_answered_questions", False))
    user.joined_time = _parse_time(claims.get("joined_time"))
    user.admin_until = MAX_TIME if user.is_admin else MIN_TIME

    if all_show_hidden:
        user.config.show_folded = "hide"
    return user
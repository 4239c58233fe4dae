"""Notifications: merging, filtering by user preferences, storing and pushing."""

from __future__ import annotations

import dataclasses
import json
import logging
import random
import re
import threading
import time
import urllib.error
import urllib.request
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any

from .db import Database, Message, MessageType, save_message
from .users import DEFAULT_NOTIFY
from .utils import InternalServerError, strip_content

logger = logging.getLogger("treehole")

DEFAULT_TIMEOUT = 10.0
TITLE_MAX_SIZE = 32
DESCRIPTION_MAX_SIZE = 64

_MENTION_RE = re.compile(r"#{1,2}\d+")
_FORMULA_RE = re.compile(r"\${1,2}.*?\${1,2}", re.DOTALL)
_STICKER_RE = re.compile(r"!\[\]\(dx_\S+?\)")
_IMAGE_RE = re.compile(r"!\[.*?\]\(.*?\)")


def _kind(value: MessageType | str) -> str:
    return value.value if isinstance(value, Enum) else str(value)


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


@dataclass
class Notification:
    title: str
    description: str
    type: MessageType | str
    data: Any = None
    url: str = ""
    recipients: list[int] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.title,
            "description": self.description,
            "data": self.data,
            "code": _kind(self.type),
            "url": self.url,
            "recipients": list(self.recipients),
        }


def merge_notifications(
    notifications: Iterable[Notification], notification: Notification
) -> list[Notification]:
    """Append ``notification`` without recipients already notified.

    Nothing is appended when no recipient is left.
    """
    result = list(notifications)
    remaining = list(notification.recipients)
    if not remaining:
        return result
    for existing in result:
        for recipient in existing.recipients:
            if recipient in remaining:
                remaining.remove(recipient)
        if not remaining:
            return result
    result.append(dataclasses.replace(notification, recipients=remaining))
    return result


def clean_notification_description(content: str) -> str:
    """Make content readable in a short preview; keep it if nothing is left."""
    cleaned = _MENTION_RE.sub("", content)
    cleaned = _FORMULA_RE.sub("[公式]", cleaned)
    cleaned = _STICKER_RE.sub("[表情]", cleaned)
    cleaned = _IMAGE_RE.sub("[图片]", cleaned)
    cleaned = cleaned.replace("\n", "")
    return cleaned or content


class AdminList:
    """Ids of admins who receive review notifications, in random order."""

    def __init__(self, ids: Iterable[int] = ()) -> None:
        self._lock = threading.Lock()
        self._rng = random.Random()
        self._ids: list[int] = []
        self.reload(ids)

    def reload(self, ids: Iterable[int]) -> None:
        data = list(ids)
        self._rng.shuffle(data)
        with self._lock:
            self._ids = data

    @property
    def ids(self) -> list[int]:
        with self._lock:
            return list(self._ids)

    def __len__(self) -> int:
        with self._lock:
            return len(self._ids)


class Notifier:
    """Stores notifications and pushes them to the notification service."""

    def __init__(
        self,
        db: Database,
        notification_url: str = "",
        mode: str = "production",
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.db = db
        self.notification_url = notification_url
        self.mode = mode
        self.timeout = timeout

    def _filter_recipients(self, notification: Notification) -> list[int]:
        """Keep existing users who did not opt out of this message type."""
        ids = list(notification.recipients)
        if not ids:
            return []
        kind = _kind(notification.type)
        placeholders = ", ".join("?" * len(ids))
        with self.db.transaction() as conn:
            rows = conn.execute(
                f'SELECT id, config FROM "user" WHERE id IN ({placeholders}) ORDER BY id',
                ids,
            ).fetchall()
        recipients = []
        for row in rows:
            config = json.loads(row["config"] or "{}") or {}
            notify = config.get("notify") or []
            if kind in DEFAULT_NOTIFY and kind not in notify:
                continue
            recipients.append(row["id"])
        return recipients

    def send(self, notification: Notification) -> Message | None:
        """Store and push a notification; return the stored message.

        Returns None when no recipient wants it.
        """
        recipients = self._filter_recipients(notification)
        if not recipients:
            return None

        message = Message(
            title=notification.title,
            description=notification.description,
            type=notification.type,
            data=notification.data,
            url=notification.url,
            recipients=recipients,
        )
        try:
            save_message(self.db, message)
        except Exception as exc:
            logger.error("message save failed: %s", exc)
            raise

        if not self.notification_url:
            return message

        outgoing = dataclasses.replace(
            notification,
            recipients=recipients,
            title=strip_content(notification.title, TITLE_MAX_SIZE),
            description=strip_content(
                clean_notification_description(notification.description),
                DESCRIPTION_MAX_SIZE,
            ),
        )
        message.title = outgoing.title
        message.description = outgoing.description
        payload = json.dumps(
            outgoing.to_dict(), default=_json_default, ensure_ascii=False
        ).encode("utf-8")

        if self.mode == "bench":
            time.sleep(0.001)
            return message

        request = urllib.request.Request(
            f"{self.notification_url}/messages",
            data=payload,
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                status, body = response.status, response.read()
        except urllib.error.HTTPError as exc:
            status, body = exc.code, exc.read()
        except OSError as exc:
            logger.error("error sending notification: %s", exc)
            raise InternalServerError(f"error sending notification: {exc}") from exc

        if status != 201:
            try:
                detail: Any = json.loads(body or b"{}")
            except ValueError:
                detail = body.decode("utf-8", errors="replace")
            logger.error("notification response failed: %s", detail)
            raise InternalServerError(str(detail))
        return message

    def send_all(self, notifications: Iterable[Notification] | None) -> None:
        """Send each notification, stopping at the first failure."""
        for notification in notifications or ():
            self.send(notification)
"""Push notifications to chat bots."""

from __future__ import annotations

import json
import urllib.error
import urllib.request
from dataclasses import dataclass
from enum import Enum

from .utils import request_log

_TIMEOUT = 10.0


class BotMessageType(str, Enum):
    GROUP = "group"
    PRIVATE = "private"


@dataclass
class BotMessage:
    message_type: BotMessageType
    message: str
    group_id: int | None = None
    user_id: int | None = None
    auto_escape: bool = False

    def to_json(self) -> str:
        return json.dumps(
            {
                "message_type": BotMessageType(self.message_type).value,
                "group_id": self.group_id,
                "user_id": self.user_id,
                "message": self.message,
                "auto_escape": self.auto_escape,
            },
            ensure_ascii=False,
            separators=(",", ":"),
        )


@dataclass
class FeishuMessage:
    msg_type: str
    content: str

    def to_json(self) -> str:
        return json.dumps(
            {"msg_type": self.msg_type, "message": self.content},
            ensure_ascii=False,
            separators=(",", ":"),
        )


@dataclass
class BotSettings:
    """Where bot notifications go; unset values disable that channel."""

    qq_bot_url: str | None = None
    feishu_bot_url: str | None = None
    qq_bot_user_id: int | None = None
    qq_bot_physics_group_id: int | None = None
    qq_bot_coding_group_id: int | None = None


def _post_json(url: str, payload: str, name: str) -> bool:
    request_log(f"Request: {payload}", name, 0, False)
    request = urllib.request.Request(
        url,
        data=payload.encode("utf-8"),
        headers={"Content-Type": "application/json"},
        method="POST",
    )
    try:
        with urllib.request.urlopen(request, timeout=_TIMEOUT) as response:
            status = response.status
            body = response.read()
    except urllib.error.HTTPError as exc:
        status = exc.code
        body = exc.read()
    except (urllib.error.URLError, OSError, ValueError):
        request_log("Error creating request", name, 0, False)
        return False
    if status != 200:
        request_log(
            f"Error sending request {body.decode('utf-8', errors='replace')}", name, 0, False
        )
        return False
    return True


def notify_qq(message: BotMessage | None, bot_url: str | None) -> bool:
    """Send a message to the QQ bot; return True when it was accepted."""
    if message is None:
        return False
    if message.message_type == BotMessageType.GROUP and message.group_id is None:
        return False
    if message.message_type == BotMessageType.PRIVATE and message.user_id is None:
        return False
    if bot_url is None:
        return False
    return _post_json(bot_url + "/send_msg", message.to_json(), "NotifyQQ")


def notify_feishu(message: FeishuMessage | None, bot_url: str | None) -> bool:
    """Send a message to the Feishu bot; return True when it was accepted."""
    if message is None or not message.msg_type:
        return False
    if bot_url is None:
        return False
    return _post_json(bot_url, message.to_json(), "NotifyFeishu")
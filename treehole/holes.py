"""Holes (threads): loading their floors and tags, caching, listing and creation."""

from __future__ import annotations

import dataclasses
import logging
import sqlite3
import threading
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from .anonynames import new_anonyname
from .bot import BotMessage, BotMessageType, FeishuMessage, notify_feishu, notify_qq
from .cache import Cache
from .db import Database
from .floors import Floor, FloorService, _floor_from_row, load_floor_mentions
from .tags import Tag, _from_row as _tag_from_row
from .tags import find_or_create_tags
from .textcheck import CheckType

logger = logging.getLogger("treehole")

HOLE_CACHE_EXPIRATION = timedelta(minutes=10)
DEFAULT_HOLE_FLOOR_SIZE = 10
NOTIFY_DIVISION_ID = 4
_TAG_GROUP_SETTINGS = {
    "@物理大神": "qq_bot_physics_group_id",
    "@码上辅导": "qq_bot_coding_group_id",
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _stamp(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _iso(moment: datetime | None) -> str | None:
    return moment.isoformat() if moment else None


def _placeholders(count: int) -> str:
    return ", ".join("?" * count)


@dataclass
class Hole:
    division_id: int = 0
    user_id: int = 0
    id: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None
    deleted_at: datetime | None = None
    view: int = 0
    reply: int = 0
    hidden: bool = False
    locked: bool = False
    good: bool = False
    no_purge: bool = False
    favorite_count: int = 0
    subscription_count: int = 0
    tags: list[Tag] = field(default_factory=list)
    floors: list[Floor] = field(default_factory=list)
    first_floor: Floor | None = None
    last_floor: Floor | None = None
    prefetch: list[Floor] = field(default_factory=list)

    def cache_name(self) -> str:
        return f"hole_{self.id}"

    def set_hole_floor(self, hole_floor_size: int = DEFAULT_HOLE_FLOOR_SIZE) -> None:
        """Fill first, last and prefetched floors from ``floors`` or from ``prefetch``.

        Floors loaded from storage hold the prefetched floors plus the last one;
        a hole restored from cache holds only the prefetched floors.
        """
        if self.floors:
            self.first_floor = self.floors[0]
            self.last_floor = self.floors[-1]
            if len(self.floors) <= hole_floor_size:
                self.prefetch = list(self.floors)
            else:
                self.prefetch = self.floors[:-1]
        elif self.prefetch:
            self.first_floor = self.prefetch[0]
            if self.last_floor is None:
                self.last_floor = self.prefetch[-1]
            self.floors = list(self.prefetch)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "time_created": _iso(self.created_at),
            "time_updated": _iso(self.updated_at),
            "view": self.view,
            "reply": self.reply,
            "hidden": self.hidden,
            "locked": self.locked,
            "good": self.good,
            "no_purge": self.no_purge,
            "division_id": self.division_id,
            "tags": [tag.to_dict() for tag in self.tags],
            "favorite_count": self.favorite_count,
            "subscription_count": self.subscription_count,
            "hole_id": self.id,
            "floors": {
                "first_floor": self.first_floor.to_dict() if self.first_floor else None,
                "last_floor": self.last_floor.to_dict() if self.last_floor else None,
                "prefetch": [floor.to_dict() for floor in self.prefetch],
            },
        }
        if self.deleted_at is not None:
            data["time_deleted"] = self.deleted_at.isoformat()
        return data


def _hole_from_row(row: sqlite3.Row) -> Hole:
    return Hole(
        id=row["id"],
        created_at=_parse(row["created_at"]),
        updated_at=_parse(row["updated_at"]),
        deleted_at=_parse(row["deleted_at"]),
        view=row["view"],
        reply=row["reply"],
        hidden=bool(row["hidden"]),
        locked=bool(row["locked"]),
        good=bool(row["good"]),
        no_purge=bool(row["no_purge"]),
        division_id=row["division_id"],
        user_id=row["user_id"],
        favorite_count=row["favorite_count"],
        subscription_count=row["subscription_count"],
    )


def _holes_by_ids(db: Database, hole_ids: Sequence[int]) -> list[Hole]:
    """Holes that are not deleted among ``hole_ids``, in id order."""
    hole_ids = list(hole_ids)
    if not hole_ids:
        return []
    with db.transaction() as conn:
        rows = conn.execute(
            f"SELECT * FROM hole WHERE id IN ({_placeholders(len(hole_ids))})"
            " AND deleted_at IS NULL ORDER BY id",
            hole_ids,
        ).fetchall()
    return [_hole_from_row(row) for row in rows]


_FLOOR_CACHE_FIELDS = (
    "id", "content", "anonyname", "ranking", "reply_to", "like", "dislike", "deleted",
    "modified", "fold", "special_tag", "is_sensitive", "is_actual_sensitive",
    "sensitive_detail", "user_id", "hole_id",
)
_TAG_CACHE_FIELDS = (
    "id", "name", "temperature", "is_zzmg", "is_sensitive", "is_actual_sensitive", "nsfw",
)
_HOLE_CACHE_FIELDS = (
    "id", "view", "reply", "hidden", "locked", "good", "no_purge", "division_id",
    "user_id", "favorite_count", "subscription_count",
)


def _floor_to_cache(floor: Floor) -> dict[str, Any]:
    data = {name: getattr(floor, name) for name in _FLOOR_CACHE_FIELDS}
    data["created_at"] = _iso(floor.created_at)
    data["updated_at"] = _iso(floor.updated_at)
    return data


def _floor_from_cache(data: dict[str, Any]) -> Floor:
    floor = Floor(**{name: data[name] for name in _FLOOR_CACHE_FIELDS if name in data})
    floor.created_at = _parse(data.get("created_at"))
    floor.updated_at = _parse(data.get("updated_at"))
    return floor


def _hole_to_cache(hole: Hole) -> dict[str, Any]:
    data = {name: getattr(hole, name) for name in _HOLE_CACHE_FIELDS}
    data["created_at"] = _iso(hole.created_at)
    data["updated_at"] = _iso(hole.updated_at)
    data["deleted_at"] = _iso(hole.deleted_at)
    data["tags"] = [{name: getattr(tag, name) for name in _TAG_CACHE_FIELDS} for tag in hole.tags]
    data["prefetch"] = [_floor_to_cache(floor) for floor in hole.prefetch]
    data["first_floor"] = _floor_to_cache(hole.first_floor) if hole.first_floor else None
    data["last_floor"] = _floor_to_cache(hole.last_floor) if hole.last_floor else None
    return data


def _hole_from_cache(data: dict[str, Any]) -> Hole:
    hole = Hole(**{name: data[name] for name in _HOLE_CACHE_FIELDS if name in data})
    hole.created_at = _parse(data.get("created_at"))
    hole.updated_at = _parse(data.get("updated_at"))
    hole.deleted_at = _parse(data.get("deleted_at"))
    hole.tags = [Tag(**tag) for tag in data.get("tags") or []]
    hole.prefetch = [_floor_from_cache(floor) for floor in data.get("prefetch") or []]
    by_id = {floor.id: floor for floor in hole.prefetch}
    first, last = data.get("first_floor"), data.get("last_floor")
    if first is not None:
        hole.first_floor = by_id.get(first["id"]) or _floor_from_cache(first)
    if last is not None:
        hole.last_floor = by_id.get(last["id"]) or _floor_from_cache(last)
    return hole


def _insert_floor(conn: sqlite3.Connection, floor: Floor, moment: datetime) -> None:
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


class HoleService:
    """Operations on holes that need storage, floors, cache and bot settings."""

    def __init__(
        self,
        db: Database,
        floors: FloorService,
        cache: Cache,
        hole_floor_size: int = DEFAULT_HOLE_FLOOR_SIZE,
        admin_only_tag_ids: Iterable[int] = (),
        bot_settings: Any = None,
    ) -> None:
        self.db = db
        self.floors = floors
        self.cache = cache
        self.hole_floor_size = hole_floor_size
        self.admin_only_tag_ids = list(admin_only_tag_ids)
        self.bot_settings = bot_settings

    def _cache_get(self, key: str) -> Any:
        try:
            return self.cache.get(key)
        except LookupError:
            return None

    def _load_floors(self, holes: Sequence[Hole]) -> None:
        if not holes:
            return
        ids = [hole.id for hole in holes]
        marks = _placeholders(len(ids))
        sql = (
            "SELECT * FROM ("
            f"SELECT * FROM floor WHERE hole_id IN ({marks}) AND ranking < ?"
            " UNION "
            "SELECT f.* FROM floor f JOIN hole h ON f.hole_id = h.id AND f.ranking = h.reply"
            f" WHERE h.id IN ({marks})"
            ") ORDER BY hole_id, ranking"
        )
        with self.db.transaction() as conn:
            rows = conn.execute(sql, [*ids, self.hole_floor_size, *ids]).fetchall()
        grouped: dict[int, list[Floor]] = {}
        for row in rows:
            floor = _floor_from_row(row)
            grouped.setdefault(floor.hole_id, []).append(floor)
        for hole in holes:
            if hole.id in grouped:
                hole.floors = grouped[hole.id]
                hole.set_hole_floor(self.hole_floor_size)

    def _load_tags(self, holes: Sequence[Hole]) -> None:
        if not holes:
            return
        by_id = {hole.id: hole for hole in holes}
        for hole in holes:
            hole.tags = []
        with self.db.transaction() as conn:
            rows = conn.execute(
                "SELECT ht.hole_id AS owner_id, t.* FROM hole_tags ht JOIN tag t ON t.id = ht.tag_id"
                f" WHERE ht.hole_id IN ({_placeholders(len(by_id))}) ORDER BY ht.rowid",
                list(by_id),
            ).fetchall()
        for row in rows:
            tag = _tag_from_row(row)
            if not tag.sensitive():
                by_id[row["owner_id"]].tags.append(tag)

    def update_cache(self, holes: Sequence[Hole]) -> None:
        """Load floors and tags of the holes and store them in the cache."""
        holes = list(holes)
        self._load_floors(holes)
        self._load_tags(holes)
        for hole in holes:
            self.cache.set(hole.cache_name(), _hole_to_cache(hole), HOLE_CACHE_EXPIRATION)

    def preprocess(self, holes: Iterable[Hole], user: Any) -> list[Hole]:
        """Fill holes from the cache or storage and prepare their floors for ``user``."""
        holes = list(holes)
        missing: list[Hole] = []
        for hole in holes:
            cached = self._cache_get(hole.cache_name())
            if not cached:
                missing.append(hole)
                continue
            restored = _hole_from_cache(cached)
            for item in dataclasses.fields(Hole):
                setattr(hole, item.name, getattr(restored, item.name))
        if missing:
            self.update_cache(missing)

        floors: list[Floor] = []
        for hole in holes:
            hole.set_hole_floor(self.hole_floor_size)
            floors.extend(hole.floors)
            if hole.last_floor is not None and all(f is not hole.last_floor for f in hole.floors):
                floors.append(hole.last_floor)
        self.floors.preprocess(floors, user)
        return holes

    def list(self, user: Any, offset: datetime, size: int, order: str = "time_updated") -> list[Hole]:
        """Holes older than ``offset``, newest first, by creation or update time.

        Admins also see hidden and deleted holes.
        """
        conditions: list[str] = []
        if not user.is_admin:
            conditions += ["hidden = 0", "deleted_at IS NULL"]
        column = "created_at" if order in ("time_created", "created_at") else "updated_at"
        conditions.append(f"{column} < ?")
        sql = (
            "SELECT * FROM hole WHERE " + " AND ".join(conditions)
            + f" ORDER BY {column} DESC LIMIT ?"
        )
        with self.db.transaction() as conn:
            rows = conn.execute(sql, (_stamp(offset), size)).fetchall()
        return [_hole_from_row(row) for row in rows]

    def _tag_checker(self) -> Callable[[str, CheckType], bool] | None:
        checker = self.floors.checker
        if checker is None:
            return None

        def check(name: str, kind: CheckType) -> bool:
            result = checker(name, kind)
            return bool(result[0]) if isinstance(result, tuple) else bool(result)

        return check

    def create(
        self, hole: Hole, first_floor: Floor, user: Any, tag_names: Iterable[str] = ()
    ) -> Hole:
        """Store a new hole with its tags and first floor, then cache it."""
        if not hole.user_id:
            hole.user_id = user.id
        if not first_floor.user_id:
            first_floor.user_id = hole.user_id
        hole.tags = find_or_create_tags(
            self.db, user, list(tag_names), self.admin_only_tag_ids, self._tag_checker()
        )
        first_floor.mention = load_floor_mentions(self.db, first_floor.content)

        moment = _now()
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO hole (created_at, updated_at, view, reply, hidden, locked, good,"
                " no_purge, division_id, user_id, favorite_count, subscription_count)"
                " VALUES (?, ?, ?, 0, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    _stamp(moment),
                    _stamp(moment),
                    hole.view,
                    int(hole.hidden),
                    int(hole.locked),
                    int(hole.good),
                    int(hole.no_purge),
                    hole.division_id,
                    hole.user_id,
                    hole.favorite_count,
                    hole.subscription_count,
                ),
            )
            hole.id = cursor.lastrowid
            hole.created_at = moment
            hole.updated_at = moment
            hole.reply = 0
            first_floor.hole_id = hole.id

            tag_ids = [tag.id for tag in hole.tags if tag.id]
            conn.executemany(
                "INSERT OR IGNORE INTO hole_tags (hole_id, tag_id) VALUES (?, ?)",
                [(hole.id, tag_id) for tag_id in tag_ids],
            )
            if tag_ids:
                conn.execute(
                    "UPDATE tag SET temperature = temperature + 1"
                    f" WHERE id IN ({_placeholders(len(tag_ids))})",
                    tag_ids,
                )

            first_floor.anonyname = new_anonyname(
                self.db, hole.id, hole.user_id, self.floors.names
            )
            first_floor.ranking = 0
            _insert_floor(conn, first_floor, moment)
            conn.executemany(
                "INSERT OR IGNORE INTO floor_mention (floor_id, mention_id) VALUES (?, ?)",
                [(first_floor.id, mentioned.id) for mentioned in first_floor.mention],
            )

        hole.floors = [first_floor]
        hole.set_hole_floor(self.hole_floor_size)
        self.floors.set_defaults(first_floor, user)

        if first_floor.sensitive():
            try:
                self.floors.send_sensitive(first_floor)
            except Exception as exc:
                logger.error("send sensitive notification failed: %s", exc)

        self.hook(hole)
        self.cache.set(hole.cache_name(), _hole_to_cache(hole), HOLE_CACHE_EXPIRATION)
        return hole

    def hook(self, hole: Hole | None) -> str:
        """Announce a new hole to the chat bots; return the announcement text."""
        if hole is None:
            return ""
        first = hole.first_floor
        if first is not None and not first.sensitive():
            text = f"#{hole.id}\n\n{first.content}"
        else:
            text = f"#{hole.id}\n"

        settings = self.bot_settings
        if settings is None:
            return text

        qq_url = getattr(settings, "qq_bot_url", None)
        feishu_url = getattr(settings, "feishu_bot_url", None)
        jobs: list[Callable[[], None]] = []
        if hole.division_id == NOTIFY_DIVISION_ID:
            private = BotMessage(
                message_type=BotMessageType("private"),
                group_id=None,
                user_id=getattr(settings, "qq_bot_user_id", None),
                message=text,
            )
            jobs.append(lambda: notify_qq(private, qq_url))
            feishu = FeishuMessage(msg_type="text", content=text)
            jobs.append(lambda: notify_feishu(feishu, feishu_url))
        for tag in hole.tags:
            setting_name = _TAG_GROUP_SETTINGS.get(tag.name)
            if setting_name is None:
                continue
            group = BotMessage(
                message_type=BotMessageType("group"),
                group_id=getattr(settings, setting_name, None),
                user_id=None,
                message=text,
            )
            jobs.append(lambda group=group: notify_qq(group, qq_url))
        for job in jobs:
            threading.Thread(target=job, daemon=True).start()
        return text

    def recalculate_stats(self, hole: Hole) -> Hole:
        """Recount favorites and subscriptions, save them and refresh the cache."""
        with self.db.transaction() as conn:
            favorites = conn.execute(
                "SELECT COUNT(*) FROM user_favorites WHERE hole_id = ?", (hole.id,)
            ).fetchone()[0]
            subscriptions = conn.execute(
                "SELECT COUNT(*) FROM user_subscription WHERE hole_id = ?", (hole.id,)
            ).fetchone()[0]
            conn.execute(
                "UPDATE hole SET favorite_count = ?, subscription_count = ? WHERE id = ?",
                (favorites, subscriptions, hole.id),
            )
        hole.favorite_count = favorites
        hole.subscription_count = subscriptions
        self.cache.set(hole.cache_name(), _hole_to_cache(hole), HOLE_CACHE_EXPIRATION)
        return hole
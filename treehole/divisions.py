"""Divisions of the forum and their pinned holes."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .cache import Cache
from .holes import Hole, HoleService, _holes_by_ids

DIVISIONS_CACHE_KEY = "divisions"


@dataclass
class Division:
    name: str
    description: str = ""
    hidden: bool = False
    pinned: list[int] = field(default_factory=list)
    id: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None
    holes: list[Hole] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "time_created": self.created_at.isoformat() if self.created_at else None,
            "time_updated": self.updated_at.isoformat() if self.updated_at else None,
            "name": self.name,
            "description": self.description,
            "hidden": self.hidden,
            "pinned": [hole.to_dict() for hole in self.holes],
            "division_id": self.id,
        }


def preprocess_division(division: Division, holes: HoleService, user: Any) -> Division:
    """Load the division's pinned holes in the pinned order."""
    division.holes = []
    if not division.pinned:
        return division
    found = {hole.id: hole for hole in _holes_by_ids(holes.db, division.pinned)}
    ordered = [found[hole_id] for hole_id in division.pinned if hole_id in found]
    if not ordered:
        return division
    division.holes = holes.preprocess(ordered, user)
    return division


def preprocess_divisions(
    divisions: Iterable[Division], holes: HoleService, user: Any, cache: Cache
) -> list[Division]:
    """Preprocess every division and cache the result without expiry."""
    result = [preprocess_division(division, holes, user) for division in divisions]
    cache.set(DIVISIONS_CACHE_KEY, [division.to_dict() for division in result], None)
    return result
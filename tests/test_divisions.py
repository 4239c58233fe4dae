from datetime import timedelta
from types import SimpleNamespace

import pytest

from treehole.cache import Cache
from treehole.db import Database
from treehole.divisions import Division, preprocess_division, preprocess_divisions
from treehole.floors import Floor, FloorService
from treehole.holes import Hole, HoleService
from treehole.names import NameGenerator
from treehole.notifications import Notifier
from treehole.users import User

NAMES = [f"Name{i:02d}" for i in range(16)]
ADMIN = User(id=1, is_admin=True)


@pytest.fixture
def env():
    db = Database()
    cache = Cache(timedelta(minutes=5))
    names = NameGenerator(NAMES, {}, False)
    floors = FloorService(db, Notifier(db), names, cache)
    service = HoleService(db, floors, cache, hole_floor_size=3)
    yield SimpleNamespace(db=db, cache=cache, service=service)
    db.close()


def _new_hole(env, content):
    return env.service.create(Hole(division_id=1), Floor(content=content), ADMIN, [])


def test_no_pinned_holes(env):
    division = preprocess_division(Division(name="tree", id=1), env.service, ADMIN)
    assert division.holes == []
    assert division.to_dict()["pinned"] == []


def test_pinned_holes_follow_given_order(env):
    first = _new_hole(env, "one")
    second = _new_hole(env, "two")
    division = Division(name="tree", id=1, pinned=[second.id, 999, first.id])
    preprocess_division(division, env.service, ADMIN)
    assert [hole.id for hole in division.holes] == [second.id, first.id]
    assert division.holes[0].first_floor.content == "two"


def test_preprocess_divisions_caches_result(env):
    hole = _new_hole(env, "pinned")
    divisions = [Division(name="tree", id=1, pinned=[hole.id]), Division(name="other", id=2)]
    result = preprocess_divisions(divisions, env.service, ADMIN, env.cache)
    assert [d.name for d in result] == ["tree", "other"]
    cached = env.cache.get("divisions")
    assert [d["name"] for d in cached] == ["tree", "other"]
    assert cached[0]["pinned"][0]["id"] == hole.id


def test_to_dict_fields():
    data = Division(name="tree", description="main", id=3).to_dict()
    assert data["division_id"] == data["id"] == 3
    assert data["name"] == "tree"
    assert data["description"] == "main"
    assert data["hidden"] is False
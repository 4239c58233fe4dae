from datetime import datetime, timezone

import pytest

from treehole.db import Database
from treehole.favorite_groups import (
    add_favorite_group,
    ensure_default_favorite_group,
    get_favorite_groups,
)
from treehole.favorites import (
    add_favorite,
    delete_favorite,
    favorite_group_exists,
    get_favorite_hole_ids,
    get_favorite_hole_ids_in_group,
    holes_exist,
    modify_favorites,
    move_favorites,
)
from treehole.utils import Forbidden, NotFound

USER = 1


@pytest.fixture
def db():
    database = Database()
    with database.transaction() as conn:
        conn.execute('INSERT INTO "user" (id) VALUES (?)', (USER,))
    ensure_default_favorite_group(database, USER)
    yield database
    database.close()


def _hole(db):
    moment = datetime.now(timezone.utc).isoformat()
    with db.transaction() as conn:
        cursor = conn.execute(
            "INSERT INTO hole (created_at, updated_at, division_id, user_id) VALUES (?, ?, 1, 2)",
            (moment, moment),
        )
        return cursor.lastrowid


def _favorite_count(db, hole_id):
    with db.transaction() as conn:
        return conn.execute("SELECT favorite_count FROM hole WHERE id = ?", (hole_id,)).fetchone()[0]


def _group_count(db, group_id):
    groups = {group.favorite_group_id: group for group in get_favorite_groups(db, USER)}
    return groups[group_id].count


def test_holes_exist(db):
    first, second = _hole(db), _hole(db)
    assert holes_exist(db, [first, second]) is True
    assert holes_exist(db, [first, second + 100]) is False
    assert holes_exist(db, []) is True


def test_favorite_group_exists(db):
    assert favorite_group_exists(db, USER, 0) is True
    assert favorite_group_exists(db, USER, 5) is False


def test_add_favorite_updates_counts(db):
    hole_id = _hole(db)
    add_favorite(db, USER, hole_id, 0)
    assert get_favorite_hole_ids_in_group(db, USER, 0) == [hole_id]
    assert _group_count(db, 0) == 1
    assert _favorite_count(db, hole_id) == 1


def test_add_favorite_errors(db):
    hole_id = _hole(db)
    with pytest.raises(NotFound):
        add_favorite(db, USER, hole_id, 5)
    with pytest.raises(NotFound):
        add_favorite(db, USER, hole_id + 100, 0)


def test_modify_favorites_replaces_content(db):
    first, second, third = _hole(db), _hole(db), _hole(db)
    modify_favorites(db, USER, [first, second], 0)
    assert sorted(get_favorite_hole_ids_in_group(db, USER, 0)) == [first, second]
    modify_favorites(db, USER, [second, third], 0)
    assert sorted(get_favorite_hole_ids_in_group(db, USER, 0)) == [second, third]
    assert _group_count(db, 0) == 2


def test_modify_favorites_missing_hole_forbidden(db):
    hole_id = _hole(db)
    with pytest.raises(Forbidden):
        modify_favorites(db, USER, [hole_id, hole_id + 100], 0)
    with pytest.raises(NotFound):
        modify_favorites(db, USER, [hole_id], 7)


def test_delete_favorite_reverts_counts(db):
    hole_id = _hole(db)
    add_favorite(db, USER, hole_id, 0)
    delete_favorite(db, USER, hole_id, 0)
    assert get_favorite_hole_ids_in_group(db, USER, 0) == []
    assert _favorite_count(db, hole_id) == 0
    assert _group_count(db, 0) == 0


def test_delete_favorite_absent_changes_nothing(db):
    hole_id = _hole(db)
    delete_favorite(db, USER, hole_id, 0)
    assert _favorite_count(db, hole_id) == 0


def test_favorite_ids_are_distinct_across_groups(db):
    hole_id = _hole(db)
    group_id = add_favorite_group(db, USER, "group")
    add_favorite(db, USER, hole_id, 0)
    add_favorite(db, USER, hole_id, group_id)
    assert get_favorite_hole_ids(db, USER) == [hole_id]


def test_move_favorites(db):
    first, second, third = _hole(db), _hole(db), _hole(db)
    add_favorite(db, USER, first, 0)
    add_favorite(db, USER, second, 0)
    group_id = add_favorite_group(db, USER, "group")
    move_favorites(db, USER, [first, third], 0, group_id)
    assert get_favorite_hole_ids_in_group(db, USER, group_id) == [first]
    assert get_favorite_hole_ids_in_group(db, USER, 0) == [second]
    assert _group_count(db, 0) == 1
    assert _group_count(db, group_id) == 1


def test_move_to_missing_group_raises(db):
    hole_id = _hole(db)
    add_favorite(db, USER, hole_id, 0)
    with pytest.raises(NotFound):
        move_favorites(db, USER, [hole_id], 0, 9)


def test_in_group_missing_group_raises(db):
    with pytest.raises(NotFound):
        get_favorite_hole_ids_in_group(db, USER, 4)
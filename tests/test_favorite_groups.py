import pytest

from treehole.db import Database
from treehole.favorite_groups import (
    MAX_GROUP_PER_USER,
    add_favorite_group,
    delete_favorite_group,
    ensure_default_favorite_group,
    get_favorite_groups,
    modify_favorite_group,
)
from treehole.utils import BadRequest, Forbidden, NotFound

USER = 1


@pytest.fixture
def db():
    database = Database()
    with database.transaction() as conn:
        conn.execute('INSERT INTO "user" (id) VALUES (?)', (USER,))
    yield database
    database.close()


def group_count(db):
    with db.transaction() as conn:
        return conn.execute(
            'SELECT favorite_group_count FROM "user" WHERE id = ?', (USER,)
        ).fetchone()[0]


def test_default_group_created_once(db):
    before = group_count(db)
    first = get_favorite_groups(db, USER)
    second = get_favorite_groups(db, USER)
    assert [g.favorite_group_id for g in first] == [0]
    assert first[0].name == "默认收藏夹"
    assert [g.favorite_group_id for g in second] == [0]
    assert group_count(db) == before + 1


def test_add_assigns_increasing_ids(db):
    ensure_default_favorite_group(db, USER)
    before = group_count(db)
    ids = [add_favorite_group(db, USER, f"g{n}") for n in range(3)]
    assert ids == sorted(set(ids))
    assert min(ids) > 0
    assert group_count(db) == before + len(ids)
    names = {g.favorite_group_id: g.name for g in get_favorite_groups(db, USER)}
    assert [names[i] for i in ids] == ["g0", "g1", "g2"]


def test_limit_is_enforced(db):
    ensure_default_favorite_group(db, USER)
    for n in range(MAX_GROUP_PER_USER - 1):
        add_favorite_group(db, USER, f"g{n}")
    assert len(get_favorite_groups(db, USER)) == MAX_GROUP_PER_USER
    with pytest.raises(Forbidden) as info:
        add_favorite_group(db, USER, "overflow")
    assert info.value.message == "收藏夹数量已达上限"


def test_deleted_id_is_reused_at_limit(db):
    ensure_default_favorite_group(db, USER)
    for n in range(MAX_GROUP_PER_USER - 1):
        add_favorite_group(db, USER, f"g{n}")
    delete_favorite_group(db, USER, 3)
    assert add_favorite_group(db, USER, "again") == 3
    groups = {g.favorite_group_id: g for g in get_favorite_groups(db, USER)}
    assert groups[3].name == "again"
    assert groups[3].deleted is False


def test_delete_default_is_forbidden(db):
    with pytest.raises(Forbidden) as info:
        delete_favorite_group(db, USER, 0)
    assert info.value.message == "默认收藏夹不可删除"


def test_delete_group_with_content_is_forbidden(db):
    group_id = add_favorite_group(db, USER, "full")
    with db.transaction() as conn:
        conn.execute(
            "INSERT INTO user_favorites (user_id, favorite_group_id, hole_id, created_at)"
            " VALUES (?, ?, ?, ?)",
            (USER, group_id, 5, "2024-01-01T00:00:00+00:00"),
        )
    with pytest.raises(Forbidden) as info:
        delete_favorite_group(db, USER, group_id)
    assert info.value.message == "收藏夹中存在收藏内容，请先移除"


def test_delete_missing_group_is_not_found(db):
    with pytest.raises(NotFound):
        delete_favorite_group(db, USER, 4)


def test_delete_hides_group_and_decrements_count(db):
    group_id = add_favorite_group(db, USER, "temp")
    before = group_count(db)
    delete_favorite_group(db, USER, group_id)
    assert group_id not in [g.favorite_group_id for g in get_favorite_groups(db, USER)]
    assert group_count(db) < before + 1


def test_modify_renames_and_ignores_empty_name(db):
    group_id = add_favorite_group(db, USER, "old")
    modify_favorite_group(db, USER, group_id, "new")
    modify_favorite_group(db, USER, group_id, "")
    names = {g.favorite_group_id: g.name for g in get_favorite_groups(db, USER)}
    assert names[group_id] == "new"


def test_order_descending(db):
    ids = [add_favorite_group(db, USER, f"g{n}") for n in range(3)]
    ordered = get_favorite_groups(db, USER, "favorite_group_id desc")
    result = [g.favorite_group_id for g in ordered]
    assert result == sorted(result, reverse=True)
    assert set(ids) <= set(result)


def test_invalid_order_is_rejected(db):
    with pytest.raises(BadRequest):
        get_favorite_groups(db, USER, "id; DROP TABLE favorite_groups")
import sqlite3

import pytest

from treehole.anonynames import find_or_generate_anonyname, new_anonyname
from treehole.db import Database
from treehole.names import CHARSET, RANDOM_CODE_LENGTH, NameGenerator

NAMES = ["alice", "bob", "carol"]


@pytest.fixture
def db():
    database = Database(":memory:")
    yield database
    database.close()


@pytest.fixture
def generator():
    return NameGenerator(NAMES)


def test_new_anonyname_is_stored(db, generator):
    name = new_anonyname(db, 1, 10, generator)
    assert name in NAMES
    assert find_or_generate_anonyname(db, 1, 10, generator) == name


def test_new_anonyname_twice_fails(db, generator):
    new_anonyname(db, 1, 10, generator)
    with pytest.raises(sqlite3.IntegrityError):
        new_anonyname(db, 1, 10, generator)


def test_find_or_generate_is_stable(db, generator):
    first = find_or_generate_anonyname(db, 1, 10, generator)
    assert find_or_generate_anonyname(db, 1, 10, generator) == first


def test_names_are_unique_within_hole(db, generator):
    names = [find_or_generate_anonyname(db, 1, user, generator) for user in range(3)]
    assert sorted(names) == sorted(NAMES)


def test_holes_are_independent(db):
    generator = NameGenerator(["only"])
    assert find_or_generate_anonyname(db, 1, 10, generator) == "only"
    assert find_or_generate_anonyname(db, 2, 10, generator) == "only"


def test_exhausted_list_gets_suffix(db):
    generator = NameGenerator(["only"])
    first = find_or_generate_anonyname(db, 1, 10, generator)
    second = find_or_generate_anonyname(db, 1, 11, generator)
    assert first == "only"
    prefix, _, code = second.partition("_")
    assert prefix == "only"
    assert len(code) == RANDOM_CODE_LENGTH
    assert all(char in CHARSET for char in code)
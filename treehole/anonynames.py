"""Anonymous names of users within a hole."""

from __future__ import annotations

from .db import Database
from .names import NameGenerator


def new_anonyname(db: Database, hole_id: int, user_id: int, generator: NameGenerator) -> str:
    """Give the user a fresh random name in the hole and store it."""
    name = generator.random_name()
    with db.transaction() as conn:
        conn.execute(
            "INSERT INTO anonyname_mapping (hole_id, user_id, anonyname) VALUES (?, ?, ?)",
            (hole_id, user_id, name),
        )
    return name


def find_or_generate_anonyname(
    db: Database, hole_id: int, user_id: int, generator: NameGenerator
) -> str:
    """Return the user's name in the hole, generating an unused one if needed."""
    with db.transaction() as conn:
        row = conn.execute(
            "SELECT anonyname FROM anonyname_mapping WHERE hole_id = ? AND user_id = ?",
            (hole_id, user_id),
        ).fetchone()
        if row is not None:
            return row[0]
        taken = [
            name
            for (name,) in conn.execute(
                "SELECT anonyname FROM anonyname_mapping WHERE hole_id = ? ORDER BY anonyname",
                (hole_id,),
            )
        ]
        name = generator.generate(taken)
        conn.execute(
            "INSERT INTO anonyname_mapping (hole_id, user_id, anonyname) VALUES (?, ?, ?)",
            (hole_id, user_id, name),
        )
    return name
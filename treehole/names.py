"""Anonymous name generation."""

from __future__ import annotations

import random
from collections.abc import Iterable, Mapping

CHARSET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"
RANDOM_CODE_LENGTH = 6


class NameGenerator:
    """Draws anonymous names from a fixed name list."""

    def __init__(
        self,
        names: Iterable[str],
        fuzz_mapping: Mapping[str, str] | None = None,
        fuzz: bool = False,
    ) -> None:
        self.names = sorted(names)
        if not self.names:
            raise ValueError("name list is empty")
        self.fuzz_mapping = dict(fuzz_mapping or {})
        self.fuzz = fuzz
        self._rng = random.Random()

    def random_name(self) -> str:
        return self._rng.choice(self.names)

    def _random_code(self) -> str:
        return "".join(self._rng.choice(CHARSET) for _ in range(RANDOM_CODE_LENGTH))

    def generate(self, taken: Iterable[str]) -> str:
        """Return a name not present in ``taken``."""
        taken = set(taken)
        length = len(self.names)
        if len(taken) < length >> 3:
            while True:
                name = self.random_name()
                if name not in taken:
                    return name
        if len(taken) < length:
            available = [name for name in self.names if name not in taken]
            return self._rng.choice(available)
        while True:
            name = f"{self.random_name()}_{self._random_code()}"
            if name not in taken:
                return name

    def fuzz_name(self, name: str) -> str:
        """Map a name to its fuzzed form when fuzzing is enabled."""
        if not self.fuzz:
            return name
        return self.fuzz_mapping.get(name, name)
from __future__ import annotations

from typing import FrozenSet, Set


def _key(username: str) -> str:
    if not isinstance(username, str):
        return ""
    return username.strip().casefold()


class PlayerTracker:
    """
    Case-insensitive set of online players.

    Joins and leaves are idempotent: a repeated join (in any casing) or a
    leave for an unknown name leaves the count untouched.
    """

    def __init__(self) -> None:
        self._players: Set[str] = set()

    @property
    def count(self) -> int:
        return len(self._players)

    @property
    def players(self) -> FrozenSet[str]:
        return frozenset(self._players)

    def increment(self, username: str) -> int:
        key = _key(username)
        if key:
            self._players.add(key)
        return self.count

    def decrement(self, username: str) -> int:
        key = _key(username)
        if key:
            self._players.discard(key)
        return self.count

    def reset(self) -> None:
        self._players.clear()

    def __contains__(self, username: object) -> bool:
        return isinstance(username, str) and _key(username) in self._players

    def __len__(self) -> int:
        return self.count

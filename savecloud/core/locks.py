"""Per-game locks serializing operations on the same (shop, object_id) pair."""

from __future__ import annotations

import asyncio


class GameLocks:
    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def lock(self, shop: str, object_id: str) -> asyncio.Lock:
        return self._locks.setdefault(f"{shop}:{object_id}", asyncio.Lock())

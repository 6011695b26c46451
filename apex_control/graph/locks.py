"""Per-key asyncio locks.

Operations on the same run or entity must not interleave. ``KeyedLocks``
hands out one ``asyncio.Lock`` per key; different keys never contend.

An entry lives only while someone holds or waits for its key, so the map
stays as small as the set of keys in use.

The locks are not re-entrant: a public operation acquires its key once and
calls lock-free internals from there.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict


@dataclass
class _Slot:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class KeyedLocks:
    """Reference-counted ``asyncio.Lock`` per string key."""

    def __init__(self) -> None:
        self._slots: Dict[str, _Slot] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        """
        Hold the lock for ``key`` for the duration of the block.

        Args:
            key: Namespaced key such as ``"run:<id>"`` or ``"entity:<id>"``.
        """
        slot = self._slots.get(key)
        if slot is None:
            slot = self._slots[key] = _Slot()
        # Counted before acquiring so a waiter keeps the slot alive.
        slot.users += 1
        try:
            async with slot.lock:
                yield
        finally:
            slot.users -= 1
            if slot.users == 0:
                del self._slots[key]

    def locked(self, key: str) -> bool:
        slot = self._slots.get(key)
        return slot is not None and slot.lock.locked()

    def __len__(self) -> int:
        return len(self._slots)


def run_key(run_id: str) -> str:
    return f"run:{run_id}"


def entity_key(entity_id: str) -> str:
    return f"entity:{entity_id}"


def object_type_key(object_type: str) -> str:
    return f"object-type:{object_type}"

"""Replay cache behind ``ControlPlaneService`` idempotency keys.

Results are kept per ``(operation, key)`` slot in insertion order. The cache
is bounded two ways:

- ``max_size``: when full, the oldest result is evicted first (0 = unlimited).
- ``ttl``: a result older than this many seconds is treated as absent and
  dropped (None = no expiry).

A key replayed after its result was evicted or expired executes again.
Callers serialize access per slot; the cache itself takes no locks.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Optional, Tuple

from .core.config import IdempotencyConfig

logger = logging.getLogger(__name__)

Slot = Tuple[str, str]


class ReplayCache:
    """Bounded FIFO map of idempotent call results.

    Attributes:
        max_size: Maximum number of results kept (0 = unlimited)
        ttl: Seconds a result stays replayable (None = no expiry)
    """

    def __init__(
        self,
        max_size: int = 0,
        ttl: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_size = max_size
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[Slot, Tuple[float, Any]] = {}

    @classmethod
    def from_config(cls, config: Optional[IdempotencyConfig] = None) -> "ReplayCache":
        cfg = config or IdempotencyConfig()
        return cls(max_size=cfg.max_size, ttl=cfg.ttl_seconds)

    def lookup(self, slot: Slot) -> Tuple[bool, Any]:
        """Return ``(True, result)`` for a live slot, ``(False, None)`` otherwise."""
        entry = self._entries.get(slot)
        if entry is None:
            return False, None
        stored_at, result = entry
        if self._is_expired(stored_at):
            del self._entries[slot]
            return False, None
        return True, result

    def store(self, slot: Slot, result: Any) -> None:
        self._purge_expired()
        self._entries.pop(slot, None)
        if self.max_size > 0:
            while len(self._entries) >= self.max_size:
                oldest = next(iter(self._entries))
                del self._entries[oldest]
                logger.debug(f"Evicted idempotency result for {oldest[0]}:{oldest[1]}")
        self._entries[slot] = (self._clock(), result)

    def _is_expired(self, stored_at: float) -> bool:
        return self.ttl is not None and self._clock() - stored_at >= self.ttl

    def _purge_expired(self) -> None:
        # Insertion order is also age order, so stop at the first live entry.
        while self._entries:
            oldest = next(iter(self._entries))
            if not self._is_expired(self._entries[oldest][0]):
                break
            del self._entries[oldest]

    def __len__(self) -> int:
        return len(self._entries)

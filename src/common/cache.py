from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional


DEFAULT_DECRYPT_TTL_SECONDS = 30.0


@dataclass
class DecryptCacheEntry:
    value: int
    timestamp: float  # clock reading at insertion


class DecryptCache:
    """
    In-memory cache of decrypted values keyed by ciphertext handle.

    - Entries are usable only while `now - timestamp < ttl`; an expired entry
      is a miss and is dropped on lookup.
    - Keys are normalized to lowercase hex so `0xAB..` and `0xab..` share a slot.
    - `put` is write-once per fresh key: the first successful decrypt wins,
      later writes for a still-fresh key are ignored. Stale keys are overwritten.

    Not persisted; the owning session manager clears it on invalidation.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_DECRYPT_TTL_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        self._ttl = ttl_seconds
        self._clock = clock
        self._data: Dict[str, DecryptCacheEntry] = {}

    @property
    def ttl(self) -> float:
        return self._ttl

    @staticmethod
    def _key(handle: str) -> str:
        return handle.lower()

    def _is_fresh(self, entry: DecryptCacheEntry, now: float) -> bool:
        return now - entry.timestamp < self._ttl

    def get(self, handle: str) -> Optional[int]:
        key = self._key(handle)
        entry = self._data.get(key)
        if entry is None:
            return None
        if not self._is_fresh(entry, self._clock()):
            del self._data[key]
            return None
        return entry.value

    def put(self, handle: str, value: int) -> bool:
        """Insert `value`; returns False when a fresh entry already existed."""
        key = self._key(handle)
        now = self._clock()
        existing = self._data.get(key)
        if existing is not None and self._is_fresh(existing, now):
            return False
        self._data[key] = DecryptCacheEntry(value=value, timestamp=now)
        return True

    def clear(self) -> None:
        self._data.clear()

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, handle: object) -> bool:
        return isinstance(handle, str) and self.get(handle) is not None

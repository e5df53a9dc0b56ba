"""
API Key Pool for Rate-Limited Services

Holds an ordered set of interchangeable API keys for one upstream service
and picks one per call, steering away from keys that keep failing.

Key health:
- HEALTHY: fewer than MAX_ERRORS_PER_KEY recorded failures
- EXHAUSTED: at or above the threshold, skipped while a healthy key exists

A success fully rehabilitates a key. When every key is exhausted the pool
forgives all of them at once so callers always get a key back.

Pools are built per request batch and thrown away afterwards. There is no
locking, so a pool must not be shared between concurrent rotation loops.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

logger = logging.getLogger(__name__)

MAX_ERRORS_PER_KEY = 3


def mask_key(key: str) -> str:
    """Short, log-safe form of a key."""
    if len(key) <= 4:
        return "****"
    return f"...{key[-4:]}"


@dataclass(frozen=True)
class KeyPoolStats:
    """Point-in-time snapshot of a pool."""
    total_keys: int
    current_index: Optional[int]
    usage_count: dict[str, int] = field(default_factory=dict)
    error_count: dict[str, int] = field(default_factory=dict)


class KeyPool:
    """
    Round-robin API key pool with per-key failure tracking.

    Usage:
        pool = KeyPool(["key-a", "key-b", "key-c"])

        key = pool.get_current_key()
        try:
            await call_api(key)
            pool.record_success(key)
        except Exception:
            pool.record_failure(key)
            key = pool.rotate()
    """

    def __init__(self, keys: Iterable[str], max_errors: int = MAX_ERRORS_PER_KEY):
        self.keys: list[str] = [k for k in keys if k and k.strip()]
        self.max_errors = max_errors
        self.current_index = 0
        self._usage_count: dict[str, int] = {}
        self._error_count: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self.keys)

    @property
    def is_empty(self) -> bool:
        return not self.keys

    def is_healthy(self, key: str) -> bool:
        return self._error_count.get(key, 0) < self.max_errors

    def get_current_key(self) -> Optional[str]:
        """
        Return the key at the cursor, or the next healthy one after it.

        The cursor only moves when a healthy key is found further along.
        If none is healthy, all error counts are cleared and the key at the
        cursor is returned.

        Returns:
            A key from the pool, or None if the pool holds no keys
        """
        if not self.keys:
            return None

        total = len(self.keys)
        for offset in range(total):
            index = (self.current_index + offset) % total
            if self.is_healthy(self.keys[index]):
                self.current_index = index
                return self.keys[index]

        logger.warning(
            f"All {total} API keys exhausted, resetting error counts"
        )
        self._error_count.clear()
        return self.keys[self.current_index]

    def rotate(self) -> Optional[str]:
        """Advance the cursor by one and return the next usable key."""
        if not self.keys:
            return None

        self.current_index = (self.current_index + 1) % len(self.keys)
        logger.debug(f"Rotated to key index {self.current_index}")
        return self.get_current_key()

    def record_success(self, key: str):
        """Count a successful call and clear the key's failures."""
        self._usage_count[key] = self._usage_count.get(key, 0) + 1
        self._error_count[key] = 0

    def record_failure(self, key: str):
        """
        Count a failed call against a key.

        Reaching the threshold rotates the cursor straight away. Unknown keys
        are counted like any other and never raise.
        """
        errors = self._error_count.get(key, 0) + 1
        self._error_count[key] = errors

        if errors >= self.max_errors:
            logger.info(
                f"API key {mask_key(key)} exhausted "
                f"({errors}/{self.max_errors} errors), rotating"
            )
            self.rotate()

    def get_stats(self) -> KeyPoolStats:
        """Snapshot of counters; safe to hold on to."""
        return KeyPoolStats(
            total_keys=len(self.keys),
            current_index=self.current_index if self.keys else None,
            usage_count=dict(self._usage_count),
            error_count=dict(self._error_count),
        )

    def get_status(self) -> dict:
        """Get current status as a dictionary, with keys masked."""
        stats = self.get_stats()
        return {
            "total_keys": stats.total_keys,
            "current_index": stats.current_index,
            "usage_count": {mask_key(k): v for k, v in stats.usage_count.items()},
            "error_count": {mask_key(k): v for k, v in stats.error_count.items()},
        }

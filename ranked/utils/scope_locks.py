"""
Per-scope and per-match serialization for rating writes.

PlayerRating updates are read-modify-write, so two passes over the same scope
must not interleave. Each scope gets its own asyncio.Lock; passes over
disjoint scopes run in parallel.

Apply and revert of one match also serialize on a match lock, so a revert
never observes a cascade halfway through. Lock order is always match lock
first, then at most one scope lock at a time, which rules out lock-ordering
deadlocks.
"""

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Dict

from ranked.data_models.scope import ScopeKey
from ranked.utils.logger import setup_logger

logger = setup_logger(__name__)


class ScopeLockRegistry:
    """Hands out one lock per scope storage key and one per match."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._registry_lock = asyncio.Lock()

    async def _get_lock(self, key: str) -> asyncio.Lock:
        async with self._registry_lock:
            return self._locks[key]

    @asynccontextmanager
    async def _hold(self, key: str):
        lock = await self._get_lock(key)
        if lock.locked():
            logger.debug(f"Waiting for lock {key}")
        async with lock:
            yield

    def hold(self, scope: ScopeKey):
        """Hold the scope's lock for the duration of one pass."""
        return self._hold(scope.storage_key)

    def hold_match(self, match_id: int):
        """Hold a match's lock across a whole apply or revert."""
        return self._hold(f"match:{match_id}")

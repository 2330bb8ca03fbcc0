"""
Guide Cache
Durable key -> guide store with a reserve/commit protocol so at most one
generation runs per key at a time.

Entry lifecycle per key:
    absent --reserve--> PENDING --commit--> COMMITTED
                           |
                           +----abort----> absent

PENDING entries are invisible to get(). COMMITTED entries are never overwritten.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional

from models.guide import CacheEntry, CacheState, RepairGuide, ReserveResult

logger = logging.getLogger(__name__)


class GuideCache(ABC):
    @abstractmethod
    async def get(self, key: str) -> Optional[RepairGuide]:
        """Committed guide for key, or None. Pending entries are a miss."""

    @abstractmethod
    async def state(self, key: str) -> Optional[CacheState]:
        """Current state of key, None when absent"""

    @abstractmethod
    async def reserve(self, key: str) -> ReserveResult:
        """Atomically move key from absent to PENDING"""

    @abstractmethod
    async def commit(
        self, key: str, guide: RepairGuide, aliases: Iterable[str] = ()
    ) -> RepairGuide:
        """
        Move key from PENDING to COMMITTED and store the guide under every
        alias that is not already committed. All-or-nothing.

        Returns the guide now stored under guide.id, which is an earlier
        guide when that id was already committed.
        """

    @abstractmethod
    async def abort(self, key: str) -> None:
        """Drop a PENDING reservation. No-op for committed or absent keys."""


class InMemoryGuideCache(GuideCache):
    """Process-local store. Unbounded, append-only."""

    def __init__(self):
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[RepairGuide]:
        async with self._lock:
            entry = self._entries.get(key)
            if entry and entry.state == CacheState.COMMITTED:
                return entry.guide
            return None

    async def state(self, key: str) -> Optional[CacheState]:
        async with self._lock:
            entry = self._entries.get(key)
            return entry.state if entry else None

    async def reserve(self, key: str) -> ReserveResult:
        async with self._lock:
            if key in self._entries:
                return ReserveResult.ALREADY_RESERVED
            self._entries[key] = CacheEntry(
                state=CacheState.PENDING, reserved_at=datetime.now(timezone.utc)
            )
            return ReserveResult.ACQUIRED

    async def commit(
        self, key: str, guide: RepairGuide, aliases: Iterable[str] = ()
    ) -> RepairGuide:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.state != CacheState.PENDING:
                raise RuntimeError(f"commit without reservation for {key}")

            existing = self._entries.get(guide.id)
            if existing and existing.state == CacheState.COMMITTED:
                stored = existing.guide
            else:
                stored = guide.model_copy(deep=True)

            self._entries[key] = CacheEntry(state=CacheState.COMMITTED, guide=stored)
            for alias in {guide.id, *aliases}:
                if alias == key:
                    continue
                current = self._entries.get(alias)
                if current and current.state == CacheState.COMMITTED:
                    continue
                self._entries[alias] = CacheEntry(
                    state=CacheState.COMMITTED, guide=stored
                )

            logger.info(f"Committed guide {stored.id} under {key}")
            return stored

    async def abort(self, key: str) -> None:
        async with self._lock:
            entry = self._entries.get(key)
            if entry and entry.state == CacheState.PENDING:
                del self._entries[key]
                logger.info(f"Released reservation {key}")

"""
Usage Gate
Free-tier metering for guide generation.

Per subject (user id or anonymous session id):
  - premium subjects are unmetered and never counted
  - metered subjects may start a NEW generation while generations_used < limit
  - re-visiting a guide the subject already generated is always allowed
The counter moves only when the pipeline reports a genuinely new generation.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from models.guide import GateDecision, HistoryItem, PaywallSignal, UsageRecord, UsageStatus

logger = logging.getLogger(__name__)


def period_key(now: datetime) -> str:
    """Calendar month, e.g. "2026-02" """
    return f"{now.year}-{now.month:02d}"


class UsageStore(ABC):
    @abstractmethod
    async def read(self, subject_id: str, period: str) -> UsageRecord:
        """Record for (subject, period); a zero record when none exists yet"""

    @abstractmethod
    async def atomic_increment(self, subject_id: str, period: str) -> UsageRecord:
        """Increment generations_used without a read-then-write race"""

    @abstractmethod
    async def record_view(
        self, subject_id: str, keys: Iterable[str], item: HistoryItem
    ) -> None:
        """Remember that subject has the guide behind keys"""

    @abstractmethod
    async def has_viewed(self, subject_id: str, keys: Iterable[str]) -> bool:
        pass

    @abstractmethod
    async def history(self, subject_id: str) -> List[HistoryItem]:
        """Guides the subject generated, newest first"""


class InMemoryUsageStore(UsageStore):
    def __init__(self):
        self._counts: Dict[Tuple[str, str], int] = {}
        self._seen: Dict[str, Set[str]] = {}
        self._history: Dict[str, "OrderedDict[str, HistoryItem]"] = {}
        self._lock = asyncio.Lock()

    async def read(self, subject_id: str, period: str) -> UsageRecord:
        async with self._lock:
            used = self._counts.get((subject_id, period), 0)
        return UsageRecord(subject_id=subject_id, period_key=period, generations_used=used)

    async def atomic_increment(self, subject_id: str, period: str) -> UsageRecord:
        async with self._lock:
            used = self._counts.get((subject_id, period), 0) + 1
            self._counts[(subject_id, period)] = used
        return UsageRecord(subject_id=subject_id, period_key=period, generations_used=used)

    async def record_view(
        self, subject_id: str, keys: Iterable[str], item: HistoryItem
    ) -> None:
        async with self._lock:
            self._seen.setdefault(subject_id, set()).update(keys)
            items = self._history.setdefault(subject_id, OrderedDict())
            items.pop(item.id, None)
            items[item.id] = item

    async def has_viewed(self, subject_id: str, keys: Iterable[str]) -> bool:
        async with self._lock:
            seen = self._seen.get(subject_id, set())
            return any(k in seen for k in keys)

    async def history(self, subject_id: str) -> List[HistoryItem]:
        async with self._lock:
            items = self._history.get(subject_id, OrderedDict())
            return list(reversed(items.values()))


class SubscriptionLookup(ABC):
    @abstractmethod
    async def is_premium(self, subject_id: str) -> bool:
        pass


class StaticSubscriptions(SubscriptionLookup):
    """Premium ids from configuration"""

    def __init__(self, premium_ids: Optional[Iterable[str]] = None):
        self.premium_ids = set(premium_ids or [])

    async def is_premium(self, subject_id: str) -> bool:
        return subject_id in self.premium_ids


class UsageGate:
    def __init__(
        self,
        store: UsageStore,
        subscriptions: SubscriptionLookup,
        limit: int = 1,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.subscriptions = subscriptions
        self.limit = limit
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def current_period(self) -> str:
        return period_key(self._clock())

    async def check_and_maybe_reserve(
        self, subject_id: str, guide_keys: Iterable[str] = ()
    ) -> GateDecision:
        """Decide whether subject may start a generation. Never increments."""
        if await self.subscriptions.is_premium(subject_id):
            return GateDecision.ALLOWED

        keys = list(guide_keys)
        if keys and await self.store.has_viewed(subject_id, keys):
            return GateDecision.ALLOWED

        record = await self.store.read(subject_id, self.current_period())
        if record.generations_used < self.limit:
            return GateDecision.ALLOWED

        logger.info(
            f"Quota exhausted for {subject_id}: {record.generations_used}/{self.limit}"
        )
        return GateDecision.DENIED

    async def charge(self, subject_id: str) -> Optional[UsageRecord]:
        """Count one new generation. Premium subjects are never counted."""
        if await self.subscriptions.is_premium(subject_id):
            return None
        record = await self.store.atomic_increment(subject_id, self.current_period())
        logger.info(
            f"Charged {subject_id}: {record.generations_used}/{self.limit} "
            f"for {record.period_key}"
        )
        return record

    async def record_view(
        self, subject_id: str, guide_keys: Iterable[str], item: HistoryItem
    ) -> None:
        await self.store.record_view(subject_id, list(guide_keys), item)

    async def status(self, subject_id: str) -> UsageStatus:
        record = await self.store.read(subject_id, self.current_period())
        if await self.subscriptions.is_premium(subject_id):
            return UsageStatus(premium=True, used=record.generations_used)
        return UsageStatus(
            premium=False,
            used=record.generations_used,
            limit=self.limit,
            remaining=max(self.limit - record.generations_used, 0),
        )

    async def paywall(self, subject_id: str) -> PaywallSignal:
        record = await self.store.read(subject_id, self.current_period())
        return PaywallSignal(
            subject_id=subject_id, used=record.generations_used, limit=self.limit
        )

    async def history(self, subject_id: str) -> List[HistoryItem]:
        return await self.store.history(subject_id)

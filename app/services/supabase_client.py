"""
Supabase-backed guide cache, usage store and subscription lookup.

Tables and functions are defined in scripts/guide_schema.sql:
  repair_guides   one row per cache key (task key or canonical id)
  guide_usage     one row per (subject, month)
  guide_views     guides each subject has opened, for history and re-visits
  subscriptions   tier/status per user
Atomic steps (reserve, commit, increment) rely on the primary key and on
SQL functions so no read-then-write happens in Python.

supabase-py is synchronous, so every execute() runs on the default executor
and the event loop keeps serving other requests.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, List, Optional

from postgrest.exceptions import APIError
from supabase import create_client, Client

from config import Settings
from models.guide import CacheState, HistoryItem, RepairGuide, ReserveResult, UsageRecord
from services.guide_cache import GuideCache
from services.usage_gate import SubscriptionLookup, UsageStore

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"
PREMIUM_TIERS = {"pro", "pro_plus"}
ACTIVE_STATUSES = {"active", "trialing"}


def get_supabase_client(config: Settings) -> Client:
    return create_client(config.supabase_url, config.supabase_key)


async def run_query(query) -> Any:
    """Execute a built postgrest query off the event loop"""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, query.execute)


class SupabaseGuideCache(GuideCache):
    """
    Pending rows older than lease_seconds belong to a worker that died before
    commit or abort; reserve() clears them before claiming the key.
    """

    TABLE = "repair_guides"

    def __init__(self, client: Client, lease_seconds: float = 600.0):
        self.client = client
        self.lease_seconds = lease_seconds

    async def _row(self, key: str) -> Optional[dict]:
        result = await run_query(
            self.client.table(self.TABLE)
            .select("cache_key,state,guide")
            .eq("cache_key", key)
            .limit(1)
        )
        if result.data and len(result.data) > 0:
            return result.data[0]
        return None

    async def get(self, key: str) -> Optional[RepairGuide]:
        row = await self._row(key)
        if row and row.get("state") == CacheState.COMMITTED.value and row.get("guide"):
            return RepairGuide.model_validate(row["guide"])
        return None

    async def state(self, key: str) -> Optional[CacheState]:
        row = await self._row(key)
        return CacheState(row["state"]) if row else None

    async def reserve(self, key: str) -> ReserveResult:
        now = datetime.now(timezone.utc)
        cutoff = now - timedelta(seconds=self.lease_seconds)

        expired = await run_query(
            self.client.table(self.TABLE)
            .delete()
            .eq("cache_key", key)
            .eq("state", CacheState.PENDING.value)
            .lt("reserved_at", cutoff.isoformat())
        )
        if expired.data:
            logger.warning(f"Expired stale reservation {key} (older than {self.lease_seconds}s)")

        try:
            await run_query(
                self.client.table(self.TABLE).insert(
                    {
                        "cache_key": key,
                        "state": CacheState.PENDING.value,
                        "reserved_at": now.isoformat(),
                    }
                )
            )
        except APIError as e:
            if e.code == UNIQUE_VIOLATION:
                return ReserveResult.ALREADY_RESERVED
            raise
        return ReserveResult.ACQUIRED

    async def commit(
        self, key: str, guide: RepairGuide, aliases: Iterable[str] = ()
    ) -> RepairGuide:
        # Single transaction: pending -> committed for key, insert-if-absent for aliases
        result = await run_query(
            self.client.rpc(
                "commit_repair_guide",
                {
                    "p_cache_key": key,
                    "p_guide": guide.model_dump(mode="json", by_alias=True),
                    "p_aliases": sorted({guide.id, *aliases} - {key}),
                },
            )
        )

        if not result.data:
            raise RuntimeError(f"commit_repair_guide returned nothing for {key}")
        logger.info(f"Committed guide {guide.id} under {key}")
        return RepairGuide.model_validate(result.data)

    async def abort(self, key: str) -> None:
        await run_query(
            self.client.table(self.TABLE)
            .delete()
            .eq("cache_key", key)
            .eq("state", CacheState.PENDING.value)
        )


class SupabaseUsageStore(UsageStore):
    def __init__(self, client: Client):
        self.client = client

    async def read(self, subject_id: str, period: str) -> UsageRecord:
        result = await run_query(
            self.client.table("guide_usage")
            .select("generations_used")
            .eq("subject_id", subject_id)
            .eq("period_key", period)
            .limit(1)
        )
        used = result.data[0]["generations_used"] if result.data else 0
        return UsageRecord(subject_id=subject_id, period_key=period, generations_used=used)

    async def atomic_increment(self, subject_id: str, period: str) -> UsageRecord:
        result = await run_query(
            self.client.rpc(
                "increment_guide_usage",
                {"p_subject_id": subject_id, "p_period_key": period},
            )
        )
        return UsageRecord(
            subject_id=subject_id, period_key=period, generations_used=int(result.data)
        )

    async def record_view(
        self, subject_id: str, keys: Iterable[str], item: HistoryItem
    ) -> None:
        rows = [
            {
                "subject_id": subject_id,
                "view_key": key,
                "guide_id": item.id,
                "title": item.title,
                "vehicle": item.vehicle,
                "viewed_at": item.timestamp.isoformat(),
            }
            for key in keys
        ]
        if rows:
            await run_query(
                self.client.table("guide_views").upsert(rows, on_conflict="subject_id,view_key")
            )

    async def has_viewed(self, subject_id: str, keys: Iterable[str]) -> bool:
        keys = list(keys)
        if not keys:
            return False
        result = await run_query(
            self.client.table("guide_views")
            .select("view_key")
            .eq("subject_id", subject_id)
            .in_("view_key", keys)
            .limit(1)
        )
        return bool(result.data)

    async def history(self, subject_id: str) -> List[HistoryItem]:
        result = await run_query(
            self.client.table("guide_views")
            .select("guide_id,title,vehicle,viewed_at")
            .eq("subject_id", subject_id)
            .order("viewed_at", desc=True)
        )

        items = []
        seen = set()
        for row in result.data or []:
            if row["guide_id"] in seen:
                continue
            seen.add(row["guide_id"])
            items.append(
                HistoryItem(
                    id=row["guide_id"],
                    title=row["title"],
                    vehicle=row["vehicle"],
                    timestamp=row["viewed_at"],
                )
            )
        return items


class SupabaseSubscriptions(SubscriptionLookup):
    def __init__(self, client: Client, extra_premium_ids: Optional[Iterable[str]] = None):
        self.client = client
        self.extra_premium_ids = set(extra_premium_ids or [])

    async def is_premium(self, subject_id: str) -> bool:
        if subject_id in self.extra_premium_ids:
            return True

        result = await run_query(
            self.client.table("subscriptions")
            .select("tier,status")
            .eq("user_id", subject_id)
            .limit(1)
        )
        if not result.data:
            return False
        row = result.data[0]
        return row.get("tier") in PREMIUM_TIERS and row.get("status") in ACTIVE_STATUSES

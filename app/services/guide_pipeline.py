"""
Guide Pipeline
(vehicle, task, subject) -> RepairGuide | PaywallSignal

    validate -> cache lookup (task key) -> usage check -> reserve task key
      -> generate text (bounded retry) -> illustrate steps (sequential)
      -> commit under task key + canonical id -> charge usage -> guide

InvalidRequest and GenerationFailure are raised; a paywall is returned.
A reservation is always released unless the guide was committed.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, List, Optional, TypeVar, Union

from config import Settings, settings as default_settings
from exceptions import (
    GenerationFailure,
    GenerationInProgress,
    GuideServiceError,
    StoreFailure,
)
from models.guide import (
    GateDecision,
    HistoryItem,
    PaywallSignal,
    RepairGuide,
    ReserveResult,
    UsageStatus,
)
from models.vehicle import Vehicle
from services.guide_cache import GuideCache, InMemoryGuideCache
from services.guide_generator import TextGuideGenerator
from services.guide_ids import canonical_id, task_key
from services.retry import RetryOrchestrator
from services.step_illustrator import OpenRouterImageBackend, StepImageSynthesizer
from services.usage_gate import (
    InMemoryUsageStore,
    StaticSubscriptions,
    UsageGate,
)
from services.vehicle_validator import VehicleValidator, vehicle_validator

logger = logging.getLogger(__name__)

T = TypeVar("T")


class GuidePipeline:
    def __init__(
        self,
        validator: VehicleValidator,
        cache: GuideCache,
        usage_gate: UsageGate,
        generator: TextGuideGenerator,
        illustrator: StepImageSynthesizer,
        retry: RetryOrchestrator,
        coalesce_wait_seconds: float = default_settings.coalesce_wait,
        coalesce_poll_seconds: float = 0.5,
    ):
        self.validator = validator
        self.cache = cache
        self.usage_gate = usage_gate
        self.generator = generator
        self.illustrator = illustrator
        self.retry = retry
        self.coalesce_wait_seconds = coalesce_wait_seconds
        self.coalesce_poll_seconds = coalesce_poll_seconds

    async def produce_guide(
        self, vehicle: Vehicle, task: str, subject_id: str
    ) -> Union[RepairGuide, PaywallSignal]:
        self.validator.validate(vehicle, task)

        key = task_key(vehicle, task)
        cached = await self._store("cache lookup", self.cache.get(key))
        if cached:
            logger.info(f"Cache hit {key} -> {cached.id}")
            await self._record_view(subject_id, [key, cached.id], cached)
            return cached

        decision = await self._store(
            "usage check", self.usage_gate.check_and_maybe_reserve(subject_id, [key])
        )
        if decision == GateDecision.DENIED:
            return await self._store("usage read", self.usage_gate.paywall(subject_id))

        reservation = await self._store("reserve", self.cache.reserve(key))
        if reservation == ReserveResult.ALREADY_RESERVED:
            logger.info(f"{key} already generating, waiting for it")
            guide = await self._await_in_flight(key)
            await self._record_view(subject_id, [key, guide.id], guide)
            return guide

        committed = False
        try:
            built, is_new = await self._generate(vehicle, task)
            guide = await self._store(
                "commit", self.cache.commit(key, built, aliases=[built.id])
            )
            committed = True
        finally:
            if not committed:
                await self._release(key)

        # A concurrent generation may have committed the same id first
        if is_new and guide != built:
            logger.info(f"{guide.id} was committed by another request, not charging {subject_id}")
            is_new = False

        if is_new:
            await self._store("usage charge", self.usage_gate.charge(subject_id))
        await self._record_view(subject_id, [key, guide.id], guide)
        return guide

    async def get_cached(self, guide_id: str) -> Optional[RepairGuide]:
        """Replay a committed guide. Never generates, never charges."""
        return await self._store("cache lookup", self.cache.get(guide_id))

    async def history(self, subject_id: str) -> List[HistoryItem]:
        return await self._store("history", self.usage_gate.history(subject_id))

    async def usage_status(self, subject_id: str) -> UsageStatus:
        return await self._store("usage read", self.usage_gate.status(subject_id))

    async def _generate(self, vehicle: Vehicle, task: str) -> tuple[RepairGuide, bool]:
        """Returns (guide, is_new). is_new is False when the title resolved to a committed guide."""
        try:
            body = await self.retry.with_retry(
                lambda: self.generator.generate(vehicle, task),
                label=f"Guide text for {vehicle.label} / {task}",
            )
        except GuideServiceError:
            raise
        except Exception as e:
            raise GenerationFailure(details={"cause": repr(e)}) from e

        guide_id = canonical_id(vehicle, body.title)
        existing = await self._store("cache lookup", self.cache.get(guide_id))
        if existing:
            logger.info(f"'{body.title}' resolved to existing guide {guide_id}")
            return existing, False

        steps = await self.illustrator.illustrate(body.steps)
        guide = RepairGuide(
            id=guide_id,
            title=body.title,
            vehicle_label=body.vehicle_label or vehicle.label,
            safety_warnings=body.safety_warnings,
            tools=body.tools,
            parts=body.parts,
            steps=steps,
            sources=body.sources,
        )
        return guide, True

    async def _await_in_flight(self, key: str) -> RepairGuide:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.coalesce_wait_seconds

        while True:
            guide = await self._store("cache lookup", self.cache.get(key))
            if guide:
                return guide
            if await self._store("cache lookup", self.cache.state(key)) is None:
                raise GenerationFailure(
                    "The generation this request was waiting on failed, please try again."
                )
            if loop.time() >= deadline:
                raise GenerationInProgress(key)
            await asyncio.sleep(self.coalesce_poll_seconds)

    async def _release(self, key: str) -> None:
        try:
            await self.cache.abort(key)
        except Exception as e:
            logger.error(f"Failed to release reservation {key}: {e}")

    async def _record_view(self, subject_id: str, keys: List[str], guide: RepairGuide) -> None:
        item = HistoryItem(
            id=guide.id,
            title=guide.title,
            vehicle=guide.vehicle_label,
            timestamp=datetime.now(timezone.utc),
        )
        await self._store("history write", self.usage_gate.record_view(subject_id, keys, item))

    async def _store(self, operation: str, call: Awaitable[T]) -> T:
        try:
            return await call
        except GuideServiceError:
            raise
        except Exception as e:
            logger.error(f"Store failure during {operation}: {e}")
            raise StoreFailure(operation, e) from e


_guide_pipeline: Optional[GuidePipeline] = None


def build_pipeline(config: Settings) -> GuidePipeline:
    if config.guide_store == "supabase":
        from services.supabase_client import (
            SupabaseGuideCache,
            SupabaseSubscriptions,
            SupabaseUsageStore,
            get_supabase_client,
        )

        client = get_supabase_client(config)
        cache: GuideCache = SupabaseGuideCache(client, lease_seconds=config.reservation_lease)
        usage_gate = UsageGate(
            SupabaseUsageStore(client),
            SupabaseSubscriptions(client, extra_premium_ids=config.premium_subject_ids),
            limit=config.free_guide_limit,
        )
    else:
        cache = InMemoryGuideCache()
        usage_gate = UsageGate(
            InMemoryUsageStore(),
            StaticSubscriptions(config.premium_subject_ids),
            limit=config.free_guide_limit,
        )

    return GuidePipeline(
        validator=vehicle_validator,
        cache=cache,
        usage_gate=usage_gate,
        generator=TextGuideGenerator(
            model=config.text_model,
            timeout=config.text_timeout_seconds,
            web_grounding=config.web_grounding,
        ),
        illustrator=StepImageSynthesizer(
            OpenRouterImageBackend(
                model=config.image_model, timeout=config.image_timeout_seconds
            ),
            timeout=config.image_timeout_seconds,
        ),
        retry=RetryOrchestrator(
            max_attempts=config.text_max_attempts,
            delay_seconds=config.retry_delay_seconds,
            attempt_timeout=config.text_timeout_seconds,
        ),
        coalesce_wait_seconds=config.coalesce_wait,
        coalesce_poll_seconds=config.coalesce_poll_seconds,
    )


def get_guide_pipeline() -> GuidePipeline:
    """Get the process-wide pipeline, built from settings on first use."""
    global _guide_pipeline
    if _guide_pipeline is None:
        _guide_pipeline = build_pipeline(default_settings)
    return _guide_pipeline

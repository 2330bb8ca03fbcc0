"""End-to-end pipeline behavior against fake text and image backends."""

import asyncio

import httpx
import pytest

from conftest import FakeImageBackend, FakeTextClient, build_test_pipeline, make_guide_json
from exceptions import (
    ErrorCode,
    GenerationFailure,
    InvalidRequest,
    StoreFailure,
)
from models.guide import PaywallSignal, RepairGuide
from models.vehicle import Vehicle
from services.guide_ids import task_key


@pytest.mark.asyncio
async def test_brake_job_scenario(pipeline, civic, text_client):
    guide = await pipeline.produce_guide(civic, "replace front brakes", "anon-1")

    assert isinstance(guide, RepairGuide)
    assert guide.id == "2015-honda-civic-front-brake-pad-replacement"
    assert [s.step for s in guide.steps] == [1, 2, 3, 4]
    assert len(text_client.calls) == 1
    assert (await pipeline.usage_status("anon-1")).used == 1


@pytest.mark.asyncio
async def test_repeat_request_is_idempotent_and_charged_once(civic, text_client, image_backend):
    pipeline = build_test_pipeline(text_client, image_backend, limit=5)

    first = await pipeline.produce_guide(civic, "replace front brakes", "anon-1")
    second = await pipeline.produce_guide(civic, "replace front brakes", "anon-1")

    assert first.id == second.id
    assert len(text_client.calls) == 1
    assert len(image_backend.prompts) == 4
    assert (await pipeline.usage_status("anon-1")).used == 1


@pytest.mark.asyncio
async def test_invalid_vehicle_makes_no_backend_calls(pipeline, text_client, image_backend):
    vehicle = Vehicle(year="1960", make="Honda", model="Civic")

    with pytest.raises(InvalidRequest) as exc:
        await pipeline.produce_guide(vehicle, "replace front brakes", "anon-1")

    assert exc.value.error_code == ErrorCode.INVALID_VEHICLE
    assert text_client.calls == []
    assert image_backend.prompts == []


@pytest.mark.asyncio
async def test_empty_task_makes_no_backend_calls(pipeline, civic, text_client):
    with pytest.raises(InvalidRequest) as exc:
        await pipeline.produce_guide(civic, "   ", "anon-1")
    assert exc.value.error_code == ErrorCode.EMPTY_TASK
    assert text_client.calls == []


@pytest.mark.asyncio
async def test_step_order_holds_when_images_fail(civic):
    text_client = FakeTextClient([make_guide_json(step_count=6)])
    image_backend = FakeImageBackend(fail_calls={3})
    pipeline = build_test_pipeline(text_client, image_backend)

    guide = await pipeline.produce_guide(civic, "replace front brakes", "anon-1")

    assert len(guide.steps) == 6
    assert all(s.step == i + 1 for i, s in enumerate(guide.steps))
    assert guide.steps[2].image_url is None
    assert all(guide.steps[i].image_url for i in (0, 1, 3, 4, 5))


@pytest.mark.asyncio
async def test_all_images_failing_still_returns_guide(civic):
    pipeline = build_test_pipeline(image_backend=FakeImageBackend(fail_calls=range(1, 10)))
    guide = await pipeline.produce_guide(civic, "replace front brakes", "anon-1")
    assert len(guide.steps) == 4
    assert all(s.image_url is None for s in guide.steps)


@pytest.mark.asyncio
async def test_quota_semantics(civic):
    text_client = FakeTextClient(
        [make_guide_json("Front Brake Pad Replacement"), make_guide_json("Engine Oil Change")]
    )
    pipeline = build_test_pipeline(text_client, limit=1)

    first = await pipeline.produce_guide(civic, "replace front brakes", "anon-1")
    assert isinstance(first, RepairGuide)

    denied = await pipeline.produce_guide(civic, "oil change", "anon-1")
    assert isinstance(denied, PaywallSignal)
    assert (denied.used, denied.limit) == (1, 1)

    again = await pipeline.produce_guide(civic, "replace front brakes", "anon-1")
    assert again.id == first.id

    assert len(text_client.calls) == 1
    assert (await pipeline.usage_status("anon-1")).used == 1


@pytest.mark.asyncio
async def test_cached_guide_is_free_for_other_subjects(pipeline, civic):
    await pipeline.produce_guide(civic, "replace front brakes", "anon-1")
    guide = await pipeline.produce_guide(civic, "replace front brakes", "anon-2")

    assert isinstance(guide, RepairGuide)
    assert (await pipeline.usage_status("anon-2")).used == 0


@pytest.mark.asyncio
async def test_premium_subject_is_never_paywalled(civic):
    text_client = FakeTextClient(
        [make_guide_json("Front Brake Pad Replacement"), make_guide_json("Engine Oil Change")]
    )
    pipeline = build_test_pipeline(text_client, limit=1, premium={"pro-user"})

    await pipeline.produce_guide(civic, "replace front brakes", "pro-user")
    second = await pipeline.produce_guide(civic, "oil change", "pro-user")

    assert isinstance(second, RepairGuide)
    assert (await pipeline.usage_status("pro-user")).used == 0


@pytest.mark.asyncio
async def test_retry_bound_and_reservation_released(civic):
    text_client = FakeTextClient([httpx.ConnectError("backend down")])
    pipeline = build_test_pipeline(text_client, max_attempts=2)

    with pytest.raises(GenerationFailure) as exc:
        await pipeline.produce_guide(civic, "replace front brakes", "anon-1")

    assert exc.value.status_code == 503
    assert len(text_client.calls) == 2
    assert await pipeline.cache.state(task_key(civic, "replace front brakes")) is None
    assert (await pipeline.usage_status("anon-1")).used == 0


@pytest.mark.asyncio
async def test_malformed_output_is_retried_then_recovers(civic):
    text_client = FakeTextClient(["```json\n{\"title\": \"\"}\n```", make_guide_json()])
    pipeline = build_test_pipeline(text_client, max_attempts=2)

    guide = await pipeline.produce_guide(civic, "replace front brakes", "anon-1")

    assert guide.title == "Front Brake Pad Replacement"
    assert len(text_client.calls) == 2


@pytest.mark.asyncio
async def test_failed_generation_can_be_retried_cleanly(civic):
    text_client = FakeTextClient([RuntimeError("boom"), RuntimeError("boom"), make_guide_json()])
    pipeline = build_test_pipeline(text_client, max_attempts=2)

    with pytest.raises(GenerationFailure):
        await pipeline.produce_guide(civic, "replace front brakes", "anon-1")

    guide = await pipeline.produce_guide(civic, "replace front brakes", "anon-1")
    assert guide.id == "2015-honda-civic-front-brake-pad-replacement"
    assert (await pipeline.usage_status("anon-1")).used == 1


@pytest.mark.asyncio
async def test_concurrent_identical_requests_generate_once(civic):
    text_client = FakeTextClient(delay=0.05)
    pipeline = build_test_pipeline(text_client, limit=5)

    first, second = await asyncio.gather(
        pipeline.produce_guide(civic, "replace front brakes", "anon-1"),
        pipeline.produce_guide(civic, "replace front brakes", "anon-1"),
    )

    assert len(text_client.calls) == 1
    assert first.id == second.id == "2015-honda-civic-front-brake-pad-replacement"
    assert (await pipeline.usage_status("anon-1")).used == 1


@pytest.mark.asyncio
async def test_waiting_caller_sees_failure_of_in_flight_generation(civic):
    text_client = FakeTextClient([RuntimeError("boom")], delay=0.05)
    pipeline = build_test_pipeline(text_client, max_attempts=1)

    results = await asyncio.gather(
        pipeline.produce_guide(civic, "replace front brakes", "anon-1"),
        pipeline.produce_guide(civic, "replace front brakes", "anon-2"),
        return_exceptions=True,
    )

    assert all(isinstance(r, GenerationFailure) for r in results)
    assert len(text_client.calls) == 1


@pytest.mark.asyncio
async def test_different_wording_with_same_title_reuses_guide(civic):
    image_backend = FakeImageBackend()
    pipeline = build_test_pipeline(image_backend=image_backend, limit=5)

    first = await pipeline.produce_guide(civic, "replace front brakes", "anon-1")
    second = await pipeline.produce_guide(civic, "front brake pads worn out", "anon-1")

    assert second.id == first.id
    assert len(image_backend.prompts) == 4
    assert (await pipeline.usage_status("anon-1")).used == 1


@pytest.mark.asyncio
async def test_get_cached_replays_without_generation(pipeline, civic, text_client):
    assert await pipeline.get_cached("2015-honda-civic-front-brake-pad-replacement") is None

    guide = await pipeline.produce_guide(civic, "replace front brakes", "anon-1")
    replay = await pipeline.get_cached(guide.id)

    assert replay.id == guide.id
    assert len(text_client.calls) == 1
    assert (await pipeline.usage_status("anon-1")).used == 1


@pytest.mark.asyncio
async def test_history_lists_generated_guides(pipeline, civic):
    await pipeline.produce_guide(civic, "replace front brakes", "anon-1")
    history = await pipeline.history("anon-1")

    assert [h.id for h in history] == ["2015-honda-civic-front-brake-pad-replacement"]
    assert history[0].vehicle == "2015 Honda Civic"


@pytest.mark.asyncio
async def test_store_outage_is_fatal_and_nothing_is_generated(pipeline, civic, text_client):
    async def broken(key):
        raise ConnectionError("database unreachable")

    pipeline.cache.get = broken

    with pytest.raises(StoreFailure):
        await pipeline.produce_guide(civic, "replace front brakes", "anon-1")
    assert text_client.calls == []


@pytest.mark.asyncio
async def test_build_pipeline_from_settings():
    from config import Settings
    from services.guide_cache import InMemoryGuideCache
    from services.guide_pipeline import build_pipeline
    from services.vehicle_validator import vehicle_validator

    config = Settings(guide_store="memory", premium_subjects="pro-1, pro-2", free_guide_limit=3)
    pipeline = build_pipeline(config)

    assert isinstance(pipeline.cache, InMemoryGuideCache)
    assert pipeline.usage_gate.limit == 3
    assert pipeline.retry.max_attempts == config.text_max_attempts
    assert (await pipeline.usage_status("pro-2")).premium is True
    assert pipeline.validator is vehicle_validator
    assert pipeline.coalesce_wait_seconds == config.generation_budget_seconds


@pytest.mark.asyncio
async def test_differently_spelled_vehicle_hits_the_same_guide(civic):
    text_client = FakeTextClient()
    pipeline = build_test_pipeline(text_client, limit=1)

    first = await pipeline.produce_guide(civic, "replace front brakes", "anon-1")
    second = await pipeline.produce_guide(
        Vehicle(year="2015", make="honda ", model="Civic "), "replace front brakes", "anon-1"
    )

    assert isinstance(second, RepairGuide)
    assert second.id == first.id
    assert len(text_client.calls) == 1
    assert (await pipeline.usage_status("anon-1")).used == 1


@pytest.mark.asyncio
async def test_model_slug_and_display_name_share_one_generation():
    text_client = FakeTextClient([make_guide_json("Oil Change")])
    pipeline = build_test_pipeline(text_client, limit=5)

    first = await pipeline.produce_guide(
        Vehicle(year="2015", make="Honda", model="CR-V"), "oil change", "anon-1"
    )
    second = await pipeline.produce_guide(
        Vehicle(year="2015", make="honda", model="cr_v"), "oil-change", "anon-1"
    )

    assert first.id == second.id == "2015-honda-cr-v-oil-change"
    assert len(text_client.calls) == 1


@pytest.mark.asyncio
async def test_losing_a_commit_race_is_not_charged(civic):
    text_client = FakeTextClient(delay=0.05)
    image_backend = FakeImageBackend(delay=0.01)
    pipeline = build_test_pipeline(text_client, image_backend, limit=5)

    first, second = await asyncio.gather(
        pipeline.produce_guide(civic, "replace front brakes", "anon-1"),
        pipeline.produce_guide(civic, "front brake pads worn out", "anon-2"),
    )

    assert len(text_client.calls) == 2
    assert first == second
    used = [(await pipeline.usage_status(s)).used for s in ("anon-1", "anon-2")]
    assert sorted(used) == [0, 1]

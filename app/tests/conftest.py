"""Shared fakes for the guide pipeline tests: no network, no Supabase."""

import asyncio
import json
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from models.vehicle import Vehicle
from services.guide_cache import InMemoryGuideCache
from services.guide_generator import TextGuideGenerator
from services.guide_pipeline import GuidePipeline
from services.retry import RetryOrchestrator
from services.step_illustrator import ImageBackend, StepImageSynthesizer
from services.usage_gate import InMemoryUsageStore, StaticSubscriptions, UsageGate
from services.vehicle_validator import VehicleValidator


def make_guide_json(title="Front Brake Pad Replacement", step_count=4, fenced=False):
    body = {
        "title": title,
        "vehicle": "2015 Honda Civic",
        "safetyWarnings": ["Never work under a car supported only by a jack."],
        "tools": ["Lug wrench", "Jack stands", "C-clamp"],
        "parts": ["Front Brake Pads (Ceramic)"],
        "steps": [
            {
                "step": i,
                "instruction": f"Instruction {i}",
                "imagePrompt": f"Line drawing for step {i}",
            }
            for i in range(1, step_count + 1)
        ],
    }
    text = json.dumps(body)
    if fenced:
        text = f"```json\n{text}\n```"
    return text


class FakeTextClient:
    """
    Stands in for OpenRouterClient.chat_message.
    Each call pops the next scripted response; exceptions are raised.
    """

    def __init__(self, responses=None, delay=0.0, annotations=None):
        self.responses = list(responses or [make_guide_json()])
        self.delay = delay
        self.annotations = annotations or []
        self.calls = []

    async def chat_message(self, model, messages, timeout=45.0, **kwargs):
        self.calls.append({"model": model, "messages": messages, "kwargs": kwargs})
        if self.delay:
            await asyncio.sleep(self.delay)

        response = self.responses[0] if len(self.responses) == 1 else self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return {"content": response, "annotations": self.annotations}, 0.0


class FakeImageBackend(ImageBackend):
    """Fails on the listed 1-based call numbers, tracks calls in flight."""

    def __init__(self, fail_calls=(), empty_calls=(), slow_calls=(), delay=0.0):
        self.fail_calls = set(fail_calls)
        self.empty_calls = set(empty_calls)
        self.slow_calls = set(slow_calls)
        self.delay = delay
        self.prompts = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def generate(self, prompt):
        self.prompts.append(prompt)
        call = len(self.prompts)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if call in self.slow_calls:
                await asyncio.sleep(10)
            elif self.delay:
                await asyncio.sleep(self.delay)
            if call in self.fail_calls:
                raise RuntimeError("image backend unavailable")
            if call in self.empty_calls:
                return ""
            return f"https://images.test/step-{call}.png"
        finally:
            self.in_flight -= 1


def build_test_pipeline(
    text_client=None,
    image_backend=None,
    limit=1,
    premium=(),
    max_attempts=2,
    image_timeout=1.0,
):
    text_client = text_client or FakeTextClient()
    image_backend = image_backend or FakeImageBackend()
    cache = InMemoryGuideCache()
    usage_gate = UsageGate(InMemoryUsageStore(), StaticSubscriptions(premium), limit=limit)
    return GuidePipeline(
        validator=VehicleValidator(),
        cache=cache,
        usage_gate=usage_gate,
        generator=TextGuideGenerator(client=text_client, model="test-model", timeout=5),
        illustrator=StepImageSynthesizer(image_backend, timeout=image_timeout),
        retry=RetryOrchestrator(max_attempts=max_attempts, delay_seconds=0),
        coalesce_wait_seconds=5,
        coalesce_poll_seconds=0.01,
    )


@pytest.fixture
def civic():
    return Vehicle(year="2015", make="Honda", model="Civic")


@pytest.fixture
def text_client():
    return FakeTextClient()


@pytest.fixture
def image_backend():
    return FakeImageBackend()


@pytest.fixture
def pipeline(text_client, image_backend):
    return build_test_pipeline(text_client, image_backend)

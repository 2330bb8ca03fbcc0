"""
Step Image Synthesizer
Illustrates repair steps one at a time, in step order.

The image backend is rate limited per caller, so this stage has exactly one
worker: it consumes the ordered step list and emits an ordered step list.
A failed or timed-out illustration leaves that step without an image and
the worker moves on. No retries here.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from exceptions import ImageFailure
from models.guide import RepairStep
from services.openrouter import OpenRouterClient, openrouter

logger = logging.getLogger(__name__)

ILLUSTRATION_STYLE = (
    "Technical line art illustration, automotive service manual style. "
    "Clean, black and white, minimalist, white background."
)


class ImageBackend(ABC):
    @abstractmethod
    async def generate(self, prompt: str) -> str:
        """Image URL (or data URL) for prompt, "" when nothing was produced"""


class OpenRouterImageBackend(ImageBackend):
    def __init__(
        self,
        client: Optional[OpenRouterClient] = None,
        model: str = "google/gemini-2.5-flash-image-preview",
        timeout: float = 30.0,
    ):
        self.client = client or openrouter
        self.model = model
        self.timeout = timeout

    async def generate(self, prompt: str) -> str:
        return await self.client.generate_image(self.model, prompt, timeout=self.timeout)


class StepImageSynthesizer:
    def __init__(self, backend: ImageBackend, timeout: float = 30.0):
        self.backend = backend
        self.timeout = timeout

    async def illustrate(self, steps: List[RepairStep]) -> List[RepairStep]:
        queue: "asyncio.Queue[RepairStep]" = asyncio.Queue()
        for step in sorted(steps, key=lambda s: s.step):
            queue.put_nowait(step)

        illustrated: List[RepairStep] = []

        async def worker() -> None:
            while not queue.empty():
                step = queue.get_nowait()
                illustrated.append(await self._illustrate_step(step))
                queue.task_done()

        await worker()

        failed = sum(1 for s in illustrated if not s.image_url)
        if failed:
            logger.warning(f"{failed}/{len(illustrated)} steps left without an illustration")
        return illustrated

    async def _illustrate_step(self, step: RepairStep) -> RepairStep:
        try:
            url = await asyncio.wait_for(
                self.backend.generate(f"{ILLUSTRATION_STYLE} {step.image_prompt}"),
                timeout=self.timeout,
            )
            if not url:
                raise ImageFailure(step.step, "empty result")
        except asyncio.TimeoutError:
            logger.warning(f"Image for step {step.step} timed out after {self.timeout}s")
            return step.model_copy(update={"image_url": None})
        except Exception as e:
            logger.warning(f"Image for step {step.step} failed: {e}")
            return step.model_copy(update={"image_url": None})

        return step.model_copy(update={"image_url": url})

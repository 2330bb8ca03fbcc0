import httpx
import logging
from typing import Any, Optional
from config import settings

logger = logging.getLogger(__name__)


class OpenRouterClient:
    BASE_URL = "https://openrouter.ai/api/v1"

    # Rough per-call estimates, used for cost logging only
    COSTS = {
        "google/gemini-2.5-flash": 0.00030,
        "google/gemini-2.5-flash-image-preview": 0.03900,
    }

    def __init__(self, api_key: Optional[str] = None, site_url: Optional[str] = None):
        self.api_key = api_key if api_key is not None else settings.openrouter_api_key
        self.headers = {
            "Authorization": f"Bearer {self.api_key}",
            "HTTP-Referer": site_url or settings.site_url or "",
            "X-Title": "SpotOn Auto Repair Guides",
        }

    async def chat_message(
        self,
        model: str,
        messages: list[dict],
        timeout: float = 45.0,
        temperature: float = 0.4,
        max_tokens: int = 4000,
        **kwargs,
    ) -> tuple[dict[str, Any], float]:
        """
        Returns: (assistant message dict, estimated_cost)

        The message dict carries "content" plus optional "annotations"
        (web citations) and "images" (image modality output).
        """
        payload = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
            **kwargs,
        }

        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.post(
                f"{self.BASE_URL}/chat/completions", headers=self.headers, json=payload
            )
            response.raise_for_status()
            data = response.json()

        choices = data.get("choices") or []
        if not choices:
            raise ValueError(f"No choices returned by {model}")

        message = choices[0].get("message") or {}
        cost = self.COSTS.get(model, 0.0)
        return message, cost

    async def generate_image(self, model: str, prompt: str, timeout: float = 30.0) -> str:
        """
        Returns a data URL for the first generated image, or "" when the
        model answered without one.
        """
        message, _ = await self.chat_message(
            model,
            [{"role": "user", "content": prompt}],
            timeout=timeout,
            modalities=["image", "text"],
        )

        for image in message.get("images") or []:
            url = (image.get("image_url") or {}).get("url")
            if url:
                return url
        return ""


openrouter = OpenRouterClient()

"""
Text Guide Generator
One text-model call per request -> validated GuideBody.

The model's JSON is untrusted: fences are stripped, the payload is parsed
with pydantic and then checked against the guide structure. Anything that
fails is a MalformedGuide, never passed through.
"""

import json
import logging
import re
from typing import Any, Optional

from pydantic import ValidationError

from exceptions import MalformedGuide
from models.guide import GuideBody, GuideSource, RepairStep
from models.vehicle import Vehicle
from services.openrouter import OpenRouterClient, openrouter

logger = logging.getLogger(__name__)

# charm.li mirrors factory service manuals for these model years
CHARM_LI_YEARS = (1982, 2013)

GUIDE_JSON_SHAPE = """{
  "title": "A concise title for the repair job",
  "vehicle": "Year Make Model",
  "safetyWarnings": ["crucial safety warning", ...],
  "tools": ["tool", ...],
  "parts": ["specific searchable part name", ...],
  "steps": [
    {"step": 1, "instruction": "detailed instruction", "imagePrompt": "illustration prompt"},
    ...
  ]
}"""

_FENCE_START = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_END = re.compile(r"\s*```$")


def strip_code_fences(text: str) -> str:
    """Remove a markdown ```json ... ``` wrapper if the model added one"""
    text = (text or "").strip()
    text = _FENCE_START.sub("", text)
    text = _FENCE_END.sub("", text)
    return text.strip()


def grounding_instruction(vehicle: Vehicle, task: str) -> str:
    year = vehicle.year_number or 0
    if CHARM_LI_YEARS[0] <= year <= CHARM_LI_YEARS[1]:
        return (
            f'CRITICAL: Search "site:charm.li {vehicle.year} {vehicle.make} '
            f'{vehicle.model} {task}". This targets a factory-level service manual '
            "database. Base ALL repair steps, torque specs, and fluid capacities on "
            "the factory manual content retrieved."
        )
    return (
        "Crucially, use professional OEM service manuals or technical forums for "
        "this specific vehicle. The steps must be factual and reflect "
        "industry-standard repair methods."
    )


def build_guide_prompt(vehicle: Vehicle, task: str) -> str:
    return f"""Generate a detailed, step-by-step DIY repair guide for the following task: "{task}" on a {vehicle.label}. {grounding_instruction(vehicle, task)}

The guide should be easy for a shade-tree mechanic to follow, using clear "IF this, THEN that" logic where applicable for diagnostics or complex steps.

Include essential safety warnings, a list of required tools, and a list of necessary parts.
IMPORTANT: For the 'parts' list, provide specific, searchable product names (e.g., "Front Brake Pads (Ceramic)" instead of just "Brake Pads").

For each step, provide a clear instruction and a descriptive prompt for an AI image generator to create a technical illustration for that step. The image prompt should describe a clean, minimalist, black and white line drawing in an automotive service manual style.

Number steps 1, 2, 3, ... in the order they must be performed.

Respond with ONLY a JSON object of this shape:
{GUIDE_JSON_SHAPE}"""


def check_guide_structure(body: GuideBody) -> None:
    if not body.title.strip():
        raise MalformedGuide("title is empty")
    if not body.steps:
        raise MalformedGuide("guide has no steps")

    for index, step in enumerate(body.steps, start=1):
        if step.step != index:
            raise MalformedGuide(
                f"step numbers must run 1..{len(body.steps)} in order, got {step.step} at position {index}"
            )
        if not step.instruction.strip():
            raise MalformedGuide(f"step {step.step} has no instruction")
        if not step.image_prompt.strip():
            raise MalformedGuide(f"step {step.step} has no image prompt")


def parse_guide_body(text: str, vehicle: Vehicle) -> GuideBody:
    """Parse raw model output into a GuideBody or raise MalformedGuide"""
    cleaned = strip_code_fences(text)
    if not cleaned:
        raise MalformedGuide("empty response")

    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise MalformedGuide(f"invalid JSON ({e.msg})") from e

    if not isinstance(data, dict):
        raise MalformedGuide("response is not a JSON object")

    try:
        body = GuideBody.model_validate(data)
    except ValidationError as e:
        raise MalformedGuide(f"schema mismatch ({e.error_count()} errors)") from e

    check_guide_structure(body)

    # Image URLs are ours to fill in, never the model's
    steps = [
        RepairStep(step=s.step, instruction=s.instruction.strip(), image_prompt=s.image_prompt.strip())
        for s in body.steps
    ]
    return body.model_copy(
        update={
            "title": body.title.strip(),
            "vehicle_label": body.vehicle_label.strip() or vehicle.label,
            "steps": steps,
        }
    )


def extract_sources(message: dict[str, Any]) -> list[GuideSource]:
    """Web citations attached to the completion; entries without uri+title are dropped"""
    sources = []
    seen = set()
    for annotation in message.get("annotations") or []:
        if annotation.get("type") != "url_citation":
            continue
        citation = annotation.get("url_citation") or {}
        uri, title = citation.get("url"), citation.get("title")
        if uri and title and uri not in seen:
            seen.add(uri)
            sources.append(GuideSource(uri=uri, title=title))
    return sources


class TextGuideGenerator:
    def __init__(
        self,
        client: Optional[OpenRouterClient] = None,
        model: str = "google/gemini-2.5-flash",
        timeout: float = 45.0,
        web_grounding: bool = True,
    ):
        self.client = client or openrouter
        self.model = model
        self.timeout = timeout
        self.web_grounding = web_grounding

    async def generate(self, vehicle: Vehicle, task: str) -> GuideBody:
        """
        Single backend call. Raises MalformedGuide for bad output; transport
        errors propagate as-is for the retry layer.
        """
        extra: dict[str, Any] = {"response_format": {"type": "json_object"}}
        if self.web_grounding:
            extra["plugins"] = [{"id": "web"}]

        message, cost = await self.client.chat_message(
            self.model,
            [
                {
                    "role": "system",
                    "content": "You are an ASE-certified master technician writing service manual procedures.",
                },
                {"role": "user", "content": build_guide_prompt(vehicle, task)},
            ],
            timeout=self.timeout,
            **extra,
        )

        body = parse_guide_body(message.get("content") or "", vehicle)
        sources = extract_sources(message)
        if sources:
            logger.info(f"Guide grounded in {len(sources)} sources")
        logger.info(
            f"Generated '{body.title}' ({len(body.steps)} steps) for {vehicle.label}, cost ${cost}"
        )
        return body.model_copy(update={"sources": sources})

"""
Guide ID Generator - deterministic cache keys for repair guides.

Two keys per guide:
  - task key, known before generation: {year}-{make}-{model}-{task}
  - canonical id, known after generation: {year}-{make}-{model}-{title}

Both are lowercased with whitespace runs collapsed to hyphens, so
"2015 Honda Civic" + "Front Brake Pad Replacement" ->
"2015-honda-civic-front-brake-pad-replacement".
"""

import re

from models.vehicle import Vehicle
from services.vehicle_catalog import normalize_name

TASK_KEY_PREFIX = "task:"


def _hyphenate(text: str) -> str:
    return re.sub(r"\s+", "-", text.strip().lower())


def _vehicle_prefix(vehicle: Vehicle) -> str:
    """Same token the catalog matches on, so "cr_v" and "CR-V " share keys"""
    return "-".join(
        [str(vehicle.year).strip(), normalize_name(vehicle.make), normalize_name(vehicle.model)]
    )


def canonical_id(vehicle: Vehicle, title: str) -> str:
    """Post-generation id, used as the committed guide id"""
    return _hyphenate(f"{_vehicle_prefix(vehicle)}-{title.strip()}")


def task_key(vehicle: Vehicle, task: str) -> str:
    """
    Pre-generation dedup key for a (vehicle, task) fingerprint.

    Prefixed so a task phrasing can never collide with a title-derived id.
    URL-slug tasks ("brake-pad-replacement") and free text
    ("brake pad replacement") resolve to the same key.
    """
    task_text = re.sub(r"[\s\-_]+", " ", task).strip()
    return TASK_KEY_PREFIX + _hyphenate(f"{_vehicle_prefix(vehicle)}-{task_text}")

from pydantic import BaseModel, Field, PositiveInt
from typing import Optional
from datetime import datetime
from enum import Enum


class GuideSource(BaseModel):
    """A web page the text backend grounded the guide on"""

    uri: str
    title: str


class RepairStep(BaseModel):
    step: PositiveInt
    instruction: str
    image_prompt: str = Field(..., alias="imagePrompt")
    image_url: Optional[str] = Field(default=None, alias="imageUrl")

    class Config:
        frozen = True
        populate_by_name = True


class GuideBody(BaseModel):
    """Structured guide text as returned by the text backend, before ids and images."""

    title: str
    vehicle_label: str = Field(default="", alias="vehicle")
    safety_warnings: list[str] = Field(default_factory=list, alias="safetyWarnings")
    tools: list[str] = Field(default_factory=list)
    parts: list[str] = Field(default_factory=list)
    steps: list[RepairStep]
    sources: list[GuideSource] = Field(default_factory=list)

    class Config:
        populate_by_name = True


class RepairGuide(BaseModel):
    id: str
    title: str
    vehicle_label: str = Field(..., alias="vehicle")
    safety_warnings: list[str] = Field(default_factory=list, alias="safetyWarnings")
    tools: list[str] = Field(default_factory=list)
    parts: list[str] = Field(default_factory=list)
    steps: list[RepairStep]
    sources: list[GuideSource] = Field(default_factory=list)

    class Config:
        frozen = True
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "id": "2015-honda-civic-front-brake-pad-replacement",
                "title": "Front Brake Pad Replacement",
                "vehicle": "2015 Honda Civic",
                "safetyWarnings": ["Support the vehicle on jack stands"],
                "tools": ["Lug wrench", "C-clamp"],
                "parts": ["Front Brake Pads (Ceramic)"],
                "steps": [
                    {
                        "step": 1,
                        "instruction": "Loosen the lug nuts and raise the front of the car.",
                        "imagePrompt": "Line drawing of a car on jack stands",
                        "imageUrl": "data:image/png;base64,...",
                    }
                ],
                "sources": [],
            }
        }


class CacheState(str, Enum):
    PENDING = "pending"
    COMMITTED = "committed"


class CacheEntry(BaseModel):
    state: CacheState
    guide: Optional[RepairGuide] = None
    reserved_at: Optional[datetime] = None


class ReserveResult(str, Enum):
    ACQUIRED = "acquired"
    ALREADY_RESERVED = "already_reserved"


class UsageRecord(BaseModel):
    subject_id: str
    period_key: str
    generations_used: int = 0


class GateDecision(str, Enum):
    ALLOWED = "allowed"
    DENIED = "denied"


class PaywallSignal(BaseModel):
    """Valid request, free quota exhausted. Not an error."""

    subject_id: str
    used: int
    limit: int
    message: str = "You've used your free repair guide for this month. Upgrade to keep generating guides."


class UsageStatus(BaseModel):
    premium: bool
    used: int
    limit: Optional[int] = None
    remaining: Optional[int] = None


class HistoryItem(BaseModel):
    id: str
    title: str
    vehicle: str
    timestamp: datetime

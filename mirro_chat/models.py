from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


Intent = Literal[
    "wardrobe_query",
    "outfit_generation",
    "color_analysis",
    "body_type_advice",
    "event_styling",
    "shopping_request",
    "general_chat",
]

INTENTS: tuple[str, ...] = (
    "wardrobe_query",
    "outfit_generation",
    "color_analysis",
    "body_type_advice",
    "event_styling",
    "shopping_request",
    "general_chat",
)


class ChatTurn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    role: Literal["user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    user_id: str = Field(alias="userId")
    message: str
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    history: list[ChatTurn] = Field(default_factory=list)

    @field_validator("user_id", "message")
    @classmethod
    def _strip_required(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("must be non-empty")
        return stripped

    @field_validator("history", mode="before")
    @classmethod
    def _none_history(cls, value: Any) -> Any:
        return [] if value is None else value


class WardrobeItem(BaseModel):
    model_config = ConfigDict(extra="allow", frozen=True)

    id: str = ""
    name: str = "Unknown item"
    category: str = "Other"
    color: Optional[str] = None
    item_type: Optional[str] = None
    fit: Optional[str] = None
    fabric: Optional[str] = None
    pattern_type: Optional[str] = None
    formality: Optional[str] = None
    occasions: list[str] = Field(default_factory=list)
    seasons: list[str] = Field(default_factory=list)
    image_url: Optional[str] = None


class WardrobeContext(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    user_id: str = Field(alias="userId")
    body_type: Optional[str] = None
    gender: Optional[str] = None
    style_keywords: list[str] = Field(default_factory=list)
    preferred_colors: list[str] = Field(default_factory=list)
    avoided_colors: list[str] = Field(default_factory=list)
    wardrobe_items: tuple[WardrobeItem, ...] = ()

    @classmethod
    def empty(cls, user_id: str) -> "WardrobeContext":
        return cls(user_id=user_id)

    def to_prompt_json(self) -> str:
        data = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        return json.dumps(data, indent=2, ensure_ascii=False)


class ColorResult(BaseModel):
    model_config = ConfigDict(extra="ignore")

    color_direction: str
    combos: list[str] = Field(default_factory=list)
    reason: str = ""


class SilhouetteResult(BaseModel):
    model_config = ConfigDict(extra="ignore")

    silhouette_verdict: str
    structures: list[str] = Field(default_factory=list)
    notes: str = ""


class BodyTypeResult(BaseModel):
    model_config = ConfigDict(extra="ignore")

    body_type: str
    rules: list[str] = Field(default_factory=list)
    application: str = ""


class ReasoningSummary(BaseModel):
    model_config = ConfigDict(extra="ignore")

    summary: str
    core_outfit_direction: str = ""
    key_color_approach: str = ""
    key_silhouette_rules: list[str] = Field(default_factory=list)
    key_body_type_adaptations: list[str] = Field(default_factory=list)


class Outfit(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str = ""
    items: list[str] = Field(default_factory=list)
    why_it_works: str = ""


class FinalResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    message: str
    outfits: list[Outfit] = Field(default_factory=list)
    extra_tips: list[str] = Field(default_factory=list)


class ChatResponse(BaseModel):
    intent: Intent
    message: str
    outfits: Optional[list[Outfit]] = None
    extra_tips: Optional[list[str]] = None
    debug: Optional[dict[str, Any]] = None


class StageTiming(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    duration_ms: int = Field(alias="durationMs")
    success: bool
    failure_reason: Optional[str] = Field(default=None, alias="failureReason")
    fallback: bool = False


class LogEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId")
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    message: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    intent: Optional[str] = None
    stage_timings: dict[str, StageTiming] = Field(default_factory=dict, alias="stageTimings")
    errors: list[str] = Field(default_factory=list)
    fallbacks_used: list[str] = Field(default_factory=list, alias="fallbacksUsed")
    total_duration_ms: Optional[int] = Field(default=None, alias="totalDurationMs")
    success: bool = True
    final_response: Optional[dict[str, Any]] = Field(default=None, alias="finalResponse")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

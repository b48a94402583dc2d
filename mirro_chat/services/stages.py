from __future__ import annotations

import json
import logging
from typing import Protocol, Sequence, TypeVar

from pydantic import BaseModel, ValidationError

from mirro_chat.models import (
    INTENTS,
    BodyTypeResult,
    ChatTurn,
    ColorResult,
    FinalResponse,
    Intent,
    ReasoningSummary,
    SilhouetteResult,
    WardrobeContext,
)
from mirro_chat.services.errors import LLMEmptyResponseError
from mirro_chat.services.gemini import CallOptions
from mirro_chat.services.json_extract import extract_structured


logger = logging.getLogger("mirro-chat.stages")

M = TypeVar("M", bound=BaseModel)

HISTORY_TURNS = 10

FALLBACK_INTENT: Intent = "general_chat"

FALLBACK_GENERAL_CHAT_REPLY = "I'm here to help with your styling questions! What would you like to know?"

FALLBACK_COLOR = ColorResult(
    color_direction="neutral-based outfits",
    combos=[],
    reason="Color analysis failed. Using safe neutrals.",
)

FALLBACK_SILHOUETTE = SilhouetteResult(
    silhouette_verdict="balanced proportions",
    structures=[],
    notes="Silhouette analysis failed. Using balanced proportions.",
)

FALLBACK_BODY_TYPE = BodyTypeResult(
    body_type="balanced",
    rules=["Focus on balanced proportions", "Choose items that fit well"],
    application="Body type analysis failed. Using general styling principles.",
)

FALLBACK_REASONING = ReasoningSummary(
    summary="Combined styling analysis",
    core_outfit_direction="balanced and flattering",
    key_color_approach="neutral-based",
    key_silhouette_rules=["balanced proportions"],
    key_body_type_adaptations=["general styling principles"],
)

FALLBACK_FINAL = FinalResponse(
    message="I'd love to help you with styling! Let me analyze your wardrobe and preferences.",
    outfits=[],
    extra_tips=[],
)


class TextGenerator(Protocol):
    async def generate(self, prompt: str, options: CallOptions) -> str: ...


class StageOptions(Protocol):
    def options_for(self, stage: str) -> CallOptions: ...


def _decode(raw: str, model: type[M], fallback: M) -> M:
    obj = extract_structured(raw, {})
    if not obj:
        return fallback.model_copy(deep=True)
    try:
        return model.model_validate(obj)
    except ValidationError as exc:
        logger.debug("stage_output_invalid model=%s err=%s", model.__name__, exc)
        return fallback.model_copy(deep=True)


def _pretty(model: BaseModel) -> str:
    return json.dumps(model.model_dump(mode="json"), indent=2, ensure_ascii=False)


def build_shared_context(message: str, wardrobe: WardrobeContext) -> str:
    return (
        "User message:\n"
        f"{message}\n\n"
        "Wardrobe and profile context:\n"
        f"{wardrobe.to_prompt_json()}\n"
    )


async def classify_intent(llm: TextGenerator, settings: StageOptions, message: str) -> Intent:
    prompt = (
        "You are an intent classifier for MyMirro, a fashion stylist AI.\n\n"
        f'USER MESSAGE:\n"{message}"\n\n'
        "Classify this message into EXACTLY ONE of the following intents:\n"
        "- wardrobe_query: asks about items they own (\"what do I have\", \"do I own\")\n"
        "- outfit_generation: wants complete outfit suggestions (\"what should I wear\", \"outfit for a date\")\n"
        "- color_analysis: asks about colors (\"what colors suit me\", \"color combinations\")\n"
        "- body_type_advice: asks how to dress for their body (\"flatter my figure\")\n"
        "- event_styling: has a specific event (\"wedding guest\", \"interview outfit\")\n"
        "- shopping_request: wants shopping or brand advice (\"what should I buy\")\n"
        "- general_chat: greetings, small talk, or unclear intent\n\n"
        "Return ONLY valid JSON (no markdown) with exactly this shape:\n"
        '{"intent": "<one_of_the_above_labels>"}'
    )
    raw = await llm.generate(prompt, settings.options_for("intent"))
    obj = extract_structured(raw, {"intent": FALLBACK_INTENT})
    label = str(obj.get("intent") or "").strip().lower()
    if label not in INTENTS:
        logger.info("intent_label_unknown label=%r", label)
        return FALLBACK_INTENT
    return label  # type: ignore[return-value]


async def general_chat_reply(
    llm: TextGenerator,
    settings: StageOptions,
    message: str,
    history: Sequence[ChatTurn] = (),
) -> str:
    recent = list(history)[-HISTORY_TURNS:]
    convo = "\n".join(f"{turn.role.upper()}: {turn.content}" for turn in recent)
    prompt = (
        "You are MyMirro, a warm and friendly AI personal stylist.\n\n"
        + (f"CONVERSATION SO FAR:\n{convo}\n\n" if convo else "")
        + f'USER MESSAGE:\n"{message}"\n\n'
        + "Reply conversationally in 2-3 short sentences. If the user is just chatting, "
        + "be friendly and gently steer toward style topics. Do not use markdown or JSON."
    )
    raw = await llm.generate(prompt, settings.options_for("generalChat"))
    reply = raw.strip()
    if not reply:
        raise LLMEmptyResponseError("Empty general chat reply")
    return reply


async def analyze_color(llm: TextGenerator, settings: StageOptions, shared_context: str) -> ColorResult:
    prompt = (
        "You are a fashion color theory expert for an AI stylist.\n\n"
        f"{shared_context}\n"
        "TASK:\n"
        "Analyze the user's request and wardrobe to give color styling advice.\n"
        "- Only suggest colors that exist in the user's wardrobe.\n"
        "- Match colors to the occasion and mood.\n"
        "- Prefer complementary and analogous combinations.\n\n"
        "Return ONLY valid JSON (no markdown) with this exact shape:\n"
        '{\n  "color_direction": "...",\n  "combos": ["... and ...", "... with ..."],\n  "reason": "..."\n}'
    )
    raw = await llm.generate(prompt, settings.options_for("colorAnalysis"))
    return _decode(raw, ColorResult, FALLBACK_COLOR)


async def analyze_silhouette(llm: TextGenerator, settings: StageOptions, shared_context: str) -> SilhouetteResult:
    prompt = (
        "You are a silhouette and proportion expert for an AI stylist.\n\n"
        f"{shared_context}\n"
        "TASK:\n"
        "Give silhouette and proportion advice for this request.\n"
        "- Only suggest structures built from wardrobe items.\n"
        "- Balance proportions (fitted with loose, cropped with high-waisted).\n"
        "- Keep the occasion and mood in mind.\n\n"
        "Return ONLY valid JSON (no markdown) with this exact shape:\n"
        '{\n  "silhouette_verdict": "...",\n  "structures": ["fitted top + wide leg pants", "..."],\n  "notes": "..."\n}'
    )
    raw = await llm.generate(prompt, settings.options_for("silhouetteAnalysis"))
    return _decode(raw, SilhouetteResult, FALLBACK_SILHOUETTE)


async def analyze_body_type(llm: TextGenerator, settings: StageOptions, shared_context: str) -> BodyTypeResult:
    prompt = (
        "You are a body-positive stylist for an AI fashion assistant.\n\n"
        f"{shared_context}\n"
        "TASK:\n"
        "Give body type styling advice. If no body type is given, use general flattering principles.\n"
        "- Always be positive; talk about highlighting and balancing, never hiding.\n"
        "- Never mention weight or size.\n"
        "- Apply the rules to items from the wardrobe.\n\n"
        "Return ONLY valid JSON (no markdown) with this exact shape:\n"
        '{\n  "body_type": "hourglass | pear | rectangle | apple | inverted triangle | balanced",\n'
        '  "rules": ["...", "..."],\n  "application": "..."\n}'
    )
    raw = await llm.generate(prompt, settings.options_for("bodyTypeAnalysis"))
    return _decode(raw, BodyTypeResult, FALLBACK_BODY_TYPE)


async def compose_reasoning(
    llm: TextGenerator,
    settings: StageOptions,
    color: ColorResult,
    silhouette: SilhouetteResult,
    body_type: BodyTypeResult,
) -> ReasoningSummary:
    prompt = (
        "You are the lead stylist combining three expert analyses into one direction.\n\n"
        f"COLOR ANALYSIS:\n{_pretty(color)}\n\n"
        f"SILHOUETTE ANALYSIS:\n{_pretty(silhouette)}\n\n"
        f"BODY TYPE ANALYSIS:\n{_pretty(body_type)}\n\n"
        "TASK:\n"
        "Synthesize these into a single actionable styling direction. Resolve conflicts "
        "in favor of what flatters the user and what their wardrobe supports.\n\n"
        "Return ONLY valid JSON (no markdown) with this exact shape:\n"
        "{\n"
        '  "summary": "...",\n'
        '  "core_outfit_direction": "...",\n'
        '  "key_color_approach": "...",\n'
        '  "key_silhouette_rules": ["..."],\n'
        '  "key_body_type_adaptations": ["..."]\n'
        "}"
    )
    raw = await llm.generate(prompt, settings.options_for("reasoning"))
    return _decode(raw, ReasoningSummary, FALLBACK_REASONING)


async def generate_final_response(
    llm: TextGenerator,
    settings: StageOptions,
    message: str,
    wardrobe: WardrobeContext,
    reasoning: ReasoningSummary,
) -> FinalResponse:
    prompt = (
        "You are MyMirro, a world-class AI personal stylist.\n\n"
        f'USER MESSAGE:\n"{message}"\n\n'
        f"WARDROBE AND PROFILE:\n{wardrobe.to_prompt_json()}\n\n"
        f"STYLING DIRECTION:\n{_pretty(reasoning)}\n\n"
        "TASK:\n"
        "Write the reply the user will see.\n"
        "- Keep the message to 2-3 friendly sentences.\n"
        "- Suggest 1-3 outfits using ONLY item names from the wardrobe above.\n"
        "- Each why_it_works is one short sentence.\n"
        "- Add 2 brief extra tips.\n\n"
        "Return ONLY valid JSON (no markdown) with this exact shape:\n"
        "{\n"
        '  "message": "...",\n'
        '  "outfits": [{"title": "...", "items": ["<wardrobe item name>", "..."], "why_it_works": "..."}],\n'
        '  "extra_tips": ["...", "..."]\n'
        "}"
    )
    raw = await llm.generate(prompt, settings.options_for("finalResponse"))
    return _decode(raw, FinalResponse, FALLBACK_FINAL)

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Optional, TypeVar

from pydantic import BaseModel

from mirro_chat.config import Settings
from mirro_chat.models import (
    BodyTypeResult,
    ChatRequest,
    ChatResponse,
    ColorResult,
    Intent,
    LogEntry,
    SilhouetteResult,
    WardrobeContext,
)
from mirro_chat.services import stages
from mirro_chat.services.safety import filter_valid_outfits, grounding_report
from mirro_chat.services.stages import TextGenerator
from mirro_chat.services.telemetry import (
    ChatLogSink,
    create_log_entry,
    finalize,
    record_duration,
    record_error,
    record_stage,
)
from mirro_chat.services.wardrobe import WardrobeFetcher


logger = logging.getLogger("mirro-chat.pipeline")

T = TypeVar("T")


@dataclass
class PipelineResult:
    response: ChatResponse
    debug: Optional[dict[str, Any]]
    log_entry: LogEntry


@dataclass
class _Settled:
    value: Any
    error: Optional[Exception]
    duration_ms: int


def _elapsed_ms(started_at: float) -> int:
    return int(round((time.perf_counter() - started_at) * 1000))


async def _settle(awaitable: Awaitable[Any]) -> _Settled:
    started = time.perf_counter()
    try:
        value = await awaitable
    except Exception as exc:
        return _Settled(value=None, error=exc, duration_ms=_elapsed_ms(started))
    return _Settled(value=value, error=None, duration_ms=_elapsed_ms(started))


class ChatPipeline:
    """Runs one chat message through the styling stages.

    Every stage failure after request validation is absorbed into that
    stage's fixed fallback and noted on the request's LogEntry, so ``run``
    only raises for unexpected bugs. The LogEntry is handed to the sink on
    every outcome.
    """

    def __init__(
        self,
        *,
        settings: Settings,
        llm: TextGenerator,
        wardrobe: WardrobeFetcher,
        sink: Optional[ChatLogSink] = None,
    ) -> None:
        self._settings = settings
        self._llm = llm
        self._wardrobe = wardrobe
        self._sink = sink or ChatLogSink()

    async def run(self, request: ChatRequest) -> PipelineResult:
        started = time.perf_counter()
        entry = create_log_entry(request.user_id, request.message, request.conversation_id)
        response: Optional[ChatResponse] = None
        try:
            response, debug = await self._run(request, entry)
            return PipelineResult(response=response, debug=debug, log_entry=entry)
        except Exception as exc:
            record_error(entry, f"Unhandled pipeline error: {exc}")
            raise
        finally:
            finalize(
                entry,
                started,
                response.model_dump(mode="json", exclude_none=True) if response is not None else None,
            )
            await self._emit(entry)

    async def _run(self, request: ChatRequest, entry: LogEntry) -> tuple[ChatResponse, Optional[dict[str, Any]]]:
        message = request.message

        intent: Intent = await self._guarded(
            entry,
            "intent",
            "Intent classification",
            stages.classify_intent(self._llm, self._settings, message),
            stages.FALLBACK_INTENT,
        )
        entry.intent = intent

        if intent == "general_chat":
            reply = await self._guarded(
                entry,
                "generalChat",
                "General chat",
                stages.general_chat_reply(self._llm, self._settings, message, request.history),
                stages.FALLBACK_GENERAL_CHAT_REPLY,
            )
            return ChatResponse(intent="general_chat", message=reply), None

        wardrobe: WardrobeContext = await self._guarded(
            entry,
            "wardrobe",
            "Wardrobe fetch",
            self._wardrobe.fetch(request.user_id),
            WardrobeContext.empty(request.user_id),
        )

        color, silhouette, body_type = await self._fan_out(entry, stages.build_shared_context(message, wardrobe))

        reasoning = await self._guarded(
            entry,
            "reasoning",
            "Reasoning composition",
            stages.compose_reasoning(self._llm, self._settings, color, silhouette, body_type),
            stages.FALLBACK_REASONING,
        )

        final = await self._guarded(
            entry,
            "finalResponse",
            "Final response generation",
            stages.generate_final_response(self._llm, self._settings, message, wardrobe, reasoning),
            stages.FALLBACK_FINAL,
        )

        outfits = final.outfits
        if outfits and wardrobe.wardrobe_items:
            filter_started = time.perf_counter()
            ungrounded = [
                item
                for outfit in outfits
                for item in grounding_report(outfit, wardrobe.wardrobe_items)["ungrounded_items"]
            ]
            outfits = filter_valid_outfits(outfits, wardrobe.wardrobe_items)
            record_stage(entry, "safetyFilter", filter_started, True)
            if ungrounded:
                logger.info(
                    "safety_filter_removed user_id=%s count=%s items=%s",
                    request.user_id,
                    len(ungrounded),
                    ungrounded[:10],
                )

        response = ChatResponse(
            intent=intent,
            message=final.message,
            outfits=outfits,
            extra_tips=final.extra_tips,
        )
        debug = {
            "colorAnalysis": color.model_dump(mode="json"),
            "silhouetteAnalysis": silhouette.model_dump(mode="json"),
            "bodyTypeAnalysis": body_type.model_dump(mode="json"),
            "reasoning": reasoning.model_dump(mode="json"),
        }
        return response, debug

    async def _fan_out(
        self,
        entry: LogEntry,
        shared_context: str,
    ) -> tuple[ColorResult, SilhouetteResult, BodyTypeResult]:
        color_s, silhouette_s, body_s = await asyncio.gather(
            _settle(stages.analyze_color(self._llm, self._settings, shared_context)),
            _settle(stages.analyze_silhouette(self._llm, self._settings, shared_context)),
            _settle(stages.analyze_body_type(self._llm, self._settings, shared_context)),
        )
        return (
            self._resolve(entry, "colorAnalysis", "Color analysis", color_s, stages.FALLBACK_COLOR),
            self._resolve(entry, "silhouetteAnalysis", "Silhouette analysis", silhouette_s, stages.FALLBACK_SILHOUETTE),
            self._resolve(entry, "bodyTypeAnalysis", "Body type analysis", body_s, stages.FALLBACK_BODY_TYPE),
        )

    def _resolve(self, entry: LogEntry, stage: str, label: str, settled: _Settled, fallback: T) -> T:
        if settled.error is None:
            record_duration(entry, stage, settled.duration_ms, True)
            return settled.value
        self._note_failure(entry, stage, label, settled.error, duration_ms=settled.duration_ms)
        if isinstance(fallback, BaseModel):
            return fallback.model_copy(deep=True)
        return fallback

    async def _guarded(self, entry: LogEntry, stage: str, label: str, awaitable: Awaitable[T], fallback: T) -> T:
        settled = await _settle(awaitable)
        return self._resolve(entry, stage, label, settled, fallback)

    def _note_failure(self, entry: LogEntry, stage: str, label: str, exc: Exception, *, duration_ms: int) -> None:
        record_duration(
            entry,
            stage,
            duration_ms,
            False,
            failure_reason=f"{exc.__class__.__name__}: {exc}",
            fallback=True,
        )
        record_error(entry, f"{label} failed: {exc}")
        logger.warning("stage_failed stage=%s user_id=%s err=%s", stage, entry.user_id, exc)

    async def _emit(self, entry: LogEntry) -> None:
        try:
            await self._sink.write(entry)
        except Exception as exc:
            logger.warning("chat_log_emit_failed user_id=%s err=%s", entry.user_id, exc)

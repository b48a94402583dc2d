from __future__ import annotations

import asyncio
import json
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import httpx

from mirro_chat.models import LogEntry, StageTiming


logger = logging.getLogger("mirro-chat.telemetry")


def create_log_entry(user_id: str, message: str, conversation_id: Optional[str] = None) -> LogEntry:
    return LogEntry(user_id=user_id, message=message, conversation_id=conversation_id)


def record_stage(
    entry: LogEntry,
    stage: str,
    started_at: float,
    success: bool,
    *,
    failure_reason: Optional[str] = None,
    fallback: bool = False,
) -> StageTiming:
    """Store the timing of one stage; ``started_at`` is a ``time.perf_counter()`` reading."""
    return record_duration(
        entry,
        stage,
        int(round((time.perf_counter() - started_at) * 1000)),
        success,
        failure_reason=failure_reason,
        fallback=fallback,
    )


def record_duration(
    entry: LogEntry,
    stage: str,
    duration_ms: int,
    success: bool,
    *,
    failure_reason: Optional[str] = None,
    fallback: bool = False,
) -> StageTiming:
    timing = StageTiming(
        duration_ms=duration_ms,
        success=success,
        failure_reason=failure_reason,
        fallback=fallback,
    )
    entry.stage_timings[stage] = timing
    if not success:
        entry.success = False
    if fallback and stage not in entry.fallbacks_used:
        entry.fallbacks_used.append(stage)
    return timing


def record_error(entry: LogEntry, error: str) -> None:
    entry.errors.append(error)
    entry.success = False


def finalize(entry: LogEntry, started_at: float, final_response: Optional[dict[str, Any]] = None) -> None:
    entry.total_duration_ms = int(round((time.perf_counter() - started_at) * 1000))
    if final_response is not None:
        entry.final_response = final_response


def summarize(entry: LogEntry) -> dict[str, Any]:
    stages = sorted(entry.stage_timings.items(), key=lambda kv: kv[1].duration_ms, reverse=True)
    durations = [timing.duration_ms for _, timing in stages]
    return {
        "total_duration_ms": entry.total_duration_ms or 0,
        "average_stage_duration_ms": round(sum(durations) / len(durations)) if durations else 0,
        "slowest_stage": stages[0][0] if stages else "none",
        "fastest_stage": stages[-1][0] if stages else "none",
        "error_count": len(entry.errors),
        "fallback_count": len(entry.fallbacks_used),
    }


def _append_jsonl(*, dir_path: str, row: dict[str, Any]) -> None:
    out_dir = Path(dir_path).expanduser().resolve()
    out_dir.mkdir(parents=True, exist_ok=True)
    date_key = datetime.now(tz=timezone.utc).strftime("%Y-%m-%d")
    file_path = out_dir / f"chat-log-{date_key}.jsonl"
    with file_path.open("a", encoding="utf-8") as f:
        f.write(json.dumps(row, ensure_ascii=False) + "\n")


class ChatLogSink:
    """Best-effort destination for finished log entries.

    Always writes a summary line to the process log. Optionally forwards the
    entry to ``url`` and appends it to a daily JSONL file under ``jsonl_dir``.
    Sink failures are logged and swallowed.
    """

    def __init__(
        self,
        *,
        url: Optional[str] = None,
        jsonl_dir: Optional[str] = None,
        timeout_s: float = 2.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._url = url
        self._jsonl_dir = jsonl_dir
        self._timeout_s = timeout_s
        self._transport = transport

    async def write(self, entry: LogEntry) -> None:
        try:
            row = entry.to_wire()
            stats = summarize(entry)
            logger.info(
                "chat_request user_id=%s intent=%s success=%s total_ms=%s slowest=%s errors=%s fallbacks=%s",
                entry.user_id,
                entry.intent or "unknown",
                entry.success,
                stats["total_duration_ms"],
                stats["slowest_stage"],
                stats["error_count"],
                ",".join(entry.fallbacks_used) or "none",
            )
            for err in entry.errors:
                logger.info("chat_request_error user_id=%s err=%s", entry.user_id, err)
        except Exception as exc:
            logger.warning("chat_log_summary_failed err=%s", exc)
            return

        await self._forward(row)
        await self._write_jsonl(row)

    async def _forward(self, row: dict[str, Any]) -> None:
        if not self._url:
            return
        try:
            async with httpx.AsyncClient(timeout=self._timeout_s, transport=self._transport) as client:
                res = await client.post(self._url, json=row, headers={"Content-Type": "application/json"})
            if res.status_code >= 400:
                logger.warning("chat_log_forward_failed status=%s body=%s", res.status_code, res.text[:500])
        except Exception as exc:
            logger.warning("chat_log_forward_failed err=%s", getattr(exc, "message", str(exc)))

    async def _write_jsonl(self, row: dict[str, Any]) -> None:
        if not self._jsonl_dir:
            return
        try:
            await asyncio.to_thread(_append_jsonl, dir_path=self._jsonl_dir, row=row)
        except Exception as exc:
            logger.warning("chat_log_jsonl_failed err=%s", getattr(exc, "message", str(exc)))

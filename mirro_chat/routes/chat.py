from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from mirro_chat.models import ChatRequest
from mirro_chat.services.errors import InvalidChatRequest


router = APIRouter()

logger = logging.getLogger("mirro-chat.routes")


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": message})


def parse_chat_request(body: Any) -> ChatRequest:
    if not isinstance(body, dict):
        raise InvalidChatRequest("request body must be a JSON object")

    user_id = body.get("userId")
    message = body.get("message")
    if not user_id or not message:
        raise InvalidChatRequest("userId and message are required")
    if not isinstance(message, str) or not message.strip():
        raise InvalidChatRequest("message cannot be empty")
    if not isinstance(user_id, str) or not user_id.strip():
        raise InvalidChatRequest("userId cannot be empty")

    try:
        return ChatRequest.model_validate(body)
    except ValidationError as exc:
        fields = ", ".join(".".join(str(p) for p in err.get("loc", ())) for err in exc.errors())
        raise InvalidChatRequest(f"invalid request fields: {fields}") from exc


@router.post("/chat")
async def chat(request: Request):
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return _bad_request("request body must be valid JSON")

    try:
        chat_request = parse_chat_request(body)
    except InvalidChatRequest as exc:
        return _bad_request(str(exc))

    settings = request.app.state.settings
    pipeline = request.app.state.pipeline
    try:
        result = await pipeline.run(chat_request)
    except Exception as exc:
        logger.exception("chat_pipeline_failed user_id=%s", chat_request.user_id)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "message": str(exc)},
        )

    payload = result.response.model_dump(mode="json", exclude_none=True)
    if result.debug is not None and not settings.is_production:
        payload["debug"] = result.debug
    return payload


@router.post("/chat-log")
async def chat_log(request: Request):
    try:
        entry = await request.json()
        logger.info("chat_log_received entry=%s", json.dumps(entry, ensure_ascii=False)[:4000])
    except Exception as exc:
        logger.warning("chat_log_receive_failed err=%s", exc)
        return JSONResponse(status_code=500, content={"success": False, "error": "Logging failed"})
    return {"success": True}

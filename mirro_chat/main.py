from __future__ import annotations

import logging
import os
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from mirro_chat.config import Settings
from mirro_chat.routes.chat import router as chat_router
from mirro_chat.routes.health import router as health_router
from mirro_chat.services.gemini import GeminiClient
from mirro_chat.services.pipeline import ChatPipeline
from mirro_chat.services.telemetry import ChatLogSink
from mirro_chat.services.wardrobe import SupabaseWardrobeClient


def _parse_cors_origins(raw: Optional[str]) -> list[str]:
    if not raw:
        return ["*"]
    parts = [p.strip() for p in raw.split(",")]
    return [p for p in parts if p] or ["*"]


def _setup_logging() -> None:
    level = (os.getenv("LOG_LEVEL") or "INFO").upper()
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_pipeline(settings: Settings) -> ChatPipeline:
    return ChatPipeline(
        settings=settings,
        llm=GeminiClient(
            api_key=settings.gemini_api_key,
            base_url=settings.gemini_api_base,
            backoff_base_s=settings.llm_backoff_base_s,
        ),
        wardrobe=SupabaseWardrobeClient(
            base_url=settings.supabase_url,
            api_key=settings.supabase_key,
            timeout_s=settings.wardrobe_timeout_s,
        ),
        sink=ChatLogSink(
            url=settings.chat_log_url,
            jsonl_dir=settings.chat_log_jsonl_dir,
            timeout_s=settings.chat_log_timeout_s,
        ),
    )


def create_app(settings: Optional[Settings] = None, pipeline: Optional[ChatPipeline] = None) -> FastAPI:
    _setup_logging()
    settings = settings or Settings.from_env()
    app = FastAPI(title="Mirro Chat Agent", version="0.1.0")
    app.state.settings = settings
    app.state.pipeline = pipeline or build_pipeline(settings)

    origins = _parse_cors_origins(os.getenv("CORS_ORIGINS"))
    allow_all = "*" in origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if allow_all else origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
        max_age=86400,
    )

    app.include_router(health_router)
    app.include_router(chat_router)

    return app


app = create_app()

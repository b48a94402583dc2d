from __future__ import annotations

import os
from datetime import datetime, timezone

from fastapi import APIRouter, Request

router = APIRouter()


def _get_commit_sha() -> str | None:
    for key in (
        # Railway
        "RAILWAY_GIT_COMMIT_SHA",
        "GITHUB_SHA",
        "COMMIT_SHA",
        "GIT_SHA",
    ):
        value = os.getenv(key)
        if value:
            return value
    return None


@router.get("/healthz")
@router.get("/health_check")
def healthz(request: Request):
    return {
        "ok": True,
        "status": "ok",
        "service": "mirro-chat-agent",
        "environment": request.app.state.settings.environment,
        "commit_sha": _get_commit_sha(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

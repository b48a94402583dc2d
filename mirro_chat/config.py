from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from mirro_chat.services.gemini import CallOptions


def _env_str(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()


def _env_optional(name: str) -> Optional[str]:
    return (os.getenv(name) or "").strip() or None


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except Exception:
        return default
    return value if value >= 0 else default


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except Exception:
        return default
    return value if value >= 0 else default


_STAGE_TEMPERATURES = {
    "intent": 0.3,
    "generalChat": 0.7,
    "colorAnalysis": 0.6,
    "silhouetteAnalysis": 0.6,
    "bodyTypeAnalysis": 0.6,
    "reasoning": 0.5,
    "finalResponse": 0.7,
}

# Conversational stages get the larger model.
_FLASH_STAGES = {"generalChat", "finalResponse"}


@dataclass(frozen=True)
class Settings:
    gemini_api_key: str = ""
    gemini_api_base: str = "https://generativelanguage.googleapis.com/v1beta"
    lite_model: str = "gemini-2.5-flash-lite"
    flash_model: str = "gemini-2.0-flash"
    llm_timeout_s: float = 8.0
    intent_timeout_s: float = 6.0
    llm_max_retries: int = 1
    llm_backoff_base_s: float = 1.0
    llm_max_output_tokens: int = 2048
    supabase_url: str = ""
    supabase_key: str = ""
    wardrobe_timeout_s: float = 8.0
    chat_log_url: Optional[str] = None
    chat_log_jsonl_dir: Optional[str] = None
    chat_log_timeout_s: float = 2.0
    environment: str = "production"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            gemini_api_key=_env_str("GEMINI_API_KEY"),
            gemini_api_base=_env_str("GEMINI_API_BASE", cls.gemini_api_base).rstrip("/"),
            lite_model=_env_str("GEMINI_LITE_MODEL", cls.lite_model),
            flash_model=_env_str("GEMINI_FLASH_MODEL", cls.flash_model),
            llm_timeout_s=_env_float("LLM_TIMEOUT_S", cls.llm_timeout_s),
            intent_timeout_s=_env_float("LLM_INTENT_TIMEOUT_S", cls.intent_timeout_s),
            llm_max_retries=_env_int("LLM_MAX_RETRIES", cls.llm_max_retries),
            llm_backoff_base_s=_env_float("LLM_BACKOFF_BASE_S", cls.llm_backoff_base_s),
            llm_max_output_tokens=_env_int("LLM_MAX_OUTPUT_TOKENS", cls.llm_max_output_tokens),
            supabase_url=_env_str("SUPABASE_URL").rstrip("/"),
            supabase_key=_env_str("SUPABASE_ANON_KEY"),
            wardrobe_timeout_s=_env_float("WARDROBE_TIMEOUT_S", cls.wardrobe_timeout_s),
            chat_log_url=_env_optional("CHAT_LOG_URL"),
            chat_log_jsonl_dir=_env_optional("CHAT_LOG_JSONL_DIR"),
            chat_log_timeout_s=_env_float("CHAT_LOG_TIMEOUT_S", cls.chat_log_timeout_s),
            environment=(_env_optional("APP_ENV") or _env_optional("ENVIRONMENT") or "production").lower(),
        )

    @property
    def is_production(self) -> bool:
        return self.environment in {"production", "prod"}

    def options_for(self, stage: str) -> CallOptions:
        return CallOptions(
            model=self.flash_model if stage in _FLASH_STAGES else self.lite_model,
            timeout_s=self.intent_timeout_s if stage == "intent" else self.llm_timeout_s,
            temperature=_STAGE_TEMPERATURES.get(stage, 0.7),
            max_retries=self.llm_max_retries,
            max_output_tokens=self.llm_max_output_tokens,
        )

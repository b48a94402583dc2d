from __future__ import annotations

import os
from pathlib import Path
import sys
import unittest
from unittest.mock import patch

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from mirro_chat.config import Settings


class TestSettingsFromEnv(unittest.TestCase):
    def test_defaults(self) -> None:
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings.from_env()

        self.assertEqual(settings.gemini_api_key, "")
        self.assertEqual(settings.lite_model, "gemini-2.5-flash-lite")
        self.assertEqual(settings.llm_timeout_s, 8.0)
        self.assertEqual(settings.llm_max_retries, 1)
        self.assertTrue(settings.is_production)
        self.assertIsNone(settings.chat_log_url)

    def test_overrides_and_bad_values(self) -> None:
        env = {
            "GEMINI_API_KEY": " key ",
            "LLM_TIMEOUT_S": "3.5",
            "LLM_INTENT_TIMEOUT_S": "2.5",
            "LLM_MAX_RETRIES": "nope",
            "LLM_BACKOFF_BASE_S": "-1",
            "SUPABASE_URL": "https://proj.supabase.co/",
            "APP_ENV": "Development",
        }
        with patch.dict(os.environ, env, clear=True):
            settings = Settings.from_env()

        self.assertEqual(settings.gemini_api_key, "key")
        self.assertEqual(settings.llm_timeout_s, 3.5)
        self.assertEqual(settings.intent_timeout_s, 2.5)
        self.assertEqual(settings.options_for("intent").timeout_s, 2.5)
        self.assertEqual(settings.llm_max_retries, 1)
        self.assertEqual(settings.llm_backoff_base_s, 1.0)
        self.assertEqual(settings.supabase_url, "https://proj.supabase.co")
        self.assertEqual(settings.environment, "development")
        self.assertFalse(settings.is_production)

    def test_options_for_stage(self) -> None:
        settings = Settings(llm_timeout_s=8.0, intent_timeout_s=5.0, llm_max_retries=2)

        intent = settings.options_for("intent")
        self.assertEqual(intent.model, "gemini-2.5-flash-lite")
        self.assertEqual(intent.timeout_s, 5.0)
        self.assertEqual(intent.temperature, 0.3)
        self.assertEqual(intent.max_retries, 2)

        final = settings.options_for("finalResponse")
        self.assertEqual(final.model, "gemini-2.0-flash")
        self.assertEqual(final.timeout_s, 8.0)
        self.assertEqual(final.temperature, 0.7)

from __future__ import annotations

import json
from pathlib import Path
import sys
import unittest

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from mirro_chat.services.json_extract import extract_structured, parse_json_array, strip_code_fences


FALLBACK = {"color_direction": "neutral-based outfits", "combos": [], "reason": "fallback"}


class TestExtractStructured(unittest.TestCase):
    def test_plain_json(self) -> None:
        raw = '{"color_direction": "earth tones", "combos": ["olive and cream"], "reason": "warm"}'
        self.assertEqual(extract_structured(raw, FALLBACK)["color_direction"], "earth tones")

    def test_fenced_with_language_tag_round_trips(self) -> None:
        value = {"summary": "Soft romance", "key_silhouette_rules": ["tuck the shirt"], "nested": {"a": 1}}
        raw = "```json\n" + json.dumps(value, indent=2) + "\n```"
        self.assertEqual(extract_structured(raw, {}), value)

    def test_fenced_without_language_tag(self) -> None:
        raw = '```\n{"intent": "outfit_generation"}\n```'
        self.assertEqual(extract_structured(raw, {"intent": "general_chat"}), {"intent": "outfit_generation"})

    def test_object_embedded_in_prose(self) -> None:
        raw = 'Sure! Here is the analysis: {"body_type": "pear", "note": "uses {braces} in text"} Hope it helps.'
        obj = extract_structured(raw, {})
        self.assertEqual(obj["body_type"], "pear")
        self.assertEqual(obj["note"], "uses {braces} in text")

    def test_first_balanced_object_wins(self) -> None:
        raw = 'first {"a": 1} then {"b": 2}'
        self.assertEqual(extract_structured(raw, {}), {"a": 1})

    def test_garbage_returns_fallback_unchanged(self) -> None:
        for raw in ("not json at all", "{broken: json", "", "   ", "```json\n```", None, 42):
            result = extract_structured(raw, FALLBACK)
            self.assertIs(result, FALLBACK)

    def test_non_object_rejected_for_mapping_fallback(self) -> None:
        self.assertIs(extract_structured('["a", "b"]', FALLBACK), FALLBACK)

    def test_idempotent_on_clean_json(self) -> None:
        raw = json.dumps({"message": "Hi", "outfits": [], "extra_tips": ["steam it"]})
        once = extract_structured(raw, {})
        twice = extract_structured(json.dumps(once), {})
        self.assertEqual(once, twice)

    def test_strip_code_fences_leaves_plain_text(self) -> None:
        self.assertEqual(strip_code_fences("  hello  "), "hello")
        self.assertEqual(strip_code_fences("```python\nx = 1\n```"), "x = 1")


class TestParseJsonArray(unittest.TestCase):
    def test_variants(self) -> None:
        self.assertEqual(parse_json_array(None), [])
        self.assertEqual(parse_json_array(["casual", " work "]), ["casual", "work"])
        self.assertEqual(parse_json_array('["summer", "spring"]'), ["summer", "spring"])
        self.assertEqual(parse_json_array("['date', 'party']"), ["date", "party"])
        self.assertEqual(parse_json_array("office, brunch"), ["office", "brunch"])
        self.assertEqual(parse_json_array("winter"), ["winter"])

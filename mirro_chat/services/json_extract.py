from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping
from typing import Any, Optional, TypeVar


logger = logging.getLogger("mirro-chat.json")

T = TypeVar("T")

_FENCE_OPEN_RE = re.compile(r"^```[A-Za-z0-9_-]*[ \t]*\n?")
_FENCE_CLOSE_RE = re.compile(r"\n?[ \t]*```$")


def strip_code_fences(raw: str) -> str:
    cleaned = raw.strip()
    cleaned = _FENCE_OPEN_RE.sub("", cleaned, count=1)
    cleaned = _FENCE_CLOSE_RE.sub("", cleaned, count=1)
    return cleaned.strip()


def extract_structured(raw: Any, fallback: T) -> T:
    """Decode the JSON a model returned, or hand back ``fallback``.

    Tries the fence-stripped text first, then the first balanced ``{...}``
    object inside it. Never raises.
    """
    if not isinstance(raw, str) or not raw.strip():
        return fallback

    try:
        cleaned = strip_code_fences(raw)
    except Exception:
        return fallback

    for candidate in (cleaned, _first_braced(cleaned)):
        if not candidate:
            continue
        try:
            obj = json.loads(candidate)
        except Exception:
            continue
        if _acceptable(obj, fallback):
            return obj

    logger.debug("extract_structured_fallback raw=%r", raw[:200])
    return fallback


def _acceptable(obj: Any, fallback: Any) -> bool:
    if isinstance(fallback, Mapping):
        return isinstance(obj, dict)
    if isinstance(fallback, list):
        return isinstance(obj, list)
    return True


def _first_braced(text: str) -> Optional[str]:
    for start in (i for i, ch in enumerate(text) if ch == "{"):
        candidate = _extract_braced(text, start)
        if candidate:
            return candidate
    return None


def _extract_braced(text: str, start: int) -> Optional[str]:
    depth = 0
    in_str = False
    escape = False
    end: Optional[int] = None

    for i in range(start, len(text)):
        ch = text[i]
        if in_str:
            if escape:
                escape = False
                continue
            if ch == "\\":
                escape = True
                continue
            if ch == '"':
                in_str = False
            continue

        if ch == '"':
            in_str = True
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                end = i
                break

    if end is None or depth != 0:
        return None
    return text[start : end + 1]


def parse_json_array(value: Any) -> list[str]:
    """Coerce a Supabase text/array column into a list of strings."""
    if value is None or value == "":
        return []
    if isinstance(value, list):
        return [str(v).strip() for v in value if str(v).strip()]
    text = str(value).strip()
    if not text:
        return []
    try:
        parsed = json.loads(text.replace("'", '"'))
        if isinstance(parsed, list):
            return [str(v).strip() for v in parsed if str(v).strip()]
    except Exception:
        pass
    if "," in text:
        return [part.strip() for part in text.split(",") if part.strip()]
    return [text]

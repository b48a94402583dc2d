from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional, Protocol

import httpx

from mirro_chat.models import WardrobeContext, WardrobeItem
from mirro_chat.services.errors import WardrobeFetchError
from mirro_chat.services.json_extract import parse_json_array


logger = logging.getLogger("mirro-chat.wardrobe")

_VALID_GENDERS = {"male", "female", "other"}
_PROFILE_FIELDS = "body_type,gender,style_keywords,preferred_colors,avoided_colors"


class WardrobeFetcher(Protocol):
    async def fetch(self, user_id: str) -> WardrobeContext: ...


def _as_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def transform_wardrobe_item(raw: dict[str, Any]) -> WardrobeItem:
    return WardrobeItem(
        id=_as_str(raw.get("id")) or "",
        name=_as_str(raw.get("name")) or _as_str(raw.get("item_type")) or "Unknown item",
        category=_as_str(raw.get("category")) or "Other",
        color=_as_str(raw.get("color")) or _as_str(raw.get("primary_color")),
        item_type=_as_str(raw.get("item_type")),
        fit=_as_str(raw.get("fit_type")),
        fabric=_as_str(raw.get("fabric_primary")),
        pattern_type=_as_str(raw.get("pattern_type")),
        formality=_as_str(raw.get("formality_level")),
        occasions=parse_json_array(raw.get("suitable_occasions")),
        seasons=parse_json_array(raw.get("season")),
        image_url=_as_str(raw.get("processed_image_url")) or _as_str(raw.get("image_url")),
    )


class SupabaseWardrobeClient:
    """Reads a user's wardrobe items and style profile from Supabase REST."""

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        timeout_s: float = 8.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout_s = timeout_s
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self._base_url and self._api_key)

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "apikey": self._api_key,
            "Authorization": f"Bearer {self._api_key}",
        }

    async def fetch(self, user_id: str) -> WardrobeContext:
        if not self.configured:
            raise WardrobeFetchError("Supabase credentials not configured")

        async with httpx.AsyncClient(timeout=self._timeout_s, transport=self._transport) as client:
            items, profile = await asyncio.gather(
                self._fetch_items(client, user_id),
                self._fetch_profile(client, user_id),
            )

        logger.info("wardrobe_fetched user_id=%s items=%s", user_id, len(items))
        gender = profile.get("gender")
        return WardrobeContext(
            user_id=user_id,
            body_type=_as_str(profile.get("body_type")),
            gender=gender if gender in _VALID_GENDERS else None,
            style_keywords=parse_json_array(profile.get("style_keywords")),
            preferred_colors=parse_json_array(profile.get("preferred_colors")),
            avoided_colors=parse_json_array(profile.get("avoided_colors")),
            wardrobe_items=tuple(items),
        )

    async def _fetch_items(self, client: httpx.AsyncClient, user_id: str) -> list[WardrobeItem]:
        url = f"{self._base_url}/rest/v1/wardrobe_items"
        try:
            res = await client.get(
                url,
                headers=self._headers(),
                params={"user_id": f"eq.{user_id}", "select": "*"},
            )
        except httpx.HTTPError as exc:
            raise WardrobeFetchError(f"Wardrobe request failed: {exc.__class__.__name__}") from exc

        if res.status_code >= 400:
            raise WardrobeFetchError(f"Supabase error ({res.status_code}): {res.text[:500]}")

        try:
            rows = res.json()
        except Exception as exc:
            raise WardrobeFetchError("Wardrobe response was not JSON") from exc

        if not isinstance(rows, list) or not all(isinstance(row, dict) for row in rows):
            raise WardrobeFetchError("Wardrobe response was not a list of items")

        try:
            return [transform_wardrobe_item(row) for row in rows]
        except Exception as exc:
            raise WardrobeFetchError(f"Wardrobe item shape mismatch: {exc}") from exc

    async def _fetch_profile(self, client: httpx.AsyncClient, user_id: str) -> dict[str, Any]:
        url = f"{self._base_url}/rest/v1/user_profiles"
        try:
            res = await client.get(
                url,
                headers=self._headers(),
                params={"id": f"eq.{user_id}", "select": _PROFILE_FIELDS},
            )
            if res.status_code >= 400:
                logger.info("profile_lookup_failed user_id=%s status=%s", user_id, res.status_code)
                return {}
            rows = res.json()
        except Exception as exc:
            logger.info("profile_lookup_failed user_id=%s err=%s", user_id, exc)
            return {}

        if isinstance(rows, list) and rows and isinstance(rows[0], dict):
            return rows[0]
        return {}

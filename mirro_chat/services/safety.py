from __future__ import annotations

from typing import Any, Iterable, Optional, Sequence

from mirro_chat.models import Outfit, WardrobeItem


_GENERIC_CATEGORIES = (
    "top",
    "shirt",
    "blouse",
    "t-shirt",
    "tee",
    "sweater",
    "hoodie",
    "jacket",
    "coat",
    "blazer",
    "cardigan",
    "pants",
    "jeans",
    "trousers",
    "shorts",
    "skirt",
    "dress",
    "jumpsuit",
    "romper",
    "shoes",
    "sneakers",
    "boots",
    "heels",
    "sandals",
    "flats",
    "loafers",
    "bag",
    "handbag",
    "purse",
    "backpack",
    "accessories",
    "jewelry",
    "watch",
    "belt",
    "scarf",
    "hat",
)


_PLACEHOLDER_VALUES = {"other", "unknown item"}


def _identifier(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    lower = value.strip().lower()
    if not lower or lower in _PLACEHOLDER_VALUES:
        return None
    return lower


def item_identifiers(items: Iterable[WardrobeItem]) -> set[str]:
    # A bare colour would match any invented item of that colour, so colour
    # only counts together with the category.
    identifiers: set[str] = set()
    for item in items:
        for value in (item.name, item.item_type, item.category):
            identifier = _identifier(value)
            if identifier:
                identifiers.add(identifier)
        color = _identifier(item.color)
        category = _identifier(item.category)
        if color and category:
            identifiers.add(f"{color} {category}")
    return identifiers


def is_item_in_wardrobe(description: str, identifiers: set[str]) -> bool:
    lower = description.strip().lower()
    if not lower:
        return False

    for identifier in identifiers:
        if identifier in lower or lower in identifier:
            return True

    for category in _GENERIC_CATEGORIES:
        if category in lower and any(category in identifier for identifier in identifiers):
            return True

    return False


def filter_valid_outfits(outfits: Sequence[Outfit], wardrobe_items: Sequence[WardrobeItem]) -> list[Outfit]:
    """Drop outfit items the user does not own, then outfits left empty.

    An empty wardrobe gives nothing to validate against, so outfits pass through.
    """
    if not wardrobe_items:
        return list(outfits)

    identifiers = item_identifiers(wardrobe_items)
    filtered: list[Outfit] = []
    for outfit in outfits:
        kept = [item for item in outfit.items if is_item_in_wardrobe(item, identifiers)]
        if kept:
            filtered.append(outfit.model_copy(update={"items": kept}))
    return filtered


def grounding_report(outfit: Outfit, wardrobe_items: Sequence[WardrobeItem]) -> dict[str, Any]:
    if not wardrobe_items:
        return {
            "valid": True,
            "grounded_items": list(outfit.items),
            "ungrounded_items": [],
            "grounding_percentage": 100.0,
        }

    identifiers = item_identifiers(wardrobe_items)
    grounded = [item for item in outfit.items if is_item_in_wardrobe(item, identifiers)]
    ungrounded = [item for item in outfit.items if item not in grounded]
    percentage = (len(grounded) / len(outfit.items) * 100.0) if outfit.items else 100.0
    return {
        "valid": percentage >= 50.0,
        "grounded_items": grounded,
        "ungrounded_items": ungrounded,
        "grounding_percentage": percentage,
    }

from __future__ import annotations

import os

LOCALE_ALIASES: dict[str, set[str]] = {
    "vi": {"vi", "vi-vn", "vietnamese", "tiếng việt"},
    "en": {"en", "en-us", "en-gb", "english"},
}

STARTING_LOCATIONS = {
    "vi": {"region": "Núi Thanh Vân", "place": "Làng Liễu"},
    "en": {"region": "Azure Cloud Mountains", "place": "Willow Village"},
}

RECENT_NARRATIVE_COUNT = int(os.getenv("RECENT_NARRATIVE_COUNT", "5"))
SUMMARY_INTERVAL = 10
SUMMARY_MAX_LENGTH = 1000


def default_locale() -> str:
    return normalize_locale(os.getenv("GAME_LOCALE"), fallback="vi")


def normalize_locale(value: str | None, *, fallback: str | None = None) -> str:
    if value:
        cleaned = str(value).strip().lower().replace("_", "-")
        for canonical, aliases in LOCALE_ALIASES.items():
            if cleaned == canonical or cleaned in aliases:
                return canonical
    if fallback:
        return fallback
    return default_locale()


def starting_location(locale: str) -> dict:
    return dict(STARTING_LOCATIONS.get(normalize_locale(locale), STARTING_LOCATIONS["vi"]))

"""UI strings for the chat core, in English and Russian."""

import json
from functools import lru_cache
from pathlib import Path
from typing import Any

I18N_DIR = Path(__file__).parent
DEFAULT_LOCALE = "en"


def normalize_locale(locale: str | None) -> str:
    """Map "ru-RU", "RU" or None onto a shipped table name."""
    base = (locale or DEFAULT_LOCALE).split("-")[0].split("_")[0].lower()
    return base if (I18N_DIR / f"{base}.json").exists() else DEFAULT_LOCALE


@lru_cache
def load_translations(locale: str) -> dict[str, Any]:
    with open(I18N_DIR / f"{normalize_locale(locale)}.json", encoding="utf-8") as f:
        return json.load(f)


def _lookup(table: dict[str, Any], key: str) -> str | None:
    value: Any = table
    for part in key.split("."):
        if not isinstance(value, dict) or part not in value:
            return None
        value = value[part]
    return value if isinstance(value, str) else None


def t(key: str, locale: str = DEFAULT_LOCALE) -> str:
    """Translate a dotted key.

    Keys missing from the requested table fall back to English, then to the
    key itself.
    """
    text = _lookup(load_translations(locale), key)
    if text is None:
        text = _lookup(load_translations(DEFAULT_LOCALE), key) or key
    return text

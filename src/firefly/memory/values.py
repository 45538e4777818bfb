"""Coercion of extracted values into their stored text form."""

import json
from typing import Any


def normalize_value(raw: Any) -> str:
    """Convert an arbitrary extracted value into stored text.

    Strings pass through untouched. Anything else is encoded as stable
    JSON; values JSON can't encode fall back to str(). Never raises.
    """
    if isinstance(raw, str):
        return raw
    try:
        return json.dumps(raw, sort_keys=True, ensure_ascii=False)
    except (TypeError, ValueError):
        try:
            return str(raw)
        except Exception:
            return repr(raw)


def display_text_for(key: str, value: str) -> str:
    """Default human readable rendering of a fact."""
    return f"{key}: {value}"


def parse_maybe_json(text: str) -> Any:
    """Decode text that looks like a JSON object or array, else return it."""
    stripped = text.strip()
    if not stripped:
        return text
    if (stripped.startswith("{") and stripped.endswith("}")) or (
        stripped.startswith("[") and stripped.endswith("]")
    ):
        try:
            return json.loads(stripped)
        except json.JSONDecodeError:
            return text
    return text


def embed_string_for(key: str, value: Any) -> str:
    """Text sent to the embedding model for a fact."""
    return f"key:{key}\nvalue:{normalize_value(value)}"

from __future__ import annotations

SYMBOL_FIELD_BYTES = 8
SYMBOL_KEY_BYTES = SYMBOL_FIELD_BYTES - 1
KEY_ERRORS = "surrogateescape"


def symbol_fs(symbol: str, *, upper: bool = False) -> str:
    """Normalize a symbol for filesystem paths by stripping separators/spaces.

    Use upper=True when callers require case-insensitive folder names.
    """
    cleaned = (
        symbol.replace("/", "")
        .replace("-", "")
        .replace(":", "")
        .replace(" ", "")
    )
    return cleaned.upper() if upper else cleaned


def symbol_key(symbol: str) -> bytes:
    """Return the on-disk key for a ticker: the first 7 bytes of its UTF-8 form.

    Tickers sharing the first 7 bytes map to the same key. Every writer and
    every lookup goes through this function so the collision is at least
    deterministic.
    """
    return symbol.encode("utf-8", KEY_ERRORS)[:SYMBOL_KEY_BYTES]


def key_from_field(field: bytes) -> bytes:
    """Extract the key from a raw fixed-width symbol field (NUL terminated)."""
    return field.split(b"\0", 1)[0][:SYMBOL_KEY_BYTES]


def key_to_str(key: bytes) -> str:
    """Text form of a key. A multibyte character cut at the 7th byte is kept
    as surrogate escapes, so symbol_key(key_to_str(key)) == key.
    """
    return key.decode("utf-8", KEY_ERRORS)

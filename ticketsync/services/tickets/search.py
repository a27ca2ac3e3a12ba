"""Search normalization helpers for the ticket list."""

from __future__ import annotations


def normalize_search(value: str | None) -> str | None:
    if not value:
        return None
    text = " ".join(value.strip().split())
    if not text:
        return None
    return text.lower()


def like_term(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"

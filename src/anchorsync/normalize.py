"""Canonical anchor ids.

``normalize_anchor_id`` is the only key ever used to store or look up an
anchor, so every spelling an author might type for the same id has to land
on one canonical form:

    "Fermat Pequeño"   -> "fermat-pequeno"
    "  Mass   Energy " -> "mass-energy"
    "E=mc²!"           -> "emc2"

The function is idempotent and never raises. Input made only of punctuation
normalizes to ``""``; callers treat that as "no usable id".
"""
from __future__ import annotations

import re
import unicodedata

_WHITESPACE_RE = re.compile(r"\s+")
_DISALLOWED_RE = re.compile(r"[^a-z0-9-]")


def strip_diacritics(text: str) -> str:
    """Drop combining marks after compatibility decomposition."""
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_anchor_id(raw: str | None) -> str:
    """Return the canonical lookup key for a human-typed anchor id."""
    if not raw:
        return ""
    text = strip_diacritics(raw).strip().lower()
    text = _WHITESPACE_RE.sub("-", text)
    return _DISALLOWED_RE.sub("", text)

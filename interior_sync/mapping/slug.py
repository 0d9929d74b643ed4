from __future__ import annotations

import re
import unicodedata
from collections.abc import Callable

"""Slug derivation for project / developer names.

generate_slug is deterministic and idempotent on its own output:
generate_slug(generate_slug(x)) == generate_slug(x).
Collision handling lives in unique_slug, which the orchestrator feeds with a
repository-backed existence check.
"""

__all__ = [
    "generate_slug",
    "strip_diacritics",
    "unique_slug",
]

_WHITESPACE_RE = re.compile(r"\s+")
_INVALID_RE = re.compile(r"[^a-z0-9-]")
_HYPHENS_RE = re.compile(r"-{2,}")

# NFKD で分解されない文字
_SPECIAL_FOLDS = str.maketrans({"đ": "d", "Đ": "D", "ø": "o", "Ø": "O"})


def strip_diacritics(text: str) -> str:
    """Remove combining marks ("Vinhomes Quận 9" -> "Vinhomes Quan 9")."""
    decomposed = unicodedata.normalize("NFKD", text.translate(_SPECIAL_FOLDS))
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def generate_slug(name: str) -> str:
    text = strip_diacritics(name).lower().strip()
    text = _WHITESPACE_RE.sub("-", text)
    text = _INVALID_RE.sub("", text)
    text = _HYPHENS_RE.sub("-", text)
    return text.strip("-")


def unique_slug(base: str, exists: Callable[[str], bool]) -> str:
    """Return base, or base-2, base-3, ... whichever is free first."""
    if not exists(base):
        return base
    counter = 2
    while True:
        candidate = f"{base}-{counter}"
        if not exists(candidate):
            return candidate
        counter += 1

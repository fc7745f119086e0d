"""Identity-string normalization shared by the matcher and catalogs."""

from __future__ import annotations

import re
import unicodedata

from rapidfuzz import fuzz

from wealthdesk.config import settings

_PUNCT_RE = re.compile(r"[^\w\s]")
_SPACE_RE = re.compile(r"\s+")


def normalize_identity(text: str | None, drop_words: frozenset[str] | None = None) -> str:
    """Lowercase, trim, strip punctuation and collapse whitespace.

    Words in ``drop_words`` (generic product words like "insurance") are
    removed unless that would leave nothing.
    """
    if not text:
        return ""
    folded = unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode()
    cleaned = _SPACE_RE.sub(" ", _PUNCT_RE.sub(" ", folded.lower().replace("_", " "))).strip()
    if not drop_words:
        return cleaned
    kept = [w for w in cleaned.split(" ") if w not in drop_words]
    return " ".join(kept) if kept else cleaned


def normalize_product_name(name: str | None) -> str:
    return normalize_identity(name, settings.matching.generic_words)


def normalize_provider(provider: str | None) -> str:
    return normalize_identity(provider)


def providers_match(a: str | None, b: str | None) -> bool:
    """Two provider strings denote the same insurer.

    "Prudential" and "Prudential Assurance Malaysia Berhad" match: token-set
    similarity ignores the extra words of the longer name.
    """
    left, right = normalize_provider(a), normalize_provider(b)
    if not left or not right:
        return False
    if left == right:
        return True
    score = fuzz.token_set_ratio(left, right) / 100.0
    return score >= settings.matching.provider_match_threshold

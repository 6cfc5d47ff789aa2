from __future__ import annotations

import re
import unicodedata
from typing import Any

from bloodwork.vocabulary import (
    ADMIN_PATTERNS,
    ADMIN_STOPLIST,
    ANALYTE_VOCAB_RE,
    CANONICAL_NAME_RULES,
    CATEGORY_HEADERS,
    ENGLISH_NAME_RE,
    KNOWN_UNITS,
    LOOSE_REJECT_PATTERNS,
    NON_ENGLISH_TOKENS,
    PLACEHOLDER_VALUES,
    QUALIFIER_RE,
    QUALITATIVE_VALUES,
    TRANSLATIONS,
    UNIT_LEAK_RE,
    UNIT_PATTERNS,
)

_WS_RE = re.compile(r"\s+")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")
_MAX_NORMALIZE_PASSES = 8


def strip_diacritics(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def collapse_whitespace(text: str) -> str:
    return _WS_RE.sub(" ", text or "").strip()


def canonical_key(text: str) -> str:
    """Lowercase, strip diacritics, collapse every non-alphanumeric run into one space."""
    folded = strip_diacritics(text or "").lower().replace("ß", "ss")
    return _NON_ALNUM_RE.sub(" ", folded).strip()


def admin_key(text: str) -> str:
    folded = strip_diacritics(collapse_whitespace(text)).lower()
    return folded.rstrip(": ").strip()


def unit_key(unit: str) -> str:
    return collapse_whitespace(unit).lower().replace("µ", "u").replace("μ", "u").replace(" ", "")


# ---------------------------------------------------------------------------
# Predicates
# ---------------------------------------------------------------------------


def is_unit_token(token: Any) -> bool:
    if not isinstance(token, str) or not token.strip():
        return False
    key = unit_key(token)
    return key in KNOWN_UNITS or any(pattern.match(key) for pattern in UNIT_PATTERNS)


def is_admin_stopword(name: str) -> bool:
    return admin_key(name) in ADMIN_STOPLIST


def admin_noise_label(name: str) -> str | None:
    """Return the label of the first administrative pattern ``name`` matches."""
    for label, pattern in ADMIN_PATTERNS:
        if pattern.search(name):
            return label
    return None


def matches_analyte_vocabulary(name: str) -> bool:
    return bool(ANALYTE_VOCAB_RE.search(name or ""))


def is_qualitative_value(value: Any) -> bool:
    return isinstance(value, str) and collapse_whitespace(value).lower() in QUALITATIVE_VALUES


def is_placeholder_value(value: Any) -> bool:
    return isinstance(value, str) and collapse_whitespace(value).lower() in PLACEHOLDER_VALUES


def has_unit_leakage(name: str) -> bool:
    return bool(UNIT_LEAK_RE.search(name or ""))


def is_category_header(name: str) -> bool:
    return canonical_key(name) in CATEGORY_HEADERS


def matches_loose_reject(name: str) -> bool:
    return any(pattern.search(name) for pattern in LOOSE_REJECT_PATTERNS)


def is_english_glossary_name(name: Any) -> bool:
    """ASCII letters/digits and a little punctuation, and no known German tokens."""
    if not isinstance(name, str):
        return False
    text = collapse_whitespace(name)
    if not text or not re.search(r"[A-Za-z]", text):
        return False
    if not ENGLISH_NAME_RE.match(text):
        return False
    return not any(token in NON_ENGLISH_TOKENS for token in canonical_key(text).split())


# ---------------------------------------------------------------------------
# Rewrites
# ---------------------------------------------------------------------------


def translate_name(name: str) -> str:
    translated = collapse_whitespace(name)
    for pattern, replacement in TRANSLATIONS:
        translated = pattern.sub(replacement, translated)
    return collapse_whitespace(translated)


def apply_canonical_rules(name: str) -> str:
    text = collapse_whitespace(name)
    for pattern, canonical in CANONICAL_NAME_RULES:
        if pattern.fullmatch(text):
            return canonical
    return text


def strip_trailing_qualifiers(name: str) -> str:
    text = collapse_whitespace(name)
    while True:
        stripped = QUALIFIER_RE.sub("", text).strip()
        if stripped == text or not stripped:
            return text
        text = stripped


def _rewrite_once(name: str) -> str:
    return strip_trailing_qualifiers(apply_canonical_rules(translate_name(name)))


def rewrite_measurement_name(name: str) -> str:
    """Translation, canonical rules and qualifier stripping, iterated to a fixed point."""
    current = collapse_whitespace(name)
    for _ in range(_MAX_NORMALIZE_PASSES):
        rewritten = _rewrite_once(current)
        if rewritten == current:
            break
        current = rewritten
    return current


def normalize_measurement_name(name: Any) -> str | None:
    """Canonical display name, or ``None`` when the name cannot become a glossary entry."""
    if not isinstance(name, str):
        return None
    rewritten = rewrite_measurement_name(name)
    if not rewritten or is_category_header(rewritten):
        return None
    if not is_english_glossary_name(rewritten):
        return None
    return rewritten


def title_case_heading(heading: str) -> str:
    """Title-case an ALL-CAPS heading, keeping short abbreviations (HDL, TSH) as they are."""
    words = []
    for word in collapse_whitespace(heading).split(" "):
        letters = re.sub(r"[^A-Za-z]", "", word)
        if letters.isupper() and len(letters) <= 4:
            words.append(word)
        else:
            words.append(word[:1].upper() + word[1:].lower())
    return " ".join(words)

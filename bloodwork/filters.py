from __future__ import annotations

import logging
import math
import re
from typing import Any

from bloodwork.naming import (
    admin_noise_label,
    collapse_whitespace,
    is_admin_stopword,
    is_placeholder_value,
    is_qualitative_value,
    is_unit_token,
    matches_analyte_vocabulary,
    translate_name,
)
from bloodwork.records import normalize_reference_range
from bloodwork.vocabulary import BARE_PAIR_RE

logger = logging.getLogger(__name__)

MAX_NAME_WORDS = 10


def translate_candidate(candidate: dict[str, Any]) -> dict[str, Any]:
    """Translate a source-language name, keeping the source label in ``originalName``."""
    translated = dict(candidate)
    name = collapse_whitespace(str(candidate.get("name") or ""))
    english = translate_name(name)
    if english != name:
        translated.setdefault("originalName", name)
    translated["name"] = english
    return translated


def has_usable_value(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return math.isfinite(value)
    if isinstance(value, str):
        return bool(value.strip()) and not is_placeholder_value(value)
    return False


def rejection_reason(candidate: dict[str, Any]) -> str | None:
    """Why ``candidate`` is not a measurement, or ``None`` when it passes every gate."""
    name = candidate.get("name")
    if not isinstance(name, str) or not name.strip():
        return "missing name"
    if is_admin_stopword(name):
        return "administrative stopword"
    label = admin_noise_label(name)
    if label:
        return f"administrative pattern ({label})"
    if not re.search(r"[A-Za-zÄÖÜäöüß]", name):
        return "no letters in name"
    if len(name.split()) > MAX_NAME_WORDS:
        return "name too long"

    has_unit = is_unit_token(candidate.get("unit"))
    has_range = normalize_reference_range(candidate.get("referenceRange")) is not None
    if BARE_PAIR_RE.match(name.strip()) and not (has_unit or has_range):
        return "bare word pair without unit or range"

    value = candidate.get("value")
    if not has_usable_value(value):
        return "no usable value"
    if not (has_unit or has_range or is_qualitative_value(value) or matches_analyte_vocabulary(name)):
        return "no analyte evidence"
    return None


def filter_candidates(candidates: list[dict[str, Any]]) -> list[dict[str, Any]]:
    accepted: list[dict[str, Any]] = []
    for candidate in candidates:
        translated = translate_candidate(candidate)
        reason = rejection_reason(translated)
        if reason:
            logger.debug("Rejected candidate %r: %s", translated.get("name"), reason)
            continue
        accepted.append(translated)
    logger.info("Candidate filter kept %s of %s row(s)", len(accepted), len(candidates))
    return accepted

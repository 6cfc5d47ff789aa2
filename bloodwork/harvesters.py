"""Heuristic candidate harvesters over extracted page text.

Every harvester returns plain measurement dicts (``name``, ``value``,
``unit``, ``referenceRange``, ``flag``). Nothing here decides whether a
candidate is a real analyte; that is the job of ``filters.py``.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Iterable

from bloodwork.naming import (
    admin_noise_label,
    collapse_whitespace,
    is_category_header,
    is_qualitative_value,
    is_unit_token,
    matches_analyte_vocabulary,
    title_case_heading,
)
from bloodwork.records import parse_reference_range_text
from bloodwork.vocabulary import (
    COMPARATOR_RE,
    FLAG_KEYWORDS,
    NARRATIVE_TEST_RE,
    NUMBER,
    RANGE_RE,
    STRICT_NUMBER_RE,
    VALUE_TOKEN_RE,
)

logger = logging.getLogger(__name__)

CARD_WINDOW_LINES = 8
PREFIX_MAX_CHARS = 30

_COLUMN_SPLIT_RE = re.compile(r"\s{2,}|\t+")
_TAIL_TOKEN_RE = re.compile(
    rf"\(?{NUMBER}\s*(?:-|–|—|to|bis)\s*{NUMBER}\)?|(?:<=|>=|=<|=>|≤|≥|<|>)\s*{NUMBER}|\S+",
    re.IGNORECASE,
)
_TRAILING_LEADER_RE = re.compile(r"[\s.:]+$")
_HEADING_RE = re.compile(r"^[A-Z][A-Z0-9 ,/()&'+.-]{1,60}$")

_CARD_RANGE_RE = re.compile(r"^(?:desired|reference|normal|optimal)\s+range\s*:\s*(.*)$", re.IGNORECASE)
_CARD_UNIT_RE = re.compile(r"^(?:unit of measure|units?)\s*:\s*(.*)$", re.IGNORECASE)
_CARD_RESULT_RE = re.compile(r"^(?:your\s+)?result\s*:\s*(.*)$", re.IGNORECASE)

_REGEX_LINE_RE = re.compile(
    r"^([A-Za-zÄÖÜäöüß][A-Za-zÄÖÜäöüß0-9 ,/%().+:'-]{2,80}?)\s+([<>]?\d+(?:[.,]\d+)?)\s*"
    r"([A-Za-zµμ/%][A-Za-z0-9µμ/%.^*-]{0,20})?(?:\s+(\d+(?:[.,]\d+)?)\s*-\s*(\d+(?:[.,]\d+)?))?"
)
_NARRATIVE_RESULT_RE = re.compile(
    r"^(positive|negative|detected|not detected|reactive|non-reactive|nonreactive|no growth)\b",
    re.IGNORECASE,
)
_INLINE_NARRATIVE_RE = re.compile(
    r"^(.{3,80}?):\s*(positive|negative|detected|not detected|reactive|non-reactive|nonreactive)\b",
    re.IGNORECASE,
)


def parse_numeric_value_token(token: Any) -> float | int | str:
    """Whole-token numeric parse: ``190`` -> 190, ``6,1`` -> 6.1, ``1 90`` stays a string."""
    text = str(token).strip()
    if not STRICT_NUMBER_RE.match(text):
        return text
    normalized = text.replace(",", ".")
    if "." in normalized:
        return float(normalized)
    return int(normalized)


def _clean_name(name: str) -> str:
    return _TRAILING_LEADER_RE.sub("", collapse_whitespace(name))


def _is_name_like(name: str) -> bool:
    if not 2 <= len(name) <= 100 or not re.search(r"[A-Za-zÄÖÜäöüß]", name):
        return False
    return admin_noise_label(name) is None


def _is_heading(line: str) -> bool:
    letters = re.sub(r"[^A-Za-z]", "", line)
    return len(letters) >= 2 and bool(_HEADING_RE.match(line)) and ":" not in line


def _tail_tokens(columns: Iterable[str]) -> list[str]:
    tokens: list[str] = []
    for column in columns:
        column = collapse_whitespace(column)
        if is_qualitative_value(column):
            tokens.append(column)
        else:
            tokens.extend(match.group(0) for match in _TAIL_TOKEN_RE.finditer(column))
    return tokens


def _parse_tail(columns: list[str]) -> dict[str, Any] | None:
    value: Any = None
    unit: str | None = None
    reference_range: dict[str, float] | None = None
    flag: str | None = None

    for token in _tail_tokens(columns):
        compact = token.replace(" ", "")
        lowered = token.lower()
        if value is None and COMPARATOR_RE.match(compact):
            value = compact
            continue
        if reference_range is None and (RANGE_RE.match(token) or COMPARATOR_RE.match(compact)):
            reference_range = parse_reference_range_text(token.strip("()"))
            continue
        if value is not None and flag is None and lowered in FLAG_KEYWORDS and not is_unit_token(token):
            flag = FLAG_KEYWORDS[lowered]
            continue
        if unit is None and is_unit_token(token):
            unit = token
            continue
        if value is None and (STRICT_NUMBER_RE.match(token) or is_qualitative_value(token)):
            value = parse_numeric_value_token(token)

    if value is None:
        return None
    parsed: dict[str, Any] = {"value": value}
    if unit:
        parsed["unit"] = unit
    if reference_range:
        parsed["referenceRange"] = reference_range
    if flag:
        parsed["flag"] = flag
    return parsed


def _is_name_prefix(line: str) -> bool:
    return (
        len(line) <= PREFIX_MAX_CHARS
        and line.upper() == line
        and bool(re.search(r"[A-Z]", line))
        and not VALUE_TOKEN_RE.search(line)
        and not is_category_header(line)
    )


def harvest_table_lines(page_texts: list[str]) -> list[dict[str, Any]]:
    """Rows split into columns on runs of two or more spaces: ``name  value  unit  range  flag``."""
    candidates: list[dict[str, Any]] = []
    for page_text in page_texts:
        prefix: str | None = None
        for raw_line in page_text.splitlines():
            line = raw_line.strip()
            if not line:
                prefix = None
                continue
            columns = [column for column in _COLUMN_SPLIT_RE.split(line) if column.strip()]
            if len(columns) < 2:
                prefix = line if _is_name_prefix(line) else None
                continue

            name = _clean_name(columns[0])
            parsed = _parse_tail(columns[1:]) if _is_name_like(name) else None
            if parsed is None:
                prefix = None
                continue
            if prefix:
                name = f"{prefix} {name}"
                prefix = None
            candidates.append({"name": name, **parsed})
    logger.debug("Table-line harvester found %s candidate(s)", len(candidates))
    return candidates


def _parse_card_result(text: str) -> tuple[Any, str | None]:
    tokens = collapse_whitespace(text).split(" ")
    if not tokens or not tokens[0]:
        return None, None
    if is_qualitative_value(text):
        return collapse_whitespace(text), None
    first = tokens[0]
    if COMPARATOR_RE.match(first) or STRICT_NUMBER_RE.match(first):
        value = first if COMPARATOR_RE.match(first) else parse_numeric_value_token(first)
        unit = tokens[1] if len(tokens) > 1 and is_unit_token(tokens[1]) else None
        return value, unit
    return collapse_whitespace(text), None


def harvest_card_blocks(page_texts: list[str]) -> list[dict[str, Any]]:
    """``ALL-CAPS HEADING`` followed by ``Result:``, ``Units:`` and ``Reference Range:`` lines."""
    candidates: list[dict[str, Any]] = []
    for page_text in page_texts:
        lines = [line.strip() for line in page_text.splitlines() if line.strip()]
        for index, line in enumerate(lines):
            if not _is_heading(line) or is_category_header(line):
                continue
            value: Any = None
            unit: str | None = None
            reference_range: dict[str, float] | None = None
            for following in lines[index + 1 : index + 1 + CARD_WINDOW_LINES]:
                if _is_heading(following) and (value is not None or matches_analyte_vocabulary(following)):
                    break
                result_match = _CARD_RESULT_RE.match(following)
                unit_match = _CARD_UNIT_RE.match(following)
                range_match = _CARD_RANGE_RE.match(following)
                if result_match:
                    value, inline_unit = _parse_card_result(result_match.group(1))
                    unit = unit or inline_unit
                elif unit_match:
                    unit = collapse_whitespace(unit_match.group(1)) or unit
                elif range_match:
                    reference_range = parse_reference_range_text(range_match.group(1))
            if value is None:
                continue
            candidate: dict[str, Any] = {"name": title_case_heading(line), "value": value}
            if unit:
                candidate["unit"] = unit
            if reference_range:
                candidate["referenceRange"] = reference_range
            candidates.append(candidate)
    logger.debug("Card harvester found %s candidate(s)", len(candidates))
    return candidates


def _regex_line_candidate(line: str) -> dict[str, Any] | None:
    match = _REGEX_LINE_RE.match(line)
    if not match:
        return None
    name = _clean_name(match.group(1))
    if not name or admin_noise_label(name):
        return None
    candidate: dict[str, Any] = {"name": name, "value": parse_numeric_value_token(match.group(2))}
    if match.group(3) and is_unit_token(match.group(3)):
        candidate["unit"] = match.group(3)
    if match.group(4) and match.group(5):
        candidate["referenceRange"] = parse_reference_range_text(f"{match.group(4)}-{match.group(5)}")
    return candidate


def harvest_regex_fallback(page_texts: list[str]) -> list[dict[str, Any]]:
    """Last-resort scan: ``name value [unit] [min-max]`` lines and culture-style narrative results."""
    candidates: list[dict[str, Any]] = []
    for page_text in page_texts:
        lines = [collapse_whitespace(line) for line in page_text.splitlines() if line.strip()]
        for index, line in enumerate(lines):
            match = _INLINE_NARRATIVE_RE.match(line)
            if match:
                name = _clean_name(match.group(1))
                if admin_noise_label(name) is None:
                    candidates.append({"name": name, "value": match.group(2).title()})
                continue
            if NARRATIVE_TEST_RE.search(line) and not VALUE_TOKEN_RE.search(line) and index + 1 < len(lines):
                result = _NARRATIVE_RESULT_RE.match(lines[index + 1])
                if result and admin_noise_label(line) is None:
                    candidates.append({"name": _clean_name(line), "value": result.group(1).title()})
                    continue
            candidate = _regex_line_candidate(line)
            if candidate:
                candidates.append(candidate)
    logger.debug("Regex fallback harvester found %s candidate(s)", len(candidates))
    return candidates

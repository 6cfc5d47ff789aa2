from __future__ import annotations

import copy
import json
import math
import re
import unicodedata
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any

from jsonschema import ValidationError, validate

from bloodwork.vocabulary import FLAG_KEYWORDS

SCHEMA_PATH = Path(__file__).resolve().parent / "schemas" / "bloodwork_lab.schema.json"

PLACEHOLDER_MEASUREMENT: dict[str, str] = {
    "name": "Unparsed Result",
    "note": "Automatic extraction returned no structured measurements for this report.",
}

FLAGS = ("low", "high", "normal", "abnormal", "critical", "unknown")

_ISO_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_YEAR_FIRST_RE = re.compile(r"^(\d{4})[./-](\d{1,2})[./-](\d{1,2})$")
_DAY_FIRST_RE = re.compile(r"^(\d{1,2})[./-](\d{1,2})[./-](\d{4})$")
_DATETIME_FORMATS = (
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%dT%H:%M:%S.%f",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%b %d, %Y",
    "%B %d, %Y",
    "%d %b %Y",
    "%d %B %Y",
)

_DECIMAL_COMMA_RE = re.compile(r"(\d),(\d)")
_RANGE_TEXT_RE = re.compile(r"^\(?\s*(-?\d+(?:\.\d+)?)\s*(?:-|–|—|to|bis)\s*(-?\d+(?:\.\d+)?)", re.IGNORECASE)
_UPPER_TEXT_RE = re.compile(r"^(?:<=|=<|≤|<)\s*(-?\d+(?:\.\d+)?)")
_LOWER_TEXT_RE = re.compile(r"^(?:>=|=>|≥|>)\s*(-?\d+(?:\.\d+)?)")

_TEXT_DATE_RE = re.compile(r"(?<![\d./-])(\d{4}[-/.]\d{1,2}[-/.]\d{1,2}|\d{1,2}[./]\d{1,2}[./]\d{2,4})(?![\d])")
_DATE_KEYWORD_RE = re.compile(
    r"(?P<collection>collected|collection|drawn|entnahme|abnahme)"
    r"|(?P<received>received|eingang|eingegangen)"
    r"|(?P<reported>reported|befunddatum|ausgang)"
    r"|(?P<entered>entered)",
    re.IGNORECASE,
)


class LabRecordError(ValueError):
    pass


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------


def _calendar_date(year: int, month: int, day: int, raw: str) -> str:
    try:
        return date(year, month, day).isoformat()
    except ValueError as exc:
        raise LabRecordError(f"Invalid date: {raw}") from exc


def normalize_iso_date(raw_date: Any) -> str:
    """Normalize many date spellings to ``YYYY-MM-DD``.

    Year-first input uses any of ``-``, ``/`` or ``.``; year-last input is read
    day-first (``29.08.2025``). Raises ``LabRecordError`` for empty or
    impossible dates.
    """
    value = str(raw_date or "").strip()
    if not value:
        raise LabRecordError("Date is empty")

    match = _ISO_DATE_RE.match(value) or _YEAR_FIRST_RE.match(value)
    if match:
        return _calendar_date(int(match.group(1)), int(match.group(2)), int(match.group(3)), value)

    match = _DAY_FIRST_RE.match(value)
    if match:
        return _calendar_date(int(match.group(3)), int(match.group(2)), int(match.group(1)), value)

    for fmt in _DATETIME_FORMATS:
        try:
            return datetime.strptime(value, fmt).date().isoformat()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date().isoformat()
    except ValueError as exc:
        raise LabRecordError(f"Could not parse date: {value}") from exc


def _text_date_to_iso(token: str) -> str | None:
    """Dates found in report text: dots are day-first, slashes are US month-first."""
    parts = re.split(r"[-/.]", token)
    if len(parts[0]) == 4:
        year, month, day = parts
    elif "/" in token:
        month, day, year = parts
    else:
        day, month, year = parts
    year_number = int(year)
    if year_number < 100:
        year_number += 2000 if year_number < 70 else 1900
    try:
        return date(year_number, int(month), int(day)).isoformat()
    except ValueError:
        return None


@dataclass
class DateCandidates:
    collection_date: str | None = None
    reported_date: str | None = None
    received_date: str | None = None
    other_dates: list[str] = field(default_factory=list)

    def assign(self, kind: str, iso: str | None) -> None:
        if not iso:
            return
        attr = {"collection": "collection_date", "reported": "reported_date", "received": "received_date"}.get(kind)
        if attr and getattr(self, attr) is None:
            setattr(self, attr, iso)


def _dates_in(line: str) -> list[tuple[int, str | None]]:
    return [(m.start(), _text_date_to_iso(m.group(1))) for m in _TEXT_DATE_RE.finditer(line)]


def extract_date_candidates_from_text(text: str) -> DateCandidates:
    """Find collection/reported/received dates in report text.

    A header line of keywords without dates is matched by position against
    the dates on the following line (``entered`` only occupies a slot).
    """
    candidates = DateCandidates()
    lines = (text or "").splitlines()
    skip_next = False
    for index, line in enumerate(lines):
        if skip_next:
            skip_next = False
            continue
        keywords = [(m.start(), m.end(), m.lastgroup) for m in _DATE_KEYWORD_RE.finditer(line)]
        dates = _dates_in(line)

        if not keywords:
            candidates.other_dates.extend(iso for _, iso in dates if iso)
            continue

        if not dates:
            following = lines[index + 1] if index + 1 < len(lines) else ""
            next_dates = _dates_in(following)
            if next_dates and not _DATE_KEYWORD_RE.search(following):
                for (_, _, kind), (_, iso) in zip(keywords, next_dates):
                    candidates.assign(kind, iso)
                skip_next = True
            continue

        for position, (_, end, kind) in enumerate(keywords):
            limit = keywords[position + 1][0] if position + 1 < len(keywords) else len(line)
            owned = [iso for start, iso in dates if end <= start < limit]
            if owned:
                candidates.assign(kind, owned[0])
    return candidates


def resolve_canonical_lab_date(
    collection_date: str | None = None,
    reported_date: str | None = None,
    received_date: str | None = None,
    fallback_date: str | None = None,
) -> str | None:
    for value in (collection_date, reported_date, received_date, fallback_date):
        if value:
            return normalize_iso_date(value)
    return None


# ---------------------------------------------------------------------------
# Reference ranges
# ---------------------------------------------------------------------------


def _finite_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str):
        text = _DECIMAL_COMMA_RE.sub(r"\1.\2", value.strip())
        try:
            number = float(text)
        except ValueError:
            return None
        return number if math.isfinite(number) else None
    return None


def _bounds(low: float | None, high: float | None) -> dict[str, float] | None:
    result: dict[str, float] = {}
    if low is not None:
        result["min"] = low
    if high is not None:
        result["max"] = high
    return result or None


def parse_reference_range_text(text: Any) -> dict[str, float] | None:
    if not isinstance(text, str):
        return None
    value = _DECIMAL_COMMA_RE.sub(r"\1.\2", text.strip())
    if not value:
        return None

    match = _RANGE_TEXT_RE.match(value)
    if match:
        return _bounds(float(match.group(1)), float(match.group(2)))
    match = _UPPER_TEXT_RE.match(value)
    if match:
        return _bounds(None, float(match.group(1)))
    match = _LOWER_TEXT_RE.match(value)
    if match:
        return _bounds(float(match.group(1)), None)
    return None


def normalize_reference_range(raw: Any) -> dict[str, float] | None:
    """Coerce text, comparator, legacy ``lower``/``upper`` and ``{min, max}`` forms into ``{min?, max?}``."""
    if raw is None:
        return None
    if isinstance(raw, str):
        return parse_reference_range_text(raw)
    if not isinstance(raw, dict):
        return None

    low = _finite_number(raw.get("min"))
    high = _finite_number(raw.get("max"))
    if low is None and high is None:
        low = _finite_number(raw.get("lower"))
        high = _finite_number(raw.get("upper"))
    if low is None and high is None:
        return parse_reference_range_text(raw.get("text"))
    return _bounds(low, high)


# ---------------------------------------------------------------------------
# Measurements and labs
# ---------------------------------------------------------------------------


def _clean_str(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    text = re.sub(r"\s+", " ", value).strip()
    return text or None


def normalize_value(value: Any) -> float | int | str | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value if math.isfinite(value) else None
    return _clean_str(value)


def normalize_flag(value: Any) -> str | None:
    text = _clean_str(value)
    if text is None:
        return None
    lowered = text.lower()
    if lowered in FLAGS:
        return lowered
    return FLAG_KEYWORDS.get(lowered)


def _normalize_snapshot(raw: Any) -> dict[str, Any] | None:
    if not isinstance(raw, dict):
        return None
    value = normalize_value(raw.get("value"))
    if value is None:
        return None
    snapshot: dict[str, Any] = {"value": value}
    unit = _clean_str(raw.get("unit"))
    if unit:
        snapshot["unit"] = unit
    reference_range = normalize_reference_range(raw.get("referenceRange"))
    if reference_range:
        snapshot["referenceRange"] = reference_range
    return snapshot


def _normalize_duplicates(raw: Any) -> list[dict[str, Any]]:
    if not isinstance(raw, list):
        return []
    duplicates = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        entry: dict[str, Any] = {}
        for key in ("date", "unit", "sourceFile", "sourceLabName", "importLocation"):
            text = _clean_str(item.get(key))
            if text:
                entry[key] = text
        value = normalize_value(item.get("value"))
        if value is not None:
            entry["value"] = value
        reference_range = normalize_reference_range(item.get("referenceRange"))
        if reference_range:
            entry["referenceRange"] = reference_range
        if entry:
            duplicates.append(entry)
    return duplicates


def normalize_measurement(raw: Any) -> dict[str, Any] | None:
    """Return a clean measurement dict, or ``None`` when it has no usable name."""
    if not isinstance(raw, dict):
        return None
    name = _clean_str(raw.get("name"))
    if not name:
        return None

    measurement: dict[str, Any] = {"name": name}
    for key in ("originalName", "category"):
        text = _clean_str(raw.get(key))
        if text:
            measurement[key] = text
    value = normalize_value(raw.get("value"))
    if value is not None:
        measurement["value"] = value
    unit = _clean_str(raw.get("unit"))
    if unit:
        measurement["unit"] = unit
    reference_range = normalize_reference_range(raw.get("referenceRange"))
    if reference_range:
        measurement["referenceRange"] = reference_range
    flag = normalize_flag(raw.get("flag"))
    if flag:
        measurement["flag"] = flag
    note = _clean_str(raw.get("note")) or _clean_str(raw.get("notes"))
    if note:
        measurement["note"] = note
    original = _normalize_snapshot(raw.get("original"))
    if original:
        measurement["original"] = original
    duplicates = _normalize_duplicates(raw.get("duplicateValues"))
    if duplicates:
        measurement["duplicateValues"] = duplicates
    if raw.get("reviewStatus") == "needs_review":
        measurement["reviewStatus"] = "needs_review"
    return measurement


def placeholder_measurement() -> dict[str, str]:
    return dict(PLACEHOLDER_MEASUREMENT)


def _load_schema() -> dict[str, Any]:
    return json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))


def normalize_lab(raw: dict[str, Any]) -> dict[str, Any]:
    """Normalize and validate a lab record; an empty measurement list gets the placeholder."""
    if not isinstance(raw, dict):
        raise LabRecordError("Lab record must be an object")

    lab: dict[str, Any] = {"date": normalize_iso_date(raw.get("date"))}
    lab_name = _clean_str(raw.get("labName"))
    if not lab_name:
        raise LabRecordError("labName is required")
    lab["labName"] = lab_name
    for key in ("location", "importLocation", "notes"):
        text = _clean_str(raw.get(key))
        if text:
            lab[key] = text
    if isinstance(raw.get("importLocationIsInferred"), bool):
        lab["importLocationIsInferred"] = raw["importLocationIsInferred"]
    weight = _finite_number(raw.get("weightKg"))
    if weight is not None and weight > 0:
        lab["weightKg"] = weight
    if isinstance(raw.get("mergedFrom"), list) and raw["mergedFrom"]:
        lab["mergedFrom"] = copy.deepcopy(raw["mergedFrom"])

    measurements = [m for m in (normalize_measurement(item) for item in raw.get("measurements") or []) if m]
    lab["measurements"] = measurements or [placeholder_measurement()]

    try:
        validate(instance=lab, schema=_load_schema())
    except ValidationError as exc:
        raise LabRecordError(f"Lab record failed schema validation: {exc.message}") from exc
    return lab


# ---------------------------------------------------------------------------
# Naming
# ---------------------------------------------------------------------------


def slugify_for_path(value: str) -> str:
    stripped = unicodedata.normalize("NFKD", value or "")
    stripped = "".join(ch for ch in stripped if not unicodedata.combining(ch)).lower()
    stripped = re.sub(r"[^a-z0-9]+", "-", stripped).strip("-")
    return stripped or "unknown-lab"


def build_lab_file_name(lab: dict[str, Any]) -> str:
    return f"bloodwork_{normalize_iso_date(lab.get('date'))}_{slugify_for_path(lab.get('labName', ''))}.json"


def build_storage_key(lab: dict[str, Any], prefix: str = "vitals") -> str:
    normalized_prefix = (prefix or "").strip("/")
    file_name = build_lab_file_name(lab)
    return f"{normalized_prefix}/{file_name}" if normalized_prefix else file_name

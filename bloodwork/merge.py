from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from bloodwork.naming import canonical_key, unit_key
from bloodwork.records import normalize_reference_range

logger = logging.getLogger(__name__)

CARD_PRECEDENCE_MIN = 3
REVIEW_MARGIN = 0.1

STRATEGY_CARD = "card"


def _value_part(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return repr(float(value))
    return str(value).strip().lower()


def measurement_key(measurement: dict[str, Any]) -> str:
    reference_range = normalize_reference_range(measurement.get("referenceRange")) or {}
    return "|".join(
        [
            str(measurement.get("name") or "").strip().lower(),
            str(measurement.get("unit") or "").strip().lower(),
            _value_part(measurement.get("value")),
            _value_part(reference_range.get("min")),
            _value_part(reference_range.get("max")),
        ]
    )


def merge_unique(measurements: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    """Drop exact duplicates by key; the first occurrence wins."""
    unique: dict[str, dict[str, Any]] = {}
    for measurement in measurements:
        unique.setdefault(measurement_key(measurement), measurement)
    return list(unique.values())


def merge_candidates(by_strategy: list[tuple[str, list[dict[str, Any]]]]) -> list[dict[str, Any]]:
    """Combine harvester outputs in priority order.

    When the card harvester produced at least ``CARD_PRECEDENCE_MIN`` rows its
    names win; other strategies only add names it did not produce.
    """
    card_rows = [row for strategy, rows in by_strategy if strategy == STRATEGY_CARD for row in rows]
    if len(card_rows) < CARD_PRECEDENCE_MIN:
        return merge_unique(row for _, rows in by_strategy for row in rows)

    card_names = {canonical_key(row.get("name", "")) for row in card_rows}
    merged = list(card_rows)
    for strategy, rows in by_strategy:
        if strategy == STRATEGY_CARD:
            continue
        merged.extend(row for row in rows if canonical_key(row.get("name", "")) not in card_names)
    logger.debug("Card harvester took precedence for %s name(s)", len(card_names))
    return merge_unique(merged)


# ---------------------------------------------------------------------------
# Same-name resolution
# ---------------------------------------------------------------------------


@dataclass
class CandidateResolution:
    measurements: list[dict[str, Any]] = field(default_factory=list)
    conflicts: list[dict[str, Any]] = field(default_factory=list)


def _in_range(value: Any, reference_range: dict[str, float] | None) -> bool:
    if not reference_range or isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    low = reference_range.get("min")
    high = reference_range.get("max")
    return (low is None or value >= low) and (high is None or value <= high)


def candidate_confidence(measurement: dict[str, Any], unit_hints: Iterable[str] = ()) -> float:
    unit = measurement.get("unit")
    reference_range = normalize_reference_range(measurement.get("referenceRange"))
    score = 0.0
    if unit:
        score += 0.3
    if reference_range:
        score += 0.2
    if _in_range(measurement.get("value"), reference_range):
        score += 0.1
    if unit and unit_key(unit) in {unit_key(hint) for hint in unit_hints}:
        score += 0.2
    return round(score, 6)


def _reading(measurement: dict[str, Any]) -> tuple[str, str]:
    return _value_part(measurement.get("value")), unit_key(measurement.get("unit") or "")


def _duplicate_entry(measurement: dict[str, Any], measurement_date: str | None) -> dict[str, Any]:
    entry: dict[str, Any] = {}
    if measurement_date:
        entry["date"] = measurement_date
    for key in ("value", "unit", "referenceRange"):
        if measurement.get(key) is not None:
            entry[key] = copy.deepcopy(measurement[key])
    return entry


def resolve_measurement_candidates(
    candidates: list[dict[str, Any]],
    measurement_date: str | None = None,
    unit_hints: dict[str, list[str]] | None = None,
) -> CandidateResolution:
    """Collapse same-name candidates into one measurement each.

    The best-scoring candidate wins; alternates with a different reading go to
    ``duplicateValues``. A winning margin below ``REVIEW_MARGIN`` marks the
    measurement ``needs_review`` and records a conflict.
    """
    groups: dict[str, list[dict[str, Any]]] = {}
    for candidate in candidates:
        groups.setdefault(canonical_key(candidate.get("name", "")), []).append(candidate)

    resolution = CandidateResolution()
    for key, group in groups.items():
        if len(group) == 1:
            resolution.measurements.append(group[0])
            continue

        hints = (unit_hints or {}).get(key, [])
        scored = sorted(
            ((candidate_confidence(candidate, hints), position, candidate) for position, candidate in enumerate(group)),
            key=lambda item: (-item[0], item[1]),
        )
        best_score, _, best = scored[0]
        winner = copy.deepcopy(best)
        alternates = [(score, candidate) for score, _, candidate in scored[1:] if _reading(candidate) != _reading(best)]
        if not alternates:
            resolution.measurements.append(winner)
            continue

        duplicates = list(winner.get("duplicateValues") or [])
        duplicates.extend(_duplicate_entry(candidate, measurement_date) for _, candidate in alternates)
        winner["duplicateValues"] = duplicates

        margin = round(best_score - alternates[0][0], 6)
        if margin < REVIEW_MARGIN:
            winner["reviewStatus"] = "needs_review"
            resolution.conflicts.append(
                {
                    "name": winner.get("name"),
                    "chosen": winner.get("value"),
                    "alternatives": [candidate.get("value") for _, candidate in alternates],
                    "margin": margin,
                }
            )
            logger.warning("Ambiguous values for %s; kept %r for review", winner.get("name"), winner.get("value"))
        resolution.measurements.append(winner)
    return resolution

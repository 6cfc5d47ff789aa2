"""Persistent canonical vocabulary of analyte names.

The glossary is a plain JSON-able dict ``{version, updatedAt, entries}``
passed around explicitly: load it, hand a copy to the canonicalizer, persist
what comes back.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

from bloodwork.naming import canonical_key, collapse_whitespace, is_english_glossary_name
from bloodwork.records import normalize_reference_range

logger = logging.getLogger(__name__)

GLOSSARY_VERSION = 1


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def empty_glossary() -> dict[str, Any]:
    return {"version": GLOSSARY_VERSION, "updatedAt": now_iso(), "entries": []}


def _range_fingerprint(known_range: dict[str, Any]) -> str:
    return "|".join(
        [
            repr(known_range.get("min")),
            repr(known_range.get("max")),
            str(known_range.get("unit") or "").strip().lower(),
        ]
    )


def _normalize_known_range(raw: Any) -> dict[str, Any] | None:
    if not isinstance(raw, dict):
        return None
    bounds = normalize_reference_range(raw)
    if not bounds:
        return None
    unit = collapse_whitespace(raw["unit"]) if isinstance(raw.get("unit"), str) else ""
    if unit:
        bounds["unit"] = unit
    return bounds


def _unique_aliases(aliases: Iterable[Any], canonical_name: str) -> list[str]:
    seen = {canonical_key(canonical_name)}
    unique: list[str] = []
    for alias in aliases:
        if not isinstance(alias, str):
            continue
        text = collapse_whitespace(alias)
        key = canonical_key(text)
        if key and key not in seen:
            seen.add(key)
            unique.append(text)
    return unique


def _unique_unit_hints(hints: Iterable[Any]) -> list[str]:
    seen: set[str] = set()
    unique: list[str] = []
    for hint in hints:
        if not isinstance(hint, str) or not hint.strip():
            continue
        text = collapse_whitespace(hint)
        if text.lower() not in seen:
            seen.add(text.lower())
            unique.append(text)
    return unique


def _unique_ranges(ranges: Iterable[Any]) -> list[dict[str, Any]]:
    seen: set[str] = set()
    unique: list[dict[str, Any]] = []
    for raw in ranges:
        known_range = _normalize_known_range(raw)
        if known_range is None:
            continue
        fingerprint = _range_fingerprint(known_range)
        if fingerprint not in seen:
            seen.add(fingerprint)
            unique.append(known_range)
    return unique


def create_entry(canonical_name: str, aliases: Iterable[str] = (), timestamp: str | None = None) -> dict[str, Any]:
    stamp = timestamp or now_iso()
    name = collapse_whitespace(canonical_name)
    return {
        "canonicalName": name,
        "aliases": _unique_aliases(aliases, name),
        "knownRanges": [],
        "unitHints": [],
        "createdAt": stamp,
        "updatedAt": stamp,
    }


def normalize_entry(raw: Any) -> dict[str, Any] | None:
    if not isinstance(raw, dict):
        return None
    name = raw.get("canonicalName")
    if not is_english_glossary_name(name):
        return None
    name = collapse_whitespace(name)
    created = raw.get("createdAt") if isinstance(raw.get("createdAt"), str) else None
    updated = raw.get("updatedAt") if isinstance(raw.get("updatedAt"), str) else None
    stamp = now_iso()
    return {
        "canonicalName": name,
        "aliases": _unique_aliases(raw.get("aliases") or [], name),
        "knownRanges": _unique_ranges(raw.get("knownRanges") or []),
        "unitHints": _unique_unit_hints(raw.get("unitHints") or []),
        "createdAt": created or updated or stamp,
        "updatedAt": updated or created or stamp,
    }


def _merge_entries(target: dict[str, Any], other: dict[str, Any]) -> None:
    target["aliases"] = _unique_aliases([*target["aliases"], other["canonicalName"], *other["aliases"]], target["canonicalName"])
    target["unitHints"] = _unique_unit_hints([*target["unitHints"], *other["unitHints"]])
    target["knownRanges"] = _unique_ranges([*target["knownRanges"], *other["knownRanges"]])
    target["createdAt"] = min(target["createdAt"], other["createdAt"])
    target["updatedAt"] = max(target["updatedAt"], other["updatedAt"])


def normalize_glossary(raw: Any) -> dict[str, Any]:
    """Merge duplicate canonical entries, drop invalid ones and release aliases claimed as canonical names."""
    if not isinstance(raw, dict):
        return empty_glossary()

    entries = raw.get("entries")
    if not isinstance(entries, list):
        if entries is not None:
            logger.warning("Glossary entries must be a list, got %s; starting empty", type(entries).__name__)
        entries = []

    merged: dict[str, dict[str, Any]] = {}
    for item in entries:
        entry = normalize_entry(item)
        if entry is None:
            logger.debug("Dropping invalid glossary entry: %r", item)
            continue
        key = canonical_key(entry["canonicalName"])
        if key in merged:
            _merge_entries(merged[key], entry)
        else:
            merged[key] = entry

    canonical_keys = set(merged)
    for key, entry in merged.items():
        entry["aliases"] = [alias for alias in entry["aliases"] if canonical_key(alias) not in canonical_keys - {key}]

    entries = sorted(merged.values(), key=lambda entry: entry["canonicalName"].lower())
    updated = raw.get("updatedAt") if isinstance(raw.get("updatedAt"), str) else now_iso()
    return {"version": GLOSSARY_VERSION, "updatedAt": updated, "entries": entries}


def build_index(glossary: dict[str, Any]) -> dict[str, dict[str, Any]]:
    """Canonical key of every canonical name and alias -> entry. Canonical names win over aliases."""
    index: dict[str, dict[str, Any]] = {}
    for entry in glossary.get("entries", []):
        for alias in entry.get("aliases", []):
            index.setdefault(canonical_key(alias), entry)
    for entry in glossary.get("entries", []):
        index[canonical_key(entry["canonicalName"])] = entry
    return index


def add_evidence(
    entry: dict[str, Any],
    alias: str | None = None,
    unit: str | None = None,
    reference_range: dict[str, Any] | None = None,
    timestamp: str | None = None,
) -> None:
    """Record an observed alias, unit and range on ``entry`` and bump ``updatedAt``."""
    if alias:
        entry["aliases"] = _unique_aliases([*entry.get("aliases", []), alias], entry["canonicalName"])
    if unit:
        entry["unitHints"] = _unique_unit_hints([*entry.get("unitHints", []), unit])
    if reference_range:
        observed = dict(reference_range)
        if unit:
            observed["unit"] = unit
        entry["knownRanges"] = _unique_ranges([*entry.get("knownRanges", []), observed])
    entry["updatedAt"] = timestamp or now_iso()


def unit_hints_by_key(glossary: dict[str, Any]) -> dict[str, list[str]]:
    return {canonical_key(entry["canonicalName"]): list(entry.get("unitHints", [])) for entry in glossary.get("entries", [])}


def load_glossary(path: Path) -> dict[str, Any]:
    if not path.exists():
        logger.info("No glossary at %s, starting empty", path)
        return empty_glossary()
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("Glossary at %s is unreadable (%s), starting empty", path, exc)
        return empty_glossary()
    return normalize_glossary(raw)


def save_glossary(path: Path, glossary: dict[str, Any]) -> dict[str, Any]:
    normalized = normalize_glossary(glossary)
    normalized["updatedAt"] = now_iso()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(normalized, indent=4, ensure_ascii=False) + "\n", encoding="utf-8")
    logger.info("Saved glossary with %s entr(ies) to %s", len(normalized["entries"]), path)
    return normalized

"""Merge stored lab records whose dates fall within a short window.

Reports for one blood draw often arrive as several PDFs (collection,
follow-up panels, corrected results). ``--merge-existing`` folds each cluster
into the latest record and keeps superseded readings as ``duplicateValues``.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Callable, TypeVar

from bloodwork.naming import canonical_key
from bloodwork.records import PLACEHOLDER_MEASUREMENT, LabRecordError, normalize_lab
from bloodwork.storage import S3Uploader, StorageError, list_lab_files, read_lab, write_lab

logger = logging.getLogger(__name__)

DATE_WINDOW_DAYS = 7

T = TypeVar("T")


@dataclass
class StoredLab:
    file_name: str
    lab: dict[str, Any]

    @property
    def date(self) -> str:
        return self.lab["date"]


@dataclass
class ConsolidationResult:
    target_file: str
    absorbed_files: list[str] = field(default_factory=list)
    storage_key: str | None = None


def group_by_date_window(
    items: list[T], date_of: Callable[[T], str], window_days: int = DATE_WINDOW_DAYS
) -> list[list[T]]:
    """Cluster items whose dates lie within ``window_days`` of the latest date in the cluster.

    Groups are returned latest first; each group is sorted by date ascending.
    """
    remaining = sorted(items, key=date_of, reverse=True)
    groups: list[list[T]] = []
    while remaining:
        anchor = date.fromisoformat(date_of(remaining[0]))
        group: list[T] = []
        rest: list[T] = []
        for item in remaining:
            within = (anchor - date.fromisoformat(date_of(item))).days <= window_days
            (group if within else rest).append(item)
        remaining = rest
        groups.append(sorted(group, key=date_of))
    return groups


def _history_entry(measurement: dict[str, Any], stored: StoredLab) -> dict[str, Any]:
    entry = {
        "date": stored.date,
        "value": measurement.get("value"),
        "unit": measurement.get("unit"),
        "sourceFile": stored.file_name,
        "sourceLabName": stored.lab.get("labName"),
        "importLocation": stored.lab.get("importLocation"),
    }
    return {key: value for key, value in entry.items() if value is not None}


def _is_placeholder(measurement: dict[str, Any]) -> bool:
    return measurement.get("name") == PLACEHOLDER_MEASUREMENT["name"]


def merge_data_file_group(group: list[StoredLab]) -> dict[str, Any]:
    """Fold an ascending group into its latest lab; the latest reading per analyte wins."""
    target = group[-1]
    merged = copy.deepcopy(target.lab)

    by_key: dict[str, dict[str, Any]] = {}
    for stored in group:
        for measurement in stored.lab.get("measurements", []):
            if _is_placeholder(measurement):
                continue
            current = copy.deepcopy(measurement)
            key = canonical_key(current.get("name", ""))
            previous = by_key.get(key)
            if previous is not None:
                history = [*previous.get("duplicateValues", []), _history_entry(previous, previous["_source"])]
                history.extend(current.get("duplicateValues", []))
                current["duplicateValues"] = sorted(history, key=lambda entry: entry.get("date", ""))
            current["_source"] = stored
            by_key[key] = current

    measurements = []
    for measurement in by_key.values():
        measurement.pop("_source", None)
        measurements.append(measurement)
    merged["measurements"] = measurements or [dict(PLACEHOLDER_MEASUREMENT)]

    merged_from = list(target.lab.get("mergedFrom", []))
    for stored in group[:-1]:
        merged_from.extend(stored.lab.get("mergedFrom", []))
        item = {"fileName": stored.file_name, "date": stored.date, "labName": stored.lab.get("labName")}
        if stored.lab.get("importLocation"):
            item["importLocation"] = stored.lab["importLocation"]
        merged_from.append(item)
    unique = {item["fileName"]: item for item in merged_from if isinstance(item, dict) and item.get("fileName")}
    merged["mergedFrom"] = sorted(unique.values(), key=lambda item: (item.get("date", ""), item["fileName"]))
    return merged


def load_stored_labs(data_dir: Path) -> list[StoredLab]:
    stored = []
    for path in list_lab_files(data_dir):
        try:
            stored.append(StoredLab(file_name=path.name, lab=normalize_lab(read_lab(path))))
        except (StorageError, LabRecordError) as exc:
            logger.warning("Skipping %s: %s", path.name, exc)
    return stored


def consolidate_existing(
    data_dir: Path, uploader: S3Uploader | None = None, window_days: int = DATE_WINDOW_DAYS
) -> list[ConsolidationResult]:
    results = []
    for group in group_by_date_window(load_stored_labs(data_dir), lambda item: item.date, window_days):
        if len(group) < 2:
            continue
        target = group[-1]
        lab = normalize_lab(merge_data_file_group(group))
        _, payload = write_lab(lab, target.file_name, data_dir)
        absorbed = [stored.file_name for stored in group[:-1]]
        for file_name in absorbed:
            (data_dir / file_name).unlink(missing_ok=True)
            logger.info("Merged %s into %s and removed it", file_name, target.file_name)
        storage_key = uploader.upload(target.file_name, payload) if uploader is not None else None
        results.append(ConsolidationResult(target_file=target.file_name, absorbed_files=absorbed, storage_key=storage_key))
    logger.info("Merge-existing produced %s merged record(s)", len(results))
    return results

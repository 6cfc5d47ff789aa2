"""Resolve measurement names against the glossary.

Exact key lookup first; unresolved names go to a batched classifier (an LLM
in production); whatever the classifier cannot place is judged by a
conservative heuristic that may mint a new entry or discard the row.
"""

from __future__ import annotations

import copy
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

from bloodwork.glossary import add_evidence, build_index, create_entry, normalize_glossary, now_iso
from bloodwork.llm_client import LLMClient, LLMError, generate_with_fallback
from bloodwork.naming import (
    canonical_key,
    has_unit_leakage,
    matches_analyte_vocabulary,
    matches_loose_reject,
    normalize_measurement_name,
)

logger = logging.getLogger(__name__)

CLASSIFICATION_BATCH_SIZE = 64
CLASSIFICATION_MAX_OUTPUT_TOKENS = 6000
FALLBACK_MAX_NAME_CHARS = 55
PROMPT_GLOSSARY_LIMIT = 600

ACTION_ALIAS = "alias"
ACTION_NEW = "new_valid"
ACTION_INVALID = "invalid"

_ALIAS_SPELLINGS = {"alias", "existing_alias", "existing-alias", "match", "existing"}
_NEW_SPELLINGS = {"new_valid", "new-valid", "new", "new-entry", "new_entry", "valid"}

DECISION_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["decisions"],
    "properties": {
        "decisions": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["index", "action"],
                "properties": {
                    "index": {"type": "integer"},
                    "action": {"type": "string"},
                    "targetCanonicalName": {"type": "string"},
                    "canonicalName": {"type": "string"},
                    "aliases": {"type": "array", "items": {"type": "string"}},
                    "reason": {"type": "string"},
                },
            },
        }
    },
}

Classifier = Callable[[list[str], dict[str, Any]], list[dict[str, Any]]]


@dataclass
class CanonicalizationResult:
    measurements: list[dict[str, Any]] = field(default_factory=list)
    glossary: dict[str, Any] = field(default_factory=dict)
    discarded: list[str] = field(default_factory=list)
    created: list[dict[str, str]] = field(default_factory=list)


def normalize_decision_action(action: Any) -> str:
    key = str(action or "").strip().lower()
    if key in _ALIAS_SPELLINGS:
        return ACTION_ALIAS
    if key in _NEW_SPELLINGS:
        return ACTION_NEW
    return ACTION_INVALID


def fallback_accepts(name: str) -> bool:
    """Conservative stand-in for the classifier: short, analyte-like, no unit or prose leakage."""
    return (
        len(name) <= FALLBACK_MAX_NAME_CHARS
        and matches_analyte_vocabulary(name)
        and not has_unit_leakage(name)
        and not matches_loose_reject(name)
    )


def build_classification_prompt(names: Sequence[str], glossary: dict[str, Any]) -> str:
    known = [
        {"canonicalName": entry["canonicalName"], "aliases": entry.get("aliases", [])[:12]}
        for entry in glossary.get("entries", [])[:PROMPT_GLOSSARY_LIMIT]
    ]
    candidates = [{"index": index, "name": name} for index, name in enumerate(names)]
    return "\n".join(
        [
            "Classify laboratory measurement names against an existing glossary of blood analytes.",
            "For every candidate return one decision with its index:",
            '- "alias": the candidate is another spelling of an existing entry; set targetCanonicalName to that entry.',
            '- "new_valid": the candidate is a real analyte not in the glossary; set canonicalName to a concise English name.',
            '- "invalid": the candidate is not an analyte (headers, comments, patient data, units, prose).',
            "Canonical names must be English and use only ASCII letters, digits and simple punctuation.",
            "",
            "Existing glossary:",
            json.dumps(known, ensure_ascii=False),
            "",
            "Candidates:",
            json.dumps(candidates, ensure_ascii=False),
        ]
    )


def llm_classifier(client: LLMClient, model_ids: Sequence[str]) -> Classifier:
    def classify(names: list[str], glossary: dict[str, Any]) -> list[dict[str, Any]]:
        result, model_id = generate_with_fallback(
            client,
            model_ids,
            build_classification_prompt(names, glossary),
            DECISION_SCHEMA,
            "glossary_decisions",
            CLASSIFICATION_MAX_OUTPUT_TOKENS,
            context_label=f"glossary classification ({len(names)} names)",
        )
        logger.info("Classified %s name(s) with %s", len(names), model_id)
        return result.get("decisions", [])

    return classify


class _Canonicalizer:
    def __init__(self, glossary: dict[str, Any], classifier: Classifier | None):
        self.glossary = normalize_glossary(copy.deepcopy(glossary))
        self.index = build_index(self.glossary)
        self.classifier = classifier
        self.stamp = now_iso()
        self.result = CanonicalizationResult(glossary=self.glossary)

    def _register(self, entry: dict[str, Any], source: str) -> dict[str, Any]:
        self.glossary["entries"].append(entry)
        for alias in entry["aliases"]:
            self.index.setdefault(canonical_key(alias), entry)
        self.index[canonical_key(entry["canonicalName"])] = entry
        self.result.created.append({"canonicalName": entry["canonicalName"], "source": source})
        if source == "heuristic":
            logger.warning("Glossary entry %r created by heuristic fallback (source=heuristic)", entry["canonicalName"])
        else:
            logger.info("Glossary entry %r created (source=%s)", entry["canonicalName"], source)
        return entry

    def _apply_decision(self, decision: dict[str, Any], name: str) -> dict[str, Any] | None:
        action = normalize_decision_action(decision.get("action"))
        if action == ACTION_ALIAS:
            target = decision.get("targetCanonicalName")
            entry = self.index.get(canonical_key(target)) if isinstance(target, str) else None
            if entry is None:
                logger.debug("Alias decision for %r names unknown target %r", name, target)
            return entry
        if action == ACTION_NEW:
            proposed = decision.get("canonicalName") if isinstance(decision.get("canonicalName"), str) else name
            canonical_name = normalize_measurement_name(proposed)
            if canonical_name is None:
                logger.debug("Rejected proposed canonical name %r for %r", proposed, name)
                return None
            existing = self.index.get(canonical_key(canonical_name))
            if existing is not None:
                return existing
            aliases = [alias for alias in decision.get("aliases") or [] if isinstance(alias, str)]
            return self._register(create_entry(canonical_name, [name, *aliases], self.stamp), "llm")
        return None

    def _accept(self, measurement: dict[str, Any], entry: dict[str, Any]) -> dict[str, Any]:
        accepted = dict(measurement)
        if measurement["name"] != entry["canonicalName"]:
            accepted.setdefault("originalName", measurement["name"])
        accepted["name"] = entry["canonicalName"]
        add_evidence(
            entry,
            alias=measurement["name"],
            unit=measurement.get("unit"),
            reference_range=measurement.get("referenceRange"),
            timestamp=self.stamp,
        )
        source_label = measurement.get("originalName")
        if isinstance(source_label, str) and source_label.strip():
            add_evidence(entry, alias=source_label, timestamp=self.stamp)
        return accepted

    def _classify(self, pending: dict[str, dict[str, Any]]) -> dict[str, dict[str, Any]]:
        decisions: dict[str, dict[str, Any]] = {}
        if not pending or self.classifier is None:
            return decisions
        keys = list(pending)
        for start in range(0, len(keys), CLASSIFICATION_BATCH_SIZE):
            batch = keys[start : start + CLASSIFICATION_BATCH_SIZE]
            try:
                raw_decisions = self.classifier([pending[key]["name"] for key in batch], self.glossary)
            except LLMError as exc:
                logger.warning("Glossary classification failed, using heuristic fallback: %s", exc)
                continue
            for decision in raw_decisions:
                if not isinstance(decision, dict):
                    continue
                index = decision.get("index")
                if isinstance(index, int) and not isinstance(index, bool) and 0 <= index < len(batch):
                    decisions.setdefault(batch[index], decision)
        return decisions

    def run(self, measurements: list[dict[str, Any]]) -> CanonicalizationResult:
        placed: list[tuple[int, dict[str, Any]]] = []
        pending: dict[str, dict[str, Any]] = {}

        for position, measurement in enumerate(measurements):
            normalized = normalize_measurement_name(measurement.get("name"))
            if normalized is None:
                logger.info("Discarding measurement %r: not a valid analyte name", measurement.get("name"))
                self.result.discarded.append(str(measurement.get("name")))
                continue
            entry = self.index.get(canonical_key(normalized))
            if entry is not None:
                placed.append((position, self._accept(measurement, entry)))
            else:
                group = pending.setdefault(canonical_key(normalized), {"name": normalized, "items": []})
                group["items"].append((position, measurement))

        decisions = self._classify(pending)
        for key, group in pending.items():
            entry = None
            if key in decisions:
                entry = self._apply_decision(decisions[key], group["name"])
            if entry is None and fallback_accepts(group["name"]):
                entry = self.index.get(key) or self._register(create_entry(group["name"], (), self.stamp), "heuristic")
            if entry is None:
                logger.info("Discarding measurement %r: classifier and fallback rejected it", group["name"])
                self.result.discarded.extend(item["name"] for _, item in group["items"])
                continue
            placed.extend((position, self._accept(measurement, entry)) for position, measurement in group["items"])

        self.result.measurements = [measurement for _, measurement in sorted(placed, key=lambda item: item[0])]
        return self.result


def canonicalize_measurements(
    measurements: list[dict[str, Any]],
    glossary: dict[str, Any],
    classifier: Classifier | None = None,
) -> CanonicalizationResult:
    """Rename measurements to glossary canonical names; returns the updated glossary copy."""
    return _Canonicalizer(glossary, classifier).run(measurements)

from __future__ import annotations

import copy
import logging
from unittest.mock import MagicMock

import pytest

from bloodwork.canonicalize import (
    ACTION_ALIAS,
    ACTION_INVALID,
    ACTION_NEW,
    CLASSIFICATION_BATCH_SIZE,
    canonicalize_measurements,
    fallback_accepts,
    llm_classifier,
    normalize_decision_action,
)
from bloodwork.filters import filter_candidates
from bloodwork.llm_client import LLMError


class TestDecisionActions:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("alias", ACTION_ALIAS),
            ("existing_alias", ACTION_ALIAS),
            (" Match ", ACTION_ALIAS),
            ("new_valid", ACTION_NEW),
            ("NEW-ENTRY", ACTION_NEW),
            ("valid", ACTION_NEW),
            ("invalid", ACTION_INVALID),
            ("skip", ACTION_INVALID),
            (None, ACTION_INVALID),
        ],
    )
    def test_spellings(self, raw, expected):
        assert normalize_decision_action(raw) == expected

    def test_fallback_heuristic(self):
        assert fallback_accepts("Ferritin")
        assert not fallback_accepts("Interpretation Notes")
        assert not fallback_accepts("Glucose mg/dL")
        assert not fallback_accepts("Hemoglobin result see report")


class TestExactLookup:
    def test_aliases_resolve_to_canonical_names(self, sample_glossary):
        result = canonicalize_measurements(
            [{"name": "Blood Sugar", "value": 95, "unit": "mg/dL"}, {"name": "WBC", "value": 6.1}],
            sample_glossary,
        )
        assert [m["name"] for m in result.measurements] == ["Glucose", "Leukocytes"]
        assert result.measurements[0]["originalName"] == "Blood Sugar"
        assert result.created == []
        assert len(result.glossary["entries"]) == 2

    def test_input_glossary_is_not_mutated(self, sample_glossary):
        before = copy.deepcopy(sample_glossary)
        result = canonicalize_measurements([{"name": "Glukose", "value": 5.1, "unit": "mmol/L"}], sample_glossary)
        assert sample_glossary == before
        glucose = result.glossary["entries"][0]
        assert "Glukose" in glucose["aliases"]
        assert "mmol/L" in glucose["unitHints"]

    def test_category_headers_are_discarded(self, empty_glossary):
        result = canonicalize_measurements([{"name": "Hematology", "value": 1}], empty_glossary)
        assert result.measurements == []
        assert result.discarded == ["Hematology"]


class TestHeuristicFallback:
    def test_creates_entry_from_empty_glossary(self, empty_glossary, caplog):
        with caplog.at_level(logging.WARNING, logger="bloodwork.canonicalize"):
            result = canonicalize_measurements(
                [{"name": "Leukozyten (EB)", "value": 6.1, "unit": "Gpt/l"}], empty_glossary
            )
        assert [entry["canonicalName"] for entry in result.glossary["entries"]] == ["Leukocytes"]
        assert result.created == [{"canonicalName": "Leukocytes", "source": "heuristic"}]
        assert result.measurements[0]["name"] == "Leukocytes"
        assert result.measurements[0]["originalName"] == "Leukozyten (EB)"
        assert "source=heuristic" in caplog.text

    def test_reimport_does_not_grow_glossary(self, empty_glossary):
        rows = [{"name": "Leukozyten (EB)", "value": 6.1, "unit": "Gpt/l"}, {"name": "Ferritin", "value": 80}]
        first = canonicalize_measurements(rows, empty_glossary)
        second = canonicalize_measurements(rows, first.glossary)
        assert len(second.glossary["entries"]) == len(first.glossary["entries"]) == 2
        assert second.created == []

    def test_rejected_names_are_discarded(self, empty_glossary):
        result = canonicalize_measurements([{"name": "Interpretation Notes", "value": "see below"}], empty_glossary)
        assert result.measurements == []
        assert result.discarded == ["Interpretation Notes"]

    def test_same_key_classified_once(self, empty_glossary):
        classifier = MagicMock(return_value=[])
        result = canonicalize_measurements(
            [{"name": "Ferritin", "value": 50}, {"name": "FERRITIN", "value": 48}], empty_glossary, classifier
        )
        classifier.assert_called_once()
        assert classifier.call_args.args[0] == ["Ferritin"]
        assert [m["name"] for m in result.measurements] == ["Ferritin", "Ferritin"]
        assert result.measurements[1]["originalName"] == "FERRITIN"
        assert len(result.glossary["entries"]) == 1

    def test_classifier_failure_falls_back(self, empty_glossary):
        classifier = MagicMock(side_effect=LLMError("boom"))
        result = canonicalize_measurements([{"name": "Ferritin", "value": 50}], empty_glossary, classifier)
        assert result.created == [{"canonicalName": "Ferritin", "source": "heuristic"}]

    def test_names_classified_in_batches(self, empty_glossary):
        classifier = MagicMock(return_value=[])
        rows = [{"name": f"Marker {index}", "value": index} for index in range(70)]
        canonicalize_measurements(rows, empty_glossary, classifier)
        sizes = [len(call.args[0]) for call in classifier.call_args_list]
        assert sizes == [CLASSIFICATION_BATCH_SIZE, 70 - CLASSIFICATION_BATCH_SIZE]


class TestClassifierDecisions:
    def test_alias_decision(self, sample_glossary):
        classifier = MagicMock(return_value=[{"index": 0, "action": "existing_alias", "targetCanonicalName": "Glucose"}])
        result = canonicalize_measurements([{"name": "Zuckerwert", "value": 90}], sample_glossary, classifier)
        measurement = result.measurements[0]
        assert measurement["name"] == "Glucose"
        assert measurement["originalName"] == "Zuckerwert"
        assert "Zuckerwert" in result.glossary["entries"][0]["aliases"]

    def test_alias_to_unknown_target_falls_back(self, sample_glossary):
        classifier = MagicMock(return_value=[{"index": 0, "action": "alias", "targetCanonicalName": "Nothing"}])
        result = canonicalize_measurements([{"name": "Zuckerwert", "value": 90}], sample_glossary, classifier)
        assert result.measurements == []
        assert result.discarded == ["Zuckerwert"]

    def test_new_valid_decision(self, sample_glossary):
        classifier = MagicMock(
            return_value=[{"index": 0, "action": "new_valid", "canonicalName": "Apolipoprotein B", "aliases": ["ApoB"]}]
        )
        result = canonicalize_measurements([{"name": "Apo B", "value": 90, "unit": "mg/dL"}], sample_glossary, classifier)
        assert result.created == [{"canonicalName": "Apolipoprotein B", "source": "llm"}]
        entry = next(e for e in result.glossary["entries"] if e["canonicalName"] == "Apolipoprotein B")
        assert entry["aliases"] == ["Apo B", "ApoB"]
        assert entry["unitHints"] == ["mg/dL"]

    def test_new_valid_for_existing_name_becomes_alias(self, sample_glossary):
        classifier = MagicMock(return_value=[{"index": 0, "action": "new_valid", "canonicalName": "Blood Sugar"}])
        result = canonicalize_measurements([{"name": "Sugar Level", "value": 90}], sample_glossary, classifier)
        assert result.measurements[0]["name"] == "Glucose"
        assert result.created == []
        assert len(result.glossary["entries"]) == 2

    def test_invalid_decision_and_rejecting_fallback_discard(self, sample_glossary):
        classifier = MagicMock(return_value=[{"index": 0, "action": "invalid"}])
        result = canonicalize_measurements([{"name": "Interpretation Notes", "value": "x"}], sample_glossary, classifier)
        assert result.discarded == ["Interpretation Notes"]


class TestLlmClassifier:
    def test_uses_structured_fallback(self, mock_llm_client, sample_glossary):
        mock_llm_client.generate_json.return_value = {"decisions": [{"index": 0, "action": "invalid"}]}
        classify = llm_classifier(mock_llm_client, ["model-a"])
        decisions = classify(["Comment Line"], sample_glossary)
        assert decisions == [{"index": 0, "action": "invalid"}]
        prompt = mock_llm_client.generate_json.call_args.args[1]
        assert "Blood Sugar" in prompt
        assert '"Comment Line"' in prompt


class TestSourceLabelSeeding:
    @pytest.fixture
    def filtered(self):
        return filter_candidates([{"name": "Leukozyten (EB)", "value": 6.1, "unit": "Gpt/l"}])

    def test_classifier_created_entry_keeps_source_label(self, filtered, empty_glossary):
        classifier = MagicMock(return_value=[{"index": 0, "action": "new_valid", "canonicalName": "Leukocytes"}])
        result = canonicalize_measurements(filtered, empty_glossary, classifier)
        entry = result.glossary["entries"][0]
        assert entry["canonicalName"] == "Leukocytes"
        assert entry["aliases"] == ["Leukocytes (EB)", "Leukozyten (EB)"]
        assert entry["unitHints"] == ["Gpt/l"]
        assert result.measurements[0]["originalName"] == "Leukozyten (EB)"

    def test_heuristic_entry_keeps_source_label(self, filtered, empty_glossary):
        result = canonicalize_measurements(filtered, empty_glossary)
        assert result.created == [{"canonicalName": "Leukocytes", "source": "heuristic"}]
        assert result.glossary["entries"][0]["aliases"] == ["Leukocytes (EB)", "Leukozyten (EB)"]

    def test_exact_hit_records_source_label(self, filtered, sample_glossary):
        result = canonicalize_measurements(filtered, sample_glossary)
        leukocytes = next(e for e in result.glossary["entries"] if e["canonicalName"] == "Leukocytes")
        assert leukocytes["aliases"] == ["WBC", "Leukocytes (EB)", "Leukozyten (EB)"]

from __future__ import annotations

from bloodwork.merge import (
    candidate_confidence,
    merge_candidates,
    merge_unique,
    resolve_measurement_candidates,
)


class TestMergeUnique:
    def test_first_occurrence_wins(self):
        rows = [
            {"name": "Glucose", "value": 95, "unit": "mg/dL", "flag": "normal"},
            {"name": "glucose ", "value": 95.0, "unit": "MG/DL"},
            {"name": "Glucose", "value": 96, "unit": "mg/dL"},
        ]
        merged = merge_unique(rows)
        assert merged == [rows[0], rows[2]]


class TestMergeCandidates:
    def test_card_rows_take_precedence_when_plentiful(self):
        card = [
            {"name": "Total Cholesterol", "value": 212},
            {"name": "HDL Cholesterol", "value": 48},
            {"name": "Triglycerides", "value": 90},
        ]
        table = [{"name": "HDL  Cholesterol", "value": 4.8}, {"name": "Glucose", "value": 95}]
        merged = merge_candidates([("table", table), ("card", card)])
        assert [row["name"] for row in merged] == ["Total Cholesterol", "HDL Cholesterol", "Triglycerides", "Glucose"]

    def test_few_card_rows_merge_normally(self):
        card = [{"name": "HDL Cholesterol", "value": 48}]
        table = [{"name": "HDL Cholesterol", "value": 4.8}]
        merged = merge_candidates([("table", table), ("card", card)])
        assert [row["value"] for row in merged] == [4.8, 48]


class TestResolveMeasurementCandidates:
    def test_prefers_better_supported_candidate(self):
        result = resolve_measurement_candidates(
            [
                {"name": "Cholesterol/HDL Ratio", "value": 2, "referenceRange": {"max": 100}},
                {"name": "Cholesterol/HDL Ratio", "value": 6.4, "unit": "calc", "referenceRange": {"max": 5}},
            ],
            measurement_date="2024-01-20",
        )
        assert len(result.measurements) == 1
        winner = result.measurements[0]
        assert winner["value"] == 6.4
        assert winner["duplicateValues"][0]["value"] == 2
        assert winner["duplicateValues"][0]["date"] == "2024-01-20"
        assert "reviewStatus" not in winner
        assert result.conflicts == []

    def test_tie_needs_review(self):
        result = resolve_measurement_candidates(
            [
                {"name": "WBC", "value": 7.2, "unit": "10^3/uL", "referenceRange": {"min": 4, "max": 10}},
                {"name": "WBC", "value": 7.1, "unit": "10^3/uL", "referenceRange": {"min": 4, "max": 10}},
            ]
        )
        winner = result.measurements[0]
        assert winner["value"] == 7.2
        assert winner["reviewStatus"] == "needs_review"
        assert result.conflicts and result.conflicts[0]["alternatives"] == [7.1]

    def test_glossary_unit_hint_breaks_tie(self):
        result = resolve_measurement_candidates(
            [
                {"name": "Glucose", "value": 5.3, "unit": "mmol/L"},
                {"name": "Glucose", "value": 95, "unit": "mg/dL"},
            ],
            unit_hints={"glucose": ["mg/dL"]},
        )
        assert result.measurements[0]["value"] == 95
        assert result.conflicts == []

    def test_same_reading_is_not_a_conflict(self):
        result = resolve_measurement_candidates(
            [
                {"name": "TSH", "value": 2.1, "unit": "uIU/mL"},
                {"name": "TSH", "value": 2.1, "unit": "uIU/mL", "referenceRange": {"min": 0.4, "max": 4}},
            ]
        )
        assert result.measurements == [{"name": "TSH", "value": 2.1, "unit": "uIU/mL", "referenceRange": {"min": 0.4, "max": 4}}]

    def test_keeps_order_of_first_appearance(self):
        result = resolve_measurement_candidates([{"name": "B", "value": 1}, {"name": "A", "value": 2}])
        assert [m["name"] for m in result.measurements] == ["B", "A"]

    def test_confidence_components(self):
        assert candidate_confidence({"value": 5, "unit": "mg/dL", "referenceRange": {"min": 1, "max": 9}}, ["MG/DL"]) == 0.8

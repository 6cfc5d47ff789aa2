from __future__ import annotations

import json

from bloodwork.glossary import (
    add_evidence,
    build_index,
    create_entry,
    load_glossary,
    normalize_glossary,
    save_glossary,
    unit_hints_by_key,
)


class TestNormalizeGlossary:
    def test_merges_duplicate_canonical_names(self):
        raw = {
            "version": 1,
            "updatedAt": "2024-03-01T00:00:00Z",
            "entries": [
                {
                    "canonicalName": "Glucose",
                    "aliases": ["Blood Sugar"],
                    "unitHints": ["mg/dL"],
                    "createdAt": "2024-02-01T00:00:00Z",
                    "updatedAt": "2024-02-01T00:00:00Z",
                },
                {
                    "canonicalName": "glucose",
                    "aliases": ["GLU"],
                    "unitHints": ["MG/DL", "mmol/L"],
                    "createdAt": "2024-01-01T00:00:00Z",
                    "updatedAt": "2024-03-01T00:00:00Z",
                },
            ],
        }
        glossary = normalize_glossary(raw)
        assert len(glossary["entries"]) == 1
        entry = glossary["entries"][0]
        assert entry["canonicalName"] == "Glucose"
        assert entry["aliases"] == ["Blood Sugar", "GLU"]
        assert entry["unitHints"] == ["mg/dL", "mmol/L"]
        assert entry["createdAt"] == "2024-01-01T00:00:00Z"
        assert entry["updatedAt"] == "2024-03-01T00:00:00Z"

    def test_drops_invalid_entries(self):
        glossary = normalize_glossary(
            {"entries": [{"canonicalName": "Leukozyten"}, {"canonicalName": ""}, "TSH", create_entry("TSH")]}
        )
        assert [entry["canonicalName"] for entry in glossary["entries"]] == ["TSH"]

    def test_alias_claimed_as_canonical_name_is_released(self):
        glossary = normalize_glossary(
            {
                "entries": [
                    create_entry("Glucose", ["Fasting Glucose", "Hemoglobin A1c"]),
                    create_entry("Hemoglobin A1c"),
                ]
            }
        )
        glucose = next(entry for entry in glossary["entries"] if entry["canonicalName"] == "Glucose")
        assert glucose["aliases"] == ["Fasting Glucose"]

    def test_entries_sorted_case_insensitively(self):
        glossary = normalize_glossary({"entries": [create_entry("TSH"), create_entry("albumin"), create_entry("Glucose")]})
        assert [entry["canonicalName"] for entry in glossary["entries"]] == ["albumin", "Glucose", "TSH"]

    def test_known_ranges_deduplicated(self):
        entry = create_entry("Glucose")
        entry["knownRanges"] = [{"min": 70, "max": 99, "unit": "mg/dL"}, {"min": 70.0, "max": 99.0, "unit": "MG/DL"}, {}]
        glossary = normalize_glossary({"entries": [entry]})
        assert glossary["entries"][0]["knownRanges"] == [{"min": 70.0, "max": 99.0, "unit": "mg/dL"}]

    def test_non_dict_gives_empty_glossary(self):
        assert normalize_glossary("garbage")["entries"] == []

    def test_non_list_entries_give_empty_glossary(self):
        assert normalize_glossary({"version": 1, "entries": 5})["entries"] == []
        assert normalize_glossary({"version": 1, "entries": {"canonicalName": "TSH"}})["entries"] == []


class TestIndex:
    def test_canonical_names_win_over_aliases(self):
        glossary = {"entries": [create_entry("Glucose", ["Sugar"]), create_entry("Sugar")]}
        index = build_index(glossary)
        assert index["sugar"]["canonicalName"] == "Sugar"
        assert index["glucose"]["canonicalName"] == "Glucose"

    def test_aliases_indexed_by_canonical_key(self, sample_glossary):
        index = build_index(sample_glossary)
        assert index["blood sugar"]["canonicalName"] == "Glucose"
        assert index["wbc"]["canonicalName"] == "Leukocytes"

    def test_unit_hints_by_key(self, sample_glossary):
        assert unit_hints_by_key(sample_glossary) == {"glucose": ["mg/dL"], "leukocytes": ["10^3/uL"]}

class TestEvidence:
    def test_add_evidence_records_alias_unit_and_range(self):
        entry = create_entry("Glucose")
        add_evidence(entry, alias="Glukose", unit="mg/dL", reference_range={"min": 70, "max": 99}, timestamp="2024-05-01T00:00:00Z")
        add_evidence(entry, alias="glucose", unit="MG/DL", timestamp="2024-05-02T00:00:00Z")
        assert entry["aliases"] == ["Glukose"]
        assert entry["unitHints"] == ["mg/dL"]
        assert entry["knownRanges"] == [{"min": 70.0, "max": 99.0, "unit": "mg/dL"}]
        assert entry["updatedAt"] == "2024-05-02T00:00:00Z"

class TestPersistence:
    def test_missing_file_gives_empty_glossary(self, tmp_path):
        glossary = load_glossary(tmp_path / "missing.json")
        assert glossary["version"] == 1
        assert glossary["entries"] == []

    def test_unparseable_file_gives_empty_glossary(self, tmp_path):
        path = tmp_path / "glossary.json"
        path.write_text("{not json", encoding="utf-8")
        assert load_glossary(path)["entries"] == []

    def test_malformed_entries_file_gives_empty_glossary(self, tmp_path):
        path = tmp_path / "glossary.json"
        path.write_text('{"version": 1, "entries": 5}', encoding="utf-8")
        assert load_glossary(path)["entries"] == []

    def test_save_then_load(self, tmp_path, sample_glossary):
        path = tmp_path / "nested" / "glossary.json"
        saved = save_glossary(path, sample_glossary)
        assert saved["updatedAt"] != sample_glossary["updatedAt"]
        assert path.read_text(encoding="utf-8").startswith('{\n    "version": 1')
        assert load_glossary(path) == saved
        assert json.loads(path.read_text(encoding="utf-8"))["entries"][0]["canonicalName"] == "Glucose"

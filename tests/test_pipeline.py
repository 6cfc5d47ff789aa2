from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest

import bloodwork.pipeline as pipeline
from bloodwork.llm_client import LLMError
from bloodwork.pdf_text import ExtractedText, InvalidPdfError
from bloodwork.records import PLACEHOLDER_MEASUREMENT, LabRecordError
from bloodwork.pipeline import import_pdf, infer_metadata_from_path, resolve_metadata

REPORT_TEXT = "\n".join(
    [
        "Collected 03/04/2024",
        "Glucose    6.1    mmol/l    3.9-5.5",
        "Leukozyten (EB)    6.1    Gpt/l    4.0-10.0",
    ]
)


@pytest.fixture
def fake_extraction(monkeypatch):
    def install(text):
        monkeypatch.setattr(
            pipeline, "extract_pdf_text", lambda data, source="": ExtractedText(page_texts=[text], method="pdftotext")
        )

    return install


@pytest.fixture
def pdf_file(tmp_path):
    def create(name="2024-03-05_quest.pdf"):
        path = tmp_path / "to-import" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"%PDF-1.4")
        return path

    return create


class TestInferMetadataFromPath:
    def test_date_and_lab_from_file_name(self):
        metadata = infer_metadata_from_path("/in/2024-01-20_quest_results.pdf", "")
        assert metadata == {
            "labName": "quest",
            "importLocation": "/in/2024-01-20_quest_results.pdf",
            "importLocationIsInferred": True,
            "date": "2024-01-20",
        }

    def test_weak_tokens_fall_back_to_text(self):
        metadata = infer_metadata_from_path("/in/lab_results.pdf", "Laboratory Corporation of America Holdings")
        assert metadata["labName"] == "LabCorp"
        assert "date" not in metadata

    def test_unknown_lab(self):
        assert infer_metadata_from_path("/in/12345.pdf", "")["labName"] == "Unknown Lab"


class TestResolveMetadata:
    def test_llm_metadata_used_when_available(self, mock_llm_client):
        mock_llm_client.generate_json.return_value = {"date": "2024-03-09", "labName": "Quest Diagnostics"}
        metadata = resolve_metadata(ExtractedText(page_texts=["Glucose  95"]), "/in/quest.pdf", mock_llm_client, ["m"])
        assert metadata["labName"] == "Quest Diagnostics"
        assert metadata["date"] == "2024-03-09"
        assert metadata["importLocation"] == "/in/quest.pdf"

    def test_llm_failure_falls_back_to_path(self, mock_llm_client):
        mock_llm_client.generate_json.side_effect = LLMError("down")
        mock_llm_client.generate_text.side_effect = LLMError("down")
        metadata = resolve_metadata(
            ExtractedText(page_texts=["Reported 2024-03-07"]), "/in/2024-03-05_quest.pdf", mock_llm_client, ["m"]
        )
        assert metadata["labName"] == "quest"
        assert metadata["date"] == "2024-03-07"

    def test_missing_date_raises(self):
        with pytest.raises(LabRecordError, match="report date"):
            resolve_metadata(ExtractedText(page_texts=["Glucose  95"]), "/in/report.pdf", None, ["m"])


class TestImportPdf:
    def test_end_to_end_without_llm(self, tmp_path, fake_extraction, pdf_file, empty_glossary):
        fake_extraction(REPORT_TEXT)
        data_dir = tmp_path / "data"
        glossary_path = data_dir / "bloodwork-glossary.json"
        uploader = MagicMock()
        uploader.upload.return_value = "vitals/bloodwork_2024-03-04_quest.json"

        result, glossary = import_pdf(
            pdf_file(), empty_glossary, ["m"], uploader=uploader, data_dir=data_dir, glossary_path=glossary_path
        )

        lab = result.lab
        assert lab["date"] == "2024-03-04"
        assert lab["labName"] == "quest"
        glucose, leukocytes = lab["measurements"]
        assert glucose["name"] == "Glucose"
        assert glucose["unit"] == "mg/dL"
        assert glucose["value"] == pytest.approx(109.91102)
        assert glucose["original"]["unit"] == "mmol/L"
        assert leukocytes["name"] == "Leukocytes"
        assert leukocytes["originalName"] == "Leukozyten (EB)"
        assert leukocytes["unit"] == "10^3/uL"

        assert result.output_path == data_dir / "bloodwork_2024-03-04_quest.json"
        assert json.loads(result.output_path.read_text(encoding="utf-8")) == lab
        assert result.storage_key == "vitals/bloodwork_2024-03-04_quest.json"
        uploader.upload.assert_called_once_with("bloodwork_2024-03-04_quest.json", result.output_path.read_text(encoding="utf-8"))

        assert [entry["canonicalName"] for entry in glossary["entries"]] == ["Glucose", "Leukocytes"]
        assert json.loads(glossary_path.read_text(encoding="utf-8"))["entries"] == glossary["entries"]

    def test_reimport_is_stable(self, tmp_path, fake_extraction, pdf_file, empty_glossary):
        fake_extraction(REPORT_TEXT)
        data_dir = tmp_path / "data"
        glossary_path = data_dir / "glossary.json"
        path = pdf_file()

        first, glossary = import_pdf(path, empty_glossary, ["m"], data_dir=data_dir, glossary_path=glossary_path)
        second, glossary_again = import_pdf(path, glossary, ["m"], data_dir=data_dir, glossary_path=glossary_path)

        assert second.output_path == first.output_path
        assert second.lab == first.lab
        assert len(glossary_again["entries"]) == len(glossary["entries"]) == 2

    def test_no_measurements_writes_placeholder(self, tmp_path, fake_extraction, pdf_file, empty_glossary):
        fake_extraction("Collected 03/04/2024\nNothing here")
        result, _ = import_pdf(
            pdf_file(), empty_glossary, ["m"], data_dir=tmp_path / "data", glossary_path=tmp_path / "g.json"
        )
        assert result.lab["measurements"] == [PLACEHOLDER_MEASUREMENT]

    def test_no_date_fails_before_writing(self, tmp_path, fake_extraction, pdf_file, empty_glossary):
        fake_extraction("Glucose    95    mg/dL")
        data_dir = tmp_path / "data"
        with pytest.raises(LabRecordError):
            import_pdf(pdf_file("report.pdf"), empty_glossary, ["m"], data_dir=data_dir, glossary_path=tmp_path / "g.json")
        assert not data_dir.exists()

    def test_rejects_non_pdf_extension(self, tmp_path, empty_glossary):
        path = tmp_path / "report.txt"
        path.write_bytes(b"%PDF-1.4")
        with pytest.raises(InvalidPdfError):
            import_pdf(path, empty_glossary, ["m"], data_dir=tmp_path, glossary_path=tmp_path / "g.json")

    def test_missing_file(self, tmp_path, empty_glossary):
        with pytest.raises(FileNotFoundError):
            import_pdf(tmp_path / "absent.pdf", empty_glossary, ["m"], data_dir=tmp_path, glossary_path=tmp_path / "g.json")


class TestCreateLlmClient:
    def test_missing_key_disables_llm(self, monkeypatch):
        monkeypatch.setattr(pipeline, "LLMClient", MagicMock(side_effect=LLMError("missing key")))
        assert pipeline.create_llm_client() is None

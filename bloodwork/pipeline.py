from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Sequence

from bloodwork.canonicalize import canonicalize_measurements, llm_classifier
from bloodwork.config import settings
from bloodwork.fallback import attempt, first_success
from bloodwork.filters import filter_candidates
from bloodwork.glossary import save_glossary, unit_hints_by_key
from bloodwork.harvesters import harvest_card_blocks, harvest_regex_fallback, harvest_table_lines
from bloodwork.llm_client import LLMClient, LLMError
from bloodwork.llm_extract import extract_measurements_with_llm, extract_metadata_with_llm, normalize_names_with_llm
from bloodwork.merge import STRATEGY_CARD, merge_candidates, merge_unique, resolve_measurement_candidates
from bloodwork.pdf_text import ExtractedText, InvalidPdfError, extract_pdf_text
from bloodwork.records import (
    LabRecordError,
    extract_date_candidates_from_text,
    normalize_iso_date,
    normalize_lab,
    normalize_measurement,
    resolve_canonical_lab_date,
)
from bloodwork.storage import S3Uploader, resolve_output_file_name, write_lab
from bloodwork.units import standardize_measurements

logger = logging.getLogger(__name__)

_FILENAME_DATE_RE = re.compile(r"\d{4}-\d{2}-\d{2}")
_WEAK_LAB_TOKENS = {"lab", "labs", "result", "results", "testosterone", "hormones", "metabolic", "metabloic", "de"}
_TEXT_LAB_NAMES = (
    (("quest diagnostics",), "Quest Diagnostics"),
    (("labcorp", "laboratory corporation of america"), "LabCorp"),
    (("physicians lab",), "Physicians Lab"),
    (("mdi limbach",), "MDI Limbach Berlin GmbH"),
)


@dataclass
class ImportResult:
    source_path: str
    output_path: Path
    lab: dict[str, Any]
    storage_key: str | None = None
    conflicts: list[dict[str, Any]] = field(default_factory=list)
    discarded: list[str] = field(default_factory=list)


def create_llm_client(api_key: str | None = None) -> LLMClient | None:
    """LLM client, or ``None`` (heuristics only) when no API key is configured."""
    try:
        return LLMClient(api_key=api_key)
    except LLMError as exc:
        logger.warning("LLM features disabled: %s", exc)
        return None


def infer_lab_name_from_text(text: str) -> str | None:
    lowered = (text or "").lower()
    for needles, lab_name in _TEXT_LAB_NAMES:
        if any(needle in lowered for needle in needles):
            return lab_name
    return None


def infer_metadata_from_path(source_path: str, extracted_text: str) -> dict[str, Any]:
    """Report date and lab name guessed from the file name, then from well-known lab names in the text."""
    stem = Path(source_path).stem
    date_match = _FILENAME_DATE_RE.search(stem)
    remainder = _FILENAME_DATE_RE.sub(" ", stem)
    tokens = [token for token in re.split(r"[\s_-]+", remainder) if token]
    lab_tokens = [token for token in tokens if token.lower() not in _WEAK_LAB_TOKENS]
    raw_lab_name = " ".join(lab_tokens).strip()
    if not raw_lab_name or raw_lab_name.isdigit():
        raw_lab_name = infer_lab_name_from_text(extracted_text) or "Unknown Lab"

    metadata: dict[str, Any] = {
        "labName": raw_lab_name,
        "importLocation": source_path,
        "importLocationIsInferred": True,
    }
    if date_match:
        metadata["date"] = date_match.group(0)
    return metadata


def _read_pdf(path: Path) -> bytes:
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    if not path.is_file():
        raise InvalidPdfError(f"Not a file: {path}")
    if path.suffix.lower() != ".pdf":
        raise InvalidPdfError(f"Expected a .pdf file: {path}")
    return path.read_bytes()


def harvest_candidates(
    extracted: ExtractedText, source_path: str, client: LLMClient | None, model_ids: Sequence[str]
) -> list[dict[str, Any]]:
    strategies: list[tuple[str, list[dict[str, Any]]]] = [
        ("table", harvest_table_lines(extracted.page_texts)),
        (STRATEGY_CARD, harvest_card_blocks(extracted.page_texts)),
    ]
    if client is not None:
        strategies.append(("llm", extract_measurements_with_llm(client, model_ids, source_path, extracted.page_texts)))

    accepted = filter_candidates(merge_candidates(strategies))
    if not accepted:
        logger.info("No candidates survived for %s, trying regex fallback", source_path)
        accepted = filter_candidates(merge_unique(harvest_regex_fallback(extracted.page_texts)))
    return [measurement for measurement in (normalize_measurement(item) for item in accepted) if measurement]


def resolve_metadata(
    extracted: ExtractedText, source_path: str, client: LLMClient | None, model_ids: Sequence[str]
) -> dict[str, Any]:
    inferred = infer_metadata_from_path(source_path, extracted.full_text)
    steps = []
    if client is not None:
        steps.append(
            lambda: attempt(
                "llm metadata",
                extract_metadata_with_llm,
                client,
                model_ids,
                source_path,
                extracted.full_text,
                catch=(LLMError,),
            )
        )
    steps.append(lambda: attempt("path inference", lambda: inferred))
    chain = first_success(steps)
    if chain.failures:
        logger.warning("Metadata fallback for %s: %s", source_path, chain.describe_failures())
    metadata = {**chain.outcome.value, "importLocation": source_path, "importLocationIsInferred": True}

    fallback_date = inferred.get("date")
    if not fallback_date and metadata.get("date"):
        fallback_date = attempt("metadata date", normalize_iso_date, metadata["date"], catch=(LabRecordError,)).value
    candidates = extract_date_candidates_from_text(extracted.full_text)
    if not fallback_date and candidates.other_dates:
        fallback_date = candidates.other_dates[0]
    lab_date = resolve_canonical_lab_date(
        collection_date=candidates.collection_date,
        reported_date=candidates.reported_date,
        received_date=candidates.received_date,
        fallback_date=fallback_date,
    )
    if not lab_date:
        raise LabRecordError(f"Could not determine the report date for {source_path}")
    metadata["date"] = lab_date
    return metadata


def import_pdf(
    path: Path,
    glossary: dict[str, Any],
    model_ids: Sequence[str],
    client: LLMClient | None = None,
    uploader: S3Uploader | None = None,
    data_dir: Path | None = None,
    glossary_path: Path | None = None,
) -> tuple[ImportResult, dict[str, Any]]:
    """Import one PDF: returns the result and the persisted glossary."""
    data_dir = data_dir or settings.data_dir
    glossary_path = glossary_path or settings.glossary_path
    source_path = str(path)

    extracted = extract_pdf_text(_read_pdf(path), source_path)
    measurements = harvest_candidates(extracted, source_path, client, model_ids)
    if client is not None and settings.llm_normalization_pass and measurements:
        measurements = normalize_names_with_llm(client, model_ids, measurements)

    classifier = llm_classifier(client, model_ids) if client is not None else None
    canonical = canonicalize_measurements(measurements, glossary, classifier)
    standardized = standardize_measurements(canonical.measurements)

    metadata = resolve_metadata(extracted, source_path, client, model_ids)
    resolution = resolve_measurement_candidates(
        standardized, measurement_date=metadata["date"], unit_hints=unit_hints_by_key(canonical.glossary)
    )
    lab = normalize_lab({**metadata, "measurements": resolution.measurements})

    file_name = resolve_output_file_name(lab, source_path, data_dir)
    output_path, payload = write_lab(lab, file_name, data_dir)
    saved_glossary = save_glossary(glossary_path, canonical.glossary)

    storage_key = uploader.upload(file_name, payload) if uploader is not None else None
    logger.info(
        "Imported %s: %s measurement(s), %s discarded, %s conflict(s)",
        source_path,
        len(lab["measurements"]),
        len(canonical.discarded),
        len(resolution.conflicts),
    )
    result = ImportResult(
        source_path=source_path,
        output_path=output_path,
        lab=lab,
        storage_key=storage_key,
        conflicts=resolution.conflicts,
        discarded=canonical.discarded,
    )
    return result, saved_glossary

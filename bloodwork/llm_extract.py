from __future__ import annotations

import json
import logging
import re
from typing import Any, Sequence

from bloodwork.harvesters import parse_numeric_value_token
from bloodwork.llm_client import LLMClient, LLMError, generate_with_fallback
from bloodwork.naming import is_english_glossary_name
from bloodwork.vocabulary import VALUE_TOKEN_RE

logger = logging.getLogger(__name__)

MAX_ROWS_PER_PAGE = 120
MEASUREMENT_MAX_OUTPUT_TOKENS = 1400
METADATA_MAX_OUTPUT_TOKENS = 280
METADATA_TEXT_LIMIT = 45_000
NAME_BATCH_SIZE = 64
NAME_MAX_OUTPUT_TOKENS = 3000

_COLUMN_SPLIT_RE = re.compile(r"\s{2,}|\t+")

_RANGE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {"min": {"type": "number"}, "max": {"type": "number"}},
}

MEASUREMENT_BATCH_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["measurements"],
    "properties": {
        "measurements": {
            "type": "array",
            "maxItems": MAX_ROWS_PER_PAGE,
            "items": {
                "type": "object",
                "required": ["name"],
                "properties": {
                    "name": {"type": "string", "minLength": 1},
                    "originalName": {"type": "string"},
                    "value": {"type": ["number", "string"]},
                    "unit": {"type": "string"},
                    "referenceRange": _RANGE_SCHEMA,
                    "flag": {"type": "string"},
                    "note": {"type": "string"},
                },
            },
        }
    },
}

METADATA_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["date", "labName"],
    "properties": {
        "date": {"type": "string", "minLength": 1},
        "labName": {"type": "string", "minLength": 1},
        "location": {"type": "string"},
        "weightKg": {"type": "number"},
        "notes": {"type": "string"},
    },
}

NAME_NORMALIZATION_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["names"],
    "properties": {
        "names": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["index", "name"],
                "properties": {"index": {"type": "integer"}, "name": {"type": "string"}},
            },
        }
    },
}


def _coerce_row(row: dict[str, Any]) -> dict[str, Any]:
    coerced = dict(row)
    if isinstance(coerced.get("value"), str):
        coerced["value"] = parse_numeric_value_token(coerced["value"])
    return coerced


def table_like_lines(page_text: str) -> list[str]:
    """Lines with at least two columns whose tail carries a value token."""
    lines = []
    for raw_line in page_text.splitlines():
        columns = [column for column in _COLUMN_SPLIT_RE.split(raw_line.strip()) if column.strip()]
        if len(columns) >= 2 and VALUE_TOKEN_RE.search(" ".join(columns[1:])):
            lines.append(raw_line.rstrip())
    return lines


def build_measurement_prompt(source_path: str, page_number: int, lines: Sequence[str]) -> str:
    return "\n".join(
        [
            f"Source file: {source_path} (page {page_number})",
            "",
            f"Extract up to {MAX_ROWS_PER_PAGE} blood test measurements from the table rows below.",
            "Only include analyte rows; skip headers, patient details, addresses, comments and guideline text.",
            "Translate non-English analyte names to English and keep the source label in originalName.",
            "Keep values, units and ranges exactly as printed. Use referenceRange {min, max};",
            'a range like "<5" becomes {"max": 5} and ">60" becomes {"min": 60}.',
            "If there are no measurements, return an empty measurements array.",
            "",
            "Rows:",
            *lines,
        ]
    )


def extract_measurements_with_llm(
    client: LLMClient,
    model_ids: Sequence[str],
    source_path: str,
    page_texts: Sequence[str],
) -> list[dict[str, Any]]:
    """One structured request per page that has table-like rows; a failing page is skipped."""
    measurements: list[dict[str, Any]] = []
    for page_number, page_text in enumerate(page_texts, start=1):
        lines = table_like_lines(page_text)
        if not lines:
            continue
        try:
            result, model_id = generate_with_fallback(
                client,
                model_ids,
                build_measurement_prompt(source_path, page_number, lines),
                MEASUREMENT_BATCH_SCHEMA,
                "bloodwork_measurements",
                MEASUREMENT_MAX_OUTPUT_TOKENS,
                context_label=f"{source_path} (page {page_number})",
            )
        except LLMError as exc:
            logger.warning("Skipping LLM extraction for %s page %s: %s", source_path, page_number, exc)
            continue
        rows = [_coerce_row(row) for row in result.get("measurements", []) if isinstance(row, dict)]
        logger.info("Page %s of %s: %s row(s) from %s", page_number, source_path, len(rows), model_id)
        measurements.extend(rows)
    return measurements


def build_metadata_prompt(source_path: str, full_text: str) -> str:
    segment = full_text[:METADATA_TEXT_LIMIT] if full_text else "No machine-readable text was extracted from the PDF."
    return "\n".join(
        [
            f"Source file: {source_path}",
            "",
            "Extract only report-level metadata from this bloodwork report.",
            "Return date (YYYY-MM-DD, the sample collection date when printed), labName,",
            "optional location, optional weightKg, optional notes.",
            "Do not include measurements in this step.",
            "",
            "Extracted text (may be partial):",
            segment,
        ]
    )


def extract_metadata_with_llm(
    client: LLMClient, model_ids: Sequence[str], source_path: str, full_text: str
) -> dict[str, Any]:
    result, model_id = generate_with_fallback(
        client,
        model_ids,
        build_metadata_prompt(source_path, full_text),
        METADATA_SCHEMA,
        "bloodwork_metadata",
        METADATA_MAX_OUTPUT_TOKENS,
        context_label=f"{source_path} (metadata)",
    )
    logger.info("Metadata for %s from %s", source_path, model_id)
    return result


def normalize_names_with_llm(
    client: LLMClient,
    model_ids: Sequence[str],
    measurements: list[dict[str, Any]],
) -> list[dict[str, Any]]:
    """Second pass: ask for standardized English names in batches; a failing batch keeps its names."""
    renamed = [dict(measurement) for measurement in measurements]
    for start in range(0, len(renamed), NAME_BATCH_SIZE):
        batch = renamed[start : start + NAME_BATCH_SIZE]
        prompt = "\n".join(
            [
                "Rewrite each laboratory analyte name as its standard English name.",
                "Keep names that are already standard English unchanged. Return one item per index.",
                "",
                json.dumps([{"index": i, "name": m["name"]} for i, m in enumerate(batch)], ensure_ascii=False),
            ]
        )
        try:
            result, _ = generate_with_fallback(
                client,
                model_ids,
                prompt,
                NAME_NORMALIZATION_SCHEMA,
                "bloodwork_names",
                NAME_MAX_OUTPUT_TOKENS,
                context_label=f"name normalization batch {start // NAME_BATCH_SIZE + 1}",
            )
        except LLMError as exc:
            logger.warning("Skipping name normalization batch: %s", exc)
            continue
        for item in result.get("names", []):
            index = item.get("index")
            name = (item.get("name") or "").strip()
            if not isinstance(index, int) or not 0 <= index < len(batch) or not is_english_glossary_name(name):
                continue
            measurement = batch[index]
            if name != measurement["name"]:
                measurement.setdefault("originalName", measurement["name"])
                measurement["name"] = name
    return renamed

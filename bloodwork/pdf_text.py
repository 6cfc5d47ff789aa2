from __future__ import annotations

import io
import logging
import shutil
import subprocess
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pdfplumber

from bloodwork.config import settings

logger = logging.getLogger(__name__)

PDF_SIGNATURE = b"%PDF"
LINE_TOLERANCE = 2.0
WIDE_GAP_MIN = 6.0
PDFTOTEXT_TIMEOUT_SECONDS = 60


class InvalidPdfError(ValueError):
    pass


@dataclass
class ExtractedText:
    page_texts: list[str] = field(default_factory=list)
    method: str = ""

    @property
    def full_text(self) -> str:
        return "\n\n".join(
            f"Page {index}\n{text}" for index, text in enumerate(self.page_texts, start=1) if text.strip()
        )


def ensure_pdf_signature(pdf_bytes: bytes) -> None:
    if len(pdf_bytes) < len(PDF_SIGNATURE):
        raise InvalidPdfError("File is too short to be a PDF")
    if not pdf_bytes.startswith(PDF_SIGNATURE):
        raise InvalidPdfError("File does not start with the %PDF signature")


def _pdftotext_pages(pdf_bytes: bytes) -> list[str] | None:
    """Run ``pdftotext -layout``; ``None`` when the binary is missing or fails."""
    binary = shutil.which(settings.pdftotext_path)
    if not binary:
        logger.debug("pdftotext not found on PATH, using pdfplumber")
        return None

    with tempfile.TemporaryDirectory(prefix="bloodwork_") as tmpdir:
        source = Path(tmpdir) / "input.pdf"
        source.write_bytes(pdf_bytes)
        try:
            result = subprocess.run(
                [binary, "-layout", "-enc", "UTF-8", str(source), "-"],
                capture_output=True,
                timeout=PDFTOTEXT_TIMEOUT_SECONDS,
                check=False,
            )
        except (subprocess.TimeoutExpired, OSError) as exc:
            logger.warning("pdftotext failed (%s), using pdfplumber", exc)
            return None

    if result.returncode != 0:
        logger.warning(
            "pdftotext exited with %s: %s", result.returncode, result.stderr.decode("utf-8", "replace")[:200]
        )
        return None

    pages = result.stdout.decode("utf-8", "replace").split("\f")
    if pages and not pages[-1].strip():
        pages.pop()
    return pages


def _render_line(words: list[dict[str, Any]]) -> str:
    parts: list[str] = []
    previous: dict[str, Any] | None = None
    for word in sorted(words, key=lambda w: w["x0"]):
        if previous is not None:
            char_width = (previous["x1"] - previous["x0"]) / max(len(previous["text"]), 1)
            gap = word["x0"] - previous["x1"]
            parts.append("  " if gap > max(WIDE_GAP_MIN, 2 * char_width) else " ")
        parts.append(word["text"])
        previous = word
    return "".join(parts)


def words_to_lines(words: list[dict[str, Any]], tolerance: float = LINE_TOLERANCE) -> list[str]:
    """Cluster pdfplumber words into lines by ``top``, then order each line by ``x0``."""
    lines: list[list[dict[str, Any]]] = []
    current_top: float | None = None
    for word in sorted(words, key=lambda w: (w["top"], w["x0"])):
        if current_top is None or abs(word["top"] - current_top) > tolerance:
            lines.append([word])
            current_top = word["top"]
        else:
            lines[-1].append(word)
    return [_render_line(line) for line in lines]


def _pdfplumber_pages(pdf_bytes: bytes) -> list[str]:
    pages: list[str] = []
    try:
        pdf = pdfplumber.open(io.BytesIO(pdf_bytes))
    except Exception as exc:  # noqa: BLE001
        raise InvalidPdfError(f"Could not open PDF: {exc}") from exc
    with pdf:
        for number, page in enumerate(pdf.pages, start=1):
            try:
                words = page.extract_words(x_tolerance=1.5, y_tolerance=LINE_TOLERANCE, keep_blank_chars=False)
                pages.append("\n".join(words_to_lines(words)))
            except Exception:  # noqa: BLE001
                logger.exception("pdfplumber could not read page %s", number)
                pages.append("")
    return pages


def extract_pdf_text(pdf_bytes: bytes, source: str = "") -> ExtractedText:
    ensure_pdf_signature(pdf_bytes)
    pages = _pdftotext_pages(pdf_bytes)
    if pages is not None and any(page.strip() for page in pages):
        logger.info("Extracted %s page(s) from %s with pdftotext", len(pages), source or "PDF")
        return ExtractedText(page_texts=pages, method="pdftotext")

    pages = _pdfplumber_pages(pdf_bytes)
    logger.info("Extracted %s page(s) from %s with pdfplumber", len(pages), source or "PDF")
    return ExtractedText(page_texts=pages, method="pdfplumber")

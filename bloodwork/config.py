from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


load_dotenv()

PROJECT_ROOT = Path(__file__).resolve().parent.parent


def _resolve_dir(value: str | None, default: Path) -> Path:
    if not value or not value.strip():
        return default
    path = Path(value.strip())
    return path if path.is_absolute() else PROJECT_ROOT / path


def _model_ids(value: str | None) -> tuple[str, ...]:
    ids = [item.strip() for item in (value or "").split(",") if item.strip()]
    return tuple(ids) or ("google/gemini-3-flash-preview",)


def _flag(value: str | None, default: bool) -> bool:
    if value is None or not value.strip():
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


_DATA_DIR = _resolve_dir(os.getenv("VITALS_DATA_DIR"), PROJECT_ROOT / "data")


@dataclass(frozen=True)
class Settings:
    openrouter_api_key: str | None = os.getenv("OPENROUTER_API_KEY")
    openrouter_api_base: str = os.getenv("OPENROUTER_API_BASE", "https://openrouter.ai/api/v1")
    default_model_ids: tuple[str, ...] = _model_ids(os.getenv("BLOODWORK_MODEL_IDS"))
    llm_timeout_seconds: float = float(os.getenv("BLOODWORK_LLM_TIMEOUT_SECONDS", "90"))
    llm_normalization_pass: bool = _flag(os.getenv("BLOODWORK_LLM_NORMALIZE"), True)

    # Local files
    data_dir: Path = _DATA_DIR
    to_import_dir: Path = _DATA_DIR / "to-import"
    glossary_path: Path = _resolve_dir(os.getenv("BLOODWORK_GLOSSARY_PATH"), _DATA_DIR / "bloodwork-glossary.json")
    pdftotext_path: str = os.getenv("BLOODWORK_PDFTOTEXT", "pdftotext")

    # Object storage
    s3_bucket: str = os.getenv("VITALS_S3_BUCKET", "").strip() or "stefan-life"
    s3_prefix: str = os.getenv("VITALS_S3_PREFIX", "").strip() or "vitals"
    aws_region: str | None = os.getenv("AWS_REGION") or os.getenv("AWS_DEFAULT_REGION")


settings = Settings()

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from bloodwork.config import settings
from bloodwork.records import build_lab_file_name, slugify_for_path

logger = logging.getLogger(__name__)

LAB_FILE_GLOB = "bloodwork_*.json"


class StorageError(RuntimeError):
    pass


def serialize_lab(lab: dict[str, Any]) -> str:
    return json.dumps(lab, indent=4, ensure_ascii=False) + "\n"


def resolve_output_file_name(lab: dict[str, Any], source_path: str, data_dir: Path) -> str:
    """``bloodwork_<date>_<lab>.json``, suffixed with the source slug when another source owns that name."""
    base_name = build_lab_file_name(lab)
    base_path = data_dir / base_name
    if not base_path.exists():
        return base_name
    try:
        existing = json.loads(base_path.read_text(encoding="utf-8"))
        if isinstance(existing, dict) and existing.get("importLocation") == source_path:
            return base_name
    except (OSError, ValueError):
        logger.warning("Existing record %s is unreadable, writing beside it", base_path)
    source_slug = slugify_for_path(Path(source_path).stem)
    return base_name[: -len(".json")] + f"_{source_slug}.json"


def write_lab(lab: dict[str, Any], file_name: str, data_dir: Path) -> tuple[Path, str]:
    data_dir.mkdir(parents=True, exist_ok=True)
    payload = serialize_lab(lab)
    output_path = data_dir / file_name
    output_path.write_text(payload, encoding="utf-8")
    logger.info("Wrote %s", output_path)
    return output_path, payload


def list_lab_files(data_dir: Path) -> list[Path]:
    if not data_dir.exists():
        return []
    return sorted(path for path in data_dir.glob(LAB_FILE_GLOB) if path.is_file())


def read_lab(path: Path) -> dict[str, Any]:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise StorageError(f"Could not read lab record {path}: {exc}") from exc


def build_key(file_name: str, prefix: str) -> str:
    normalized = (prefix or "").strip("/")
    return f"{normalized}/{file_name}" if normalized else file_name


class S3Uploader:
    def __init__(self, bucket: str | None = None, prefix: str | None = None, region: str | None = None):
        self.bucket = bucket or settings.s3_bucket
        self.prefix = prefix if prefix is not None else settings.s3_prefix
        region = region or settings.aws_region
        if not region:
            raise StorageError("AWS_REGION (or AWS_DEFAULT_REGION) is missing. Set it or pass --skip-upload.")
        import boto3

        self._client = boto3.client("s3", region_name=region)

    def upload(self, file_name: str, payload: str) -> str:
        from botocore.exceptions import BotoCoreError, ClientError

        key = build_key(file_name, self.prefix)
        try:
            self._client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=payload.encode("utf-8"),
                ContentType="application/json; charset=utf-8",
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Upload of {key} to s3://{self.bucket} failed: {exc}") from exc
        logger.info("Uploaded s3://%s/%s", self.bucket, key)
        return key

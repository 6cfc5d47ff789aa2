from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence

from bloodwork.config import settings
from bloodwork.consolidate import consolidate_existing
from bloodwork.glossary import load_glossary
from bloodwork.pipeline import create_llm_client, import_pdf
from bloodwork.storage import S3Uploader

logger = logging.getLogger(__name__)

USAGE = """\
bloodwork-import <path-to-pdf> [--skip-upload] [--model <id>]...
bloodwork-import --all [--continue-on-error] [--skip-upload] [--model <id>]...
bloodwork-import --merge-existing [--skip-upload]"""


class CliUsageError(ValueError):
    pass


class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:  # type: ignore[override]
        raise CliUsageError(message)


@dataclass(frozen=True)
class CliOptions:
    path: str | None = None
    all: bool = False
    continue_on_error: bool = False
    skip_upload: bool = False
    merge_existing: bool = False
    model_ids: tuple[str, ...] = field(default_factory=tuple)


def _build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(prog="bloodwork-import", usage=USAGE, description="Import bloodwork PDFs into lab JSON")
    parser.add_argument("path", nargs="?", default=None, help="PDF to import")
    parser.add_argument("--all", action="store_true", help="Import every PDF in the to-import directory")
    parser.add_argument("--continue-on-error", action="store_true", help="With --all, keep going after a failure")
    parser.add_argument("--skip-upload", action="store_true", help="Do not upload records to object storage")
    parser.add_argument("--model", action="append", default=[], dest="models", help="Model id (repeatable)")
    parser.add_argument("--merge-existing", action="store_true", help="Merge stored records within a 7-day window")
    return parser


def parse_cli_options(argv: Sequence[str]) -> CliOptions:
    """Parse and validate arguments; every invalid combination raises ``CliUsageError``."""
    args = _build_parser().parse_args(list(argv))

    if args.merge_existing:
        if args.all or args.path or args.models or args.continue_on_error:
            raise CliUsageError("--merge-existing only accepts --skip-upload")
    elif args.path and args.all:
        raise CliUsageError("Pass either a PDF path or --all, not both")
    elif args.continue_on_error and not args.all:
        raise CliUsageError("--continue-on-error requires --all")
    elif not args.path and not args.all:
        raise CliUsageError("Pass a PDF path, --all or --merge-existing")

    if any(not model.strip() for model in args.models):
        raise CliUsageError("--model requires a non-empty model id")

    return CliOptions(
        path=args.path,
        all=args.all,
        continue_on_error=args.continue_on_error,
        skip_upload=args.skip_upload,
        merge_existing=args.merge_existing,
        model_ids=tuple(args.models),
    )


def resolve_model_ids(cli_model_ids: Sequence[str]) -> tuple[str, ...]:
    unique: list[str] = []
    for model_id in cli_model_ids:
        trimmed = model_id.strip()
        if trimmed and trimmed not in unique:
            unique.append(trimmed)
    return tuple(unique) or settings.default_model_ids


def resolve_input_files(options: CliOptions, to_import_dir: Path | None = None) -> list[Path]:
    if not options.all:
        return [Path(options.path or "")]
    directory = to_import_dir or settings.to_import_dir
    if not directory.is_dir():
        raise FileNotFoundError(f"Import directory not found: {directory}")
    files = sorted(path for path in directory.iterdir() if path.is_file() and path.suffix.lower() == ".pdf")
    if not files:
        logger.warning("No PDF files found in %s", directory)
    return files


def run(argv: Sequence[str]) -> int:
    options = parse_cli_options(argv)
    uploader = None if options.skip_upload else S3Uploader()

    if options.merge_existing:
        consolidate_existing(settings.data_dir, uploader)
        return 0

    files = resolve_input_files(options)
    model_ids = resolve_model_ids(options.model_ids)
    client = create_llm_client()
    glossary = load_glossary(settings.glossary_path)

    failures: list[tuple[Path, Exception]] = []
    for path in files:
        try:
            result, glossary = import_pdf(path, glossary, model_ids, client=client, uploader=uploader)
        except Exception as exc:  # noqa: BLE001
            if not options.continue_on_error:
                raise
            logger.exception("Import failed for %s", path)
            failures.append((path, exc))
            continue
        print(f"Wrote {result.output_path}" + (f" (uploaded to {result.storage_key})" if result.storage_key else ""))

    if failures:
        logger.error("%s of %s file(s) failed: %s", len(failures), len(files), ", ".join(str(p) for p, _ in failures))
        return 1
    return 0


def main(argv: Sequence[str] | None = None) -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    try:
        code = run(sys.argv[1:] if argv is None else argv)
    except CliUsageError as exc:
        print(f"error: {exc}\n\nUsage:\n{USAGE}", file=sys.stderr)
        code = 2
    sys.exit(code)


if __name__ == "__main__":
    main()

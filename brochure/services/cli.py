"""
CLI entry-point for the brochure pipeline.

Usage
-----
    brochure process ./brochures/marina-heights.pdf [--force]
    brochure process https://example.com/brochure.pdf
    brochure status <prospect-id>
    brochure retry <prospect-id> ./brochures/marina-heights.pdf
    brochure reprocess <prospect-id> ./brochures/marina-heights.pdf
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from brochure.config import settings
from brochure.errors import PipelineError
from brochure.ingestion.pdf_parser import compute_file_hash
from brochure.schemas import ProcessingUpdate
from brochure.services.fetcher import fetch_pdf, validate_pdf_bytes
from brochure.services.orchestrator import PipelineResult, ProspectProcessor
from brochure.services.state import ProcessingState
from brochure.services.storage import BlobStorage
from brochure.services.store import ProspectStore

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


def build_processor(db_path: str | None = None) -> ProspectProcessor:
    return ProspectProcessor(
        ProspectStore(db_path or settings.sqlite_path),
        BlobStorage(),
        ProcessingState.create(settings.progress_ttl_seconds),
    )


def load_source(source: str) -> bytes:
    """Read a local PDF, or fetch it when *source* is an http(s) URL."""
    if source.startswith(("http://", "https://")):
        return asyncio.run(fetch_pdf(source))
    data = Path(source).read_bytes()
    validate_pdf_bytes(data)
    return data


def print_progress(update: ProcessingUpdate) -> None:
    print(f"  [{update.progress:3d}%] {update.status:<11} {update.message}")


def print_result(result: PipelineResult) -> None:
    print("\n══════════════ Processing Summary ══════════════")
    print(f"  Prospect        : {result.prospect_id}")
    print(f"  Success         : {result.success}")
    if result.data is not None:
        print(f"  Project name    : {result.data.name}")
        print(f"  Confidence      : {result.data.confidence:.2f}")
        print(f"  Unit types      : {len(result.data.units)}")
    if result.error:
        print(f"  Error           : {result.error}")
    for warning in result.warnings:
        print(f"  Warning         : {warning}")
    print(f"  Project slug    : {result.project_slug or '-'}")
    print(f"  Mini-site slug  : {result.mini_site_slug or '-'}")
    print(f"  Elapsed         : {result.elapsed_seconds:.1f}s")
    print("════════════════════════════════════════════════")


def cmd_process(args: argparse.Namespace) -> int:
    processor = build_processor(args.db)
    pdf_bytes = load_source(args.source)
    file_hash = compute_file_hash(pdf_bytes)

    existing = processor.store.find_prospect_by_hash(file_hash)
    if existing is not None and not args.force:
        print(f"Already uploaded as prospect {existing.id} ({existing.status.value}).")
        print("Use --force to reprocess it.")
        return 1

    if existing is not None:
        result = asyncio.run(processor.reprocess(existing.id, pdf_bytes, print_progress))
    else:
        source_url = args.source if args.source.startswith(("http://", "https://")) else None
        prospect = processor.store.create_prospect(
            Path(args.source).name, file_url=source_url, file_hash=file_hash
        )
        result = asyncio.run(processor.process(prospect.id, pdf_bytes, print_progress))
    print_result(result)
    return 0 if result.success else 1


def cmd_status(args: argparse.Namespace) -> int:
    processor = build_processor(args.db)
    print(json.dumps(processor.get_processing_status(args.prospect_id), indent=2, default=str))
    return 0


def cmd_retry(args: argparse.Namespace) -> int:
    processor = build_processor(args.db)
    result = asyncio.run(
        processor.retry(args.prospect_id, load_source(args.source), print_progress)
    )
    print_result(result)
    return 0 if result.success else 1


def cmd_reprocess(args: argparse.Namespace) -> int:
    processor = build_processor(args.db)
    result = asyncio.run(
        processor.reprocess(args.prospect_id, load_source(args.source), print_progress)
    )
    print_result(result)
    return 0 if result.success else 1


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Brochure prospect pipeline CLI",
        prog="brochure",
    )
    parser.add_argument("--db", type=str, default=None, help="Override the SQLite path")
    sub = parser.add_subparsers(dest="command", required=True)

    # process
    p_process = sub.add_parser("process", help="Upload and process a brochure PDF")
    p_process.add_argument("source", type=str, help="Path or http(s) URL of the PDF")
    p_process.add_argument(
        "--force", action="store_true", help="Reprocess if the same PDF was already uploaded"
    )
    p_process.set_defaults(func=cmd_process)

    # status
    p_status = sub.add_parser("status", help="Show a prospect's processing status")
    p_status.add_argument("prospect_id", type=str)
    p_status.set_defaults(func=cmd_status)

    # retry
    p_retry = sub.add_parser("retry", help="Retry a failed prospect")
    p_retry.add_argument("prospect_id", type=str)
    p_retry.add_argument("source", type=str, help="Path or http(s) URL of the PDF")
    p_retry.set_defaults(func=cmd_retry)

    # reprocess
    p_reprocess = sub.add_parser("reprocess", help="Reprocess a prospect in any state")
    p_reprocess.add_argument("prospect_id", type=str)
    p_reprocess.add_argument("source", type=str, help="Path or http(s) URL of the PDF")
    p_reprocess.set_defaults(func=cmd_reprocess)

    args = parser.parse_args(argv)
    try:
        return args.func(args)
    except PipelineError as exc:
        logger.error("%s", exc)
        return 2


if __name__ == "__main__":
    sys.exit(main())

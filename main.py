"""Tender document text extraction -- command-line entry point.

Startup sequence:
    1. Load pipeline configuration (needed for log_dir and output_dir)
    2. Setup logging (must happen before any code that logs)
    3. Load remaining configuration (extraction budgets, cloud and local OCR)
    4. Collect PDFs from the given files and directories
    5. Extract each PDF and write a markdown sidecar next to it

Usage:
    python main.py specs/ihale_sartnamesi.pdf
    python main.py specs/ --output-dir extracted/ --max-pages 10
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from tender_extract.config import load_all_settings
from tender_extract.extractor import ExtractionOptions, extract_documents
from tender_extract.logging import setup_logging

logger = logging.getLogger(__name__)


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser for CLI."""
    parser = argparse.ArgumentParser(
        description="Extract text from tender specification PDFs.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "input",
        nargs="+",
        help="PDF file(s) or directories to process",
    )
    parser.add_argument(
        "--output-dir",
        "-o",
        type=Path,
        default=None,
        help="Write markdown sidecars here instead of next to each PDF",
    )
    parser.add_argument(
        "--max-pages",
        type=int,
        default=None,
        help="Maximum pages to run through local OCR per document",
    )
    parser.add_argument(
        "--language",
        default=None,
        help="Cloud OCR language code (default from config, e.g. tur)",
    )
    return parser


def collect_pdfs(inputs: list[str]) -> list[Path]:
    """Expand files and directories into a sorted, de-duplicated PDF list."""
    found: set[Path] = set()
    for item in inputs:
        path = Path(item)
        if path.is_dir():
            found.update(p for p in path.rglob("*") if p.suffix.lower() == ".pdf")
        elif path.is_file() and path.suffix.lower() == ".pdf":
            found.add(path)
        else:
            logger.warning("Ignoring %s: not a PDF file or directory", item)
    return sorted(found)


def main(argv: list[str] | None = None) -> int:
    """Run text extraction over the given PDFs."""
    args = create_parser().parse_args(argv)

    # 1-3. Load config; logging goes up before anything else logs
    extraction, cloud_ocr, local_ocr, pipeline = load_all_settings()

    setup_logging(
        log_dir=pipeline.log_dir,
        max_bytes=pipeline.log_max_bytes,
        backup_count=pipeline.log_backup_count,
    )

    logger.info("Tender text extraction starting")

    # Log non-sensitive config values (never log the OCR.space API key)
    logger.info(
        "Config loaded -- extraction: max_pages_to_ocr=%s, timeout=%ss, concurrency=%s",
        extraction.max_pages_to_ocr,
        extraction.document_timeout_seconds,
        extraction.document_concurrency,
    )
    logger.info(
        "Config loaded -- cloud OCR: configured=%s, language=%s, engine=%s",
        cloud_ocr.configured,
        cloud_ocr.language,
        cloud_ocr.engine,
    )
    logger.info(
        "Config loaded -- local OCR: enabled=%s, languages=%s, dpi=%s",
        local_ocr.enabled,
        local_ocr.languages,
        local_ocr.dpi,
    )

    # 4. Collect inputs
    pdf_paths = collect_pdfs(args.input)
    if not pdf_paths:
        logger.error("No PDF files found in %s", ", ".join(args.input))
        return 1

    output_dir = args.output_dir
    if output_dir is None and pipeline.output_dir:
        output_dir = Path(pipeline.output_dir)

    options = ExtractionOptions(
        max_pages_to_ocr=args.max_pages,
        language=args.language,
    )

    # 5. Extract
    batch = asyncio.run(
        extract_documents(
            pdf_paths,
            extraction,
            cloud_ocr,
            local_ocr,
            output_dir=output_dir,
            options=options,
        )
    )

    for error in batch.errors:
        logger.warning("  %s", error)

    logger.info(
        "Run complete -- %d extracted, %d failed, %d skipped",
        batch.docs_succeeded,
        batch.docs_failed,
        batch.docs_skipped,
    )
    return 0 if batch.docs_failed == 0 else 2


if __name__ == "__main__":
    sys.exit(main())

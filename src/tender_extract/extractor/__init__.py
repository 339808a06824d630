"""Batch extraction runner with per-document error tolerance.

Runs the extraction orchestrator over a list of PDF files, one asyncio task
per document with bounded document concurrency, and writes a markdown
sidecar with YAML frontmatter for each successful extraction. One document's
failure does not block others -- the runner continues with the rest and
reports totals in an ``ExtractionBatchResult``.

Public API:
    extract_documents(pdf_paths, ...) -> ExtractionBatchResult
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path

from tender_extract.config.settings import (
    CloudOcrSettings,
    ExtractionSettings,
    LocalOcrSettings,
)
from tender_extract.extractor.markdown import (
    sidecar_path,
    should_extract,
    write_markdown_file,
)
from tender_extract.extractor.service import ExtractionOrchestrator, extract_text
from tender_extract.extractor.types import (
    ExtractionMethod,
    ExtractionOptions,
    ExtractionResult,
)

logger = logging.getLogger(__name__)

__all__ = [
    "ExtractionBatchResult",
    "ExtractionMethod",
    "ExtractionOptions",
    "ExtractionOrchestrator",
    "ExtractionResult",
    "extract_documents",
    "extract_text",
]


@dataclass
class ExtractionBatchResult:
    """Aggregated outcome of extracting text from multiple PDFs."""

    docs_attempted: int = 0
    docs_succeeded: int = 0
    docs_failed: int = 0
    docs_skipped: int = 0
    methods: dict[str, int] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)


async def _extract_one(
    orchestrator: ExtractionOrchestrator,
    pdf_path: Path,
    md_path: Path,
    options: ExtractionOptions | None,
    semaphore: asyncio.Semaphore,
    batch: ExtractionBatchResult,
) -> None:
    """Extract one PDF and write its sidecar; never raises."""
    async with semaphore:
        batch.docs_attempted += 1
        try:
            data = await asyncio.to_thread(pdf_path.read_bytes)
            result = await orchestrator.extract_text(data, pdf_path.name, options)

            if result.success:
                await asyncio.to_thread(
                    write_markdown_file, md_path, result, pdf_path.name
                )
                batch.docs_succeeded += 1
                method = result.method.value
                batch.methods[method] = batch.methods.get(method, 0) + 1
            else:
                batch.docs_failed += 1
                batch.errors.append(f"{pdf_path.name}: {result.error}")
                logger.warning(
                    "Failed to extract %s: %s", pdf_path.name, result.error
                )
        except Exception:
            logger.exception("Unexpected error processing %s", pdf_path.name)
            batch.docs_failed += 1
            batch.errors.append(f"{pdf_path.name}: unexpected error")


async def extract_documents(
    pdf_paths: list[Path],
    settings: ExtractionSettings | None = None,
    cloud_settings: CloudOcrSettings | None = None,
    local_settings: LocalOcrSettings | None = None,
    *,
    output_dir: Path | None = None,
    options: ExtractionOptions | None = None,
    orchestrator: ExtractionOrchestrator | None = None,
) -> ExtractionBatchResult:
    """Extract text for every PDF whose markdown sidecar is missing.

    Documents run as independent tasks, at most
    ``settings.document_concurrency`` at a time; they share one orchestrator
    so the local OCR engine is initialized once for the whole batch.

    Args:
        pdf_paths: PDFs to process.
        settings: Extraction budgets (also sets document concurrency).
        cloud_settings: Cloud OCR options.
        local_settings: Local OCR options.
        output_dir: Where sidecars go (default: beside each PDF).
        options: Per-document overrides applied to every file.
        orchestrator: Pre-built orchestrator; left open for the caller.

    Returns:
        ExtractionBatchResult with aggregated statistics.
    """
    settings = settings or ExtractionSettings()
    batch = ExtractionBatchResult()

    pending: list[tuple[Path, Path]] = []
    for pdf_path in pdf_paths:
        md_path = sidecar_path(pdf_path, output_dir)
        if not should_extract(md_path):
            logger.info("Skipping %s: already extracted (%s)", pdf_path.name, md_path.name)
            batch.docs_skipped += 1
            continue
        pending.append((pdf_path, md_path))

    if not pending:
        logger.info("No documents pending extraction")
        return batch

    logger.info(
        "Found %d documents pending extraction (%d skipped)",
        len(pending),
        batch.docs_skipped,
    )

    owns_orchestrator = orchestrator is None
    if orchestrator is None:
        orchestrator = ExtractionOrchestrator(settings, cloud_settings, local_settings)

    semaphore = asyncio.Semaphore(max(1, settings.document_concurrency))
    try:
        await asyncio.gather(
            *(
                _extract_one(orchestrator, pdf_path, md_path, options, semaphore, batch)
                for pdf_path, md_path in pending
            )
        )
    finally:
        if owns_orchestrator:
            await orchestrator.aclose()

    logger.info(
        "Extraction batch complete: %d attempted, %d succeeded, %d failed, "
        "%d skipped, methods=%s",
        batch.docs_attempted,
        batch.docs_succeeded,
        batch.docs_failed,
        batch.docs_skipped,
        batch.methods,
    )

    return batch

"""Markdown sidecar writer with YAML frontmatter for extracted PDF text.

Handles the filesystem side of batch extraction: writing one markdown file
per source PDF with structured YAML frontmatter describing how its text was
obtained. Provides idempotency via ``should_extract`` -- if a sidecar already
exists and has content, the document is skipped on re-run.

Public API:
    sidecar_path(pdf_path, output_dir)  -> Path
    should_extract(md_path)              -> bool
    write_markdown_file(md_path, result, pdf_filename) -> None
"""

from __future__ import annotations

import datetime
import logging
from pathlib import Path

import frontmatter

from tender_extract.extractor.types import ExtractionResult

logger = logging.getLogger(__name__)


def sidecar_path(pdf_path: Path, output_dir: Path | None = None) -> Path:
    """Return where the markdown for *pdf_path* goes (beside it by default)."""
    md_name = pdf_path.with_suffix(".md").name
    if output_dir is None:
        return pdf_path.with_suffix(".md")
    return output_dir / md_name


def should_extract(md_path: Path) -> bool:
    """Check whether a markdown sidecar still needs to be created.

    Returns False (skip) if *md_path* already exists and has content,
    True if the file is missing or empty.
    """
    if md_path.exists() and md_path.stat().st_size > 0:
        return False
    return True


def write_markdown_file(
    md_path: Path,
    result: ExtractionResult,
    pdf_filename: str,
) -> None:
    """Write extracted text to disk with YAML frontmatter metadata.

    Frontmatter keys:

    - ``source_pdf``: Original PDF filename
    - ``extraction_method``: Method whose text was kept (native, cloud_ocr, ...)
    - ``confidence``: Calibrated confidence in [0, 1]
    - ``extraction_chain``: Every method attempted, in order
    - ``extraction_date``: UTC ISO-8601 timestamp
    - ``page_count``: Number of pages in the source PDF
    - ``char_count``: Length of the extracted text
    - ``quality_hint``: ``ok`` or ``low``

    Args:
        md_path: Destination path for the markdown file.
        result: Successful extraction result.
        pdf_filename: Source PDF filename (not full path).
    """
    diagnostics = result.diagnostics

    post = frontmatter.Post(result.text)
    post.metadata["source_pdf"] = pdf_filename
    post.metadata["extraction_method"] = result.method.value
    post.metadata["confidence"] = round(result.confidence, 3)
    post.metadata["extraction_chain"] = [
        m.value for m in diagnostics.extraction_chain
    ]
    post.metadata["extraction_date"] = (
        datetime.datetime.now(datetime.timezone.utc).isoformat()
    )
    post.metadata["page_count"] = result.page_count
    post.metadata["char_count"] = len(result.text)
    post.metadata["quality_hint"] = diagnostics.quality_hint
    if diagnostics.early_stop:
        post.metadata["early_stop"] = diagnostics.early_stop

    md_path.parent.mkdir(parents=True, exist_ok=True)

    with open(md_path, "w", encoding="utf-8") as f:
        f.write(frontmatter.dumps(post))

    logger.info(
        "Wrote extraction to %s (%s, %d chars, %d pages)",
        md_path.name,
        result.method.value,
        len(result.text),
        result.page_count,
    )

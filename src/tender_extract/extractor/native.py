"""Native text-layer extraction using PyMuPDF.

Reads the PDF's embedded text directly from an in-memory stream -- no
rendering, no disk writes. This is the first step of every extraction; an
unreadable text layer is expected (encrypted, corrupt or image-only PDFs) and
is reported as ParseFailed so the orchestrator can go straight to OCR.
"""

from __future__ import annotations

import logging
import re

import pymupdf

from tender_extract.extractor.errors import ParseFailed
from tender_extract.extractor.types import NativeExtraction

logger = logging.getLogger(__name__)

# Below this many characters the document is almost certainly a scan
_OCR_RECOMMENDED_CHARS = 40

# Vocabulary every Turkish procurement specification is expected to contain
_PROCUREMENT_TERMS = re.compile(r"teklif|istekli|teminat", re.IGNORECASE)


def _structural_flags(text: str) -> list[str]:
    flags: list[str] = []
    if len(text) < _OCR_RECOMMENDED_CHARS:
        flags.append("OCR_RECOMMENDED")
    if not _PROCUREMENT_TERMS.search(text):
        flags.append("LOW_PROCUREMENT_TERMS_COVERAGE")
    return flags


def extract_native(data: bytes) -> NativeExtraction:
    """Extract the embedded text layer of a PDF.

    Args:
        data: Raw PDF bytes.

    Returns:
        NativeExtraction with joined text, page count, per-page texts and
        structural hints.

    Raises:
        ParseFailed: If the document cannot be opened, is encrypted, has no
            pages, or the text layer cannot be read.
    """
    try:
        doc = pymupdf.open(stream=data, filetype="pdf")
    except Exception as e:
        raise ParseFailed(f"cannot_open: {e}") from e

    try:
        if doc.needs_pass:
            raise ParseFailed("encrypted")

        page_count = len(doc)
        if page_count == 0:
            raise ParseFailed("no_pages")

        pages: list[str] = []
        image_pages = 0
        for page in doc:
            pages.append(page.get_text("text").strip())
            if page.get_images(full=False):
                image_pages += 1

        metadata = doc.metadata or {}
    except ParseFailed:
        raise
    except Exception as e:
        raise ParseFailed(f"text_layer_unreadable: {e}") from e
    finally:
        doc.close()

    text = "\n\n".join(p for p in pages if p).strip()

    meta = {
        "title": metadata.get("title") or None,
        "author": metadata.get("author") or None,
        "producer": metadata.get("producer") or None,
        "image_pages": image_pages,
        "flags": _structural_flags(text),
    }

    logger.debug(
        "Native text layer: %d chars from %d pages (%d with images), flags=%s",
        len(text),
        page_count,
        image_pages,
        meta["flags"],
    )

    return NativeExtraction(
        text=text,
        page_count=page_count,
        pages=pages,
        meta=meta,
    )

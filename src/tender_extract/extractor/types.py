"""Shared types for the extraction pipeline.

Defines the request, intermediate and result types used across the native
extractor, the OCR backends, quality checks and the orchestration service.
Result types are frozen: an ExtractionResult is never modified after the
orchestrator builds it.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any


class ExtractionMethod(Enum):
    """Method that produced (or was attempted for) a document's text."""

    NATIVE = "native"
    CLOUD_OCR = "cloud_ocr"
    LOCAL_OCR = "local_ocr"
    HYBRID = "hybrid"


@dataclass(frozen=True)
class ExtractionOptions:
    """Caller overrides for a single extraction.

    Attributes:
        max_pages_to_ocr: Page budget for local OCR (None = settings default).
        language: OCR language code (None = backend default).
    """

    max_pages_to_ocr: int | None = None
    language: str | None = None


@dataclass(frozen=True)
class ExtractionRequest:
    """One inbound document, owned by the orchestrator for a single call."""

    data: bytes = field(repr=False)
    filename: str
    max_pages_to_ocr: int
    max_document_bytes: int
    language: str | None = None

    @property
    def size_bytes(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class QualityVerdict:
    """Density verdict for a candidate text.

    Attributes:
        density: Characters per page.
        word_count: Whitespace-delimited word count.
        char_count: Total characters.
        is_low: Whether the text fails the gate it was assessed against.
    """

    density: float
    word_count: int
    char_count: int
    is_low: bool


@dataclass
class NativeExtraction:
    """Text layer of a PDF as read by the native extractor.

    Attributes:
        text: Page texts joined with blank lines.
        page_count: Number of pages in the document.
        pages: Per-page texts, in page order.
        meta: Structural hints (title, author, producer, image pages, flags).
    """

    text: str
    page_count: int
    pages: list[str] = field(default_factory=list)
    meta: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PageImage:
    """A rasterized page written to a temporary PNG file."""

    index: int
    path: Path


@dataclass(frozen=True)
class PageResult:
    """Outcome of extracting one page.

    Attributes:
        index: 0-based page index.
        text: Recognized or extracted text (empty on failure).
        confidence: Confidence in [0, 1].
        error: Error description if this page failed.
    """

    index: int
    text: str = ""
    confidence: float = 0.0
    error: str | None = None


@dataclass(frozen=True)
class ExtractionDiagnostics:
    """Observability data attached to every ExtractionResult.

    Attributes:
        processing_time_ms: Wall-clock time of the whole extraction.
        extraction_chain: Every method attempted, in order, failed or not.
        filename: Original filename as supplied by the caller.
        text_length: Length of the returned text.
        pages_processed: Pages that went through OCR (or all pages for native).
        avg_confidence: Mean page confidence of the method that was used.
        quality_hint: "ok" or "low", from the upload gate on the final text.
        early_stop: Reason local OCR stopped before the page budget, if any.
        errors: Per-branch error messages captured along the way.
        error: Top-level failure reason; set when no usable text was produced.
    """

    processing_time_ms: float
    extraction_chain: tuple[ExtractionMethod, ...]
    filename: str = ""
    text_length: int = 0
    pages_processed: int = 0
    avg_confidence: float = 0.0
    quality_hint: str = "ok"
    early_stop: str | None = None
    errors: tuple[str, ...] = ()
    error: str | None = None


@dataclass(frozen=True)
class ExtractionResult:
    """The single return value of the extraction orchestrator.

    Attributes:
        text: Extracted text; empty string (never None) on failure.
        method: Method whose text was returned.
        confidence: Calibrated confidence in [0, 1]; 0.0 on failure.
        page_count: Number of pages in the source document.
        per_page_results: Page-level results of the method used.
        diagnostics: Timing, attempted methods and captured errors.
    """

    text: str
    method: ExtractionMethod
    confidence: float
    page_count: int
    per_page_results: tuple[PageResult, ...] = ()
    diagnostics: ExtractionDiagnostics = field(
        default_factory=lambda: ExtractionDiagnostics(
            processing_time_ms=0.0, extraction_chain=()
        )
    )

    @property
    def success(self) -> bool:
        return bool(self.text)

    @property
    def error(self) -> str | None:
        return self.diagnostics.error

"""Per-document PDF text extraction service with tiered OCR fallback.

Orchestrates the extraction pipeline for a single PDF as an explicit sequence
of named states::

    NATIVE_ATTEMPTED -> QUALITY_CHECKED -> ACCEPTED ----------------> DONE
                                       -> CLOUD_ATTEMPTED -> MERGED -> DONE
                                       -> LOCAL_ATTEMPTED -> MERGED -> DONE

1. **Native text layer** (PyMuPDF) -- always attempted first.
2. **Native gate** -- a healthy text layer is returned as ``native`` (0.95).
3. **Cloud OCR** (OCR.space) -- adopted when clearly longer than the native
   text, otherwise merged with it into a ``hybrid`` result.
4. **Local OCR** (Tesseract) -- page by page, when the cloud branch is
   unavailable, fails or yields nothing usable.

Per-branch errors are recorded in ``diagnostics.errors`` and never escape;
a document that yields no text from any branch is returned with the failure
shape (``text=""``, ``confidence=0.0``, ``diagnostics.error`` set).

Edge cases handled:
- Encrypted/corrupt PDFs: native ParseFailed, OCR continues with 1 page.
- Oversized PDFs: rejected before any work (``max_document_bytes``).
- Stuck OCR calls: the whole run is bounded by ``document_timeout_seconds``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from tender_extract.config.settings import (
    CloudOcrSettings,
    ExtractionSettings,
    LocalOcrSettings,
)
from tender_extract.extractor.cloud import CloudOcrClient
from tender_extract.extractor.errors import ExtractionError, ParseFailed, RasterFailed
from tender_extract.extractor.local import EngineState, LocalOcrAdapter
from tender_extract.extractor.native import extract_native
from tender_extract.extractor.quality import assess_native, assess_upload
from tender_extract.extractor.rasterizer import rasterize, rendered_page
from tender_extract.extractor.retry import RetryPolicy
from tender_extract.extractor.text import (
    has_tender_hints,
    join_pages,
    normalize_ocr_text,
)
from tender_extract.extractor.types import (
    ExtractionDiagnostics,
    ExtractionMethod,
    ExtractionOptions,
    ExtractionRequest,
    ExtractionResult,
    NativeExtraction,
    PageResult,
)
from tender_extract.logging import document_scope

logger = logging.getLogger(__name__)

# Re-export shared types so consumers can import from service
__all__ = [
    "ExtractionMethod",
    "ExtractionOptions",
    "ExtractionOrchestrator",
    "ExtractionResult",
    "extract_text",
]

NATIVE_CONFIDENCE = 0.95
MARGINAL_CONFIDENCE = 0.5
CLOUD_CONFIDENCE = 0.9
HYBRID_CONFIDENCE = 0.85

# Cloud text replaces the native text only when clearly longer
CLOUD_MIN_CHARS = 500
CLOUD_GROWTH_FACTOR = 1.5

HYBRID_SEPARATOR = "\n\n--- OCR SUPPLEMENT ---\n\n"

DOCUMENT_UNREADABLE = "document_unreadable"
EARLY_STOP_HINTS = "institution+person+date"


class ExtractionState(Enum):
    NATIVE_ATTEMPTED = "native_attempted"
    QUALITY_CHECKED = "quality_checked"
    ACCEPTED = "accepted"
    CLOUD_ATTEMPTED = "cloud_attempted"
    LOCAL_ATTEMPTED = "local_attempted"
    MERGED = "merged"
    DONE = "done"


@dataclass
class _ExtractionTrace:
    """Mutable bookkeeping for one in-flight document."""

    filename: str
    started: float
    state: ExtractionState | None = None
    chain: list[ExtractionMethod] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    native: NativeExtraction | None = None
    page_count: int = 0
    cloud_pages: list[str] = field(default_factory=list)
    pages_processed: int = 0
    early_stop: str | None = None

    def advance(self, state: ExtractionState) -> None:
        logger.debug("%s: %s", self.filename, state.value)
        self.state = state

    @property
    def base_text(self) -> str:
        return self.native.text if self.native is not None else ""

    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self.started) * 1000.0


class ExtractionOrchestrator:
    """Decide, per document, which extraction backend produces its text.

    Owns the cloud client and local OCR adapter it creates; injected ones are
    left for the caller to close. Use as an async context manager or call
    ``aclose()`` when done so the local engine is terminated.

    Args:
        settings: Budgets, timeouts and retry policy.
        cloud_settings: OCR.space options and API key.
        local_settings: Tesseract, rasterization and page scheduling options.
        cloud_client: Pre-built cloud client (tests, shared HTTP pools).
        local_adapter: Pre-built local OCR adapter (tests, fake engines).
        native_extractor: Callable returning the PDF text layer.
        render: Page rasterizer used by the local OCR branch.
    """

    def __init__(
        self,
        settings: ExtractionSettings | None = None,
        cloud_settings: CloudOcrSettings | None = None,
        local_settings: LocalOcrSettings | None = None,
        *,
        cloud_client: CloudOcrClient | None = None,
        local_adapter: LocalOcrAdapter | None = None,
        native_extractor: Callable[[bytes], NativeExtraction] = extract_native,
        render: Callable[[bytes, int, int], bytes] = rasterize,
    ) -> None:
        self._settings = settings or ExtractionSettings()
        self._cloud_settings = cloud_settings or CloudOcrSettings()
        self._local_settings = local_settings or LocalOcrSettings()
        retry_policy = RetryPolicy.from_settings(self._settings)

        self._owns_cloud = cloud_client is None
        self._cloud = cloud_client or CloudOcrClient(
            self._cloud_settings, retry_policy=retry_policy
        )

        self._owns_local = local_adapter is None
        if local_adapter is None and self._local_settings.enabled:
            local_adapter = LocalOcrAdapter.from_settings(
                self._local_settings, retry_policy=retry_policy
            )
        self._local = local_adapter

        self._native_extractor = native_extractor
        self._render = render

    async def __aenter__(self) -> ExtractionOrchestrator:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the HTTP client and terminate the local engine, if owned."""
        if self._owns_cloud:
            await self._cloud.aclose()
        if self._owns_local and self._local is not None:
            await self._local.terminate()

    # -- public API ---------------------------------------------------------

    async def extract_text(
        self,
        file_bytes: bytes,
        filename: str,
        options: ExtractionOptions | None = None,
    ) -> ExtractionResult:
        """Extract text from one PDF, choosing the backend by text quality.

        Never raises for document-level problems: unreadable documents come
        back with empty text, zero confidence and ``diagnostics.error`` set.

        Args:
            file_bytes: Raw PDF bytes.
            filename: Original filename, for diagnostics and the cloud upload.
            options: Per-call page budget and language overrides.

        Returns:
            The ExtractionResult for this document.
        """
        with document_scope(filename):
            return await self._extract(file_bytes, filename, options)

    async def _extract(
        self,
        file_bytes: bytes,
        filename: str,
        options: ExtractionOptions | None,
    ) -> ExtractionResult:
        options = options or ExtractionOptions()
        request = ExtractionRequest(
            data=file_bytes,
            filename=filename,
            max_pages_to_ocr=(
                options.max_pages_to_ocr
                if options.max_pages_to_ocr is not None
                else self._settings.max_pages_to_ocr
            ),
            max_document_bytes=self._settings.max_document_bytes,
            language=options.language,
        )
        trace = _ExtractionTrace(filename=filename, started=time.perf_counter())

        if request.size_bytes > request.max_document_bytes:
            logger.warning(
                "Oversized document rejected (%d bytes > %d max): %s",
                request.size_bytes,
                request.max_document_bytes,
                filename,
            )
            result = self._failure(
                trace,
                f"document_too_large ({request.size_bytes} bytes)",
            )
            self._log_summary(result)
            return result

        timeout = self._settings.document_timeout_seconds
        try:
            result = await asyncio.wait_for(self._run(request, trace), timeout=timeout)
        except asyncio.TimeoutError:
            logger.error(
                "Extraction timed out after %gs in state %s: %s",
                timeout,
                trace.state.value if trace.state else "start",
                filename,
            )
            trace.errors.append(f"timeout after {timeout:g}s")
            result = self._best_effort(trace, f"document_timeout ({timeout:g}s)")

        self._log_summary(result)
        return result

    # -- decision tree ------------------------------------------------------

    async def _run(
        self, request: ExtractionRequest, trace: _ExtractionTrace
    ) -> ExtractionResult:
        native = await self._run_native(request, trace)

        verdict = assess_native(native.text, native.page_count)
        trace.advance(ExtractionState.QUALITY_CHECKED)
        logger.info(
            "Native text for %s: %d chars, %.0f chars/page over %d pages (%s)",
            request.filename,
            verdict.char_count,
            verdict.density,
            native.page_count,
            "low" if verdict.is_low else "healthy",
        )

        if not verdict.is_low:
            trace.advance(ExtractionState.ACCEPTED)
            return self._finish(
                trace,
                native.text,
                ExtractionMethod.NATIVE,
                NATIVE_CONFIDENCE,
                self._native_pages(native, NATIVE_CONFIDENCE),
                pages_processed=native.page_count,
            )

        base = native.text
        cloud_text = await self._run_cloud(request, trace)
        if cloud_text:
            trace.advance(ExtractionState.MERGED)
            cloud_pages = tuple(
                PageResult(index=i, text=text.strip(), confidence=CLOUD_CONFIDENCE)
                for i, text in enumerate(trace.cloud_pages)
            )
            if len(cloud_text) > max(CLOUD_MIN_CHARS, CLOUD_GROWTH_FACTOR * len(base)):
                return self._finish(
                    trace,
                    cloud_text,
                    ExtractionMethod.CLOUD_OCR,
                    CLOUD_CONFIDENCE,
                    cloud_pages,
                    pages_processed=len(trace.cloud_pages),
                )
            if base:
                return self._finish(
                    trace,
                    base + HYBRID_SEPARATOR + cloud_text,
                    ExtractionMethod.HYBRID,
                    HYBRID_CONFIDENCE,
                    # Native pages first, then cloud pages, as in the merged text
                    self._native_pages(native, HYBRID_CONFIDENCE)
                    + tuple(
                        PageResult(index=p.index, text=p.text, confidence=HYBRID_CONFIDENCE)
                        for p in cloud_pages
                    ),
                    pages_processed=len(trace.cloud_pages),
                )
            logger.info(
                "Cloud text for %s too short to adopt (%d chars), trying local OCR",
                request.filename,
                len(cloud_text),
            )

        page_results = await self._run_local(request, trace)
        trace.advance(ExtractionState.MERGED)

        local_text = normalize_ocr_text(
            join_pages([p.text for p in sorted(page_results, key=lambda p: p.index)])
        )
        if local_text and len(local_text) >= len(base) and len(local_text) >= len(cloud_text):
            confidences = [p.confidence for p in page_results if p.text]
            avg = sum(confidences) / len(confidences) if confidences else 0.0
            avg = min(1.0, max(0.0, avg))
            return self._finish(
                trace,
                local_text,
                ExtractionMethod.LOCAL_OCR,
                avg,
                tuple(page_results),
                pages_processed=len(page_results),
            )

        return self._best_effort(trace, DOCUMENT_UNREADABLE, cloud_text=cloud_text)

    async def _run_native(
        self, request: ExtractionRequest, trace: _ExtractionTrace
    ) -> NativeExtraction:
        trace.advance(ExtractionState.NATIVE_ATTEMPTED)
        trace.chain.append(ExtractionMethod.NATIVE)
        try:
            native = await asyncio.to_thread(self._native_extractor, request.data)
        except ParseFailed as e:
            logger.warning("Native text layer unreadable for %s: %s", request.filename, e)
            trace.errors.append(f"native: {e}")
            native = NativeExtraction(text="", page_count=1)
        except Exception as e:
            logger.exception("Unexpected native extraction error for %s", request.filename)
            trace.errors.append(f"native: unexpected: {e}")
            native = NativeExtraction(text="", page_count=1)

        if native.page_count < 1:
            native.page_count = 1
        trace.native = native
        trace.page_count = native.page_count
        return native

    async def _run_cloud(
        self, request: ExtractionRequest, trace: _ExtractionTrace
    ) -> str:
        """Submit to cloud OCR; returns joined text or "" on skip/failure."""
        if not self._cloud.configured:
            logger.info("Cloud OCR not configured, skipping for %s", request.filename)
            return ""

        trace.advance(ExtractionState.CLOUD_ATTEMPTED)
        trace.chain.append(ExtractionMethod.CLOUD_OCR)
        try:
            pages = await self._cloud.recognize_pages(
                request.data, request.filename, language=request.language
            )
        except ExtractionError as e:
            logger.warning(
                "Cloud OCR failed for %s (%s): %s",
                request.filename,
                type(e).__name__,
                e,
            )
            trace.errors.append(f"cloud_ocr: {e}")
            return ""
        except Exception as e:
            logger.exception("Unexpected cloud OCR error for %s", request.filename)
            trace.errors.append(f"cloud_ocr: unexpected: {e}")
            return ""

        trace.cloud_pages = pages
        text = join_pages(pages)
        if not text:
            trace.errors.append("cloud_ocr: empty result")
        return text

    async def _run_local(
        self, request: ExtractionRequest, trace: _ExtractionTrace
    ) -> list[PageResult]:
        """Rasterize and recognize pages in batches of ``page_concurrency``."""
        if self._local is None or not self._local_settings.enabled:
            logger.info("Local OCR disabled, skipping for %s", request.filename)
            return []

        trace.advance(ExtractionState.LOCAL_ATTEMPTED)
        trace.chain.append(ExtractionMethod.LOCAL_OCR)

        if self._local.state is EngineState.TERMINATED:
            logger.warning("Local OCR engine already terminated, skipping %s", request.filename)
            trace.errors.append("local_ocr: engine terminated")
            return []

        budget = min(trace.page_count, max(0, request.max_pages_to_ocr))
        batch_size = max(1, self._local_settings.page_concurrency)
        logger.info(
            "Local OCR for %s: %d of %d pages, %d at a time",
            request.filename,
            budget,
            trace.page_count,
            batch_size,
        )

        results: list[PageResult] = []
        for start in range(0, budget, batch_size):
            indices = range(start, min(start + batch_size, budget))
            batch = await asyncio.gather(
                *(self._ocr_page(request, index) for index in indices)
            )
            for page in batch:
                if page.error:
                    trace.errors.append(f"local_ocr page {page.index}: {page.error}")
            results.extend(batch)
            trace.pages_processed = len(results)

            if self._local.state is EngineState.TERMINATED:
                logger.error(
                    "Local OCR engine unavailable, stopping after %d pages: %s",
                    len(results),
                    request.filename,
                )
                break
            if self._local_settings.early_stop and has_tender_hints(
                join_pages([p.text for p in results])
            ):
                trace.early_stop = EARLY_STOP_HINTS
                logger.info(
                    "Early stop for %s after %d pages: tender details found",
                    request.filename,
                    len(results),
                )
                break

        return results

    async def _ocr_page(self, request: ExtractionRequest, index: int) -> PageResult:
        """Render one page to a temp PNG and recognize it; never raises."""
        try:
            async with rendered_page(
                request.data,
                index,
                dpi=self._local_settings.dpi,
                temp_dir=self._local_settings.temp_dir,
                render=self._render,
            ) as image:
                results = await self._local.recognize([image])
        except RasterFailed as e:
            logger.warning("Page %d of %s not rendered: %s", index, request.filename, e)
            return PageResult(index=index, error=str(e))
        except OSError as e:
            logger.warning("Temp image for page %d of %s failed: %s", index, request.filename, e)
            return PageResult(index=index, error=f"temp_file: {e}")
        except Exception as e:
            logger.exception("Unexpected local OCR error on page %d of %s", index, request.filename)
            return PageResult(index=index, error=f"unexpected: {e}")
        return results[0]

    # -- result construction ------------------------------------------------

    @staticmethod
    def _native_pages(
        native: NativeExtraction, confidence: float
    ) -> tuple[PageResult, ...]:
        return tuple(
            PageResult(index=i, text=text, confidence=confidence)
            for i, text in enumerate(native.pages)
        )

    def _finish(
        self,
        trace: _ExtractionTrace,
        text: str,
        method: ExtractionMethod,
        confidence: float,
        per_page: tuple[PageResult, ...],
        pages_processed: int,
        error: str | None = None,
    ) -> ExtractionResult:
        trace.advance(ExtractionState.DONE)
        page_count = trace.page_count
        diagnostics = ExtractionDiagnostics(
            processing_time_ms=trace.elapsed_ms(),
            extraction_chain=tuple(trace.chain),
            filename=trace.filename,
            text_length=len(text),
            pages_processed=pages_processed,
            avg_confidence=confidence,
            quality_hint="low" if assess_upload(text, page_count).is_low else "ok",
            early_stop=trace.early_stop,
            errors=tuple(trace.errors),
            error=error,
        )
        return ExtractionResult(
            text=text,
            method=method,
            confidence=confidence,
            page_count=page_count,
            per_page_results=per_page,
            diagnostics=diagnostics,
        )

    def _best_effort(
        self,
        trace: _ExtractionTrace,
        error: str,
        cloud_text: str | None = None,
    ) -> ExtractionResult:
        """Fall back to whatever text was gathered so far, or fail.

        Native text outranks a short cloud text; both are reported at the
        marginal confidence since OCR could not confirm them.
        """
        base = trace.base_text
        if cloud_text is None:
            cloud_text = join_pages(trace.cloud_pages)

        if base:
            # Escalation happened and OCR did not beat the text layer
            return self._finish(
                trace,
                base,
                ExtractionMethod.NATIVE,
                MARGINAL_CONFIDENCE,
                self._native_pages(trace.native, MARGINAL_CONFIDENCE),
                pages_processed=trace.pages_processed or trace.page_count,
                error=None if error == DOCUMENT_UNREADABLE else error,
            )
        if cloud_text:
            return self._finish(
                trace,
                cloud_text,
                ExtractionMethod.CLOUD_OCR,
                MARGINAL_CONFIDENCE,
                tuple(
                    PageResult(index=i, text=text.strip(), confidence=MARGINAL_CONFIDENCE)
                    for i, text in enumerate(trace.cloud_pages)
                ),
                pages_processed=len(trace.cloud_pages),
                error=None if error == DOCUMENT_UNREADABLE else error,
            )
        return self._failure(trace, error)

    def _failure(self, trace: _ExtractionTrace, error: str) -> ExtractionResult:
        trace.advance(ExtractionState.DONE)
        method = trace.chain[-1] if trace.chain else ExtractionMethod.NATIVE
        diagnostics = ExtractionDiagnostics(
            processing_time_ms=trace.elapsed_ms(),
            extraction_chain=tuple(trace.chain),
            filename=trace.filename,
            text_length=0,
            pages_processed=trace.pages_processed,
            avg_confidence=0.0,
            quality_hint="low",
            early_stop=trace.early_stop,
            errors=tuple(trace.errors),
            error=error,
        )
        return ExtractionResult(
            text="",
            method=method,
            confidence=0.0,
            page_count=trace.page_count,
            diagnostics=diagnostics,
        )

    @staticmethod
    def _log_summary(result: ExtractionResult) -> None:
        d = result.diagnostics
        chain = ",".join(m.value for m in d.extraction_chain)
        if result.success:
            logger.info(
                "Extraction complete for %s: method=%s confidence=%.2f chain=%s "
                "chars=%d pages=%d quality=%s time=%.0fms",
                d.filename,
                result.method.value,
                result.confidence,
                chain,
                d.text_length,
                result.page_count,
                d.quality_hint,
                d.processing_time_ms,
            )
        else:
            logger.error(
                "Extraction failed for %s: %s (chain=%s, errors=%s, time=%.0fms)",
                d.filename,
                d.error,
                chain,
                "; ".join(d.errors) or "none",
                d.processing_time_ms,
            )


async def extract_text(
    file_bytes: bytes,
    filename: str,
    options: ExtractionOptions | None = None,
    *,
    settings: ExtractionSettings | None = None,
    cloud_settings: CloudOcrSettings | None = None,
    local_settings: LocalOcrSettings | None = None,
) -> ExtractionResult:
    """Extract one document with a throwaway orchestrator.

    Builds every backend from settings, runs the document and releases the
    HTTP client and local engine before returning. Long-running callers
    should keep an ExtractionOrchestrator instead so the engine is reused.
    """
    async with ExtractionOrchestrator(
        settings, cloud_settings, local_settings
    ) as orchestrator:
        return await orchestrator.extract_text(file_bytes, filename, options)

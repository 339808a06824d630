"""httpx-based client for the OCR.space cloud OCR service.

Submits the whole PDF (not per-page images) as a multipart upload with
document-level options: target language, OCR engine tier, table-layout
detection, auto-orientation and auto-scale. The JSON response is validated
into :class:`CloudOcrResponse` at the boundary and reduced to a list of page
texts immediately, so nothing downstream depends on the provider's shape.

Failure kinds are kept distinct because the retry policy differs:

- ``OcrHttpError`` -- transport failures, timeouts, non-2xx; retried when
  transient (no status, 429, 5xx).
- ``OcrQuotaError`` / ``OcrSizeError`` -- key missing or rejected, tier or
  size limit hit; raised before any network call where possible, never
  retried.
- ``OcrProcessingError`` -- the service read the request and rejected the
  document; never retried.
"""

from __future__ import annotations

import logging
import re

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from tender_extract.config.settings import CloudOcrSettings
from tender_extract.extractor.errors import (
    OcrHttpError,
    OcrProcessingError,
    OcrQuotaError,
    OcrSizeError,
)
from tender_extract.extractor.retry import RetryPolicy, call_with_retry
from tender_extract.extractor.text import join_pages, sanitize_filename

logger = logging.getLogger(__name__)

_BYTES_PER_MB = 1024 * 1024

# Processing errors that are really account or tier limits
_LIMIT_MESSAGE = re.compile(r"\b(limit|maximum|quota|exceed)", re.IGNORECASE)


# ---------------------------------------------------------------------------
# Response boundary model
# ---------------------------------------------------------------------------


class CloudOcrPage(BaseModel):
    """One entry of ``ParsedResults``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    parsed_text: str = Field(default="", alias="ParsedText")

    @field_validator("parsed_text", mode="before")
    @classmethod
    def none_to_empty(cls, v: object) -> object:
        return "" if v is None else v


class CloudOcrResponse(BaseModel):
    """Top-level OCR.space JSON response."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    parsed_results: list[CloudOcrPage] = Field(
        default_factory=list, alias="ParsedResults"
    )
    is_errored_on_processing: bool = Field(
        default=False, alias="IsErroredOnProcessing"
    )
    error_message: str | list[str] | None = Field(default=None, alias="ErrorMessage")

    @field_validator("parsed_results", mode="before")
    @classmethod
    def null_results_to_empty(cls, v: object) -> object:
        return [] if v is None else v

    @property
    def error_text(self) -> str:
        if isinstance(self.error_message, list):
            return "; ".join(m for m in self.error_message if m)
        return self.error_message or "Unknown OCR error"

    def page_texts(self) -> list[str]:
        return [page.parsed_text for page in self.parsed_results]


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class CloudOcrClient:
    """Submit PDFs to OCR.space with size guard, timeout and retries.

    The ``httpx.AsyncClient`` is created on demand unless one is injected;
    injected clients are left open for the caller to close.
    """

    def __init__(
        self,
        settings: CloudOcrSettings,
        retry_policy: RetryPolicy | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings
        self._retry_policy = retry_policy or RetryPolicy()
        self._client = http_client
        self._owns_client = http_client is None

    @property
    def configured(self) -> bool:
        return self._settings.configured

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers={"Accept": "application/json"},
                timeout=httpx.Timeout(self._settings.timeout_seconds),
            )
        return self._client

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    def _form_fields(self, api_key: str, language: str) -> dict[str, str]:
        s = self._settings
        return {
            "apikey": api_key,
            "language": language,
            "isOverlayRequired": "false",
            "filetype": "PDF",
            "OCREngine": s.engine,
            "scale": str(s.scale).lower(),
            "isTable": str(s.detect_tables).lower(),
            "detectOrientation": str(s.detect_orientation).lower(),
        }

    async def _submit(
        self, data: bytes, upload_name: str, fields: dict[str, str]
    ) -> CloudOcrResponse:
        """POST one submission and classify the outcome.

        Raises OcrHttpError (possibly retryable), OcrQuotaError or
        OcrProcessingError.
        """
        try:
            response = await self._get_client().post(
                self._settings.endpoint,
                data=fields,
                files={"file": (upload_name, data, "application/pdf")},
            )
        except httpx.TimeoutException as e:
            raise OcrHttpError(f"OCR.space request timed out: {e}") from e
        except httpx.TransportError as e:
            raise OcrHttpError(f"OCR.space transport failure: {e}") from e

        status = response.status_code
        if status in (401, 403):
            raise OcrQuotaError(
                f"OCR.space rejected the account (HTTP {status}): "
                f"{response.text[:200]}"
            )
        if not response.is_success:
            raise OcrHttpError(
                f"OCR.space HTTP {status}: {response.text[:200]}",
                status_code=status,
            )

        try:
            payload = CloudOcrResponse.model_validate_json(response.content)
        except ValidationError as e:
            raise OcrHttpError(
                f"OCR.space returned a malformed response: {e.error_count()} "
                f"validation error(s)",
                status_code=None,
            ) from e

        if payload.is_errored_on_processing:
            message = payload.error_text
            if _LIMIT_MESSAGE.search(message):
                raise OcrQuotaError(f"OCR.space limit: {message}")
            raise OcrProcessingError(f"OCR.space error: {message}")

        return payload

    async def recognize_pages(
        self,
        data: bytes,
        filename: str,
        *,
        language: str | None = None,
        api_key: str | None = None,
    ) -> list[str]:
        """Run cloud OCR over a whole PDF and return per-page texts.

        Args:
            data: Raw PDF bytes.
            filename: Original filename; transliterated to ASCII for upload.
            language: OCR language code (defaults to settings.language).
            api_key: Overrides the configured API key.

        Returns:
            Page texts in page order (may contain empty strings).

        Raises:
            OcrSizeError: File exceeds the tier ceiling (no network call made).
            OcrQuotaError: No API key, or the account/tier limit was hit.
            OcrHttpError: Transport failure after retries.
            OcrProcessingError: The service rejected the document.
        """
        key = (api_key if api_key is not None else self._settings.api_key).strip()
        if not key:
            raise OcrQuotaError("OCR.space API key not configured")

        size_mb = len(data) / _BYTES_PER_MB
        if size_mb > self._settings.max_file_size_mb:
            raise OcrSizeError(
                f"File too large: {size_mb:.1f}MB > "
                f"{self._settings.max_file_size_mb:.0f}MB limit"
            )

        upload_name = sanitize_filename(filename)
        fields = self._form_fields(key, language or self._settings.language)

        logger.info(
            "OCR.space: submitting %s (%.1fMB, language=%s, engine=%s)",
            upload_name,
            size_mb,
            fields["language"],
            fields["OCREngine"],
        )

        payload = await call_with_retry(
            lambda: self._submit(data, upload_name, fields),
            self._retry_policy,
            description=f"OCR.space submission of {upload_name}",
        )
        pages = payload.page_texts()

        logger.info(
            "OCR.space result for %s: %d pages, %d chars",
            upload_name,
            len(pages),
            sum(len(p) for p in pages),
        )
        return pages

    async def recognize(
        self,
        data: bytes,
        filename: str,
        *,
        language: str | None = None,
        api_key: str | None = None,
    ) -> str:
        """Run cloud OCR and return the page texts joined by blank lines."""
        pages = await self.recognize_pages(
            data, filename, language=language, api_key=api_key
        )
        return join_pages(pages)

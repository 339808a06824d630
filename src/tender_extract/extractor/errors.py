"""Error taxonomy for the extraction pipeline.

Every error carries a ``retryable`` flag that the retry controller consults:
transport failures and transient recognition errors are retried, while
content-level rejections, quota/size limits and dead engines fail fast.
"""

from __future__ import annotations


class ExtractionError(Exception):
    """Base class for all extraction pipeline errors."""

    retryable: bool = False


class ParseFailed(ExtractionError):
    """The native text layer could not be read (corrupt, encrypted, empty)."""


class RasterFailed(ExtractionError):
    """A page could not be rendered to an image."""


class OcrHttpError(ExtractionError):
    """Transport-level failure talking to the cloud OCR service.

    Transport errors (no status), timeouts, 429 and 5xx responses are
    retryable. Other 4xx responses mean the request itself is wrong and
    are not.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        if self.status_code is None:
            return True
        return self.status_code == 429 or self.status_code >= 500


class OcrQuotaError(ExtractionError):
    """Account, key or tier limit exceeded; never retried."""


class OcrSizeError(OcrQuotaError):
    """Document is larger than the cloud tier's upload ceiling."""


class OcrProcessingError(ExtractionError):
    """The service understood the request but rejected the document."""


class EngineUnavailable(ExtractionError):
    """The local OCR engine failed to initialize or has been terminated."""


class RecognitionFailed(ExtractionError):
    """A single local recognition call failed in a possibly transient way."""

    retryable = True

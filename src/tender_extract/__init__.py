"""Text extraction for scanned and native tender specification PDFs."""

from tender_extract.extractor import (
    ExtractionMethod,
    ExtractionOptions,
    ExtractionOrchestrator,
    ExtractionResult,
    extract_documents,
    extract_text,
)

__version__ = "0.1.0"

__all__ = [
    "ExtractionMethod",
    "ExtractionOptions",
    "ExtractionOrchestrator",
    "ExtractionResult",
    "extract_documents",
    "extract_text",
]

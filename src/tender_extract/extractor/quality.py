"""Text density checks that decide whether extracted text is usable.

Two gates:

- **Native gate** (``assess_native``): the canonical escalation gate. Applied
  to the PDF's embedded text layer; a low verdict sends the document to OCR.
  ``is_low = density < 200 chars/page or len(text) < 300``.
- **Upload gate** (``assess_upload``): a looser acceptance check on the
  final text of any method. It never triggers escalation; the orchestrator
  uses it for the ``quality_hint`` diagnostic.
  ``is_low = len(text) < 1000 or word_count < 120``.

Both are pure functions of the text and page count and never raise.
"""

from __future__ import annotations

from enum import Enum

from tender_extract.extractor.types import QualityVerdict

# Native gate
NATIVE_MIN_DENSITY = 200
NATIVE_MIN_CHARS = 300

# Upload gate
UPLOAD_MIN_CHARS = 1000
UPLOAD_MIN_WORDS = 120


class QualityGate(Enum):
    """Which threshold set a verdict is computed against."""

    NATIVE = "native"
    UPLOAD = "upload"


def assess(
    text: str,
    page_count: int,
    gate: QualityGate = QualityGate.NATIVE,
) -> QualityVerdict:
    """Score *text* for density and usability.

    Args:
        text: Candidate text (already stripped by the producer).
        page_count: Pages the text was extracted from; values below 1
            are treated as 1.
        gate: Threshold set to apply.

    Returns:
        QualityVerdict with density, word count and the low/ok decision.
    """
    text = text or ""
    char_count = len(text)
    word_count = len(text.split())
    density = char_count / max(1, page_count)

    if gate is QualityGate.UPLOAD:
        is_low = char_count < UPLOAD_MIN_CHARS or word_count < UPLOAD_MIN_WORDS
    else:
        is_low = density < NATIVE_MIN_DENSITY or char_count < NATIVE_MIN_CHARS

    return QualityVerdict(
        density=density,
        word_count=word_count,
        char_count=char_count,
        is_low=is_low,
    )


def assess_native(text: str, page_count: int) -> QualityVerdict:
    """Apply the native gate (first-pass escalation check)."""
    return assess(text, page_count, QualityGate.NATIVE)


def assess_upload(text: str, page_count: int) -> QualityVerdict:
    """Apply the upload gate (post-extraction acceptance check)."""
    return assess(text, page_count, QualityGate.UPLOAD)

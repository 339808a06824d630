"""Text utilities shared by the OCR backends and the orchestrator.

- ``sanitize_filename``: ASCII-only filenames for the cloud upload, since the
  multipart transport may reject non-ASCII metadata.
- ``normalize_ocr_text``: strip page furniture and OCR noise from recognized
  text before it is handed to downstream analyzers.
- ``has_tender_hints``: detects the institution, head-count and date that
  mark a tender specification as sufficiently read.
"""

from __future__ import annotations

import re
import unicodedata

# Letters without a canonical decomposition to ASCII
_TRANSLITERATION_MAP = str.maketrans(
    {
        "ı": "i",
        "İ": "I",
        "ğ": "g",
        "Ğ": "G",
        "ş": "s",
        "Ş": "S",
        "ß": "ss",
        "æ": "ae",
        "Æ": "AE",
        "ø": "o",
        "Ø": "O",
        "đ": "d",
        "Đ": "D",
        "ł": "l",
        "Ł": "L",
    }
)

_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9._-]")

_SOFT_HYPHEN = "\u00ad"
_HYPHENATED_BREAK = re.compile(r"(\w)-\n(\w)")
_PAGE_MARKER = re.compile(
    r"^[ \t]*(?:sayfa|page)\s+\d+(?:\s*/\s*\d+)?[ \t]*$", re.IGNORECASE | re.MULTILINE
)
_INLINE_PAGE_MARKER = re.compile(r"\b(?:sayfa|page)\s+\d+\s*/\s*\d+\b", re.IGNORECASE)
_BARE_NUMBER_LINE = re.compile(r"^[ \t]*\d+[ \t]*$", re.MULTILINE)
_LEADING_DATE_STAMP = re.compile(r"^[ \t]*\d{2}[./-]\d{2}[./-]\d{4}[ \t]*", re.MULTILINE)
_HORIZONTAL_SPACE = re.compile(r"[ \t\f\v\u00a0]+")
_BLANK_LINES = re.compile(r"\n\s*\n+")

_INSTITUTION_HINTS = (
    "pmyo",
    "polis",
    "belediye",
    "üniversite",
    "universite",
    "bakanlığı",
    "bakanligi",
)
_PERSON_COUNT = re.compile(
    r"(\d{2,5})\s*(?:kişi|ogrenci|öğrenci|personel|kişilik)", re.IGNORECASE
)
_DATE_HINT = re.compile(r"(\d{1,2}[./]\d{1,2}[./]\d{4})|(\d{4}[-./]\d{1,2}[-.]\d{1,2})")


def sanitize_filename(filename: str, default: str = "document.pdf") -> str:
    """Transliterate *filename* to its closest ASCII equivalent.

    Turkish and other accented letters are mapped to plain Latin letters,
    remaining non-ASCII or unsafe characters become ``_``.

    >>> sanitize_filename("İhale Şartnamesi 2024.pdf")
    'Ihale_Sartnamesi_2024.pdf'
    """
    name = (filename or "").strip().translate(_TRANSLITERATION_MAP)
    name = unicodedata.normalize("NFKD", name)
    name = "".join(ch for ch in name if not unicodedata.combining(ch))
    name = _UNSAFE_FILENAME_CHARS.sub("_", name)
    return name or default


def normalize_ocr_text(text: str) -> str:
    """Remove page furniture and collapse whitespace in OCR output.

    Order matters: hyphenated line breaks are joined before line-based
    patterns run, and whitespace is collapsed last so line anchors still
    see the original line structure.
    """
    if not text:
        return ""
    cleaned = text.replace(_SOFT_HYPHEN, "")
    cleaned = _HYPHENATED_BREAK.sub(r"\1\2", cleaned)
    cleaned = _PAGE_MARKER.sub("", cleaned)
    cleaned = _INLINE_PAGE_MARKER.sub("", cleaned)
    cleaned = _BARE_NUMBER_LINE.sub("", cleaned)
    cleaned = _LEADING_DATE_STAMP.sub("", cleaned)
    cleaned = _HORIZONTAL_SPACE.sub(" ", cleaned)
    cleaned = "\n".join(line.strip() for line in cleaned.split("\n"))
    cleaned = _BLANK_LINES.sub("\n", cleaned)
    return cleaned.strip()


def join_pages(pages: list[str]) -> str:
    """Concatenate non-empty page texts with a blank-line separator."""
    return "\n\n".join(p.strip() for p in pages if p and p.strip())


def has_tender_hints(text: str) -> bool:
    """Return True once institution, head count and a date have all appeared."""
    lowered = text.lower()
    has_institution = any(hint in lowered for hint in _INSTITUTION_HINTS)
    return (
        has_institution
        and _PERSON_COUNT.search(text) is not None
        and _DATE_HINT.search(text) is not None
    )

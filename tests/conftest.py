"""Shared fixtures: generated PDFs, fake OCR backends and fast settings.

PDFs are built with PyMuPDF at test time so every test works on real
documents without binary fixtures in the repo. The local OCR engine and the
cloud client are replaced by in-process fakes that count their calls; no
test needs Tesseract or network access.
"""

from __future__ import annotations

import asyncio
import threading
import time
from pathlib import Path

import pymupdf
import pytest

from tender_extract.config.settings import (
    CloudOcrSettings,
    ExtractionSettings,
    LocalOcrSettings,
)
from tender_extract.extractor.errors import RecognitionFailed
from tender_extract.extractor.local import LocalOcrAdapter, LocalOcrPageResult
from tender_extract.extractor.retry import RetryPolicy
from tender_extract.extractor.service import ExtractionOrchestrator

# ---------------------------------------------------------------------------
# PDF builders
# ---------------------------------------------------------------------------

HEALTHY_LINES = [
    "TEKNIK SARTNAME - YEMEK HIZMETI ALIMI",
    "Madde 1. Isin konusu: 2025 yili icin personel yemek hizmeti alimi.",
    "Madde 2. Istekli, teklif mektubunu ihale saatine kadar sunmalidir.",
    "Madde 3. Gecici teminat, teklif bedelinin yuzde ucunden az olamaz.",
    "Madde 4. Gunluk ortalama 850 kisiye ogle yemegi verilecektir.",
    "Madde 5. Menu haftalik olarak idarenin onayina sunulacaktir.",
    "Madde 6. Yuklenici gida guvenligi belgesine sahip olmalidir.",
    "Madde 7. Hijyen denetimleri her ay idare tarafindan yapilir.",
    "Madde 8. Odeme aylik hakedis usulu ile gerceklestirilecektir.",
    "Madde 9. Sozlesme suresi on iki aydir, uzatma yapilamaz.",
]


def make_pdf(pages: list[list[str]]) -> bytes:
    """Build a PDF with one page per entry, one text line per string."""
    doc = pymupdf.open()
    for lines in pages:
        page = doc.new_page()
        y = 72
        for line in lines:
            page.insert_text((72, y), line, fontsize=10)
            y += 14
    data = doc.tobytes()
    doc.close()
    return data


@pytest.fixture
def healthy_pdf() -> bytes:
    """Two pages of machine-generated procurement text (well over 200 chars/page)."""
    return make_pdf([HEALTHY_LINES, HEALTHY_LINES])


@pytest.fixture
def blank_pdf() -> bytes:
    """A single page with no text layer."""
    return make_pdf([[]])


@pytest.fixture
def pdf_factory():
    return make_pdf


# ---------------------------------------------------------------------------
# Fake backends
# ---------------------------------------------------------------------------


def page_index_of(image_path: Path) -> int:
    """Recover the page index from a ``tess-<index>-<random>.png`` name."""
    return int(image_path.name.split("-")[1])


class FakeEngine:
    """In-process OcrEngine that records every lifecycle call."""

    def __init__(
        self,
        texts: dict[int, str] | None = None,
        default_text: str = "",
        confidence: float = 90.0,
        fail_pages: tuple[int, ...] = (),
        init_error: Exception | None = None,
        terminate_error: Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self.texts = texts or {}
        self.default_text = default_text
        self.confidence = confidence
        self.fail_pages = fail_pages
        self.init_error = init_error
        self.terminate_error = terminate_error
        self.delay = delay

        self.init_calls = 0
        self.recognize_calls = 0
        self.terminate_calls = 0
        self.seen_paths: list[Path] = []
        self.existed: list[bool] = []
        self.max_active = 0
        self._active = 0
        self._guard = threading.Lock()

    def initialize(self, languages: str) -> None:
        self.init_calls += 1
        if self.init_error is not None:
            raise self.init_error

    def recognize(self, image_path: Path) -> LocalOcrPageResult:
        with self._guard:
            self.recognize_calls += 1
            self._active += 1
            self.max_active = max(self.max_active, self._active)
        try:
            self.seen_paths.append(image_path)
            self.existed.append(image_path.exists())
            if self.delay:
                time.sleep(self.delay)
            index = page_index_of(image_path)
            if index in self.fail_pages:
                raise RecognitionFailed(f"page {index} unreadable")
            return LocalOcrPageResult(
                text=self.texts.get(index, self.default_text),
                confidence=self.confidence,
            )
        finally:
            with self._guard:
                self._active -= 1

    def terminate(self) -> None:
        self.terminate_calls += 1
        if self.terminate_error is not None:
            raise self.terminate_error


class FakeCloudClient:
    """Stands in for CloudOcrClient; returns fixed pages or raises."""

    def __init__(
        self,
        pages: list[str] | None = None,
        error: Exception | None = None,
        configured: bool = True,
        delay: float = 0.0,
    ) -> None:
        self.pages = pages if pages is not None else []
        self.error = error
        self.configured = configured
        self.delay = delay
        self.calls = 0
        self.closed = False

    async def recognize_pages(
        self,
        data: bytes,
        filename: str,
        *,
        language: str | None = None,
        api_key: str | None = None,
    ) -> list[str]:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.pages)

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def fake_engine_cls():
    return FakeEngine


@pytest.fixture
def fake_cloud_cls():
    return FakeCloudClient


# ---------------------------------------------------------------------------
# Settings and orchestrator
# ---------------------------------------------------------------------------


@pytest.fixture
def no_wait_policy() -> RetryPolicy:
    return RetryPolicy(attempts=3, base_delay_seconds=0.0, max_delay_seconds=0.0)


@pytest.fixture
def extraction_settings() -> ExtractionSettings:
    return ExtractionSettings(
        max_pages_to_ocr=20,
        document_timeout_seconds=30.0,
        retry_attempts=3,
        retry_base_delay_seconds=0.0,
        retry_max_delay_seconds=0.0,
    )


@pytest.fixture
def cloud_settings() -> CloudOcrSettings:
    return CloudOcrSettings(api_key="test-key")


@pytest.fixture
def local_settings(tmp_path: Path) -> LocalOcrSettings:
    return LocalOcrSettings(
        temp_dir=str(tmp_path),
        dpi=72,
        page_concurrency=2,
        early_stop=False,
    )


@pytest.fixture
def build_orchestrator(
    extraction_settings, cloud_settings, local_settings, no_wait_policy
):
    """Factory: orchestrator wired to the given fakes."""

    def _build(
        cloud: FakeCloudClient | None = None,
        engine: FakeEngine | None = None,
        *,
        settings: ExtractionSettings | None = None,
        local: LocalOcrSettings | None = None,
        native_extractor=None,
    ) -> ExtractionOrchestrator:
        adapter = LocalOcrAdapter(
            engine if engine is not None else FakeEngine(),
            retry_policy=no_wait_policy,
        )
        kwargs = {}
        if native_extractor is not None:
            kwargs["native_extractor"] = native_extractor
        return ExtractionOrchestrator(
            settings or extraction_settings,
            cloud_settings,
            local or local_settings,
            cloud_client=cloud if cloud is not None else FakeCloudClient(configured=False),
            local_adapter=adapter,
            **kwargs,
        )

    return _build

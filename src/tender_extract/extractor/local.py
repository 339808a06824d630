"""Local OCR: a Tesseract engine behind a lifecycle-managed adapter.

The engine is expensive to bring up (binary lookup, language data check), so
the adapter initializes it at most once and reuses it across recognize calls.
State machine::

    UNINITIALIZED --initialize()--> READY --terminate()--> TERMINATED
          |                                                    ^
          +-------------- init failure / engine lost ----------+

``terminate()`` is idempotent and tolerates an engine that never finished
initializing. Engine calls are serialized with an ``asyncio.Lock`` and run
in a worker thread that also holds a ``threading.Lock`` for the length of the
engine call. A cancelled caller releases the asyncio lock, but its worker
thread keeps the engine until the call returns, so one adapter can serve
several documents without two requests ever inside the engine at once.
Per-page failures never abort the batch: each PageResult carries its own
``error``.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections import defaultdict
from enum import Enum
from pathlib import Path
from typing import Protocol

import pytesseract
from PIL import Image
from pydantic import BaseModel, field_validator

from tender_extract.config.settings import LocalOcrSettings
from tender_extract.extractor.errors import (
    EngineUnavailable,
    ExtractionError,
    RecognitionFailed,
)
from tender_extract.extractor.retry import RetryPolicy, call_with_retry
from tender_extract.extractor.types import PageImage, PageResult

logger = logging.getLogger(__name__)


class LocalOcrPageResult(BaseModel):
    """Raw engine output for one image; confidence on Tesseract's 0-100 scale."""

    text: str = ""
    confidence: float = 0.0

    @field_validator("text", mode="before")
    @classmethod
    def none_to_empty(cls, v: object) -> object:
        return "" if v is None else v

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, v: object) -> float:
        try:
            value = float(v)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return 0.0
        return min(100.0, max(0.0, value))


class OcrEngine(Protocol):
    """initialize(languages) -> recognize(image) -> terminate() lifecycle."""

    def initialize(self, languages: str) -> None: ...

    def recognize(self, image_path: Path) -> LocalOcrPageResult: ...

    def terminate(self) -> None: ...


# ---------------------------------------------------------------------------
# Tesseract engine
# ---------------------------------------------------------------------------


class TesseractEngine:
    """OcrEngine backed by the Tesseract binary via pytesseract."""

    def __init__(
        self,
        tesseract_cmd: str = "tesseract",
        timeout_seconds: float = 60.0,
    ) -> None:
        self._tesseract_cmd = tesseract_cmd
        self._timeout = timeout_seconds
        self._languages: str | None = None

    def initialize(self, languages: str) -> None:
        """Locate the binary and confirm every requested language is installed.

        Raises:
            EngineUnavailable: Binary missing or language data not installed.
        """
        if self._tesseract_cmd != "tesseract":
            pytesseract.pytesseract.tesseract_cmd = self._tesseract_cmd

        try:
            version = pytesseract.get_tesseract_version()
            installed = set(pytesseract.get_languages(config=""))
        except pytesseract.TesseractNotFoundError as e:
            raise EngineUnavailable(f"tesseract not found: {e}") from e
        except Exception as e:
            raise EngineUnavailable(f"tesseract unusable: {e}") from e

        missing = [lang for lang in languages.split("+") if lang not in installed]
        if missing:
            raise EngineUnavailable(
                f"tesseract language data missing: {', '.join(missing)}"
            )

        self._languages = languages
        logger.info("Tesseract %s ready (languages=%s)", version, languages)

    def recognize(self, image_path: Path) -> LocalOcrPageResult:
        """Recognize one page image.

        Text is rebuilt line by line from ``image_to_data`` so a single
        Tesseract run yields both text and word confidences.

        Raises:
            EngineUnavailable: Not initialized, or the binary disappeared.
            RecognitionFailed: Timeout or a Tesseract error on this image.
        """
        if self._languages is None:
            raise EngineUnavailable("tesseract engine not initialized")

        try:
            with Image.open(image_path) as img:
                data = pytesseract.image_to_data(
                    img,
                    lang=self._languages,
                    output_type=pytesseract.Output.DICT,
                    timeout=self._timeout,
                )
        except pytesseract.TesseractNotFoundError as e:
            raise EngineUnavailable(f"tesseract not found: {e}") from e
        except (pytesseract.TesseractError, RuntimeError, OSError) as e:
            # pytesseract reports its own timeout as RuntimeError
            raise RecognitionFailed(f"tesseract failed on {image_path.name}: {e}") from e

        return LocalOcrPageResult(
            text=_text_from_data(data),
            confidence=_mean_confidence(data),
        )

    def terminate(self) -> None:
        self._languages = None


def _text_from_data(data: dict) -> str:
    """Rebuild text from ``image_to_data`` output, keeping line structure."""
    lines: dict[tuple[int, int, int], list[str]] = defaultdict(list)
    order: list[tuple[int, int, int]] = []
    for i, word in enumerate(data.get("text", [])):
        if not word or not str(word).strip():
            continue
        key = (data["block_num"][i], data["par_num"][i], data["line_num"][i])
        if key not in lines:
            order.append(key)
        lines[key].append(str(word).strip())

    out: list[str] = []
    previous_block = None
    for key in order:
        if previous_block is not None and key[0] != previous_block:
            out.append("")
        out.append(" ".join(lines[key]))
        previous_block = key[0]
    return "\n".join(out).strip()


def _mean_confidence(data: dict) -> float:
    """Mean word confidence (0-100); Tesseract marks non-words with -1."""
    values: list[float] = []
    for word, conf in zip(data.get("text", []), data.get("conf", [])):
        try:
            value = float(conf)
        except (TypeError, ValueError):
            continue
        if value >= 0 and word and str(word).strip():
            values.append(value)
    return sum(values) / len(values) if values else 0.0


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------


class EngineState(Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    TERMINATED = "terminated"


class LocalOcrAdapter:
    """Lifecycle owner and request serializer for one OcrEngine instance.

    Use as an async context manager, or call ``terminate()`` explicitly
    before shutdown. Initialization is lazy: the first ``recognize`` call
    brings the engine up.
    """

    def __init__(
        self,
        engine: OcrEngine,
        languages: str = "tur+eng",
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._engine = engine
        self._languages = languages
        self._retry_policy = retry_policy or RetryPolicy()
        self._state = EngineState.UNINITIALIZED
        self._lock = asyncio.Lock()
        self._engine_lock = threading.Lock()
        self._init_error: str | None = None

    @classmethod
    def from_settings(
        cls,
        settings: LocalOcrSettings,
        retry_policy: RetryPolicy | None = None,
    ) -> LocalOcrAdapter:
        engine = TesseractEngine(
            tesseract_cmd=settings.tesseract_cmd,
            timeout_seconds=settings.recognition_timeout_seconds,
        )
        return cls(engine, languages=settings.languages, retry_policy=retry_policy)

    @property
    def state(self) -> EngineState:
        return self._state

    async def __aenter__(self) -> LocalOcrAdapter:
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.terminate()

    async def initialize(self) -> None:
        """Bring the engine up once; later calls are no-ops.

        Raises:
            EngineUnavailable: Initialization failed now or earlier, or the
                adapter has been terminated.
        """
        async with self._lock:
            await self._initialize_locked()

    async def _initialize_locked(self) -> None:
        if self._state is EngineState.READY:
            return
        if self._state is EngineState.TERMINATED:
            raise EngineUnavailable(self._init_error or "local OCR engine terminated")

        logger.info("Initializing local OCR engine (languages=%s)", self._languages)
        try:
            await asyncio.to_thread(
                self._in_engine, self._engine.initialize, self._languages
            )
        except Exception as e:
            self._init_error = f"local OCR engine failed to initialize: {e}"
            logger.error("%s", self._init_error)
            await self._terminate_locked()
            raise EngineUnavailable(self._init_error) from e
        self._state = EngineState.READY

    async def terminate(self) -> None:
        """Shut the engine down; safe to call any number of times."""
        async with self._lock:
            await self._terminate_locked()

    async def _terminate_locked(self) -> None:
        if self._state is EngineState.TERMINATED:
            return
        self._state = EngineState.TERMINATED
        try:
            await asyncio.to_thread(self._in_engine, self._engine.terminate)
        except Exception:
            # A half-built engine may fail to shut down; it is dropped either way
            logger.warning("Local OCR engine terminate() raised", exc_info=True)
        else:
            logger.info("Local OCR engine terminated")

    def _in_engine(self, call, *args):
        # Runs in the worker thread; outlives cancellation of the awaiting task
        with self._engine_lock:
            return call(*args)

    async def _recognize_one(self, image: PageImage) -> PageResult:
        async with self._lock:
            await self._initialize_locked()
            raw = await call_with_retry(
                lambda: asyncio.to_thread(
                    self._in_engine, self._engine.recognize, image.path
                ),
                self._retry_policy,
                description=f"local OCR of page {image.index}",
            )
        return PageResult(
            index=image.index,
            text=raw.text.strip(),
            confidence=min(1.0, max(0.0, raw.confidence / 100.0)),
        )

    async def recognize(self, images: list[PageImage]) -> list[PageResult]:
        """Recognize each image, isolating per-page failures.

        Returns:
            One PageResult per image, in input order. Failed pages have empty
            text, zero confidence and ``error`` set.
        """
        results: list[PageResult] = []
        for image in images:
            try:
                result = await self._recognize_one(image)
            except EngineUnavailable as e:
                if self._state is not EngineState.TERMINATED:
                    logger.error("Local OCR engine lost: %s", e)
                    await self.terminate()
                results.append(PageResult(index=image.index, error=str(e)))
                continue
            except ExtractionError as e:
                logger.warning("Local OCR failed on page %d: %s", image.index, e)
                results.append(PageResult(index=image.index, error=str(e)))
                continue
            except Exception as e:
                logger.exception("Unexpected local OCR error on page %d", image.index)
                results.append(
                    PageResult(index=image.index, error=f"unexpected: {e}")
                )
                continue

            logger.debug(
                "Local OCR page %d: %d chars, confidence %.2f",
                result.index,
                len(result.text),
                result.confidence,
            )
            results.append(result)
        return results

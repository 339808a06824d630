"""Smoke test: live extraction of one PDF through every backend.

Runs a real PDF through the orchestrator with the real OCR.space client and
the real Tesseract binary, then forces each OCR branch separately so both
are exercised even when the native text layer is healthy:

- Run 1: normal decision tree (native first)
- Run 2: cloud OCR only (native layer hidden, local disabled)
- Run 3: local OCR only (native layer hidden, cloud disabled)

Requires OCR_SPACE_API_KEY in .env for run 2 and a tesseract install with
the ``tur`` language data for run 3. Not collected by pytest.

Usage:
    python -m tests.smoke.run_live_extraction path/to/sartname.pdf
"""

from __future__ import annotations

import asyncio
import json
import logging
import shutil
import sys
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path

# ---------------------------------------------------------------------------
# Resolve project root (must happen before tender_extract imports)
# ---------------------------------------------------------------------------

PROJECT_ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from tender_extract.config.settings import (
    CloudOcrSettings,
    ExtractionSettings,
    LocalOcrSettings,
)
from tender_extract.extractor.service import ExtractionOrchestrator
from tender_extract.extractor.types import ExtractionOptions, NativeExtraction
from tender_extract.logging import setup_logging

logger = logging.getLogger(__name__)

SMOKE_LOG_DIR = "logs/smoke_live_extraction"
SMOKE_MAX_PAGES = 3


@dataclass
class RunEvidence:
    label: str
    method: str = ""
    confidence: float = 0.0
    chain: list[str] = field(default_factory=list)
    char_count: int = 0
    page_count: int = 0
    processing_time_ms: float = 0.0
    error: str | None = None
    errors: list[str] = field(default_factory=list)
    preview: str = ""


@dataclass
class SmokeEvidence:
    """Structured evidence collected during the smoke run."""

    start_time: str = ""
    end_time: str = ""
    pdf_path: str = ""
    pdf_size: int = 0
    runs: list[RunEvidence] = field(default_factory=list)
    passed: bool = False
    failure_reasons: list[str] = field(default_factory=list)


def _hidden_native(_data: bytes) -> NativeExtraction:
    """Pretend the text layer is empty so the OCR branches must run."""
    return NativeExtraction(text="", page_count=SMOKE_MAX_PAGES)


def _pre_run_checks(pdf_path: Path, cloud: CloudOcrSettings) -> list[str]:
    failures = []
    if not pdf_path.is_file():
        failures.append(f"PDF not found: {pdf_path}")
    if not cloud.configured:
        failures.append("OCR_SPACE_API_KEY not set (.env or environment)")
    if shutil.which(LocalOcrSettings().tesseract_cmd) is None:
        failures.append("tesseract binary not on PATH")
    return failures


async def _run(
    label: str,
    data: bytes,
    filename: str,
    orchestrator: ExtractionOrchestrator,
) -> RunEvidence:
    print(f"[{label}] extracting...")
    result = await orchestrator.extract_text(
        data, filename, ExtractionOptions(max_pages_to_ocr=SMOKE_MAX_PAGES)
    )
    d = result.diagnostics
    run = RunEvidence(
        label=label,
        method=result.method.value,
        confidence=result.confidence,
        chain=[m.value for m in d.extraction_chain],
        char_count=len(result.text),
        page_count=result.page_count,
        processing_time_ms=round(d.processing_time_ms, 1),
        error=d.error,
        errors=list(d.errors),
        preview=result.text[:200],
    )
    print(
        f"  method={run.method} confidence={run.confidence:.2f} "
        f"chars={run.char_count} chain={run.chain} time={run.processing_time_ms}ms"
    )
    print()
    return run


async def run_smoke_test(pdf_path: Path) -> SmokeEvidence:
    """Execute the three runs and return evidence."""
    evidence = SmokeEvidence(pdf_path=str(pdf_path))
    evidence.start_time = datetime.now(timezone.utc).isoformat()

    extraction = ExtractionSettings()
    cloud = CloudOcrSettings()
    local = LocalOcrSettings(early_stop=False)

    print("=" * 60)
    print("SMOKE TEST: live extraction (native, OCR.space, Tesseract)")
    print("=" * 60)
    print()
    print("[Pre-Run] Checking prerequisites...")
    failures = _pre_run_checks(pdf_path, cloud)
    if failures:
        for f in failures:
            print(f"  FAIL: {f}")
        evidence.failure_reasons.extend(failures)
        evidence.end_time = datetime.now(timezone.utc).isoformat()
        return evidence
    print("  All prerequisites OK")
    print()

    data = pdf_path.read_bytes()
    evidence.pdf_size = len(data)

    try:
        async with ExtractionOrchestrator(extraction, cloud, local) as orchestrator:
            evidence.runs.append(await _run("Run 1", data, pdf_path.name, orchestrator))

        async with ExtractionOrchestrator(
            extraction,
            cloud,
            LocalOcrSettings(enabled=False),
            native_extractor=_hidden_native,
        ) as orchestrator:
            evidence.runs.append(await _run("Run 2", data, pdf_path.name, orchestrator))

        async with ExtractionOrchestrator(
            extraction,
            CloudOcrSettings(enabled=False),
            local,
            native_extractor=_hidden_native,
        ) as orchestrator:
            evidence.runs.append(await _run("Run 3", data, pdf_path.name, orchestrator))
    except Exception as exc:
        logger.exception("Smoke test aborted with unexpected error")
        evidence.failure_reasons.append(f"Unexpected error: {exc}")
    finally:
        evidence.end_time = datetime.now(timezone.utc).isoformat()

    expected = {"Run 2": "cloud_ocr", "Run 3": "local_ocr"}
    for run in evidence.runs:
        if not run.char_count:
            evidence.failure_reasons.append(f"{run.label}: no text ({run.error})")
        elif run.label in expected and run.method != expected[run.label]:
            evidence.failure_reasons.append(
                f"{run.label}: expected {expected[run.label]}, got {run.method}"
            )
    evidence.passed = len(evidence.runs) == 3 and not evidence.failure_reasons
    return evidence


def main() -> int:
    if len(sys.argv) != 2:
        print(__doc__)
        return 2

    setup_logging(log_dir=str(PROJECT_ROOT / SMOKE_LOG_DIR))
    evidence = asyncio.run(run_smoke_test(Path(sys.argv[1])))

    print("=" * 60)
    if evidence.passed:
        print("RESULT: PASS")
    else:
        print("RESULT: FAIL")
        for reason in evidence.failure_reasons:
            print(f"  - {reason}")
    print("=" * 60)
    print()

    log_dir = PROJECT_ROOT / SMOKE_LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)
    evidence_path = log_dir / "smoke_evidence.json"
    with open(evidence_path, "w", encoding="utf-8") as f:
        json.dump(asdict(evidence), f, indent=2, ensure_ascii=False)
    print(f"Full evidence saved to: {evidence_path}")
    print(f"Smoke log:              {log_dir / 'extraction.log'}")

    return 0 if evidence.passed else 1


if __name__ == "__main__":
    sys.exit(main())

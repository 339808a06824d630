"""Tests for the native and upload density gates."""

from tender_extract.extractor.quality import (
    NATIVE_MIN_CHARS,
    NATIVE_MIN_DENSITY,
    QualityGate,
    assess,
    assess_native,
    assess_upload,
)


def test_healthy_single_page_passes_native_gate():
    verdict = assess_native("a" * 300, 1)
    assert verdict.density == 300
    assert verdict.char_count == 300
    assert verdict.is_low is False


def test_low_density_across_pages_is_low():
    # 600 chars over 4 pages = 150 chars/page
    verdict = assess_native("a" * 600, 4)
    assert verdict.density == 150
    assert verdict.is_low is True


def test_short_text_is_low_even_when_dense():
    verdict = assess_native("a" * (NATIVE_MIN_CHARS - 1), 1)
    assert verdict.density >= NATIVE_MIN_DENSITY
    assert verdict.is_low is True


def test_zero_pages_treated_as_one():
    verdict = assess_native("a" * 400, 0)
    assert verdict.density == 400
    assert verdict.is_low is False


def test_empty_text_never_raises():
    for gate in QualityGate:
        verdict = assess("", 3, gate)
        assert verdict.char_count == 0
        assert verdict.word_count == 0
        assert verdict.is_low is True


def test_upload_gate_needs_chars_and_words():
    words = " ".join(["kelime"] * 200)
    assert len(words) >= 1000
    assert assess_upload(words, 1).is_low is False

    one_long_word = "x" * 1500
    assert assess_upload(one_long_word, 1).is_low is True

    few_chars = " ".join(["ab"] * 150)
    assert len(few_chars) < 1000
    assert assess_upload(few_chars, 1).is_low is True


def test_gates_are_independent():
    """400 chars / 1 page clears the native gate but not the upload gate."""
    text = " ".join(["kelime"] * 57)
    assert 390 <= len(text) <= 400

    assert assess_native(text, 1).is_low is False
    assert assess_upload(text, 1).is_low is True


def test_default_gate_is_native():
    text = "a" * 350
    assert assess(text, 1) == assess_native(text, 1)

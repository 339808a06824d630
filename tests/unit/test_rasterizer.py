"""Tests for page rendering and temp-file lifecycle."""

import asyncio
import io

import pytest
from PIL import Image

from tender_extract.extractor.errors import RasterFailed
from tender_extract.extractor.rasterizer import (
    _flatten_to_white,
    rasterize,
    rendered_page,
)

PNG_MAGIC = b"\x89PNG\r\n\x1a\n"


def _tiny_png(_data: bytes, _index: int, _dpi: int) -> bytes:
    out = io.BytesIO()
    Image.new("RGB", (4, 4), (255, 255, 255)).save(out, format="PNG")
    return out.getvalue()


def test_rasterize_returns_rgb_png(healthy_pdf):
    png = rasterize(healthy_pdf, 0, dpi=50)

    assert png.startswith(PNG_MAGIC)
    with Image.open(io.BytesIO(png)) as img:
        assert img.mode == "RGB"
        # A4 at 50 dpi is roughly 413 x 585
        assert 400 < img.width < 430


def test_rasterize_page_out_of_range(healthy_pdf):
    with pytest.raises(RasterFailed, match="out of range"):
        rasterize(healthy_pdf, 5, dpi=50)


def test_rasterize_garbage_bytes():
    with pytest.raises(RasterFailed):
        rasterize(b"garbage", 0)


def test_flatten_composites_transparency_onto_white():
    img = Image.new("RGBA", (2, 2), (0, 0, 0, 0))
    flattened = _flatten_to_white(img)

    assert flattened.mode == "RGB"
    assert flattened.getpixel((0, 0)) == (255, 255, 255)


def test_flatten_converts_grayscale():
    assert _flatten_to_white(Image.new("L", (2, 2), 0)).mode == "RGB"


async def test_rendered_page_deletes_file_after_block(tmp_path, healthy_pdf):
    async with rendered_page(healthy_pdf, 1, dpi=50, temp_dir=str(tmp_path)) as image:
        assert image.index == 1
        assert image.path.exists()
        assert image.path.name.startswith("tess-1-")
        assert image.path.read_bytes().startswith(PNG_MAGIC)

    assert not image.path.exists()
    assert list(tmp_path.iterdir()) == []


async def test_rendered_page_deletes_file_on_error_in_block(tmp_path):
    with pytest.raises(ValueError):
        async with rendered_page(b"pdf", 0, temp_dir=str(tmp_path), render=_tiny_png):
            raise ValueError("recognition blew up")

    assert list(tmp_path.iterdir()) == []


async def test_rendered_page_deletes_file_when_render_fails(tmp_path):
    with pytest.raises(RasterFailed):
        async with rendered_page(b"garbage", 0, temp_dir=str(tmp_path)):
            pytest.fail("block must not run when rendering fails")

    assert list(tmp_path.iterdir()) == []


async def test_rendered_page_deletes_file_on_cancellation(tmp_path):
    entered = asyncio.Event()

    async def hold_page():
        async with rendered_page(b"pdf", 0, temp_dir=str(tmp_path), render=_tiny_png):
            entered.set()
            await asyncio.sleep(60)

    task = asyncio.create_task(hold_page())
    await entered.wait()
    assert len(list(tmp_path.iterdir())) == 1

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert list(tmp_path.iterdir()) == []

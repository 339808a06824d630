"""Page rasterization for the local OCR engine.

Renders one PDF page at a fixed DPI with PyMuPDF, flattens it onto a white
background with Pillow (OCR engines misread transparent regions) and encodes
it as a maximally compressed PNG.

``rendered_page`` is the only way the orchestrator obtains page images: it
writes the PNG to a temporary file, yields a PageImage, and deletes the file
when the block exits -- on success, on error and on cancellation.
"""

from __future__ import annotations

import asyncio
import io
import logging
import os
import tempfile
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from pathlib import Path

import pymupdf
from PIL import Image

from tender_extract.extractor.errors import RasterFailed
from tender_extract.extractor.types import PageImage

logger = logging.getLogger(__name__)

DEFAULT_DPI = 300
TEMP_PREFIX = "tess-"
_PNG_COMPRESS_LEVEL = 9


def _flatten_to_white(img: Image.Image) -> Image.Image:
    """Composite any alpha channel over white and return an RGB image."""
    if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
        rgba = img.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.getchannel("A"))
        return background
    if img.mode != "RGB":
        return img.convert("RGB")
    return img


def rasterize(data: bytes, page_index: int, dpi: int = DEFAULT_DPI) -> bytes:
    """Render page *page_index* of a PDF to PNG bytes.

    Args:
        data: Raw PDF bytes.
        page_index: 0-based page index.
        dpi: Render resolution.

    Returns:
        PNG-encoded image bytes on a white background.

    Raises:
        RasterFailed: If the document cannot be opened or the page rendered.
    """
    try:
        doc = pymupdf.open(stream=data, filetype="pdf")
    except Exception as e:
        raise RasterFailed(f"cannot_open: {e}") from e

    try:
        if page_index < 0 or page_index >= len(doc):
            raise RasterFailed(
                f"page {page_index} out of range ({len(doc)} pages)"
            )
        pix = doc[page_index].get_pixmap(dpi=dpi, alpha=False)
        png_bytes = pix.tobytes("png")
    except RasterFailed:
        raise
    except Exception as e:
        raise RasterFailed(f"render failed for page {page_index}: {e}") from e
    finally:
        doc.close()

    try:
        with Image.open(io.BytesIO(png_bytes)) as img:
            flattened = _flatten_to_white(img)
            out = io.BytesIO()
            flattened.save(
                out, format="PNG", optimize=False, compress_level=_PNG_COMPRESS_LEVEL
            )
    except Exception as e:
        raise RasterFailed(f"encode failed for page {page_index}: {e}") from e

    return out.getvalue()


@asynccontextmanager
async def rendered_page(
    data: bytes,
    page_index: int,
    dpi: int = DEFAULT_DPI,
    temp_dir: str | None = None,
    render: Callable[[bytes, int, int], bytes] = rasterize,
) -> AsyncIterator[PageImage]:
    """Rasterize a page into a temporary PNG for the lifetime of the block.

    The temp path is reserved before rendering starts so the ``finally``
    block can always remove it. Rendering runs in a worker thread; the write
    happens on the event loop so no thread can recreate the file after the
    block has exited.

    Raises:
        RasterFailed: If rendering fails (the temp file is already removed).
    """
    fd, name = tempfile.mkstemp(
        prefix=f"{TEMP_PREFIX}{page_index}-", suffix=".png", dir=temp_dir
    )
    os.close(fd)
    path = Path(name)
    try:
        png_bytes = await asyncio.to_thread(render, data, page_index, dpi)
        path.write_bytes(png_bytes)
        logger.debug(
            "Rendered page %d at %d dpi (%d bytes) to %s",
            page_index,
            dpi,
            len(png_bytes),
            path.name,
        )
        yield PageImage(index=page_index, path=path)
    finally:
        try:
            path.unlink(missing_ok=True)
        except OSError:
            logger.warning("Failed to clean up temp page image %s", path)

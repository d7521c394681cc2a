"""Render document pages to JPEG data URIs with PyMuPDF."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Union

import fitz  # PyMuPDF

from .errors import RenderError
from .media import to_data_uri

logger = logging.getLogger(__name__)

RENDER_SCALE = 1.0
JPEG_QUALITY = 60


def render_document(
    source: Union[str, Path, bytes],
    *,
    scale: float = RENDER_SCALE,
    jpeg_quality: int = JPEG_QUALITY,
) -> List[str]:
    """Render every page of a PDF into a ``data:image/jpeg`` URI.

    Args:
        source: Path to a PDF or the raw PDF bytes
        scale: Zoom factor applied to each page
        jpeg_quality: JPEG quality (1-100)

    Returns:
        One data URI per page, in page order

    Raises:
        RenderError: If the document cannot be opened or has no pages
    """
    try:
        if isinstance(source, (bytes, bytearray)):
            doc = fitz.open(stream=bytes(source), filetype="pdf")
        else:
            doc = fitz.open(str(source))
    except Exception as exc:  # noqa: BLE001
        raise RenderError(f"Could not open document: {exc}") from exc

    images: List[str] = []
    try:
        if doc.page_count == 0:
            raise RenderError("Document has no pages")
        matrix = fitz.Matrix(scale, scale)
        for page in doc:
            try:
                pixmap = page.get_pixmap(matrix=matrix)
                data = pixmap.tobytes(output="jpeg", jpg_quality=jpeg_quality)
            except Exception as exc:  # noqa: BLE001
                raise RenderError(f"Failed to render page {page.number + 1}: {exc}") from exc
            images.append(to_data_uri(data, "image/jpeg"))
    finally:
        doc.close()

    logger.info("Rendered %d pages", len(images))
    return images

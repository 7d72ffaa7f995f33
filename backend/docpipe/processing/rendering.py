"""
PDF page rasterisation with PyMuPDF (fitz).

Each page is rendered to a PNG at the configured DPI so Tesseract sees the
same pixels a scanner would. A page that fails to render comes back as None;
the caller records it as a failed page and moves on.
"""

from __future__ import annotations

import logging

from docpipe.core.exceptions import CorruptContentError

logger = logging.getLogger(__name__)


def render_pdf_pages(pdf_bytes: bytes, dpi: int = 300) -> list[bytes | None]:
    """
    Blocking — run in a thread executor.

    Returns one PNG per page (None for pages that failed to render).
    Raises CorruptContentError when the document cannot be opened or has no pages.
    """
    import fitz  # PyMuPDF; imported here to avoid module-level import cost

    try:
        doc = fitz.open(stream=pdf_bytes, filetype="pdf")
    except Exception as exc:
        raise CorruptContentError(f"Cannot open PDF: {exc}") from exc

    images: list[bytes | None] = []
    with doc:
        if doc.needs_pass:
            raise CorruptContentError("PDF is password-protected")
        if doc.page_count == 0:
            raise CorruptContentError("PDF has no pages")

        for page_num, page in enumerate(doc, start=1):
            try:
                pix = page.get_pixmap(dpi=dpi)
                images.append(pix.tobytes("png"))
            except Exception as exc:
                logger.warning("PDF page render failed | page=%d error=%s", page_num, exc)
                images.append(None)

    logger.debug("PDF rendered | pages=%d dpi=%d", len(images), dpi)
    return images

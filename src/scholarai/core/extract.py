"""PDF text extraction: PyMuPDF text layer -> OCR (fallback) for scanned pages."""

import io
import logging
from typing import Callable, List, Optional

import fitz  # PyMuPDF
import pytesseract
from PIL import Image

from .models import ExtractionResult
from .settings import PipelineConfig

logger = logging.getLogger(__name__)

# Called with (page being OCR'd, pages to OCR), both 1-based counts
OcrProgress = Callable[[int, int], None]


def extract_page_text(page: fitz.Page) -> str:
    """Join the text-layer spans of a page with single spaces."""
    pieces = []
    blocks = page.get_text("dict")["blocks"]
    for block in blocks:
        if "lines" not in block:  # image block
            continue
        for line in block["lines"]:
            for span in line["spans"]:
                if span["text"].strip():
                    pieces.append(span["text"].strip())
    return " ".join(pieces).strip()


def extract_text_layer(doc: fitz.Document) -> str:
    """Text layer of every page, pages separated by a blank line."""
    page_texts = []
    for page in doc:
        text = extract_page_text(page)
        if text:
            page_texts.append(text)
    return "\n\n".join(page_texts)


def render_page_image(page: fitz.Page, zoom: float = 2.0) -> Image.Image:
    """Rasterize a page at ``zoom`` times its native resolution."""
    mat = fitz.Matrix(zoom, zoom)  # Increase resolution for better OCR
    pix = page.get_pixmap(matrix=mat)
    return Image.open(io.BytesIO(pix.tobytes("png")))


def ocr_image(image_bytes: bytes, language: str = "eng") -> str:
    """
    Run OCR over an uploaded raster image.

    Returns an empty string when the image cannot be read or OCR fails.
    """
    try:
        image = Image.open(io.BytesIO(image_bytes))
        return pytesseract.image_to_string(image, lang=language).strip()
    except Exception as e:
        logger.error(f"Image OCR failed: {e}")
        return ""


def has_enough_text(text: str, min_chars: int = 50) -> bool:
    """True when ``text`` has more than ``min_chars`` non-whitespace characters."""
    return len("".join(text.split())) > min_chars


class TextExtractor:
    """Extract readable text from PDF binaries, falling back to OCR for scans."""

    def __init__(self, config: Optional[PipelineConfig] = None):
        self.config = config or PipelineConfig()

    def extract(self, pdf_bytes: bytes, on_progress: Optional[OcrProgress] = None) -> ExtractionResult:
        """
        Extract text from a PDF.

        The embedded text layer is used whenever it carries more than
        ``min_text_chars`` non-whitespace characters. Otherwise the first
        ``ocr_page_limit`` pages are rasterized and OCR'd one by one.

        Args:
            pdf_bytes: PDF binary
            on_progress: Notified before each page is OCR'd

        Returns:
            Extraction result; empty text with zero pages if the PDF is unreadable
        """
        try:
            doc = fitz.open(stream=pdf_bytes, filetype="pdf")
        except Exception as e:
            logger.error(f"PDF text extraction failed: {e}")
            return ExtractionResult()

        try:
            page_count = doc.page_count
            text = extract_text_layer(doc)

            if has_enough_text(text, self.config.min_text_chars):
                return ExtractionResult(text=text, page_count=page_count)

            logger.info(f"No usable text layer in {page_count} pages, running OCR")
            return self._extract_with_ocr(doc, on_progress)

        except Exception as e:
            logger.error(f"PDF text extraction failed: {e}")
            return ExtractionResult()
        finally:
            doc.close()

    def _extract_with_ocr(self, doc: fitz.Document, on_progress: Optional[OcrProgress] = None) -> ExtractionResult:
        page_count = doc.page_count
        pages_to_ocr = min(page_count, self.config.ocr_page_limit)

        ocr_parts: List[str] = []
        for page_num in range(pages_to_ocr):
            if on_progress is not None:
                on_progress(page_num + 1, pages_to_ocr)
            page_text = self._ocr_page(doc[page_num], page_num)
            if page_text:
                ocr_parts.append(page_text)

        text = "\n\n".join(ocr_parts)
        truncated = pages_to_ocr < page_count
        if truncated:
            text += f"\n\n--- OCR processed first {pages_to_ocr} of {page_count} pages ---"

        logger.info(f"OCR recovered text from {len(ocr_parts)}/{pages_to_ocr} pages")
        return ExtractionResult(
            text=text,
            page_count=page_count,
            ocr_pages=pages_to_ocr,
            truncated=truncated,
        )

    def _ocr_page(self, page: fitz.Page, page_num: int) -> str:
        try:
            image = render_page_image(page, self.config.ocr_zoom)
            return pytesseract.image_to_string(image, lang=self.config.ocr_language).strip()
        except Exception as e:
            logger.warning(f"OCR failed on page {page_num + 1}: {e}")
            return ""

    def extract_image(self, image_bytes: bytes) -> str:
        return ocr_image(image_bytes, self.config.ocr_language)


def extract_text_from_pdf(
    pdf_bytes: bytes,
    config: Optional[PipelineConfig] = None,
    on_progress: Optional[OcrProgress] = None
) -> ExtractionResult:
    """Extract text from a PDF binary with default settings."""
    return TextExtractor(config).extract(pdf_bytes, on_progress)

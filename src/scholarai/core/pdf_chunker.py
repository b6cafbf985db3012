"""Split a PDF into standalone sub-documents of bounded page count."""

import logging
from typing import List

import fitz  # PyMuPDF

from .models import PdfChunk

logger = logging.getLogger(__name__)


def split_pdf(pdf_bytes: bytes, pages_per_chunk: int = 5) -> List[PdfChunk]:
    """
    Split a PDF into contiguous page groups, each saved as its own PDF.

    A PDF that cannot be parsed or split is returned whole as a single chunk.

    Args:
        pdf_bytes: Source PDF binary
        pages_per_chunk: Maximum pages in each chunk

    Returns:
        Chunks in ascending page order
    """
    if pages_per_chunk <= 0:
        raise ValueError(f"pages_per_chunk must be positive, got {pages_per_chunk}")

    try:
        source = fitz.open(stream=pdf_bytes, filetype="pdf")
    except Exception as e:
        logger.warning(f"Could not parse PDF for chunking, using it unsplit: {e}")
        return [_whole_document(pdf_bytes)]

    try:
        total_pages = source.page_count

        if total_pages <= pages_per_chunk:
            return [_whole_document(pdf_bytes, list(range(total_pages)))]

        starts = list(range(0, total_pages, pages_per_chunk))
        chunks = []
        for chunk_index, start in enumerate(starts):
            end = min(start + pages_per_chunk, total_pages)
            part = fitz.open()
            try:
                part.insert_pdf(source, from_page=start, to_page=end - 1)
                data = part.tobytes()
            finally:
                part.close()

            chunks.append(PdfChunk(
                data=data,
                chunk_index=chunk_index,
                total_chunks=len(starts),
                page_indices=list(range(start, end)),
            ))

        logger.info(f"Split {total_pages} pages into {len(chunks)} chunks of up to {pages_per_chunk}")
        return chunks

    except Exception as e:
        logger.warning(f"Error splitting PDF, using it unsplit: {e}")
        return [_whole_document(pdf_bytes)]
    finally:
        source.close()


def _whole_document(pdf_bytes: bytes, page_indices: List[int] = None) -> PdfChunk:
    return PdfChunk(
        data=pdf_bytes,
        chunk_index=0,
        total_chunks=1,
        page_indices=page_indices or [],
    )


class PdfChunker:
    """Chunker bound to a configured page size."""

    def __init__(self, pages_per_chunk: int = 5):
        if pages_per_chunk <= 0:
            raise ValueError(f"pages_per_chunk must be positive, got {pages_per_chunk}")
        self.pages_per_chunk = pages_per_chunk

    def split(self, pdf_bytes: bytes) -> List[PdfChunk]:
        return split_pdf(pdf_bytes, self.pages_per_chunk)

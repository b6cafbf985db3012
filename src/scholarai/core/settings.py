"""Pipeline configuration loaded from the environment (and .env)."""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


@dataclass
class PipelineConfig:
    """Knobs for chunking, extraction, model calls and job display."""
    pages_per_chunk: int = 5
    ocr_page_limit: int = 20
    ocr_zoom: float = 2.0  # rasterization scale for OCR
    min_text_chars: int = 50  # non-whitespace chars needed to skip OCR
    ocr_language: str = "eng"

    fast_model: str = "gpt-4o-mini"
    deep_model: str = "gpt-4o"
    transcription_model: str = "whisper-1"
    openai_api_key: Optional[str] = None

    transcript_char_limit: int = 20000
    document_char_limit: int = 30000
    quick_context_chars: int = 2000
    study_char_limit: int = 10000
    search_note_limit: int = 50

    dismiss_after_seconds: float = 4.0


def get_pipeline_config() -> PipelineConfig:
    """Get pipeline configuration from environment."""
    defaults = PipelineConfig()
    return PipelineConfig(
        pages_per_chunk=int(os.getenv("SCHOLAR_PAGES_PER_CHUNK", str(defaults.pages_per_chunk))),
        ocr_page_limit=int(os.getenv("SCHOLAR_OCR_PAGE_LIMIT", str(defaults.ocr_page_limit))),
        ocr_zoom=float(os.getenv("SCHOLAR_OCR_ZOOM", str(defaults.ocr_zoom))),
        min_text_chars=int(os.getenv("SCHOLAR_MIN_TEXT_CHARS", str(defaults.min_text_chars))),
        ocr_language=os.getenv("SCHOLAR_OCR_LANGUAGE", defaults.ocr_language),
        fast_model=os.getenv("SCHOLAR_FAST_MODEL", defaults.fast_model),
        deep_model=os.getenv("SCHOLAR_DEEP_MODEL", defaults.deep_model),
        transcription_model=os.getenv("SCHOLAR_TRANSCRIPTION_MODEL", defaults.transcription_model),
        openai_api_key=os.getenv("OPENAI_API_KEY"),
        transcript_char_limit=int(os.getenv("SCHOLAR_TRANSCRIPT_CHAR_LIMIT", str(defaults.transcript_char_limit))),
        document_char_limit=int(os.getenv("SCHOLAR_DOCUMENT_CHAR_LIMIT", str(defaults.document_char_limit))),
        quick_context_chars=int(os.getenv("SCHOLAR_QUICK_CONTEXT_CHARS", str(defaults.quick_context_chars))),
        study_char_limit=int(os.getenv("SCHOLAR_STUDY_CHAR_LIMIT", str(defaults.study_char_limit))),
        search_note_limit=int(os.getenv("SCHOLAR_SEARCH_NOTE_LIMIT", str(defaults.search_note_limit))),
        dismiss_after_seconds=float(os.getenv("SCHOLAR_DISMISS_AFTER", str(defaults.dismiss_after_seconds))),
    )

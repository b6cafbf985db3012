"""Typed records produced and consumed by the ingestion pipeline."""

import uuid
from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

NoteType = Literal["audio", "pdf", "text"]
SectionType = Literal["definition", "example", "theory", "formula"]
JobStatus = Literal["processing", "organizing", "success", "error"]
JobSource = Literal["audio", "pdf", "image"]

SECTION_TYPES = ("definition", "example", "theory", "formula")
TERMINAL_STATUSES = ("success", "error")


def new_note_id() -> str:
    """Opaque unique identifier for a note."""
    return uuid.uuid4().hex


class NoteSection(BaseModel):
    """One section of a note, kept in reading order."""
    heading: str
    content: str
    type: SectionType = "theory"


class Note(BaseModel):
    """A study note materialized from one ingestion."""
    id: str = Field(default_factory=new_note_id)
    title: str
    subject: str
    date: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    type: NoteType
    summary: str = ""
    sections: List[NoteSection] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    raw_content: Optional[str] = None
    original_transcript: Optional[str] = None
    pdf_binary_ref: Optional[str] = None
    audio_binary_ref: Optional[str] = None


class StructuredNote(BaseModel):
    """Note fields as returned by a structuring call, before materialization."""
    subject: str = ""
    title: str = ""
    summary: str = ""
    sections: List[NoteSection] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    raw_content: str = ""


class PdfChunk(BaseModel):
    """A contiguous page range of a source PDF, saved as a standalone PDF."""
    data: bytes
    chunk_index: int
    total_chunks: int
    page_indices: List[int] = Field(default_factory=list)

    @property
    def page_count(self) -> int:
        return len(self.page_indices)


class ExtractionResult(BaseModel):
    """Text pulled out of a PDF and how it was obtained."""
    text: str = ""
    page_count: int = 0
    ocr_pages: int = 0
    truncated: bool = False


class Flashcard(BaseModel):
    id: str
    front: str
    back: str


class QuizQuestion(BaseModel):
    id: str
    question: str
    options: List[str] = Field(default_factory=list)
    correct_answer: int = 0
    explanation: str = ""


class IngestionJob(BaseModel):
    """Snapshot of one background ingestion job.

    A job is created when a capture or upload is submitted, moves through
    ``processing`` and ``organizing``, and ends in ``success`` or ``error``.
    Terminal snapshots carry ``finished_at`` so a display can dismiss them
    after a fixed window.
    """
    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    source: JobSource
    status: JobStatus = "processing"
    message: str = ""
    detail: Optional[str] = None
    notes: List[Note] = Field(default_factory=list)
    started_at: float = 0.0
    finished_at: Optional[float] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def is_expired(self, now: float, dismiss_after: float) -> bool:
        """True once a terminal job has been displayed for ``dismiss_after`` seconds."""
        if not self.is_terminal or self.finished_at is None:
            return False
        return now - self.finished_at >= dismiss_after

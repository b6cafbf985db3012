"""Background ingestion jobs: chunk -> extract/transcribe -> structure -> materialize."""

import asyncio
import time
from pathlib import PurePath
from typing import Callable, List, Optional

from .audio_capture import AudioCaptureSession
from .extract import TextExtractor
from .logging_config import get_audit_logger, log_ingestion_event, log_job_transition
from .model_client import TranscriptionError
from .models import IngestionJob, JobSource, JobStatus, Note, NoteType, StructuredNote
from .pdf_chunker import PdfChunker
from .settings import PipelineConfig
from .structure import ContentStructurer

StatusListener = Callable[[IngestionJob], None]
NotesSink = Callable[[List[Note]], None]
BlobSink = Callable[[bytes, str], str]

DEFAULT_SUBJECT = "General"


def materialize_note(
    structured: StructuredNote,
    note_type: NoteType,
    subject: Optional[str] = None,
    fallback_title: str = "Untitled Note",
    title_suffix: str = "",
    original_transcript: Optional[str] = None,
    pdf_binary_ref: Optional[str] = None,
    audio_binary_ref: Optional[str] = None
) -> Note:
    """Build a new Note from structured fields."""
    title = structured.title or fallback_title
    return Note(
        title=f"{title}{title_suffix}",
        subject=subject or structured.subject or DEFAULT_SUBJECT,
        type=note_type,
        summary=structured.summary,
        sections=list(structured.sections),
        tags=list(structured.tags),
        raw_content=structured.raw_content or None,
        original_transcript=original_transcript,
        pdf_binary_ref=pdf_binary_ref,
        audio_binary_ref=audio_binary_ref,
    )


class IngestionOrchestrator:
    """
    Run ingestion jobs and expose the status of the most recent one.

    Every submission creates a new job that becomes the current job; the
    previous job keeps running to completion but its later transitions are
    no longer published. Listeners receive a snapshot on each transition of
    the current job. Terminal jobs stop being reported by ``current_job``
    once ``dismiss_after_seconds`` have elapsed.
    """

    def __init__(
        self,
        structurer: ContentStructurer,
        chunker: Optional[PdfChunker] = None,
        extractor: Optional[TextExtractor] = None,
        config: Optional[PipelineConfig] = None,
        on_notes: Optional[NotesSink] = None,
        store_blob: Optional[BlobSink] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize the orchestrator.

        Args:
            structurer: Model-backed content structurer
            chunker: PDF chunker (defaults to ``config.pages_per_chunk``)
            extractor: PDF/image text extractor
            config: Pipeline configuration
            on_notes: Receives the notes of each successful job, all at once
            store_blob: Saves source binaries and returns a reference
            clock: Time source for job timestamps and expiry
        """
        self.config = config or structurer.config
        self.structurer = structurer
        self.chunker = chunker or PdfChunker(self.config.pages_per_chunk)
        self.extractor = extractor or TextExtractor(self.config)
        self.on_notes = on_notes
        self.store_blob = store_blob
        self._clock = clock
        self._listeners: List[StatusListener] = []
        self._current: Optional[IngestionJob] = None
        self.audit_logger = get_audit_logger("ingestion")

    def subscribe(self, listener: StatusListener) -> None:
        """Register a callback for status changes of the current job."""
        self._listeners.append(listener)

    @property
    def current_job(self) -> Optional[IngestionJob]:
        """The job to display, or None once a finished job has expired."""
        job = self._current
        if job is not None and job.is_expired(self._clock(), self.config.dismiss_after_seconds):
            return None
        return job

    # ---- Job lifecycle

    def _start_job(self, source: JobSource, message: str) -> IngestionJob:
        job = IngestionJob(source=source, message=message, started_at=self._clock())
        self._current = job
        self._publish(job)
        return job

    def _transition(
        self,
        job: IngestionJob,
        status: JobStatus,
        message: str,
        detail: Optional[str] = None,
        notes: Optional[List[Note]] = None
    ) -> IngestionJob:
        update = {"status": status, "message": message, "detail": detail}
        if notes is not None:
            update["notes"] = notes
        if status in ("success", "error"):
            update["finished_at"] = self._clock()
        updated = job.model_copy(update=update)

        if self._current is not None and self._current.id == job.id:
            self._current = updated
            self._publish(updated)
        return updated

    def _publish(self, job: IngestionJob) -> None:
        log_job_transition(self.audit_logger, job.id, job.source, job.status, job.message, job.detail)
        for listener in self._listeners:
            try:
                listener(job)
            except Exception:
                self.audit_logger.exception("status_listener_failed", job_id=job.id)

    def _succeed(self, job: IngestionJob, notes: List[Note], pages: int = 0, chunks: int = 0) -> IngestionJob:
        message = "Note created" if len(notes) == 1 else f"{len(notes)} notes created"
        job = self._transition(job, "success", message, notes=notes)
        log_ingestion_event(
            self.audit_logger, job.id, job.source, len(notes), pages, chunks,
            (job.finished_at - job.started_at) * 1000, succeeded=True
        )
        return job

    def _fail(self, job: IngestionJob, message: str, detail: Optional[str], error: Exception) -> IngestionJob:
        """Move a job to ``error``; only ``message`` and ``detail`` reach the job."""
        self.audit_logger.error(
            "ingestion_failed",
            job_id=job.id,
            source=job.source,
            stage=job.status,
            error=str(error),
            exc_info=error
        )
        job = self._transition(job, "error", message, detail)
        log_ingestion_event(
            self.audit_logger, job.id, job.source, 0, 0, 0,
            (job.finished_at - job.started_at) * 1000, succeeded=False
        )
        return job

    def _emit(self, notes: List[Note]) -> None:
        if self.on_notes is not None:
            self.on_notes(notes)

    def _store(self, data: Optional[bytes], extension: str) -> Optional[str]:
        if data is None or self.store_blob is None:
            return None
        return self.store_blob(data, extension)

    # ---- Audio

    async def ingest_audio(
        self,
        audio_bytes: bytes,
        filename: str = "recording.webm",
        subject: Optional[str] = None
    ) -> IngestionJob:
        """Transcribe an audio file and organize the transcript into a note."""
        job = self._start_job("audio", "Transcribing audio...")
        try:
            transcript = await self.structurer.transcribe_audio(audio_bytes, filename)
        except Exception as e:
            return self._fail(job, "Could not transcribe audio", "The recording could not be converted to text.", e)

        extension = PurePath(filename).suffix.lstrip(".") or "webm"
        return await self._organize_audio(job, transcript, subject, audio_bytes, extension)

    async def ingest_transcript(
        self,
        transcript: str,
        subject: Optional[str] = None,
        audio_bytes: Optional[bytes] = None,
        audio_extension: str = "webm"
    ) -> IngestionJob:
        """Organize an already captured transcript into a note."""
        job = self._start_job("audio", "Processing transcript...")
        if not transcript.strip():
            return self._fail(
                job, "Could not transcribe audio", "No speech was captured.",
                TranscriptionError("Transcript is empty")
            )
        return await self._organize_audio(job, transcript, subject, audio_bytes, audio_extension)

    async def ingest_capture(self, session: AudioCaptureSession, subject: Optional[str] = None) -> IngestionJob:
        """Stop a live capture session and organize what it heard."""
        job = self._start_job("audio", "Finishing recording...")
        try:
            transcript = await session.stop()
            if not transcript.strip():
                raise TranscriptionError("No speech captured")
        except Exception as e:
            return self._fail(job, "Could not transcribe audio", "No speech was captured.", e)
        return await self._organize_audio(job, transcript, subject, None, "webm")

    async def _organize_audio(
        self,
        job: IngestionJob,
        transcript: str,
        subject: Optional[str],
        audio_bytes: Optional[bytes],
        extension: str
    ) -> IngestionJob:
        job = self._transition(job, "organizing", "Organizing notes...")
        try:
            structured = await self.structurer.organize_transcript(transcript)
            note = materialize_note(
                structured,
                "audio",
                subject=subject,
                fallback_title="Untitled Lecture",
                original_transcript=transcript,
                audio_binary_ref=self._store(audio_bytes, extension),
            )
            self._emit([note])
        except Exception as e:
            return self._fail(job, "Could not process audio", "The transcript could not be organized into notes.", e)
        return self._succeed(job, [note])

    # ---- PDF

    async def ingest_pdf(self, pdf_bytes: bytes, subject: Optional[str] = None) -> IngestionJob:
        """
        Split a PDF into chunks and create one note per chunk.

        Chunks are processed strictly in order. Notes are emitted together
        only after the last chunk succeeds; a failure on any chunk ends the
        job in ``error`` without emitting anything.
        """
        job = self._start_job("pdf", "Preparing PDF...")
        loop = asyncio.get_running_loop()
        part, total = 0, 0
        pages = 0
        try:
            chunks = await asyncio.to_thread(self.chunker.split, pdf_bytes)
            total = len(chunks)
            notes = []

            for chunk in chunks:
                part = chunk.chunk_index + 1
                message = f"Organizing part {part}/{total}..."
                detail = None
                if chunk.page_indices:
                    detail = f"Pages {chunk.page_indices[0] + 1}-{chunk.page_indices[-1] + 1}"
                job = self._transition(job, "organizing", message, detail)

                # OCR runs in a worker thread; progress is published from the loop
                def report_ocr(page: int, pages_to_ocr: int, job=job, message=message):
                    loop.call_soon_threadsafe(
                        self._transition, job, "organizing", message,
                        f"OCR: Processing page {page} of {pages_to_ocr}"
                    )

                extraction = await asyncio.to_thread(self.extractor.extract, chunk.data, report_ocr)
                pages += extraction.page_count
                structured = await self.structurer.structure_document_text(extraction.text)
                notes.append(materialize_note(
                    structured,
                    "pdf",
                    subject=subject,
                    fallback_title="Untitled Document",
                    title_suffix=f" (Part {part})" if total > 1 else "",
                    pdf_binary_ref=self._store(chunk.data, "pdf"),
                ))

            self._emit(notes)
        except Exception as e:
            detail = f"Failed on part {part} of {total}." if total > 1 else "The document could not be processed."
            return self._fail(job, "Could not process PDF", detail, e)
        return self._succeed(job, notes, pages=pages, chunks=total)

    # ---- Image

    async def ingest_image(self, image_bytes: bytes, subject: Optional[str] = None) -> IngestionJob:
        """Read an image with OCR and turn its text into a note."""
        job = self._start_job("image", "Reading image...")
        try:
            text = await asyncio.to_thread(self.extractor.extract_image, image_bytes)
            structured = await self.structurer.structure_image_text(text)
            note = materialize_note(structured, "text", subject=subject, fallback_title="Scanned Note")
            self._emit([note])
        except Exception as e:
            return self._fail(job, "Could not process image", "The image could not be turned into a note.", e)
        return self._succeed(job, [note])

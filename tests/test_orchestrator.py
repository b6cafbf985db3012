import asyncio
import io

import pytesseract
from PIL import Image

from conftest import FakeModelClient, make_pdf, note_json
from scholarai.core.audio_capture import (
    AudioCaptureSession,
    RecognitionError,
    RecognitionResult,
    SpeechRecognizer,
)
from scholarai.core.blob_store import ObjectStore
from scholarai.core.model_client import ModelCallError
from scholarai.core.orchestrator import IngestionOrchestrator, materialize_note
from scholarai.core.models import StructuredNote
from scholarai.core.settings import PipelineConfig
from scholarai.core.structure import ContentStructurer

TRANSCRIPT = "Today we cover photosynthesis, the process plants use to store light energy."


class FakeClock:
    def __init__(self, now=100.0):
        self.now = now

    def __call__(self):
        return self.now


class Recorder:
    """Collects published job snapshots and emitted note batches."""

    def __init__(self):
        self.jobs = []
        self.batches = []

    @property
    def statuses(self):
        return [job.status for job in self.jobs]

    def on_job(self, job):
        self.jobs.append(job)

    def on_notes(self, notes):
        self.batches.append(notes)


def make_orchestrator(client, config=None, clock=None, **kwargs):
    recorder = Recorder()
    config = config or client.config
    orchestrator = IngestionOrchestrator(
        ContentStructurer(client, config),
        config=config,
        on_notes=recorder.on_notes,
        clock=clock or FakeClock(),
        **kwargs
    )
    orchestrator.subscribe(recorder.on_job)
    return orchestrator, recorder


def test_audio_job_moves_through_every_status():
    client = FakeModelClient([note_json()], transcript=TRANSCRIPT)
    orchestrator, recorder = make_orchestrator(client)

    job = asyncio.run(orchestrator.ingest_audio(b"audio-bytes", "lecture.m4a"))

    assert recorder.statuses == ["processing", "organizing", "success"]
    assert job.status == "success"
    assert job.message == "Note created"
    assert len(recorder.batches) == 1
    note = recorder.batches[0][0]
    assert note.type == "audio"
    assert note.title == "Photosynthesis"
    assert note.subject == "Biology"
    assert note.original_transcript == TRANSCRIPT
    assert [s.heading for s in note.sections] == ["Light reactions", "Equation"]


def test_audio_subject_override_and_blob_reference(tmp_path):
    client = FakeModelClient([note_json()], transcript=TRANSCRIPT)
    orchestrator, recorder = make_orchestrator(client, store_blob=ObjectStore(tmp_path))

    asyncio.run(orchestrator.ingest_audio(b"audio-bytes", "lecture.m4a", subject="Botany"))

    note = recorder.batches[0][0]
    assert note.subject == "Botany"
    assert note.audio_binary_ref.endswith(".m4a")
    assert (tmp_path / note.audio_binary_ref.split("/")[-1]).read_bytes() == b"audio-bytes"


def test_transcription_failure_ends_in_error(transcription_error):
    client = FakeModelClient(transcript=transcription_error)
    orchestrator, recorder = make_orchestrator(client)

    job = asyncio.run(orchestrator.ingest_audio(b"audio-bytes"))

    assert recorder.statuses == ["processing", "error"]
    assert job.message == "Could not transcribe audio"
    assert "provider unavailable" not in (job.detail or "")
    assert recorder.batches == []
    assert client.requests == []


def test_structuring_failure_ends_in_error():
    client = FakeModelClient([ModelCallError("rate limited")], transcript=TRANSCRIPT)
    orchestrator, recorder = make_orchestrator(client)

    job = asyncio.run(orchestrator.ingest_audio(b"audio-bytes"))

    assert recorder.statuses == ["processing", "organizing", "error"]
    assert job.message == "Could not process audio"
    assert recorder.batches == []


def test_untitled_transcript_falls_back_to_defaults():
    client = FakeModelClient(["not json at all"])
    orchestrator, recorder = make_orchestrator(client)

    job = asyncio.run(orchestrator.ingest_transcript(TRANSCRIPT))

    assert job.status == "success"
    note = recorder.batches[0][0]
    assert note.title == "Untitled Lecture"
    assert note.subject == "General"


def test_empty_transcript_is_an_error():
    client = FakeModelClient()
    orchestrator, recorder = make_orchestrator(client)

    job = asyncio.run(orchestrator.ingest_transcript("   "))

    assert recorder.statuses == ["processing", "error"]
    assert job.message == "Could not transcribe audio"
    assert client.requests == []


def test_pdf_chunks_become_ordered_notes_emitted_once():
    seen_batches = []
    recorder_ref = {}

    def reply(request):
        # nothing is emitted while chunks are still being processed
        seen_batches.append(len(recorder_ref["recorder"].batches))
        return note_json(title="Cell Biology")

    client = FakeModelClient([reply, reply, reply])
    orchestrator, recorder = make_orchestrator(client, config=PipelineConfig(pages_per_chunk=5))
    recorder_ref["recorder"] = recorder

    job = asyncio.run(orchestrator.ingest_pdf(make_pdf(12), subject="Biology 101"))

    assert job.status == "success"
    assert job.message == "3 notes created"
    assert seen_batches == [0, 0, 0]
    assert len(recorder.batches) == 1
    notes = recorder.batches[0]
    assert [n.title for n in notes] == [
        "Cell Biology (Part 1)", "Cell Biology (Part 2)", "Cell Biology (Part 3)"
    ]
    assert all(n.type == "pdf" and n.subject == "Biology 101" for n in notes)
    assert notes[0].raw_content.startswith("Page 0 ")
    assert "Page 5 " not in notes[0].raw_content
    assert notes[2].raw_content.startswith("Page 10 ")

    assert recorder.statuses == ["processing", "organizing", "organizing", "organizing", "success"]
    assert [j.message for j in recorder.jobs[1:4]] == [
        "Organizing part 1/3...", "Organizing part 2/3...", "Organizing part 3/3..."
    ]
    assert recorder.jobs[3].detail == "Pages 11-12"


def test_single_chunk_pdf_has_no_part_suffix(tmp_path):
    client = FakeModelClient([note_json(title="Handout")])
    orchestrator, recorder = make_orchestrator(client, store_blob=ObjectStore(tmp_path))

    asyncio.run(orchestrator.ingest_pdf(make_pdf(3)))

    note = recorder.batches[0][0]
    assert note.title == "Handout"
    assert note.subject == "Biology"
    assert note.pdf_binary_ref.endswith(".pdf")


def test_pdf_failure_mid_way_emits_nothing():
    client = FakeModelClient([note_json(), ModelCallError("timeout"), note_json()])
    orchestrator, recorder = make_orchestrator(client, config=PipelineConfig(pages_per_chunk=5))

    job = asyncio.run(orchestrator.ingest_pdf(make_pdf(12)))

    assert job.status == "error"
    assert job.message == "Could not process PDF"
    assert job.detail == "Failed on part 2 of 3."
    assert recorder.batches == []
    # chunk 3 is never attempted
    assert len(client.requests) == 2
    assert recorder.statuses == ["processing", "organizing", "organizing", "error"]


def test_image_job_skips_organizing(monkeypatch):
    monkeypatch.setattr(
        pytesseract, "image_to_string",
        lambda image, lang="eng", **kwargs: "Newton's second law: F = ma"
    )
    buffer = io.BytesIO()
    Image.new("RGB", (200, 80), "white").save(buffer, format="PNG")

    client = FakeModelClient([note_json(title="Newton's Laws", subject="Physics")])
    orchestrator, recorder = make_orchestrator(client)

    job = asyncio.run(orchestrator.ingest_image(buffer.getvalue()))

    assert recorder.statuses == ["processing", "success"]
    note = job.notes[0]
    assert note.type == "text"
    assert note.raw_content == "Newton's second law: F = ma"
    assert "F = ma" in client.requests[0].user_payload


def test_finished_job_expires_after_display_window():
    clock = FakeClock()
    client = FakeModelClient([note_json()], transcript=TRANSCRIPT)
    orchestrator, _ = make_orchestrator(client, clock=clock)

    assert orchestrator.current_job is None
    job = asyncio.run(orchestrator.ingest_audio(b"audio"))

    clock.now += 3.9
    assert orchestrator.current_job.id == job.id
    clock.now += 0.2
    assert orchestrator.current_job is None


def test_new_submission_supersedes_running_job():
    class GatedClient(FakeModelClient):
        def __init__(self):
            super().__init__()
            self.gate = None

        async def generate(self, request, **kwargs):
            self.requests.append(request)
            if "first lecture" in request.user_payload:
                await self.gate.wait()
                return note_json(title="First")
            return note_json(title="Second")

    async def scenario():
        client = GatedClient()
        client.gate = asyncio.Event()
        orchestrator, recorder = make_orchestrator(client)

        first = asyncio.create_task(orchestrator.ingest_transcript("first lecture on cells"))
        await asyncio.sleep(0)
        second = await orchestrator.ingest_transcript("second lecture on atoms")
        assert orchestrator.current_job.id == second.id

        client.gate.set()
        first_job = await first

        return orchestrator, recorder, first_job, second

    orchestrator, recorder, first_job, second = asyncio.run(scenario())

    # the superseded job still finishes and its note is still delivered
    assert first_job.status == "success"
    assert sorted(n.title for batch in recorder.batches for n in batch) == ["First", "Second"]
    # but only the current job's transitions are published after supersession
    assert orchestrator.current_job.id == second.id
    published_for_first = [j.status for j in recorder.jobs if j.id == first_job.id]
    assert published_for_first == ["processing", "organizing"]


def test_live_capture_is_organized_into_a_note():
    class SilentRecognizer(SpeechRecognizer):
        async def start(self):
            pass

        async def stop(self):
            pass

        async def events(self):
            await asyncio.Event().wait()
            yield

    async def scenario():
        session = AudioCaptureSession(SilentRecognizer())
        await session.start()
        await session.handle_event(RecognitionResult("Mitochondria make ATP.", is_final=True))
        await session.handle_event(RecognitionResult("and then"))

        client = FakeModelClient([note_json(title="Cell Energy")])
        orchestrator, recorder = make_orchestrator(client)
        job = await orchestrator.ingest_capture(session, subject="Biology")
        return session, job, recorder

    session, job, recorder = asyncio.run(scenario())

    assert session.state == "stopped"
    assert job.status == "success"
    assert job.notes[0].original_transcript == "Mitochondria make ATP."
    assert recorder.statuses == ["processing", "organizing", "success"]


def test_materialize_note_defaults():
    note = materialize_note(StructuredNote(), "pdf", fallback_title="Untitled Document", title_suffix=" (Part 2)")

    assert note.title == "Untitled Document (Part 2)"
    assert note.subject == "General"
    assert note.raw_content is None
    assert note.id


def test_capture_with_failed_restart_still_becomes_a_note():
    class FlakyRecognizer(SpeechRecognizer):
        def __init__(self):
            self.starts = 0

        async def start(self):
            self.starts += 1
            if self.starts > 1:
                raise RuntimeError("mic busy during restart")

        async def stop(self):
            pass

        async def events(self):
            await asyncio.Event().wait()
            yield

    async def scenario():
        session = AudioCaptureSession(FlakyRecognizer())
        await session.start()
        await session.handle_event(RecognitionResult("Enzymes lower activation energy.", is_final=True))
        await session.handle_event(RecognitionError("no-speech"))

        client = FakeModelClient([note_json(title="Enzymes")])
        orchestrator, recorder = make_orchestrator(client)
        job = await orchestrator.ingest_capture(session)
        return session, job, recorder

    session, job, recorder = asyncio.run(scenario())

    assert session.error_code == "restart-failed"
    assert job.status == "success"
    assert job.notes[0].original_transcript == "Enzymes lower activation energy."
    assert recorder.statuses == ["processing", "organizing", "success"]


def test_scanned_pdf_reports_ocr_progress(monkeypatch):
    monkeypatch.setattr(
        pytesseract, "image_to_string",
        lambda image, lang="eng", **kwargs: "Handwritten notes on the Krebs cycle"
    )
    client = FakeModelClient([note_json(title="Krebs Cycle")])
    orchestrator, recorder = make_orchestrator(client)

    job = asyncio.run(orchestrator.ingest_pdf(make_pdf(3, with_text=False)))

    assert job.status == "success"
    assert recorder.statuses == ["processing", "organizing", "organizing", "organizing", "organizing", "success"]
    assert [j.detail for j in recorder.jobs[1:5]] == [
        "Pages 1-3",
        "OCR: Processing page 1 of 3",
        "OCR: Processing page 2 of 3",
        "OCR: Processing page 3 of 3",
    ]
    assert all(j.message == "Organizing part 1/1..." for j in recorder.jobs[1:5])

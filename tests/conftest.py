import json
from typing import Callable, List, Optional, Union

import fitz  # PyMuPDF
import pytest

from scholarai.core.model_client import ModelCallError, ModelRequest, TranscriptionError
from scholarai.core.settings import PipelineConfig


def make_pdf(pages: int, with_text: bool = True) -> bytes:
    """Build a PDF in memory; text pages carry their own page number."""
    doc = fitz.open()
    for i in range(pages):
        page = doc.new_page()
        if with_text:
            page.insert_text(
                (72, 72),
                f"Page {i} of the lecture handout on cell biology and photosynthesis.",
            )
    data = doc.tobytes()
    doc.close()
    return data


def page_markers(pdf_bytes: bytes) -> List[int]:
    """Page numbers written by make_pdf, in document order."""
    doc = fitz.open(stream=pdf_bytes, filetype="pdf")
    try:
        return [int(page.get_text().split()[1]) for page in doc]
    finally:
        doc.close()


Reply = Union[str, Exception, Callable[[ModelRequest], str]]


class FakeModelClient:
    """Scripted stand-in for ModelClient; records every request."""

    def __init__(
        self,
        replies: Optional[List[Reply]] = None,
        transcript: Union[str, Exception] = "",
        config: Optional[PipelineConfig] = None
    ):
        self.config = config or PipelineConfig()
        self.replies = list(replies or [])
        self.transcript = transcript
        self.requests: List[ModelRequest] = []
        self.calls: List[dict] = []

    async def generate(self, request, model=None, json_mode=True, temperature=None, max_tokens=None):
        self.requests.append(request)
        self.calls.append({"model": model, "json_mode": json_mode})
        if not self.replies:
            raise ModelCallError("no scripted reply")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(request)
        return reply

    async def transcribe(self, audio_bytes, filename="recording.webm"):
        if isinstance(self.transcript, Exception):
            raise self.transcript
        return self.transcript


def note_json(title: str = "Photosynthesis", subject: str = "Biology", **extra) -> str:
    payload = {
        "subject": subject,
        "title": title,
        "summary": "Plants turn light into chemical energy. Chlorophyll absorbs light. Glucose is produced.",
        "sections": [
            {"heading": "Light reactions", "content": "Occur in the thylakoid.", "type": "theory"},
            {"heading": "Equation", "content": "6CO2 + 6H2O -> C6H12O6 + 6O2", "type": "formula"},
        ],
        "tags": ["biology", "plants", "energy"],
    }
    payload.update(extra)
    return json.dumps(payload)


@pytest.fixture
def config():
    return PipelineConfig()


@pytest.fixture
def transcription_error():
    return TranscriptionError("provider unavailable")

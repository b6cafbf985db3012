"""Turn transcripts and extracted text into note fields via the model."""

import json
import logging
from typing import Any, Dict, List, Optional

from .decoder import decode_model_json
from .models import SECTION_TYPES, Flashcard, Note, NoteSection, QuizQuestion, StructuredNote
from .model_client import ModelCallError, ModelClient, ModelRequest, TranscriptionError
from .settings import PipelineConfig

logger = logging.getLogger(__name__)


TRANSCRIPT_INSTRUCTION = """You are a study assistant that organizes lecture transcripts into notes.

Analyze the transcript and respond with a single JSON object:
{
  "subject": "academic subject of the lecture",
  "title": "concise title",
  "summary": "short 3-sentence summary",
  "sections": [
    {"heading": "...", "content": "markdown content", "type": "definition|example|theory|formula"}
  ],
  "tags": ["3 to 5 keywords"]
}
Keep sections in the order the material is taught. Return only the JSON object."""

DOCUMENT_INSTRUCTION = """You are a study assistant that organizes document text into notes.

Respond with a single JSON object:
{
  "title": "concise title",
  "summary": "short summary, at most 3 sentences",
  "sections": [
    {"heading": "...", "content": "short markdown content", "type": "definition|example|theory|formula"}
  ],
  "tags": ["3 to 5 keywords"]
}
Use at most 4 short sections. Do not repeat the source text. Return only the JSON object."""

IMAGE_INSTRUCTION = """You are a study assistant. The text below was read by OCR from a photo
of notes, a whiteboard or a document, and may contain recognition errors.

Respond with a single JSON object:
{
  "title": "relevant title",
  "summary": "short summary",
  "sections": [
    {"heading": "...", "content": "short markdown content", "type": "definition|example|theory|formula"}
  ],
  "tags": ["3 to 5 keywords"]
}
Use at most 4 short sections. Return only the JSON object."""

QUICK_ANSWER_INSTRUCTION = """You are a helpful study assistant.
Answer the student's question from the context in 1-2 sentences. Be concise and direct."""

DEEP_ANSWER_INSTRUCTION = """You are a patient tutor.
Using the context from the student's document, give a clear, step-by-step explanation or solution
to the question. Show your reasoning."""

SEARCH_INSTRUCTION = """You match a search query against study notes.
Respond with a JSON object {"ids": [...]} listing the ids of the notes relevant to the query,
most relevant first. Use only ids from the provided notes; return {"ids": []} if none match."""

FLASHCARD_INSTRUCTION = """Create 5 high-quality flashcards from the notes.
Respond with a JSON object {"flashcards": [{"id": "...", "front": "...", "back": "..."}]}."""

QUIZ_INSTRUCTION = """Create 5 multiple-choice questions from the notes.
Respond with a JSON object {"questions": [{"id": "...", "question": "...", "options": ["..."],
"correctAnswer": 0, "explanation": "..."}]} where correctAnswer is the index of the right option."""


def _as_str(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _as_list(value: Any, key: Optional[str] = None) -> List[Any]:
    if isinstance(value, list):
        return value
    if key and isinstance(value, dict) and isinstance(value.get(key), list):
        return value[key]
    return []


def coerce_sections(value: Any) -> List[NoteSection]:
    """Build sections from decoded data, dropping entries without content."""
    sections = []
    for item in _as_list(value):
        if not isinstance(item, dict):
            continue
        heading = _as_str(item.get("heading"))
        content = _as_str(item.get("content"))
        if not heading and not content:
            continue
        section_type = _as_str(item.get("type")).lower()
        if section_type not in SECTION_TYPES:
            section_type = "theory"
        sections.append(NoteSection(heading=heading, content=content, type=section_type))
    return sections


def coerce_structured_note(data: Any) -> StructuredNote:
    """Map decoded JSON onto note fields; anything missing stays empty."""
    if not isinstance(data, dict):
        data = {}
    tags = [tag.strip() for tag in _as_list(data.get("tags")) if isinstance(tag, str) and tag.strip()]
    return StructuredNote(
        subject=_as_str(data.get("subject")),
        title=_as_str(data.get("title")),
        summary=_as_str(data.get("summary")),
        sections=coerce_sections(data.get("sections")),
        tags=tags,
    )


class ContentStructurer:
    """Issue structuring, Q&A, search and study-aid requests."""

    def __init__(self, client: ModelClient, config: Optional[PipelineConfig] = None):
        self.client = client
        self.config = config or client.config

    async def _structured_call(self, instruction: str, payload: str, model: Optional[str] = None) -> Any:
        request = ModelRequest(system_instruction=instruction, user_payload=payload)
        raw = await self.client.generate(request, model=model, json_mode=True, temperature=0.3)
        return decode_model_json(raw)

    async def transcribe_audio(self, audio_bytes: bytes, filename: str = "recording.webm") -> str:
        """
        Transcribe recorded or uploaded audio.

        Raises:
            TranscriptionError: when the provider fails or returns no speech
        """
        transcript = await self.client.transcribe(audio_bytes, filename)
        if not transcript:
            raise TranscriptionError("Transcription returned no text")
        logger.info(f"Transcribed {len(audio_bytes)} bytes of audio into {len(transcript)} chars")
        return transcript

    async def organize_transcript(self, transcript: str) -> StructuredNote:
        """
        Organize a lecture transcript into subject, title, summary, sections and tags.

        Raises:
            ModelCallError: when the model cannot be reached
        """
        if not transcript.strip():
            return StructuredNote()

        payload = f"Transcript:\n{transcript[:self.config.transcript_char_limit]}"
        data = await self._structured_call(TRANSCRIPT_INSTRUCTION, payload, model=self.config.deep_model)
        return coerce_structured_note(data)

    async def structure_document_text(self, text: str) -> StructuredNote:
        """
        Structure text extracted from a PDF.

        The extracted text is carried through unchanged as ``raw_content``.

        Raises:
            ModelCallError: when the model cannot be reached
        """
        if not text.strip():
            return StructuredNote()

        payload = f"Document text:\n{text[:self.config.document_char_limit]}"
        data = await self._structured_call(DOCUMENT_INSTRUCTION, payload)
        note = coerce_structured_note(data)
        note.raw_content = text
        return note

    async def structure_image_text(self, text: str) -> StructuredNote:
        """Structure OCR text read from an image; the OCR text is kept as ``raw_content``."""
        if not text.strip():
            return StructuredNote()

        payload = f"OCR text:\n{text[:self.config.document_char_limit]}"
        data = await self._structured_call(IMAGE_INSTRUCTION, payload)
        note = coerce_structured_note(data)
        note.raw_content = text
        return note

    async def quick_answer(self, context: str, question: str) -> str:
        """Short answer grounded on the trailing part of ``context``."""
        window = context[-self.config.quick_context_chars:] if context else ""
        request = ModelRequest(
            system_instruction=QUICK_ANSWER_INSTRUCTION,
            user_payload=f'Context: "{window}"\n\nQuestion: "{question}"',
        )
        try:
            answer = await self.client.generate(request, json_mode=False)
        except ModelCallError as e:
            logger.error(f"Quick answer failed: {e}")
            return ""
        return answer.strip()

    async def solve_with_thinking(self, context: str, question: str) -> str:
        """Step-by-step explanation with no brevity constraint."""
        request = ModelRequest(
            system_instruction=DEEP_ANSWER_INSTRUCTION,
            user_payload=(
                f'Context from document: "{context[:self.config.document_char_limit]}"\n\n'
                f'Student question: "{question}"'
            ),
        )
        try:
            answer = await self.client.generate(request, model=self.config.deep_model, json_mode=False)
        except ModelCallError as e:
            logger.error(f"Deep answer failed: {e}")
            return ""
        return answer.strip()

    async def semantic_search(self, query: str, notes_metadata: List[Dict[str, Any]]) -> List[str]:
        """
        Ask the model which notes are relevant to ``query``.

        Args:
            query: Free-text search query
            notes_metadata: Compact note records with id, title, summary and tags

        Returns:
            Relevant note ids, most relevant first; empty without a model call
            when the query or metadata is empty
        """
        if not query.strip() or not notes_metadata:
            return []

        candidates = notes_metadata[:self.config.search_note_limit]
        known_ids = {str(item.get("id")) for item in candidates}
        request = ModelRequest(
            system_instruction=SEARCH_INSTRUCTION,
            user_payload=f'Query: "{query}"\n\nNotes: {json.dumps(candidates, default=str)}',
        )
        try:
            raw = await self.client.generate(request, json_mode=True)
        except ModelCallError as e:
            logger.error(f"Semantic search failed: {e}")
            return []

        ids = []
        for note_id in _as_list(decode_model_json(raw), key="ids"):
            note_id = str(note_id)
            if note_id in known_ids and note_id not in ids:
                ids.append(note_id)
        return ids

    async def generate_flashcards(self, content: str) -> List[Flashcard]:
        """Five flashcards for the given note content; [] on any failure."""
        data = await self._study_call(FLASHCARD_INSTRUCTION, content)
        cards = []
        for i, item in enumerate(_as_list(data, key="flashcards")):
            if not isinstance(item, dict):
                continue
            front, back = _as_str(item.get("front")), _as_str(item.get("back"))
            if front and back:
                cards.append(Flashcard(id=_as_str(item.get("id")) or f"card-{i}", front=front, back=back))
        return cards

    async def generate_quiz(self, content: str) -> List[QuizQuestion]:
        """Five multiple-choice questions for the given note content; [] on any failure."""
        data = await self._study_call(QUIZ_INSTRUCTION, content)
        questions = []
        for i, item in enumerate(_as_list(data, key="questions")):
            if not isinstance(item, dict):
                continue
            options = [opt for opt in _as_list(item.get("options")) if isinstance(opt, str)]
            question = _as_str(item.get("question"))
            if not question or not options:
                continue
            answer = item.get("correctAnswer")
            if not isinstance(answer, int) or not 0 <= answer < len(options):
                answer = 0
            questions.append(QuizQuestion(
                id=_as_str(item.get("id")) or f"quiz-{i}",
                question=question,
                options=options,
                correct_answer=answer,
                explanation=_as_str(item.get("explanation")),
            ))
        return questions

    async def _study_call(self, instruction: str, content: str) -> Any:
        if not content.strip():
            return []
        try:
            return await self._structured_call(
                instruction, f"Notes: {content[:self.config.study_char_limit]}"
            )
        except ModelCallError as e:
            logger.error(f"Study aid generation failed: {e}")
            return []


def note_search_metadata(notes: List[Note]) -> List[Dict[str, Any]]:
    """Compact metadata sent to semantic search (keeps prompts small)."""
    return [
        {"id": note.id, "title": note.title, "summary": note.summary, "tags": note.tags}
        for note in notes
    ]


def filter_notes(notes: List[Note], query: str) -> List[Note]:
    """Case-insensitive keyword filter over title, summary, subject and tags."""
    needle = query.strip().lower()
    if not needle:
        return list(notes)
    return [
        note for note in notes
        if needle in note.title.lower()
        or needle in note.summary.lower()
        or needle in note.subject.lower()
        or any(needle in tag.lower() for tag in note.tags)
    ]

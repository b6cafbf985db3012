"""Continuous speech-to-text capture with auto-restart on transient errors."""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator, Literal, Optional, Union

logger = logging.getLogger(__name__)

CaptureState = Literal["idle", "capturing", "stopped"]

NO_SPEECH = "no-speech"
RESTART_FAILED = "restart-failed"
RECOGNIZER_FAILED = "recognizer-failed"


@dataclass(frozen=True)
class RecognitionResult:
    """A recognized segment; interim segments are revised until final."""
    transcript: str
    is_final: bool = False


@dataclass(frozen=True)
class RecognitionError:
    code: str
    message: str = ""


@dataclass(frozen=True)
class RecognitionEnd:
    """The provider closed the stream on its own."""


RecognitionEvent = Union[RecognitionResult, RecognitionError, RecognitionEnd]


class SpeechRecognizer(ABC):
    """
    Provider-facing side of a capture session.

    Implementations open one continuous, interim-enabled stream per
    ``start()`` and publish its events, in order, through ``events()``.
    ``RecognitionEnd`` is only published when the provider ends the stream
    by itself, not in response to ``stop()``.
    """

    @abstractmethod
    async def start(self) -> None:
        """Open a recognition stream."""

    @abstractmethod
    async def stop(self) -> None:
        """Close the current stream; must tolerate an already closed stream."""

    @abstractmethod
    def events(self) -> AsyncIterator[RecognitionEvent]:
        """Events from every stream opened by this recognizer."""


class TranscriptBuffer:
    """Confirmed text that only grows, plus an interim guess that is only replaced."""

    def __init__(self):
        self._final_parts = []
        self._interim = ""

    @property
    def final_text(self) -> str:
        return "".join(self._final_parts)

    @property
    def interim_text(self) -> str:
        return self._interim

    @property
    def text(self) -> str:
        """Confirmed text followed by the live guess."""
        return self.final_text + self._interim

    def append_final(self, segment: str) -> None:
        if segment.strip():
            self._final_parts.append(segment.strip() + " ")
        self._interim = ""

    def set_interim(self, segment: str) -> None:
        self._interim = segment

    def clear_interim(self) -> None:
        self._interim = ""

    def reset(self) -> None:
        self._final_parts = []
        self._interim = ""


class AudioCaptureSession:
    """
    One logical capture, from ``start()`` to ``stop()``.

    Recognizer events are applied one at a time in delivery order: final
    segments are appended to the buffer, interim segments replace the live
    guess. A ``no-speech`` error or a provider-side end of stream reopens
    the stream while the session is still capturing.
    """

    def __init__(self, recognizer: SpeechRecognizer):
        self._recognizer = recognizer
        self.buffer = TranscriptBuffer()
        self.state: CaptureState = "idle"
        self.error_code: Optional[str] = None
        self._stream_open = False
        self._pump: Optional[asyncio.Task] = None

    @property
    def transcript(self) -> str:
        """Final output once stopped; live view while capturing."""
        return self.buffer.final_text.strip() if self.state == "stopped" else self.buffer.text

    async def start(self) -> None:
        """Reset the transcript and open the recognition stream."""
        if self.state == "capturing":
            raise RuntimeError("Capture session already running")
        if self.state == "stopped":
            raise RuntimeError("Capture session already stopped")

        self.buffer.reset()
        self.error_code = None
        self.state = "capturing"
        try:
            await self._open_stream()
        except Exception:
            self.state = "stopped"
            raise
        self._pump = asyncio.create_task(self._consume())
        logger.info("Audio capture started")

    async def stop(self) -> str:
        """
        End capture and freeze the transcript.

        Safe to call repeatedly and after the stream ended on its own.

        Returns:
            The accumulated final transcript
        """
        if self.state != "stopped":
            self.state = "stopped"
            self.buffer.clear_interim()
            await self._close_stream()
            logger.info(f"Audio capture stopped with {len(self.buffer.final_text)} chars")

        pump, self._pump = self._pump, None
        if pump is not None and pump is not asyncio.current_task():
            pump.cancel()
            try:
                await pump
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.warning(f"Recognition event loop ended with an error: {e}")

        return self.transcript

    async def handle_event(self, event: RecognitionEvent) -> None:
        """Apply one recognizer event to the session."""
        if self.state != "capturing":
            return

        if isinstance(event, RecognitionResult):
            if event.is_final:
                self.buffer.append_final(event.transcript)
            else:
                self.buffer.set_interim(event.transcript)

        elif isinstance(event, RecognitionError):
            if event.code == NO_SPEECH:
                # Natural pause in speech; keep the session alive
                logger.debug("No speech detected, restarting recognition")
                await self._close_stream()
                await self._reopen_stream()
            else:
                logger.warning(f"Speech recognition error '{event.code}': {event.message}")
                self.error_code = event.code
                await self.stop()

        elif isinstance(event, RecognitionEnd):
            self._stream_open = False
            await self._reopen_stream()

    async def _consume(self) -> None:
        try:
            async for event in self._recognizer.events():
                await self.handle_event(event)
                if self.state == "stopped":
                    break
        except Exception as e:
            logger.error(f"Speech recognizer failed: {e}")
            self.error_code = RECOGNIZER_FAILED
            await self.stop()

    async def _reopen_stream(self) -> None:
        """Restart recognition; a failed restart ends the session with what was heard."""
        try:
            await self._open_stream()
        except Exception as e:
            logger.error(f"Could not restart speech recognition: {e}")
            self.error_code = RESTART_FAILED
            await self.stop()

    async def _open_stream(self) -> None:
        if self._stream_open or self.state != "capturing":
            return
        await self._recognizer.start()
        self._stream_open = True

    async def _close_stream(self) -> None:
        if not self._stream_open:
            return
        self._stream_open = False
        try:
            await self._recognizer.stop()
        except Exception as e:
            logger.warning(f"Error closing recognition stream: {e}")

"""Narrow request/response contract over the OpenAI API."""

import io
import logging
from typing import Optional

import openai
from pydantic import BaseModel

from .settings import PipelineConfig

logger = logging.getLogger(__name__)


class ModelCallError(Exception):
    """The model provider could not be reached or rejected the request."""


class TranscriptionError(ModelCallError):
    """Audio could not be turned into a transcript."""


class ModelRequest(BaseModel):
    """One structuring call: a fixed instruction plus the user payload."""
    system_instruction: str
    user_payload: str


class ModelClient:
    """Send model requests and return the raw response text."""

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        client: Optional[openai.AsyncOpenAI] = None
    ):
        """
        Initialize the model client.

        Args:
            config: Pipeline configuration (models and API key)
            client: Pre-built OpenAI client, mainly for tests
        """
        self.config = config or PipelineConfig()
        self._client = client

    def _get_client(self) -> openai.AsyncOpenAI:
        if self._client is None:
            if not self.config.openai_api_key:
                raise ModelCallError("OpenAI API key not found")
            self._client = openai.AsyncOpenAI(api_key=self.config.openai_api_key)
        return self._client

    async def generate(
        self,
        request: ModelRequest,
        model: Optional[str] = None,
        json_mode: bool = True,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None
    ) -> str:
        """
        Send a request and return the response text ("" when the model returns nothing).

        Raises:
            ModelCallError: on any provider or network failure
        """
        client = self._get_client()
        model = model or self.config.fast_model

        kwargs = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        if temperature is not None:
            kwargs["temperature"] = temperature
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens

        try:
            response = await client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": request.system_instruction},
                    {"role": "user", "content": request.user_payload}
                ],
                **kwargs
            )
        except openai.OpenAIError as e:
            logger.error(f"Model call to {model} failed: {e}")
            raise ModelCallError(str(e)) from e

        if not response.choices:
            return ""
        return response.choices[0].message.content or ""

    async def transcribe(self, audio_bytes: bytes, filename: str = "recording.webm") -> str:
        """
        Transcribe an audio file.

        Raises:
            TranscriptionError: on provider failure
        """
        try:
            client = self._get_client()
        except ModelCallError as e:
            raise TranscriptionError(str(e)) from e

        audio_file = io.BytesIO(audio_bytes)
        audio_file.name = filename  # the API infers the format from the name

        try:
            response = await client.audio.transcriptions.create(
                model=self.config.transcription_model,
                file=audio_file,
            )
        except openai.OpenAIError as e:
            logger.error(f"Transcription failed: {e}")
            raise TranscriptionError(str(e)) from e

        return (response.text or "").strip()

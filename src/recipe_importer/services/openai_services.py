"""OpenAI-backed chat, vision OCR and speech-to-text collaborators.

Every call goes through ``retry_async`` with the transport policy: rate
limits, 5xx responses, timeouts and connection failures are retried with
exponential backoff and jitter; other API errors fail immediately.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import httpx
from openai import (
    APIConnectionError,
    APIStatusError,
    AsyncOpenAI,
    OpenAIError,
    RateLimitError,
)

from ..exceptions import ExtractionError, RecipeImportError, RetryableError, ServiceError
from ..protocols import ChatMessage, OcrResult, Transcript
from ..retry import Err, RetryConfig, retry_async

logger = logging.getLogger(__name__)

OCR_PROMPT = (
    "Transcribe every piece of text visible in this image exactly as written. "
    "Keep line breaks and list structure. Do not add, translate or summarize. "
    "If there is no text, reply with an empty message."
)

# Whisper expects ISO-639-1 codes
LANGUAGE_CODES = {
    "english": "en",
    "spanish": "es",
    "french": "fr",
    "german": "de",
    "italian": "it",
    "portuguese": "pt",
    "japanese": "ja",
    "chinese": "zh",
}


def translate_openai_error(error: OpenAIError, operation: str) -> RecipeImportError:
    """Map an SDK exception onto the retryable/terminal split used by the pipeline."""
    if isinstance(error, RateLimitError):
        return RetryableError(f"{operation} rate limited", status_code=429)
    if isinstance(error, APIConnectionError):
        # Also covers APITimeoutError
        return RetryableError(f"{operation} connection failed: {error}")
    if isinstance(error, APIStatusError):
        if error.status_code >= 500:
            return RetryableError(
                f"{operation} server error", status_code=error.status_code
            )
        return ServiceError(f"{operation} rejected: {error.message}", status_code=error.status_code)
    return ServiceError(f"{operation} failed: {error}")


def language_code(language: str | None) -> str | None:
    if not language:
        return None
    lowered = language.strip().lower()
    if len(lowered) == 2:
        return lowered
    return LANGUAGE_CODES.get(lowered)


class _RetryingService:
    """Shared retry plumbing for the OpenAI collaborators."""

    def __init__(
        self,
        retry: RetryConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.retry = retry or RetryConfig()
        self.sleep = sleep

    async def _with_retry(self, operation: Callable[[], Awaitable[Any]], name: str) -> Any:
        result = await retry_async(
            operation,
            retryable=(RetryableError,),
            sleep=self.sleep,
            name=name,
            **self.retry.to_kwargs(),
        )
        if isinstance(result, Err):
            result.unwrap()
        return result.value


class OpenAIChatService(_RetryingService):
    """Chat completions against any OpenAI-compatible endpoint.

    Example:
        >>> chat = OpenAIChatService(AsyncOpenAI(), model="gpt-4o-mini")
        >>> raw = await chat.complete(prompts.build(PromptKind.IMPORT_TEXT, text=text))
    """

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str,
        temperature: float = 0.0,
        json_mode: bool = True,
        retry: RetryConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        super().__init__(retry, sleep)
        self.client = client
        self.model = model
        self.temperature = temperature
        self.json_mode = json_mode

    async def complete(self, messages: list[ChatMessage]) -> str:
        """Return the assistant content, retrying transient failures."""
        return await self._with_retry(lambda: self._complete_once(messages), "chat completion")

    async def _complete_once(self, messages: list[ChatMessage]) -> str:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
        }
        if self.json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        try:
            response = await self.client.chat.completions.create(**kwargs)
        except OpenAIError as e:
            raise translate_openai_error(e, "Chat completion") from e

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise RetryableError("Chat completion returned empty content", model=self.model)
        logger.debug(f"Chat completion returned {len(content)} chars")
        return content


class OpenAIVisionOcr(_RetryingService):
    """OCR by asking a vision model to transcribe the image verbatim."""

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str,
        retry: RetryConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        super().__init__(retry, sleep)
        self.client = client
        self.model = model

    async def recognize(
        self,
        image_data_url: str,
        *,
        preprocess: bool = True,
        provider: str = "auto",
    ) -> OcrResult:
        """Recognize text in ``image_data_url``.

        Raises:
            ServiceError: If a provider other than ``auto``/``openai`` is requested
            ExtractionError: If the model found no text
        """
        if provider not in ("auto", "openai"):
            raise ServiceError(f"Unsupported OCR provider: {provider}")
        detail = "high" if preprocess else "auto"
        text = await self._with_retry(
            lambda: self._recognize_once(image_data_url, detail), "vision OCR"
        )
        if not text.strip():
            raise ExtractionError("No text recognized in image", provider="openai")
        return OcrResult(
            text=text.strip(),
            confidence=0.8,
            metadata={"provider": "openai", "model": self.model, "detail": detail},
        )

    async def _recognize_once(self, image_data_url: str, detail: str) -> str:
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": OCR_PROMPT},
                            {
                                "type": "image_url",
                                "image_url": {"url": image_data_url, "detail": detail},
                            },
                        ],
                    }
                ],
            )
        except OpenAIError as e:
            raise translate_openai_error(e, "Vision OCR") from e
        return response.choices[0].message.content or ""


class OpenAISpeechToText(_RetryingService):
    """Whisper transcription of a local audio file or a remote URL."""

    def __init__(
        self,
        client: AsyncOpenAI,
        http: httpx.AsyncClient,
        model: str = "whisper-1",
        retry: RetryConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        super().__init__(retry, sleep)
        self.client = client
        self.http = http
        self.model = model

    async def transcribe(
        self,
        uri_or_url: str,
        *,
        language: str | None = None,
        response_format: str = "json",
    ) -> Transcript:
        """Transcribe audio at a path or http(s) URL."""
        name, data = await self._load(uri_or_url)
        code = language_code(language)
        text = await self._with_retry(
            lambda: self._transcribe_once(name, data, code, response_format), "transcription"
        )
        logger.info(f"Transcribed {len(data)} bytes of audio into {len(text)} chars")
        return Transcript(text=text.strip(), language=code)

    async def _load(self, uri_or_url: str) -> tuple[str, bytes]:
        parsed = urlparse(uri_or_url)
        if parsed.scheme in ("http", "https"):
            try:
                response = await self.http.get(uri_or_url)
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                raise ExtractionError(
                    f"HTTP {e.response.status_code} downloading audio", url=uri_or_url
                ) from e
            except httpx.RequestError as e:
                raise ExtractionError(f"Audio download failed: {e}", url=uri_or_url) from e
            return Path(parsed.path).name or "audio.mp3", response.content

        path = Path(parsed.path if parsed.scheme == "file" else uri_or_url)
        try:
            return path.name, path.read_bytes()
        except OSError as e:
            raise ExtractionError(f"Cannot read audio file: {e}", path=str(path)) from e

    async def _transcribe_once(
        self, name: str, data: bytes, language: str | None, response_format: str
    ) -> str:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "file": (name, data),
            "response_format": response_format,
        }
        if language:
            kwargs["language"] = language
        try:
            response = await self.client.audio.transcriptions.create(**kwargs)
        except OpenAIError as e:
            raise translate_openai_error(e, "Transcription") from e
        return response if isinstance(response, str) else response.text

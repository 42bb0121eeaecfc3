"""Protocol definitions for recipe_importer collaborators.

The pipeline depends on these interfaces only. Concrete implementations
(OpenAI, httpx, ffmpeg) live in ``recipe_importer.services`` and are wired
by ``ServiceFactory``; tests substitute mocks that satisfy the same shape.

Example:
    >>> class CannedChat:
    ...     async def complete(self, messages: list[ChatMessage]) -> str:
    ...         return '{"abstain": true, "reason": "test"}'
    ...
    >>> isinstance(CannedChat(), ChatCompletionService)
    True
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal, Protocol, TypedDict, runtime_checkable

if TYPE_CHECKING:
    from .models import ValidationResult


class ChatMessage(TypedDict):
    """One chat-completion message."""

    role: Literal["system", "user", "assistant"]
    content: str


@dataclass(frozen=True)
class OcrResult:
    """Text recognized in an image."""

    text: str
    confidence: float
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Transcript:
    """Speech-to-text output."""

    text: str
    language: str | None = None


@dataclass(frozen=True)
class MediaInfo:
    """Facts about a media file gathered by probing its streams."""

    duration: float
    has_audio: bool
    subtitle_streams: int = 0


@runtime_checkable
class ChatCompletionService(Protocol):
    """Chat-completion collaborator.

    Implementations raise ``RetryableError`` for 429/5xx and transport
    timeouts, and ``ServiceError`` for other 4xx responses.
    """

    async def complete(self, messages: list[ChatMessage]) -> str:
        """Return the assistant message content for ``messages``."""
        ...


@runtime_checkable
class OcrService(Protocol):
    """Optical character recognition collaborator."""

    async def recognize(
        self,
        image_data_url: str,
        *,
        preprocess: bool = True,
        provider: str = "auto",
    ) -> OcrResult:
        """Recognize text in a ``data:`` URL image.

        Raises:
            ExtractionError: If no provider could read the image
        """
        ...


@runtime_checkable
class SpeechToTextService(Protocol):
    """Speech-to-text collaborator."""

    async def transcribe(
        self,
        uri_or_url: str,
        *,
        language: str | None = None,
        response_format: str = "json",
    ) -> Transcript:
        """Transcribe the audio at a local path or remote URL."""
        ...


@runtime_checkable
class HtmlFetcher(Protocol):
    """Plain GET with a caller-supplied user agent."""

    async def fetch(self, url: str, user_agent: str) -> str:
        """Return the response body.

        Raises:
            ExtractionError: On non-2xx responses or transport failures
        """
        ...


@runtime_checkable
class MediaToolkit(Protocol):
    """Media inspection and decoding collaborator for local video files."""

    async def probe(self, path: str) -> MediaInfo:
        """Inspect streams and duration."""
        ...

    async def read_captions(self, path: str) -> str | None:
        """Return the first embedded subtitle track as WebVTT/SRT text, if any."""
        ...

    async def extract_frame(self, path: str, at_seconds: float) -> str:
        """Return the frame at ``at_seconds`` as a PNG ``data:`` URL."""
        ...

    async def extract_audio(self, path: str) -> str:
        """Write the audio track to a temporary file and return its path."""
        ...


@runtime_checkable
class ResponseValidatorStrategy(Protocol):
    """Validation strategy selected at construction time (basic or enhanced)."""

    def validate(
        self, raw_response: str, schema: dict[str, Any] | None = None
    ) -> ValidationResult:
        """Validate a raw model response against ``schema`` (the recipe schema by default)."""
        ...

"""Concrete collaborators and the factory that wires them.

Modules:
    factory: ServiceFactory for centralized dependency management
    openai_services: Chat, vision OCR and speech-to-text over the OpenAI API
    http: httpx page fetcher
    media: ffmpeg/ffprobe media toolkit
"""

from .factory import ServiceFactory
from .http import HttpxHtmlFetcher
from .media import FfmpegMediaToolkit
from .openai_services import OpenAIChatService, OpenAISpeechToText, OpenAIVisionOcr

__all__ = [
    "FfmpegMediaToolkit",
    "HttpxHtmlFetcher",
    "OpenAIChatService",
    "OpenAISpeechToText",
    "OpenAIVisionOcr",
    "ServiceFactory",
]

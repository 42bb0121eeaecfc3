"""Service factory for centralized dependency injection.

The factory is the only place where configuration meets concrete
collaborators. Expensive resources (the OpenAI client, the HTTP client and
the abstain telemetry buffer) are created once per factory and shared by
every service it builds.

Example:
    >>> from recipe_importer.config import ImportConfig
    >>> factory = ServiceFactory(ImportConfig.load())
    >>> parser = factory.create_parser()
    >>> chain = factory.create_fallback_chain()
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import cached_property
from typing import TYPE_CHECKING

import httpx
from openai import AsyncOpenAI

from ..prompt_library import ImportKnobs, ImportPolicy, PromptLibrary
from ..retry import RetryConfig
from ..tables import DEFAULT_TABLES, HeuristicTables
from ..telemetry import AbstainTelemetry
from .http import HttpxHtmlFetcher, create_http_client
from .media import FfmpegMediaToolkit
from .openai_services import OpenAIChatService, OpenAISpeechToText, OpenAIVisionOcr

if TYPE_CHECKING:
    from ..ai_parser import AiRecipeParser
    from ..config import ImportConfig
    from ..fallback_chain import FallbackChain
    from ..protocols import (
        ChatCompletionService,
        HtmlFetcher,
        MediaToolkit,
        OcrService,
        ResponseValidatorStrategy,
        SpeechToTextService,
    )
    from ..recovery import IngredientRecoveryEngine, RecoveryOptions
    from ..video import VideoContentExtractor


@dataclass
class ServiceFactory:
    """Factory for creating service instances with shared dependencies.

    Any collaborator can be swapped by assigning an override before the
    first ``create_*`` call, which is how tests inject fakes:

        >>> factory = ServiceFactory(ImportConfig())
        >>> factory.chat_override = FakeChat(...)

    Attributes:
        config: Import configuration for all services
        tables: Heuristic data tables handed to every heuristic
        telemetry: Abstain ring buffer shared by every import run through this factory
    """

    config: ImportConfig
    tables: HeuristicTables = DEFAULT_TABLES
    telemetry: AbstainTelemetry | None = None
    chat_override: ChatCompletionService | None = field(default=None, repr=False)
    fetcher_override: HtmlFetcher | None = field(default=None, repr=False)
    ocr_override: OcrService | None = field(default=None, repr=False)
    stt_override: SpeechToTextService | None = field(default=None, repr=False)
    media_override: MediaToolkit | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if self.telemetry is None:
            self.telemetry = AbstainTelemetry(self.config.telemetry_capacity)

    @cached_property
    def client(self) -> AsyncOpenAI:
        """Shared async OpenAI client, created on first access."""
        return AsyncOpenAI(
            base_url=self.config.base_url,
            api_key=self.config.api_key,
            timeout=self.config.request_timeout,
            max_retries=0,
        )

    @cached_property
    def http(self) -> httpx.AsyncClient:
        """Shared HTTP client for page fetches, reader proxies and audio downloads."""
        return create_http_client(self.config.fetch_timeout)

    @cached_property
    def retry_config(self) -> RetryConfig:
        return RetryConfig(
            max_attempts=self.config.transport_max_attempts,
            initial_delay=self.config.transport_initial_delay,
            max_delay=self.config.transport_max_delay,
        )

    @cached_property
    def prompts(self) -> PromptLibrary:
        return self.create_prompts()

    def create_prompts(self) -> PromptLibrary:
        """Prompt registry with the configured policy knobs."""
        policy = ImportPolicy(self.config.import_policy)
        knobs = ImportKnobs(
            policy=policy,
            allow_enrich=policy is ImportPolicy.ENRICH,
            min_ingredient_support=self.config.min_ingredient_support,
            min_step_support=self.config.min_step_support,
        )
        return PromptLibrary(knobs)

    def create_chat(self) -> ChatCompletionService:
        if self.chat_override is not None:
            return self.chat_override
        return OpenAIChatService(
            self.client,
            model=self.config.model,
            temperature=self.config.temperature,
            retry=self.retry_config,
        )

    def create_ocr(self) -> OcrService:
        if self.ocr_override is not None:
            return self.ocr_override
        return OpenAIVisionOcr(self.client, model=self.config.vision_model, retry=self.retry_config)

    def create_stt(self) -> SpeechToTextService:
        if self.stt_override is not None:
            return self.stt_override
        return OpenAISpeechToText(
            self.client,
            self.http,
            model=self.config.transcription_model,
            retry=self.retry_config,
        )

    def create_fetcher(self) -> HtmlFetcher:
        if self.fetcher_override is not None:
            return self.fetcher_override
        return HttpxHtmlFetcher(self.http)

    def create_media(self) -> MediaToolkit:
        if self.media_override is not None:
            return self.media_override
        return FfmpegMediaToolkit()

    def create_validator(self) -> ResponseValidatorStrategy:
        """Validator strategy chosen by ``config.validator_strategy``."""
        from ..response_validator import ValidatorOptions, create_validator

        options = ValidatorOptions(
            strict_mode=self.config.strict_mode,
            allow_partial_data=self.config.allow_partial_data,
            fallback_strategy=self.config.fallback_strategy,
            confidence_threshold=self.config.validation_confidence_threshold,
        )
        return create_validator(self.config.validator_strategy, options)

    def create_parser(self) -> AiRecipeParser:
        """Parsing orchestrator wired to the chat service and validator."""
        from ..ai_parser import AiRecipeParser

        return AiRecipeParser(
            self.create_chat(),
            self.create_validator(),
            self.prompts,
            tables=self.tables,
            use_multi_stage=self.config.use_multi_stage,
            max_attempts=self.config.parse_max_attempts,
            retry_delay=self.config.parse_retry_delay,
            confidence_threshold=self.config.parse_confidence_threshold,
            consistency_pass=self.config.consistency_pass,
            allow_partial_data=self.config.allow_partial_data,
        )

    def create_recovery(self) -> IngredientRecoveryEngine:
        from ..recovery import IngredientRecoveryEngine

        chat = self.create_chat() if self.config.ai_quantity_inference else None
        return IngredientRecoveryEngine(self.tables, chat, self.prompts)

    def recovery_options(self) -> RecoveryOptions:
        from ..recovery import RecoveryOptions

        return RecoveryOptions(
            use_ai=self.config.ai_quantity_inference,
            max_inferred=self.config.max_inferred_ingredients,
            min_confidence=self.config.recovery_min_confidence,
        )

    def create_fallback_chain(self, prefetched: dict[str, str] | None = None) -> FallbackChain:
        """URL strategy chain; ``prefetched`` pages are reused instead of refetched."""
        from ..fallback_chain import FallbackChain

        return FallbackChain.default(
            self.create_fetcher(),
            self.create_chat(),
            self.prompts,
            tables=self.tables,
            oembed_access_token=self.config.oembed_access_token,
            min_caption_length=self.config.min_caption_length,
            min_content_length=self.config.min_content_length,
            use_reader_services=self.config.use_reader_services,
            allow_url_only=self.config.allow_url_only_fallback,
            prefetched=prefetched,
        )

    def create_video_extractor(self) -> VideoContentExtractor:
        from ..video import VideoContentExtractor

        return VideoContentExtractor(
            self.create_media(),
            self.create_ocr(),
            self.create_stt(),
            frame_interval=self.config.frame_interval,
            max_frames=self.config.max_frames,
            transcribe_audio=self.config.transcribe_audio,
            language=self.config.audio_language,
            min_caption_length=self.config.min_caption_length,
        )

    async def aclose(self) -> None:
        """Close the shared HTTP client if it was created."""
        if "http" in self.__dict__:
            await self.http.aclose()

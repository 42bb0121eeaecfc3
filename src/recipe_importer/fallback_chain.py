"""Ordered content extraction strategies for URLs.

When a page carries no complete structured recipe, the chain tries each
strategy in turn and stops at the first one that yields usable text:

1. oEmbed caption lookup for known video hosts (0.7)
2. Direct HTML fetch as desktop, mobile and bot user agents
   (0.8 for recipe-shaped markup, 0.5 for generic main content)
3. Reader proxy services (0.6, marked as fallback)
4. Asking the chat model to reconstruct the recipe from the URL alone (0.3)

Strategies run strictly one after another. A strategy failure is logged and
recorded; only exhaustion of the whole chain raises.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Final
from urllib.parse import parse_qsl, quote, urlencode, urlparse, urlunparse

import html2text
from bs4 import BeautifulSoup

from .classifier import Classification, Platform, detect_platform
from .exceptions import (
    ExtractionError,
    ExtractionExhaustedError,
    ImportAbstainError,
    RetryableError,
    ServiceError,
)
from .fidelity import parse_abstain
from .prompt_library import PromptKind, PromptLibrary
from .protocols import ChatCompletionService, HtmlFetcher
from .response_validator import extract_json
from .structured_data import StructuredExtraction, extract_structured_recipe
from .tables import DEFAULT_TABLES, HeuristicTables

logger = logging.getLogger(__name__)

USER_AGENTS: Final = {
    "desktop": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "mobile": (
        "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
        "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
    ),
    "bot": "Mozilla/5.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)",
}

OEMBED_ENDPOINTS: Final = {
    Platform.TIKTOK: "https://www.tiktok.com/oembed",
    Platform.YOUTUBE: "https://www.youtube.com/oembed",
    Platform.INSTAGRAM: "https://graph.facebook.com/v18.0/instagram_oembed",
    Platform.FACEBOOK: "https://graph.facebook.com/v18.0/oembed_video",
}
TOKEN_ONLY_PLATFORMS: Final = frozenset({Platform.INSTAGRAM, Platform.FACEBOOK})

READER_SERVICES: Final = {
    "jina": "https://r.jina.ai/",
    "mercury": "https://mercury.postlight.com/parser",
}

TRACKING_PARAMS: Final = frozenset({"fbclid", "gclid"})

METHOD_OEMBED: Final = "oembed-caption"
METHOD_URL_ONLY: Final = "url-only"

CONFIDENCE_OEMBED: Final = 0.7
CONFIDENCE_RECIPE_MARKUP: Final = 0.8
CONFIDENCE_MAIN_CONTENT: Final = 0.5
CONFIDENCE_READER: Final = 0.6
CONFIDENCE_URL_ONLY: Final = 0.3

_BOILERPLATE_TAGS: Final = ("script", "style", "noscript", "nav", "header", "footer", "aside", "form")


def normalize_url(url: str) -> str:
    """Strip tracking parameters (``utm_*``, ``fbclid``, ``gclid``) and add a scheme.

    Example:
        >>> normalize_url("https://example.com/r?id=1&utm_source=x&fbclid=y")
        'https://example.com/r?id=1'
    """
    url = url.strip()
    if not url.startswith(("http://", "https://")):
        url = f"https://{url}"
    parsed = urlparse(url)
    query = [
        (key, value)
        for key, value in parse_qsl(parsed.query, keep_blank_values=True)
        if not key.lower().startswith("utm_") and key.lower() not in TRACKING_PARAMS
    ]
    return urlunparse(parsed._replace(query=urlencode(query)))


def html_to_text(html: str) -> str:
    """Render the main content of a page as plain markdown-ish text."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(_BOILERPLATE_TAGS):
        tag.decompose()
    root = soup.find("article") or soup.find("main") or soup.find(attrs={"role": "main"}) or soup.body
    converter = html2text.HTML2Text()
    converter.ignore_links = True
    converter.ignore_images = True
    converter.body_width = 0
    return converter.handle(str(root or soup)).strip()


@dataclass(frozen=True)
class ExtractedContent:
    """Text produced by one extraction strategy.

    Attributes:
        text: Evidence text for parsing
        method: Method tag of the strategy that produced it
        confidence: Fixed ceiling for that strategy
        fallback_used: True for reader proxies and URL-only reconstruction
        structured: Markup found on the page, when any
        metadata: Strategy-specific facts (author, final URL, ...)
    """

    text: str
    method: str
    confidence: float
    fallback_used: bool = False
    structured: StructuredExtraction | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class ExtractionStrategy(ABC):
    """One step of the fallback chain."""

    @property
    @abstractmethod
    def method(self) -> str:
        """Method tag recorded in provenance."""
        ...

    def applies_to(self, url: str, classification: Classification) -> bool:
        """Whether the strategy is worth attempting for this URL."""
        return True

    @abstractmethod
    async def extract(self, url: str, classification: Classification) -> ExtractedContent:
        """Produce content or raise ``ExtractionError``."""
        ...


class OEmbedCaptionStrategy(ExtractionStrategy):
    """Caption text from a platform's oEmbed endpoint."""

    def __init__(
        self,
        fetcher: HtmlFetcher,
        access_token: str | None = None,
        min_caption_length: int = 80,
    ) -> None:
        self.fetcher = fetcher
        self.access_token = access_token
        self.min_caption_length = min_caption_length

    @property
    def method(self) -> str:
        return METHOD_OEMBED

    def applies_to(self, url: str, classification: Classification) -> bool:
        platform = detect_platform(url)
        if platform not in OEMBED_ENDPOINTS:
            return False
        return platform not in TOKEN_ONLY_PLATFORMS or bool(self.access_token)

    def endpoint_for(self, url: str) -> str:
        platform = detect_platform(url)
        if platform is None or platform not in OEMBED_ENDPOINTS:
            raise ExtractionError("No oEmbed endpoint for URL", url=url)
        params = {"url": url}
        if platform is Platform.YOUTUBE:
            params["format"] = "json"
        if platform in TOKEN_ONLY_PLATFORMS and self.access_token:
            params["access_token"] = self.access_token
        return f"{OEMBED_ENDPOINTS[platform]}?{urlencode(params, quote_via=quote)}"

    async def extract(self, url: str, classification: Classification) -> ExtractedContent:
        body = await self.fetcher.fetch(self.endpoint_for(url), USER_AGENTS["desktop"])
        try:
            data = json.loads(body)
        except json.JSONDecodeError as e:
            raise ExtractionError("oEmbed response is not JSON", url=url) from e

        caption = str(data.get("title") or "").strip() if isinstance(data, dict) else ""
        if len(caption) < self.min_caption_length:
            raise ExtractionError(
                "Caption too short to hold a recipe", url=url, length=len(caption)
            )
        return ExtractedContent(
            text=caption,
            method=self.method,
            confidence=CONFIDENCE_OEMBED,
            metadata={"author": data.get("author_name"), "platform": classification.platform},
        )


class HtmlScrapingStrategy(ExtractionStrategy):
    """Fetch the page under one user agent and pull recipe text out of it."""

    def __init__(
        self,
        agent: str,
        fetcher: HtmlFetcher,
        tables: HeuristicTables = DEFAULT_TABLES,
        min_content_length: int = 100,
        prefetched: dict[str, str] | None = None,
    ) -> None:
        if agent not in USER_AGENTS:
            raise ValueError(f"Unknown user agent profile: {agent}")
        self.agent = agent
        self.fetcher = fetcher
        self.tables = tables
        self.min_content_length = min_content_length
        self.prefetched = prefetched if prefetched is not None else {}

    @property
    def method(self) -> str:
        return f"html-scraping-{self.agent}"

    async def extract(self, url: str, classification: Classification) -> ExtractedContent:
        html = self.prefetched.get(url) if self.agent == "desktop" else None
        if html is None:
            html = await self.fetcher.fetch(url, USER_AGENTS[self.agent])

        structured = extract_structured_recipe(html, self.tables)
        if structured.node and structured.node.get("recipeIngredient") and structured.node.get(
            "recipeInstructions"
        ):
            return ExtractedContent(
                text=structured.evidence_text,
                method=self.method,
                confidence=CONFIDENCE_RECIPE_MARKUP,
                structured=structured,
                metadata={"structured_method": structured.method},
            )

        text = html_to_text(html)
        if len(text) < self.min_content_length:
            raise ExtractionError(
                "Page has too little readable content", url=url, length=len(text)
            )
        return ExtractedContent(
            text=text,
            method=self.method,
            confidence=CONFIDENCE_MAIN_CONTENT,
            structured=structured if structured.method else None,
        )


class ReaderProxyStrategy(ExtractionStrategy):
    """Readable text from a third-party reader service."""

    def __init__(self, name: str, fetcher: HtmlFetcher, min_content_length: int = 100) -> None:
        if name not in READER_SERVICES:
            raise ValueError(f"Unknown reader service: {name}")
        self.name = name
        self.fetcher = fetcher
        self.min_content_length = min_content_length

    @property
    def method(self) -> str:
        return f"reader-proxy-{self.name}"

    def reader_url(self, url: str) -> str:
        base = READER_SERVICES[self.name]
        if self.name == "jina":
            return f"{base}{url}"
        return f"{base}?{urlencode({'url': url}, quote_via=quote)}"

    async def extract(self, url: str, classification: Classification) -> ExtractedContent:
        body = (await self.fetcher.fetch(self.reader_url(url), USER_AGENTS["desktop"])).strip()
        if body.startswith("{"):
            try:
                data = json.loads(body)
            except json.JSONDecodeError:
                data = None
            if isinstance(data, dict) and data.get("content"):
                body = html_to_text(str(data["content"]))
        if len(body) < self.min_content_length:
            raise ExtractionError("Reader service returned too little content", url=url)
        return ExtractedContent(
            text=body, method=self.method, confidence=CONFIDENCE_READER, fallback_used=True
        )


class UrlOnlyStrategy(ExtractionStrategy):
    """Last resort: ask the chat model what it knows about the URL.

    The model may abstain; an abstain is not a strategy failure and
    propagates as ``ImportAbstainError``.
    """

    def __init__(self, chat: ChatCompletionService, prompts: PromptLibrary) -> None:
        self.chat = chat
        self.prompts = prompts

    @property
    def method(self) -> str:
        return METHOD_URL_ONLY

    async def extract(self, url: str, classification: Classification) -> ExtractedContent:
        messages = self.prompts.build(
            PromptKind.IMPORT_URL_ONLY, url=url, platform=classification.platform or "unknown"
        )
        data = extract_json(await self.chat.complete(messages))

        verdict = parse_abstain(data)
        if verdict is not None:
            raise ImportAbstainError("url", verdict.reason, list(verdict.missing), url=url)

        text = str(data.get("text") or "").strip() if isinstance(data, dict) else ""
        if not text:
            raise ExtractionError("Model returned no text for URL", url=url)
        return ExtractedContent(
            text=text, method=self.method, confidence=CONFIDENCE_URL_ONLY, fallback_used=True
        )


class FallbackChain:
    """Run strategies in order until one yields content.

    Example:
        >>> chain = FallbackChain.default(fetcher, chat, prompts)
        >>> content = await chain.run("https://example.com/soup", classification)
        >>> content.method
        'html-scraping-desktop'
    """

    def __init__(self, strategies: list[ExtractionStrategy]) -> None:
        self.strategies = strategies

    @classmethod
    def default(
        cls,
        fetcher: HtmlFetcher,
        chat: ChatCompletionService | None = None,
        prompts: PromptLibrary | None = None,
        *,
        tables: HeuristicTables = DEFAULT_TABLES,
        oembed_access_token: str | None = None,
        min_caption_length: int = 80,
        min_content_length: int = 100,
        use_reader_services: bool = True,
        allow_url_only: bool = True,
        prefetched: dict[str, str] | None = None,
    ) -> FallbackChain:
        """Build the standard strategy order."""
        strategies: list[ExtractionStrategy] = [
            OEmbedCaptionStrategy(fetcher, oembed_access_token, min_caption_length)
        ]
        strategies.extend(
            HtmlScrapingStrategy(agent, fetcher, tables, min_content_length, prefetched)
            for agent in USER_AGENTS
        )
        if use_reader_services:
            strategies.extend(
                ReaderProxyStrategy(name, fetcher, min_content_length) for name in READER_SERVICES
            )
        if allow_url_only and chat is not None:
            strategies.append(UrlOnlyStrategy(chat, prompts or PromptLibrary()))
        return cls(strategies)

    async def run(self, url: str, classification: Classification) -> ExtractedContent:
        """Return the first successful strategy's content.

        Raises:
            ExtractionExhaustedError: If every applicable strategy failed
            ImportAbstainError: If the URL-only model call abstained
        """
        url = normalize_url(url)
        failures: list[tuple[str, str]] = []

        for strategy in self.strategies:
            if not strategy.applies_to(url, classification):
                logger.debug(f"Skipping {strategy.method}: not applicable")
                continue
            logger.info(f"Trying extraction strategy: {strategy.method}")
            try:
                content = await strategy.extract(url, classification)
            except (ExtractionError, ServiceError, RetryableError) as e:
                logger.warning(f"Strategy {strategy.method} failed: {e}")
                failures.append((strategy.method, e.message))
                continue
            logger.info(
                f"Extracted {len(content.text)} chars via {content.method} "
                f"(confidence {content.confidence:.2f})"
            )
            return content

        raise ExtractionExhaustedError("All extraction strategies failed", failures=failures, url=url)

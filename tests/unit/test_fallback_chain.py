"""Unit tests for recipe_importer.fallback_chain module.

Strategies are exercised against in-memory fetchers and a scripted chat
service; nothing touches the network.
"""

import json

import pytest

from recipe_importer.classifier import classify_url
from recipe_importer.exceptions import (
    ExtractionError,
    ExtractionExhaustedError,
    ImportAbstainError,
)
from recipe_importer.fallback_chain import (
    CONFIDENCE_MAIN_CONTENT,
    CONFIDENCE_RECIPE_MARKUP,
    METHOD_OEMBED,
    METHOD_URL_ONLY,
    USER_AGENTS,
    FallbackChain,
    HtmlScrapingStrategy,
    OEmbedCaptionStrategy,
    ReaderProxyStrategy,
    html_to_text,
    normalize_url,
)


ARTICLE_URL = "https://example.com/blog/soup"
ARTICLE_HTML = (
    "<html><body><nav>Home | Shop</nav><article><p>"
    + "This is a long story about a pot of soup we made last winter. " * 3
    + "</p></article><footer>Copyright 2024</footer></body></html>"
)
TIKTOK_URL = "https://www.tiktok.com/@chef/video/7234567890"
CAPTION = (
    "Easy garlic pasta! Ingredients: 200g spaghetti, 3 cloves garlic, 2 tbsp olive oil. "
    "Boil pasta, fry garlic in oil, toss together."
)


class AgentFetcher:
    """Fetcher that serves one page but refuses one user agent with HTTP 403."""

    def __init__(self, url: str, html: str, blocked_agent: str) -> None:
        self.url = url
        self.html = html
        self.blocked = USER_AGENTS[blocked_agent]
        self.calls: list[tuple[str, str]] = []

    async def fetch(self, url: str, user_agent: str) -> str:
        self.calls.append((url, user_agent))
        if user_agent == self.blocked or url != self.url:
            raise ExtractionError("HTTP 403 fetching page", url=url, status_code=403)
        return self.html


def chain_for(fetcher, chat=None, **kwargs) -> FallbackChain:
    kwargs.setdefault("use_reader_services", False)
    return FallbackChain.default(fetcher, chat, **kwargs)


class TestHelpers:
    """Tests for URL and HTML helpers."""

    def test_normalize_url_strips_tracking(self) -> None:
        """utm_*, fbclid and gclid are removed; other parameters stay."""
        assert (
            normalize_url("https://example.com/r?id=1&utm_source=x&fbclid=y&gclid=z")
            == "https://example.com/r?id=1"
        )

    def test_normalize_url_adds_scheme(self) -> None:
        """A bare host gets https."""
        assert normalize_url("example.com/soup") == "https://example.com/soup"

    def test_html_to_text_drops_boilerplate(self) -> None:
        """Navigation and footers are not part of the main content."""
        text = html_to_text(ARTICLE_HTML)
        assert "long story" in text
        assert "Home | Shop" not in text
        assert "Copyright" not in text


class TestHtmlScrapingStrategy:
    """Tests for HtmlScrapingStrategy."""

    async def test_recipe_markup(self, recipe_page_html: str, static_fetcher) -> None:
        """Recipe markup is returned as labeled text at 0.8."""
        url = "https://example.com/pancakes"
        strategy = HtmlScrapingStrategy("desktop", static_fetcher({url: recipe_page_html}))
        content = await strategy.extract(url, classify_url(url))

        assert content.method == "html-scraping-desktop"
        assert content.confidence == CONFIDENCE_RECIPE_MARKUP
        assert content.structured.is_complete
        assert "Ingredients:" in content.text

    async def test_main_content(self, static_fetcher) -> None:
        """Pages without markup fall back to main content at 0.5."""
        strategy = HtmlScrapingStrategy("mobile", static_fetcher({ARTICLE_URL: ARTICLE_HTML}))
        content = await strategy.extract(ARTICLE_URL, classify_url(ARTICLE_URL))

        assert content.method == "html-scraping-mobile"
        assert content.confidence == CONFIDENCE_MAIN_CONTENT
        assert content.structured is None

    async def test_too_little_content(self, static_fetcher) -> None:
        """Near-empty pages are a strategy failure."""
        url = "https://example.com/empty"
        strategy = HtmlScrapingStrategy("bot", static_fetcher({url: "<html><body>Hi</body></html>"}))
        with pytest.raises(ExtractionError, match="too little"):
            await strategy.extract(url, classify_url(url))

    async def test_prefetched_page_reused(self, static_fetcher) -> None:
        """The desktop agent reuses a page fetched earlier."""
        fetcher = static_fetcher()
        strategy = HtmlScrapingStrategy("desktop", fetcher, prefetched={ARTICLE_URL: ARTICLE_HTML})
        await strategy.extract(ARTICLE_URL, classify_url(ARTICLE_URL))
        assert fetcher.calls == []

    def test_unknown_agent(self, static_fetcher) -> None:
        """Only known user agent profiles are accepted."""
        with pytest.raises(ValueError, match="user agent"):
            HtmlScrapingStrategy("toaster", static_fetcher())


class TestOEmbedCaptionStrategy:
    """Tests for OEmbedCaptionStrategy."""

    def test_applies_to(self, static_fetcher) -> None:
        """Token-only platforms need an access token."""
        strategy = OEmbedCaptionStrategy(static_fetcher())
        reel = "https://www.instagram.com/reel/abc"
        assert strategy.applies_to(TIKTOK_URL, classify_url(TIKTOK_URL))
        assert not strategy.applies_to(reel, classify_url(reel))
        assert not strategy.applies_to(ARTICLE_URL, classify_url(ARTICLE_URL))
        assert OEmbedCaptionStrategy(static_fetcher(), access_token="t").applies_to(
            reel, classify_url(reel)
        )

    async def test_caption_extracted(self, static_fetcher) -> None:
        """A long caption becomes evidence."""
        strategy = OEmbedCaptionStrategy(static_fetcher())
        fetcher = static_fetcher(
            {strategy.endpoint_for(TIKTOK_URL): json.dumps({"title": CAPTION, "author_name": "chef"})}
        )
        strategy.fetcher = fetcher
        content = await strategy.extract(TIKTOK_URL, classify_url(TIKTOK_URL))

        assert content.method == METHOD_OEMBED
        assert content.text == CAPTION
        assert content.metadata["author"] == "chef"
        assert content.metadata["platform"] == "tiktok"

    async def test_short_caption_fails(self, static_fetcher) -> None:
        """Captions under the minimum length are rejected."""
        strategy = OEmbedCaptionStrategy(static_fetcher())
        strategy.fetcher = static_fetcher(
            {strategy.endpoint_for(TIKTOK_URL): json.dumps({"title": "yum"})}
        )
        with pytest.raises(ExtractionError, match="too short"):
            await strategy.extract(TIKTOK_URL, classify_url(TIKTOK_URL))


class TestReaderProxyStrategy:
    """Tests for ReaderProxyStrategy."""

    def test_reader_urls(self, static_fetcher) -> None:
        """Each service builds its own URL shape."""
        jina = ReaderProxyStrategy("jina", static_fetcher())
        mercury = ReaderProxyStrategy("mercury", static_fetcher())
        assert jina.reader_url(ARTICLE_URL) == f"https://r.jina.ai/{ARTICLE_URL}"
        assert mercury.reader_url(ARTICLE_URL).startswith("https://mercury.postlight.com/parser?url=")

    async def test_json_content_converted(self, static_fetcher) -> None:
        """JSON bodies with HTML content are converted to text."""
        strategy = ReaderProxyStrategy("mercury", static_fetcher())
        strategy.fetcher = static_fetcher(
            {strategy.reader_url(ARTICLE_URL): json.dumps({"content": ARTICLE_HTML})}
        )
        content = await strategy.extract(ARTICLE_URL, classify_url(ARTICLE_URL))
        assert "long story" in content.text
        assert content.fallback_used


class TestFallbackChain:
    """Tests for FallbackChain ordering and failure handling."""

    async def test_first_success_wins(self, static_fetcher) -> None:
        """The desktop fetch succeeds and nothing else is tried."""
        fetcher = static_fetcher({ARTICLE_URL: ARTICLE_HTML})
        content = await chain_for(fetcher).run(ARTICLE_URL, classify_url(ARTICLE_URL))

        assert content.method == "html-scraping-desktop"
        assert len(fetcher.calls) == 1

    async def test_falls_through_to_mobile(self) -> None:
        """A blocked desktop agent falls back to the mobile agent."""
        fetcher = AgentFetcher(ARTICLE_URL, ARTICLE_HTML, blocked_agent="desktop")
        content = await chain_for(fetcher).run(ARTICLE_URL, classify_url(ARTICLE_URL))

        assert content.method == "html-scraping-mobile"
        assert [ua for _, ua in fetcher.calls] == [USER_AGENTS["desktop"], USER_AGENTS["mobile"]]

    async def test_reader_service_after_scraping(self, static_fetcher) -> None:
        """Reader proxies run after every scraping agent failed."""
        reader_url = f"https://r.jina.ai/{ARTICLE_URL}"
        fetcher = static_fetcher({reader_url: "Soup story. " * 20})
        content = await chain_for(fetcher, use_reader_services=True).run(
            ARTICLE_URL, classify_url(ARTICLE_URL)
        )
        assert content.method == "reader-proxy-jina"
        assert content.fallback_used

    async def test_url_only_last_resort(self, static_fetcher, scripted_chat) -> None:
        """The model reconstructs the recipe when every fetch fails."""
        chat = scripted_chat([{"text": "Soup\nIngredients:\n- 4 tomatoes\nInstructions:\n1. Simmer."}])
        content = await chain_for(static_fetcher(), chat).run(ARTICLE_URL, classify_url(ARTICLE_URL))

        assert content.method == METHOD_URL_ONLY
        assert content.confidence == 0.3
        assert content.fallback_used
        assert len(chat.calls) == 1

    async def test_url_only_abstain_propagates(self, static_fetcher, scripted_chat) -> None:
        """An abstain from the URL-only call is not a strategy failure."""
        chat = scripted_chat([{"abstain": True, "reason": "unknown_recipe_url"}])
        with pytest.raises(ImportAbstainError) as exc_info:
            await chain_for(static_fetcher(), chat).run(ARTICLE_URL, classify_url(ARTICLE_URL))
        assert exc_info.value.source == "url"
        assert exc_info.value.reason == "unknown_recipe_url"

    async def test_exhausted(self, static_fetcher) -> None:
        """Every failure is recorded when the chain runs dry."""
        with pytest.raises(ExtractionExhaustedError) as exc_info:
            await chain_for(static_fetcher()).run(ARTICLE_URL, classify_url(ARTICLE_URL))

        methods = [method for method, _ in exc_info.value.failures]
        assert methods == [
            "html-scraping-desktop",
            "html-scraping-mobile",
            "html-scraping-bot",
        ]

    async def test_oembed_first_for_video_hosts(self, static_fetcher) -> None:
        """Video hosts try the oEmbed caption before scraping."""
        endpoint = OEmbedCaptionStrategy(static_fetcher()).endpoint_for(TIKTOK_URL)
        fetcher = static_fetcher({endpoint: json.dumps({"title": CAPTION})})
        content = await chain_for(fetcher).run(TIKTOK_URL, classify_url(TIKTOK_URL))
        assert content.method == METHOD_OEMBED

    async def test_tracking_params_removed_before_fetch(self, static_fetcher) -> None:
        """Fetches use the normalized URL."""
        fetcher = static_fetcher({ARTICLE_URL: ARTICLE_HTML})
        await chain_for(fetcher).run(f"{ARTICLE_URL}?utm_source=feed", classify_url(ARTICLE_URL))
        assert fetcher.calls[0][0] == ARTICLE_URL

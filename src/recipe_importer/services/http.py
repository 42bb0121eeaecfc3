"""httpx implementation of the HTML fetcher."""

import logging

import httpx

from ..exceptions import ExtractionError

logger = logging.getLogger(__name__)

ACCEPT_HTML = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"


class HttpxHtmlFetcher:
    """GET pages through a shared ``httpx.AsyncClient``.

    The client owns redirects, timeouts and connection pooling; this class
    only sets request headers and turns failures into ``ExtractionError``.
    """

    def __init__(self, client: httpx.AsyncClient, accept_language: str = "en-US,en;q=0.9") -> None:
        self.client = client
        self.accept_language = accept_language

    async def fetch(self, url: str, user_agent: str) -> str:
        headers = {
            "User-Agent": user_agent,
            "Accept": ACCEPT_HTML,
            "Accept-Language": self.accept_language,
        }
        try:
            response = await self.client.get(url, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ExtractionError(
                f"HTTP {e.response.status_code} fetching page",
                url=url,
                status_code=e.response.status_code,
            ) from e
        except httpx.TimeoutException as e:
            raise ExtractionError("Timed out fetching page", url=url) from e
        except httpx.RequestError as e:
            raise ExtractionError(f"Request failed: {e}", url=url) from e

        logger.debug(f"Fetched {len(response.text)} chars from {url}")
        return response.text


def create_http_client(timeout: float = 15.0) -> httpx.AsyncClient:
    """Client used by the fetcher, reader proxies and audio downloads."""
    return httpx.AsyncClient(follow_redirects=True, timeout=timeout)

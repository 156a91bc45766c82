"""
Web search pass-through.

Queries the Google Custom Search JSON API and hands the body back
untouched; the chat pipeline only embeds it in a prompt.
"""

from typing import Any
from urllib.parse import quote_plus

import aiohttp
from loguru import logger

from ..user_config import AppConfig

DEFAULT_TIMEOUT = aiohttp.ClientTimeout(total=15)
SEARCH_FIELDS = "items(title,formattedUrl,snippet)"


class WebSearchError(Exception):
    """Raised when the search backend cannot be queried."""
    pass


def build_search_url(query: str, config: AppConfig, limit: int = 5) -> str:
    if not config.web_search_base_url:
        raise WebSearchError("WEB_SEARCH_BASE_URL is not configured")
    base_url = config.web_search_base_url.rstrip("/")
    return (
        f"{base_url}/v1?key={quote_plus(config.web_search_google_api_key or '')}"
        f"&cx={quote_plus(config.web_search_google_search_engine_id or '')}"
        f"&q={quote_plus(query)}&num={int(limit)}&fields={SEARCH_FIELDS}"
    )


async def google_search(query: str, config: AppConfig, limit: int = 5) -> Any:
    """Return the raw JSON body of a search, e.g. ``{"items": [{title, formattedUrl, snippet}]}``."""
    url = build_search_url(query, config, limit)
    try:
        async with aiohttp.ClientSession(timeout=DEFAULT_TIMEOUT) as session:
            async with session.get(url) as resp:
                if resp.status != 200:
                    logger.error(f"Web Search Error: Status {resp.status}, Body: {await resp.text()}")
                    raise WebSearchError(f"Search API returned HTTP {resp.status}")
                return await resp.json(content_type=None)
    except (aiohttp.ClientError, ValueError) as e:
        logger.error(f"An error occurred in google_search: {e}")
        raise WebSearchError(str(e)) from e


async def web_search(query: str, config: AppConfig) -> Any:
    """Search for ``query``; failures come back as an error envelope instead of raising."""
    try:
        return await google_search(query, config)
    except WebSearchError as e:
        return {"error": True, "msg": str(e)}

"""Web search through the Brave Search API.

search_web() never raises: on any failure (HTTP error, timeout, bad JSON,
missing key) it returns a single synthetic fallback result pointing at the
search page for the query, so the surrounding flow keeps going.
"""

from __future__ import annotations

import asyncio
import json
import logging
import urllib.error
import urllib.parse
import urllib.request

from ragchat.config import SearchCfg
from ragchat.errors import TransportError, ValidationError
from ragchat.models import SearchResult

logger = logging.getLogger(__name__)

_FALLBACK_SEARCH_PAGE = "https://search.brave.com/search?q="
_NO_DESCRIPTION = "No description available"


def fallback_result(query: str) -> SearchResult:
    return SearchResult(
        title=f"Search error for: {query}",
        url=_FALLBACK_SEARCH_PAGE + urllib.parse.quote(query),
        snippet="There was an error performing the search. Please try again later.",
    )


def parse_results(payload: object, query: str) -> list[SearchResult]:
    """Map a Brave response to SearchResults, keeping the API's ranking.

    Raises:
        ValidationError: The payload does not have the expected shape.
    """
    if not isinstance(payload, dict):
        raise ValidationError(f"Search returned {type(payload).__name__}, expected an object")
    web = payload.get("web") or {}
    if not isinstance(web, dict):
        raise ValidationError("Search returned a malformed 'web' section")
    raw = web.get("results")
    if raw is None:
        raw = payload.get("results") or []
    if not isinstance(raw, list):
        raise ValidationError("Search results are not a list")
    return [
        SearchResult(
            title=item.get("title") or query,
            url=item.get("url") or "",
            snippet=item.get("description") or _NO_DESCRIPTION,
        )
        for item in raw
        if isinstance(item, dict)
    ]


def _request(query: str, api_key: str, cfg: SearchCfg) -> object:
    params = urllib.parse.urlencode({"q": query, "count": cfg.count})
    request = urllib.request.Request(
        f"{cfg.endpoint}?{params}",
        headers={
            "Accept": "application/json",
            "X-Subscription-Token": api_key,
        },
    )
    try:
        with urllib.request.urlopen(request, timeout=cfg.timeout) as response:
            body = response.read()
    except (urllib.error.URLError, TimeoutError) as exc:
        raise TransportError(f"Search request failed: {exc}") from exc
    try:
        return json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ValidationError(f"Search returned malformed JSON: {exc}") from exc


async def search_web(
    query: str, api_key: str | None, cfg: SearchCfg | None = None
) -> list[SearchResult]:
    """Search the web for *query*, bounded by ``cfg.timeout`` seconds."""
    cfg = cfg or SearchCfg()
    if not api_key:
        logger.warning("no search API key configured; returning fallback result")
        return [fallback_result(query)]
    try:
        payload = await asyncio.wait_for(
            asyncio.to_thread(_request, query, api_key, cfg), timeout=cfg.timeout
        )
        return parse_results(payload, query)
    except (TransportError, ValidationError, TimeoutError) as exc:
        logger.warning("web search for %r failed: %s", query, exc)
        return [fallback_result(query)]


def results_markdown(query: str, results: list[SearchResult]) -> str:
    """Render results as the assistant message recorded in the conversation."""
    lines = "\n\n".join(f"- **[{r.title}]({r.url})**: {r.snippet}" for r in results)
    return f'## Search results for: "{query}"\n\n{lines}'

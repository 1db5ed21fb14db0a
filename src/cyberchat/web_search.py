# src/cyberchat/web_search.py
from __future__ import annotations

import logging
from typing import Protocol

import requests

from .schemas import SearchResponse

log = logging.getLogger(__name__)

NO_RESULTS_MESSAGE = "Unable to find current information online."
SEARCH_ERROR_MESSAGE = "An error occurred while searching online."

# Lower-case substrings marking a SearchResponse that carries no findings.
UNUSABLE_SENTINELS = (
    "unable to find current information",
    "an error occurred while searching",
)


class SearchProvider(Protocol):
    """Anything that turns a plain-text query into findings markdown."""

    def search(self, query: str) -> SearchResponse:
        ...


def is_usable_result(markdown: str | None) -> bool:
    if not markdown or not markdown.strip():
        return False
    lowered = markdown.lower()
    return not any(sentinel in lowered for sentinel in UNUSABLE_SENTINELS)


class DuckDuckGoSearch:
    """Web search using the DuckDuckGo Instant Answer API."""

    MAX_TOPICS = 3
    SNIPPET_CHARS = 150

    def __init__(self, api_url: str = "https://api.duckduckgo.com/", timeout: float = 10.0):
        self.api_url = api_url
        self.timeout = timeout

    def search(self, query: str) -> SearchResponse:
        """
        Search and format the top related topics as a numbered markdown list.

        Never raises for HTTP problems; failures come back as one of the
        sentinel sentences so callers can tell findings from non-findings.
        """
        params = {"q": query, "format": "json", "no_html": 1, "skip_disambig": 1}
        try:
            response = requests.get(self.api_url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            log.error(f"DuckDuckGo request failed: {e}")
            return SearchResponse(search_results_markdown=SEARCH_ERROR_MESSAGE)

        if response.status_code != 200:
            log.error(f"DuckDuckGo API error: {response.status_code} {response.reason}")
            return SearchResponse(search_results_markdown=SEARCH_ERROR_MESSAGE)

        try:
            data = response.json()
        except ValueError as e:
            log.error(f"DuckDuckGo returned invalid JSON: {e}")
            return SearchResponse(search_results_markdown=SEARCH_ERROR_MESSAGE)

        topics = [
            t for t in (data.get("RelatedTopics") or [])
            if isinstance(t, dict) and t.get("FirstURL") and t.get("Text")
        ][:self.MAX_TOPICS]

        if not topics:
            log.info(f"No related topics for query {query!r}")
            return SearchResponse(search_results_markdown=NO_RESULTS_MESSAGE)

        return SearchResponse(search_results_markdown=format_topics(topics, self.SNIPPET_CHARS))


def format_topics(topics: list[dict], snippet_chars: int = 150) -> str:
    lines = []
    for i, topic in enumerate(topics, 1):
        text = topic["Text"]
        url = topic["FirstURL"]
        title = text.split(" - ")[0]
        snippet = text[:snippet_chars] + ("..." if len(text) > snippet_chars else "")
        lines.append(f"{i}. [{title}]({url})\n   *{snippet}* [Read more]({url})")
    return "\n\n".join(lines)

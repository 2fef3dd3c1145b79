"""Web tools: Brave search and page fetch."""

import re
from typing import Any
from urllib.parse import urlparse

import httpx
from bs4 import BeautifulSoup, Comment

from tidebot.agent.tools.base import Tool

USER_AGENT = "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_7_2) AppleWebKit/537.36"
BRAVE_SEARCH_ENDPOINT = "https://api.search.brave.com/res/v1/web/search"


def html_to_text(markup: str, separator: str = "\n") -> str:
    """Readable text of an HTML document or fragment, entities decoded."""
    soup = BeautifulSoup(markup, "html.parser")
    for tag in soup(["script", "style", "noscript", "template"]):
        tag.decompose()
    for comment in soup.find_all(string=lambda s: isinstance(s, Comment)):
        comment.extract()
    return soup.get_text(separator)


def normalize_text(text: str) -> str:
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r" *\n *", "\n", text)
    return re.sub(r"\n{3,}", "\n\n", text).strip()


def validate_url(url: str) -> str | None:
    """Return an error message for URLs we refuse to fetch."""
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https"):
        return f"Only http/https allowed, got '{parsed.scheme or 'none'}'"
    if not parsed.netloc:
        return "Missing domain"
    return None


class WebSearchTool(Tool):
    name = "web_search"
    description = "Search the web. Returns titles, URLs, and snippets."
    parameters = {
        "type": "object",
        "properties": {
            "query": {"type": "string", "description": "Search query"},
            "count": {
                "type": "integer",
                "description": "Results (1-10)",
                "minimum": 1,
                "maximum": 10,
            },
        },
        "required": ["query"],
    }

    def __init__(self, api_key: str | None = None, max_results: int = 5):
        self.api_key = api_key or ""
        self.max_results = max_results

    async def execute(self, query: str, count: int | None = None, **kwargs: Any) -> str:
        if not self.api_key:
            return "Error: web search API key not configured (tools.web.search_api_key)"

        n = min(max(count or self.max_results, 1), 10)
        async with httpx.AsyncClient(timeout=15.0) as client:
            response = await client.get(
                BRAVE_SEARCH_ENDPOINT,
                params={"q": query, "count": n},
                headers={"Accept": "application/json", "X-Subscription-Token": self.api_key},
            )
            response.raise_for_status()

        results = response.json().get("web", {}).get("results", [])
        if not results:
            return f"No results for: {query}"

        lines = [f"Results for: {query}\n"]
        for i, item in enumerate(results[:n], 1):
            lines.append(f"{i}. {item.get('title', '')}\n   {item.get('url', '')}")
            if desc := item.get("description"):
                lines.append(f"   {html_to_text(desc, separator='')}")
        return "\n".join(lines)


class WebFetchTool(Tool):
    name = "web_fetch"
    description = "Fetch a URL and extract its readable text content."
    parameters = {
        "type": "object",
        "properties": {
            "url": {"type": "string", "description": "URL to fetch"},
            "max_chars": {"type": "integer", "minimum": 100},
        },
        "required": ["url"],
    }

    def __init__(self, max_chars: int = 50_000):
        self.max_chars = max_chars

    async def execute(self, url: str, max_chars: int | None = None, **kwargs: Any) -> str:
        if error := validate_url(url):
            return f"Error: URL validation failed: {error}"

        limit = max_chars or self.max_chars
        async with httpx.AsyncClient(
            follow_redirects=True, timeout=30.0, headers={"User-Agent": USER_AGENT}
        ) as client:
            response = await client.get(url)
            response.raise_for_status()

        content_type = response.headers.get("content-type", "")
        text = response.text
        if "html" in content_type or text.lstrip()[:256].lower().startswith(("<!doctype", "<html")):
            text = normalize_text(html_to_text(text))

        truncated = len(text) > limit
        if truncated:
            text = text[:limit]
        header = f"URL: {response.url}\nStatus: {response.status_code}"
        if truncated:
            header += f"\n(truncated to {limit} chars)"
        return f"{header}\n\n{text}"

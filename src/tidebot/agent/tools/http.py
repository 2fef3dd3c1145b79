"""
Tool: http_request

Generic HTTP client for APIs, including localhost and LAN services.
The response comes back as a JSON document with status, headers and body.
"""

from json import dumps
from typing import Any

import httpx

from tidebot.agent.tools.base import Tool
from tidebot.agent.tools.web import validate_url

METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS")
MAX_REDIRECTS = 10


def _clamp(value: int, low: int, high: int) -> int:
    return min(max(value, low), high)


def query_value(value: Any) -> str:
    """Render a JSON value for a query string."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return dumps(value, ensure_ascii=False)


def header_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    return dumps(value, ensure_ascii=False)


class HttpRequestTool(Tool):
    name = "http_request"
    description = (
        "Send HTTP requests (GET/POST/PUT/PATCH/DELETE/etc.) to APIs, "
        "including localhost and LAN services."
    )
    parameters = {
        "type": "object",
        "properties": {
            "url": {"type": "string", "description": "HTTP/HTTPS URL"},
            "method": {"type": "string", "description": f"HTTP method, one of {', '.join(METHODS)}"},
            "headers": {"type": "object", "description": "Request headers (key-value pairs)"},
            "query": {"type": "object", "description": "Query parameters (key-value pairs)"},
            "json": {"type": "object", "description": "JSON body (use with POST/PUT/PATCH)"},
            "body": {"type": "string", "description": "Raw text body"},
            "timeout_seconds": {"type": "integer", "minimum": 1, "maximum": 300},
            "max_chars": {"type": "integer", "minimum": 100, "maximum": 500_000},
            "follow_redirects": {"type": "boolean", "description": "Default true"},
            "insecure_tls": {"type": "boolean", "description": "Allow invalid TLS certificates"},
        },
        "required": ["url"],
    }

    def __init__(
        self,
        timeout_s: int = 30,
        max_chars: int = 50_000,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.timeout_s = _clamp(timeout_s, 1, 300)
        self.max_chars = _clamp(max_chars, 100, 500_000)
        self._transport = transport

    async def execute(
        self,
        url: str,
        method: str = "GET",
        headers: dict[str, Any] | None = None,
        query: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        body: str | None = None,
        timeout_seconds: int | None = None,
        max_chars: int | None = None,
        follow_redirects: bool = True,
        insecure_tls: bool = False,
        **kwargs: Any,
    ) -> str:
        if error := validate_url(url):
            return dumps({"error": f"URL validation failed: {error}", "url": url})
        if json is not None and body is not None:
            return dumps({"error": "Specify either 'json' or 'body', not both", "url": url})

        method = (method or "GET").strip().upper()
        if method not in METHODS:
            return dumps({"error": f"unsupported HTTP method: {method}", "url": url})

        limit = _clamp(max_chars or self.max_chars, 100, 500_000)
        async with httpx.AsyncClient(
            timeout=_clamp(timeout_seconds or self.timeout_s, 1, 300),
            follow_redirects=follow_redirects,
            max_redirects=MAX_REDIRECTS,
            verify=not insecure_tls,
            transport=self._transport,
        ) as client:
            response = await client.request(
                method,
                url,
                headers={k.strip(): header_value(v) for k, v in (headers or {}).items()},
                params={k: query_value(v) for k, v in (query or {}).items()} or None,
                json=json,
                content=body,
            )

        text = response.text
        truncated = len(text) > limit
        if truncated:
            text = text[:limit]

        return dumps(
            {
                "method": method,
                "url": url,
                "final_url": str(response.url),
                "status": response.status_code,
                "ok": response.is_success,
                "content_type": response.headers.get("content-type", ""),
                "headers": dict(response.headers),
                "truncated": truncated,
                "length": len(text),
                "body": text,
            },
            ensure_ascii=False,
        )

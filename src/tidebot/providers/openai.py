"""
OpenAI-compatible chat completions provider over httpx.
"""

import json
import logging
from typing import Any

import httpx

from tidebot.errors import ProviderError
from tidebot.providers.base import LLMProvider, LLMResponse, ToolCallRequest

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://api.openai.com/v1"


class OpenAIProvider(LLMProvider):
    """
    Talks to any endpoint implementing POST {api_base}/chat/completions.

    A shared AsyncClient is created lazily and reused across turns.
    """

    def __init__(
        self,
        api_key: str,
        api_base: str | None = None,
        default_model: str = "gpt-4o-mini",
        timeout_s: float = 120.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.api_base = (api_base or DEFAULT_API_BASE).rstrip("/")
        self._default_model = default_model
        self._timeout = timeout_s
        self._client = client

    def default_model(self) -> str:
        return self._default_model

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout, connect=30.0)
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def chat(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        model: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ) -> LLMResponse:
        body: dict[str, Any] = {
            "model": model or self._default_model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if tools:
            body["tools"] = tools
            body["tool_choice"] = "auto"

        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            response = await self._get_client().post(
                f"{self.api_base}/chat/completions", json=body, headers=headers
            )
        except httpx.RequestError as e:
            raise ProviderError(f"LLM request failed: {e}") from e

        if response.is_error:
            raise ProviderError(
                f"LLM endpoint returned {response.status_code}: {response.text[:500]}"
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise ProviderError("LLM response was not valid JSON") from e

        return self._parse_response(payload)

    @staticmethod
    def _parse_response(payload: dict[str, Any]) -> LLMResponse:
        choices = payload.get("choices") or [{}]
        choice = choices[0]
        message = choice.get("message") or {}

        tool_calls = []
        for tc in message.get("tool_calls") or []:
            function = tc.get("function") or {}
            name = function.get("name")
            if not tc.get("id") or not name:
                continue
            raw_args = function.get("arguments") or "{}"
            if isinstance(raw_args, dict):
                arguments = raw_args
            else:
                try:
                    arguments = json.loads(raw_args)
                except json.JSONDecodeError:
                    arguments = {"raw": raw_args}
                if not isinstance(arguments, dict):
                    arguments = {"raw": raw_args}
            tool_calls.append(ToolCallRequest(id=tc["id"], name=name, arguments=arguments))

        return LLMResponse(
            content=message.get("content"),
            tool_calls=tool_calls,
            finish_reason=choice.get("finish_reason") or "stop",
            usage=payload.get("usage") or {},
            reasoning_content=message.get("reasoning_content"),
        )

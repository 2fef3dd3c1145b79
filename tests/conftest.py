"""Shared fixtures: a scripted LLM provider and a temporary workspace."""

from pathlib import Path
from typing import Any

import pytest

from tidebot.bus import MessageBus
from tidebot.providers.base import LLMProvider, LLMResponse, ToolCallRequest


class StubProvider(LLMProvider):
    """
    Returns scripted responses in order; the last one repeats forever.

    Every request is recorded in `calls` so tests can inspect what the
    model was shown.
    """

    def __init__(self, responses: list[LLMResponse] | None = None):
        self.responses = list(responses or [LLMResponse(content="ok")])
        self.calls: list[dict[str, Any]] = []

    def default_model(self) -> str:
        return "stub-model"

    async def chat(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        model: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ) -> LLMResponse:
        self.calls.append(
            {"messages": [dict(m) for m in messages], "tools": tools, "model": model}
        )
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]


def text(content: str | None) -> LLMResponse:
    return LLMResponse(content=content)


def tool_call(name: str, arguments: dict[str, Any] | None = None, call_id: str = "call_1") -> LLMResponse:
    return LLMResponse(
        content=None,
        tool_calls=[ToolCallRequest(id=call_id, name=name, arguments=arguments or {})],
    )


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    ws = tmp_path / "workspace"
    ws.mkdir()
    return ws


@pytest.fixture
def bus() -> MessageBus:
    return MessageBus(capacity=16).start()

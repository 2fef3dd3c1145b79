"""LLM providers."""

from tidebot.providers.base import LLMProvider, LLMResponse, ToolCallRequest
from tidebot.providers.openai import OpenAIProvider

__all__ = ["LLMProvider", "LLMResponse", "ToolCallRequest", "OpenAIProvider"]

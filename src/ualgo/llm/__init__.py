"""LLM client module."""
from ualgo.llm.client import (
    AnthropicLLMClient,
    LLMClient,
    LLMClientFactory,
    LLMResponse,
    OpenAILLMClient,
)

__all__ = [
    "AnthropicLLMClient",
    "LLMClient",
    "LLMClientFactory",
    "LLMResponse",
    "OpenAILLMClient",
]

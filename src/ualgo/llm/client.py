"""LLM clients backing the generator."""

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import ClassVar

try:
    import anthropic
except ImportError:
    anthropic = None

try:
    import openai
except ImportError:
    openai = None

logger = logging.getLogger(__name__)


@dataclass
class LLMResponse:
    """Response from LLM."""

    content: str
    model: str
    tokens_used: int


class LLMClient(ABC):
    """Abstract completion client."""

    provider: ClassVar[str] = ""
    default_model: ClassVar[str] = ""

    @abstractmethod
    async def complete(
        self,
        prompt: str,
        model: str | None = None,
        max_tokens: int = 4000,
        temperature: float = 0.2,
        system: str | None = None,
    ) -> LLMResponse:
        """Send prompt to LLM and get response."""
        pass


class AnthropicLLMClient(LLMClient):
    """Anthropic Messages API client."""

    provider = "anthropic"
    default_model = "claude-sonnet-4-5"

    def __init__(self, api_key: str):
        if anthropic is None:
            raise ImportError("anthropic package is required for AnthropicLLMClient")
        self.client = anthropic.AsyncAnthropic(api_key=api_key)

    async def complete(
        self,
        prompt: str,
        model: str | None = None,
        max_tokens: int = 4000,
        temperature: float = 0.2,
        system: str | None = None,
    ) -> LLMResponse:
        model = model or self.default_model
        kwargs = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            kwargs["system"] = system

        response = await self.client.messages.create(**kwargs)
        text = "".join(
            block.text for block in response.content if getattr(block, "type", "text") == "text"
        )

        return LLMResponse(
            content=text,
            model=model,
            tokens_used=response.usage.input_tokens + response.usage.output_tokens,
        )


class OpenAILLMClient(LLMClient):
    """OpenAI chat completions client."""

    provider = "openai"
    default_model = "gpt-4o"

    def __init__(self, api_key: str):
        if openai is None:
            raise ImportError("openai package is required for OpenAILLMClient")
        self.client = openai.AsyncOpenAI(api_key=api_key)

    async def complete(
        self,
        prompt: str,
        model: str | None = None,
        max_tokens: int = 4000,
        temperature: float = 0.2,
        system: str | None = None,
    ) -> LLMResponse:
        model = model or self.default_model
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        response = await self.client.chat.completions.create(
            model=model, max_tokens=max_tokens, temperature=temperature, messages=messages
        )

        return LLMResponse(
            content=response.choices[0].message.content or "",
            model=model,
            tokens_used=response.usage.total_tokens if response.usage else 0,
        )


class LLMClientFactory:
    """
    Picks a provider for ``config.generation`` and builds its client.

    Returns None when no API key is available so callers can fall back to
    offline behaviour.
    """

    # Provider -> (env var, model prefixes, client class)
    PROVIDERS: ClassVar[dict[str, tuple[str, tuple[str, ...], type]]] = {
        "anthropic": ("ANTHROPIC_API_KEY", ("claude-",), AnthropicLLMClient),
        "openai": ("OPENAI_API_KEY", ("gpt-", "o1", "o3", "o4"), OpenAILLMClient),
    }

    @classmethod
    def create(cls, config, preferred_provider: str | None = None) -> LLMClient | None:
        generation = config.generation
        provider = (
            preferred_provider
            or generation.provider
            or cls._infer_provider(generation.model)
            or cls._find_available_provider()
        )

        if not provider:
            logger.warning("No LLM provider available (no API keys found)")
            return None
        if provider not in cls.PROVIDERS:
            logger.warning(f"Unknown LLM provider: {provider}")
            return None

        env_var, _, client_class = cls.PROVIDERS[provider]
        api_key = os.getenv(env_var)
        if not api_key:
            logger.warning(f"No API key found for {provider} (set {env_var})")
            return None

        logger.info(f"Using {provider} LLM client for generation")
        return client_class(api_key)

    @classmethod
    def model_for(cls, config, client: LLMClient) -> str:
        """Configured model if it belongs to the client's provider, else its default."""
        model = config.generation.model
        if cls._infer_provider(model) in (None, client.provider):
            return model
        return client.default_model

    @classmethod
    def _infer_provider(cls, model: str) -> str | None:
        for provider, (_, prefixes, _) in cls.PROVIDERS.items():
            if model.startswith(prefixes):
                return provider
        return None

    @classmethod
    def _find_available_provider(cls) -> str | None:
        for provider, (env_var, _, _) in cls.PROVIDERS.items():
            if os.getenv(env_var):
                return provider
        return None

    @classmethod
    def is_available(cls) -> bool:
        """Check if any LLM provider is available."""
        return cls._find_available_provider() is not None

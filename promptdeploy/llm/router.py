"""LLM Router for provider selection and fallback logic.

Strategy:
- Send every request to the primary provider
- On an error response or exception: retry once on the fallback provider
"""

from __future__ import annotations

import logging

from promptdeploy.config import Settings, get_settings
from promptdeploy.llm.anthropic import AnthropicAdapter
from promptdeploy.llm.base import LLMAdapter
from promptdeploy.llm.openai_compat import OpenAICompatibleAdapter
from promptdeploy.schemas import LLMMessage, LLMResponse


logger = logging.getLogger(__name__)


class ModelRouter:
    """Routes LLM requests to the configured providers with fallback."""

    ADAPTERS: dict[str, type[LLMAdapter]] = {
        "anthropic": AnthropicAdapter,
        "openai": OpenAICompatibleAdapter,
    }

    def __init__(
        self,
        settings: Settings | None = None,
        adapters: dict[str, LLMAdapter] | None = None,
    ):
        self._settings = settings or get_settings()
        self.primary_provider = self._settings.primary_provider
        self.fallback_provider = self._settings.fallback_provider

        # Initialize adapters lazily
        self._adapters: dict[str, LLMAdapter] = dict(adapters or {})

    def _get_adapter(self, provider: str) -> LLMAdapter:
        """Get or create an adapter for a provider."""
        if provider not in self._adapters:
            adapter_cls = self.ADAPTERS.get(provider)
            if adapter_cls is None:
                raise ValueError(f"Unknown provider: {provider}")
            self._adapters[provider] = adapter_cls(settings=self._settings)
        return self._adapters[provider]

    async def chat_completion(
        self,
        messages: list[LLMMessage],
        temperature: float = 0.7,
        max_tokens: int = 4096,
        allow_fallback: bool = True,
    ) -> tuple[LLMResponse, str]:
        """Route a chat completion request with fallback.

        Returns:
            Tuple of (response, provider_used)
        """
        provider = self.primary_provider
        logger.info(f"Routing generation to {provider}")

        try:
            adapter = self._get_adapter(provider)
            response = await adapter.chat_completion(
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
            )
            if response.finish_reason != "error":
                return (response, provider)
            logger.warning(f"Primary provider {provider} failed: {response.raw_response}")
        except Exception as e:
            logger.error(f"Error with {provider}: {e}")
            if not self._can_fall_back(allow_fallback):
                raise
            return await self._try_fallback(messages, temperature, max_tokens)

        if not self._can_fall_back(allow_fallback):
            return (response, provider)
        return await self._try_fallback(messages, temperature, max_tokens)

    def _can_fall_back(self, allow_fallback: bool) -> bool:
        return (
            allow_fallback
            and self.fallback_provider is not None
            and self.fallback_provider != self.primary_provider
        )

    async def _try_fallback(
        self,
        messages: list[LLMMessage],
        temperature: float,
        max_tokens: int,
    ) -> tuple[LLMResponse, str]:
        """Try the fallback provider."""
        provider = self.fallback_provider
        logger.info(f"Falling back to {provider}")

        adapter = self._get_adapter(provider)
        response = await adapter.chat_completion(
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
        )
        return (response, provider)

    async def close(self) -> None:
        """Close all adapters."""
        for adapter in self._adapters.values():
            await adapter.close()
        self._adapters.clear()

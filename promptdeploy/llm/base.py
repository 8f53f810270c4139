"""Abstract base class for LLM adapters."""

from __future__ import annotations

from abc import ABC, abstractmethod

from promptdeploy.schemas import LLMMessage, LLMResponse


class LLMAdapter(ABC):
    """Abstract base class for LLM provider adapters.

    All providers implement this interface so the router can swap them
    freely. Adapters report transport and HTTP failures as a response with
    ``finish_reason == "error"`` rather than raising.
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name (e.g., 'anthropic', 'openai')."""
        ...

    @abstractmethod
    async def chat_completion(
        self,
        messages: list[LLMMessage],
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 4096,
    ) -> LLMResponse:
        """Send a chat completion request.

        Args:
            messages: List of conversation messages
            model: Model name (uses default if None)
            temperature: Sampling temperature
            max_tokens: Maximum tokens in response

        Returns:
            LLMResponse with the generated content
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release the underlying HTTP client."""
        ...

    @staticmethod
    def _error_response(model: str, error: Exception) -> LLMResponse:
        raw: dict = {"error": str(error)}
        response = getattr(error, "response", None)
        if response is not None:
            raw["status_code"] = response.status_code
        return LLMResponse(content=None, model=model, finish_reason="error", raw_response=raw)

"""Anthropic Messages API adapter.

Endpoint: POST {base_url}/v1/messages
System prompts travel in the top-level ``system`` field, not as a message.
"""

from __future__ import annotations

import httpx

from promptdeploy.config import Settings, get_settings
from promptdeploy.llm.base import LLMAdapter
from promptdeploy.schemas import LLMMessage, LLMResponse


class AnthropicAdapter(LLMAdapter):
    """Anthropic adapter over httpx."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = settings or get_settings()
        self.api_key = api_key or settings.anthropic_api_key
        self.base_url = base_url or settings.anthropic_base_url
        self.default_model = settings.anthropic_model

        if not self.api_key:
            raise ValueError("Anthropic API key not configured")

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "x-api-key": self.api_key,
                "anthropic-version": settings.anthropic_version,
                "Content-Type": "application/json",
            },
            timeout=timeout or settings.llm_timeout_seconds,
            transport=transport,
        )

    @property
    def provider_name(self) -> str:
        return "anthropic"

    async def chat_completion(
        self,
        messages: list[LLMMessage],
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 4096,
    ) -> LLMResponse:
        """Send a request to the Messages API."""
        model = model or self.default_model

        system = "\n\n".join(m.content for m in messages if m.role == "system")
        payload: dict = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [
                {"role": m.role, "content": m.content}
                for m in messages
                if m.role != "system"
            ],
        }
        if system:
            payload["system"] = system

        try:
            response = await self._client.post("/v1/messages", json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            return self._error_response(model, e)

        text_blocks = [
            block.get("text", "")
            for block in data.get("content", [])
            if block.get("type") == "text"
        ]

        return LLMResponse(
            content="".join(text_blocks) or None,
            model=data.get("model", model),
            usage=data.get("usage", {}),
            finish_reason=data.get("stop_reason"),
            raw_response=data,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

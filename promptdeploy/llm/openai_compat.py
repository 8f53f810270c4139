"""Adapter for OpenAI-compatible chat completion endpoints.

Works with any provider exposing ``POST /chat/completions`` with bearer
auth, e.g. DeepSeek (https://api.deepseek.com), Moonshot
(https://api.moonshot.cn/v1) or OpenAI itself.
"""

from __future__ import annotations

import httpx

from promptdeploy.config import Settings, get_settings
from promptdeploy.llm.base import LLMAdapter
from promptdeploy.schemas import LLMMessage, LLMResponse


class OpenAICompatibleAdapter(LLMAdapter):
    """OpenAI-compatible API adapter."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = settings or get_settings()
        self.api_key = api_key or settings.openai_api_key
        self.base_url = base_url or settings.openai_base_url
        self.default_model = settings.openai_model

        if not self.api_key:
            raise ValueError("OpenAI-compatible API key not configured")

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            timeout=timeout or settings.llm_timeout_seconds,
            transport=transport,
        )

    @property
    def provider_name(self) -> str:
        return "openai"

    async def chat_completion(
        self,
        messages: list[LLMMessage],
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 4096,
    ) -> LLMResponse:
        """Send chat completion request."""
        model = model or self.default_model

        payload = {
            "model": model,
            "messages": [m.model_dump() for m in messages],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }

        try:
            response = await self._client.post("/chat/completions", json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            return self._error_response(model, e)

        choice = data.get("choices", [{}])[0]
        message = choice.get("message", {})

        return LLMResponse(
            content=message.get("content"),
            model=data.get("model", model),
            usage=data.get("usage", {}),
            finish_reason=choice.get("finish_reason"),
            raw_response=data,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

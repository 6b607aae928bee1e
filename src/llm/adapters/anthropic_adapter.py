# src/llm/adapters/anthropic_adapter.py — v3
"""Anthropic Claude adapter implementing BaseLLMClient.

Uses the official anthropic SDK. JSON output is requested through a
prefilled assistant turn; the caller's parser tolerates code fences.
"""

from __future__ import annotations

import base64
import logging
import time
from typing import Any

from qagate.llm.base_client import BaseLLMClient
from qagate.llm.models import ImageInput, LLMResponse, Message

logger = logging.getLogger(__name__)


class AnthropicAdapter(BaseLLMClient):
    """Adapter for Anthropic Claude models."""

    def __init__(
        self,
        model: str = "claude-sonnet-4-20250514",
        api_key: str | None = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self.__client = None  # Lazy initialization

    @property
    def _client(self):
        """Lazy-init Anthropic client (only on first API call)."""
        if self.__client is None:
            import anthropic

            self.__client = anthropic.AsyncAnthropic(api_key=self._api_key or "")
        return self.__client

    async def complete(
        self,
        messages: list[Message],
        system: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.2,
        json_output: bool = False,
    ) -> LLMResponse:
        """Text completion via Anthropic Messages API."""
        api_messages = [
            {"role": m.role, "content": m.content} for m in messages if m.role != "system"
        ]
        return await self._create(api_messages, system, max_tokens, temperature, json_output)

    async def complete_with_vision(
        self,
        messages: list[Message],
        images: list[ImageInput],
        system: str | None = None,
        max_tokens: int = 4096,
        json_output: bool = False,
    ) -> LLMResponse:
        """Vision-enabled completion with labeled images."""
        content_blocks: list[dict[str, Any]] = []
        for img in images:
            if img.label:
                content_blocks.append({"type": "text", "text": img.label})
            content_blocks.append(
                {
                    "type": "image",
                    "source": {
                        "type": "base64",
                        "media_type": img.media_type,
                        "data": base64.b64encode(img.data).decode("ascii"),
                    },
                }
            )

        user_text = "\n\n".join(m.content for m in messages if m.role == "user")
        content_blocks.append({"type": "text", "text": user_text})

        api_messages = [{"role": "user", "content": content_blocks}]
        return await self._create(api_messages, system, max_tokens, 0.2, json_output)

    @property
    def model_name(self) -> str:
        return self._model

    @property
    def provider_name(self) -> str:
        return "anthropic"

    # --- Internal helpers ---

    async def _create(
        self,
        api_messages: list[dict[str, Any]],
        system: str | None,
        max_tokens: int,
        temperature: float,
        json_output: bool,
    ) -> LLMResponse:
        params: dict[str, Any] = {
            "model": self._model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": list(api_messages),
        }
        if system:
            params["system"] = system
        if json_output:
            params["messages"].append({"role": "assistant", "content": "{"})

        start = time.monotonic()
        response = await self._client.messages.create(**params)
        latency_ms = int((time.monotonic() - start) * 1000)

        content = self._extract_text(response)
        if json_output:
            content = "{" + content

        return LLMResponse(
            content=content,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            model=response.model,
            provider="anthropic",
            latency_ms=latency_ms,
            raw_response=response,
        )

    @staticmethod
    def _extract_text(response: Any) -> str:
        for block in response.content:
            if getattr(block, "type", None) == "text":
                return block.text
        return ""

# src/llm/adapters/google_adapter.py — v2
"""Google Gemini adapter implementing BaseLLMClient.

Uses the google-generativeai SDK. Gemini is the primary judgment and
audit provider; every image is preceded by its label as a text part.
"""

from __future__ import annotations

import time
from typing import Any

from qagate.llm.base_client import BaseLLMClient
from qagate.llm.models import ImageInput, LLMResponse, Message


class GoogleAdapter(BaseLLMClient):
    """Google Gemini adapter."""

    def __init__(self, model: str = "gemini-2.5-pro", api_key: str = "", **kwargs: Any):
        self._model = model
        self._api_key = api_key

    def _model_for(self, system: str | None) -> Any:
        import google.generativeai as genai

        genai.configure(api_key=self._api_key)
        return genai.GenerativeModel(self._model, system_instruction=system)

    async def complete(
        self,
        messages: list[Message],
        system: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.2,
        json_output: bool = False,
    ) -> LLMResponse:
        model = self._model_for(system)
        gen_config = self._generation_config(max_tokens, temperature, json_output)

        contents = []
        for m in messages:
            role = "model" if m.role == "assistant" else "user"
            contents.append({"role": role, "parts": [{"text": m.content}]})

        t0 = time.monotonic()
        resp = await model.generate_content_async(contents, generation_config=gen_config)
        return self._to_response(resp, int((time.monotonic() - t0) * 1000))

    async def complete_with_vision(
        self,
        messages: list[Message],
        images: list[ImageInput],
        system: str | None = None,
        max_tokens: int = 4096,
        json_output: bool = False,
    ) -> LLMResponse:
        model = self._model_for(system)
        gen_config = self._generation_config(max_tokens, 0.2, json_output)

        parts: list[dict[str, Any]] = [{"text": m.content} for m in messages]
        for img in images:
            if img.label:
                parts.append({"text": img.label})
            parts.append({"inline_data": {"mime_type": img.media_type, "data": img.data}})

        t0 = time.monotonic()
        resp = await model.generate_content_async(parts, generation_config=gen_config)
        return self._to_response(resp, int((time.monotonic() - t0) * 1000))

    @property
    def model_name(self) -> str:
        return self._model

    @property
    def provider_name(self) -> str:
        return "google"

    @staticmethod
    def _generation_config(
        max_tokens: int, temperature: float, json_output: bool,
    ) -> dict[str, Any]:
        config: dict[str, Any] = {
            "max_output_tokens": max_tokens,
            "temperature": temperature,
        }
        if json_output:
            config["response_mime_type"] = "application/json"
        return config

    def _to_response(self, resp: Any, latency: int) -> LLMResponse:
        usage = getattr(resp, "usage_metadata", None)
        return LLMResponse(
            content=resp.text or "",
            input_tokens=getattr(usage, "prompt_token_count", 0) if usage else 0,
            output_tokens=getattr(usage, "candidates_token_count", 0) if usage else 0,
            model=self._model,
            provider="google",
            latency_ms=latency,
            raw_response=resp,
        )

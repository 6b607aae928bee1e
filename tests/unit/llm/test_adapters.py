# tests/unit/llm/test_adapters.py — v1
"""Tests for llm/adapters — request shaping with the provider SDKs mocked."""

from __future__ import annotations

import base64
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from qagate.llm.adapters.anthropic_adapter import AnthropicAdapter
from qagate.llm.adapters.google_adapter import GoogleAdapter
from qagate.llm.base_client import BaseLLMClient
from qagate.llm.models import ImageInput, Message

IMAGES = [
    ImageInput(data=b"plan", media_type="image/png", label="REFERENCE 1"),
    ImageInput(data=b"render", media_type="image/jpeg", label="CANDIDATE"),
]


def test_base_client_is_abstract():
    with pytest.raises(TypeError):
        BaseLLMClient()  # type: ignore[abstract]


def _anthropic(text: str = '"pass": true}') -> tuple[AnthropicAdapter, MagicMock]:
    adapter = AnthropicAdapter(model="claude-test", api_key="sk")
    sdk = MagicMock()
    sdk.messages.create = AsyncMock(return_value=SimpleNamespace(
        content=[SimpleNamespace(type="text", text=text)],
        usage=SimpleNamespace(input_tokens=12, output_tokens=5),
        model="claude-test",
    ))
    adapter._AnthropicAdapter__client = sdk
    return adapter, sdk


class TestAnthropicAdapter:
    @pytest.mark.asyncio
    async def test_json_prefill(self):
        adapter, sdk = _anthropic()
        response = await adapter.complete([Message(role="user", content="hi")], system="sys", json_output=True)
        params = sdk.messages.create.call_args.kwargs
        assert params["system"] == "sys"
        assert params["messages"][-1] == {"role": "assistant", "content": "{"}
        assert response.content == '{"pass": true}'
        assert (response.input_tokens, response.output_tokens) == (12, 5)
        assert response.provider == "anthropic"

    @pytest.mark.asyncio
    async def test_system_messages_dropped(self):
        adapter, sdk = _anthropic("ok")
        await adapter.complete([Message(role="system", content="x"), Message(role="user", content="hi")])
        assert sdk.messages.create.call_args.kwargs["messages"] == [{"role": "user", "content": "hi"}]

    @pytest.mark.asyncio
    async def test_vision_labels_precede_images(self):
        adapter, sdk = _anthropic("ok")
        await adapter.complete_with_vision([Message(role="user", content="judge")], IMAGES)
        blocks = sdk.messages.create.call_args.kwargs["messages"][0]["content"]
        assert [b["type"] for b in blocks] == ["text", "image", "text", "image", "text"]
        assert blocks[0]["text"] == "REFERENCE 1"
        assert blocks[1]["source"]["data"] == base64.b64encode(b"plan").decode("ascii")
        assert blocks[3]["source"]["media_type"] == "image/jpeg"
        assert blocks[-1]["text"] == "judge"


def _google(text: str = '{"pass": true}') -> tuple[GoogleAdapter, MagicMock]:
    adapter = GoogleAdapter(model="gemini-test", api_key="g")
    model = MagicMock()
    model.generate_content_async = AsyncMock(return_value=SimpleNamespace(
        text=text, usage_metadata=SimpleNamespace(prompt_token_count=7, candidates_token_count=3),
    ))
    adapter._model_for = lambda system: model  # type: ignore[method-assign]
    return adapter, model


class TestGoogleAdapter:
    def test_generation_config(self):
        assert GoogleAdapter._generation_config(100, 0.1, True) == {
            "max_output_tokens": 100, "temperature": 0.1, "response_mime_type": "application/json",
        }
        assert "response_mime_type" not in GoogleAdapter._generation_config(100, 0.1, False)

    @pytest.mark.asyncio
    async def test_complete_roles(self):
        adapter, model = _google()
        response = await adapter.complete([
            Message(role="user", content="q"), Message(role="assistant", content="a"),
        ])
        contents = model.generate_content_async.call_args.args[0]
        assert [c["role"] for c in contents] == ["user", "model"]
        assert response.content == '{"pass": true}'
        assert (response.input_tokens, response.output_tokens) == (7, 3)
        assert response.model == "gemini-test"

    @pytest.mark.asyncio
    async def test_vision_parts(self):
        adapter, model = _google()
        await adapter.complete_with_vision([Message(role="user", content="judge")], IMAGES, json_output=True)
        parts = model.generate_content_async.call_args.args[0]
        assert parts[0] == {"text": "judge"}
        assert parts[1] == {"text": "REFERENCE 1"}
        assert parts[2] == {"inline_data": {"mime_type": "image/png", "data": b"plan"}}
        assert parts[3] == {"text": "CANDIDATE"}
        config = model.generate_content_async.call_args.kwargs["generation_config"]
        assert config["response_mime_type"] == "application/json"

    def test_missing_usage(self):
        adapter = GoogleAdapter(model="gemini-test")
        response = adapter._to_response(SimpleNamespace(text=None), 5)
        assert response.content == ""
        assert response.input_tokens == 0

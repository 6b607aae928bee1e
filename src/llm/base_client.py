# src/llm/base_client.py — v2
"""Abstract LLM client interface shared by the judge and the auditor."""

from __future__ import annotations

from abc import ABC, abstractmethod

from qagate.llm.models import ImageInput, LLMResponse, Message


class BaseLLMClient(ABC):
    """Unified interface for all LLM providers."""

    @abstractmethod
    async def complete(
        self,
        messages: list[Message],
        system: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.2,
        json_output: bool = False,
    ) -> LLMResponse:
        """Text completion."""

    @abstractmethod
    async def complete_with_vision(
        self,
        messages: list[Message],
        images: list[ImageInput],
        system: str | None = None,
        max_tokens: int = 4096,
        json_output: bool = False,
    ) -> LLMResponse:
        """Vision-enabled completion (images + text)."""

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Model identifier reported in verdicts and audit records."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Provider identifier (anthropic, google)."""

# tests/doubles.py — v1
"""Test doubles shared across unit tests: generators, loaders, judges, LLM clients, verdicts."""

from __future__ import annotations

import json
from typing import Any
from unittest.mock import AsyncMock, MagicMock

from qagate.core.models import Phase, PipelineRun, QAReason, QAVerdict
from qagate.generation.asset_loader import AssetLoadError, BaseAssetLoader
from qagate.generation.base_generator import BaseAssetGenerator, GenerationResult
from qagate.llm.models import ImageInput, LLMResponse
from qagate.pipeline.phases import phases_for


class FakeGenerator(BaseAssetGenerator):
    """Returns sequential asset refs; ``errors`` maps call number → error string or exception."""

    def __init__(self, errors: dict[int, Any] | None = None) -> None:
        self.calls: list[dict[str, Any]] = []
        self._errors = errors or {}

    async def generate(self, prompt, primary_ref, correction_guidance=None, anchor_ref=None):
        self.calls.append({
            "prompt": prompt,
            "primary_ref": primary_ref,
            "correction_guidance": correction_guidance,
            "anchor_ref": anchor_ref,
        })
        n = len(self.calls)
        error = self._errors.get(n)
        if isinstance(error, BaseException):
            raise error
        if error:
            return GenerationResult(error=error)
        return GenerationResult(asset_ref=f"asset_{n}.png")


class FakeLoader(BaseAssetLoader):
    """Returns a tiny PNG payload for any ref not listed in ``missing``."""

    def __init__(self, missing: set[str] | None = None) -> None:
        self.missing = missing or set()
        self.loaded: list[str] = []

    async def load(self, asset_ref: str) -> ImageInput:
        if asset_ref in self.missing:
            raise AssetLoadError(f"Cannot read asset {asset_ref}")
        self.loaded.append(asset_ref)
        return ImageInput(data=b"\x89PNG", media_type="image/png", source_id=asset_ref)


class ScriptedJudge:
    """Judge double returning verdicts in order (the last one repeats).

    ``by_category`` overrides the script for units of a given category.
    """

    def __init__(self, *verdicts: QAVerdict, by_category: dict[str, QAVerdict] | None = None) -> None:
        self._verdicts = list(verdicts)
        self._by_category = by_category or {}
        self.contexts: list[Any] = []

    async def evaluate(self, asset, context):
        self.contexts.append(context)
        if context.category in self._by_category:
            return self._by_category[context.category]
        index = min(len(self.contexts), len(self._verdicts)) - 1
        return self._verdicts[index]


def passing(score: int = 85) -> QAVerdict:
    return QAVerdict(passed=True, score=score, confidence=0.9, recommended_action="approve")


def failing(
    score: int = 50,
    codes: tuple[str, ...] = ("GEOMETRY_DISTORTION",),
    instructions: str = "Fix the walls.",
    **kwargs: Any,
) -> QAVerdict:
    return QAVerdict(
        passed=False,
        score=score,
        confidence=0.7,
        reasons=tuple(QAReason(code=c) for c in codes),  # type: ignore[arg-type]
        corrected_instructions=instructions,
        **kwargs,
    )


def llm_response(payload: dict[str, Any] | str, model: str = "judge-model") -> LLMResponse:
    content = payload if isinstance(payload, str) else json.dumps(payload)
    return LLMResponse(content=content, model=model, provider="google")


def mock_llm_client(*responses: Any, model: str = "judge-model") -> MagicMock:
    """LLM client double; responses may be LLMResponse objects or exceptions."""
    client = MagicMock()
    client.model_name = model
    client.provider_name = "google"
    client.complete_with_vision = AsyncMock(side_effect=list(responses))
    client.complete = AsyncMock(side_effect=list(responses))
    return client


async def run_at_step(store, step_index: int, run_id: str = "run_1", scope: str = "global") -> PipelineRun:
    """Create a run already sitting on the pending phase of ``step_index``."""
    run = await store.create_run(PipelineRun(run_id=run_id, scope=scope))
    if step_index == 0:
        return run
    return await store.update_phase(
        run_id, Phase.UPLOAD, phases_for(step_index).pending, step_index=step_index,
    )

# src/generation/base_generator.py — v1
"""Abstract asset generator interface.

The generative model call itself lives outside the engine; the engine
only needs an asset reference back, or an error string.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from pydantic import BaseModel


class GenerationResult(BaseModel):
    """Outcome of one generation call. Exactly one of the fields is set."""

    asset_ref: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.asset_ref is not None and self.error is None


class BaseAssetGenerator(ABC):
    """Unified interface for generative backends."""

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        primary_ref: str | None,
        correction_guidance: str | None = None,
        anchor_ref: str | None = None,
    ) -> GenerationResult:
        """Produce one asset.

        Args:
            prompt: Base generation prompt of the unit.
            primary_ref: Reference of the primary input (plan or prior step output).
            correction_guidance: Accumulated corrections from failed attempts.
            anchor_ref: Approved sibling asset the output must stay consistent with.
        """

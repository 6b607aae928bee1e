# src/generation/asset_loader.py — v1
"""Asset loaders turn asset references into judge/audit image inputs."""

from __future__ import annotations

import asyncio
import logging
import mimetypes
from abc import ABC, abstractmethod
from pathlib import Path

from qagate.core.errors import QAGateError
from qagate.llm.models import ImageInput

logger = logging.getLogger(__name__)


class AssetLoadError(QAGateError):
    """An asset reference could not be resolved to image bytes."""


class BaseAssetLoader(ABC):
    """Unified interface for asset reference resolution."""

    @abstractmethod
    async def load(self, asset_ref: str) -> ImageInput:
        """Load the referenced asset. Raises AssetLoadError."""


class LocalFileAssetLoader(BaseAssetLoader):
    """Resolve references as file paths, relative ones under ``root``."""

    def __init__(self, root: str | Path | None = None) -> None:
        self._root = Path(root) if root is not None else None

    def _resolve(self, asset_ref: str) -> Path:
        path = Path(asset_ref)
        if not path.is_absolute() and self._root is not None:
            path = self._root / path
        return path

    async def load(self, asset_ref: str) -> ImageInput:
        path = self._resolve(asset_ref)
        try:
            data = await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            raise AssetLoadError(f"Cannot read asset {asset_ref}: {e}") from e
        media_type = mimetypes.guess_type(path.name)[0] or "image/png"
        logger.debug("Loaded asset %s (%d bytes, %s)", asset_ref, len(data), media_type)
        return ImageInput(data=data, media_type=media_type, source_id=asset_ref)

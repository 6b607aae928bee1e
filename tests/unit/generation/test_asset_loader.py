# tests/unit/generation/test_asset_loader.py — v1
"""Tests for generation/asset_loader.py and GenerationResult."""

from __future__ import annotations

import pytest

from qagate.generation.asset_loader import AssetLoadError, LocalFileAssetLoader
from qagate.generation.base_generator import GenerationResult


class TestLocalFileAssetLoader:
    @pytest.mark.asyncio
    async def test_relative_ref_under_root(self, tmp_path):
        (tmp_path / "render.jpg").write_bytes(b"\xff\xd8jpeg")
        image = await LocalFileAssetLoader(tmp_path).load("render.jpg")
        assert image.data == b"\xff\xd8jpeg"
        assert image.media_type == "image/jpeg"
        assert image.source_id == "render.jpg"

    @pytest.mark.asyncio
    async def test_absolute_ref_ignores_root(self, tmp_path):
        path = tmp_path / "plan.png"
        path.write_bytes(b"png")
        image = await LocalFileAssetLoader("/nonexistent").load(str(path))
        assert image.media_type == "image/png"

    @pytest.mark.asyncio
    async def test_unknown_extension_defaults_to_png(self, tmp_path):
        (tmp_path / "asset_7").write_bytes(b"raw")
        image = await LocalFileAssetLoader(tmp_path).load("asset_7")
        assert image.media_type == "image/png"

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path):
        with pytest.raises(AssetLoadError, match="missing.png"):
            await LocalFileAssetLoader(tmp_path).load("missing.png")


class TestGenerationResult:
    def test_ok(self):
        assert GenerationResult(asset_ref="a.png").ok

    def test_error(self):
        assert not GenerationResult(error="upstream 503").ok
        assert not GenerationResult().ok

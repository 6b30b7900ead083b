"""Tests for file-backed response bodies."""

from pathlib import Path

import pytest


class TestFileBodyStorage:
    @pytest.mark.asyncio
    async def test_save_and_read(self, body_storage):
        path = await body_storage.save_response_body("res_1", "héllo")

        assert Path(path).name == "res_1.txt"
        assert await body_storage.read_response_body(path) == "héllo"

    @pytest.mark.asyncio
    async def test_empty_body(self, body_storage):
        path = await body_storage.save_response_body("res_1", "")
        assert await body_storage.read_response_body(path) == ""

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, body_storage):
        path = await body_storage.save_response_body("res_1", "x")

        await body_storage.delete_response_body(path)
        await body_storage.delete_response_body(path)

        assert not Path(path).exists()

    @pytest.mark.asyncio
    async def test_read_missing_raises(self, body_storage):
        with pytest.raises(FileNotFoundError):
            await body_storage.read_response_body(str(body_storage.base_dir / "res_gone.txt"))

    @pytest.mark.asyncio
    async def test_rejects_path_like_ids(self, body_storage):
        with pytest.raises(ValueError):
            await body_storage.save_response_body("../escape", "x")

    @pytest.mark.asyncio
    async def test_rejects_paths_outside_directory(self, body_storage, tmp_path):
        outside = tmp_path / "outside.txt"
        outside.write_text("secret")
        with pytest.raises(ValueError):
            await body_storage.read_response_body(str(outside))

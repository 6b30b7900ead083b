"""Response bodies stored as text files under the data directory."""

import logging
from pathlib import Path

import aiofiles
import aiofiles.os

from requiety.config import get_settings

logger = logging.getLogger(__name__)


class FileBodyStorage:
    """Writes one ``<response_id>.txt`` file per response."""

    def __init__(self, base_dir: str | Path | None = None):
        if base_dir is None:
            base_dir = Path(get_settings().data_dir) / "responses"
        self.base_dir = Path(base_dir)

    def ensure_directory(self) -> None:
        self.base_dir.mkdir(parents=True, exist_ok=True)

    async def save_response_body(self, response_id: str, body: str) -> str:
        """Write a body and return its path."""
        path = self._path_for(response_id)
        await aiofiles.os.makedirs(self.base_dir, exist_ok=True)
        async with aiofiles.open(path, "w", encoding="utf-8") as f:
            await f.write(body or "")
        return str(path)

    async def read_response_body(self, body_path: str) -> str:
        path = self._resolve(body_path)
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            return await f.read()

    async def delete_response_body(self, body_path: str) -> None:
        """Delete a body file; a missing file is not an error."""
        if not body_path:
            return
        path = self._resolve(body_path)
        if await aiofiles.os.path.exists(path):
            await aiofiles.os.remove(path)
        else:
            logger.debug("Body file already gone: %s", path)

    def _path_for(self, response_id: str) -> Path:
        if not response_id or Path(response_id).name != response_id:
            raise ValueError(f"Invalid response id: {response_id!r}")
        return self.base_dir / f"{response_id}.txt"

    def _resolve(self, body_path: str) -> Path:
        path = Path(body_path).resolve()
        if not path.is_relative_to(self.base_dir.resolve()):
            raise ValueError(f"Body path outside storage directory: {body_path}")
        return path

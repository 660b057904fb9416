import asyncio
import logging
import shutil
from pathlib import Path
from typing import Optional
from urllib.parse import quote, unquote

import httpx

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Exception raised for object storage errors"""

    pass


class ObjectStorage:
    """Local-disk object bucket whose objects are served under a public URL prefix"""

    def __init__(
        self,
        root: Path,
        public_base_url: str = "/media",
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self.public_base_url = public_base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def _resolve(self, path: str) -> Path:
        rel_path = path.lstrip("/")

        # Prevent traversal out of the bucket
        if ".." in Path(rel_path).parts:
            raise StorageError(f"Invalid storage path: {path}")

        return self.root / rel_path

    def url_for(self, path: str) -> str:
        return f"{self.public_base_url}/{quote(path.lstrip('/'))}"

    def path_for_url(self, url: str) -> Optional[str]:
        """Return the storage path for a URL this bucket issued, None for foreign URLs"""
        prefix = f"{self.public_base_url}/"
        if not url.startswith(prefix):
            return None
        return unquote(url[len(prefix):])

    def exists(self, path: str) -> bool:
        return self._resolve(path).is_file()

    @staticmethod
    def _write(target: Path, data: bytes):
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp_target = target.with_name(f"{target.name}.tmp")
        tmp_target.write_bytes(data)
        tmp_target.replace(target)

    async def upload(self, path: str, data: bytes) -> str:
        """Store bytes at path and return the object's public URL"""
        target = self._resolve(path)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._write, target, data)
        logger.debug(f"Uploaded {len(data)} bytes to {path}")
        return self.url_for(path)

    async def read(self, path: str) -> bytes:
        target = self._resolve(path)
        if not target.is_file():
            raise StorageError(f"Object not found: {path}")
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, target.read_bytes)

    async def download(self, url: str) -> bytes:
        """Fetch object bytes from one of our URLs, or from any http(s) URL"""
        path = self.path_for_url(url)
        if path is not None:
            return await self.read(path)

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(url, follow_redirects=True)
                response.raise_for_status()
                return response.content
        except httpx.HTTPError as e:
            raise StorageError(f"Failed to download {url}: {e}") from e

    def delete_prefix(self, prefix: str) -> bool:
        """Remove every object below prefix"""
        target = self._resolve(prefix)
        if target.is_dir():
            shutil.rmtree(target)
            return True
        if target.is_file():
            target.unlink()
            return True
        return False

import asyncio
import logging
import os
import shutil
import tempfile
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Tuple

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, int, str]


@dataclass
class CachedAudio:
    book_id: str
    page_number: int
    voice_key: str
    path: Path
    size: int
    content_type: str = "audio/mpeg"

    def read_bytes(self) -> bytes:
        return self.path.read_bytes()


class AudioCache:
    """
    Session cache of downloaded narration, keyed by (book id, page number, voice key).
    Entries are never evicted implicitly; clear() drops one book or everything.
    """

    def __init__(self, cache_dir: Optional[Path] = None):
        if cache_dir is None:
            base_tmp_dir = os.path.join(tempfile.gettempdir(), "storyforest", "cache")
            os.makedirs(base_tmp_dir, exist_ok=True)
            cache_dir = Path(tempfile.mkdtemp(dir=base_tmp_dir, prefix=str(uuid.uuid4())))
            logger.info(f"Created audio cache directory: {cache_dir}")

        self.cache_dir = Path(cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self._entries: Dict[CacheKey, CachedAudio] = {}

    @staticmethod
    def key(book_id: str, page_number: int, voice_key: str) -> CacheKey:
        return book_id, page_number, voice_key

    def lookup(self, book_id: str, page_number: int, voice_key: str) -> Optional[CachedAudio]:
        return self._entries.get(self.key(book_id, page_number, voice_key))

    def _book_dir(self, book_id: str) -> Optional[Path]:
        """Directory of a book's files, None when book_id would leave the cache directory"""
        book_dir = self.cache_dir / book_id
        if book_dir.resolve().parent != self.cache_dir.resolve():
            return None
        return book_dir

    def _entry_path(self, book_id: str, page_number: int, voice_key: str) -> Path:
        book_dir = self._book_dir(book_id)
        if book_dir is None:
            raise ValueError(f"Invalid book id for audio cache: {book_id}")

        path = book_dir / f"{page_number}_{voice_key}.mp3"
        if path.resolve().parent != book_dir.resolve():
            raise ValueError(f"Invalid voice key for audio cache: {voice_key}")
        return path

    @staticmethod
    def _write(path: Path, data: bytes):
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    def _record(
        self,
        book_id: str,
        page_number: int,
        voice_key: str,
        path: Path,
        size: int,
        content_type: str,
    ) -> CachedAudio:
        entry = CachedAudio(
            book_id=book_id,
            page_number=page_number,
            voice_key=voice_key,
            path=path,
            size=size,
            content_type=content_type,
        )
        self._entries[self.key(book_id, page_number, voice_key)] = entry
        return entry

    def store(
        self,
        book_id: str,
        page_number: int,
        voice_key: str,
        data: bytes,
        content_type: str = "audio/mpeg",
    ) -> CachedAudio:
        path = self._entry_path(book_id, page_number, voice_key)
        self._write(path, data)
        return self._record(book_id, page_number, voice_key, path, len(data), content_type)

    async def store_async(
        self,
        book_id: str,
        page_number: int,
        voice_key: str,
        data: bytes,
        content_type: str = "audio/mpeg",
    ) -> CachedAudio:
        """Same as store(), with the file written in the default executor"""
        path = self._entry_path(book_id, page_number, voice_key)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._write, path, data)
        return self._record(book_id, page_number, voice_key, path, len(data), content_type)

    def clear(self, book_id: Optional[str] = None) -> int:
        """Evict one book's entries, or the whole cache when book_id is None"""
        if book_id is None:
            removed = len(self._entries)
            self._entries.clear()
            for child in self.cache_dir.iterdir():
                if child.is_dir():
                    shutil.rmtree(child, ignore_errors=True)
                else:
                    child.unlink(missing_ok=True)
            return removed

        stale_keys = [key for key in self._entries if key[0] == book_id]
        for key in stale_keys:
            del self._entries[key]

        # Only files inside the cache directory are ever removed
        book_dir = self._book_dir(book_id)
        if book_dir is not None:
            shutil.rmtree(book_dir, ignore_errors=True)
        return len(stale_keys)

    def __contains__(self, key: CacheKey) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def cleanup(self):
        """Remove the cache directory itself"""
        self._entries.clear()
        shutil.rmtree(self.cache_dir, ignore_errors=True)

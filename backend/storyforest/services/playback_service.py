import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Literal, Optional

from ..models.library import Book
from .audio_cache import AudioCache
from .library_store import LibraryStore
from .voice_keys import DEFAULT_VOICE_KEY, effective_voice_key

logger = logging.getLogger(__name__)


@dataclass
class PlaybackAudio:
    data: bytes
    source: Literal["cache", "live"]
    voice_key: str
    content_type: str = "audio/mpeg"


class PlaybackService:
    """
    Resolves audio for the page a listener is on: cached narration when available,
    otherwise live synthesis that is not written back to the cache.
    """

    def __init__(self, cache: AudioCache, store: LibraryStore, voice_provider):
        self.cache = cache
        self.store = store
        self.voice_provider = voice_provider
        self._request_ids: Dict[str, int] = {}

    def begin_request(self, listener_id: str) -> int:
        request_id = self._request_ids.get(listener_id, 0) + 1
        self._request_ids[listener_id] = request_id
        return request_id

    def is_current(self, listener_id: str, request_id: int) -> bool:
        return self._request_ids.get(listener_id) == request_id

    def _display_text(self, book: Book, page_number: int, voice_key: str, language: str) -> Optional[str]:
        page = next((p for p in book.pages if p.page_number == page_number), None)
        if page is None:
            return None

        if voice_key.startswith(f"{DEFAULT_VOICE_KEY}_"):
            translation = self.store.get_translation(book.id, language)
            if translation and translation.pages.get(page_number):
                return translation.pages[page_number]

        return page.text

    async def resolve_page_audio(
        self,
        book: Book,
        page_number: int,
        language: str,
        voice_id: Optional[str] = None,
        listener_id: str = "default",
    ) -> Optional[PlaybackAudio]:
        """
        Return audio for one page, or None when the page has no text or a newer
        request from the same listener superseded this one.
        """
        request_id = self.begin_request(listener_id)
        voice_key = effective_voice_key(book, language, voice_id)

        cached = self.cache.lookup(book.id, page_number, voice_key)
        if cached:
            loop = asyncio.get_running_loop()
            data = await loop.run_in_executor(None, cached.read_bytes)
            if not self.is_current(listener_id, request_id):
                return None
            return PlaybackAudio(data=data, source="cache", voice_key=voice_key, content_type=cached.content_type)

        text = self._display_text(book, page_number, voice_key, language)
        if not text:
            return None

        logger.info(f"Cache miss for book {book.id} page {page_number} key {voice_key}, generating live audio")
        data = await self.voice_provider.synthesize(text, voice_id)

        if not self.is_current(listener_id, request_id):
            logger.debug(f"Discarding superseded playback request {request_id} for listener {listener_id}")
            return None

        return PlaybackAudio(data=data, source="live", voice_key=voice_key)

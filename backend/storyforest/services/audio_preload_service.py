import asyncio
import logging
from contextlib import AsyncExitStack
from typing import Dict, Optional

from ..models.library import Book, Page
from ..models.progress import PreloadProgressCallback
from ..models.tasks import PreloadProgress
from .audio_cache import AudioCache
from .library_store import LibraryStore
from .storage_service import ObjectStorage
from .voice_keys import DEFAULT_VOICE_KEY, effective_voice_key

logger = logging.getLogger(__name__)


class AudioPreloadService:
    """Downloads a book's narration into the audio cache so playback does not hit the network"""

    def __init__(
        self,
        cache: AudioCache,
        storage: ObjectStorage,
        store: LibraryStore,
        max_concurrency: int = 6,
    ):
        self.cache = cache
        self.storage = storage
        self.store = store
        self.max_concurrency = max_concurrency

    def _custom_recordings(self, book: Book, user_id: Optional[str]) -> Dict[int, str]:
        """Map page number to the URL of the user's own recording for that page"""
        if not user_id:
            return {}

        try:
            records = self.store.list_user_audio_files(user_id, book.id)
        except Exception as e:
            logger.error(f"Error fetching custom audio records for book {book.id}: {e}")
            return {}

        return {record.page_number: self.storage.url_for(record.storage_path) for record in records}

    @staticmethod
    def _remote_url(page: Page, voice_key: str, custom_urls: Dict[int, str]) -> Optional[str]:
        # Priority: custom recording -> narration for the voice key -> legacy default narration
        if page.page_number in custom_urls:
            return custom_urls[page.page_number]

        url = page.audio_urls.get(voice_key)
        if url:
            return url

        if voice_key == DEFAULT_VOICE_KEY and page.audio_url:
            return page.audio_url

        return None

    async def preload(
        self,
        book: Book,
        language: str,
        voice_id: Optional[str] = None,
        on_progress: Optional[PreloadProgressCallback] = None,
        user_id: Optional[str] = None,
    ) -> PreloadProgress:
        """
        Cache narration for every page of a book.
        Page downloads run concurrently; a failed page is logged and does not fail the call.
        Returns the final progress once every page has been attempted.
        """
        voice_key = effective_voice_key(book, language, voice_id)
        custom_urls = self._custom_recordings(book, user_id) if voice_id else {}
        progress = PreloadProgress(total=len(book.pages), loaded=0, current_book_id=book.id)
        semaphore = asyncio.Semaphore(self.max_concurrency) if self.max_concurrency > 0 else None

        def page_loaded():
            progress.loaded += 1
            if on_progress:
                try:
                    on_progress(progress.model_copy())
                except Exception as e:
                    logger.warning(f"Preload progress callback failed: {e}")

        async def preload_page(page: Page):
            if self.cache.lookup(book.id, page.page_number, voice_key):
                page_loaded()
                return

            remote_url = self._remote_url(page, voice_key, custom_urls)
            if not remote_url:
                logger.warning(f"No audio URL found for book {book.id} page {page.page_number}, key {voice_key}")
                return

            try:
                async with AsyncExitStack() as stack:
                    if semaphore is not None:
                        await stack.enter_async_context(semaphore)
                    data = await self.storage.download(remote_url)

                await self.cache.store_async(book.id, page.page_number, voice_key, data)
                page_loaded()
            except Exception as e:
                logger.error(f"Failed to download audio for book {book.id} page {page.page_number}: {e}")

        await asyncio.gather(*(preload_page(page) for page in book.pages))

        logger.info(f"Preloaded {progress.loaded}/{progress.total} pages of book {book.id} with key {voice_key}")
        return progress

    def lookup(self, book_id: str, page_number: int, voice_key: str):
        return self.cache.lookup(book_id, page_number, voice_key)

    def clear(self, book_id: Optional[str] = None) -> int:
        return self.cache.clear(book_id)

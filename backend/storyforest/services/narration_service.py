import logging
from typing import Optional

from ..models.enums import GenerationPhase
from ..models.library import Book, Page
from ..models.progress import GenerationProgressCallback
from ..models.tasks import GenerationProgress, NarrationResult
from .library_store import LibraryStore
from .storage_service import ObjectStorage
from .voice_keys import DEFAULT_VOICE_KEY, translated_voice_key

logger = logging.getLogger(__name__)


def page_audio_path(book_id: str, page_number: int, voice_key: str) -> str:
    return f"books/{book_id}/pages/{page_number}_audio_{voice_key}.mp3"


class NarrationService:
    """Generates per-page narration audio and records it in the library under a voice key"""

    def __init__(self, store: LibraryStore, storage: ObjectStorage, voice_provider):
        self.store = store
        self.storage = storage
        self.voice_provider = voice_provider

    @staticmethod
    def _notify(on_progress: Optional[GenerationProgressCallback], progress: GenerationProgress):
        if not on_progress:
            return
        try:
            on_progress(progress)
        except Exception as e:
            logger.warning(f"Progress callback failed: {e}")

    async def _narrate_page(
        self,
        book: Book,
        page: Page,
        text: str,
        voice_id: Optional[str],
        voice_key: str,
        progress: GenerationProgress,
        on_progress: Optional[GenerationProgressCallback],
    ):
        self._notify(on_progress, progress.model_copy(update={"phase": GenerationPhase.GENERATING}))
        audio = await self.voice_provider.synthesize(text, voice_id)

        self._notify(on_progress, progress.model_copy(update={"phase": GenerationPhase.SAVING}))
        url = await self.storage.upload(page_audio_path(book.id, page.page_number, voice_key), audio)
        self.store.set_page_audio_url(book.id, page.page_number, voice_key, url)

    async def generate_book_audio(
        self,
        book_id: str,
        voice_id: Optional[str] = None,
        storage_voice_key: Optional[str] = None,
        on_progress: Optional[GenerationProgressCallback] = None,
        book_index: int = 1,
        total_books: int = 1,
    ) -> NarrationResult:
        """
        Narrate every page of a book in page order.
        Audio is synthesized with voice_id (provider default when None) and stored under
        storage_voice_key, which defaults to voice_id or "default". Pages that already have
        audio for the key are skipped; a failed page is logged and left without narration.
        """
        book = self.store.require_book(book_id)
        voice_key = storage_voice_key or voice_id or DEFAULT_VOICE_KEY
        result = NarrationResult()
        total_pages = len(book.pages)

        for page_idx, page in enumerate(book.pages):
            progress = GenerationProgress(
                phase=GenerationPhase.GENERATING,
                current_page=page_idx + 1,
                total_pages=total_pages,
                current_book=book_index,
                total_books=total_books,
                book_title=book.title,
            )

            if page.audio_urls.get(voice_key):
                result.skipped += 1
                self._notify(on_progress, progress)
                continue

            if not page.text.strip():
                result.skipped += 1
                continue

            try:
                await self._narrate_page(book, page, page.text, voice_id, voice_key, progress, on_progress)
                result.generated += 1
            except Exception as e:
                logger.error(f"Failed to narrate book {book.id} page {page.page_number} with key {voice_key}: {e}")
                result.failed += 1

        logger.info(
            f"Narrated book {book.id} with key {voice_key}: "
            f"{result.generated} generated, {result.skipped} skipped, {result.failed} failed"
        )
        return result

    async def generate_all_books_audio(
        self,
        voice_id: Optional[str] = None,
        storage_voice_key: Optional[str] = None,
        on_progress: Optional[GenerationProgressCallback] = None,
    ) -> NarrationResult:
        """Narrate every published book, one book at a time"""
        books = self.store.list_books()
        result = NarrationResult()

        for book_idx, book in enumerate(books):
            try:
                book_result = await self.generate_book_audio(
                    book.id,
                    voice_id=voice_id,
                    storage_voice_key=storage_voice_key,
                    on_progress=on_progress,
                    book_index=book_idx + 1,
                    total_books=len(books),
                )
            except LookupError:
                # Deleted while the run was in progress
                logger.warning(f"Book {book.id} disappeared during batch narration")
                continue
            result = result.merge(book_result)

        return result

    async def generate_translated_audio(
        self,
        language: str,
        on_progress: Optional[GenerationProgressCallback] = None,
    ) -> NarrationResult:
        """Narrate stored translations of every published book with the default narrator"""
        voice_key = translated_voice_key(language)
        books = self.store.list_books()
        result = NarrationResult()

        for book_idx, book_meta in enumerate(books):
            book = self.store.get_book(book_meta.id)
            if not book:
                continue

            translation = self.store.get_translation(book.id, language)
            if not translation or not translation.pages:
                continue

            for page_idx, page in enumerate(book.pages):
                translated_text = translation.pages.get(page.page_number)
                if not translated_text:
                    continue

                progress = GenerationProgress(
                    phase=GenerationPhase.GENERATING,
                    current_page=page_idx + 1,
                    total_pages=len(book.pages),
                    current_book=book_idx + 1,
                    total_books=len(books),
                    book_title=book.title,
                )

                if page.audio_urls.get(voice_key):
                    result.skipped += 1
                    self._notify(on_progress, progress)
                    continue

                try:
                    await self._narrate_page(book, page, translated_text, None, voice_key, progress, on_progress)
                    result.generated += 1
                except Exception as e:
                    logger.error(f"Failed to narrate {language} translation of book {book.id} page {page.page_number}: {e}")
                    result.failed += 1

        return result

import logging
from typing import Optional

from ..models.enums import PreparationStep
from ..models.progress import PreparationProgressCallback
from ..models.tasks import GenerationProgress, PreloadProgress, PreparationProgress
from .audio_preload_service import AudioPreloadService
from .library_store import LibraryStore
from .narration_service import NarrationService
from .voice_keys import DEFAULT_LANGUAGE

logger = logging.getLogger(__name__)


class LibraryPreparationService:
    """Makes the whole library playable offline: narrate, narrate translations, then download"""

    def __init__(self, store: LibraryStore, narration: NarrationService, preload: AudioPreloadService):
        self.store = store
        self.narration = narration
        self.preload = preload
        self.progress: Optional[PreparationProgress] = None

    def _report(self, on_progress: Optional[PreparationProgressCallback], progress: PreparationProgress):
        self.progress = progress
        if not on_progress:
            return
        try:
            on_progress(progress)
        except Exception as e:
            logger.warning(f"Preparation progress callback failed: {e}")

    def _forward_generation(self, step: PreparationStep, on_progress: Optional[PreparationProgressCallback]):
        def callback(progress: GenerationProgress):
            self._report(
                on_progress,
                PreparationProgress(
                    step=step,
                    current_book=progress.current_book,
                    total_books=progress.total_books,
                    current_page=progress.current_page,
                    total_pages=progress.total_pages,
                    book_title=progress.book_title,
                ),
            )

        return callback

    async def prepare(
        self,
        voice_id: Optional[str] = None,
        language: str = DEFAULT_LANGUAGE,
        on_progress: Optional[PreparationProgressCallback] = None,
        user_id: Optional[str] = None,
    ) -> PreparationProgress:
        try:
            self._report(on_progress, PreparationProgress(step=PreparationStep.GENERATING))
            await self.narration.generate_all_books_audio(
                voice_id=voice_id,
                on_progress=self._forward_generation(PreparationStep.GENERATING, on_progress),
            )

            if language and language != DEFAULT_LANGUAGE:
                self._report(on_progress, PreparationProgress(step=PreparationStep.TRANSLATING))
                await self.narration.generate_translated_audio(
                    language,
                    on_progress=self._forward_generation(PreparationStep.TRANSLATING, on_progress),
                )

            books = self.store.list_books()
            for book_idx, book_meta in enumerate(books):
                book = self.store.get_book(book_meta.id)
                if not book:
                    continue

                def forward_preload(progress: PreloadProgress, book_idx=book_idx, title=book.title):
                    self._report(
                        on_progress,
                        PreparationProgress(
                            step=PreparationStep.DOWNLOADING,
                            current_book=book_idx + 1,
                            total_books=len(books),
                            current_page=progress.loaded,
                            total_pages=progress.total,
                            book_title=title,
                        ),
                    )

                await self.preload.preload(book, language, voice_id, on_progress=forward_preload, user_id=user_id)

            done = PreparationProgress(step=PreparationStep.DONE, total_books=len(books), current_book=len(books))
            self._report(on_progress, done)
            return done

        except Exception as e:
            logger.error(f"Library preparation failed: {e}", exc_info=True)
            self._report(on_progress, PreparationProgress(step=PreparationStep.ERROR, message=str(e)))
            raise

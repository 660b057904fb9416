import logging
import shelve
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

from ..models.library import Book, Page, PageTranslation, SavedVoice, UserAudioFile, UserSettings

logger = logging.getLogger(__name__)


class BookNotFoundError(LookupError):
    """Exception raised when a book id has no record"""

    pass


class LibraryStore:
    """Document store for books, pages, voices, recordings, translations and user settings"""

    BOOK_PREFIX = "book:"
    PAGE_PREFIX = "page:"
    VOICE_PREFIX = "voice:"
    USER_AUDIO_PREFIX = "user_audio:"
    TRANSLATION_PREFIX = "translation:"
    USER_SETTINGS_PREFIX = "user_settings:"

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def _open(self):
        return shelve.open(str(self.db_path), "c")

    @staticmethod
    def _page_key(book_id: str, page_number: int) -> str:
        return f"{LibraryStore.PAGE_PREFIX}{book_id}:{page_number}"

    @staticmethod
    def _items_with_prefix(db, prefix: str) -> Iterator[Tuple[str, dict]]:
        for key in list(db.keys()):
            if key.startswith(prefix):
                yield key, db[key]

    # Books and pages
    def save_book(self, book: Book):
        """Save book metadata and its pages"""
        with self._open() as db:
            db[f"{self.BOOK_PREFIX}{book.id}"] = book.model_dump(exclude={"pages"})
            for page in book.pages:
                db[self._page_key(book.id, page.page_number)] = page.model_dump()
            db.sync()

    def get_book(self, book_id: str, include_pages: bool = True) -> Optional[Book]:
        with self._open() as db:
            data = db.get(f"{self.BOOK_PREFIX}{book_id}")
            if data is None:
                return None

            book = Book(**data)
            if include_pages:
                book.pages = self._load_pages(db, book_id)
            return book

    def require_book(self, book_id: str) -> Book:
        book = self.get_book(book_id)
        if book is None:
            raise BookNotFoundError(f"Book not found: {book_id}")
        return book

    def _load_pages(self, db, book_id: str) -> List[Page]:
        prefix = f"{self.PAGE_PREFIX}{book_id}:"
        pages = [Page(**data) for _, data in self._items_with_prefix(db, prefix)]
        pages.sort(key=lambda page: page.page_number)
        return pages

    def list_books(self, published_only: bool = True) -> List[Book]:
        """List book metadata (without pages), newest first"""
        with self._open() as db:
            books = [Book(**data) for _, data in self._items_with_prefix(db, self.BOOK_PREFIX)]

        if published_only:
            books = [book for book in books if book.published]
        books.sort(key=lambda book: book.created_at, reverse=True)
        return books

    def get_page(self, book_id: str, page_number: int) -> Optional[Page]:
        with self._open() as db:
            data = db.get(self._page_key(book_id, page_number))
            return Page(**data) if data is not None else None

    def set_page_audio_url(self, book_id: str, page_number: int, voice_key: str, url: str) -> Page:
        """Merge a narration URL into the page's voice-key map"""
        with self._open() as db:
            key = self._page_key(book_id, page_number)
            data = db.get(key)
            if data is None:
                raise BookNotFoundError(f"Page {page_number} of book {book_id} not found")

            page = Page(**data)
            page.audio_urls = {**page.audio_urls, voice_key: url}
            db[key] = page.model_dump()
            db.sync()
            return page

    def delete_book(self, book_id: str) -> bool:
        """Delete a book together with its pages, translations and recordings"""
        with self._open() as db:
            book_key = f"{self.BOOK_PREFIX}{book_id}"
            if book_key not in db:
                return False

            del db[book_key]
            stale_keys = [key for key, _ in self._items_with_prefix(db, f"{self.PAGE_PREFIX}{book_id}:")]
            stale_keys += [key for key, _ in self._items_with_prefix(db, f"{self.TRANSLATION_PREFIX}{book_id}:")]
            stale_keys += [
                key
                for key, data in self._items_with_prefix(db, self.USER_AUDIO_PREFIX)
                if data.get("book_id") == book_id
            ]
            for key in stale_keys:
                del db[key]
            db.sync()

        logger.info(f"Deleted book {book_id} ({len(stale_keys)} related records)")
        return True

    # Saved voices
    def save_voice(self, voice: SavedVoice):
        with self._open() as db:
            db[f"{self.VOICE_PREFIX}{voice.id}"] = voice.model_dump()
            db.sync()

    def get_voice(self, voice_id: str) -> Optional[SavedVoice]:
        with self._open() as db:
            data = db.get(f"{self.VOICE_PREFIX}{voice_id}")
            return SavedVoice(**data) if data is not None else None

    def list_voices(self, user_id: str) -> List[SavedVoice]:
        with self._open() as db:
            voices = [SavedVoice(**data) for _, data in self._items_with_prefix(db, self.VOICE_PREFIX)]
        return [voice for voice in voices if voice.user_id == user_id]

    def delete_voice(self, voice_id: str) -> bool:
        with self._open() as db:
            key = f"{self.VOICE_PREFIX}{voice_id}"
            if key not in db:
                return False
            del db[key]
            db.sync()
            return True

    # User recordings
    def save_user_audio_file(self, record: UserAudioFile):
        with self._open() as db:
            key = f"{self.USER_AUDIO_PREFIX}{record.user_id}:{record.book_id}:{record.page_number}"
            db[key] = record.model_dump()
            db.sync()

    def list_user_audio_files(self, user_id: str, book_id: str) -> List[UserAudioFile]:
        prefix = f"{self.USER_AUDIO_PREFIX}{user_id}:{book_id}:"
        with self._open() as db:
            records = [UserAudioFile(**data) for _, data in self._items_with_prefix(db, prefix)]
        records.sort(key=lambda record: record.page_number)
        return records

    # Translations
    def save_translation(self, translation: PageTranslation):
        with self._open() as db:
            db[f"{self.TRANSLATION_PREFIX}{translation.book_id}:{translation.language}"] = translation.model_dump()
            db.sync()

    def get_translation(self, book_id: str, language: str) -> Optional[PageTranslation]:
        with self._open() as db:
            data = db.get(f"{self.TRANSLATION_PREFIX}{book_id}:{language}")
            return PageTranslation(**data) if data is not None else None

    # User settings
    def get_user_settings(self, user_id: str) -> UserSettings:
        with self._open() as db:
            data = db.get(f"{self.USER_SETTINGS_PREFIX}{user_id}")
        return UserSettings(**data) if data is not None else UserSettings(user_id=user_id)

    def save_user_settings(self, settings: UserSettings):
        with self._open() as db:
            db[f"{self.USER_SETTINGS_PREFIX}{settings.user_id}"] = settings.model_dump()
            db.sync()

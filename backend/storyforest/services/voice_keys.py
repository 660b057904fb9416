import re
from typing import Optional

from ..models.library import Book

DEFAULT_VOICE_KEY = "default"
DEFAULT_LANGUAGE = "English"

# Hangul syllables, Jamo and compatibility Jamo
_HANGUL_PATTERN = re.compile(r"[\uAC00-\uD7AF\u1100-\u11FF\u3130-\u318F]")


def detect_language(text: str) -> Optional[str]:
    """Detect whether text is Korean or English; None for empty text."""
    if not text:
        return None
    return "Korean" if _HANGUL_PATTERN.search(text) else "English"


def detected_book_language(book: Book) -> str:
    original = book.original_language or DEFAULT_LANGUAGE
    return detect_language(book.title) or original


def translated_voice_key(language: str) -> str:
    return f"{DEFAULT_VOICE_KEY}_{language}"


def effective_voice_key(book: Book, target_language: Optional[str], selected_voice_id: Optional[str] = None) -> str:
    """
    Return the key narration audio is stored and looked up under.
    Priority:
    1) The selected custom voice id
    2) default_<language> when the target language differs from the book's language
    3) default
    """
    if selected_voice_id:
        return selected_voice_id

    if target_language and target_language != detected_book_language(book):
        return translated_voice_key(target_language)

    return DEFAULT_VOICE_KEY

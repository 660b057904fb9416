import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Response

from ...app import get_app_state
from ...core.config import get_user_preferences
from ...models.library import Book
from ...models.tasks import PreloadProgress, PreparationProgress
from ...services.elevenlabs_service import ElevenLabsError
from ...services.voice_keys import effective_voice_key

logger = logging.getLogger(__name__)

router = APIRouter()


def _require_book(book_id: str) -> Book:
    book = get_app_state().store.get_book(book_id)
    if not book:
        raise HTTPException(status_code=404, detail="Book not found")
    return book


def _listening_context():
    """Target language, selected voice and user id of the active user"""
    preferences = get_user_preferences()
    voice_id = get_app_state().voice_service.get_selected_voice(preferences.user_id)
    return preferences.target_language, voice_id, preferences.user_id


@router.get("/audio/voice-key/{book_id}")
async def get_voice_key(book_id: str, language: Optional[str] = Query(None)):
    """Voice key playback and preloading use for a book in the current context"""
    book = _require_book(book_id)
    target_language, voice_id, _ = _listening_context()
    language = language or target_language
    return {
        "book_id": book_id,
        "language": language,
        "voice_id": voice_id,
        "voice_key": effective_voice_key(book, language, voice_id),
    }


@router.post("/audio/preload/{book_id}", response_model=PreloadProgress)
async def preload_book(book_id: str):
    """Download a book's narration into the local cache"""
    app_state = get_app_state()
    book = _require_book(book_id)
    language, voice_id, user_id = _listening_context()

    return await app_state.preload.preload(
        book,
        language,
        voice_id,
        on_progress=app_state.handle_preload_progress,
        user_id=user_id,
    )


@router.get("/audio/cache/{book_id}/{page_number}")
async def lookup_cached_audio(book_id: str, page_number: int):
    """Report whether a page is cached for the current voice key"""
    book = _require_book(book_id)
    language, voice_id, _ = _listening_context()
    voice_key = effective_voice_key(book, language, voice_id)

    entry = get_app_state().preload.lookup(book_id, page_number, voice_key)
    return {
        "cached": entry is not None,
        "voice_key": voice_key,
        "size": entry.size if entry else 0,
    }


@router.delete("/audio/cache")
async def clear_cache(book_id: Optional[str] = Query(None)):
    """Clear cached audio for one book, or for every book when no book_id is given"""
    app_state = get_app_state()
    if book_id is not None and not app_state.store.get_book(book_id, include_pages=False):
        raise HTTPException(status_code=404, detail="Book not found")

    removed = app_state.preload.clear(book_id)
    return {"removed": removed}


@router.get("/audio/playback/{book_id}/{page_number}")
async def play_page(book_id: str, page_number: int, listener_id: str = Query("default")):
    """Audio for one page: cached narration, else live synthesis"""
    app_state = get_app_state()
    book = _require_book(book_id)
    language, voice_id, _ = _listening_context()

    try:
        audio = await app_state.playback.resolve_page_audio(
            book,
            page_number,
            language,
            voice_id=voice_id,
            listener_id=listener_id,
        )
    except ElevenLabsError as e:
        logger.error(f"Live narration failed for book {book_id} page {page_number}: {e}")
        raise HTTPException(status_code=502, detail=str(e))

    if audio is None:
        # Superseded by a newer request from the same listener, or nothing to read
        return Response(status_code=204)

    return Response(
        content=audio.data,
        media_type=audio.content_type,
        headers={"X-Audio-Source": audio.source, "X-Voice-Key": audio.voice_key},
    )


@router.post("/audio/prepare")
async def prepare_library():
    """Start narrating and downloading the whole library for offline listening"""
    app_state = get_app_state()
    language, voice_id, user_id = _listening_context()

    try:
        app_state.start_preparation(voice_id, language, user_id)
    except RuntimeError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return {"message": "Library preparation started", "language": language, "voice_id": voice_id}


@router.get("/audio/prepare", response_model=Optional[PreparationProgress])
async def get_preparation_progress():
    return get_app_state().preparation.progress

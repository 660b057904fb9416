import logging
import uuid
from typing import Dict, List, Optional

from fastapi import APIRouter, File, HTTPException, UploadFile
from pydantic import BaseModel, Field

from ...app import get_app_state
from ...core.config import get_user_preferences
from ...models.library import Book, Page, PageTranslation, UserAudioFile

logger = logging.getLogger(__name__)

router = APIRouter()


class PageRequest(BaseModel):
    page_number: int
    text: str
    image_url: str = ""


class PublishBookRequest(BaseModel):
    title: str
    pages: List[PageRequest]
    description: str = ""
    cover_url: str = ""
    style: str = ""
    original_language: Optional[str] = None


class TranslationRequest(BaseModel):
    title: str = ""
    description: str = ""
    pages: Dict[int, str] = Field(default_factory=dict)


@router.get("/books", response_model=List[Book])
async def list_books():
    """List published books, newest first"""
    return get_app_state().store.list_books()


@router.get("/books/{book_id}", response_model=Book)
async def get_book(book_id: str):
    book = get_app_state().store.get_book(book_id)
    if not book:
        raise HTTPException(status_code=404, detail="Book not found")
    return book


@router.post("/books", response_model=Book)
async def publish_book(request: PublishBookRequest):
    """Publish a finished story and queue narration in the user's selected voice"""
    if not request.pages:
        raise HTTPException(status_code=400, detail="A book needs at least one page")

    page_numbers = [page.page_number for page in request.pages]
    if len(set(page_numbers)) != len(page_numbers):
        raise HTTPException(status_code=400, detail="Page numbers must be unique")

    app_state = get_app_state()
    user_id = get_user_preferences().user_id

    book = Book(
        id=str(uuid.uuid4()),
        title=request.title,
        author_id=user_id,
        cover_url=request.cover_url,
        description=request.description,
        style=request.style,
        original_language=request.original_language,
        pages=[Page(page_number=p.page_number, text=p.text, image_url=p.image_url) for p in request.pages],
    )
    app_state.store.save_book(book)
    logger.info(f"Published book {book.id} '{book.title}' with {len(book.pages)} pages")

    task = app_state.voice_service.queue_audio_for_new_book(user_id, book.id)
    if task:
        app_state.generator.enqueue(task)

    return book


@router.delete("/books/{book_id}")
async def delete_book(book_id: str):
    """Delete a book with its pages, stored audio and cached audio"""
    app_state = get_app_state()
    if not app_state.store.delete_book(book_id):
        raise HTTPException(status_code=404, detail="Book not found")

    try:
        app_state.storage.delete_prefix(f"books/{book_id}")
    except Exception as e:
        logger.warning(f"Failed to delete stored files for book {book_id}: {e}")

    removed = app_state.audio_cache.clear(book_id)
    return {"message": "Book deleted", "cache_entries_removed": removed}


@router.put("/books/{book_id}/translations/{language}", response_model=PageTranslation)
async def save_translation(book_id: str, language: str, request: TranslationRequest):
    """Store a translation used for translated narration and playback"""
    app_state = get_app_state()
    if not app_state.store.get_book(book_id, include_pages=False):
        raise HTTPException(status_code=404, detail="Book not found")

    translation = PageTranslation(
        book_id=book_id,
        language=language,
        title=request.title,
        description=request.description,
        pages=request.pages,
    )
    app_state.store.save_translation(translation)
    return translation


@router.post("/books/{book_id}/pages/{page_number}/recording", response_model=UserAudioFile)
async def upload_page_recording(book_id: str, page_number: int, file: UploadFile = File(...)):
    """Upload the user's own narration of a page; it takes priority over generated audio"""
    app_state = get_app_state()
    if not app_state.store.get_page(book_id, page_number):
        raise HTTPException(status_code=404, detail="Page not found")

    data = await file.read()
    if not data:
        raise HTTPException(status_code=400, detail="Recording is empty")

    user_id = get_user_preferences().user_id
    storage_path = f"user_audio/{user_id}/{book_id}/page_{page_number}.mp3"
    await app_state.storage.upload(storage_path, data)

    record = UserAudioFile(user_id=user_id, book_id=book_id, page_number=page_number, storage_path=storage_path)
    app_state.store.save_user_audio_file(record)
    return record

import logging
from typing import List, Optional

from fastapi import APIRouter, File, Form, HTTPException, UploadFile
from pydantic import BaseModel

from ...app import get_app_state
from ...core.config import get_user_preferences
from ...models.enums import TaskKind
from ...models.library import SavedVoice
from ...models.tasks import BackgroundTask
from ...services.elevenlabs_service import ElevenLabsError

logger = logging.getLogger(__name__)

router = APIRouter()


class SelectVoiceRequest(BaseModel):
    voice_id: Optional[str] = None  # None selects the default narrator


class SelectedVoiceResponse(BaseModel):
    user_id: str
    voice_id: Optional[str] = None


async def _read_sample(file: UploadFile) -> bytes:
    sample = await file.read()
    if not sample:
        raise HTTPException(status_code=400, detail="Voice sample is empty")
    return sample


@router.get("/voices", response_model=List[SavedVoice])
async def list_voices():
    """Saved voices of the active user, newest first"""
    user_id = get_user_preferences().user_id
    return get_app_state().voice_service.get_saved_voices(user_id)


@router.post("/voices", response_model=SavedVoice)
async def register_voice(name: str = Form(...), file: UploadFile = File(...)):
    """Clone a recorded voice, save it, and narrate the whole library with it in the background"""
    sample = await _read_sample(file)
    app_state = get_app_state()
    user_id = get_user_preferences().user_id

    try:
        saved_voice, task = await app_state.voice_service.register_voice(user_id, name, sample)
    except ElevenLabsError as e:
        logger.error(f"Voice cloning failed for '{name}': {e}")
        raise HTTPException(status_code=502, detail=str(e))

    app_state.generator.enqueue(task)
    return saved_voice


@router.post("/voices/clone-for-book", response_model=BackgroundTask)
async def clone_voice_for_book(
    book_id: str = Form(...),
    name: str = Form(...),
    file: UploadFile = File(...),
):
    """Clone a one-off voice from a recording and narrate a single book with it"""
    app_state = get_app_state()
    if not app_state.store.get_book(book_id, include_pages=False):
        raise HTTPException(status_code=404, detail="Book not found")

    sample = await _read_sample(file)
    try:
        voice_id = await app_state.voice_provider.clone_voice(name, sample)
    except ElevenLabsError as e:
        logger.error(f"Voice cloning failed for book {book_id}: {e}")
        raise HTTPException(status_code=502, detail=str(e))

    task = BackgroundTask(voice_id=voice_id, kind=TaskKind.SINGLE, book_id=book_id)
    app_state.generator.enqueue(task)
    return task


@router.get("/voices/selected", response_model=SelectedVoiceResponse)
async def get_selected_voice():
    user_id = get_user_preferences().user_id
    return SelectedVoiceResponse(user_id=user_id, voice_id=get_app_state().voice_service.get_selected_voice(user_id))


@router.put("/voices/selected", response_model=SelectedVoiceResponse)
async def select_voice(request: SelectVoiceRequest):
    app_state = get_app_state()
    user_id = get_user_preferences().user_id

    if request.voice_id is not None:
        saved_voice = app_state.voice_service.get_saved_voice(request.voice_id)
        if not saved_voice or saved_voice.user_id != user_id:
            raise HTTPException(status_code=404, detail="Voice not found")

    app_state.voice_service.set_selected_voice(user_id, request.voice_id)
    return SelectedVoiceResponse(user_id=user_id, voice_id=request.voice_id)


@router.delete("/voices/{voice_id}")
async def delete_voice(voice_id: str):
    app_state = get_app_state()
    user_id = get_user_preferences().user_id

    if not await app_state.voice_service.delete_user_voice(voice_id):
        raise HTTPException(status_code=404, detail="Voice not found")

    if app_state.voice_service.get_selected_voice(user_id) == voice_id:
        app_state.voice_service.set_selected_voice(user_id, None)

    return {"message": "Voice deleted"}


@router.post("/voices/{voice_id}/reclone", response_model=SelectedVoiceResponse)
async def reclone_voice(voice_id: str):
    """Re-clone an expired voice from its stored sample and select the new voice"""
    user_id = get_user_preferences().user_id
    new_voice_id = await get_app_state().voice_service.reclone_and_update_voice(voice_id, user_id)
    if not new_voice_id:
        raise HTTPException(status_code=400, detail="Voice could not be re-cloned")
    return SelectedVoiceResponse(user_id=user_id, voice_id=new_voice_id)

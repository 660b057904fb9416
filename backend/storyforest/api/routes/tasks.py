import logging
from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, ValidationError

from ...app import get_app_state
from ...models.enums import TaskKind
from ...models.tasks import BackgroundTask, NarrationResult, QueueState

logger = logging.getLogger(__name__)

router = APIRouter()


class EnqueueTaskRequest(BaseModel):
    voice_id: str
    kind: TaskKind
    book_id: Optional[str] = None
    saved_voice_id: Optional[str] = None


@router.post("/tasks", response_model=QueueState)
async def enqueue_task(request: EnqueueTaskRequest):
    """Append a narration task to the background queue"""
    try:
        task = BackgroundTask(**request.model_dump())
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    app_state = get_app_state()
    if task.book_id and not app_state.store.get_book(task.book_id, include_pages=False):
        raise HTTPException(status_code=404, detail="Book not found")

    app_state.generator.enqueue(task)
    return app_state.generator.get_state()


@router.get("/tasks/state", response_model=QueueState)
async def get_queue_state():
    return get_app_state().generator.get_state()


@router.get("/tasks/last-result", response_model=Optional[NarrationResult])
async def get_last_result():
    """Page counts of the most recently finished task"""
    return get_app_state().generator.last_result

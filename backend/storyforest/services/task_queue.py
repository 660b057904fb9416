import asyncio
import logging
from collections import deque
from contextlib import asynccontextmanager
from typing import AsyncIterator, Deque, List, Optional

from ..models.enums import GenerationPhase
from ..models.progress import QueueStateCallback
from ..models.tasks import BackgroundTask, GenerationProgress, NarrationResult, QueueState
from .narration_service import NarrationService
from .voice_service import VoiceService

logger = logging.getLogger(__name__)


class TaskQueue:
    """FIFO of pending background narration tasks"""

    def __init__(self):
        self._tasks: Deque[BackgroundTask] = deque()

    def push(self, task: BackgroundTask):
        self._tasks.append(task)

    def pop(self) -> Optional[BackgroundTask]:
        if not self._tasks:
            return None
        return self._tasks.popleft()

    def snapshot(self) -> List[BackgroundTask]:
        return list(self._tasks)

    def clear(self):
        self._tasks.clear()

    def __len__(self) -> int:
        return len(self._tasks)


class BackgroundAudioGenerator:
    """
    Single worker that drains the task queue one task at a time.

    Each task narrates a book (or the whole library) with a provider voice and then deletes
    that voice to free its provider slot. Re-clone tasks first clone a temporary voice from a
    saved sample and store the audio under the saved voice's id. The voice is deleted on every
    exit path. A failing task is logged and dropped; the next task still runs.

    All state is mutated on the event loop thread only.
    """

    def __init__(
        self,
        queue: TaskQueue,
        narration: NarrationService,
        voice_provider,
        voice_service: VoiceService,
        done_display_seconds: float = 1.5,
    ):
        self.queue = queue
        self.narration = narration
        self.voice_provider = voice_provider
        self.voice_service = voice_service
        self.done_display_seconds = done_display_seconds

        self.progress: Optional[GenerationProgress] = None
        self.last_result: Optional[NarrationResult] = None
        self._busy = False
        self._current: Optional[asyncio.Task] = None
        self._listeners: List[QueueStateCallback] = []

    @property
    def is_generating(self) -> bool:
        return self._busy

    def get_state(self) -> QueueState:
        return QueueState(
            is_generating=self._busy,
            pending_tasks=self.queue.snapshot(),
            progress=self.progress,
        )

    def add_listener(self, callback: QueueStateCallback):
        self._listeners.append(callback)

    def remove_listener(self, callback: QueueStateCallback):
        try:
            self._listeners.remove(callback)
        except ValueError:
            pass

    def _notify_state(self):
        state = self.get_state()
        for callback in list(self._listeners):
            try:
                callback(state)
            except Exception as e:
                logger.warning(f"Queue state listener failed: {e}")

    def _set_progress(self, progress: Optional[GenerationProgress]):
        self.progress = progress
        self._notify_state()

    def enqueue(self, task: BackgroundTask):
        """Append a task to the tail of the queue and start the worker if it is idle"""
        self.queue.push(task)
        logger.info(f"Queued {task.kind.value} task for voice {task.voice_id} ({len(self.queue)} pending)")
        self._notify_state()
        self._run_next()

    def _run_next(self):
        if self._busy or len(self.queue) == 0:
            return

        task = self.queue.pop()
        self._busy = True
        self._notify_state()
        self._current = asyncio.create_task(self._process(task))

    async def _process(self, task: BackgroundTask):
        try:
            logger.info(f"Starting task: kind={task.kind.value} book_id={task.book_id} voice_id={task.voice_id}")
            await self._execute(task)
            logger.info(f"Task complete: kind={task.kind.value} book_id={task.book_id}")
        except Exception as e:
            logger.error(f"Error processing task {task.kind.value} for voice {task.voice_id}: {e}", exc_info=True)
        finally:
            self._busy = False
            self._current = None
            self._show_done()
            self._run_next()

    def _show_done(self):
        marker = GenerationProgress(phase=GenerationPhase.DONE)
        self._set_progress(marker)

        if self.done_display_seconds <= 0:
            self._clear_done(marker)
            return
        asyncio.get_running_loop().call_later(self.done_display_seconds, self._clear_done, marker)

    def _clear_done(self, marker: GenerationProgress):
        # A newer task may already be reporting progress
        if self.progress is marker:
            self._set_progress(None)

    async def _execute(self, task: BackgroundTask):
        if task.kind.needs_reclone:
            async with self._temporary_clone(task.saved_voice_id) as temp_voice_id:
                await self._generate(task, temp_voice_id, storage_voice_key=task.saved_voice_id)
        else:
            async with self._voice_slot(task.voice_id) as voice_id:
                await self._generate(task, voice_id, storage_voice_key=voice_id)

    async def _generate(self, task: BackgroundTask, voice_id: str, storage_voice_key: str):
        if task.kind.covers_library:
            self.last_result = await self.narration.generate_all_books_audio(
                voice_id=voice_id,
                storage_voice_key=storage_voice_key,
                on_progress=self._set_progress,
            )
        else:
            self.last_result = await self.narration.generate_book_audio(
                task.book_id,
                voice_id=voice_id,
                storage_voice_key=storage_voice_key,
                on_progress=self._set_progress,
            )

    @asynccontextmanager
    async def _voice_slot(self, voice_id: str) -> AsyncIterator[str]:
        """Hold a provider voice for the duration of the block and delete it on exit"""
        try:
            yield voice_id
        finally:
            deleting = (
                self.progress.model_copy(update={"phase": GenerationPhase.DELETING})
                if self.progress
                else GenerationProgress(phase=GenerationPhase.DELETING)
            )
            self._set_progress(deleting)
            try:
                logger.info(f"Deleting voice slot {voice_id}")
                await self.voice_provider.delete_voice(voice_id)
            except Exception as e:
                logger.error(f"Failed to delete voice {voice_id}, provider slot might be stuck: {e}")

    @asynccontextmanager
    async def _temporary_clone(self, saved_voice_id: str) -> AsyncIterator[str]:
        """Clone a temporary voice from a saved sample, deleted again on exit"""
        self._set_progress(GenerationProgress(phase=GenerationPhase.CLONING))
        temp_voice_id = await self.voice_service.reclone_voice_from_sample(saved_voice_id)
        logger.info(f"Re-cloned saved voice {saved_voice_id} as temporary voice {temp_voice_id}")

        async with self._voice_slot(temp_voice_id):
            yield temp_voice_id

    async def join(self):
        """Wait until the queue is drained and the worker is idle"""
        while self._current is not None:
            await asyncio.shield(self._current)

    async def shutdown(self):
        """Drop pending tasks and stop the running one; used when the application exits"""
        self.queue.clear()
        current = self._current
        if current is not None and not current.done():
            current.cancel()
            try:
                await current
            except asyncio.CancelledError:
                pass
        self._notify_state()

import asyncio
import logging
from typing import Optional, List, Set
from datetime import datetime, timezone

from .core.config import get_settings
from .models.tasks import PreloadProgress, PreparationProgress, QueueState
from .models.websocket import WSMessage, WSMessageType
from .services.audio_cache import AudioCache
from .services.audio_preload_service import AudioPreloadService
from .services.elevenlabs_service import ElevenLabsService
from .services.library_preparation_service import LibraryPreparationService
from .services.library_store import LibraryStore
from .services.narration_service import NarrationService
from .services.playback_service import PlaybackService
from .services.storage_service import ObjectStorage
from .services.task_queue import BackgroundAudioGenerator, TaskQueue
from .services.voice_service import VoiceService

logger = logging.getLogger(__name__)


class AppState:
    """Singleton app state that wires the narration services together"""

    _instance = None
    _initialized = False

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(AppState, cls).__new__(cls)
        return cls._instance

    def __init__(self):
        if not self._initialized:
            settings = get_settings()

            self.store = LibraryStore(settings.library_db_path)
            self.storage = ObjectStorage(
                settings.media_path,
                public_base_url=settings.PUBLIC_MEDIA_URL,
                timeout=settings.HTTP_TIMEOUT_SECONDS,
            )
            self.voice_provider = ElevenLabsService()
            self.voice_service = VoiceService(self.store, self.storage, self.voice_provider)
            self.narration = NarrationService(self.store, self.storage, self.voice_provider)

            self.generator = BackgroundAudioGenerator(
                TaskQueue(),
                self.narration,
                self.voice_provider,
                self.voice_service,
                done_display_seconds=settings.PROGRESS_DONE_DISPLAY_SECONDS,
            )
            self.generator.add_listener(self._handle_queue_update)

            self.audio_cache = AudioCache()
            self.preload = AudioPreloadService(
                self.audio_cache,
                self.storage,
                self.store,
                max_concurrency=settings.PRELOAD_MAX_CONCURRENCY,
            )
            self.playback = PlaybackService(self.audio_cache, self.store, self.voice_provider)
            self.preparation = LibraryPreparationService(self.store, self.narration, self.preload)
            self._preparation_task: Optional[asyncio.Task] = None

            # WebSocket connections
            self.websocket_connections: List = []
            self._broadcast_tasks: Set[asyncio.Task] = set()

            AppState._initialized = True

    @property
    def is_preparing(self) -> bool:
        return self._preparation_task is not None and not self._preparation_task.done()

    def start_preparation(self, voice_id: Optional[str], language: str, user_id: Optional[str]) -> asyncio.Task:
        """Start a library preparation run in the background"""
        if self.is_preparing:
            raise RuntimeError("Library preparation is already running")

        async def run():
            try:
                await self.preparation.prepare(
                    voice_id=voice_id,
                    language=language,
                    on_progress=self.handle_preparation_progress,
                    user_id=user_id,
                )
            except Exception as e:
                logger.error(f"Background library preparation failed: {e}")
                self._schedule_broadcast(WSMessage(type=WSMessageType.ERROR, data={"message": str(e)}))

        self._preparation_task = asyncio.create_task(run())
        return self._preparation_task

    async def shutdown(self):
        """Stop background work and remove cached audio"""
        await self.generator.shutdown()

        if self.is_preparing:
            self._preparation_task.cancel()
            try:
                await self._preparation_task
            except asyncio.CancelledError:
                pass

        try:
            self.audio_cache.cleanup()
        except Exception as e:
            logger.warning(f"Error cleaning up audio cache: {e}")

    # WebSocket management
    def add_websocket_connection(self, websocket):
        """Add WebSocket connection"""
        self.websocket_connections.append(websocket)
        logger.info(f"Added WebSocket connection")

    def remove_websocket_connection(self, websocket):
        """Remove WebSocket connection"""
        try:
            self.websocket_connections.remove(websocket)
            logger.info(f"Removed WebSocket connection")
        except ValueError:
            pass

    async def broadcast_message(self, message: WSMessage):
        """Broadcast message to all WebSocket connections"""
        connections = self.websocket_connections.copy()
        for websocket in connections:
            try:
                await websocket.send_text(message.model_dump_json())
            except Exception as e:
                logger.warning(f"Failed to send message to WebSocket: {e}")
                # Remove failed connection
                try:
                    self.websocket_connections.remove(websocket)
                except ValueError:
                    pass

    def _schedule_broadcast(self, message: WSMessage):
        if not self.websocket_connections:
            return
        task = asyncio.create_task(self.broadcast_message(message))
        # The loop only keeps weak references to tasks
        self._broadcast_tasks.add(task)
        task.add_done_callback(self._broadcast_tasks.discard)

    def _handle_queue_update(self, state: QueueState):
        """Forward queue state changes from the background generator"""
        self._schedule_broadcast(
            WSMessage(
                type=WSMessageType.QUEUE_UPDATE,
                data={
                    **state.model_dump(mode="json"),
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                },
            )
        )

    def handle_preload_progress(self, progress: PreloadProgress):
        self._schedule_broadcast(
            WSMessage(
                type=WSMessageType.PRELOAD_PROGRESS,
                data=progress.model_dump(mode="json"),
            )
        )

    def handle_preparation_progress(self, progress: PreparationProgress):
        self._schedule_broadcast(
            WSMessage(
                type=WSMessageType.PREPARATION_PROGRESS,
                data=progress.model_dump(mode="json"),
            )
        )


# Singleton instance
def get_app_state() -> AppState:
    """Get the singleton app state instance"""
    return AppState()

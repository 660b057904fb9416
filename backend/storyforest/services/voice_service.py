import logging
import time
from typing import List, Optional, Tuple

from ..models.enums import TaskKind
from ..models.library import SavedVoice
from ..models.tasks import BackgroundTask
from .library_store import LibraryStore
from .storage_service import ObjectStorage

logger = logging.getLogger(__name__)


class VoiceSampleUnavailableError(LookupError):
    """Exception raised when a saved voice has no stored sample to re-clone from"""

    pass


def voice_sample_path(user_id: str, voice_id: str) -> str:
    return f"voice_samples/{user_id}/{voice_id}/sample.webm"


class VoiceService:
    """Saved voices, their recorded samples, and the user's selected narration voice"""

    def __init__(self, store: LibraryStore, storage: ObjectStorage, voice_provider):
        self.store = store
        self.storage = storage
        self.voice_provider = voice_provider

    def save_voice(
        self,
        user_id: str,
        voice_id: str,
        name: str,
        sample_url: Optional[str] = None,
        sample_storage_path: Optional[str] = None,
    ) -> SavedVoice:
        voice = SavedVoice(
            id=voice_id,
            name=name,
            user_id=user_id,
            sample_url=sample_url,
            sample_storage_path=sample_storage_path,
        )
        self.store.save_voice(voice)
        return voice

    def get_saved_voices(self, user_id: str) -> List[SavedVoice]:
        """Saved voices of a user, newest first"""
        voices = self.store.list_voices(user_id)
        voices.sort(key=lambda voice: voice.created_at, reverse=True)
        return voices

    def get_saved_voice(self, voice_id: str) -> Optional[SavedVoice]:
        return self.store.get_voice(voice_id)

    async def delete_user_voice(self, voice_id: str) -> bool:
        """Delete a voice from the provider (best effort) and then its record"""
        try:
            await self.voice_provider.delete_voice(voice_id)
        except Exception as e:
            logger.warning(f"Failed to delete voice {voice_id} from provider (may already be deleted): {e}")

        return self.store.delete_voice(voice_id)

    async def upload_voice_sample(self, user_id: str, voice_id: str, sample: bytes) -> str:
        """Store a recorded sample permanently and return its storage path"""
        storage_path = voice_sample_path(user_id, voice_id)
        await self.storage.upload(storage_path, sample)
        return storage_path

    async def load_voice_sample(self, saved_voice_id: str) -> Tuple[SavedVoice, bytes]:
        saved_voice = self.store.get_voice(saved_voice_id)
        if not saved_voice or not saved_voice.sample_storage_path:
            raise VoiceSampleUnavailableError(f"No stored voice sample found for {saved_voice_id}")

        sample = await self.storage.read(saved_voice.sample_storage_path)
        return saved_voice, sample

    async def reclone_voice_from_sample(self, saved_voice_id: str) -> str:
        """Clone a temporary provider voice from a saved voice's sample and return its id"""
        saved_voice, sample = await self.load_voice_sample(saved_voice_id)
        return await self.voice_provider.clone_voice(f"temp_{saved_voice.name}_{int(time.time() * 1000)}", sample)

    async def reclone_and_update_voice(self, old_voice_id: str, user_id: str) -> Optional[str]:
        """
        Re-clone an expired voice and move its record and the user's selection to the new id.
        Returns the new voice id, or None when re-cloning is not possible.
        """
        try:
            saved_voice = self.store.get_voice(old_voice_id)
            if not saved_voice or not saved_voice.sample_storage_path:
                logger.warning(f"Cannot re-clone {old_voice_id}: no stored sample")
                return None

            logger.info(f"Re-cloning expired voice: {saved_voice.name}")
            new_voice_id = await self.reclone_voice_from_sample(old_voice_id)

            self.save_voice(user_id, new_voice_id, saved_voice.name, sample_storage_path=saved_voice.sample_storage_path)
            self.set_selected_voice(user_id, new_voice_id)
            self.store.delete_voice(old_voice_id)

            logger.info(f"Re-clone successful. New voice id: {new_voice_id}")
            return new_voice_id
        except Exception as e:
            logger.error(f"Re-clone of {old_voice_id} failed: {e}")
            return None

    def get_selected_voice(self, user_id: str) -> Optional[str]:
        return self.store.get_user_settings(user_id).selected_voice_id

    def set_selected_voice(self, user_id: str, voice_id: Optional[str]):
        """Select a narration voice; None selects the default narrator"""
        settings = self.store.get_user_settings(user_id)
        settings.selected_voice_id = voice_id
        self.store.save_user_settings(settings)

    async def register_voice(self, user_id: str, name: str, sample: bytes) -> Tuple[SavedVoice, BackgroundTask]:
        """
        Clone a recorded voice, keep its sample for later re-cloning, and save it.
        Returns the saved voice and the library-wide narration task to enqueue for it.
        """
        voice_id = await self.voice_provider.clone_voice(name, sample)
        storage_path = await self.upload_voice_sample(user_id, voice_id, sample)
        saved_voice = self.save_voice(
            user_id,
            voice_id,
            name,
            sample_url=self.storage.url_for(storage_path),
            sample_storage_path=storage_path,
        )
        task = BackgroundTask(voice_id=voice_id, kind=TaskKind.ALL)
        return saved_voice, task

    def queue_audio_for_new_book(self, user_id: str, book_id: str) -> Optional[BackgroundTask]:
        """Return the narration task for a newly published book in the user's selected voice, if any"""
        try:
            selected_voice_id = self.get_selected_voice(user_id)
            if not selected_voice_id:
                return None

            saved_voice = self.store.get_voice(selected_voice_id)
            if not saved_voice or not saved_voice.sample_storage_path:
                return None

            return BackgroundTask(
                book_id=book_id,
                voice_id=selected_voice_id,
                kind=TaskKind.SINGLE_RECLONE,
                saved_voice_id=selected_voice_id,
            )
        except Exception as e:
            logger.warning(f"Skipped queueing narration for new book {book_id}: {e}")
            return None

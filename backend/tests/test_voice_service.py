import asyncio

from storyforest.models.enums import TaskKind
from storyforest.services.library_store import LibraryStore
from storyforest.services.storage_service import ObjectStorage
from storyforest.services.voice_service import VoiceSampleUnavailableError, VoiceService, voice_sample_path


class _FakeProvider:
    def __init__(self, fail_delete=False):
        self.cloned = []
        self.deleted = []
        self.fail_delete = fail_delete

    async def clone_voice(self, name, samples, description="Storyforest voice clone"):
        self.cloned.append((name, samples))
        return f"voice-{len(self.cloned)}"

    async def delete_voice(self, voice_id):
        self.deleted.append(voice_id)
        if self.fail_delete:
            raise RuntimeError("already gone")


def _service(tmp_path, provider=None):
    store = LibraryStore(tmp_path / "library")
    storage = ObjectStorage(tmp_path / "media")
    return VoiceService(store, storage, provider or _FakeProvider())


def test_register_voice_keeps_sample_and_returns_library_task(tmp_path):
    service = _service(tmp_path)

    saved_voice, task = asyncio.run(service.register_voice("u1", "Mom", b"sample-bytes"))

    assert saved_voice.id == "voice-1"
    assert saved_voice.sample_storage_path == voice_sample_path("u1", "voice-1")
    assert saved_voice.sample_url == "/media/voice_samples/u1/voice-1/sample.webm"
    assert service.storage.exists(saved_voice.sample_storage_path)
    assert task.kind == TaskKind.ALL
    assert task.voice_id == "voice-1"
    assert [voice.id for voice in service.get_saved_voices("u1")] == ["voice-1"]


def test_reclone_from_sample_uses_stored_bytes(tmp_path):
    provider = _FakeProvider()
    service = _service(tmp_path, provider)
    saved_voice, _ = asyncio.run(service.register_voice("u1", "Mom", b"sample-bytes"))

    temp_voice_id = asyncio.run(service.reclone_voice_from_sample(saved_voice.id))

    assert temp_voice_id == "voice-2"
    name, sample = provider.cloned[-1]
    assert name.startswith("temp_Mom_")
    assert sample == b"sample-bytes"


def test_reclone_without_sample_raises(tmp_path):
    service = _service(tmp_path)
    service.save_voice("u1", "v1", "No Sample")

    try:
        asyncio.run(service.reclone_voice_from_sample("v1"))
    except VoiceSampleUnavailableError:
        pass
    else:
        raise AssertionError("voice without sample should not re-clone")


def test_reclone_and_update_moves_selection(tmp_path):
    service = _service(tmp_path)
    saved_voice, _ = asyncio.run(service.register_voice("u1", "Mom", b"sample"))
    service.set_selected_voice("u1", saved_voice.id)

    new_voice_id = asyncio.run(service.reclone_and_update_voice(saved_voice.id, "u1"))

    assert new_voice_id == "voice-2"
    assert service.get_selected_voice("u1") == "voice-2"
    assert service.get_saved_voice(saved_voice.id) is None
    assert service.get_saved_voice("voice-2").sample_storage_path == saved_voice.sample_storage_path


def test_reclone_and_update_returns_none_without_sample(tmp_path):
    service = _service(tmp_path)
    service.save_voice("u1", "v1", "No Sample")

    assert asyncio.run(service.reclone_and_update_voice("v1", "u1")) is None


def test_delete_user_voice_tolerates_provider_failure(tmp_path):
    provider = _FakeProvider(fail_delete=True)
    service = _service(tmp_path, provider)
    service.save_voice("u1", "v1", "Dad")

    assert asyncio.run(service.delete_user_voice("v1"))
    assert provider.deleted == ["v1"]
    assert service.get_saved_voice("v1") is None


def test_queue_audio_for_new_book_uses_selected_voice(tmp_path):
    service = _service(tmp_path)
    saved_voice, _ = asyncio.run(service.register_voice("u1", "Mom", b"sample"))

    assert service.queue_audio_for_new_book("u1", "b1") is None

    service.set_selected_voice("u1", saved_voice.id)
    task = service.queue_audio_for_new_book("u1", "b1")

    assert task.kind == TaskKind.SINGLE_RECLONE
    assert task.book_id == "b1"
    assert task.saved_voice_id == saved_voice.id


def test_queue_audio_for_new_book_skips_voice_without_sample(tmp_path):
    service = _service(tmp_path)
    service.save_voice("u1", "v1", "No Sample")
    service.set_selected_voice("u1", "v1")

    assert service.queue_audio_for_new_book("u1", "b1") is None

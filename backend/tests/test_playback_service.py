import asyncio

from storyforest.models.library import Book, Page, PageTranslation
from storyforest.services.audio_cache import AudioCache
from storyforest.services.playback_service import PlaybackService


class _FakeStore:
    def __init__(self, translations=None):
        self.translations = translations or {}

    def get_translation(self, book_id, language):
        return self.translations.get((book_id, language))


class _FakeProvider:
    def __init__(self, gate=None):
        self.calls = []
        self.gate = gate

    async def synthesize(self, text, voice_id=None):
        self.calls.append((text, voice_id))
        if self.gate is not None:
            await self.gate.wait()
        return f"live:{text}".encode()


def _book():
    return Book(
        id="b1",
        title="The Brave Fox",
        pages=[Page(page_number=1, text="Once upon a time"), Page(page_number=2, text="")],
    )


def test_cached_audio_is_served_without_synthesis(tmp_path):
    cache = AudioCache(tmp_path / "cache")
    cache.store("b1", 1, "default", b"cached-mp3")
    provider = _FakeProvider()
    service = PlaybackService(cache, _FakeStore(), provider)

    audio = asyncio.run(service.resolve_page_audio(_book(), 1, "English"))

    assert audio.source == "cache"
    assert audio.data == b"cached-mp3"
    assert provider.calls == []


def test_cache_miss_synthesizes_live_without_caching(tmp_path):
    cache = AudioCache(tmp_path / "cache")
    provider = _FakeProvider()
    service = PlaybackService(cache, _FakeStore(), provider)

    audio = asyncio.run(service.resolve_page_audio(_book(), 1, "English", voice_id="voice-1"))

    assert audio.source == "live"
    assert audio.voice_key == "voice-1"
    assert provider.calls == [("Once upon a time", "voice-1")]
    assert len(cache) == 0


def test_translated_key_reads_translation_text(tmp_path):
    store = _FakeStore({("b1", "Korean"): PageTranslation(book_id="b1", language="Korean", pages={1: "옛날 옛적에"})})
    provider = _FakeProvider()
    service = PlaybackService(AudioCache(tmp_path / "cache"), store, provider)

    audio = asyncio.run(service.resolve_page_audio(_book(), 1, "Korean"))

    assert audio.voice_key == "default_Korean"
    assert provider.calls == [("옛날 옛적에", None)]


def test_empty_page_returns_none(tmp_path):
    service = PlaybackService(AudioCache(tmp_path / "cache"), _FakeStore(), _FakeProvider())

    assert asyncio.run(service.resolve_page_audio(_book(), 2, "English")) is None
    assert asyncio.run(service.resolve_page_audio(_book(), 99, "English")) is None


def test_superseded_request_is_discarded(tmp_path):
    async def scenario():
        gate = asyncio.Event()
        provider = _FakeProvider(gate=gate)
        cache = AudioCache(tmp_path / "cache")
        cache.store("b1", 1, "default", b"page-one")
        service = PlaybackService(cache, _FakeStore(), provider)
        book = Book(
            id="b1",
            title="The Brave Fox",
            pages=[Page(page_number=1, text="one"), Page(page_number=3, text="three")],
        )

        slow = asyncio.create_task(service.resolve_page_audio(book, 3, "English", listener_id="tablet"))
        await asyncio.sleep(0)
        fast = await service.resolve_page_audio(book, 1, "English", listener_id="tablet")
        gate.set()
        return await slow, fast

    slow, fast = asyncio.run(scenario())

    assert slow is None
    assert fast.data == b"page-one"


def test_listeners_do_not_supersede_each_other(tmp_path):
    service = PlaybackService(AudioCache(tmp_path / "cache"), _FakeStore(), _FakeProvider())

    first = service.begin_request("tablet")
    service.begin_request("phone")

    assert service.is_current("tablet", first)

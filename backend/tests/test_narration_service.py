import asyncio

from storyforest.models.enums import GenerationPhase
from storyforest.models.library import Book, Page, PageTranslation
from storyforest.services.library_store import LibraryStore
from storyforest.services.narration_service import NarrationService, page_audio_path
from storyforest.services.storage_service import ObjectStorage


class _FakeProvider:
    def __init__(self, fail_texts=()):
        self.calls = []
        self.fail_texts = set(fail_texts)

    async def synthesize(self, text, voice_id=None):
        self.calls.append((text, voice_id))
        if text in self.fail_texts:
            raise RuntimeError("quota exceeded")
        return f"{voice_id}:{text}".encode()


def _setup(tmp_path, provider=None):
    store = LibraryStore(tmp_path / "library")
    storage = ObjectStorage(tmp_path / "media")
    provider = provider or _FakeProvider()
    return store, storage, provider, NarrationService(store, storage, provider)


def _book(book_id="b1", texts=("one", "two", "three")):
    return Book(
        id=book_id,
        title=f"Book {book_id}",
        pages=[Page(page_number=n, text=text) for n, text in enumerate(texts, start=1)],
    )


def test_page_audio_path():
    assert page_audio_path("b1", 3, "voice-1") == "books/b1/pages/3_audio_voice-1.mp3"


def test_generate_book_audio_stores_under_voice_key(tmp_path):
    store, storage, provider, narration = _setup(tmp_path)
    store.save_book(_book())
    reports = []

    result = asyncio.run(
        narration.generate_book_audio("b1", voice_id="temp-1", storage_voice_key="saved-1", on_progress=reports.append)
    )

    assert result.generated == 3
    assert provider.calls == [("one", "temp-1"), ("two", "temp-1"), ("three", "temp-1")]
    page = store.get_page("b1", 2)
    assert page.audio_urls["saved-1"] == "/media/books/b1/pages/2_audio_saved-1.mp3"
    assert storage.exists("books/b1/pages/2_audio_saved-1.mp3")
    assert {report.phase for report in reports} == {GenerationPhase.GENERATING, GenerationPhase.SAVING}
    assert reports[-1].current_page == 3


def test_existing_audio_is_skipped(tmp_path):
    store, storage, provider, narration = _setup(tmp_path)
    store.save_book(_book())
    store.set_page_audio_url("b1", 1, "voice-1", "/media/existing.mp3")

    result = asyncio.run(narration.generate_book_audio("b1", voice_id="voice-1"))

    assert result.generated == 2
    assert result.skipped == 1
    assert [text for text, _ in provider.calls] == ["two", "three"]


def test_default_voice_uses_default_key(tmp_path):
    store, storage, provider, narration = _setup(tmp_path)
    store.save_book(_book(texts=("one",)))

    asyncio.run(narration.generate_book_audio("b1"))

    assert provider.calls == [("one", None)]
    assert "default" in store.get_page("b1", 1).audio_urls


def test_failed_page_does_not_stop_the_book(tmp_path):
    store, storage, provider, narration = _setup(tmp_path, _FakeProvider(fail_texts={"two"}))
    store.save_book(_book())

    result = asyncio.run(narration.generate_book_audio("b1", voice_id="v1"))

    assert result.generated == 2
    assert result.failed == 1
    assert "v1" not in store.get_page("b1", 2).audio_urls
    assert "v1" in store.get_page("b1", 3).audio_urls


def test_missing_book_raises(tmp_path):
    _, _, _, narration = _setup(tmp_path)
    try:
        asyncio.run(narration.generate_book_audio("missing", voice_id="v1"))
    except LookupError:
        pass
    else:
        raise AssertionError("missing book should raise")


def test_generate_all_books_audio(tmp_path):
    store, storage, provider, narration = _setup(tmp_path)
    store.save_book(_book("b1", texts=("a",)))
    store.save_book(_book("b2", texts=("b", "c")))

    result = asyncio.run(narration.generate_all_books_audio(voice_id="v1"))

    assert result.generated == 3
    assert "v1" in store.get_page("b2", 2).audio_urls


def test_generate_translated_audio_uses_default_narrator(tmp_path):
    store, storage, provider, narration = _setup(tmp_path)
    store.save_book(_book("b1", texts=("one", "two")))
    store.save_book(_book("b2", texts=("three",)))
    store.save_translation(PageTranslation(book_id="b1", language="Korean", pages={1: "하나", 2: "둘"}))

    result = asyncio.run(narration.generate_translated_audio("Korean"))

    assert result.generated == 2
    assert provider.calls == [("하나", None), ("둘", None)]
    assert "default_Korean" in store.get_page("b1", 1).audio_urls
    assert store.get_page("b2", 1).audio_urls == {}

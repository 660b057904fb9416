import asyncio

from storyforest.models.enums import GenerationPhase, TaskKind
from storyforest.models.tasks import BackgroundTask, NarrationResult
from storyforest.services.task_queue import BackgroundAudioGenerator, TaskQueue


class _FakeProvider:
    def __init__(self, fail_delete=False):
        self.deleted = []
        self.fail_delete = fail_delete

    async def delete_voice(self, voice_id):
        self.deleted.append(voice_id)
        if self.fail_delete:
            raise RuntimeError("provider unavailable")


class _FakeNarration:
    def __init__(self, fail_books=(), gate=None):
        self.calls = []
        self.fail_books = set(fail_books)
        self.gate = gate
        self.active = 0
        self.max_active = 0

    async def _run(self, call):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            self.calls.append(call)
            if self.gate is not None:
                await self.gate.wait()
            else:
                await asyncio.sleep(0)
            if call[1] in self.fail_books:
                raise RuntimeError("synthesis failed")
            return NarrationResult(generated=1)
        finally:
            self.active -= 1

    async def generate_book_audio(self, book_id, voice_id=None, storage_voice_key=None, on_progress=None):
        return await self._run(("book", book_id, voice_id, storage_voice_key))

    async def generate_all_books_audio(self, voice_id=None, storage_voice_key=None, on_progress=None):
        return await self._run(("all", None, voice_id, storage_voice_key))


class _FakeVoiceService:
    def __init__(self, temp_voice_id="temp-voice", fail=False):
        self.temp_voice_id = temp_voice_id
        self.fail = fail
        self.recloned = []

    async def reclone_voice_from_sample(self, saved_voice_id):
        self.recloned.append(saved_voice_id)
        if self.fail:
            raise LookupError("no sample")
        return self.temp_voice_id


def _make_generator(narration=None, provider=None, voice_service=None, done_display_seconds=0):
    return BackgroundAudioGenerator(
        TaskQueue(),
        narration or _FakeNarration(),
        provider or _FakeProvider(),
        voice_service or _FakeVoiceService(),
        done_display_seconds=done_display_seconds,
    )


def test_task_queue_is_fifo():
    queue = TaskQueue()
    first = BackgroundTask(voice_id="v1", kind=TaskKind.ALL)
    second = BackgroundTask(voice_id="v2", kind=TaskKind.SINGLE, book_id="b1")
    queue.push(first)
    queue.push(second)

    assert len(queue) == 2
    assert queue.pop() is first
    assert queue.pop() is second
    assert queue.pop() is None


def test_background_task_requires_book_for_single_kinds():
    try:
        BackgroundTask(voice_id="v1", kind=TaskKind.SINGLE)
    except ValueError:
        pass
    else:
        raise AssertionError("single task without book_id should be rejected")


def test_background_task_requires_saved_voice_for_reclone_kinds():
    try:
        BackgroundTask(voice_id="v1", kind=TaskKind.ALL_RECLONE)
    except ValueError:
        pass
    else:
        raise AssertionError("reclone task without saved_voice_id should be rejected")


def test_tasks_run_in_order_and_each_voice_is_deleted():
    narration = _FakeNarration()
    provider = _FakeProvider()
    generator = _make_generator(narration=narration, provider=provider)

    async def scenario():
        generator.enqueue(BackgroundTask(voice_id="v1", kind=TaskKind.SINGLE, book_id="b1"))
        generator.enqueue(BackgroundTask(voice_id="v2", kind=TaskKind.ALL))
        await generator.join()

    asyncio.run(scenario())

    assert narration.calls == [("book", "b1", "v1", "v1"), ("all", None, "v2", "v2")]
    assert provider.deleted == ["v1", "v2"]
    assert not generator.is_generating
    assert len(generator.queue) == 0


def test_only_one_task_runs_at_a_time():
    async def scenario():
        gate = asyncio.Event()
        narration = _FakeNarration(gate=gate)
        generator = _make_generator(narration=narration)

        generator.enqueue(BackgroundTask(voice_id="v1", kind=TaskKind.SINGLE, book_id="b1"))
        generator.enqueue(BackgroundTask(voice_id="v2", kind=TaskKind.SINGLE, book_id="b2"))
        generator.enqueue(BackgroundTask(voice_id="v3", kind=TaskKind.ALL))
        await asyncio.sleep(0.01)

        state = generator.get_state()
        assert state.is_generating
        assert [task.voice_id for task in state.pending_tasks] == ["v2", "v3"]

        gate.set()
        await generator.join()
        return narration

    narration = asyncio.run(scenario())
    assert narration.max_active == 1
    assert len(narration.calls) == 3


def test_failed_task_still_deletes_voice_and_queue_continues():
    narration = _FakeNarration(fail_books={"b1"})
    provider = _FakeProvider()
    generator = _make_generator(narration=narration, provider=provider)

    async def scenario():
        generator.enqueue(BackgroundTask(voice_id="v1", kind=TaskKind.SINGLE, book_id="b1"))
        generator.enqueue(BackgroundTask(voice_id="v2", kind=TaskKind.SINGLE, book_id="b2"))
        await generator.join()

    asyncio.run(scenario())

    assert provider.deleted == ["v1", "v2"]
    assert narration.calls[-1] == ("book", "b2", "v2", "v2")
    assert generator.last_result.generated == 1


def test_delete_failure_does_not_stop_the_queue():
    narration = _FakeNarration()
    provider = _FakeProvider(fail_delete=True)
    generator = _make_generator(narration=narration, provider=provider)

    async def scenario():
        generator.enqueue(BackgroundTask(voice_id="v1", kind=TaskKind.ALL))
        generator.enqueue(BackgroundTask(voice_id="v2", kind=TaskKind.ALL))
        await generator.join()

    asyncio.run(scenario())

    assert provider.deleted == ["v1", "v2"]
    assert len(narration.calls) == 2


def test_reclone_task_stores_under_saved_voice_and_deletes_temporary_voice():
    narration = _FakeNarration()
    provider = _FakeProvider()
    voice_service = _FakeVoiceService(temp_voice_id="temp-123")
    generator = _make_generator(narration=narration, provider=provider, voice_service=voice_service)

    async def scenario():
        generator.enqueue(
            BackgroundTask(voice_id="saved-1", kind=TaskKind.SINGLE_RECLONE, book_id="b9", saved_voice_id="saved-1")
        )
        await generator.join()

    asyncio.run(scenario())

    assert voice_service.recloned == ["saved-1"]
    assert narration.calls == [("book", "b9", "temp-123", "saved-1")]
    assert provider.deleted == ["temp-123"]


def test_failed_reclone_skips_generation_and_deletes_nothing():
    narration = _FakeNarration()
    provider = _FakeProvider()
    generator = _make_generator(
        narration=narration,
        provider=provider,
        voice_service=_FakeVoiceService(fail=True),
    )

    async def scenario():
        generator.enqueue(BackgroundTask(voice_id="s1", kind=TaskKind.ALL_RECLONE, saved_voice_id="s1"))
        generator.enqueue(BackgroundTask(voice_id="v2", kind=TaskKind.ALL))
        await generator.join()

    asyncio.run(scenario())

    assert narration.calls == [("all", None, "v2", "v2")]
    assert provider.deleted == ["v2"]


def test_listeners_see_deleting_and_done_phases():
    generator = _make_generator()
    states = []
    generator.add_listener(states.append)

    async def scenario():
        generator.enqueue(BackgroundTask(voice_id="v1", kind=TaskKind.ALL))
        await generator.join()

    asyncio.run(scenario())

    phases = [state.progress.phase for state in states if state.progress]
    assert GenerationPhase.DELETING in phases
    assert phases[-1] == GenerationPhase.DONE
    assert states[-1].progress is None
    assert generator.progress is None


def test_done_marker_is_cleared_after_display_delay():
    generator = _make_generator(done_display_seconds=0.01)

    async def scenario():
        generator.enqueue(BackgroundTask(voice_id="v1", kind=TaskKind.ALL))
        await generator.join()
        assert generator.progress.phase == GenerationPhase.DONE
        await asyncio.sleep(0.05)

    asyncio.run(scenario())

    assert generator.progress is None


def test_failing_listener_does_not_break_the_worker():
    narration = _FakeNarration()
    generator = _make_generator(narration=narration)

    def broken_listener(state):
        raise RuntimeError("listener bug")

    generator.add_listener(broken_listener)

    async def scenario():
        generator.enqueue(BackgroundTask(voice_id="v1", kind=TaskKind.ALL))
        await generator.join()

    asyncio.run(scenario())

    assert len(narration.calls) == 1


def test_shutdown_drops_pending_tasks_and_cancels_the_running_one():
    provider = _FakeProvider()

    async def scenario():
        narration = _FakeNarration(gate=asyncio.Event())
        generator = _make_generator(narration=narration, provider=provider)
        generator.enqueue(BackgroundTask(voice_id="v1", kind=TaskKind.ALL))
        generator.enqueue(BackgroundTask(voice_id="v2", kind=TaskKind.ALL))
        await asyncio.sleep(0.01)

        await generator.shutdown()
        return generator, narration

    generator, narration = asyncio.run(scenario())

    assert len(generator.queue) == 0
    assert len(narration.calls) == 1
    assert provider.deleted == ["v1"]


def test_failed_reclone_generation_still_deletes_temporary_voice():
    narration = _FakeNarration(fail_books={"b9"})
    provider = _FakeProvider()
    voice_service = _FakeVoiceService(temp_voice_id="temp-123")
    generator = _make_generator(narration=narration, provider=provider, voice_service=voice_service)

    async def scenario():
        generator.enqueue(
            BackgroundTask(voice_id="saved-1", kind=TaskKind.SINGLE_RECLONE, book_id="b9", saved_voice_id="saved-1")
        )
        generator.enqueue(BackgroundTask(voice_id="v2", kind=TaskKind.SINGLE, book_id="b2"))
        await generator.join()

    asyncio.run(scenario())

    assert provider.deleted == ["temp-123", "v2"]
    assert narration.calls == [("book", "b9", "temp-123", "saved-1"), ("book", "b2", "v2", "v2")]
    assert not generator.is_generating


def test_failed_library_reclone_generation_still_deletes_temporary_voice():
    class _FailingLibraryNarration(_FakeNarration):
        async def generate_all_books_audio(self, voice_id=None, storage_voice_key=None, on_progress=None):
            self.calls.append(("all", None, voice_id, storage_voice_key))
            raise RuntimeError("synthesis failed")

    narration = _FailingLibraryNarration()
    provider = _FakeProvider()
    generator = _make_generator(
        narration=narration,
        provider=provider,
        voice_service=_FakeVoiceService(temp_voice_id="temp-456"),
    )

    async def scenario():
        generator.enqueue(BackgroundTask(voice_id="saved-2", kind=TaskKind.ALL_RECLONE, saved_voice_id="saved-2"))
        await generator.join()

    asyncio.run(scenario())

    assert provider.deleted == ["temp-456"]
    assert narration.calls == [("all", None, "temp-456", "saved-2")]

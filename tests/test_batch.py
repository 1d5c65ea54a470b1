from __future__ import annotations

import asyncio
import threading

import pytest

from converter.conversion.batch import BatchCoordinator
from converter.conversion.models import ConversionTask, FormatId, ImageInput, ProgressStage
from converter.conversion.orchestrator import ConversionOrchestrator
from converter.conversion.progress import CancellationToken, ProgressStream
from converter.engine.loader import EngineLoader
from converter.errors import ConversionError, ErrorKind

from fakes import FakeEngine


def _inputs() -> list[ImageInput]:
    return [
        ImageInput(raw_bytes=b"\x89PNG" + b"\x00" * 60, declared_format=FormatId.PNG, source_name="a.png"),
        ImageInput(raw_bytes=b"BM" + b"\x00" * 62, declared_format=FormatId.BMP, source_name="b.bmp"),
    ]


def _tasks(*targets: str) -> list[ConversionTask]:
    return [ConversionTask(from_format=None, to_format=FormatId.parse(t)) for t in targets]


async def _coordinator(engine: FakeEngine, store=None) -> BatchCoordinator:
    loader = EngineLoader(factory=lambda: engine)
    await loader.load()
    return BatchCoordinator(ConversionOrchestrator(loader), store=store)


@pytest.mark.asyncio
async def test_runs_every_pair_input_major() -> None:
    engine = FakeEngine()
    coordinator = await _coordinator(engine)

    results = await coordinator.convert_batch(_inputs(), _tasks("jpeg", "webp", "gif"))

    assert len(results) == 6
    assert [(c[0], c[1]) for c in engine.calls] == [
        ("png", "jpeg"), ("png", "webp"), ("png", "gif"),
        ("bmp", "jpeg"), ("bmp", "webp"), ("bmp", "gif"),
    ]
    assert [r.source_name for r in results] == ["a.png"] * 3 + ["b.bmp"] * 3
    assert not coordinator.is_running


@pytest.mark.asyncio
async def test_progress_recomputed_before_each_unit() -> None:
    coordinator = await _coordinator(FakeEngine())
    stream = ProgressStream()

    await coordinator.convert_batch(_inputs()[:1], _tasks("jpeg", "webp", "gif", "tiff"), progress=stream)

    events = stream.drain()
    assert [e.progress for e in events] == [0, 25, 50, 75, 100]
    assert events[-1].stage is ProgressStage.COMPLETED
    assert all(e.file_index == 0 for e in events[:-1])


@pytest.mark.asyncio
async def test_stops_at_first_failing_unit() -> None:
    engine = FakeEngine(fail_on=3)
    coordinator = await _coordinator(engine)
    stream = ProgressStream()

    with pytest.raises(ConversionError) as excinfo:
        await coordinator.convert_batch(_inputs(), _tasks("jpeg", "webp", "gif"), progress=stream, batch_id="b1")

    assert excinfo.value.kind is ErrorKind.CONVERSION
    assert len(engine.calls) == 3
    job = coordinator.get_job("b1")
    assert job.status == "failed"
    assert job.completed_operations == 2
    assert "encoder exploded" in job.error
    assert stream.last.stage is ProgressStage.ERROR


@pytest.mark.asyncio
async def test_cancellation_between_units_discards_results() -> None:
    token = CancellationToken()

    def cancel_after_second(call_count: int) -> None:
        if call_count == 2:
            token.cancel()

    engine = FakeEngine(on_convert=cancel_after_second)
    coordinator = await _coordinator(engine)
    stream = ProgressStream()

    with pytest.raises(ConversionError) as excinfo:
        await coordinator.convert_batch(_inputs(), _tasks("jpeg", "webp", "gif"), token=token, progress=stream, batch_id="b2")

    assert excinfo.value.kind is ErrorKind.CANCELLED
    assert excinfo.value.detail == "2 of 6 operations completed"
    # the second unit ran to completion, the third never started
    assert len(engine.calls) == 2
    job = coordinator.get_job("b2")
    assert job.status == "cancelled"
    assert job.completed_operations == 2
    assert stream.last.stage is ProgressStage.CANCELLED


@pytest.mark.asyncio
async def test_cancel_method_stops_running_batch() -> None:
    holder: dict = {}
    engine = FakeEngine(on_convert=lambda n: holder["coordinator"].cancel())
    coordinator = await _coordinator(engine)
    holder["coordinator"] = coordinator

    with pytest.raises(ConversionError) as excinfo:
        await coordinator.convert_batch(_inputs(), _tasks("jpeg"))
    assert excinfo.value.kind is ErrorKind.CANCELLED
    assert len(engine.calls) == 1


@pytest.mark.asyncio
async def test_second_concurrent_batch_is_rejected() -> None:
    coordinator = await _coordinator(FakeEngine())
    first, second = await asyncio.gather(
        coordinator.convert_batch(_inputs(), _tasks("jpeg")),
        coordinator.convert_batch(_inputs(), _tasks("webp")),
        return_exceptions=True,
    )
    assert len(first) == 2
    assert isinstance(second, ConversionError)
    assert second.detail == "busy"


@pytest.mark.asyncio
async def test_empty_batch_completes_with_no_results() -> None:
    coordinator = await _coordinator(FakeEngine())
    assert await coordinator.convert_batch([], _tasks("jpeg"), batch_id="empty") == []
    assert coordinator.get_job("empty").status == "completed"


@pytest.mark.asyncio
async def test_job_status_is_persisted(store) -> None:
    coordinator = await _coordinator(FakeEngine(fail_on=2), store=store)
    with pytest.raises(ConversionError):
        await coordinator.convert_batch(_inputs(), _tasks("jpeg"), batch_id="persisted")

    fresh = BatchCoordinator(coordinator._orchestrator, store=store)
    job = fresh.get_job("persisted")
    assert job.status == "failed"
    assert job.total_operations == 2
    assert job.completed_operations == 1
    assert fresh.get_job("missing") is None


@pytest.mark.asyncio
async def test_rerunning_a_failed_batch_id_starts_from_zero(store) -> None:
    coordinator = await _coordinator(FakeEngine(fail_on=3), store=store)
    with pytest.raises(ConversionError):
        await coordinator.convert_batch(_inputs(), _tasks("jpeg", "webp", "gif"), batch_id="again")
    assert coordinator.get_job("again").completed_operations == 2

    stream = ProgressStream()
    results = await coordinator.convert_batch(_inputs(), _tasks("jpeg", "webp", "gif"), progress=stream, batch_id="again")

    assert len(results) == 6
    values = [e.progress for e in stream.drain()]
    assert values == sorted(values)
    assert values[0] == 0
    assert values[-1] == 100
    job = coordinator.get_job("again")
    assert job.status == "completed"
    assert job.completed_operations == job.total_operations == 6
    assert job.error is None
    assert store.get_batch("again")["completed_operations"] == 6


@pytest.mark.asyncio
async def test_results_hook_runs_before_completion_and_can_fail_the_batch() -> None:
    coordinator = await _coordinator(FakeEngine())
    seen: list = []

    async def record(results) -> None:
        seen.append((len(results), coordinator.get_job("hooked").status))

    await coordinator.convert_batch(_inputs(), _tasks("jpeg"), batch_id="hooked", on_results=record)
    assert seen == [(2, "processing")]

    async def broken(results) -> None:
        raise OSError("disk full")

    with pytest.raises(ConversionError) as excinfo:
        await coordinator.convert_batch(_inputs(), _tasks("jpeg"), batch_id="hooked", on_results=broken)
    assert excinfo.value.kind is ErrorKind.UNKNOWN
    job = coordinator.get_job("hooked")
    assert job.status == "failed"
    assert "disk full" in job.error


@pytest.mark.asyncio
async def test_cancelled_task_marks_batch_cancelled() -> None:
    started = threading.Event()
    release = threading.Event()

    def block(call_count: int) -> None:
        started.set()
        release.wait(5)

    coordinator = await _coordinator(FakeEngine(on_convert=block))
    stream = ProgressStream()
    task = asyncio.create_task(coordinator.convert_batch(_inputs(), _tasks("jpeg"), progress=stream, batch_id="killed"))
    await asyncio.to_thread(started.wait, 5)
    task.cancel()
    try:
        with pytest.raises(asyncio.CancelledError):
            await task
    finally:
        release.set()

    assert coordinator.get_job("killed").status == "cancelled"
    assert not coordinator.is_running
    assert stream.closed
    assert stream.last.stage is ProgressStage.CANCELLED

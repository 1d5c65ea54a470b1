from __future__ import annotations

import asyncio
import threading

import pytest

from converter.conversion.models import ConversionOptions, ConversionState, FormatId, ImageInput, ProgressStage
from converter.conversion.orchestrator import ConversionOrchestrator
from converter.conversion.progress import CancellationToken, ProgressStream
from converter.engine.loader import EngineLoader
from converter.engine.simulated import SimulatedCodecEngine
from converter.errors import ConversionError, ErrorKind
from converter.telemetry.collector import TelemetryCollector

from fakes import FakeEngine


async def _ready_orchestrator(engine: FakeEngine, **kwargs) -> ConversionOrchestrator:
    loader = EngineLoader(factory=lambda: engine)
    await loader.load()
    return ConversionOrchestrator(loader, **kwargs)


@pytest.mark.asyncio
async def test_successful_conversion_reports_fixed_checkpoints(orchestrator, png_input, engine) -> None:
    stream = ProgressStream()
    result = await orchestrator.convert(png_input, "jpeg", progress=stream)

    events = stream.drain()
    values = [e.progress for e in events]
    assert values == [0, 10, 30, 90, 100]
    assert values == sorted(values)
    assert events[-1].stage is ProgressStage.COMPLETED
    assert events[0].stage is ProgressStage.UPLOADING
    assert events[3].stage is ProgressStage.DOWNLOADING
    assert orchestrator.state is ConversionState.COMPLETED
    assert orchestrator.progress == 100

    assert result.from_format is FormatId.PNG
    assert result.to_format is FormatId.JPEG
    assert result.converted_bytes == engine.payload
    assert result.converted_size == len(engine.payload)
    assert result.compression_ratio == pytest.approx(len(engine.payload) / png_input.size)
    assert result.original_size == png_input.size
    assert result.simulated is False
    assert result.conversion_time_ms >= 0
    assert (result.width, result.height) == (4, 3)


@pytest.mark.asyncio
async def test_same_format_fails_with_format_error(orchestrator, png_input, engine) -> None:
    stream = ProgressStream()
    with pytest.raises(ConversionError) as excinfo:
        await orchestrator.convert(png_input, FormatId.PNG, progress=stream)
    assert excinfo.value.kind is ErrorKind.FORMAT
    assert engine.calls == []
    assert orchestrator.state is ConversionState.FAILED
    assert stream.last.stage is ProgressStage.ERROR
    assert stream.closed


@pytest.mark.asyncio
async def test_unsupported_target_fails_with_format_error(png_input) -> None:
    orchestrator = await _ready_orchestrator(FakeEngine(formats=["png", "jpeg", "heic"]))
    assert orchestrator.supported_formats() == [FormatId.PNG, FormatId.JPEG]
    with pytest.raises(ConversionError) as excinfo:
        await orchestrator.convert(png_input, "webp")
    assert excinfo.value.kind is ErrorKind.FORMAT
    assert "webp" in excinfo.value.message


@pytest.mark.asyncio
async def test_unknown_source_fails_with_format_error(orchestrator) -> None:
    image = ImageInput(raw_bytes=b"????", declared_format=FormatId.UNKNOWN)
    with pytest.raises(ConversionError) as excinfo:
        await orchestrator.convert(image, "png")
    assert excinfo.value.kind is ErrorKind.FORMAT


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "options",
    [ConversionOptions(quality=1.5), ConversionOptions(quality=-0.1), ConversionOptions(compression_level=10)],
)
async def test_out_of_range_options_fail_validation(orchestrator, png_input, engine, options) -> None:
    with pytest.raises(ConversionError) as excinfo:
        await orchestrator.convert(png_input, "jpeg", options)
    assert excinfo.value.kind is ErrorKind.FORMAT
    assert engine.calls == []


@pytest.mark.asyncio
async def test_engine_not_ready_fails_before_any_progress(png_input) -> None:
    orchestrator = ConversionOrchestrator(EngineLoader(factory=FakeEngine))
    stream = ProgressStream()
    with pytest.raises(ConversionError) as excinfo:
        await orchestrator.convert(png_input, "jpeg", progress=stream)
    assert excinfo.value.kind is ErrorKind.CONVERSION
    assert excinfo.value.detail == "engine_not_ready"
    assert [e.stage for e in stream.drain()] == [ProgressStage.ERROR]
    assert not orchestrator.engine_available


@pytest.mark.asyncio
async def test_fallback_engine_results_are_flagged_simulated(png_input) -> None:
    fallback = SimulatedCodecEngine(seed=7, delay_range=(0.0, 0.0))
    orchestrator = ConversionOrchestrator(EngineLoader(factory=FakeEngine), fallback=fallback)
    stream = ProgressStream()

    result = await orchestrator.convert(png_input, "webp", progress=stream)

    assert result.simulated is True
    assert orchestrator.engine_available
    assert [e.progress for e in stream.drain()] == [0, 10, 30, 90, 100]
    assert 800 <= result.width < 1200
    assert 600 <= result.height < 900


@pytest.mark.asyncio
async def test_caller_options_merged_over_format_defaults(orchestrator, png_input, engine) -> None:
    result = await orchestrator.convert(png_input, "jpeg", ConversionOptions(compression_level=3))
    assert engine.calls == [("png", "jpeg", 0.8, 3)]
    assert result.applied_options.quality == 0.8
    assert result.applied_options.compression_level == 3
    assert result.applied_options.preserve_dimensions is True


@pytest.mark.asyncio
async def test_engine_failure_surfaces_as_conversion_error(png_input) -> None:
    engine = FakeEngine(fail_on=1)
    loader = EngineLoader(factory=lambda: engine)
    await loader.load()
    telemetry = TelemetryCollector(loader)
    orchestrator = ConversionOrchestrator(loader, telemetry=telemetry)

    with pytest.raises(ConversionError) as excinfo:
        await orchestrator.convert(png_input, "jpeg")
    assert excinfo.value.kind is ErrorKind.CONVERSION
    assert "encoder exploded" in excinfo.value.message
    assert excinfo.value.detail == "RuntimeError"
    assert orchestrator.state is ConversionState.FAILED
    assert not telemetry.is_monitoring
    assert telemetry.measurements == []


@pytest.mark.asyncio
async def test_memory_error_maps_to_memory_kind(png_input) -> None:
    orchestrator = await _ready_orchestrator(FakeEngine(fail_on=1, error=MemoryError("4 GB")))
    with pytest.raises(ConversionError) as excinfo:
        await orchestrator.convert(png_input, "jpeg")
    assert excinfo.value.kind is ErrorKind.MEMORY


@pytest.mark.asyncio
async def test_cancel_before_start_never_calls_engine(orchestrator, png_input, engine) -> None:
    token = CancellationToken()
    token.cancel()
    stream = ProgressStream()
    with pytest.raises(ConversionError) as excinfo:
        await orchestrator.convert(png_input, "jpeg", token=token, progress=stream)
    assert excinfo.value.kind is ErrorKind.CANCELLED
    assert engine.calls == []
    assert orchestrator.state is ConversionState.CANCELLED
    assert stream.last.stage is ProgressStage.CANCELLED


@pytest.mark.asyncio
async def test_cancel_during_engine_call_is_honored_at_next_checkpoint(png_input) -> None:
    token = CancellationToken()
    engine = FakeEngine(on_convert=lambda n: token.cancel())
    orchestrator = await _ready_orchestrator(engine)
    stream = ProgressStream()

    with pytest.raises(ConversionError) as excinfo:
        await orchestrator.convert(png_input, "jpeg", token=token, progress=stream)

    assert excinfo.value.kind is ErrorKind.CANCELLED
    assert len(engine.calls) == 1
    events = stream.drain()
    assert [e.progress for e in events] == [0, 10, 30, 30]
    assert events[-1].stage is ProgressStage.CANCELLED


@pytest.mark.asyncio
async def test_second_concurrent_conversion_is_rejected(orchestrator, png_input) -> None:
    first, second = await asyncio.gather(
        orchestrator.convert(png_input, "jpeg"),
        orchestrator.convert(png_input, "webp"),
        return_exceptions=True,
    )
    assert first.to_format is FormatId.JPEG
    assert isinstance(second, ConversionError)
    assert second.detail == "busy"
    assert not orchestrator.is_converting


@pytest.mark.asyncio
async def test_successful_conversion_records_measurement(orchestrator, png_input, telemetry) -> None:
    await orchestrator.convert(png_input, "jpeg")
    [snapshot] = telemetry.measurements
    assert snapshot.operation == "convert:png->jpeg"
    assert snapshot.metrics.items_processed == 1


@pytest.mark.asyncio
async def test_orchestrator_cancel_applies_to_running_conversion(png_input) -> None:
    holder: dict = {}
    engine = FakeEngine(on_convert=lambda n: holder["orchestrator"].cancel())
    orchestrator = await _ready_orchestrator(engine)
    holder["orchestrator"] = orchestrator

    with pytest.raises(ConversionError) as excinfo:
        await orchestrator.convert(png_input, "jpeg")

    assert excinfo.value.kind is ErrorKind.CANCELLED
    assert orchestrator.state is ConversionState.CANCELLED
    # idle orchestrator: nothing to cancel
    orchestrator.cancel()


@pytest.mark.asyncio
async def test_task_cancelled_during_engine_call_ends_cleanly(png_input) -> None:
    started = threading.Event()
    release = threading.Event()

    def block(call_count: int) -> None:
        started.set()
        release.wait(5)

    loader = EngineLoader(factory=lambda: FakeEngine(on_convert=block))
    await loader.load()
    telemetry = TelemetryCollector(loader)
    orchestrator = ConversionOrchestrator(loader, telemetry=telemetry)
    stream = ProgressStream()

    task = asyncio.create_task(orchestrator.convert(png_input, "jpeg", progress=stream))
    await asyncio.to_thread(started.wait, 5)
    task.cancel()
    try:
        with pytest.raises(asyncio.CancelledError):
            await task
    finally:
        release.set()

    assert orchestrator.state is ConversionState.CANCELLED
    assert not orchestrator.is_converting
    assert stream.closed
    assert stream.last.stage is ProgressStage.CANCELLED
    assert stream.last.progress == 30
    assert not telemetry.is_monitoring
    assert telemetry.measurements == []

from __future__ import annotations

from typing import Iterator

import pytest
import pytest_asyncio

from converter.conversion.models import FormatId, ImageInput
from converter.conversion.orchestrator import ConversionOrchestrator
from converter.db import HistoryStore
from converter.engine.loader import EngineLoader
from converter.telemetry.collector import TelemetryCollector

from fakes import FakeEngine, png_bytes


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest_asyncio.fixture
async def loader(engine: FakeEngine) -> EngineLoader:
    loader = EngineLoader(factory=lambda: engine)
    await loader.load()
    return loader


@pytest.fixture
def telemetry(loader: EngineLoader) -> TelemetryCollector:
    return TelemetryCollector(loader, interval=60.0)


@pytest.fixture
def orchestrator(loader: EngineLoader, telemetry: TelemetryCollector) -> ConversionOrchestrator:
    return ConversionOrchestrator(loader, telemetry=telemetry)


@pytest.fixture
def png_input() -> ImageInput:
    return ImageInput(raw_bytes=png_bytes(), declared_format=FormatId.PNG, source_name="photo.png")


@pytest.fixture
def store() -> Iterator[HistoryStore]:
    store = HistoryStore("sqlite:///:memory:")
    store.init()
    yield store
    store.dispose()

"""Process-wide wiring: one engine loader, one orchestrator, one batch coordinator, one telemetry collector."""
import asyncio
import logging
from pathlib import Path
from typing import Any, Optional

from converter import config as app_config
from converter.conversion.batch import BatchCoordinator
from converter.conversion.detection import FormatDetector
from converter.conversion.formats import get_format_info
from converter.conversion.models import ConvertedImage
from converter.conversion.orchestrator import ConversionOrchestrator
from converter.conversion.progress import CancellationToken
from converter.db import HistoryStore
from converter.engine.loader import EngineLoader
from converter.engine.simulated import SimulatedCodecEngine
from converter.errors import EngineLoadError
from converter.telemetry.collector import TelemetryCollector

logger = logging.getLogger("converter.runtime")


def build_fallback_engine() -> Optional[SimulatedCodecEngine]:
    """Simulated engine per ENGINE_FALLBACK, or None when the fallback is disabled."""
    if app_config.ENGINE_FALLBACK != "simulated":
        return None
    return SimulatedCodecEngine(
        seed=app_config.SIMULATION_SEED,
        delay_range=(app_config.SIMULATION_MIN_DELAY, app_config.SIMULATION_MAX_DELAY),
    )


class ConverterRuntime:
    """Owns every stateful component. The API reaches them only through this object."""

    def __init__(
        self,
        loader: Optional[EngineLoader] = None,
        store: Optional[HistoryStore] = None,
        fallback: Any = None,
        use_fallback: Optional[bool] = None,
        output_dir: Optional[Path] = None,
        telemetry_interval: float = app_config.TELEMETRY_INTERVAL_SECONDS,
        history_limit: int = app_config.TELEMETRY_HISTORY_LIMIT,
    ):
        self.loader = loader or EngineLoader()
        self.store = store or HistoryStore()
        if use_fallback is None:
            use_fallback = app_config.ENGINE_FALLBACK == "simulated"
        if use_fallback and fallback is None:
            fallback = build_fallback_engine()
        self.fallback = fallback if use_fallback else None
        self.output_dir = Path(output_dir or app_config.OUTPUT_DIR)
        self.telemetry = TelemetryCollector(self.loader, interval=telemetry_interval, history_limit=history_limit)
        self.detector = FormatDetector(self.loader)
        self.orchestrator = ConversionOrchestrator(self.loader, fallback=self.fallback, telemetry=self.telemetry)
        self.batches = BatchCoordinator(self.orchestrator, store=self.store)
        # Serializes every call into the orchestrator; it is single-flight.
        self.lock = asyncio.Lock()
        self.batch_tokens: dict[str, CancellationToken] = {}

    async def start(self) -> None:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.store.init()
        await self.load_engine()
        self.telemetry.start()

    async def stop(self) -> None:
        for token in self.batch_tokens.values():
            token.cancel()
        await self.telemetry.stop()
        await self.loader.release()
        self.store.dispose()
        logger.info("Converter runtime stopped")

    async def load_engine(self, path: Optional[str] = None) -> bool:
        """Try to load the codec engine. A failure leaves the fallback (if any) in charge."""
        try:
            await self.loader.load(path)
            return True
        except EngineLoadError as e:
            if self.fallback is not None:
                logger.warning("%s. Using simulated engine; results will be flagged as simulated.", e)
            else:
                logger.error("%s. Conversions will fail until the engine loads.", e)
            return False

    def engine_status(self) -> dict:
        engine = self.loader.engine
        return {
            "ready": self.loader.ready,
            "loading": self.loader.loading,
            "error": self.loader.error,
            "engine": type(engine).__name__ if engine is not None else None,
            "fallback": type(self.fallback).__name__ if self.fallback is not None else None,
            "available": self.orchestrator.engine_available,
        }

    def output_path(self, image_id: str, fmt) -> Path:
        info = get_format_info(fmt)
        ext = info.extensions[0] if info else "bin"
        return self.output_dir / f"{image_id}.{ext}"

    def save_output(self, image: ConvertedImage, batch_id: Optional[str] = None) -> Path:
        """Write the converted bytes to OUTPUT_DIR and record the conversion in history."""
        path = self.output_path(image.id, image.to_format)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(image.converted_bytes)
        try:
            self.store.record_conversion(image, batch_id=batch_id)
        except Exception as e:
            logger.warning("Failed to record conversion %s: %s", image.id, e)
        return path

    def find_output(self, image_id: str) -> Optional[Path]:
        matches = sorted(self.output_dir.glob(f"{image_id}.*"))
        return matches[0] if matches else None

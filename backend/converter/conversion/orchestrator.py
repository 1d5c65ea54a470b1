"""Single-image conversion pipeline with checkpointed progress and cooperative cancellation."""
import asyncio
import logging
import time
import uuid
from typing import Any, Optional

from converter.conversion.formats import FORMAT_INFO, SUPPORTED_FORMATS, default_options_for
from converter.conversion.models import (
    ConversionOptions,
    ConversionState,
    ConvertedImage,
    FormatId,
    ImageInput,
    ProgressEvent,
    ProgressStage,
)
from converter.conversion.progress import CancellationToken, ProgressStream
from converter.engine.loader import EngineLoader
from converter.errors import ConversionError, ErrorKind

logger = logging.getLogger("converter.orchestrator")

# Fixed checkpoints; the engine call between 30 and 90 is atomic from here.
PROGRESS_START = 0.0
PROGRESS_INPUT_READ = 10.0
PROGRESS_VALIDATED = 30.0
PROGRESS_FINALIZING = 90.0
PROGRESS_DONE = 100.0


class ConversionOrchestrator:
    """Drives one conversion at a time through validate -> engine call -> assembly.

    A second ``convert`` while one is running is rejected with a ``busy`` error.
    When the loader has no engine and a ``fallback`` engine was supplied, the fallback
    is used and results are flagged ``simulated``.
    """

    def __init__(self, loader: EngineLoader, fallback: Any = None, telemetry=None):
        self._loader = loader
        self._fallback = fallback
        self._telemetry = telemetry
        self._state = ConversionState.IDLE
        self._progress = 0.0
        self._active = False
        self._token: Optional[CancellationToken] = None

    @property
    def state(self) -> ConversionState:
        return self._state

    @property
    def progress(self) -> float:
        return self._progress

    @property
    def is_converting(self) -> bool:
        return self._active

    @property
    def engine_available(self) -> bool:
        return self._loader.ready or self._fallback is not None

    def cancel(self) -> None:
        """Request cancellation of the running conversion; honored at the next checkpoint."""
        if self._token is not None:
            self._token.cancel()

    def supported_formats(self) -> list[FormatId]:
        if self._loader.ready:
            try:
                reported = [FormatId.parse(f) for f in self._loader.engine.get_supported_formats()]
                return [f for f in reported if f in FORMAT_INFO]
            except Exception as e:
                logger.warning("Failed to get supported formats from engine: %s", e)
        return list(SUPPORTED_FORMATS)

    def _resolve_engine(self) -> Any:
        if self._loader.ready:
            return self._loader.engine
        if self._fallback is not None:
            return self._fallback
        raise ConversionError.not_ready()

    async def convert(
        self,
        image: ImageInput,
        target_format,
        options: Optional[ConversionOptions] = None,
        *,
        token: Optional[CancellationToken] = None,
        progress: Optional[ProgressStream] = None,
    ) -> ConvertedImage:
        if self._active:
            raise ConversionError.busy("conversion")
        self._active = True
        self._token = token or CancellationToken()
        self._progress = PROGRESS_START
        file_id = f"conversion-{uuid.uuid4().hex[:12]}"
        try:
            return await self._run(file_id, image, FormatId.parse(target_format), options, self._token, progress)
        except ConversionError as e:
            self._end_with_error(file_id, image, e, progress)
            raise
        except asyncio.CancelledError:
            self._end_with_error(file_id, image, ConversionError.cancelled("task cancelled"), progress)
            raise
        except Exception as e:
            error = ConversionError(ErrorKind.UNKNOWN, f"Unexpected error: {e}", detail=type(e).__name__)
            self._end_with_error(file_id, image, error, progress)
            raise error from e
        finally:
            self._active = False
            self._token = None

    def _end_with_error(self, file_id, image, error: ConversionError, progress) -> None:
        cancelled = error.kind is ErrorKind.CANCELLED
        self._state = ConversionState.CANCELLED if cancelled else ConversionState.FAILED
        if progress is not None:
            progress.emit(ProgressEvent(
                file_id=file_id,
                progress=self._progress,
                stage=ProgressStage.CANCELLED if cancelled else ProgressStage.ERROR,
                message=error.message,
                error=None if cancelled else error.message,
            ))
        logger.info("Conversion %s of %s ended: %s", self._state.value, image.source_name or file_id, error.message)

    def _checkpoint(self, token, progress, file_id, value, stage, message) -> None:
        token.raise_if_cancelled(detail=f"cancelled before {value:.0f}% checkpoint")
        self._progress = value
        if progress is not None:
            progress.emit(ProgressEvent(file_id=file_id, progress=value, stage=stage, message=message))

    async def _run(self, file_id, image, target, options, token, progress) -> ConvertedImage:
        source = image.declared_format
        self._state = ConversionState.VALIDATING
        engine = self._resolve_engine()
        self._checkpoint(token, progress, file_id, PROGRESS_START, ProgressStage.UPLOADING,
                         f"Converting {source.value} to {target.value}")

        applied = (options or ConversionOptions()).merged_over(default_options_for(target))
        self._checkpoint(token, progress, file_id, PROGRESS_INPUT_READ, ProgressStage.CONVERTING, "Input read")

        self._validate(source, target, applied)
        self._checkpoint(token, progress, file_id, PROGRESS_VALIDATED, ProgressStage.CONVERTING, "Converting format...")

        self._state = ConversionState.CONVERTING
        label = f"convert:{source.value}->{target.value}"
        if self._telemetry is not None:
            self._telemetry.start_measurement(label)
        start = time.perf_counter()
        try:
            result = await asyncio.to_thread(
                engine.convert,
                image.raw_bytes,
                source.value,
                target.value,
                applied.quality,
                applied.compression_level,
            )
        except asyncio.CancelledError:
            self._discard_measurement(label)
            raise
        except MemoryError as e:
            self._discard_measurement(label)
            raise ConversionError(ErrorKind.MEMORY, "Out of memory during conversion", detail=str(e) or None) from e
        except Exception as e:
            self._discard_measurement(label)
            raise ConversionError(ErrorKind.CONVERSION, f"Conversion failed: {e}", detail=type(e).__name__) from e
        elapsed_ms = (time.perf_counter() - start) * 1000.0
        if self._telemetry is not None:
            self._telemetry.end_measurement(label, items_processed=1, bytes_processed=image.size + result.converted_size)

        self._state = ConversionState.FINALIZING
        self._checkpoint(token, progress, file_id, PROGRESS_FINALIZING, ProgressStage.DOWNLOADING, "Finalizing...")

        converted = ConvertedImage(
            id=str(uuid.uuid4()),
            source_name=image.source_name,
            from_format=source,
            to_format=target,
            converted_bytes=result.data,
            width=result.width,
            height=result.height,
            conversion_time_ms=elapsed_ms,
            original_size=image.size,
            converted_size=result.converted_size,
            compression_ratio=result.compression_ratio,
            applied_options=applied,
            simulated=bool(getattr(engine, "simulated", False)),
        )
        self._checkpoint(token, progress, file_id, PROGRESS_DONE, ProgressStage.COMPLETED, "Conversion completed")
        self._state = ConversionState.COMPLETED
        logger.info(
            "Converted %s %s -> %s in %.1f ms (%s -> %s bytes)",
            image.source_name or file_id, source.value, target.value, elapsed_ms, image.size, result.converted_size,
        )
        return converted

    def _validate(self, source: FormatId, target: FormatId, options: ConversionOptions) -> None:
        if source == target:
            raise ConversionError(ErrorKind.FORMAT, "Source and target formats are the same", detail=source.value)
        supported = self.supported_formats()
        if source not in supported:
            raise ConversionError(ErrorKind.FORMAT, f"Unsupported source format: {source.value}")
        if target not in supported:
            raise ConversionError(ErrorKind.FORMAT, f"Unsupported target format: {target.value}")
        if options.quality is not None and not 0.0 <= options.quality <= 1.0:
            raise ConversionError(ErrorKind.FORMAT, "quality must be within [0, 1]", detail=str(options.quality))
        if options.compression_level is not None and not 0 <= options.compression_level <= 9:
            raise ConversionError(ErrorKind.FORMAT, "compression_level must be within [0, 9]", detail=str(options.compression_level))

    def _discard_measurement(self, label: str) -> None:
        if self._telemetry is not None:
            self._telemetry.discard_measurement(label)

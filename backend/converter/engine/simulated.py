"""Demonstration engine used when no real codec engine can be loaded.

Results are shaped like real conversions but the bytes are random. Every result it
produces is flagged ``simulated`` so it can never pass for a genuine conversion.
"""
import logging
import random
import threading
import time
from typing import Callable, Optional

from converter.engine.base import EngineMetrics, EngineResult, compression_ratio

logger = logging.getLogger("converter.engine.simulated")

SIMULATED_FORMATS = ["jpeg", "png", "webp", "avif", "bmp", "tiff", "gif", "ico"]


class SimulatedCodecEngine:
    simulated = True

    def __init__(
        self,
        seed: Optional[int] = None,
        delay_range: tuple[float, float] = (0.2, 0.5),
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._rng = random.Random(seed)
        self._delay_range = delay_range
        self._sleep = sleep
        self._lock = threading.Lock()
        self._total_time_ms = 0.0
        self._images = 0
        self._data_bytes = 0

    def get_supported_formats(self) -> list[str]:
        return list(SIMULATED_FORMATS)

    def convert(
        self,
        data: bytes,
        from_format: str,
        to_format: str,
        quality: Optional[float] = None,
        compression_level: Optional[int] = None,
    ) -> EngineResult:
        with self._lock:
            low, high = self._delay_range
            delay = self._rng.uniform(low, high) if high > 0 else 0.0
            size = int(len(data) * (0.7 + self._rng.random() * 0.6))
            payload = self._rng.randbytes(size)
            width = 800 + self._rng.randrange(400)
            height = 600 + self._rng.randrange(300)
            elapsed_ms = 500 + self._rng.random() * 1000
        if delay:
            self._sleep(delay)
        with self._lock:
            self._total_time_ms += elapsed_ms
            self._images += 1
            self._data_bytes += len(data) + size
        logger.debug("Simulated %s -> %s (%s bytes)", from_format, to_format, size)
        return EngineResult(
            data=payload,
            width=width,
            height=height,
            conversion_time_ms=elapsed_ms,
            converted_size=size,
            compression_ratio=compression_ratio(len(data), size),
        )

    def get_performance_metrics(self) -> EngineMetrics:
        with self._lock:
            seconds = self._total_time_ms / 1000.0
            return EngineMetrics(
                total_time_ms=self._total_time_ms,
                peak_memory_bytes=0,
                cpu_usage=0.1 + self._rng.random() * 0.5,
                images_processed=self._images,
                images_per_second=self._images / seconds if seconds > 0 else 0.0,
                total_data_bytes=self._data_bytes,
                throughput_mbps=(self._data_bytes * 8 / 1_000_000) / seconds if seconds > 0 else 0.0,
                threads_used=1,
                parallel_efficiency=1.0,
                simd_utilized=False,
            )

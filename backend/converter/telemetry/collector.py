"""Performance sampling: periodic engine counters plus labelled start/end measurements."""
import asyncio
import contextlib
import heapq
import logging
import time
from collections import deque
from typing import Callable, Optional

import psutil

from converter.config import TELEMETRY_HISTORY_LIMIT, TELEMETRY_INTERVAL_SECONDS
from converter.telemetry.models import PerformanceMetrics, PerformanceSnapshot

logger = logging.getLogger("converter.telemetry")

AUTO_COLLECT = "auto-collect"


class TelemetryCollector:
    """Keeps two snapshot sources.

    Auto-collected snapshots live in a ring buffer capped at ``history_limit`` (oldest
    evicted first). Measurement snapshots are kept until the caller trims or resets them.
    ``history`` merges both in the order they were taken.
    """

    def __init__(
        self,
        loader=None,
        interval: float = TELEMETRY_INTERVAL_SECONDS,
        history_limit: int = TELEMETRY_HISTORY_LIMIT,
        clock: Callable[[], float] = time.perf_counter,
    ):
        self._loader = loader
        self._interval = interval
        self._clock = clock
        self._auto: deque[PerformanceSnapshot] = deque(maxlen=history_limit)
        self._measured: list[PerformanceSnapshot] = []
        self._open: dict[str, tuple[float, float]] = {}
        self._task: Optional[asyncio.Task] = None
        self._process = psutil.Process()
        self.latest: Optional[PerformanceMetrics] = None

    @property
    def history_limit(self) -> int:
        return self._auto.maxlen

    @property
    def auto_history(self) -> list[PerformanceSnapshot]:
        return list(self._auto)

    @property
    def measurements(self) -> list[PerformanceSnapshot]:
        return list(self._measured)

    @property
    def history(self) -> list[PerformanceSnapshot]:
        return list(heapq.merge(self._auto, self._measured, key=lambda s: s.sequence))

    @property
    def is_monitoring(self) -> bool:
        return bool(self._open)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # Auto-sampling

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._sample_loop(), name="telemetry-auto-collect")
        logger.info("Telemetry auto-collection every %.2fs (keeping %s samples)", self._interval, self.history_limit)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _sample_loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            self.sample()

    def sample(self) -> Optional[PerformanceSnapshot]:
        """Pull engine counters once. Failures are logged and skipped."""
        if self._loader is None or not self._loader.ready:
            return None
        try:
            metrics = PerformanceMetrics.from_engine(self._loader.engine.get_performance_metrics())
        except Exception as e:
            logger.warning("Failed to collect performance metrics: %s", e)
            return None
        snapshot = PerformanceSnapshot(operation=AUTO_COLLECT, metrics=metrics)
        self._auto.append(snapshot)
        self.latest = metrics
        return snapshot

    # Measurement pairs

    def start_measurement(self, label: str) -> None:
        self._open[label] = (self._clock(), self._cpu_seconds())

    def end_measurement(self, label: str, *, items_processed: int = 0, bytes_processed: int = 0) -> Optional[PerformanceSnapshot]:
        started = self._open.pop(label, None)
        if started is None:
            logger.warning("No start time found for operation: %s", label)
            return None
        start, cpu_start = started
        elapsed = max(self._clock() - start, 0.0)
        if elapsed > 0:
            cpu_usage = min(1.0, max(0.0, (self._cpu_seconds() - cpu_start) / elapsed))
        else:
            cpu_usage = 0.0
        metrics = PerformanceMetrics(
            total_time_ms=elapsed * 1000.0,
            peak_memory_bytes=self._memory_bytes(),
            cpu_usage=cpu_usage,
            items_processed=items_processed,
            items_per_second=items_processed / elapsed if elapsed > 0 else 0.0,
            total_data_bytes=bytes_processed,
            throughput_mbps=(bytes_processed * 8 / 1_000_000) / elapsed if elapsed > 0 else 0.0,
            threads_used=psutil.cpu_count(logical=True) or 1,
            parallel_efficiency=1.0,
            simd_utilized=False,
        )
        snapshot = PerformanceSnapshot(operation=label, metrics=metrics)
        self._measured.append(snapshot)
        return snapshot

    def discard_measurement(self, label: str) -> None:
        self._open.pop(label, None)

    def trim_measurements(self, keep: int) -> None:
        """Keep only the newest ``keep`` measurement snapshots."""
        if keep <= 0:
            self._measured.clear()
        else:
            del self._measured[:-keep]

    def reset(self) -> None:
        self._auto.clear()
        self._measured.clear()
        self._open.clear()
        self.latest = None

    def _memory_bytes(self) -> int:
        try:
            return int(self._process.memory_info().rss)
        except psutil.Error as e:
            logger.debug("Memory reading unavailable: %s", e)
            return 0

    def _cpu_seconds(self) -> float:
        try:
            times = self._process.cpu_times()
            return times.user + times.system
        except psutil.Error:
            return time.process_time()

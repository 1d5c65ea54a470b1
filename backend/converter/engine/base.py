"""Call contract of a codec engine.

The orchestrator never touches pixels; it hands raw bytes to an engine and gets an
``EngineResult`` back. Anything that provides ``convert``, ``get_performance_metrics``
and ``get_supported_formats`` can be loaded. ``initialize``, ``warmup``, ``cleanup`` and
``detect_format`` are optional hooks and are looked up with ``getattr``.
"""
from dataclasses import asdict, dataclass
from typing import Optional, Protocol, runtime_checkable


@dataclass(frozen=True)
class EngineResult:
    data: bytes
    width: int
    height: int
    conversion_time_ms: float
    converted_size: int
    compression_ratio: float


@dataclass(frozen=True)
class EngineMetrics:
    """Counters reported by ``get_performance_metrics``."""

    total_time_ms: float = 0.0
    peak_memory_bytes: int = 0
    cpu_usage: float = 0.0  # 0..1
    images_processed: int = 0
    images_per_second: float = 0.0
    total_data_bytes: int = 0
    throughput_mbps: float = 0.0
    threads_used: int = 1
    parallel_efficiency: float = 1.0
    simd_utilized: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


@runtime_checkable
class CodecEngine(Protocol):
    simulated: bool

    def convert(
        self,
        data: bytes,
        from_format: str,
        to_format: str,
        quality: Optional[float] = None,
        compression_level: Optional[int] = None,
    ) -> EngineResult:
        ...

    def get_performance_metrics(self) -> EngineMetrics:
        ...

    def get_supported_formats(self) -> list[str]:
        ...


def compression_ratio(original_size: int, converted_size: int) -> float:
    """converted / original; 1.0 when the original is empty."""
    if original_size <= 0:
        return 1.0
    return converted_size / original_size

from .base import CodecEngine, EngineMetrics, EngineResult
from .loader import EngineLoader
from .pillow import PillowCodecEngine
from .simulated import SimulatedCodecEngine

__all__ = [
    "CodecEngine",
    "EngineLoader",
    "EngineMetrics",
    "EngineResult",
    "PillowCodecEngine",
    "SimulatedCodecEngine",
]

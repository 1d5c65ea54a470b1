from __future__ import annotations

import io
from typing import Callable, Optional

from PIL import Image

from converter.engine.base import EngineMetrics, EngineResult, compression_ratio

ALL_FORMATS = ["jpeg", "png", "webp", "avif", "bmp", "tiff", "gif", "ico"]


class FakeEngine:
    """Deterministic engine: records every call and returns a fixed payload."""

    simulated = False

    def __init__(
        self,
        formats: Optional[list[str]] = None,
        payload: bytes = b"converted-bytes",
        fail_on: Optional[int] = None,
        error: Optional[BaseException] = None,
        on_convert: Optional[Callable[[int], None]] = None,
    ):
        self.formats = list(formats or ALL_FORMATS)
        self.payload = payload
        self.fail_on = fail_on
        self.error = error or RuntimeError("encoder exploded")
        self.on_convert = on_convert
        self.calls: list[tuple] = []
        self.metrics_calls = 0
        self.cleaned_up = False

    def convert(self, data, from_format, to_format, quality=None, compression_level=None):
        self.calls.append((from_format, to_format, quality, compression_level))
        if self.on_convert is not None:
            self.on_convert(len(self.calls))
        if self.fail_on is not None and len(self.calls) == self.fail_on:
            raise self.error
        return EngineResult(
            data=self.payload,
            width=4,
            height=3,
            conversion_time_ms=1.0,
            converted_size=len(self.payload),
            compression_ratio=compression_ratio(len(data), len(self.payload)),
        )

    def get_performance_metrics(self) -> EngineMetrics:
        self.metrics_calls += 1
        return EngineMetrics(total_time_ms=float(self.metrics_calls), images_processed=self.metrics_calls)

    def get_supported_formats(self) -> list[str]:
        return list(self.formats)

    def cleanup(self) -> None:
        self.cleaned_up = True


class ReadyLoader:
    """Minimal stand-in exposing the loader's ``ready``/``engine`` pair."""

    def __init__(self, engine=None, ready: bool = True):
        self.engine = engine
        self.ready = ready


def png_bytes(size: tuple[int, int] = (16, 16), color=(200, 30, 30)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()

"""Default codec engine backed by Pillow."""
import io
import logging
import threading
import time
from typing import Optional

from PIL import Image, UnidentifiedImageError, features

from converter.engine.base import EngineMetrics, EngineResult, compression_ratio

logger = logging.getLogger("converter.engine.pillow")

# format id -> Pillow plugin name
PIL_FORMATS = {
    "jpeg": "JPEG",
    "png": "PNG",
    "webp": "WEBP",
    "avif": "AVIF",
    "bmp": "BMP",
    "tiff": "TIFF",
    "gif": "GIF",
    "ico": "ICO",
}
_FORMAT_IDS = {v: k for k, v in PIL_FORMATS.items()}

DEFAULT_QUALITY = 0.8
DEFAULT_COMPRESSION_LEVEL = 6


def _quality_percent(quality: Optional[float]) -> int:
    q = DEFAULT_QUALITY if quality is None else float(quality)
    return max(1, min(100, int(round(q * 100))))


class PillowCodecEngine:
    """Decodes with the declared source format and re-encodes to the target format."""

    simulated = False

    def __init__(self):
        self._lock = threading.Lock()
        self._started = time.monotonic()
        self._total_time_ms = 0.0
        self._busy_seconds = 0.0
        self._images = 0
        self._data_bytes = 0
        self._peak_memory = 0

    def initialize(self) -> None:
        Image.init()
        logger.info("Pillow engine initialized (formats: %s)", ", ".join(self.get_supported_formats()))

    def warmup(self) -> None:
        """Round-trip a tiny image through PNG and JPEG so plugin imports happen now."""
        buf = io.BytesIO()
        Image.new("RGB", (8, 8), (128, 128, 128)).save(buf, format="PNG")
        self._convert(buf.getvalue(), "png", "jpeg", None, None)

    def cleanup(self) -> None:
        with self._lock:
            logger.info("Pillow engine shutting down after %s conversions", self._images)

    def get_supported_formats(self) -> list[str]:
        Image.init()
        return [fid for fid, name in PIL_FORMATS.items() if name in Image.OPEN and name in Image.SAVE]

    def detect_format(self, data: bytes) -> str:
        try:
            with Image.open(io.BytesIO(data)) as img:
                return _FORMAT_IDS.get(img.format or "", "unknown")
        except (UnidentifiedImageError, OSError):
            return "unknown"

    def convert(
        self,
        data: bytes,
        from_format: str,
        to_format: str,
        quality: Optional[float] = None,
        compression_level: Optional[int] = None,
    ) -> EngineResult:
        result, pixels = self._convert(data, from_format, to_format, quality, compression_level)
        with self._lock:
            self._total_time_ms += result.conversion_time_ms
            self._busy_seconds += result.conversion_time_ms / 1000.0
            self._images += 1
            self._data_bytes += len(data) + result.converted_size
            self._peak_memory = max(self._peak_memory, pixels)
        return result

    def get_performance_metrics(self) -> EngineMetrics:
        with self._lock:
            seconds = self._total_time_ms / 1000.0
            wall = max(time.monotonic() - self._started, 1e-9)
            return EngineMetrics(
                total_time_ms=self._total_time_ms,
                peak_memory_bytes=self._peak_memory,
                cpu_usage=min(1.0, self._busy_seconds / wall),
                images_processed=self._images,
                images_per_second=self._images / seconds if seconds > 0 else 0.0,
                total_data_bytes=self._data_bytes,
                throughput_mbps=(self._data_bytes * 8 / 1_000_000) / seconds if seconds > 0 else 0.0,
                threads_used=1,
                parallel_efficiency=1.0,
                simd_utilized=bool(features.check_feature("libjpeg_turbo")),
            )

    def _convert(self, data, from_format, to_format, quality, compression_level) -> tuple[EngineResult, int]:
        src_name = PIL_FORMATS.get(from_format)
        dst_name = PIL_FORMATS.get(to_format)
        if src_name is None:
            raise ValueError(f"Unsupported source format: {from_format}")
        if dst_name is None or dst_name not in Image.SAVE:
            raise ValueError(f"Unsupported target format: {to_format}")
        start = time.perf_counter()
        with Image.open(io.BytesIO(data), formats=[src_name]) as img:
            img.load()
            width, height = img.size
            pixels = width * height * len(img.getbands())
            work = self._prepare_mode(img, dst_name)
            buf = io.BytesIO()
            work.save(buf, format=dst_name, **self._save_kwargs(dst_name, quality, compression_level))
        out = buf.getvalue()
        elapsed_ms = (time.perf_counter() - start) * 1000.0
        result = EngineResult(
            data=out,
            width=width,
            height=height,
            conversion_time_ms=elapsed_ms,
            converted_size=len(out),
            compression_ratio=compression_ratio(len(data), len(out)),
        )
        return result, pixels

    @staticmethod
    def _prepare_mode(img: Image.Image, dst_name: str) -> Image.Image:
        has_alpha = img.mode in ("RGBA", "LA", "PA") or "transparency" in img.info
        if dst_name == "JPEG":
            if img.mode not in ("RGB", "L", "CMYK"):
                return img.convert("RGB")
            return img
        if dst_name == "BMP":
            if img.mode not in ("1", "L", "P", "RGB"):
                return img.convert("RGB")
            return img
        if dst_name in ("WEBP", "AVIF"):
            if img.mode not in ("RGB", "RGBA"):
                return img.convert("RGBA" if has_alpha else "RGB")
            return img
        if img.mode not in ("1", "L", "LA", "P", "RGB", "RGBA"):
            return img.convert("RGBA" if has_alpha else "RGB")
        return img

    @staticmethod
    def _save_kwargs(dst_name: str, quality: Optional[float], compression_level: Optional[int]) -> dict:
        level = DEFAULT_COMPRESSION_LEVEL if compression_level is None else max(0, min(9, int(compression_level)))
        if dst_name == "JPEG":
            return {"quality": _quality_percent(quality), "optimize": True}
        if dst_name == "WEBP":
            return {"quality": _quality_percent(quality), "method": 4}
        if dst_name == "AVIF":
            return {"quality": _quality_percent(quality)}
        if dst_name == "PNG":
            return {"compress_level": level}
        if dst_name == "TIFF":
            if level > 0 and features.check("libtiff"):
                return {"compression": "tiff_adobe_deflate"}
            return {}
        if dst_name == "GIF":
            return {"optimize": True}
        return {}

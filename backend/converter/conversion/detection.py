"""Input format detection: filename extension first, then leading-byte signatures."""
import logging
from pathlib import PurePath
from typing import Optional

from converter.conversion.formats import EXTENSION_FORMATS
from converter.conversion.models import FormatId

logger = logging.getLogger("converter.detection")

SNIFF_WINDOW = 12

# (format, [(offset, expected bytes), ...]) tested in order
SIGNATURES: tuple[tuple[FormatId, tuple[tuple[int, bytes], ...]], ...] = (
    (FormatId.JPEG, ((0, b"\xff\xd8\xff"),)),
    (FormatId.PNG, ((0, b"\x89PNG"),)),
    (FormatId.WEBP, ((0, b"RIFF"), (8, b"WEBP"))),
    (FormatId.BMP, ((0, b"BM"),)),
    (FormatId.GIF, ((0, b"GIF"),)),
)


def format_from_filename(filename: Optional[str]) -> FormatId:
    if not filename:
        return FormatId.UNKNOWN
    ext = PurePath(filename).suffix.lower().lstrip(".")
    return EXTENSION_FORMATS.get(ext, FormatId.UNKNOWN)


def sniff_format(data: bytes) -> FormatId:
    head = bytes(data[:SNIFF_WINDOW])
    for fmt, rules in SIGNATURES:
        if all(head[offset:offset + len(magic)] == magic for offset, magic in rules):
            return fmt
    return FormatId.UNKNOWN


class FormatDetector:
    """Classifies raw bytes. Optionally consults the engine when the signature rules give up."""

    def __init__(self, loader=None):
        self._loader = loader

    def detect(self, data: bytes, filename: Optional[str] = None) -> FormatId:
        fmt = format_from_filename(filename)
        if fmt is not FormatId.UNKNOWN:
            return fmt
        fmt = sniff_format(data)
        if fmt is not FormatId.UNKNOWN:
            return fmt
        return self._engine_detect(data)

    def detect_or_default(self, data: bytes, filename: Optional[str] = None, default: FormatId = FormatId.PNG) -> FormatId:
        """Caller-level policy: never return UNKNOWN."""
        fmt = self.detect(data, filename)
        if fmt is FormatId.UNKNOWN:
            logger.info("Could not detect format of %s; assuming %s", filename or "input", default.value)
            return default
        return fmt

    def _engine_detect(self, data: bytes) -> FormatId:
        if self._loader is None or not self._loader.ready:
            return FormatId.UNKNOWN
        detect = getattr(self._loader.engine, "detect_format", None)
        if not callable(detect):
            return FormatId.UNKNOWN
        try:
            return FormatId.parse(detect(data))
        except Exception as e:
            logger.warning("Engine format detection failed: %s", e)
            return FormatId.UNKNOWN

"""Conversion request/response models."""
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional


class FormatId(str, Enum):
    JPEG = "jpeg"
    PNG = "png"
    WEBP = "webp"
    AVIF = "avif"
    BMP = "bmp"
    TIFF = "tiff"
    GIF = "gif"
    ICO = "ico"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Any) -> "FormatId":
        """Lenient lookup: case-insensitive, ``jpg``/``tif`` aliases, anything else is UNKNOWN."""
        if isinstance(value, cls):
            return value
        name = str(value or "").strip().lower().lstrip(".")
        name = {"jpg": "jpeg", "tif": "tiff"}.get(name, name)
        try:
            return cls(name)
        except ValueError:
            return cls.UNKNOWN


class ConversionState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    CONVERTING = "converting"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ProgressStage(str, Enum):
    UPLOADING = "uploading"
    CONVERTING = "converting"
    DOWNLOADING = "downloading"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"


TERMINAL_STAGES = frozenset({ProgressStage.COMPLETED, ProgressStage.ERROR, ProgressStage.CANCELLED})

# Accepted spellings for option keys coming from HTTP clients
_OPTION_ALIASES = {
    "compressionLevel": "compression_level",
    "preserveDimensions": "preserve_dimensions",
    "preserveColorSpace": "preserve_color_space",
    "preserveMetadata": "preserve_metadata",
}


@dataclass(frozen=True)
class ConversionOptions:
    """Encoder options. ``None`` means "not specified" so defaults can fill the gap."""

    quality: Optional[float] = None  # [0, 1], lossy formats
    compression_level: Optional[int] = None  # [0, 9], lossless formats
    progressive: Optional[bool] = None
    preserve_dimensions: Optional[bool] = None
    preserve_color_space: Optional[bool] = None
    preserve_metadata: Optional[bool] = None

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "ConversionOptions":
        if not data:
            return cls()
        known = {f.name for f in fields(cls)}
        values = {}
        for key, value in data.items():
            key = _OPTION_ALIASES.get(key, key)
            if key in known and value is not None:
                values[key] = value
        return cls(**values)

    def merged_over(self, defaults: "ConversionOptions") -> "ConversionOptions":
        """Return ``defaults`` with every key specified here taking precedence."""
        values = {
            f.name: getattr(self, f.name) if getattr(self, f.name) is not None else getattr(defaults, f.name)
            for f in fields(self)
        }
        return ConversionOptions(**values)

    def to_dict(self) -> dict:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass(frozen=True)
class ImageInput:
    raw_bytes: bytes = field(repr=False)
    declared_format: FormatId
    source_name: str = ""

    @property
    def size(self) -> int:
        return len(self.raw_bytes)


@dataclass(frozen=True)
class ConversionTask:
    """One target of a batch. ``from_format`` is descriptive; the input's declared format is used."""

    from_format: Optional[FormatId]
    to_format: FormatId
    options: ConversionOptions = field(default_factory=ConversionOptions)


@dataclass(frozen=True)
class ConvertedImage:
    id: str
    source_name: str
    from_format: FormatId
    to_format: FormatId
    converted_bytes: bytes = field(repr=False)
    width: int
    height: int
    conversion_time_ms: float
    original_size: int
    converted_size: int
    compression_ratio: float
    applied_options: ConversionOptions
    converted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    simulated: bool = False

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "source_name": self.source_name,
            "from_format": self.from_format.value,
            "to_format": self.to_format.value,
            "width": self.width,
            "height": self.height,
            "conversion_time_ms": round(self.conversion_time_ms, 3),
            "original_size": self.original_size,
            "converted_size": self.converted_size,
            "compression_ratio": self.compression_ratio,
            "applied_options": self.applied_options.to_dict(),
            "converted_at": self.converted_at.isoformat(),
            "simulated": self.simulated,
        }


@dataclass(frozen=True)
class ProgressEvent:
    file_id: str
    progress: float
    stage: ProgressStage
    message: Optional[str] = None
    error: Optional[str] = None
    file_index: Optional[int] = None  # batch events only

    @property
    def terminal(self) -> bool:
        return self.stage in TERMINAL_STAGES

    def to_dict(self) -> dict:
        out = {"file_id": self.file_id, "progress": self.progress, "stage": self.stage.value}
        if self.message is not None:
            out["message"] = self.message
        if self.error is not None:
            out["error"] = self.error
        if self.file_index is not None:
            out["file_index"] = self.file_index
        return out

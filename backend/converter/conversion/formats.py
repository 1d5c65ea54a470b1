"""Static format tables: descriptive info, filename extensions and per-format default options."""
from dataclasses import dataclass
from typing import Optional

from converter.conversion.models import ConversionOptions, FormatId


@dataclass(frozen=True)
class FormatInfo:
    name: str
    description: str
    extensions: tuple[str, ...]
    mime_type: str
    supports_transparency: bool
    supports_animation: bool
    is_lossy: bool
    color_depths: tuple[int, ...]

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "extensions": list(self.extensions),
            "mime_type": self.mime_type,
            "supports_transparency": self.supports_transparency,
            "supports_animation": self.supports_animation,
            "is_lossy": self.is_lossy,
            "color_depths": list(self.color_depths),
        }


FORMAT_INFO: dict[FormatId, FormatInfo] = {
    FormatId.JPEG: FormatInfo("JPEG", "Lossy compression, suited to photographs", ("jpg", "jpeg"), "image/jpeg", False, False, True, (8,)),
    FormatId.PNG: FormatInfo("PNG", "Lossless compression with transparency", ("png",), "image/png", True, False, False, (8, 16)),
    FormatId.WEBP: FormatInfo("WebP", "Modern format with high compression", ("webp",), "image/webp", True, True, True, (8,)),
    FormatId.AVIF: FormatInfo("AVIF", "Next-generation format with the highest compression", ("avif",), "image/avif", True, True, True, (8, 10, 12)),
    FormatId.BMP: FormatInfo("BMP", "Uncompressed, widely compatible", ("bmp",), "image/bmp", False, False, False, (8, 16, 24, 32)),
    FormatId.TIFF: FormatInfo("TIFF", "Professional format with multi-page support", ("tiff", "tif"), "image/tiff", True, False, False, (8, 16, 32)),
    FormatId.GIF: FormatInfo("GIF", "Palette-based, supports animation", ("gif",), "image/gif", True, True, False, (8,)),
    FormatId.ICO: FormatInfo("ICO", "Windows icon container", ("ico",), "image/x-icon", True, False, False, (8, 32)),
}

SUPPORTED_FORMATS: tuple[FormatId, ...] = tuple(FORMAT_INFO)

# Lower-cased extension (no dot) -> format
EXTENSION_FORMATS: dict[str, FormatId] = {
    ext: fmt for fmt, info in FORMAT_INFO.items() for ext in info.extensions
}

DEFAULT_FORMAT_OPTIONS: dict[FormatId, ConversionOptions] = {
    FormatId.JPEG: ConversionOptions(quality=0.8, progressive=False, preserve_dimensions=True, preserve_color_space=True, preserve_metadata=False),
    FormatId.PNG: ConversionOptions(compression_level=6, preserve_dimensions=True, preserve_color_space=True, preserve_metadata=False),
    FormatId.WEBP: ConversionOptions(quality=0.8, preserve_dimensions=True, preserve_color_space=True, preserve_metadata=False),
    FormatId.AVIF: ConversionOptions(quality=0.7, preserve_dimensions=True, preserve_color_space=True, preserve_metadata=False),
    FormatId.BMP: ConversionOptions(preserve_dimensions=True, preserve_color_space=True, preserve_metadata=False),
    FormatId.TIFF: ConversionOptions(compression_level=6, preserve_dimensions=True, preserve_color_space=True, preserve_metadata=True),
    FormatId.GIF: ConversionOptions(preserve_dimensions=True, preserve_color_space=False, preserve_metadata=False),
    FormatId.ICO: ConversionOptions(preserve_dimensions=False, preserve_color_space=True, preserve_metadata=False),
}


def get_format_info(fmt) -> Optional[FormatInfo]:
    return FORMAT_INFO.get(FormatId.parse(fmt))


def default_options_for(fmt: FormatId) -> ConversionOptions:
    return DEFAULT_FORMAT_OPTIONS.get(fmt, ConversionOptions())

from .batch import BatchCoordinator, BatchJob
from .detection import FormatDetector
from .formats import FORMAT_INFO, SUPPORTED_FORMATS, get_format_info
from .models import (
    ConversionOptions,
    ConversionState,
    ConversionTask,
    ConvertedImage,
    FormatId,
    ImageInput,
    ProgressEvent,
    ProgressStage,
)
from .orchestrator import ConversionOrchestrator
from .progress import CancellationToken, ProgressStream

__all__ = [
    "BatchCoordinator",
    "BatchJob",
    "CancellationToken",
    "ConversionOptions",
    "ConversionOrchestrator",
    "ConversionState",
    "ConversionTask",
    "ConvertedImage",
    "FORMAT_INFO",
    "FormatDetector",
    "FormatId",
    "ImageInput",
    "ProgressEvent",
    "ProgressStage",
    "ProgressStream",
    "SUPPORTED_FORMATS",
    "get_format_info",
]

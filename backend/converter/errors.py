"""Error taxonomy shared by the engine loader, orchestrator and batch coordinator."""
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    FORMAT = "format"
    CONVERSION = "conversion"
    MEMORY = "memory"
    NETWORK = "network"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


class ConversionError(Exception):
    """A surfaced failure. Callers branch on ``kind`` rather than on subclasses."""

    def __init__(self, kind: ErrorKind, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.kind = ErrorKind(kind)
        self.message = message
        self.detail = detail

    def __repr__(self) -> str:
        return f"ConversionError(kind={self.kind.value!r}, message={self.message!r}, detail={self.detail!r})"

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "message": self.message, "detail": self.detail}

    @classmethod
    def not_ready(cls) -> "ConversionError":
        return cls(ErrorKind.CONVERSION, "Codec engine not ready", detail="engine_not_ready")

    @classmethod
    def busy(cls, what: str) -> "ConversionError":
        return cls(ErrorKind.CONVERSION, f"Another {what} is already in progress", detail="busy")

    @classmethod
    def cancelled(cls, detail: Optional[str] = None) -> "ConversionError":
        return cls(ErrorKind.CANCELLED, "Operation cancelled", detail=detail)


class EngineLoadError(Exception):
    """Raised when the codec engine cannot be instantiated or initialized."""

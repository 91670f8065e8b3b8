"""
fipscheck Error Taxonomy

Stable error kinds attached to per-binary reports, plus the exceptions
raised inside the pipeline. Only FatalRootError escapes a scan; everything
else is converted into a ScanError on the offending report.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Error kinds per the scan error taxonomy."""
    UNREADABLE = "Unreadable"
    PROBE_FAILED = "ProbeFailed"
    TIMEOUT = "Timeout"
    CANCELLED = "Cancelled"
    HOST_UNAVAILABLE = "HostUnavailable"
    FATAL_ROOT = "FatalRoot"


@dataclass(frozen=True)
class ScanError:
    """Failure description carried by a BinaryReport."""
    kind: ErrorKind
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "message": self.message}

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


class FipsCheckError(Exception):
    """Base class for fipscheck exceptions."""

    kind: Optional[ErrorKind] = None


class FatalRootError(FipsCheckError):
    """The scan root does not exist or cannot be read."""

    kind = ErrorKind.FATAL_ROOT

    def __init__(self, root: str, reason: str):
        self.root = root
        self.reason = reason
        super().__init__(f"cannot scan root {root!r}: {reason}")


class ElfFormatError(FipsCheckError):
    """The file is not a well-formed ELF executable."""

    kind = ErrorKind.UNREADABLE


class BuildInfoError(FipsCheckError):
    """The embedded Go build info could not be decoded."""

    kind = ErrorKind.UNREADABLE


class ScanCancelledError(FipsCheckError):
    """
    Raised when a scan is cancelled before completion.

    The partial, already sorted result is available as ``result``.
    """

    kind = ErrorKind.CANCELLED

    def __init__(self, result: Any):
        self.result = result
        super().__init__("scan cancelled")

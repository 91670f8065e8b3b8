"""
fipscheck Data Model

Plain records passed between pipeline stages. Every record renders to a
JSON-compatible dict through ``to_dict``; timing-sensitive fields are
dropped when ``stable=True`` so reports can be compared across runs.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .elf import ElfInfo
from .errors import ErrorKind, ScanError


class BinaryKind(str, Enum):
    """Classification of a candidate executable."""
    GO_BINARY = "gobinary"
    OTHER = "other"


@dataclass(frozen=True)
class HostCapability:
    """Host crypto library reading, captured once per run."""
    library_version: str
    fips_capable: bool
    diagnostic: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d = {
            "library_version": self.library_version,
            "fips_capable": self.fips_capable,
        }
        if self.diagnostic:
            d["diagnostic"] = self.diagnostic
        return d


@dataclass(frozen=True)
class Candidate:
    """A regular file the walker considers worth classifying."""
    absolute_path: str
    relative_path: str
    size: int
    mode: int


@dataclass(frozen=True)
class ClassifiedBinary:
    """A candidate the classifier accepted as a Go executable."""
    candidate: Candidate
    kind: BinaryKind
    elf: ElfInfo
    buildinfo_offset: int

    @property
    def relative_path(self) -> str:
        return self.candidate.relative_path


@dataclass
class BinaryMetadata:
    """Build metadata embedded by the Go toolchain."""
    runtime_version: str
    module_path: str
    native_interop_enabled: bool
    uses_delegated_crypto: bool
    build_settings: Dict[str, str] = field(default_factory=dict)
    package_path: str = ""
    experiments: List[str] = field(default_factory=list)
    dependencies: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "runtime_version": self.runtime_version,
            "module_path": self.module_path,
            "package_path": self.package_path,
            "native_interop_enabled": self.native_interop_enabled,
            "uses_delegated_crypto": self.uses_delegated_crypto,
            "experiments": list(self.experiments),
            "build_settings": dict(self.build_settings),
            "dependencies": list(self.dependencies),
        }


@dataclass
class RuntimeOutcome:
    """Startup outcome of a binary executed under the FIPS policy."""
    fails_startup: bool
    captured_stderr: str = ""
    captured_stdout: str = ""
    exit_code: Optional[int] = None
    failure: Optional[ErrorKind] = None
    duration_seconds: float = 0.0

    @classmethod
    def not_run(cls, kind: ErrorKind, message: str) -> "RuntimeOutcome":
        return cls(fails_startup=True, captured_stderr=message, failure=kind)

    def to_dict(self, stable: bool = False) -> Dict[str, Any]:
        d = {
            "fails_startup": self.fails_startup,
            "captured_stderr": self.captured_stderr,
            "captured_stdout": self.captured_stdout,
            "exit_code": self.exit_code,
            "failure": self.failure.value if self.failure else None,
        }
        if stable:
            d["captured_stderr"] = " ".join(self.captured_stderr.split())
            d["captured_stdout"] = " ".join(self.captured_stdout.split())
        else:
            d["duration_seconds"] = round(self.duration_seconds, 3)
        return d


@dataclass
class BinaryReport:
    """One report per accepted Go binary."""
    relative_path: str
    kind: BinaryKind
    runtime_outcome: RuntimeOutcome
    metadata: Optional[BinaryMetadata] = None
    error: Optional[ScanError] = None
    machine: str = ""
    verdict: Any = None  # Verdict, assigned by the fuser

    def is_compliant(self) -> bool:
        return self.verdict is not None and self.verdict.compliant

    def to_dict(self, stable: bool = False) -> Dict[str, Any]:
        return {
            "relative_path": self.relative_path,
            "kind": self.kind.value,
            "machine": self.machine,
            "metadata": self.metadata.to_dict() if self.metadata else None,
            "runtime_outcome": self.runtime_outcome.to_dict(stable=stable),
            "error": self.error.to_dict() if self.error else None,
            "verdict": self.verdict.to_dict() if self.verdict else None,
        }

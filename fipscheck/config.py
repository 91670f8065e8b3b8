"""
Configuration module for fipscheck.

Centralizes scan configuration with environment variable support
and validation.
"""

import os
from pathlib import PurePosixPath
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

# ============================================================
# Environment Configuration
# ============================================================

# Runtime probe limits
PROBE_TIMEOUT_SECONDS = float(os.getenv("FIPSCHECK_PROBE_TIMEOUT", "10"))
OUTPUT_CAP_BYTES = int(os.getenv("FIPSCHECK_OUTPUT_CAP", str(64 * 1024)))
CANCEL_GRACE_SECONDS = 2.0

# Worker pools (0 means derive from CPU count)
WORKERS = int(os.getenv("FIPSCHECK_WORKERS", "0"))
MAX_DEFAULT_WORKERS = 8
MAX_WORKERS = 64

# Global run deadline in seconds (empty means none)
DEADLINE_SECONDS = os.getenv("FIPSCHECK_DEADLINE", "")

# Host crypto library
OPENSSL_LIBRARY = os.getenv("FIPSCHECK_OPENSSL_LIBRARY", "")

# Logging
LOG_LEVEL = os.getenv("FIPSCHECK_LOG_LEVEL", "WARNING")
LOG_JSON = os.getenv("FIPSCHECK_LOG_JSON", "").lower() in ("1", "true", "yes")

# Managed runtime contract
FIPS_POLICY_ENV_VAR = "GOFIPS"
DELEGATED_CRYPTO_TOKEN = "systemcrypto"

# Pseudo filesystems skipped when scanning the host root
PSEUDO_FILESYSTEMS = ("proc", "sys", "dev", "run")


def default_workers() -> int:
    """Default parallelism: FIPSCHECK_WORKERS capped at 64, else min(available CPUs, 8)."""
    if WORKERS > 0:
        return min(WORKERS, MAX_WORKERS)
    try:
        cpus = len(os.sched_getaffinity(0))
    except (AttributeError, OSError):
        cpus = os.cpu_count() or 1
    return max(1, min(cpus, MAX_DEFAULT_WORKERS))


def _env_deadline() -> Optional[float]:
    if not DEADLINE_SECONDS:
        return None
    return float(DEADLINE_SECONDS)


# ============================================================
# Validated Scan Configuration
# ============================================================

class ScanConfig(BaseModel):
    """Options for a single scan run."""

    probe_timeout: float = Field(default=PROBE_TIMEOUT_SECONDS, gt=0)
    output_cap: int = Field(default=OUTPUT_CAP_BYTES, ge=1024)
    workers: int = Field(default_factory=default_workers, ge=1, le=MAX_WORKERS)
    prune: List[str] = Field(default_factory=list)
    follow_symlinks: bool = False
    deadline: Optional[float] = Field(default_factory=_env_deadline, gt=0)
    cancel_grace: float = Field(default=CANCEL_GRACE_SECONDS, ge=0)
    openssl_library: str = OPENSSL_LIBRARY

    @field_validator("prune")
    @classmethod
    def _normalize_prune(cls, value: List[str]) -> List[str]:
        normalized = []
        for entry in value:
            path = PurePosixPath("/" + entry.strip()).as_posix().strip("/")
            if path and path not in normalized:
                normalized.append(path)
        return normalized

    @classmethod
    def from_env(cls, **overrides: Any) -> "ScanConfig":
        """Build a config from environment defaults, ignoring None overrides."""
        values: Dict[str, Any] = {k: v for k, v in overrides.items() if v is not None}
        return cls(**values)


def is_debug() -> bool:
    """Check if debug mode is enabled."""
    return os.getenv("FIPSCHECK_DEBUG", "").lower() in ("1", "true", "yes")

"""
fipscheck: FIPS Compliance Checker for Go Binaries

Version: 0.3.0

Walks a directory tree (the host root or an unpacked container image),
finds every Go executable, and decides for each one whether it would run
under an enforced FIPS crypto policy:

    COMPLIANT(binary) = uses_delegated_crypto AND native_interop_enabled
                        AND NOT fails_startup AND host.fips_capable

The tree is compliant only if it holds at least one Go binary and every
Go binary is compliant.

Usage:
    from fipscheck import check_binaries, check_host, summarize, ScanConfig

    host = check_host()
    print(host.library_version, host.fips_capable)

    result = check_binaries("/mnt/image", config=ScanConfig(probe_timeout=5))
    for report in result.reports:
        print(report.relative_path, report.verdict.to_dict())

    summary = summarize(result)
    if not summary.is_compliant:
        print(summary.reason)
        print(summary.detailed_report)
"""

__version__ = "0.3.0"

# Errors
from .errors import (
    ErrorKind,
    ScanError,
    FipsCheckError,
    FatalRootError,
    ElfFormatError,
    BuildInfoError,
    ScanCancelledError,
)

# Configuration
from .config import ScanConfig, default_workers

# Data model
from .models import (
    BinaryKind,
    HostCapability,
    Candidate,
    ClassifiedBinary,
    BinaryMetadata,
    RuntimeOutcome,
    BinaryReport,
)

# Pipeline stages
from .host import probe_host, read_host_capability
from .walker import walk, WalkStats
from .classifier import classify
from .buildinfo import extract_metadata, parse_modinfo
from .probe import RuntimeProbe
from .verdict import (
    Reason,
    Verdict,
    AggregateVerdict,
    fuse,
    aggregate,
    is_binary_fips_compliant,
)
from .scheduler import Scanner, ScanResult, check_binaries

# Reporting
from .report import ComplianceSummary, render_text, summarize
from .digest import canonicalize, content_digest


def check_host(library=None) -> HostCapability:
    """Host crypto library version and FIPS capability, read once per library name."""
    return probe_host(library)


__all__ = [
    # Version
    "__version__",

    # Errors
    "ErrorKind",
    "ScanError",
    "FipsCheckError",
    "FatalRootError",
    "ElfFormatError",
    "BuildInfoError",
    "ScanCancelledError",

    # Configuration
    "ScanConfig",
    "default_workers",

    # Data model
    "BinaryKind",
    "HostCapability",
    "Candidate",
    "ClassifiedBinary",
    "BinaryMetadata",
    "RuntimeOutcome",
    "BinaryReport",

    # Pipeline
    "check_host",
    "probe_host",
    "read_host_capability",
    "walk",
    "WalkStats",
    "classify",
    "extract_metadata",
    "parse_modinfo",
    "RuntimeProbe",
    "Reason",
    "Verdict",
    "AggregateVerdict",
    "fuse",
    "aggregate",
    "is_binary_fips_compliant",
    "Scanner",
    "ScanResult",
    "check_binaries",

    # Reporting
    "ComplianceSummary",
    "render_text",
    "summarize",
    "canonicalize",
    "content_digest",
]

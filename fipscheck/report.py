"""
Human-readable scan reports and the image-level compliance summary.
"""

from dataclasses import dataclass
from typing import Any, Dict, List

from .models import BinaryReport, HostCapability
from .verdict import REASON_TEXT

RULE = "─" * 53


@dataclass
class ComplianceSummary:
    """One-line answer for a scanned root (an unpacked image, usually)."""
    root: str
    is_compliant: bool
    reason: str
    binaries_found: int
    compliant_binaries: int
    detailed_report: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "root": self.root,
            "is_compliant": self.is_compliant,
            "reason": self.reason,
            "binaries_found": self.binaries_found,
            "compliant_binaries": self.compliant_binaries,
        }


def render_host(host: HostCapability) -> str:
    lines = [
        "=== Host FIPS Environment Check ===",
        f"OpenSSL Version: {host.library_version or 'unavailable'}",
        f"FIPS Capable: {str(host.fips_capable).lower()}",
    ]
    if host.fips_capable:
        lines.append("✅ Status: Host is FIPS capable")
    else:
        lines.append("⚠️  Status: Host is NOT FIPS capable")
        if host.diagnostic:
            lines.append(f"    {host.diagnostic}")
    return "\n".join(lines) + "\n"


def _status_line(report: BinaryReport) -> str:
    if report.is_compliant():
        return "    ✅ FIPS Status: COMPLIANT"
    reason = report.verdict.reason if report.verdict else None
    text = REASON_TEXT.get(reason, "unknown")
    return f"    ❌ FIPS Status: NOT COMPLIANT ({text})"


def _render_binary(index: int, report: BinaryReport) -> List[str]:
    lines = [
        RULE,
        f"[{index}] Binary: {report.relative_path}",
        f"    Type: {report.kind.value}",
    ]
    meta = report.metadata
    if meta is not None:
        lines.append(f"    Go Version: {meta.runtime_version}")
        if meta.module_path:
            lines.append(f"    Module: {meta.module_path}")
        lines.append(f"    CGO Enabled: {str(meta.native_interop_enabled).lower()}")
        lines.append(f"    Uses Systemcrypto: {str(meta.uses_delegated_crypto).lower()}")
    if report.machine:
        lines.append(f"    Architecture: {report.machine}")
    lines.append(f"    Fails on FIPS Check: {str(report.runtime_outcome.fails_startup).lower()}")
    lines.append(_status_line(report))

    output = [line for line in report.runtime_outcome.captured_stderr.split("\n") if line]
    if output:
        lines.append("    Runtime Output:")
        lines.extend(f"        {line}" for line in output)

    if report.error is not None:
        lines.append(f"    ⚠️  Error: {report.error}")
    lines.append("")
    return lines


def render_text(result, include_host: bool = True) -> str:
    """Render a ScanResult as the detailed text report."""
    reports = result.reports
    lines: List[str] = []
    if include_host:
        lines.append(render_host(result.host))

    lines.append("=== Binary FIPS Check Report ===")
    lines.append(f"Total binaries scanned: {len(reports)}")
    lines.append("")
    if not reports:
        lines.append("No Go binaries found.")
        return "\n".join(lines) + "\n"

    delegated = sum(1 for r in reports if r.metadata and r.metadata.uses_delegated_crypto)
    failed = sum(1 for r in reports if r.runtime_outcome.fails_startup)
    lines.append(f"Binaries with systemcrypto: {delegated}")
    lines.append(f"Binaries that fail FIPS check: {failed}")
    lines.append("")

    for i, report in enumerate(reports, start=1):
        lines.extend(_render_binary(i, report))

    summary = result.aggregate
    lines.append(RULE)
    lines.append("Summary:")
    lines.append(f"  Total: {len(reports)} | Systemcrypto: {delegated} | Failed FIPS: {failed}")
    lines.append(f"  Compliant: {summary.compliant} | Not compliant: {summary.not_compliant}"
                 f" | Other executables: {summary.other_binaries}")
    if result.cancelled:
        lines.append("  ⚠️  Scan was cancelled; the report is partial")
    return "\n".join(lines) + "\n"


def _summary_reason(result) -> str:
    verdict = result.aggregate.verdict
    if verdict.compliant:
        return "all Go binaries are FIPS compliant"
    if result.cancelled:
        return "scan cancelled before completion"
    failing = [r for r in result.reports if not r.is_compliant()]
    text = REASON_TEXT[verdict.reason]
    if not failing:
        return text
    return f"{len(failing)} of {len(result.reports)} Go binaries not compliant; first: {failing[0].relative_path} ({text})"


def summarize(result) -> ComplianceSummary:
    """Collapse a ScanResult into a ComplianceSummary."""
    return ComplianceSummary(
        root=result.root,
        is_compliant=result.is_compliant(),
        reason=_summary_reason(result),
        binaries_found=result.aggregate.total,
        compliant_binaries=result.aggregate.compliant,
        detailed_report=render_text(result),
    )

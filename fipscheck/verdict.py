"""
Verdict Fuser

Combines build metadata, the runtime probe outcome and the host capability
into a per-binary compliance verdict, and rolls reports up into an
aggregate.

A binary is compliant iff:
    uses_delegated_crypto AND native_interop_enabled
    AND NOT fails_startup AND host.fips_capable

Every failing predicate is recorded; the first one in canonical order is
the primary reason.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from .errors import ScanError
from .models import BinaryMetadata, BinaryReport, HostCapability, RuntimeOutcome


class Reason(str, Enum):
    """Why a binary or a tree is not compliant, in canonical order."""
    DELEGATED_CRYPTO_NOT_USED = "DelegatedCryptoNotUsed"
    NATIVE_INTEROP_DISABLED = "NativeInteropDisabled"
    RUNTIME_STARTUP_FAILED = "RuntimeStartupFailed"
    HOST_NOT_CAPABLE = "HostNotCapable"
    UNREADABLE = "Unreadable"
    NO_CANDIDATES = "NoCandidates"


REASON_TEXT = {
    Reason.DELEGATED_CRYPTO_NOT_USED: "systemcrypto not in use",
    Reason.NATIVE_INTEROP_DISABLED: "cgo disabled",
    Reason.RUNTIME_STARTUP_FAILED: "runtime check fails",
    Reason.HOST_NOT_CAPABLE: "host not FIPS capable",
    Reason.UNREADABLE: "binary unreadable",
    Reason.NO_CANDIDATES: "no Go binaries found",
}


@dataclass(frozen=True)
class Verdict:
    """Compliance decision with its failing predicates."""
    compliant: bool
    reasons: tuple = ()

    @property
    def reason(self) -> Optional[Reason]:
        return self.reasons[0] if self.reasons else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "verdict": "Compliant" if self.compliant else "NotCompliant",
            "reason": self.reason.value if self.reason else None,
            "reasons": [r.value for r in self.reasons],
        }


COMPLIANT = Verdict(compliant=True)


def is_binary_fips_compliant(metadata: BinaryMetadata, outcome: RuntimeOutcome,
                             host_fips_capable: bool) -> bool:
    """Plain boolean form of the compliance predicate."""
    return (metadata.uses_delegated_crypto
            and metadata.native_interop_enabled
            and not outcome.fails_startup
            and host_fips_capable)


def fuse(
    metadata: Optional[BinaryMetadata],
    outcome: RuntimeOutcome,
    host: HostCapability,
    error: Optional[ScanError] = None,
) -> Verdict:
    """Per-binary verdict. Any error (or missing metadata) is Unreadable."""
    if error is not None or metadata is None:
        return Verdict(compliant=False, reasons=(Reason.UNREADABLE,))

    reasons: List[Reason] = []
    if not metadata.uses_delegated_crypto:
        reasons.append(Reason.DELEGATED_CRYPTO_NOT_USED)
    if not metadata.native_interop_enabled:
        reasons.append(Reason.NATIVE_INTEROP_DISABLED)
    if outcome.fails_startup:
        reasons.append(Reason.RUNTIME_STARTUP_FAILED)
    if not host.fips_capable:
        reasons.append(Reason.HOST_NOT_CAPABLE)

    if not reasons:
        return COMPLIANT
    return Verdict(compliant=False, reasons=tuple(reasons))


@dataclass
class AggregateVerdict:
    """Roll-up over all Go binary reports of a scan."""
    total: int
    compliant: int
    by_reason: Dict[Reason, int] = field(default_factory=dict)
    other_binaries: int = 0
    verdict: Verdict = field(default_factory=lambda: Verdict(False, (Reason.NO_CANDIDATES,)))

    @property
    def not_compliant(self) -> int:
        return self.total - self.compliant

    def to_dict(self) -> Dict[str, Any]:
        d = {
            "total": self.total,
            "compliant": self.compliant,
            "not_compliant": self.not_compliant,
            "by_reason": {r.value: self.by_reason[r] for r in Reason if r in self.by_reason},
            "other_binaries": self.other_binaries,
        }
        d.update(self.verdict.to_dict())
        return d


def aggregate(reports: Sequence[BinaryReport], other_binaries: int = 0) -> AggregateVerdict:
    """
    Aggregate verdict over reports already in their final order.

    Compliant iff there is at least one report and all are compliant. The
    aggregate reason is the primary reason of the first failing report.
    """
    by_reason: Dict[Reason, int] = {}
    compliant = 0
    first_failure: Optional[Reason] = None
    for report in reports:
        if report.is_compliant():
            compliant += 1
            continue
        reason = report.verdict.reason if report.verdict else Reason.UNREADABLE
        by_reason[reason] = by_reason.get(reason, 0) + 1
        if first_failure is None:
            first_failure = reason

    total = len(reports)
    if total == 0:
        verdict = Verdict(compliant=False, reasons=(Reason.NO_CANDIDATES,))
    elif first_failure is None:
        verdict = COMPLIANT
    else:
        verdict = Verdict(compliant=False, reasons=(first_failure,))
    return AggregateVerdict(
        total=total,
        compliant=compliant,
        by_reason=by_reason,
        other_binaries=other_binaries,
        verdict=verdict,
    )

"""
Scan Scheduler

Drives the pipeline concurrently:

    walker (1 thread)
        -> bounded queue -> classifier pool
        -> bounded queue -> probe pool -- submits --> extractor pool
        -> report list (append under lock)

Each probe worker hands the binary's metadata extraction to the extractor
pool and runs the runtime probe meanwhile, then joins both results and
fuses the verdict. Queue capacity bounds memory: the candidate list is
never materialized.

A single threading.Event cancels the run. Workers check it at each loop
head, in-flight probes kill their process group, and Go binaries that
were accepted but not yet probed are finalized as Cancelled.
"""

import logging
import queue
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .buildinfo import extract_metadata
from .classifier import classify
from .config import ScanConfig
from .digest import content_digest
from .errors import ErrorKind, FipsCheckError, ScanCancelledError, ScanError
from .host import probe_host
from .logging_config import ScanAuditLogger, set_scan_id
from .models import (
    BinaryKind,
    BinaryMetadata,
    BinaryReport,
    Candidate,
    ClassifiedBinary,
    HostCapability,
    RuntimeOutcome,
)
from .probe import RuntimeProbe
from .verdict import AggregateVerdict, aggregate, fuse
from .walker import WalkStats, check_root, walk

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.1
_STOP = object()


@dataclass
class ScanResult:
    """Structured outcome of a scan."""
    root: str
    host: HostCapability
    reports: List[BinaryReport]
    aggregate: AggregateVerdict
    scan_id: str = ""
    cancelled: bool = False
    walk_stats: WalkStats = field(default_factory=WalkStats)

    def is_compliant(self) -> bool:
        return self.aggregate.verdict.compliant

    def to_dict(self, stable: bool = False) -> Dict[str, Any]:
        d = {
            "root": self.root,
            "host": self.host.to_dict(),
            "reports": [r.to_dict(stable=stable) for r in self.reports],
            "aggregate": self.aggregate.to_dict(),
            "cancelled": self.cancelled,
        }
        if not stable:
            d["scan_id"] = self.scan_id
            d["walk"] = {
                "directories": self.walk_stats.directories,
                "candidates": self.walk_stats.candidates,
                "pruned": self.walk_stats.pruned,
                "errors": self.walk_stats.errors,
            }
        return d

    def digest(self) -> str:
        """Digest over the stable form; equal for repeated scans of a tree."""
        return content_digest(self.to_dict(stable=True))


def _get(q: queue.Queue, cancel: threading.Event):
    while not cancel.is_set():
        try:
            return q.get(timeout=POLL_INTERVAL)
        except queue.Empty:
            continue
    return None


def _put(q: queue.Queue, item, cancel: threading.Event) -> bool:
    while not cancel.is_set():
        try:
            q.put(item, timeout=POLL_INTERVAL)
            return True
        except queue.Full:
            continue
    return False


class Scanner:
    """
    Concurrent compliance scanner.

    Args:
        config: Scan options (defaults from the environment)
        probe: Runtime probe; built from the config when omitted
        host: Host capability reading; probed once when omitted
        extractor: Metadata extraction callable (path, offset) -> metadata
    """

    def __init__(
        self,
        config: Optional[ScanConfig] = None,
        probe: Optional[RuntimeProbe] = None,
        host: Optional[HostCapability] = None,
        extractor: Callable[..., BinaryMetadata] = extract_metadata,
    ):
        self.config = config or ScanConfig()
        self.probe = probe or RuntimeProbe(
            timeout=self.config.probe_timeout,
            output_cap=self.config.output_cap,
            cancel_grace=self.config.cancel_grace,
        )
        self.host = host
        self.extractor = extractor

    def scan(self, root: str, cancel_event: Optional[threading.Event] = None) -> ScanResult:
        """
        Scan ``root`` and return the sorted, fused result.

        Raises FatalRootError if the root cannot be read, and
        ScanCancelledError (carrying the partial result) if the run was
        cancelled or hit its deadline before finishing.
        """
        root_abs = check_root(root)
        return _ScanRun(self, root_abs, cancel_event or threading.Event()).execute()


class _ScanRun:
    """State of one scan; threads share it through locks and queues."""

    def __init__(self, scanner: Scanner, root: str, cancel: threading.Event):
        self.scanner = scanner
        self.config = scanner.config
        self.root = root
        self.cancel = cancel
        self.scan_id = str(uuid.uuid4())
        self.audit = ScanAuditLogger(scan_id=self.scan_id)
        self.stats = WalkStats()
        self.host: Optional[HostCapability] = None

        capacity = 2 * self.config.workers
        self.candidates: queue.Queue = queue.Queue(maxsize=capacity)
        self.binaries: queue.Queue = queue.Queue(maxsize=capacity)

        self._lock = threading.Lock()
        self.reports: List[BinaryReport] = []
        self.other_binaries = 0
        self.walk_complete = False
        self.producer_error: Optional[BaseException] = None
        self.deadline_at: Optional[float] = None
        self.expired = False
        self.extractors: Optional[ThreadPoolExecutor] = None

    # ------------------------------------------------------------
    # Orchestration
    # ------------------------------------------------------------

    def execute(self) -> ScanResult:
        workers = self.config.workers
        set_scan_id(self.scan_id)
        self.audit.scan_started(self.root, workers, self.config.probe_timeout)

        # Read once, before any worker exists
        self.host = self.scanner.host or probe_host(self.config.openssl_library or None)
        self.audit.host_capability(self.host.library_version, self.host.fips_capable, self.host.diagnostic)

        timer = None
        if self.config.deadline is not None:
            self.deadline_at = time.monotonic() + self.config.deadline
            timer = threading.Timer(self.config.deadline, self._expire)
            timer.daemon = True
            timer.start()

        producer = threading.Thread(target=self._produce, name="fipscheck-walker", daemon=True)
        classifiers = [
            threading.Thread(target=self._classify_loop, name=f"fipscheck-classify-{i}", daemon=True)
            for i in range(workers)
        ]
        probers = [
            threading.Thread(target=self._probe_loop, name=f"fipscheck-probe-{i}", daemon=True)
            for i in range(workers)
        ]

        try:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="fipscheck-extract") as extractors:
                self.extractors = extractors
                for thread in [producer, *classifiers, *probers]:
                    thread.start()

                producer.join()
                for thread in classifiers:
                    thread.join()
                for _ in probers:
                    if not _put(self.binaries, _STOP, self.cancel):
                        break
                for thread in probers:
                    thread.join()
        finally:
            if timer is not None:
                timer.cancel()

        if self.producer_error is not None:
            raise self.producer_error

        self._finalize_unprobed()
        return self._result()

    def _expire(self) -> None:
        self.expired = True
        self.cancel.set()

    def _result(self) -> ScanResult:
        reports = sorted(self.reports, key=lambda r: r.relative_path)
        summary = aggregate(reports, other_binaries=self.other_binaries)
        interrupted = self.expired or self.cancel.is_set() and (
            not self.walk_complete
            or any(r.error is not None and r.error.kind == ErrorKind.CANCELLED for r in reports)
        )
        result = ScanResult(
            root=self.root,
            host=self.host,
            reports=reports,
            aggregate=summary,
            scan_id=self.scan_id,
            cancelled=interrupted,
            walk_stats=self.stats,
        )
        if interrupted:
            self.audit.scan_cancelled(len(reports))
            raise ScanCancelledError(result)
        self.audit.scan_completed({
            "total": summary.total,
            "compliant": summary.compliant,
            "other_binaries": summary.other_binaries,
            "verdict": summary.verdict.to_dict()["verdict"],
        })
        return result

    def _record(self, report: BinaryReport) -> None:
        with self._lock:
            self.reports.append(report)
        if report.error is not None:
            self.audit.item_error(report.relative_path, report.error.kind.value, report.error.message)
        self.audit.binary_verdict(
            report.relative_path,
            report.verdict.compliant,
            [r.value for r in report.verdict.reasons],
        )

    # ------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------

    def _produce(self) -> None:
        try:
            for candidate in walk(
                self.root,
                prune=self.config.prune,
                follow_symlinks=self.config.follow_symlinks,
                cancel_event=self.cancel,
                stats=self.stats,
            ):
                if not _put(self.candidates, candidate, self.cancel):
                    return
            self.walk_complete = not self.cancel.is_set()
        except BaseException as exc:
            self.producer_error = exc
            self.cancel.set()
        finally:
            for _ in range(self.config.workers):
                if not _put(self.candidates, _STOP, self.cancel):
                    break

    def _classify_loop(self) -> None:
        while not self.cancel.is_set():
            candidate = _get(self.candidates, self.cancel)
            if candidate is None or candidate is _STOP:
                return
            binary = self._classify(candidate)
            if binary is None:
                with self._lock:
                    self.other_binaries += 1
                continue
            self.audit.binary_classified(binary.relative_path, binary.kind.value, binary.elf.machine_name)
            if not _put(self.binaries, binary, self.cancel):
                self._record(self._cancelled_report(binary))

    def _classify(self, candidate: Candidate) -> Optional[ClassifiedBinary]:
        try:
            return classify(candidate)
        except Exception:
            logger.exception("classifier failed on %s", candidate.relative_path)
            return None

    def _probe_loop(self) -> None:
        while not self.cancel.is_set():
            binary = _get(self.binaries, self.cancel)
            if binary is None or binary is _STOP:
                return
            self._record(self._process(binary))

    def _process(self, binary: ClassifiedBinary) -> BinaryReport:
        path = binary.candidate.absolute_path
        future = self.extractors.submit(self.scanner.extractor, path, binary.buildinfo_offset)

        remaining = None
        if self.deadline_at is not None:
            remaining = self.deadline_at - time.monotonic()
        try:
            outcome = self.scanner.probe.run(path, binary.elf.target, self.cancel, remaining)
        except Exception as exc:
            logger.exception("runtime probe failed on %s", binary.relative_path)
            outcome = RuntimeOutcome.not_run(ErrorKind.PROBE_FAILED, f"probe error: {exc}")
        self.audit.probe_completed(
            binary.relative_path,
            outcome.fails_startup,
            outcome.exit_code,
            outcome.failure.value if outcome.failure else None,
            outcome.duration_seconds,
        )

        metadata: Optional[BinaryMetadata] = None
        error: Optional[ScanError] = None
        try:
            metadata = future.result()
        except (FipsCheckError, OSError) as exc:
            error = ScanError(ErrorKind.UNREADABLE, str(exc))
        except Exception as exc:
            logger.exception("metadata extraction failed on %s", binary.relative_path)
            error = ScanError(ErrorKind.UNREADABLE, f"extraction error: {exc}")

        if error is None and outcome.failure == ErrorKind.CANCELLED:
            error = ScanError(ErrorKind.CANCELLED, "scan cancelled during runtime probe")

        return BinaryReport(
            relative_path=binary.relative_path,
            kind=binary.kind,
            runtime_outcome=outcome,
            metadata=metadata,
            error=error,
            machine=binary.elf.machine_name,
            verdict=fuse(metadata, outcome, self.host, error),
        )

    def _cancelled_report(self, binary: ClassifiedBinary) -> BinaryReport:
        error = ScanError(ErrorKind.CANCELLED, "scan cancelled before runtime probe")
        outcome = RuntimeOutcome.not_run(ErrorKind.CANCELLED, "probe not started")
        return BinaryReport(
            relative_path=binary.relative_path,
            kind=BinaryKind.GO_BINARY,
            runtime_outcome=outcome,
            error=error,
            machine=binary.elf.machine_name,
            verdict=fuse(None, outcome, self.host, error),
        )

    def _finalize_unprobed(self) -> None:
        while True:
            try:
                binary = self.binaries.get_nowait()
            except queue.Empty:
                return
            if binary is not _STOP:
                self._record(self._cancelled_report(binary))


def check_binaries(
    root: str,
    config: Optional[ScanConfig] = None,
    cancel_event: Optional[threading.Event] = None,
    host: Optional[HostCapability] = None,
    probe: Optional[RuntimeProbe] = None,
) -> ScanResult:
    """
    Scan ``root`` for Go binaries and check each for FIPS compliance.

    Convenience wrapper around Scanner.
    """
    return Scanner(config=config, probe=probe, host=host).scan(root, cancel_event)

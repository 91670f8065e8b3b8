"""
Logging configuration for fipscheck.

Provides structured JSON logging for scan audit trails and debugging.
"""

import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from typing import Any, Dict, List, Optional

# Context variable for scan ID tracking
scan_id_var: ContextVar[str] = ContextVar('scan_id', default='')


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs one JSON object per record so scan logs can be shipped
    alongside the report to a log aggregation system.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": time.strftime('%Y-%m-%dT%H:%M:%SZ', time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        scan_id = getattr(record, "scan_id", None) or get_scan_id()
        if scan_id:
            log_data["scan_id"] = scan_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, 'extra_fields'):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


class ScanAuditLogger:
    """
    Specialized logger for scan audit events.

    Worker threads do not inherit the scan ID context variable, so every
    event carries the scan ID explicitly.
    """

    def __init__(self, name: str = "fipscheck.audit", scan_id: str = ""):
        self._logger = logging.getLogger(name)
        self.scan_id = scan_id or get_scan_id()

    def _log(self, level: int, event_type: str, **kwargs) -> None:
        if not self._logger.isEnabledFor(level):
            return
        extra = {
            "event_type": event_type,
            "scan_id": self.scan_id,
            **kwargs
        }

        record = self._logger.makeRecord(
            self._logger.name,
            level,
            "",
            0,
            f"{event_type}: {kwargs.get('message', '')}",
            (),
            None
        )
        record.extra_fields = extra
        self._logger.handle(record)

    def scan_started(self, root: str, workers: int, probe_timeout: float) -> None:
        self._log(
            logging.INFO,
            "SCAN_STARTED",
            root=root,
            workers=workers,
            probe_timeout=probe_timeout,
            message=f"Scanning {root} with {workers} workers"
        )

    def host_capability(self, library_version: str, fips_capable: bool,
                        diagnostic: Optional[str] = None) -> None:
        level = logging.INFO if fips_capable else logging.WARNING
        self._log(
            level,
            "HOST_CAPABILITY",
            library_version=library_version,
            fips_capable=fips_capable,
            diagnostic=diagnostic,
            message=f"Host crypto library {library_version or 'unavailable'}"
        )

    def binary_classified(self, relative_path: str, kind: str, machine: str) -> None:
        self._log(
            logging.DEBUG,
            "BINARY_CLASSIFIED",
            relative_path=relative_path,
            kind=kind,
            machine=machine,
            message=f"{relative_path} classified as {kind}"
        )

    def probe_completed(self, relative_path: str, fails_startup: bool,
                        exit_code: Optional[int], failure: Optional[str],
                        duration_seconds: float) -> None:
        self._log(
            logging.DEBUG,
            "PROBE_COMPLETED",
            relative_path=relative_path,
            fails_startup=fails_startup,
            exit_code=exit_code,
            failure=failure,
            duration_seconds=round(duration_seconds, 3),
            message=f"Runtime probe of {relative_path} finished"
        )

    def binary_verdict(self, relative_path: str, compliant: bool,
                       reasons: Optional[List[str]] = None) -> None:
        level = logging.INFO if compliant else logging.WARNING
        self._log(
            level,
            "BINARY_VERDICT",
            relative_path=relative_path,
            compliant=compliant,
            reasons=reasons or [],
            message=f"{relative_path}: {'compliant' if compliant else 'not compliant'}"
        )

    def item_error(self, relative_path: str, kind: str, detail: str) -> None:
        self._log(
            logging.WARNING,
            "ITEM_ERROR",
            relative_path=relative_path,
            error_kind=kind,
            detail=detail,
            message=f"{relative_path}: {kind}"
        )

    def scan_cancelled(self, completed: int) -> None:
        self._log(
            logging.WARNING,
            "SCAN_CANCELLED",
            completed=completed,
            message=f"Scan cancelled after {completed} reports"
        )

    def scan_completed(self, summary: Dict[str, Any]) -> None:
        self._log(
            logging.INFO,
            "SCAN_COMPLETED",
            **summary,
            message="Scan completed"
        )


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None
) -> None:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON formatting
        log_file: Optional file path for log output
    """
    numeric = getattr(logging, level.upper(), None)
    if not isinstance(numeric, int):
        raise ValueError(f"Unknown log level: {level}")

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if json_format:
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    # stdout carries the report
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


def set_scan_id(scan_id: Optional[str] = None) -> str:
    """
    Set the scan ID for the current context.

    Args:
        scan_id: Scan ID to set, or None to generate one

    Returns:
        The scan ID that was set
    """
    if scan_id is None:
        scan_id = str(uuid.uuid4())
    scan_id_var.set(scan_id)
    return scan_id


def get_scan_id() -> str:
    """Get the current scan ID."""
    return scan_id_var.get()

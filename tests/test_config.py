"""
Configuration and logging tests.
"""

import json
import logging
import unittest
from unittest import mock

from pydantic import ValidationError

from fipscheck.config import MAX_DEFAULT_WORKERS, MAX_WORKERS, ScanConfig, default_workers, is_debug
from fipscheck.logging_config import (
    ScanAuditLogger,
    StructuredFormatter,
    configure_logging,
    get_scan_id,
    set_scan_id,
)


class TestScanConfig(unittest.TestCase):
    """Validated scan options."""

    def test_defaults(self):
        config = ScanConfig()
        self.assertGreater(config.probe_timeout, 0)
        self.assertGreaterEqual(config.workers, 1)
        self.assertFalse(config.follow_symlinks)
        self.assertEqual(config.prune, [])

    def test_default_workers_bounded(self):
        with mock.patch("fipscheck.config.WORKERS", 0):
            self.assertTrue(1 <= default_workers() <= MAX_DEFAULT_WORKERS)
        with mock.patch("fipscheck.config.WORKERS", 12):
            self.assertEqual(default_workers(), 12)

    def test_oversized_worker_env_clamped(self):
        with mock.patch("fipscheck.config.WORKERS", 500):
            self.assertEqual(default_workers(), MAX_WORKERS)
            self.assertEqual(ScanConfig().workers, MAX_WORKERS)

    def test_debug_flag(self):
        with mock.patch.dict("os.environ", {"FIPSCHECK_DEBUG": "true"}):
            self.assertTrue(is_debug())
        with mock.patch.dict("os.environ", {"FIPSCHECK_DEBUG": "0"}):
            self.assertFalse(is_debug())

    def test_invalid_values_rejected(self):
        for options in ({"probe_timeout": 0}, {"output_cap": 100}, {"workers": 0},
                        {"workers": 65}, {"deadline": -1}):
            with self.subTest(options=options):
                with self.assertRaises(ValidationError):
                    ScanConfig(**options)

    def test_prune_normalized(self):
        config = ScanConfig(prune=["/opt/", "var//cache", "", "opt", "./tmp"])
        self.assertEqual(config.prune, ["opt", "var/cache", "tmp"])

    def test_from_env_ignores_none(self):
        config = ScanConfig.from_env(probe_timeout=None, workers=3)
        self.assertEqual(config.workers, 3)
        self.assertEqual(config.probe_timeout, ScanConfig().probe_timeout)


class TestLogging(unittest.TestCase):
    """Structured formatter and audit events."""

    def test_structured_formatter(self):
        record = logging.LogRecord("fipscheck.walker", logging.WARNING, __file__, 10,
                                   "cannot list %s", ("/root",), None)
        record.scan_id = "scan-1"
        data = json.loads(StructuredFormatter().format(record))
        self.assertEqual(data["message"], "cannot list /root")
        self.assertEqual(data["level"], "WARNING")
        self.assertEqual(data["scan_id"], "scan-1")

    def test_formatter_uses_context_scan_id(self):
        set_scan_id("ctx-scan")
        self.addCleanup(set_scan_id, "")
        record = logging.LogRecord("fipscheck", logging.INFO, __file__, 1, "hello", (), None)
        self.assertEqual(get_scan_id(), "ctx-scan")
        self.assertEqual(json.loads(StructuredFormatter().format(record))["scan_id"], "ctx-scan")

    def test_audit_logger_defaults_to_context_scan_id(self):
        set_scan_id("ctx-audit")
        self.addCleanup(set_scan_id, "")
        self.assertEqual(ScanAuditLogger().scan_id, "ctx-audit")

    def test_unknown_level_rejected(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        with self.assertRaises(ValueError):
            configure_logging(level="bogus")
        self.assertEqual(root.handlers, handlers)
        self.assertEqual(root.level, level)

    def test_audit_events(self):
        audit = ScanAuditLogger(scan_id="scan-2")
        with self.assertLogs("fipscheck.audit", level="DEBUG") as captured:
            audit.scan_started("/mnt/image", 4, 10.0)
            audit.binary_verdict("usr/bin/app", False, ["RuntimeStartupFailed"])
        started, verdict = [r.extra_fields for r in captured.records]
        self.assertEqual(started["event_type"], "SCAN_STARTED")
        self.assertEqual(started["scan_id"], "scan-2")
        self.assertEqual(started["workers"], 4)
        self.assertEqual(verdict["event_type"], "BINARY_VERDICT")
        self.assertEqual(verdict["reasons"], ["RuntimeStartupFailed"])
        self.assertEqual(captured.records[1].levelno, logging.WARNING)


if __name__ == "__main__":
    unittest.main()

"""
Verdict fusion tests: the full truth table, reason ordering, and the
aggregate roll-up.
"""

import itertools
import unittest

from fipscheck.errors import ErrorKind, ScanError
from fipscheck.models import BinaryKind, BinaryMetadata, BinaryReport, HostCapability, RuntimeOutcome
from fipscheck.verdict import Reason, aggregate, fuse, is_binary_fips_compliant


def _meta(delegated=True, interop=True):
    return BinaryMetadata(
        runtime_version="go1.22.1",
        module_path="example.com/app",
        native_interop_enabled=interop,
        uses_delegated_crypto=delegated,
    )


def _report(path, delegated=True, interop=True, fails=False, capable=True, error=None):
    meta = None if error else _meta(delegated, interop)
    outcome = RuntimeOutcome(fails_startup=fails, exit_code=1 if fails else 0)
    host = HostCapability("OpenSSL 3.0.13", capable)
    return BinaryReport(
        relative_path=path,
        kind=BinaryKind.GO_BINARY,
        runtime_outcome=outcome,
        metadata=meta,
        error=error,
        verdict=fuse(meta, outcome, host, error),
    )


class TestTruthTable(unittest.TestCase):
    """All 16 predicate combinations."""

    def test_all_combinations(self):
        for delegated, interop, fails, capable in itertools.product([True, False], repeat=4):
            with self.subTest(delegated=delegated, interop=interop, fails=fails, capable=capable):
                meta = _meta(delegated, interop)
                outcome = RuntimeOutcome(fails_startup=fails)
                host = HostCapability("OpenSSL 3.0.13", capable)
                expected = delegated and interop and not fails and capable

                verdict = fuse(meta, outcome, host)
                self.assertEqual(verdict.compliant, expected)
                self.assertEqual(is_binary_fips_compliant(meta, outcome, capable), expected)

                expected_reasons = [
                    reason for reason, failing in (
                        (Reason.DELEGATED_CRYPTO_NOT_USED, not delegated),
                        (Reason.NATIVE_INTEROP_DISABLED, not interop),
                        (Reason.RUNTIME_STARTUP_FAILED, fails),
                        (Reason.HOST_NOT_CAPABLE, not capable),
                    ) if failing
                ]
                self.assertEqual(list(verdict.reasons), expected_reasons)
                self.assertEqual(verdict.reason, expected_reasons[0] if expected_reasons else None)


class TestFuse(unittest.TestCase):
    """Error handling in the fuser."""

    def test_error_is_unreadable(self):
        error = ScanError(ErrorKind.UNREADABLE, "bad build info")
        verdict = fuse(None, RuntimeOutcome(fails_startup=False), HostCapability("x", True), error)
        self.assertFalse(verdict.compliant)
        self.assertEqual(verdict.reasons, (Reason.UNREADABLE,))

    def test_cancelled_is_unreadable(self):
        error = ScanError(ErrorKind.CANCELLED, "scan cancelled")
        verdict = fuse(_meta(), RuntimeOutcome(fails_startup=True), HostCapability("x", True), error)
        self.assertEqual(verdict.reason, Reason.UNREADABLE)

    def test_primary_reason_follows_canonical_order(self):
        verdict = fuse(_meta(delegated=False), RuntimeOutcome(fails_startup=True), HostCapability("x", True))
        self.assertEqual(verdict.reason, Reason.DELEGATED_CRYPTO_NOT_USED)
        self.assertEqual(verdict.to_dict(), {
            "verdict": "NotCompliant",
            "reason": "DelegatedCryptoNotUsed",
            "reasons": ["DelegatedCryptoNotUsed", "RuntimeStartupFailed"],
        })


class TestAggregate(unittest.TestCase):
    """Roll-up over sorted reports."""

    def test_empty_is_no_candidates(self):
        result = aggregate([], other_binaries=4)
        self.assertFalse(result.verdict.compliant)
        self.assertEqual(result.verdict.reason, Reason.NO_CANDIDATES)
        self.assertEqual(result.other_binaries, 4)

    def test_all_compliant(self):
        result = aggregate([_report("a"), _report("b")])
        self.assertTrue(result.verdict.compliant)
        self.assertEqual((result.total, result.compliant, result.not_compliant), (2, 2, 0))

    def test_first_failure_reason(self):
        reports = [
            _report("a"),
            _report("b", fails=True),
            _report("c", delegated=False),
            _report("d", fails=True),
        ]
        result = aggregate(reports)
        self.assertFalse(result.verdict.compliant)
        self.assertEqual(result.verdict.reason, Reason.RUNTIME_STARTUP_FAILED)
        self.assertEqual(result.by_reason, {
            Reason.RUNTIME_STARTUP_FAILED: 2,
            Reason.DELEGATED_CRYPTO_NOT_USED: 1,
        })
        self.assertEqual(result.to_dict()["by_reason"], {
            "DelegatedCryptoNotUsed": 1,
            "RuntimeStartupFailed": 2,
        })

    def test_error_reports_count_as_unreadable(self):
        error = ScanError(ErrorKind.UNREADABLE, "truncated")
        result = aggregate([_report("a", error=error)])
        self.assertEqual(result.verdict.reason, Reason.UNREADABLE)


if __name__ == "__main__":
    unittest.main()

"""
Host capability probe tests.
"""

import unittest
from unittest import mock

from fipscheck import host
from fipscheck.errors import ErrorKind
from fipscheck.models import HostCapability


class TestHostCapability(unittest.TestCase):
    """Reading the host crypto library."""

    def setUp(self):
        host.reset_host_cache()
        self.addCleanup(host.reset_host_cache)

    def test_missing_library_is_not_capable(self):
        reading = host.read_host_capability("libcrypto-does-not-exist.so.99")
        self.assertFalse(reading.fips_capable)
        self.assertEqual(reading.library_version, "")
        self.assertTrue(reading.diagnostic.startswith(ErrorKind.HOST_UNAVAILABLE.value))

    def test_system_library_reading(self):
        reading = host.read_host_capability()
        if not reading.library_version:
            self.skipTest("no libcrypto on this host")
        self.assertIn("SSL", reading.library_version)
        self.assertIsInstance(reading.fips_capable, bool)
        if not reading.fips_capable:
            self.assertIsNotNone(reading.diagnostic)

    def test_reading_is_cached(self):
        fake = HostCapability("OpenSSL 3.0.13", True)
        with mock.patch.object(host, "read_host_capability", return_value=fake) as reader:
            first = host.probe_host()
            second = host.probe_host()
        self.assertIs(first, second)
        self.assertEqual(reader.call_count, 1)

    def test_cache_keyed_by_library(self):
        readings = {
            "libcrypto.so.3": HostCapability("OpenSSL 3.0.13", True),
            "libcrypto.so.1.1": HostCapability("OpenSSL 1.1.1w", False, "no FIPS provider can be selected"),
        }
        with mock.patch.object(host, "read_host_capability", side_effect=readings.get) as reader:
            v3 = host.probe_host("libcrypto.so.3")
            legacy = host.probe_host("libcrypto.so.1.1")
            again = host.probe_host("libcrypto.so.3")
        self.assertTrue(v3.fips_capable)
        self.assertFalse(legacy.fips_capable)
        self.assertIs(again, v3)
        self.assertEqual(reader.call_count, 2)

    def test_to_dict(self):
        self.assertEqual(HostCapability("OpenSSL 3.0.13", True).to_dict(),
                         {"library_version": "OpenSSL 3.0.13", "fips_capable": True})
        self.assertIn("diagnostic", HostCapability("", False, "missing").to_dict())


if __name__ == "__main__":
    unittest.main()

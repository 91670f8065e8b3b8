"""
Filesystem walker and classifier tests.
"""

import os
import tempfile
import threading
import unittest

from fipscheck.classifier import classify
from fipscheck.errors import FatalRootError
from fipscheck.models import BinaryKind, Candidate
from fipscheck.walker import WalkStats, check_root, prune_set, walk
from tests.fixtures import DATA_OFFSET, build_elf, go_binary, plain_elf, write_file, write_script


class TestWalker(unittest.TestCase):
    """Candidate selection over a temporary tree."""

    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.root = tmp.name
        write_file(self.root, "bin/app", go_binary())
        write_file(self.root, "lib/noexec-elf", plain_elf(), mode=0o644)
        write_script(self.root, "bin/tool.sh", "exit 0")
        write_file(self.root, "etc/config.txt", b"key=value\n", mode=0o644)
        write_file(self.root, "cache/big/app2", go_binary())

    def _paths(self, **kwargs):
        return sorted(c.relative_path for c in walk(self.root, **kwargs))

    def test_executables_and_elf_files(self):
        self.assertEqual(
            self._paths(),
            ["bin/app", "bin/tool.sh", "cache/big/app2", "lib/noexec-elf"],
        )

    def test_candidate_fields(self):
        candidates = {c.relative_path: c for c in walk(self.root)}
        app = candidates["bin/app"]
        self.assertEqual(app.absolute_path, os.path.join(self.root, "bin", "app"))
        self.assertEqual(app.size, os.path.getsize(app.absolute_path))

    def test_prune(self):
        self.assertNotIn("cache/big/app2", self._paths(prune=["cache"]))
        self.assertIn("cache/big/app2", self._paths(prune=["cache/other"]))

    def test_symlinks_skipped_by_default(self):
        os.symlink(os.path.join(self.root, "bin"), os.path.join(self.root, "linked"))
        os.symlink(os.path.join(self.root, "bin", "app"), os.path.join(self.root, "app-link"))
        paths = self._paths()
        self.assertNotIn("app-link", paths)
        self.assertFalse(any(p.startswith("linked/") for p in paths))

    def test_follow_symlinks_without_loops(self):
        os.symlink(self.root, os.path.join(self.root, "bin", "loop"))
        os.symlink(os.path.join(self.root, "bin", "app"), os.path.join(self.root, "app-link"))
        paths = self._paths(follow_symlinks=True)
        self.assertIn("app-link", paths)
        self.assertEqual(paths.count("bin/app"), 1)

    def test_fifo_is_not_candidate(self):
        os.mkfifo(os.path.join(self.root, "bin", "pipe"))
        self.assertNotIn("bin/pipe", self._paths())

    def test_unreadable_directory_counted(self):
        if os.geteuid() == 0:
            self.skipTest("root can list any directory")
        locked = os.path.join(self.root, "locked")
        os.mkdir(locked)
        os.chmod(locked, 0)
        self.addCleanup(os.chmod, locked, 0o755)
        stats = WalkStats()
        list(walk(self.root, stats=stats))
        self.assertEqual(stats.errors, 1)

    def test_stats(self):
        stats = WalkStats()
        list(walk(self.root, prune=["cache"], stats=stats))
        self.assertEqual(stats.candidates, 3)
        self.assertEqual(stats.pruned, 1)

    def test_cancelled_walk_yields_nothing(self):
        cancel = threading.Event()
        cancel.set()
        self.assertEqual(list(walk(self.root, cancel_event=cancel)), [])

    def test_pseudo_filesystems_pruned_only_at_host_root(self):
        self.assertIn("proc", prune_set("/"))
        self.assertNotIn("proc", prune_set(self.root))
        self.assertEqual(prune_set(self.root, ["/opt/"]), {"opt"})


class TestCheckRoot(unittest.TestCase):
    """Fatal root validation."""

    def test_missing_root(self):
        with self.assertRaises(FatalRootError):
            check_root("/nonexistent/fipscheck-root")

    def test_file_root(self):
        with tempfile.NamedTemporaryFile() as f:
            with self.assertRaises(FatalRootError):
                check_root(f.name)

    def test_walk_raises_for_missing_root(self):
        with self.assertRaises(FatalRootError):
            list(walk("/nonexistent/fipscheck-root"))


class TestClassifier(unittest.TestCase):
    """Go executable detection."""

    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.root = tmp.name

    def _candidate(self, relpath, data, mode=0o755):
        path = write_file(self.root, relpath, data, mode)
        return Candidate(absolute_path=path, relative_path=relpath, size=len(data), mode=mode)

    def test_go_binary_accepted(self):
        binary = classify(self._candidate("app", go_binary()))
        self.assertIsNotNone(binary)
        self.assertEqual(binary.kind, BinaryKind.GO_BINARY)
        self.assertEqual(binary.buildinfo_offset, DATA_OFFSET)
        self.assertEqual(binary.relative_path, "app")

    def test_legacy_go_binary_accepted(self):
        self.assertIsNotNone(classify(self._candidate("old", go_binary(legacy=True))))

    def test_plain_elf_rejected(self):
        self.assertIsNone(classify(self._candidate("c-prog", plain_elf())))

    def test_script_rejected(self):
        self.assertIsNone(classify(self._candidate("run.sh", b"#!/bin/sh\nexit 0\n")))

    def test_relocatable_object_rejected(self):
        data = bytearray(go_binary())
        data[16] = 1  # e_type = ET_REL
        self.assertIsNone(classify(self._candidate("obj.o", bytes(data))))

    def test_corrupt_elf_rejected(self):
        data = build_elf(b"\0" * 32)[:48]
        self.assertIsNone(classify(self._candidate("broken", data)))

    def test_vanished_file_rejected(self):
        candidate = self._candidate("gone", go_binary())
        os.unlink(candidate.absolute_path)
        self.assertIsNone(classify(candidate))


if __name__ == "__main__":
    unittest.main()

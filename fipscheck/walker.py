"""
Filesystem Walker

Streams candidate executables under a scan root. A candidate is a regular
file with any executable permission bit, or one that starts with the ELF
magic. Symlinks are not followed by default; device files, sockets and
named pipes are never candidates.
"""

import logging
import os
import stat
import threading
from dataclasses import dataclass
from typing import Iterable, Iterator, Optional, Set, Tuple

from .config import PSEUDO_FILESYSTEMS
from .elf import ELF_MAGIC
from .errors import FatalRootError
from .models import Candidate

logger = logging.getLogger(__name__)

EXECUTABLE_BITS = stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH


@dataclass
class WalkStats:
    """Counters collected while walking."""
    directories: int = 0
    candidates: int = 0
    pruned: int = 0
    errors: int = 0


def check_root(root: str) -> str:
    """
    Validate the scan root and return its absolute path.

    Raises FatalRootError if the root is missing, not a directory, or
    cannot be listed.
    """
    root_abs = os.path.abspath(root)
    if not os.path.exists(root_abs):
        raise FatalRootError(root, "no such file or directory")
    if not os.path.isdir(root_abs):
        raise FatalRootError(root, "not a directory")
    try:
        with os.scandir(root_abs) as it:
            next(it, None)
    except OSError as exc:
        raise FatalRootError(root, exc.strerror or str(exc)) from exc
    return root_abs


def prune_set(root_abs: str, prune: Iterable[str] = ()) -> Set[str]:
    """Root-relative directories to skip. Pseudo filesystems only under '/'."""
    pruned = {p.strip("/") for p in prune if p.strip("/")}
    if root_abs == os.sep:
        pruned.update(PSEUDO_FILESYSTEMS)
    return pruned


def _has_elf_magic(path: str) -> bool:
    try:
        with open(path, "rb") as f:
            return f.read(len(ELF_MAGIC)) == ELF_MAGIC
    except OSError as exc:
        logger.debug("%s: cannot read magic: %s", path, exc.strerror or exc)
        return False


def _relative(path: str, root_abs: str) -> str:
    return os.path.relpath(path, root_abs).replace(os.sep, "/")


def walk(
    root: str,
    prune: Iterable[str] = (),
    follow_symlinks: bool = False,
    cancel_event: Optional[threading.Event] = None,
    stats: Optional[WalkStats] = None,
) -> Iterator[Candidate]:
    """
    Yield candidates under ``root`` in unspecified order.

    Per-entry errors are logged and counted; the walk continues. The
    cancellation event is checked between entries.
    """
    root_abs = check_root(root)
    stats = stats if stats is not None else WalkStats()
    pruned = prune_set(root_abs, prune)
    visited: Set[Tuple[int, int]] = set()
    if follow_symlinks:
        st = os.stat(root_abs)
        visited.add((st.st_dev, st.st_ino))

    def cancelled() -> bool:
        return cancel_event is not None and cancel_event.is_set()

    stack = [root_abs]
    while stack:
        if cancelled():
            return
        current = stack.pop()
        try:
            with os.scandir(current) as it:
                entries = list(it)
        except OSError as exc:
            stats.errors += 1
            logger.warning("cannot list %s: %s", current, exc.strerror or exc)
            continue
        stats.directories += 1

        child_dirs = []
        for entry in entries:
            if cancelled():
                return
            relative = _relative(entry.path, root_abs)
            try:
                if entry.is_symlink() and not follow_symlinks:
                    continue
                st = entry.stat(follow_symlinks=follow_symlinks)
            except OSError as exc:
                stats.errors += 1
                logger.warning("cannot stat %s: %s", relative, exc.strerror or exc)
                continue

            if stat.S_ISDIR(st.st_mode):
                if relative in pruned:
                    stats.pruned += 1
                    continue
                if follow_symlinks:
                    key = (st.st_dev, st.st_ino)
                    if key in visited:
                        continue
                    visited.add(key)
                child_dirs.append(entry.path)
                continue

            if not stat.S_ISREG(st.st_mode):
                continue
            if st.st_mode & EXECUTABLE_BITS or (st.st_size >= len(ELF_MAGIC) and _has_elf_magic(entry.path)):
                stats.candidates += 1
                yield Candidate(
                    absolute_path=entry.path,
                    relative_path=relative,
                    size=st.st_size,
                    mode=st.st_mode,
                )

        stack.extend(sorted(child_dirs, reverse=True))

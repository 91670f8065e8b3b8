"""
Runtime Probe

Executes a Go binary once with the FIPS policy forced on (GOFIPS=1) and
classifies its startup: exit status 0 within the timeout passes, anything
else (non-zero exit, signal, timeout, spawn failure) fails.

The child runs in its own session, so it has no controlling tty and its
whole process group can be killed on timeout or cancellation. Output is
drained from both pipes concurrently and capped per stream.
"""

import logging
import os
import selectors
import signal
import subprocess
import threading
import time
from typing import List, Optional, Tuple

from .config import (
    CANCEL_GRACE_SECONDS,
    FIPS_POLICY_ENV_VAR,
    OUTPUT_CAP_BYTES,
    PROBE_TIMEOUT_SECONDS,
)
from .elf import ElfTarget, host_target
from .errors import ErrorKind
from .models import RuntimeOutcome

logger = logging.getLogger(__name__)

MARKER = "[fipscheck]"
POLL_INTERVAL = 0.05
READ_CHUNK = 65536
DRAIN_SECONDS = 0.5

_UNSET = object()


class _CappedBuffer:
    """Keeps the first ``cap`` bytes of a stream and counts the rest."""

    def __init__(self, cap: int):
        self.cap = cap
        self.data = bytearray()
        self.dropped = 0

    def feed(self, chunk: bytes) -> None:
        room = self.cap - len(self.data)
        if room > 0:
            self.data += chunk[:room]
        self.dropped += max(0, len(chunk) - max(room, 0))

    def text(self) -> str:
        out = self.data.decode("utf-8", "replace")
        if self.dropped:
            out += f"\n{MARKER} output truncated, {self.dropped} bytes dropped\n"
        return out


class RuntimeProbe:
    """
    Single-attempt startup probe.

    Args:
        timeout: Hard wall-clock limit per binary, in seconds
        output_cap: Bytes retained per stream
        cancel_grace: Seconds between SIGTERM and SIGKILL on cancellation
        env_var: Variable that forces the runtime FIPS policy on
        target: Host ELF target; defaults to the running host, None skips the check
    """

    def __init__(
        self,
        timeout: float = PROBE_TIMEOUT_SECONDS,
        output_cap: int = OUTPUT_CAP_BYTES,
        cancel_grace: float = CANCEL_GRACE_SECONDS,
        env_var: str = FIPS_POLICY_ENV_VAR,
        target=_UNSET,
    ):
        self.timeout = timeout
        self.output_cap = output_cap
        self.cancel_grace = cancel_grace
        self.env_var = env_var
        self.host_target = host_target() if target is _UNSET else target

    def command(self, path: str) -> List[str]:
        """argv for the probe: the binary alone, no arguments."""
        return [path]

    def environment(self) -> dict:
        env = dict(os.environ)
        env[self.env_var] = "1"
        return env

    def run(
        self,
        path: str,
        target: Optional[ElfTarget] = None,
        cancel_event: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> RuntimeOutcome:
        """
        Probe the binary at ``path``.

        ``target`` is the binary's machine, word size and byte order; any
        difference from the host skips execution. ``timeout`` can only
        shorten the configured limit.
        """
        if target is not None and self.host_target is not None and target != self.host_target:
            return RuntimeOutcome.not_run(
                ErrorKind.PROBE_FAILED,
                f"{MARKER} not executed: binary targets {target.describe()}, "
                f"host is {self.host_target.describe()}",
            )
        if cancel_event is not None and cancel_event.is_set():
            return RuntimeOutcome.not_run(ErrorKind.CANCELLED, f"{MARKER} probe cancelled before start")

        limit = self.timeout if timeout is None else min(timeout, self.timeout)
        if limit <= 0:
            return RuntimeOutcome.not_run(ErrorKind.TIMEOUT, f"{MARKER} no time left to run probe")

        started = time.monotonic()
        try:
            proc = subprocess.Popen(
                self.command(path),
                cwd=os.path.dirname(path) or ".",
                env=self.environment(),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                close_fds=True,
                start_new_session=True,
            )
        except OSError as exc:
            return RuntimeOutcome(
                fails_startup=True,
                captured_stderr=f"{MARKER} cannot execute: {exc.strerror or exc}",
                failure=ErrorKind.PROBE_FAILED,
                duration_seconds=time.monotonic() - started,
            )

        try:
            stdout, stderr, failure = self._communicate(proc, started + limit, cancel_event)
        finally:
            self._reap(proc)

        duration = time.monotonic() - started
        exit_code = proc.returncode
        err_text = stderr.text()
        if failure == ErrorKind.TIMEOUT:
            err_text += f"\n{MARKER} probe timed out after {limit:g}s"
        elif failure == ErrorKind.CANCELLED:
            err_text += f"\n{MARKER} probe cancelled"
        elif exit_code is not None and exit_code < 0:
            err_text += f"\n{MARKER} terminated by {_signal_name(-exit_code)}"

        return RuntimeOutcome(
            fails_startup=failure is not None or exit_code != 0,
            captured_stderr=err_text,
            captured_stdout=stdout.text(),
            exit_code=exit_code,
            failure=failure,
            duration_seconds=duration,
        )

    def _communicate(
        self,
        proc: subprocess.Popen,
        deadline: float,
        cancel_event: Optional[threading.Event],
    ) -> Tuple[_CappedBuffer, _CappedBuffer, Optional[ErrorKind]]:
        stdout = _CappedBuffer(self.output_cap)
        stderr = _CappedBuffer(self.output_cap)
        buffers = {proc.stdout: stdout, proc.stderr: stderr}
        failure: Optional[ErrorKind] = None
        leader_done = False

        with selectors.DefaultSelector() as sel:
            for pipe in buffers:
                sel.register(pipe, selectors.EVENT_READ)

            while sel.get_map() or not leader_done:
                if not leader_done and proc.poll() is not None:
                    leader_done = True
                    # Descendants holding the pipes open must not outlive the probe
                    _kill_group(proc.pid, signal.SIGKILL)
                    # A descendant that left the session keeps the pipes; read what is buffered
                    deadline = time.monotonic() + DRAIN_SECONDS
                if not leader_done and cancel_event is not None and cancel_event.is_set():
                    failure = ErrorKind.CANCELLED
                    break
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    if not leader_done:
                        failure = ErrorKind.TIMEOUT
                    break
                if not sel.get_map():
                    time.sleep(min(remaining, POLL_INTERVAL))
                    continue
                for key, _ in sel.select(min(remaining, POLL_INTERVAL)):
                    self._read_into(sel, key, buffers)

            if failure == ErrorKind.TIMEOUT:
                _kill_group(proc.pid, signal.SIGKILL)
            elif failure == ErrorKind.CANCELLED:
                self._terminate(proc)

            if failure is not None:
                drain_until = time.monotonic() + DRAIN_SECONDS
                while sel.get_map() and time.monotonic() < drain_until:
                    for key, _ in sel.select(POLL_INTERVAL):
                        self._read_into(sel, key, buffers)

        return stdout, stderr, failure

    @staticmethod
    def _read_into(sel: selectors.BaseSelector, key: selectors.SelectorKey, buffers: dict) -> None:
        try:
            chunk = os.read(key.fd, READ_CHUNK)
        except OSError:
            chunk = b""
        if chunk:
            buffers[key.fileobj].feed(chunk)
        else:
            sel.unregister(key.fileobj)

    def _terminate(self, proc: subprocess.Popen) -> None:
        """SIGTERM the group, SIGKILL it after the grace period."""
        _kill_group(proc.pid, signal.SIGTERM)
        try:
            proc.wait(timeout=self.cancel_grace)
        except subprocess.TimeoutExpired:
            pass
        _kill_group(proc.pid, signal.SIGKILL)

    @staticmethod
    def _reap(proc: subprocess.Popen) -> None:
        if proc.poll() is None:
            _kill_group(proc.pid, signal.SIGKILL)
        proc.wait()
        _kill_group(proc.pid, signal.SIGKILL)
        for pipe in (proc.stdout, proc.stderr):
            if pipe is not None:
                pipe.close()


def _kill_group(pgid: int, sig: int) -> None:
    try:
        os.killpg(pgid, sig)
    except (ProcessLookupError, PermissionError):
        pass


def _signal_name(signum: int) -> str:
    try:
        return signal.Signals(signum).name
    except ValueError:
        return f"signal {signum}"

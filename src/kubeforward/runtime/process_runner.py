"""Start and stop forward processes as independent process groups.

Each child becomes the leader of a new session, so its pid doubles as the
process-group id recorded in runtime state. Stopping signals the whole group:
SIGTERM first, then SIGKILL if the group outlives ``term_timeout``.
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

__all__ = [
    "DEFAULT_KILL_TIMEOUT",
    "DEFAULT_TERM_TIMEOUT",
    "NOOP_RUNNER_ENV",
    "NoopProcessRunner",
    "PosixProcessRunner",
    "ProcessRunner",
    "ProcessRunnerError",
    "ProcessStartError",
    "ProcessStopError",
    "StartProcessRequest",
    "StartedProcess",
    "make_process_runner",
]

DEFAULT_TERM_TIMEOUT = 3.0  # seconds to wait after SIGTERM
DEFAULT_KILL_TIMEOUT = 1.0  # seconds to wait after SIGKILL
DEFAULT_POLL_INTERVAL = 0.05

NOOP_RUNNER_ENV = "KUBEFORWARD_USE_NOOP_RUNNER"
NOOP_PID_BASE = 12000


class ProcessRunnerError(RuntimeError):
    """Base error for process control failures."""


class ProcessStartError(ProcessRunnerError):
    """Raised when a child could not be launched."""


class ProcessStopError(ProcessRunnerError):
    """Raised when a process group could not be signalled or did not exit."""


@dataclass(frozen=True)
class StartProcessRequest:
    """What to launch and where its output goes.

    Attributes:
        argv: Command line; ``argv[0]`` is the program.
        cwd: Working directory for the child (None = inherit).
        daemon: Whether the owning session was started in daemon mode.
        log_path: File that receives the child's stdout and stderr (appended).
    """

    argv: list[str]
    log_path: Path
    cwd: Path | None = None
    daemon: bool = False


@dataclass(frozen=True)
class StartedProcess:
    pid: int
    log_path: Path


class ProcessRunner(ABC):
    """Capability interface used by the session orchestrator."""

    # Simulated runners fabricate pids; port preflight is meaningless for them.
    simulated: bool = False

    @abstractmethod
    def start(self, request: StartProcessRequest) -> StartedProcess:
        """Launch ``request`` or raise :class:`ProcessStartError`."""

    @abstractmethod
    def stop(self, pid: int) -> None:
        """Terminate the group ``pid`` or raise :class:`ProcessStopError`.

        A group that no longer exists counts as stopped.
        """

    @abstractmethod
    def is_alive(self, pid: int) -> bool:
        """Report whether the group ``pid`` still has members."""


@dataclass
class PosixProcessRunner(ProcessRunner):
    """Real runner built on :class:`subprocess.Popen` and ``os.killpg``.

    ``Popen`` reports chdir and exec failures of the child synchronously
    through its internal status pipe, so :meth:`start` never hands back a pid
    for a program that failed to launch.
    """

    term_timeout: float = DEFAULT_TERM_TIMEOUT
    kill_timeout: float = DEFAULT_KILL_TIMEOUT
    poll_interval: float = DEFAULT_POLL_INTERVAL
    _children: dict[int, subprocess.Popen[bytes]] = field(default_factory=dict, init=False, repr=False)

    def start(self, request: StartProcessRequest) -> StartedProcess:
        if not request.argv:
            raise ProcessStartError("argv must not be empty")

        log_path = Path(request.log_path)
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            log_handle = open(log_path, "ab")
        except OSError as exc:
            raise ProcessStartError(f"failed to open log file {log_path}: {exc}") from exc

        try:
            process = subprocess.Popen(
                request.argv,
                stdin=subprocess.DEVNULL,
                stdout=log_handle,
                stderr=subprocess.STDOUT,
                cwd=str(request.cwd) if request.cwd is not None else None,
                close_fds=True,
                start_new_session=True,
            )
        except OSError as exc:
            raise ProcessStartError(f"failed to launch {request.argv[0]}: {exc}") from exc
        finally:
            log_handle.close()

        self._children[process.pid] = process
        logger.debug(
            "Started pid=%s daemon=%s argv=%s log=%s",
            process.pid,
            request.daemon,
            " ".join(request.argv),
            log_path,
        )
        return StartedProcess(pid=process.pid, log_path=log_path)

    def stop(self, pid: int) -> None:
        if pid <= 0:
            raise ProcessStopError(f"invalid pid {pid}")

        logger.debug("Terminating process group pgid=%s", pid)
        if not self._signal_group(pid, signal.SIGTERM):
            logger.debug("Process group already exited pgid=%s", pid)
            return
        if self._wait_for_exit(pid, self.term_timeout):
            logger.debug("Process group terminated gracefully pgid=%s", pid)
            return

        logger.debug("Force killing process group pgid=%s", pid)
        if not self._signal_group(pid, signal.SIGKILL):
            return
        if self._wait_for_exit(pid, self.kill_timeout):
            logger.debug("Process group killed pgid=%s", pid)
            return
        raise ProcessStopError(f"process group {pid} did not exit after SIGKILL")

    def is_alive(self, pid: int) -> bool:
        if pid <= 0:
            return False
        self._reap(pid)
        try:
            os.killpg(pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            # The group exists but belongs to someone else.
            return True
        return True

    def _signal_group(self, pid: int, signum: signal.Signals) -> bool:
        """Send ``signum`` to the group; False when the group is already gone."""
        try:
            os.killpg(pid, signum)
        except ProcessLookupError:
            return False
        except OSError as exc:
            raise ProcessStopError(
                f"failed to send {signum.name} to process group {pid}: {exc}"
            ) from exc
        return True

    def _wait_for_exit(self, pid: int, timeout: float) -> bool:
        deadline = time.monotonic() + timeout
        while True:
            if not self.is_alive(pid):
                return True
            if time.monotonic() >= deadline:
                return False
            time.sleep(self.poll_interval)

    def _reap(self, pid: int) -> None:
        """Collect an exited child so a zombie leader does not look alive."""
        process = self._children.get(pid)
        if process is not None:
            if process.poll() is not None:
                del self._children[pid]
            return
        try:
            os.waitpid(pid, os.WNOHANG)
        except ChildProcessError:
            # Started by another invocation; init reaps it.
            return


@dataclass
class NoopProcessRunner(ProcessRunner):
    """Test double that hands out synthetic pids and never touches the OS."""

    simulated = True

    next_pid: int = NOOP_PID_BASE
    started: list[StartProcessRequest] = field(default_factory=list)
    stopped: list[int] = field(default_factory=list)

    def start(self, request: StartProcessRequest) -> StartedProcess:
        if not request.argv:
            raise ProcessStartError("argv must not be empty")
        pid = self.next_pid
        self.next_pid += 1
        self.started.append(request)
        return StartedProcess(pid=pid, log_path=Path(request.log_path))

    def stop(self, pid: int) -> None:
        if pid <= 0:
            raise ProcessStopError(f"invalid pid {pid}")
        self.stopped.append(pid)

    def is_alive(self, pid: int) -> bool:
        return pid > 0 and pid not in self.stopped


def make_process_runner() -> ProcessRunner:
    """Pick the runner for this invocation (``KUBEFORWARD_USE_NOOP_RUNNER=1`` for dry runs)."""
    if os.environ.get(NOOP_RUNNER_ENV, "").strip().lower() in {"1", "true", "yes"}:
        logger.debug("Using no-op process runner")
        return NoopProcessRunner()
    return PosixProcessRunner()

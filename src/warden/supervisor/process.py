"""Server process supervision.

:class:`ProcessSupervisor` owns the one live server process and moves it
through a small state machine::

    STARTING -> RUNNING -> (AUTH_REQUIRED | SHUTTING_DOWN) -> STOPPED
    RUNNING -> RESTARTING -> STARTING

Threads involved:

- the **main flow** (:meth:`ProcessSupervisor.run`) acquires credentials,
  spawns the server and blocks until it exits, a restart is requested, or
  a termination signal arrives;
- the **output watcher** relays server output and reports the boot and
  auth-required markers;
- a short-lived **re-authorization worker** runs a new acquisition when
  the server reports missing credentials, so the watcher never blocks;
- the **background scheduler** loops (see
  :mod:`warden.supervisor.scheduler`).

Restarts are serialised.  A restart request while another is pending is
dropped, and a new server is only spawned once the previous one has been
reaped, so there is never more than one live :class:`ChildProcessHandle`.

Shutdown is two-phase: the received signal is forwarded to the server's
whole process group, and only after :data:`GRACE_PERIOD` seconds without
an exit is the group killed.
"""

from __future__ import annotations

import os
import signal
import subprocess
import threading
from datetime import datetime, timezone
from pathlib import Path
from types import FrameType
from typing import Any, Callable, Optional

from warden.auth.manager import CredentialManager
from warden.exceptions import ChildProcessMissing, OperationCancelled
from warden.exit_codes import EXIT_SIGNAL_BASE, EXIT_SUCCESS, child_exit_code
from warden.launch import build_command, check_prerequisites, redact_command
from warden.models import Acquisition, ChildProcessHandle, SupervisorState, WardenConfig
from warden.output import debug, error, info, warning
from warden.supervisor.scheduler import BackgroundScheduler
from warden.supervisor.watcher import MarkerScanner, OutputWatcher

GRACE_PERIOD = 30.0
POLL_INTERVAL = 0.5
HANDLED_SIGNALS = (signal.SIGTERM, signal.SIGINT, signal.SIGHUP)


class _RestartRequest:
    def __init__(self, reason: str, acquisition: Optional[Acquisition]) -> None:
        self.reason = reason
        self.acquisition = acquisition


class ProcessSupervisor:
    """Keep the server running with valid credentials until told to stop.

    Args:
        config: Effective configuration.
        manager: Source of session credentials.
        command: Base server command; session flags are appended per launch.
        shutdown: Event set when shutdown begins.  Share it with the
            credential components so their network waits are cancelled too.
        grace_period: Seconds between the graceful signal and the kill.
        prerequisites: Paths that must exist before the first spawn.
        cwd: Working directory of the server.
        scheduler: Background loops.  Built from *config* when omitted.
        popen: Process factory.
    """

    def __init__(
        self,
        config: WardenConfig,
        manager: CredentialManager,
        command: list[str],
        shutdown: Optional[threading.Event] = None,
        grace_period: float = GRACE_PERIOD,
        prerequisites: Optional[list[Path]] = None,
        cwd: Optional[Path] = None,
        scheduler: Optional[BackgroundScheduler] = None,
        popen: Callable[..., subprocess.Popen] = subprocess.Popen,
    ) -> None:
        self._config = config
        self._manager = manager
        self._command = command
        self._shutdown = shutdown or threading.Event()
        self._grace_period = grace_period
        self._prerequisites = prerequisites if prerequisites is not None else []
        self._cwd = cwd
        self._popen = popen
        self._scheduler = scheduler or BackgroundScheduler(
            manager,
            on_credentials_lost=self._on_credentials_lost,
            log_dir=config.log_dir,
            retention_days=config.log_retention_days,
            check_interval=config.refresh_check_interval,
            stop_event=self._shutdown,
        )

        # held across spawn and teardown so the two never interleave
        self._lifecycle_lock = threading.RLock()
        # guards the small bookkeeping fields below
        self._state_lock = threading.Lock()

        self._state = SupervisorState.STOPPED
        self._proc: Optional[subprocess.Popen] = None
        self._handle: Optional[ChildProcessHandle] = None
        self._watcher: Optional[OutputWatcher] = None
        self._pending: Optional[_RestartRequest] = None
        self._reauth_thread: Optional[threading.Thread] = None
        self._reauth_attempted = False
        self._shutdown_signal: Optional[int] = None
        self._closed = False

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #

    @property
    def state(self) -> SupervisorState:
        return self._state

    @property
    def handle(self) -> Optional[ChildProcessHandle]:
        """The live server process, or ``None`` between launches."""
        return self._handle

    def _set_state(self, state: SupervisorState) -> None:
        if state != self._state:
            debug(f"Supervisor state: {self._state.value} -> {state.value}")
            self._state = state

    # ------------------------------------------------------------------ #
    # Main flow
    # ------------------------------------------------------------------ #

    def run(self) -> int:
        """Acquire credentials, launch the server and supervise it.

        Returns:
            The server's exit code when it exits on its own; ``0`` after a
            signal-driven shutdown in which the server exited cleanly.

        Raises:
            ChildProcessMissing: A prerequisite file is absent or the server
                command cannot be executed.
        """
        check_prerequisites(self._prerequisites)
        self._set_state(SupervisorState.STARTING)

        previous_handlers = self._install_signal_handlers()
        try:
            try:
                acquisition = self._manager.acquire()
            except OperationCancelled:
                info("Shutdown requested during credential acquisition")
                return EXIT_SUCCESS

            if self._config.dry_run:
                command = build_command(self._command, acquisition, self._config)
                info(f"[DRY_RUN] Would start server with: {redact_command(command)}")
                return EXIT_SUCCESS

            self._scheduler.start()
            return self._supervise(acquisition)
        finally:
            self._closed = True
            self._shutdown.set()
            self._scheduler.stop(timeout=self._grace_period)
            if self._reauth_thread is not None:
                self._reauth_thread.join(timeout=self._grace_period)
            self._restore_signal_handlers(previous_handlers)
            self._set_state(SupervisorState.STOPPED)

    def _supervise(self, acquisition: Acquisition) -> int:
        while True:
            if self._shutdown.is_set():
                info("Shutdown complete")
                return EXIT_SUCCESS
            self.start(build_command(self._command, acquisition, self._config))
            returncode = self._wait_for_exit()

            if self._shutdown.is_set():
                return self._shutdown_exit_code(returncode)

            with self._state_lock:
                request, self._pending = self._pending, None
            if request is None:
                info(f"Server exited with code: {returncode}")
                return child_exit_code(returncode)

            info(f"Restarting server: {request.reason}")
            self._set_state(SupervisorState.STARTING)
            if request.acquisition is not None:
                acquisition = request.acquisition
            else:
                try:
                    acquisition = self._manager.acquire()
                except OperationCancelled:
                    return EXIT_SUCCESS

    def _wait_for_exit(self) -> int:
        """Block until the server exits, driving shutdown if it is requested."""
        proc = self._proc
        assert proc is not None
        while True:
            try:
                returncode = proc.wait(timeout=POLL_INTERVAL)
                break
            except subprocess.TimeoutExpired:
                pass
            if self._shutdown.is_set():
                self._set_state(SupervisorState.SHUTTING_DOWN)
                info("Received shutdown signal...")
                self._scheduler.stop(timeout=self._grace_period)
                returncode = self.stop(self._shutdown_signal or signal.SIGTERM)
                break
        self._reap()
        return returncode

    def _shutdown_exit_code(self, returncode: int) -> int:
        graceful = int(self._shutdown_signal or signal.SIGTERM)
        info("Shutdown complete")
        # the JVM reports a handled SIGTERM as 128 + signum
        if child_exit_code(returncode) in (EXIT_SUCCESS, EXIT_SIGNAL_BASE + graceful):
            return EXIT_SUCCESS
        return child_exit_code(returncode)

    # ------------------------------------------------------------------ #
    # Lifecycle operations
    # ------------------------------------------------------------------ #

    def start(self, command: list[str]) -> ChildProcessHandle:
        """Spawn the server in its own process group.

        Raises:
            RuntimeError: If a server process is still alive.
            ChildProcessMissing: The command cannot be executed.
        """
        with self._lifecycle_lock:
            if self._proc is not None and self._proc.poll() is None:
                raise RuntimeError(f"Server already running (PID: {self._proc.pid})")

            info("Starting server...")
            debug(f"Server command: {redact_command(command)}")
            try:
                proc = self._popen(
                    command,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.STDOUT,
                    text=True,
                    bufsize=1,
                    errors="replace",
                    start_new_session=True,
                    cwd=str(self._cwd) if self._cwd else None,
                )
            except (FileNotFoundError, PermissionError) as exc:
                raise ChildProcessMissing(
                    f"Cannot execute server command {command[0]!r}: {exc.strerror}"
                ) from exc
            try:
                pgid = os.getpgid(proc.pid)
            except ProcessLookupError:
                pgid = proc.pid

            handle = ChildProcessHandle(
                pid=proc.pid,
                process_group_id=pgid,
                started_at=datetime.now(timezone.utc),
            )
            scanner = MarkerScanner(
                self._config.boot_marker,
                self._config.auth_marker,
                on_boot_complete=self._on_boot_complete,
                on_auth_required=self._on_auth_required,
            )
            watcher = OutputWatcher(proc.stdout, scanner)

            with self._state_lock:
                self._proc = proc
                self._handle = handle
                self._watcher = watcher
                self._reauth_attempted = False
            self._write_pid_file(proc.pid)
            watcher.start()
            info(f"Server started with PID: {proc.pid}")
            return handle

    def stop(self, sig: int = signal.SIGTERM) -> int:
        """Stop the server: signal its group, wait, then kill the group.

        Returns:
            The server's return code (negative when killed by a signal).
        """
        with self._lifecycle_lock:
            proc, handle = self._proc, self._handle
            if proc is None or handle is None:
                return 0
            if proc.poll() is not None:
                return proc.returncode

            info(f"Stopping server gracefully (PID: {handle.pid})...")
            self._signal_group(handle.process_group_id, sig)
            try:
                return proc.wait(timeout=self._grace_period)
            except subprocess.TimeoutExpired:
                warning(
                    f"Server did not stop within {self._grace_period:g}s, forcing..."
                )
                self._signal_group(handle.process_group_id, signal.SIGKILL)
                return proc.wait()

    def request_restart(
        self, reason: str, acquisition: Optional[Acquisition] = None
    ) -> bool:
        """Ask for the server to be torn down and relaunched.

        The current server is stopped on the calling thread; the main flow
        relaunches it with *acquisition*, or with a fresh acquisition when
        none is given.

        Returns:
            ``False`` if the request was dropped because a restart is
            already pending, no server is running, or shutdown began.
        """
        with self._state_lock:
            if self._closed or self._shutdown.is_set():
                debug(f"Ignoring restart request during shutdown: {reason}")
                return False
            if self._pending is not None:
                debug(f"Restart already pending, ignoring: {reason}")
                return False
            if self._proc is None or self._proc.poll() is not None:
                debug(f"No running server to restart: {reason}")
                return False
            self._pending = _RestartRequest(reason, acquisition)
            self._set_state(SupervisorState.RESTARTING)

        info(f"Restart requested: {reason}")
        self.stop(signal.SIGTERM)
        return True

    def request_shutdown(self, signum: int = signal.SIGTERM) -> None:
        """Begin shutdown. Safe to call from a signal handler."""
        if self._shutdown.is_set():
            return
        self._shutdown_signal = signum
        self._shutdown.set()

    # ------------------------------------------------------------------ #
    # Event handlers
    # ------------------------------------------------------------------ #

    def _on_boot_complete(self) -> None:
        info("Server boot complete")
        if self._state == SupervisorState.STARTING:
            self._set_state(SupervisorState.RUNNING)

    def _on_auth_required(self) -> None:
        with self._state_lock:
            if self._reauth_attempted or self._pending is not None or self._shutdown.is_set():
                return
            self._reauth_attempted = True
            self._set_state(SupervisorState.AUTH_REQUIRED)
            worker = threading.Thread(target=self._reauthorize, name="reauthorize")
            self._reauth_thread = worker
        warning("Server reports it is not authenticated, re-acquiring credentials...")
        worker.start()

    def _reauthorize(self) -> None:
        try:
            acquisition = self._manager.acquire()
        except OperationCancelled:
            return
        if acquisition.acquired:
            self.request_restart("fresh credentials acquired", acquisition)
            return
        error("Re-authorization failed; server keeps running unauthenticated")
        with self._state_lock:
            if self._state == SupervisorState.AUTH_REQUIRED:
                self._set_state(SupervisorState.RUNNING)

    def _on_credentials_lost(self, reason: str) -> None:
        self.request_restart(f"OAuth renewal failed ({reason})")

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    def _reap(self) -> None:
        with self._lifecycle_lock:
            proc, watcher = self._proc, self._watcher
            with self._state_lock:
                self._handle = None
                self._watcher = None
        if watcher is not None:
            watcher.join(timeout=5.0)
        if proc is not None and proc.stdout is not None and not (watcher and watcher.is_alive()):
            proc.stdout.close()
        self._remove_pid_file()

    @staticmethod
    def _signal_group(pgid: int, sig: int) -> None:
        try:
            os.killpg(pgid, sig)
        except ProcessLookupError:
            debug(f"Process group {pgid} already gone")

    def _write_pid_file(self, pid: int) -> None:
        try:
            self._config.pid_file.parent.mkdir(parents=True, exist_ok=True)
            self._config.pid_file.write_text(f"{pid}\n", encoding="utf-8")
        except OSError as exc:
            warning(f"Could not write PID file {self._config.pid_file}: {exc}")

    def _remove_pid_file(self) -> None:
        try:
            self._config.pid_file.unlink(missing_ok=True)
        except OSError as exc:
            warning(f"Could not remove PID file {self._config.pid_file}: {exc}")

    def _install_signal_handlers(self) -> dict[int, Any]:
        if threading.current_thread() is not threading.main_thread():
            return {}

        def _handler(signum: int, frame: Optional[FrameType]) -> None:
            self.request_shutdown(signum)

        previous: dict[int, Any] = {}
        for sig in HANDLED_SIGNALS:
            previous[sig] = signal.signal(sig, _handler)
        return previous

    @staticmethod
    def _restore_signal_handlers(previous: dict[int, Any]) -> None:
        for sig, handler in previous.items():
            signal.signal(sig, handler)

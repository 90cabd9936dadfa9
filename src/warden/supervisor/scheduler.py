"""Background maintenance for the lifetime of the supervisor.

:class:`BackgroundScheduler` owns two independent loops, each on its own
thread and both governed by a single stop event:

- **Credential health** -- every ``check_interval`` seconds, ask the
  :class:`~warden.auth.manager.CredentialManager` to renew an aging refresh
  token.  If renewal fails the scheduler asks the supervisor to restart
  the server so that it re-acquires credentials from scratch.
- **Log retention** -- once at start and then every 24 hours, prune old
  server logs.  Failures are logged and otherwise ignored.

The scheduler is started once and survives server restarts; only
:meth:`BackgroundScheduler.stop` ends it.
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Callable, Optional

from warden.auth.manager import CredentialManager
from warden.exceptions import OperationCancelled, WardenError
from warden.output import debug, error, info
from warden.supervisor.retention import prune_logs

RETENTION_INTERVAL = 86400.0
CREDENTIAL_INITIAL_DELAY = 60.0


class BackgroundScheduler:
    """Run credential health checks and log retention until stopped.

    Args:
        manager: Credential operations are delegated here, never to the
            token store directly.
        on_credentials_lost: Called with a reason when renewal failed.
        log_dir: Directory pruned by the retention loop.
        retention_days: Log age limit; ``0`` disables the retention loop.
        check_interval: Seconds between credential checks.
        stop_event: Shared stop signal.  A private one is created if omitted.
        initial_delay: Seconds before the first credential check.
        retention_interval: Seconds between retention passes.
    """

    def __init__(
        self,
        manager: CredentialManager,
        on_credentials_lost: Callable[[str], None],
        log_dir: Path,
        retention_days: int = 7,
        check_interval: float = 86400.0,
        stop_event: Optional[threading.Event] = None,
        initial_delay: float = CREDENTIAL_INITIAL_DELAY,
        retention_interval: float = RETENTION_INTERVAL,
    ) -> None:
        self._manager = manager
        self._on_credentials_lost = on_credentials_lost
        self._log_dir = log_dir
        self._retention_days = retention_days
        self._check_interval = check_interval
        self._stop = stop_event or threading.Event()
        self._initial_delay = initial_delay
        self._retention_interval = retention_interval
        self._threads: list[threading.Thread] = []

    @property
    def running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    def start(self) -> None:
        """Start both loops. Calling it again while running is a no-op."""
        if self._threads:
            debug("Background scheduler already started")
            return
        hours = self._check_interval / 3600
        info(f"Starting background OAuth refresh (check every {hours:g}h)")
        self._threads.append(
            threading.Thread(target=self._credential_loop, name="credential-health")
        )
        if self._retention_days > 0:
            info(f"Log retention enabled: {self._retention_days} days")
            self._threads.append(
                threading.Thread(target=self._retention_loop, name="log-retention")
            )
        for thread in self._threads:
            thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        """Signal both loops to exit and wait for them."""
        self._stop.set()
        for thread in self._threads:
            thread.join(timeout)
        debug("Background scheduler stopped")

    # ------------------------------------------------------------------ #
    # Single iterations (also driven directly by tests)
    # ------------------------------------------------------------------ #

    def run_credential_check(self) -> None:
        try:
            if self._manager.check_and_renew():
                info("Background OAuth renewal succeeded")
            else:
                debug("OAuth tokens still valid")
        except OperationCancelled:
            return
        except WardenError as exc:
            error(f"Background OAuth refresh failed: {exc}")
            if not self._stop.is_set():
                self._on_credentials_lost(str(exc))
        except OSError as exc:
            error(f"Could not persist renewed OAuth tokens: {exc}")

    def run_retention(self) -> None:
        try:
            prune_logs(self._log_dir, self._retention_days)
        except OSError as exc:
            error(f"Log retention failed: {exc}")

    # ------------------------------------------------------------------ #
    # Loops
    # ------------------------------------------------------------------ #

    def _credential_loop(self) -> None:
        if self._stop.wait(self._initial_delay):
            return
        while True:
            self.run_credential_check()
            if self._stop.wait(self._check_interval):
                return

    def _retention_loop(self) -> None:
        while not self._stop.is_set():
            self.run_retention()
            if self._stop.wait(self._retention_interval):
                return

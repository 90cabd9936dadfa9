"""Watch the server's output stream for lifecycle markers.

The server announces two facts only through its log text: that it finished
booting, and that it is running without usable credentials.  This module
is the one place that knows about those strings.  Everything downstream
sees two callbacks, ``on_boot_complete`` and ``on_auth_required``.

:class:`OutputWatcher` drains the child's combined stdout/stderr on its own
thread and relays every line, so the child never blocks on a full pipe.
Callbacks run on that thread and must return quickly.
"""

from __future__ import annotations

import threading
from typing import IO, Callable, Optional

from warden.output import debug, error, relay

Callback = Callable[[], None]


class MarkerScanner:
    """Stateful line classifier.

    The auth-required marker is only honoured after the boot marker has
    been seen: the server prints credential warnings during startup that
    are not actionable.
    """

    def __init__(
        self,
        boot_marker: str,
        auth_marker: str,
        on_boot_complete: Optional[Callback] = None,
        on_auth_required: Optional[Callback] = None,
    ) -> None:
        self._boot_marker = boot_marker
        self._auth_marker = auth_marker
        self._on_boot_complete = on_boot_complete
        self._on_auth_required = on_auth_required
        self.booted = threading.Event()

    def feed(self, line: str) -> None:
        if not self.booted.is_set():
            if self._boot_marker and self._boot_marker in line:
                self.booted.set()
                debug("Server boot marker seen")
                self._fire(self._on_boot_complete)
            return
        if self._auth_marker and self._auth_marker in line:
            debug("Server reported missing authentication")
            self._fire(self._on_auth_required)

    def _fire(self, callback: Optional[Callback]) -> None:
        if callback is None:
            return
        try:
            callback()
        except Exception as exc:  # noqa: BLE001
            # the reader thread must survive or the child stalls on a full pipe
            error(f"Output marker handler failed: {exc}")


class OutputWatcher:
    """Relay a child's output line by line and feed it to a :class:`MarkerScanner`.

    Args:
        stream: The child's text-mode stdout (stderr merged into it).
        scanner: Receives every line.
        sink: Where lines are relayed. Defaults to stdout.
    """

    def __init__(
        self,
        stream: IO[str],
        scanner: MarkerScanner,
        sink: Callable[[str], None] = relay,
    ) -> None:
        self._stream = stream
        self._scanner = scanner
        self._sink = sink
        self._thread = threading.Thread(
            target=self._run, name="output-watcher", daemon=True
        )

    def start(self) -> None:
        self._thread.start()

    def join(self, timeout: Optional[float] = None) -> None:
        """Wait for the stream to reach EOF (the child closed its output)."""
        self._thread.join(timeout)

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def _run(self) -> None:
        try:
            for line in self._stream:
                self._sink(line)
                self._scanner.feed(line)
        except ValueError:
            # stream closed underneath us during teardown
            pass
        finally:
            debug("Server output stream closed")

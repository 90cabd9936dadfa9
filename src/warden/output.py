"""Diagnostic output with strict stdout/stderr discipline.

* **stdout** -- the supervised server's own output, relayed verbatim by
  :class:`~warden.supervisor.watcher.OutputWatcher`.  Operators and log
  collectors read it exactly as the server wrote it.
* **stderr** -- every supervisor diagnostic.  Lines carry a timestamp, a
  padded level and a ``[Container]`` prefix so they cannot be mistaken for
  server output.
* **Colour control** -- Rich styling when stderr is an interactive
  terminal; plain text when ``NO_COLOR`` is set, ``TERM=dumb``, or stderr
  is piped.

The module exposes two layers:

1. :class:`OutputManager` -- holds the level threshold and the Rich console.
   Created once in :func:`~warden.app.main_callback` and installed via
   :func:`set_output`.
2. Module-level helpers (:func:`info`, :func:`warning`, :func:`debug`, ...)
   that delegate to the global instance so callers do not pass it around.

Token values must only reach these helpers through :func:`redact`.
"""

from __future__ import annotations

import os
import sys
import threading
from datetime import datetime
from typing import Optional

from rich.console import Console
from rich.text import Text

LOG_PREFIX = "[Container]"

_LEVELS = {"DEBUG": 0, "INFO": 1, "WARN": 2, "ERROR": 3}
_LEVEL_STYLES = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARN": "yellow",
    "ERROR": "bold red",
}


class OutputManager:
    """Central manager for supervisor diagnostics.

    Writes are serialised with a lock because the supervisor logs from the
    main thread, the output watcher and both background loops.

    Args:
        level: Minimum level to emit (``DEBUG``, ``INFO``, ``WARN``, ``ERROR``).
        no_color: Disable all colour.
    """

    def __init__(self, level: str = "INFO", no_color: bool = False) -> None:
        self._threshold = _LEVELS.get(level.upper(), _LEVELS["INFO"])
        self._no_color = no_color or _should_disable_color()
        self._lock = threading.Lock()
        self._stderr = Console(
            file=sys.stderr,
            no_color=self._no_color,
            stderr=True,
            highlight=False,
            soft_wrap=True,
        )

    @property
    def is_verbose(self) -> bool:
        """Whether debug-level messages are shown."""
        return self._threshold <= _LEVELS["DEBUG"]

    # ------------------------------------------------------------------ #
    # Relayed child output (stdout)
    # ------------------------------------------------------------------ #

    def relay(self, line: str) -> None:
        """Write one line of server output to stdout unchanged."""
        with self._lock:
            sys.stdout.write(line if line.endswith("\n") else line + "\n")
            sys.stdout.flush()

    # ------------------------------------------------------------------ #
    # Diagnostics (stderr)
    # ------------------------------------------------------------------ #

    def log(self, level: str, message: str) -> None:
        """Emit *message* at *level* if it passes the threshold."""
        if _LEVELS[level] < self._threshold:
            return
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        with self._lock:
            if self._no_color:
                print(
                    f"[{timestamp}] [{level:<5}] {LOG_PREFIX} {message}",
                    file=sys.stderr,
                    flush=True,
                )
            else:
                self._stderr.print(
                    Text.assemble(
                        (f"[{timestamp}]", "dim"),
                        " ",
                        (f"[{level:<5}]", _LEVEL_STYLES[level]),
                        f" {LOG_PREFIX} ",
                        message,
                    )
                )

    def debug(self, message: str) -> None:
        self.log("DEBUG", message)

    def info(self, message: str) -> None:
        self.log("INFO", message)

    def success(self, message: str) -> None:
        """Informational message the operator is waiting for (e.g. auth complete)."""
        self.log("INFO", message)

    def warning(self, message: str) -> None:
        self.log("WARN", message)

    def error(self, message: str) -> None:
        self.log("ERROR", message)

    def separator(self) -> None:
        self.log("INFO", "=" * 60)


# ------------------------------------------------------------------ #
# Module-level helpers
# ------------------------------------------------------------------ #


def _should_disable_color() -> bool:
    """Return True when NO_COLOR is set, TERM=dumb, or stderr is not a TTY."""
    if os.environ.get("NO_COLOR") is not None:
        return True
    if os.environ.get("TERM") == "dumb":
        return True
    return not (hasattr(sys.stderr, "isatty") and sys.stderr.isatty())


def redact(secret: Optional[str], keep: int = 6) -> str:
    """Mask a token for logging, keeping only a short prefix.

    Example::

        >>> redact("eyJhbGciOiJSUzI1NiJ9.payload")
        'eyJhbG...(28 chars)'
    """
    if not secret:
        return "<none>"
    if len(secret) <= keep:
        return "*" * len(secret)
    return f"{secret[:keep]}...({len(secret)} chars)"


# ------------------------------------------------------------------ #
# Global output instance (set during app startup)
# ------------------------------------------------------------------ #

_output: Optional[OutputManager] = None


def get_output() -> OutputManager:
    """Return the global :class:`OutputManager`, creating a default one lazily."""
    global _output
    if _output is None:
        _output = OutputManager()
    return _output


def set_output(output: OutputManager) -> None:
    """Install *output* as the global :class:`OutputManager` instance."""
    global _output
    _output = output


def reset_output() -> None:
    """Reset the global :class:`OutputManager` to ``None``.

    Primarily useful in test suites to ensure a clean state between tests.
    """
    global _output
    _output = None


def debug(message: str) -> None:
    """Print debug message to stderr via the global OutputManager."""
    get_output().debug(message)


def info(message: str) -> None:
    """Print info message to stderr via the global OutputManager."""
    get_output().info(message)


def success(message: str) -> None:
    """Print success message to stderr via the global OutputManager."""
    get_output().success(message)


def warning(message: str) -> None:
    """Print warning to stderr via the global OutputManager."""
    get_output().warning(message)


def error(message: str) -> None:
    """Print error to stderr via the global OutputManager."""
    get_output().error(message)


def separator() -> None:
    get_output().separator()


def relay(line: str) -> None:
    """Relay one line of server output to stdout via the global OutputManager."""
    get_output().relay(line)

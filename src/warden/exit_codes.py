"""Numeric process exit codes for the supervisor.

Each constant maps to a failure category and is referenced by the
corresponding :class:`~warden.exceptions.WardenError` subclass.  When the
supervised server exits on its own, the supervisor mirrors the server's
exit code instead (see :func:`child_exit_code`).

Example::

    $ warden run
    $ echo $?
    8   # EXIT_CHILD_MISSING -- server jar was not found
"""

EXIT_SUCCESS = 0
"""The supervisor completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_AUTH_FAILURE = 3
"""Authentication or authorisation failed."""

EXIT_SESSION_FAILURE = 5
"""The session service rejected the exchange or returned garbage."""

EXIT_CONNECTION_ERROR = 6
"""A network-level error occurred (timeout, DNS failure, 5xx after retries)."""

EXIT_CHILD_MISSING = 8
"""Files required to launch the server are absent."""

EXIT_SIGNAL_BASE = 128
"""Offset added to a signal number when the child was killed by that signal."""


def child_exit_code(returncode: int) -> int:
    """Translate a :attr:`subprocess.Popen.returncode` into a shell exit code.

    Negative return codes mean the child was killed by a signal; they are
    mapped to ``128 + signum`` the way a shell reports them.
    """
    if returncode < 0:
        return EXIT_SIGNAL_BASE - returncode
    return returncode

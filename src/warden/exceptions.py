"""Exception hierarchy for warden.

All exceptions inherit from :class:`WardenError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`warden.exit_codes`.
The top-level handler in :func:`warden.app.main` catches ``WardenError``
and exits with the appropriate code.  Only :class:`ChildProcessMissing`
is expected to reach it during ``warden run``; every credential error is
absorbed by :class:`~warden.auth.manager.CredentialManager` and degrades
to an unauthenticated start.

Subclass hierarchy::

    WardenError                 (exit 1)
    +-- TransientNetworkError   (exit 6)
    +-- AuthServiceError        (exit 3)
    |   +-- AuthDenied
    |   +-- AuthExpired
    |   +-- AuthTimeout
    |   +-- CredentialsInvalid
    +-- SessionServiceError     (exit 5)
    |   +-- NoProfile
    +-- ChildProcessMissing     (exit 8)
    +-- OperationCancelled      (exit 1)
"""

from warden.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CHILD_MISSING,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_SESSION_FAILURE,
)


class WardenError(Exception):
    """Base exception for all warden errors.

    Args:
        message: Human-readable error description.  Must never contain a
            full token value.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class TransientNetworkError(WardenError):
    """Raised when a request keeps failing with DNS, timeout, or 5xx errors after all retries."""

    exit_code = EXIT_CONNECTION_ERROR


class AuthServiceError(WardenError):
    """Raised when the OAuth service returns a non-2xx or malformed response."""

    exit_code = EXIT_AUTH_FAILURE


class AuthDenied(AuthServiceError):
    """The user declined the device authorization request."""


class AuthExpired(AuthServiceError):
    """The device code expired before the user completed authorization."""


class AuthTimeout(AuthServiceError):
    """Polling ran past the challenge's ``expires_in`` without an answer."""


class CredentialsInvalid(AuthServiceError):
    """The stored refresh token was rejected (revoked, expired, or unknown).

    Callers clear persisted state on this error instead of retrying.
    """


class SessionServiceError(WardenError):
    """Raised when fetching profiles or creating a game session fails."""

    exit_code = EXIT_SESSION_FAILURE


class NoProfile(SessionServiceError):
    """The account has no game profile to open a session for."""


class ChildProcessMissing(WardenError):
    """Raised when files required to launch the server are absent.

    This is the only fatal startup error: running without the server
    binary is meaningless.
    """

    exit_code = EXIT_CHILD_MISSING


class OperationCancelled(WardenError):
    """A credential operation was interrupted because the supervisor is shutting down."""

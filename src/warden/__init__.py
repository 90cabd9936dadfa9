"""warden -- credential keeper and process supervisor for a dedicated game server.

This package runs as the long-lived entry process of a server container.  It
acquires OAuth credentials through the Device Authorization Grant, keeps
them alive by refreshing them before they age out, exchanges them for a
short-lived game session, and supervises the server process that consumes
that session.

Typical workflow::

    warden auth login      # one-time device authorization
    warden run             # supervise the server indefinitely

Modules:
    app: Typer application and console entry point.
    models: Pydantic models shared across the package.
    config: Environment-driven configuration.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes.
    output: stderr diagnostics with Rich support.
    launch: Session flag injection and launch prerequisites.
    auth: Token storage, device authorization, refresh and session exchange.
    supervisor: Child process lifecycle and background maintenance.
"""

__version__ = "0.3.0"

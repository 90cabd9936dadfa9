"""Auth commands -- manage the stored OAuth credentials.

Provides the ``warden auth`` sub-command group.  These commands operate on
the same token file the supervisor uses, so they can prepare credentials
before the first container start or repair them afterwards::

    warden auth login     # device authorization, tokens persisted
    warden auth status    # expiry and renewal state, no secrets
    warden auth refresh   # force one refresh
    warden auth logout    # delete the token file
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

import typer

from warden.output import error, info, success, warning


auth_app = typer.Typer(no_args_is_help=True)


def _format_time(value: Optional[datetime]) -> str:
    if value is None:
        return "unknown"
    return value.isoformat(timespec="seconds")


@auth_app.command("login")
def auth_login(ctx: typer.Context) -> None:
    """Run device authorization and persist the resulting tokens.

    The verification URL and user code are printed (and written to
    ``SERVER_AUTH.url`` under the data directory); the command blocks until
    the code is approved, denied or expires.

    Raises:
        AuthServiceError: Authorization was denied, expired or timed out.
    """
    from warden.auth.http import create_client
    from warden.auth.manager import CredentialManager

    config = ctx.obj["config"]
    with create_client() as client:
        manager = CredentialManager.from_config(config, client)
        manager.login()
    success(f"Credentials stored in {config.token_file}")


@auth_app.command("status")
def auth_status(ctx: typer.Context) -> None:
    """Show the state of the stored credentials without revealing them.

    Exits with code 3 when no usable tokens are stored.
    """
    from warden.auth.http import create_client
    from warden.auth.refresher import TokenRefresher
    from warden.auth.store import TokenStore
    from warden.exit_codes import EXIT_AUTH_FAILURE

    config = ctx.obj["config"]
    if config.has_session_override:
        info("Session tokens are supplied by environment variables")

    tokens = TokenStore(config.token_file).load()
    if tokens is None:
        warning(f"No stored OAuth credentials at {config.token_file}")
        raise typer.Exit(code=EXIT_AUTH_FAILURE)

    with create_client() as client:
        refresher = TokenRefresher(client, threshold_days=config.refresh_threshold_days)
        access_expired = refresher.is_access_expired(tokens)
        renewal_due = refresher.is_refresh_aging(tokens)

    info(f"Token file: {config.token_file}")
    info(f"Access token expires: {_format_time(tokens.expires_at)}"
         + (" (expired)" if access_expired else ""))
    info(f"Last refresh: {_format_time(tokens.refreshed_at)}")
    if renewal_due:
        warning("Refresh token is aging; renewal is due")
    else:
        info("Refresh token renewal not yet due")


@auth_app.command("refresh")
def auth_refresh(ctx: typer.Context) -> None:
    """Refresh the stored tokens now, regardless of their age.

    Raises:
        CredentialsInvalid: The refresh token was rejected; the token file
            has been removed.
    """
    from warden.auth.http import create_client
    from warden.auth.manager import CredentialManager
    from warden.exit_codes import EXIT_AUTH_FAILURE

    config = ctx.obj["config"]
    with create_client() as client:
        manager = CredentialManager.from_config(config, client)
        refreshed = manager.refresh_now()
    if refreshed is None:
        error("No stored OAuth credentials to refresh. Run: warden auth login")
        raise typer.Exit(code=EXIT_AUTH_FAILURE)
    success(f"Tokens refreshed; access token valid until {_format_time(refreshed.expires_at)}")


@auth_app.command("logout")
def auth_logout(ctx: typer.Context) -> None:
    """Delete the stored OAuth tokens."""
    from warden.auth.http import create_client
    from warden.auth.manager import CredentialManager

    config = ctx.obj["config"]
    with create_client() as client:
        CredentialManager.from_config(config, client).logout()
    success("Stored credentials removed")

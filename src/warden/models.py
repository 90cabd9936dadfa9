"""Canonical Pydantic models shared across all warden modules.

**Credential models** -- :class:`OAuthTokens` is the only durable shape and
is serialised with camelCase keys into the token file.
:class:`SessionTokens` and :class:`DeviceAuthChallenge` live in memory for
one launch or one authorization attempt respectively.

**Process models** -- :class:`ChildProcessHandle` records the one live
server process owned by :class:`~warden.supervisor.process.ProcessSupervisor`.

**Configuration** -- :class:`WardenConfig` is populated from the
environment by :func:`warden.config.load_config`.
"""

from __future__ import annotations

import enum
from datetime import datetime
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


# --- Credentials ---


class OAuthTokens(BaseModel):
    """OAuth credentials persisted by :class:`~warden.auth.store.TokenStore`.

    ``refreshed_at`` is bookkeeping owned by this package: the provider does
    not report how much life the refresh token has left, so the time of the
    last successful refresh is used to estimate it.

    Example::

        OAuthTokens(
            access_token="at",
            refresh_token="rt",
            expires_at=datetime(2030, 1, 1, tzinfo=timezone.utc),
        )
    """

    model_config = ConfigDict(populate_by_name=True)

    access_token: str = Field(default="", alias="accessToken")
    refresh_token: str = Field(alias="refreshToken")
    expires_at: Optional[datetime] = Field(
        default=None,
        alias="expiresAt",
        description="Access token expiry (None = unknown, treated as expired)",
    )
    refreshed_at: Optional[datetime] = Field(
        default=None,
        alias="refreshedAt",
        description="When the refresh token was last issued or rotated",
    )


class SessionTokens(BaseModel):
    """Game session attached to a single server launch. Never persisted."""

    session_token: str
    identity_token: str
    profile_uuid: str = ""
    expires_at: Optional[str] = Field(
        default=None,
        description="Provider-reported expiry; None when managed externally",
    )


class DeviceAuthChallenge(BaseModel):
    """One RFC 8628 device authorization attempt."""

    device_code: str
    user_code: str
    verification_uri: str = ""
    verification_uri_complete: str = ""
    interval: int = 5
    expires_in: int = 1800

    @property
    def display_uri(self) -> str:
        """The most convenient URL to hand the operator."""
        return self.verification_uri_complete or self.verification_uri


class CredentialSource(str, enum.Enum):
    """How the active session was obtained. Used for diagnostics only."""

    ENVIRONMENT = "environment"
    STORED_OAUTH = "storedOAuth"
    FRESH_DEVICE_AUTH = "freshDeviceAuth"


class Acquisition(BaseModel):
    """Outcome of one :meth:`~warden.auth.manager.CredentialManager.acquire` call.

    ``session`` is ``None`` for the ``Unavailable`` terminal state.
    """

    session: Optional[SessionTokens] = None
    source: Optional[CredentialSource] = None

    @property
    def acquired(self) -> bool:
        return self.session is not None


# --- Process ---


class ChildProcessHandle(BaseModel):
    """The supervised server process."""

    pid: int
    process_group_id: int
    started_at: datetime


class SupervisorState(str, enum.Enum):
    STARTING = "starting"
    RUNNING = "running"
    AUTH_REQUIRED = "auth_required"
    RESTARTING = "restarting"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


# --- Configuration ---


class WardenConfig(BaseModel):
    """Effective runtime configuration.

    Built by :func:`warden.config.load_config` from environment variables;
    CLI flags are applied on top by :mod:`warden.app`.
    """

    data_dir: Path = Path("/data")

    session_token: str = ""
    identity_token: str = ""
    owner_uuid: str = ""
    owner_name: str = ""

    auto_auth_on_start: bool = True
    refresh_check_interval: float = Field(
        default=86400.0, description="Credential health-loop period in seconds"
    )
    refresh_threshold_days: int = 7
    log_retention_days: int = 7

    log_level: str = "INFO"
    no_color: bool = False
    dry_run: bool = False

    boot_marker: str = "Hytale Server Booted"
    auth_marker: str = "No server tokens configured"

    @property
    def auth_cache_dir(self) -> Path:
        return self.data_dir / ".auth"

    @property
    def token_file(self) -> Path:
        return self.auth_cache_dir / ".oauth-tokens.json"

    @property
    def auth_url_file(self) -> Path:
        return self.data_dir / "SERVER_AUTH.url"

    @property
    def pid_file(self) -> Path:
        return self.data_dir / "server.pid"

    @property
    def log_dir(self) -> Path:
        return self.data_dir / "logs"

    @property
    def server_jar(self) -> Path:
        return self.data_dir / "server" / "HytaleServer.jar"

    @property
    def assets_file(self) -> Path:
        return self.data_dir / "Assets.zip"

    @property
    def has_session_override(self) -> bool:
        return bool(self.session_token)

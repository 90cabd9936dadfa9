"""Configuration management with environment precedence and atomic writes.

This module handles all configuration for warden:

* **OAuth constants** -- endpoints, client id and scopes of the account
  service.  These are fixed external contracts, not user settings.
* **Environment parsing** -- :func:`load_config` turns the container's
  environment into a :class:`~warden.models.WardenConfig`.  Malformed
  or out-of-range values fall back to their defaults instead of aborting
  startup.
* **Precedence resolution** -- :func:`resolve_config` layers CLI flags on
  top of the environment, which sits on top of built-in defaults.
* **Atomic writes** -- :func:`atomic_write` is the only way this package
  writes files that another process may read concurrently (token file,
  auth URL artifact, PID file).
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Mapping, Optional

from warden.models import WardenConfig
from warden.output import warning

# --- OAuth service contract ---

OAUTH_DEVICE_URL = "https://oauth.accounts.hytale.com/oauth2/device/auth"
OAUTH_TOKEN_URL = "https://oauth.accounts.hytale.com/oauth2/token"
PROFILES_URL = "https://account-data.hytale.com/my-account/get-profiles"
SESSION_URL = "https://sessions.hytale.com/game-session/new"
CLIENT_ID = "hytale-server"
SCOPES = "openid offline auth:server"

REFRESH_TOKEN_LIFETIME_DAYS = 30
"""Rolling lifetime of a refresh token, counted from issuance or last refresh."""

ACCESS_EXPIRY_BUFFER_SECONDS = 60
"""Treat access tokens as expired this long before the provider does."""

HTTP_TIMEOUT_SECONDS = 30.0

DEFAULT_CHECK_INTERVAL_MS = 86_400_000
DEFAULT_THRESHOLD_DAYS = 7

_TRUE_VALUES = ("true", "1", "yes")
_LOG_LEVELS = ("DEBUG", "INFO", "WARN", "ERROR")


# --- Environment helpers ---


def _get(env: Mapping[str, str], key: str, default: str) -> str:
    return env.get(key) or default


def _get_bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    value = env.get(key)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _get_int(env: Mapping[str, str], key: str, default: int) -> int:
    value = env.get(key)
    if value is None:
        return default
    try:
        return int(value.strip(), 10)
    except ValueError:
        return default


def load_config(env: Optional[Mapping[str, str]] = None) -> WardenConfig:
    """Build the effective configuration from environment variables.

    Args:
        env: Mapping to read from. Defaults to :data:`os.environ`.

    Returns:
        A populated :class:`~warden.models.WardenConfig`.

    A value that parses but is out of range (non-positive interval,
    threshold outside the refresh token lifetime, negative retention,
    unknown log level) is reported as a warning and replaced by its
    default.  Configuration never stops the supervisor from starting.
    """
    if env is None:
        env = os.environ

    # Interval is expressed in milliseconds for compatibility with existing deployments
    interval_ms = _get_int(env, "OAUTH_REFRESH_CHECK_INTERVAL", DEFAULT_CHECK_INTERVAL_MS)
    threshold = _get_int(env, "OAUTH_REFRESH_THRESHOLD_DAYS", DEFAULT_THRESHOLD_DAYS)
    retention = _get_int(env, "LOG_RETENTION_DAYS", 7)
    log_level = _get(env, "CONTAINER_LOG_LEVEL", "INFO").upper()
    if log_level == "WARNING":
        log_level = "WARN"

    if interval_ms <= 0:
        warning(
            f"OAUTH_REFRESH_CHECK_INTERVAL must be positive, got {interval_ms}; "
            f"using {DEFAULT_CHECK_INTERVAL_MS}"
        )
        interval_ms = DEFAULT_CHECK_INTERVAL_MS
    if not 0 <= threshold < REFRESH_TOKEN_LIFETIME_DAYS:
        warning(
            "OAUTH_REFRESH_THRESHOLD_DAYS must be between 0 and "
            f"{REFRESH_TOKEN_LIFETIME_DAYS - 1}, got {threshold}; "
            f"using {DEFAULT_THRESHOLD_DAYS}"
        )
        threshold = DEFAULT_THRESHOLD_DAYS
    if retention < 0:
        warning(f"LOG_RETENTION_DAYS must not be negative, got {retention}; retention disabled")
        retention = 0
    if log_level not in _LOG_LEVELS:
        warning(f"Unknown CONTAINER_LOG_LEVEL {log_level}; using INFO")
        log_level = "INFO"

    defaults = WardenConfig()
    return WardenConfig(
        data_dir=Path(_get(env, "DATA_DIR", str(defaults.data_dir))),
        session_token=_get(env, "HYTALE_SERVER_SESSION_TOKEN", ""),
        identity_token=_get(env, "HYTALE_SERVER_IDENTITY_TOKEN", ""),
        owner_uuid=_get(env, "HYTALE_OWNER_UUID", ""),
        owner_name=_get(env, "HYTALE_OWNER_NAME", ""),
        auto_auth_on_start=_get_bool(env, "AUTO_AUTH_ON_START", True),
        refresh_check_interval=interval_ms / 1000.0,
        refresh_threshold_days=threshold,
        log_retention_days=retention,
        log_level=log_level,
        no_color=env.get("NO_COLOR") is not None,
        dry_run=_get_bool(env, "DRY_RUN", False),
        boot_marker=_get(env, "SERVER_BOOT_MARKER", defaults.boot_marker),
        auth_marker=_get(env, "SERVER_AUTH_MARKER", defaults.auth_marker),
    )


def resolve_config(
    cli_dry_run: Optional[bool] = None,
    cli_auto_auth: Optional[bool] = None,
    cli_verbose: bool = False,
    env: Optional[Mapping[str, str]] = None,
) -> WardenConfig:
    """Resolve config with full precedence chain.

    Precedence (high to low):
        1. CLI flags (``--dry-run``, ``--no-auto-auth``, ``--verbose``)
        2. Environment variables
        3. Defaults

    Returns:
        The effective :class:`~warden.models.WardenConfig`.
    """
    config = load_config(env)
    if cli_dry_run is not None:
        config.dry_run = cli_dry_run
    if cli_auto_auth is not None:
        config.auto_auth_on_start = cli_auto_auth
    if cli_verbose:
        config.log_level = "DEBUG"
    return config


# --- Atomic file writes ---


def atomic_write(path: Path, data: str, mode: int = 0o600) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is an atomic rename on POSIX systems.  Permissions are
    applied before any content is written, so secrets are never readable
    by other users, even momentarily.

    Raises:
        OSError: If the file cannot be written (permissions, disk full, etc.).
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        os.chmod(tmp_path, mode)
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close below
        os.replace(tmp_path, path)
    except BaseException:
        # Clean up the temp file on any error (including KeyboardInterrupt).
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise

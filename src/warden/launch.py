"""Launch command assembly: session flag injection and prerequisite checks.

The full server command line (JVM tuning, ports, backups) is owned by the
container image; this module only appends the session flags the
supervisor is responsible for and refuses to launch when the server's
files are missing.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

from warden.exceptions import ChildProcessMissing
from warden.models import Acquisition, CredentialSource, WardenConfig
from warden.output import info, redact

SESSION_FLAGS = ("--session-token", "--identity-token")


def default_command(config: WardenConfig) -> list[str]:
    """Minimal server command used when ``warden run`` is given none."""
    return [
        "java",
        "-jar",
        str(config.server_jar),
        "--assets",
        str(config.assets_file),
    ]


def check_prerequisites(paths: Iterable[Path]) -> None:
    """Abort if any launch prerequisite is absent.

    Raises:
        ChildProcessMissing: Naming the first missing path.
    """
    for path in paths:
        if not path.exists():
            raise ChildProcessMissing(f"Required server file not found: {path}")


def token_flags(acquisition: Acquisition, config: WardenConfig) -> list[str]:
    """Command-line flags carrying the acquired session, if any."""
    session = acquisition.session
    if session is None:
        return []

    flags = ["--session-token", session.session_token]
    if session.identity_token:
        flags += ["--identity-token", session.identity_token]
    if session.profile_uuid:
        flags += ["--owner-uuid", session.profile_uuid]
    if acquisition.source == CredentialSource.ENVIRONMENT and config.owner_name:
        flags += ["--owner-name", config.owner_name]

    source = acquisition.source.value if acquisition.source else "unknown"
    info(f"Using session tokens from {source}")
    return flags


def build_command(
    base: list[str], acquisition: Acquisition, config: WardenConfig
) -> list[str]:
    """Append session flags to *base*."""
    return [*base, *token_flags(acquisition, config)]


def redact_command(command: list[str]) -> str:
    """Render *command* for logging with session flag values masked."""
    shown: list[str] = []
    mask_next = False
    for arg in command:
        shown.append(redact(arg) if mask_next else arg)
        mask_next = arg in SESSION_FLAGS
    return " ".join(shown)

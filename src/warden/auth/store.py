"""Durable single-file store for OAuth credentials.

Stores :class:`~warden.models.OAuthTokens` as camelCase JSON at
``$DATA_DIR/.auth/.oauth-tokens.json``.  Files are written atomically via
:func:`~warden.config.atomic_write` with ``0o600`` permissions so a reader
never observes a partial file and the refresh token is never readable by
other users.

A missing, empty, or malformed file loads as ``None``: a corrupt credential
file forces re-authorization, it never crashes the supervisor.

See Also:
    :class:`~warden.auth.manager.CredentialManager` -- the only caller that
    reads and writes through this store at runtime.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from warden.config import atomic_write
from warden.models import OAuthTokens
from warden.output import debug, warning


class TokenStore:
    """Read/write OAuth tokens for the server account.

    Args:
        path: Location of the token file.

    Example::

        store = TokenStore(config.token_file)
        store.save(tokens)
        assert store.load() == tokens
    """

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        """The filesystem path of the token file."""
        return self._path

    def load(self) -> Optional[OAuthTokens]:
        """Load stored tokens from disk.

        Returns:
            The stored :class:`~warden.models.OAuthTokens`, or ``None`` if
            the file is absent, empty, unparseable, or lacks a refresh token.
        """
        if not self._path.is_file():
            return None
        try:
            text = self._path.read_text(encoding="utf-8")
            if not text.strip():
                return None
            data = json.loads(text)
            if not isinstance(data, dict) or not data.get("refreshToken"):
                debug(f"Token file {self._path} has no refresh token, ignoring")
                return None
            return OAuthTokens.model_validate(data)
        except (json.JSONDecodeError, ValidationError, ValueError, OSError) as exc:
            warning(f"Failed to load OAuth tokens from {self._path}: {exc}")
            return None

    def save(self, tokens: OAuthTokens) -> None:
        """Persist *tokens* atomically with ``0o600`` permissions.

        Raises:
            OSError: If the file cannot be written.
        """
        data = tokens.model_dump(mode="json", by_alias=True)
        atomic_write(self._path, json.dumps(data, indent=2) + "\n", mode=0o600)
        debug(f"OAuth tokens saved to {self._path}")

    def clear(self) -> None:
        """Delete the token file. No-op when it is already gone."""
        self._path.unlink(missing_ok=True)

"""Credential manager -- one entry point for every credential operation.

:class:`CredentialManager` orchestrates the token store, the refresher, the
session exchanger and the device authorizer.  It is also the serialisation
point for the token file: the initial acquisition, an auth-required
re-acquisition and the background health check all go through its lock,
so two flows never read-modify-write the file at the same time.

Acquisition walks a fixed chain and stops at the first session it gets:

1. Session tokens supplied by the environment are used verbatim.
2. Stored OAuth tokens are loaded and, if the access token expired,
   refreshed.  A rejected refresh token clears the store.
3. A valid access token is exchanged for a game session.  A failed
   exchange does not condemn the stored tokens.
4. If interactive authorization is enabled, the device flow runs and its
   access token is exchanged.
5. Otherwise the result is ``Unavailable`` and the server starts
   unauthenticated.

See Also:
    :class:`~warden.supervisor.process.ProcessSupervisor` -- consumes the
    resulting :class:`~warden.models.Acquisition`.
"""

from __future__ import annotations

import threading
from typing import Optional

import httpx

from warden.auth.device import DeviceAuthorizer
from warden.auth.refresher import TokenRefresher
from warden.auth.session import SessionExchanger
from warden.auth.store import TokenStore
from warden.exceptions import (
    AuthServiceError,
    CredentialsInvalid,
    SessionServiceError,
    TransientNetworkError,
)
from warden.models import (
    Acquisition,
    CredentialSource,
    OAuthTokens,
    SessionTokens,
    WardenConfig,
)
from warden.output import error, info, warning


class CredentialManager:
    """Acquire and keep alive the credentials the server needs.

    Args:
        config: Effective configuration (override tokens, interactive flag).
        store: Persistent OAuth token storage.
        refresher: Access/refresh token lifecycle.
        exchanger: OAuth-to-session exchange.
        authorizer: Interactive device authorization.
    """

    def __init__(
        self,
        config: WardenConfig,
        store: TokenStore,
        refresher: TokenRefresher,
        exchanger: SessionExchanger,
        authorizer: DeviceAuthorizer,
    ) -> None:
        self._config = config
        self._store = store
        self._refresher = refresher
        self._exchanger = exchanger
        self._authorizer = authorizer
        self._lock = threading.RLock()

    @classmethod
    def from_config(
        cls,
        config: WardenConfig,
        client: httpx.Client,
        cancel: Optional[threading.Event] = None,
    ) -> CredentialManager:
        """Wire up the default components for *config*."""
        store = TokenStore(config.token_file)
        return cls(
            config,
            store,
            TokenRefresher(client, threshold_days=config.refresh_threshold_days, cancel=cancel),
            SessionExchanger(client, cancel=cancel),
            DeviceAuthorizer(client, store, auth_url_file=config.auth_url_file, cancel=cancel),
        )

    @property
    def store(self) -> TokenStore:
        return self._store

    @property
    def refresher(self) -> TokenRefresher:
        return self._refresher

    # ------------------------------------------------------------------ #
    # Acquisition
    # ------------------------------------------------------------------ #

    def acquire(self, interactive: Optional[bool] = None) -> Acquisition:
        """Run one acquisition attempt.

        Args:
            interactive: Allow the device flow. Defaults to
                ``config.auto_auth_on_start``.

        Returns:
            An :class:`~warden.models.Acquisition`; ``session`` is ``None``
            when no credentials could be obtained.

        Raises:
            OperationCancelled: Shutdown began mid-acquisition.
        """
        if interactive is None:
            interactive = self._config.auto_auth_on_start

        if self._config.has_session_override:
            info("Using session tokens from environment variables")
            return Acquisition(
                session=SessionTokens(
                    session_token=self._config.session_token,
                    identity_token=self._config.identity_token,
                    profile_uuid=self._config.owner_uuid,
                    expires_at=None,
                ),
                source=CredentialSource.ENVIRONMENT,
            )

        with self._lock:
            tokens = self._load_usable_tokens()
            if tokens is not None:
                try:
                    session = self._exchanger.exchange(tokens.access_token)
                    return Acquisition(session=session, source=CredentialSource.STORED_OAUTH)
                except SessionServiceError as exc:
                    error(f"Failed to create game session from stored credentials: {exc}")

            if interactive:
                info("No valid session - starting device authorization...")
                try:
                    fresh = self._authorizer.authorize()
                    session = self._exchanger.exchange(fresh.access_token)
                    return Acquisition(session=session, source=CredentialSource.FRESH_DEVICE_AUTH)
                except (AuthServiceError, SessionServiceError, TransientNetworkError) as exc:
                    error(f"Device authorization failed: {exc}")
                    return Acquisition()

        warning("No tokens available - server will start unauthenticated")
        warning("Use /auth login device in server console to authenticate")
        return Acquisition()

    def _load_usable_tokens(self) -> Optional[OAuthTokens]:
        tokens = self._store.load()
        if tokens is None:
            return None
        info("Found stored OAuth credentials")
        if not self._refresher.is_access_expired(tokens):
            return tokens

        info("Access token expired, refreshing...")
        try:
            refreshed = self._refresher.refresh(tokens)
        except CredentialsInvalid as exc:
            error(f"{exc}; clearing stored credentials")
            self._store.clear()
            return None
        except (AuthServiceError, TransientNetworkError) as exc:
            error(f"Token refresh failed: {exc}")
            return None
        self._store.save(refreshed)
        return refreshed

    # ------------------------------------------------------------------ #
    # Maintenance
    # ------------------------------------------------------------------ #

    def check_and_renew(self) -> bool:
        """Refresh stored tokens if the refresh token is aging.

        Returns:
            ``True`` if a refresh happened, ``False`` if nothing was due
            (including when credentials come from the environment or no
            tokens are stored).

        Raises:
            CredentialsInvalid: The refresh token was rejected; the store
                has already been cleared.
            AuthServiceError: Any other refusal from the token endpoint.
            TransientNetworkError: The token endpoint stayed unreachable.
        """
        if self._config.has_session_override:
            return False
        with self._lock:
            tokens = self._store.load()
            if tokens is None:
                return False
            if not self._refresher.is_refresh_aging(tokens):
                return False
            info("OAuth refresh token aging, renewing...")
            try:
                refreshed = self._refresher.refresh(tokens)
            except CredentialsInvalid:
                self._store.clear()
                raise
            self._store.save(refreshed)
            return True

    def refresh_now(self) -> Optional[OAuthTokens]:
        """Refresh stored tokens unconditionally. Returns ``None`` if none are stored."""
        with self._lock:
            tokens = self._store.load()
            if tokens is None:
                return None
            try:
                refreshed = self._refresher.refresh(tokens)
            except CredentialsInvalid:
                self._store.clear()
                raise
            self._store.save(refreshed)
            return refreshed

    def login(self) -> OAuthTokens:
        """Run the device flow regardless of stored state."""
        with self._lock:
            return self._authorizer.authorize()

    def logout(self) -> None:
        """Forget stored credentials."""
        with self._lock:
            self._store.clear()
        info("Tokens cleared")

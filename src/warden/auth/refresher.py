"""Access-token refresh and refresh-token aging.

The account service issues refresh tokens with a rolling 30-day lifetime
but never reports how much of it is left.  :class:`TokenRefresher`
therefore stamps ``refreshed_at`` on every successful grant and estimates
the remaining lifetime from it, so the background health loop can renew
the refresh token well before it dies.
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

import httpx

from warden.auth.http import json_body, send_with_retry
from warden.config import (
    ACCESS_EXPIRY_BUFFER_SECONDS,
    CLIENT_ID,
    OAUTH_TOKEN_URL,
    REFRESH_TOKEN_LIFETIME_DAYS,
)
from warden.exceptions import AuthServiceError, CredentialsInvalid
from warden.models import OAuthTokens
from warden.output import debug, info

Clock = Callable[[], datetime]

# OAuth error codes meaning the refresh token itself is dead
_INVALID_GRANT_ERRORS = frozenset({"invalid_grant", "invalid_token", "unauthorized_client"})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def tokens_from_grant(
    data: dict[str, Any],
    now: datetime,
    previous_refresh_token: Optional[str] = None,
) -> OAuthTokens:
    """Build :class:`~warden.models.OAuthTokens` from a token-endpoint payload.

    The refresh token in the payload wins; *previous_refresh_token* is kept
    only when the provider did not rotate it.

    Raises:
        AuthServiceError: If the payload lacks an access token, or no
            refresh token is available from either source.
    """
    access_token = data.get("access_token")
    if not access_token:
        raise AuthServiceError("Token response missing 'access_token'")
    refresh_token = data.get("refresh_token") or previous_refresh_token
    if not refresh_token:
        raise AuthServiceError("Token response missing 'refresh_token'")

    expires_at: Optional[datetime] = None
    expires_in = data.get("expires_in")
    if isinstance(expires_in, (int, float)):
        expires_at = now + timedelta(seconds=expires_in)

    return OAuthTokens(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at=expires_at,
        refreshed_at=now,
    )


class TokenRefresher:
    """Decide when tokens need renewing and exchange refresh tokens.

    Args:
        client: HTTP client for the token endpoint.
        threshold_days: Renew the refresh token once it has this many days
            (or fewer) of its rolling lifetime left.
        clock: Returns the current UTC time.
        cancel: Event that aborts in-flight retries on shutdown.
        buffer_seconds: Safety margin applied to access-token expiry.
        lifetime_days: Rolling refresh-token lifetime.
    """

    def __init__(
        self,
        client: httpx.Client,
        threshold_days: int = 7,
        clock: Clock = utcnow,
        cancel: Optional[threading.Event] = None,
        buffer_seconds: int = ACCESS_EXPIRY_BUFFER_SECONDS,
        lifetime_days: int = REFRESH_TOKEN_LIFETIME_DAYS,
        token_url: str = OAUTH_TOKEN_URL,
    ) -> None:
        self._client = client
        self._threshold = timedelta(days=threshold_days)
        self._clock = clock
        self._cancel = cancel
        self._buffer = timedelta(seconds=buffer_seconds)
        self._lifetime = timedelta(days=lifetime_days)
        self._token_url = token_url

    def is_access_expired(self, tokens: OAuthTokens) -> bool:
        """True once ``now >= expires_at - buffer``, or when expiry is unknown."""
        if tokens.expires_at is None:
            return True
        return self._clock() >= _aware(tokens.expires_at) - self._buffer

    def is_refresh_aging(self, tokens: OAuthTokens) -> bool:
        """True once ``now - refreshed_at >= lifetime - threshold``.

        Token files written before ``refreshed_at`` existed carry no stamp;
        those are treated as fresh so startup never triggers a refresh burst.
        """
        if tokens.refreshed_at is None:
            debug("No refreshedAt timestamp on stored tokens, assuming fresh")
            return False
        age = self._clock() - _aware(tokens.refreshed_at)
        aging = age >= self._lifetime - self._threshold
        debug(
            f"Tokens refreshed {age.total_seconds() / 86400:.1f} days ago, "
            f"{'renewal due' if aging else 'still valid'}"
        )
        return aging

    def refresh(self, tokens: OAuthTokens) -> OAuthTokens:
        """Exchange the refresh token for a new access token.

        The returned tokens always carry a fresh ``refreshed_at``.  The
        caller is responsible for persisting them.

        Raises:
            CredentialsInvalid: If the provider rejected the refresh token.
            AuthServiceError: For any other error response.
            TransientNetworkError: If the endpoint stayed unreachable.
        """
        info("Refreshing OAuth tokens...")
        response = send_with_retry(
            self._client,
            "POST",
            self._token_url,
            cancel=self._cancel,
            data={
                "client_id": CLIENT_ID,
                "grant_type": "refresh_token",
                "refresh_token": tokens.refresh_token,
            },
        )
        data = json_body(response)
        error = data.get("error")
        if error in _INVALID_GRANT_ERRORS or response.status_code == 401:
            desc = data.get("error_description") or error or "unauthorized"
            raise CredentialsInvalid(f"Refresh token rejected: {desc}")
        if error or response.status_code >= 400:
            raise AuthServiceError(
                f"Token refresh failed: {error or f'HTTP {response.status_code}'}"
            )

        refreshed = tokens_from_grant(data, self._clock(), tokens.refresh_token)
        info("OAuth tokens refreshed successfully")
        return refreshed

"""Exchange an OAuth access token for a game session.

The server binary does not speak OAuth: it needs a session token and an
identity token bound to one game profile.  :class:`SessionExchanger`
lists the account's profiles and opens a session for the first one in the
order the provider returned them.  Accounts with several profiles get no
choice; that is a known product limitation, not something to guess around
here.

No retries at this layer beyond the transport policy of
:func:`~warden.auth.http.send_with_retry`: failures surface as
:class:`~warden.exceptions.SessionServiceError` and the caller decides.
"""

from __future__ import annotations

import threading
from typing import Any, Optional

import httpx

from warden.auth.http import json_body, send_with_retry
from warden.config import PROFILES_URL, SESSION_URL
from warden.exceptions import NoProfile, SessionServiceError, TransientNetworkError
from warden.models import SessionTokens
from warden.output import info


class SessionExchanger:
    """Create game sessions from OAuth access tokens.

    Args:
        client: HTTP client for the account and session services.
        cancel: Event that aborts in-flight retries on shutdown.
    """

    def __init__(
        self,
        client: httpx.Client,
        cancel: Optional[threading.Event] = None,
        profiles_url: str = PROFILES_URL,
        session_url: str = SESSION_URL,
    ) -> None:
        self._client = client
        self._cancel = cancel
        self._profiles_url = profiles_url
        self._session_url = session_url

    def exchange(self, access_token: str) -> SessionTokens:
        """Open a game session for the account's first profile.

        Raises:
            NoProfile: The account has no game profiles.
            SessionServiceError: Any transport or response failure.
        """
        headers = {"Authorization": f"Bearer {access_token}"}

        info("Fetching game profiles...")
        profiles = self._request("GET", self._profiles_url, "get profiles", headers=headers)
        entries = profiles.get("profiles") or []
        if not isinstance(entries, list) or not entries:
            raise NoProfile("No game profiles found for this account")
        profile = entries[0]
        uuid = profile.get("uuid") if isinstance(profile, dict) else None
        if not uuid:
            raise SessionServiceError("Profile entry missing 'uuid'")
        info(f"Found profile: {profile.get('username', '?')} ({uuid})")

        info("Creating game session...")
        session = self._request(
            "POST", self._session_url, "create game session", headers=headers, json={"uuid": uuid}
        )
        if not session.get("sessionToken") or not session.get("identityToken"):
            raise SessionServiceError("Session response missing 'sessionToken' or 'identityToken'")

        tokens = SessionTokens(
            session_token=session["sessionToken"],
            identity_token=session["identityToken"],
            profile_uuid=uuid,
            expires_at=session.get("expiresAt"),
        )
        info(f"Session created (expires: {tokens.expires_at or 'unknown'})")
        return tokens

    def _request(self, method: str, url: str, what: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = send_with_retry(self._client, method, url, cancel=self._cancel, **kwargs)
        except TransientNetworkError as exc:
            raise SessionServiceError(f"Failed to {what}: {exc}") from exc
        if response.status_code >= 400:
            raise SessionServiceError(
                f"Failed to {what}: HTTP {response.status_code} - {response.text[:200]}"
            )
        return json_body(response)

"""OAuth2 Device Authorization Grant (:rfc:`8628`).

The server runs headless inside a container, so first-time authorization
happens on another device:

    1. POST to the device endpoint to obtain ``device_code`` + ``user_code``.
    2. Surface "visit {uri}, enter {code}" once, both in the log and in
       ``$DATA_DIR/SERVER_AUTH.url`` so an operator can read it from outside
       the container.
    3. Poll the token endpoint until the user authorizes, denies, or the
       code expires.
    4. On success, persist the tokens via
       :class:`~warden.auth.store.TokenStore`.
    5. Remove ``SERVER_AUTH.url`` whatever the outcome.

Polling is an explicit state machine driven by the server's answers:

=======================  ==========================================
Answer                   Transition
=======================  ==========================================
``authorization_pending`` keep polling at the current interval
``slow_down``             add 5 s to the interval, keep polling
``access_denied``         fail with :class:`AuthDenied`
``expired_token``         fail with :class:`AuthExpired`
token payload             persist and return
deadline passed           fail with :class:`AuthTimeout`
=======================  ==========================================
"""

from __future__ import annotations

import threading
import time
from pathlib import Path
from typing import Callable, Optional

import httpx

from warden.auth.http import json_body, send_with_retry, wait_or_cancel
from warden.auth.refresher import Clock, tokens_from_grant, utcnow
from warden.auth.store import TokenStore
from warden.config import CLIENT_ID, OAUTH_DEVICE_URL, OAUTH_TOKEN_URL, SCOPES, atomic_write
from warden.exceptions import (
    AuthDenied,
    AuthExpired,
    AuthServiceError,
    AuthTimeout,
)
from warden.models import DeviceAuthChallenge, OAuthTokens
from warden.output import info, separator, success, warning

DEVICE_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:device_code"
SLOW_DOWN_STEP = 5


class DeviceAuthorizer:
    """Run the device authorization flow against the account service.

    Args:
        client: HTTP client for the OAuth endpoints.
        store: Where successful grants are persisted.
        auth_url_file: Artifact the verification URL and code are written to.
        cancel: Event that aborts polling on shutdown.
        clock: Returns the current UTC time (token expiry bookkeeping).
        sleep: Waits between polls. Defaults to a cancellable wait.
        monotonic: Deadline clock.
    """

    def __init__(
        self,
        client: httpx.Client,
        store: TokenStore,
        auth_url_file: Optional[Path] = None,
        cancel: Optional[threading.Event] = None,
        clock: Clock = utcnow,
        sleep: Optional[Callable[[float], None]] = None,
        monotonic: Callable[[], float] = time.monotonic,
        device_url: str = OAUTH_DEVICE_URL,
        token_url: str = OAUTH_TOKEN_URL,
    ) -> None:
        self._client = client
        self._store = store
        self._auth_url_file = auth_url_file
        self._cancel = cancel
        self._clock = clock
        self._sleep = sleep or (lambda seconds: wait_or_cancel(seconds, self._cancel))
        self._monotonic = monotonic
        self._device_url = device_url
        self._token_url = token_url

    def authorize(self) -> OAuthTokens:
        """Run a full challenge and poll. Returns the persisted tokens.

        The auth URL artifact only lives while the code is being polled; it
        is removed however the flow ends.
        """
        challenge = self.start_challenge()
        try:
            return self.poll_until_authorized(challenge)
        finally:
            self._remove_auth_url()

    def start_challenge(self) -> DeviceAuthChallenge:
        """Request a device/user code pair and surface it to the operator.

        Raises:
            AuthServiceError: On a non-2xx or malformed response.
            TransientNetworkError: If the endpoint stayed unreachable.
        """
        info("Starting device authorization flow...")
        response = send_with_retry(
            self._client,
            "POST",
            self._device_url,
            cancel=self._cancel,
            data={"client_id": CLIENT_ID, "scope": SCOPES},
        )
        data = json_body(response)
        if response.status_code >= 400 or data.get("error"):
            raise AuthServiceError(
                "Device authorization request failed: "
                f"{data.get('error') or f'HTTP {response.status_code}'}"
            )
        if not data.get("device_code") or not data.get("user_code"):
            raise AuthServiceError(
                "Device authorization response missing 'device_code' or 'user_code'"
            )

        try:
            challenge = DeviceAuthChallenge.model_validate(data)
        except ValueError as exc:
            raise AuthServiceError(f"Malformed device authorization response: {exc}") from exc

        self._announce(challenge)
        return challenge

    def poll_until_authorized(self, challenge: DeviceAuthChallenge) -> OAuthTokens:
        """Poll the token endpoint until the challenge resolves.

        Raises:
            AuthDenied: The user declined.
            AuthExpired: The provider expired the device code.
            AuthTimeout: ``expires_in`` elapsed without an answer.
            AuthServiceError: Any other error answer or a malformed grant.
            OperationCancelled: Shutdown began while waiting.
        """
        deadline = self._monotonic() + challenge.expires_in
        interval = max(challenge.interval, 1)
        form = {
            "client_id": CLIENT_ID,
            "grant_type": DEVICE_GRANT_TYPE,
            "device_code": challenge.device_code,
        }

        while self._monotonic() < deadline:
            self._sleep(interval)
            if self._monotonic() >= deadline:
                break

            response = send_with_retry(
                self._client, "POST", self._token_url, cancel=self._cancel, data=form
            )
            data = json_body(response)
            error = data.get("error")

            if error == "authorization_pending":
                continue
            if error == "slow_down":
                interval += SLOW_DOWN_STEP
                continue
            if error == "access_denied":
                raise AuthDenied("User denied authorization")
            if error == "expired_token":
                raise AuthExpired("Device code expired -- start a new authorization")
            if error:
                desc = data.get("error_description", error)
                raise AuthServiceError(f"Device authorization failed: {desc}")
            if response.status_code >= 400:
                raise AuthServiceError(
                    f"Token endpoint returned HTTP {response.status_code} without an error code"
                )

            tokens = tokens_from_grant(data, self._clock())
            self._store.save(tokens)
            success("Authorization successful!")
            return tokens

        raise AuthTimeout("Device authorization timed out -- start a new authorization")

    def _announce(self, challenge: DeviceAuthChallenge) -> None:
        separator()
        info("DEVICE AUTHORIZATION")
        separator()
        info(f"Visit: {challenge.verification_uri}")
        info(f"Enter code: {challenge.user_code}")
        if challenge.verification_uri_complete:
            info(f"Or visit: {challenge.verification_uri_complete}")
        separator()
        info(f"Waiting for authorization (expires in {challenge.expires_in} seconds)...")

        if self._auth_url_file is not None:
            try:
                atomic_write(
                    self._auth_url_file,
                    f"{challenge.display_uri}\n{challenge.user_code}\n",
                    mode=0o644,
                )
                info(f"Authorization URL written to {self._auth_url_file}")
            except OSError as exc:
                warning(f"Could not write {self._auth_url_file}: {exc}")

    def _remove_auth_url(self) -> None:
        if self._auth_url_file is None:
            return
        try:
            self._auth_url_file.unlink(missing_ok=True)
        except OSError as exc:
            warning(f"Could not remove {self._auth_url_file}: {exc}")

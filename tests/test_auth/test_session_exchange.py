"""Tests for warden.auth.session -- profile lookup and game session creation."""

from __future__ import annotations

import json

import httpx
import pytest

from conftest import RecordingHandler, json_response, mock_client
from warden.auth.session import SessionExchanger
from warden.exceptions import NoProfile, SessionServiceError

PROFILES_URL = "https://account.example.com/profiles"
SESSION_URL = "https://sessions.example.com/new"

PROFILES = {
    "owner": "acct",
    "profiles": [
        {"uuid": "uuid-first", "username": "First"},
        {"uuid": "uuid-second", "username": "Second"},
    ],
}
SESSION = {
    "sessionToken": "session-abc",
    "identityToken": "identity-abc",
    "expiresAt": "2030-06-01T13:00:00Z",
}


def _exchanger(handler) -> SessionExchanger:
    return SessionExchanger(
        mock_client(handler), profiles_url=PROFILES_URL, session_url=SESSION_URL
    )


class TestSessionExchange:
    def test_uses_first_profile(self) -> None:
        handler = RecordingHandler(
            {PROFILES_URL: [json_response(PROFILES)], SESSION_URL: [json_response(SESSION)]}
        )

        session = _exchanger(handler).exchange("access-1")

        assert session.session_token == "session-abc"
        assert session.identity_token == "identity-abc"
        assert session.profile_uuid == "uuid-first"
        assert session.expires_at == "2030-06-01T13:00:00Z"
        post = handler.calls_to(SESSION_URL)[0]
        assert json.loads(post.content) == {"uuid": "uuid-first"}

    def test_sends_bearer_token(self) -> None:
        handler = RecordingHandler(
            {PROFILES_URL: [json_response(PROFILES)], SESSION_URL: [json_response(SESSION)]}
        )
        _exchanger(handler).exchange("access-1")
        for request in handler.requests:
            assert request.headers["Authorization"] == "Bearer access-1"

    def test_no_profiles(self) -> None:
        handler = RecordingHandler({PROFILES_URL: [json_response({"profiles": []})]})
        with pytest.raises(NoProfile):
            _exchanger(handler).exchange("access-1")
        assert handler.calls_to(SESSION_URL) == []

    def test_profiles_rejected(self) -> None:
        handler = RecordingHandler({PROFILES_URL: [httpx.Response(403, text="forbidden")]})
        with pytest.raises(SessionServiceError, match="403"):
            _exchanger(handler).exchange("access-1")

    def test_session_response_missing_tokens(self) -> None:
        handler = RecordingHandler(
            {
                PROFILES_URL: [json_response(PROFILES)],
                SESSION_URL: [json_response({"sessionToken": "only-one"})],
            }
        )
        with pytest.raises(SessionServiceError, match="identityToken"):
            _exchanger(handler).exchange("access-1")

    def test_unreachable_service_is_session_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("down", request=request)

        with pytest.raises(SessionServiceError, match="get profiles"):
            _exchanger(handler).exchange("access-1")

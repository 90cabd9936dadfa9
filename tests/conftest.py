"""Shared test fixtures for warden.

Provides an isolated data directory, a quiet output manager, mock HTTP
transports for the account service and a scriptable credential manager
for supervisor tests.  These fixtures are automatically discovered by
pytest and available to all test modules without explicit imports.
"""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any, Callable, Optional

import httpx
import pytest

from warden.models import Acquisition, CredentialSource, SessionTokens, WardenConfig
from warden.output import OutputManager, reset_output, set_output


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches a Rich console bound to sys.stderr at creation
    time.  When CliRunner or capsys swaps the stream the cached reference
    goes stale; resetting forces a fresh manager on next use.
    """
    yield
    reset_output()


@pytest.fixture(autouse=True)
def _no_retry_backoff(monkeypatch: pytest.MonkeyPatch) -> None:
    """Make retry backoff instant unless a test installs its own waiter."""
    import warden.auth.http as http_mod

    original = http_mod.wait_or_cancel

    def _instant(delay: float, cancel: Optional[threading.Event]) -> None:
        original(0, cancel)

    monkeypatch.setattr(http_mod, "wait_or_cancel", _instant)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    path = tmp_path / "data"
    path.mkdir()
    return path


@pytest.fixture
def config(data_dir: Path) -> WardenConfig:
    """Configuration rooted at a temporary data directory."""
    return WardenConfig(data_dir=data_dir, no_color=True)


@pytest.fixture
def quiet_output() -> OutputManager:
    """Install an ERROR-only, colourless output manager."""
    output = OutputManager(level="ERROR", no_color=True)
    set_output(output)
    yield output
    reset_output()


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


def json_response(data: Any, status_code: int = 200) -> httpx.Response:
    """Build an httpx.Response with a JSON body."""
    return httpx.Response(
        status_code=status_code,
        headers={"content-type": "application/json"},
        content=json.dumps(data).encode(),
    )


def mock_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.Client:
    """Create an httpx.Client whose requests are answered by *handler*."""
    return httpx.Client(transport=httpx.MockTransport(handler))


class RecordingHandler:
    """MockTransport handler that replays queued responses per URL.

    Requests are recorded in :attr:`requests`.  When a URL's queue holds a
    single response it is replayed indefinitely.
    """

    def __init__(self, routes: dict[str, list[httpx.Response]]) -> None:
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get(str(request.url))
        if not queue:
            return httpx.Response(404, text=f"no route for {request.url}")
        return queue.pop(0) if len(queue) > 1 else queue[0]

    def calls_to(self, url: str) -> list[httpx.Request]:
        return [r for r in self.requests if str(r.url) == url]


# ---------------------------------------------------------------------------
# Credential manager double for supervisor tests
# ---------------------------------------------------------------------------


def make_acquisition(
    session_token: str = "session-token-abcdef",
    identity_token: str = "identity-token-abcdef",
    source: CredentialSource = CredentialSource.STORED_OAUTH,
) -> Acquisition:
    return Acquisition(
        session=SessionTokens(
            session_token=session_token,
            identity_token=identity_token,
            profile_uuid="0000-profile",
        ),
        source=source,
    )


class FakeManager:
    """Stands in for CredentialManager: scripted acquisitions, counted calls."""

    def __init__(
        self,
        acquisitions: Optional[list[Acquisition]] = None,
        renew: Optional[Callable[[], bool]] = None,
    ) -> None:
        self._acquisitions = list(acquisitions or [Acquisition()])
        self._renew = renew or (lambda: False)
        self.acquire_calls = 0
        self.renew_calls = 0
        self._lock = threading.Lock()

    def acquire(self, interactive: Optional[bool] = None) -> Acquisition:
        with self._lock:
            self.acquire_calls += 1
            if len(self._acquisitions) > 1:
                return self._acquisitions.pop(0)
            return self._acquisitions[0]

    def check_and_renew(self) -> bool:
        with self._lock:
            self.renew_calls += 1
        return self._renew()

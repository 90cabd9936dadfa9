"""Outbound HTTP policy shared by the credential components.

Every request to the account service goes through :func:`send_with_retry`:

- a finite timeout on the injected :class:`httpx.Client`;
- retry on connection errors, timeouts and HTTP 5xx with exponential
  backoff (1 s, 2 s, 4 s, ... capped) plus random jitter;
- a bounded attempt count, after which :class:`TransientNetworkError` is
  raised;
- backoff sleeps that wake up immediately when the cancellation event is
  set, so shutdown never waits out a retry delay.

4xx responses are returned to the caller unchanged: they carry OAuth error
codes the caller has to interpret.
"""

from __future__ import annotations

import random
import threading
from typing import Any, Callable, Optional

import httpx

from warden.config import HTTP_TIMEOUT_SECONDS
from warden.exceptions import OperationCancelled, TransientNetworkError
from warden.output import debug

MAX_ATTEMPTS = 4
BASE_DELAY = 1.0
MAX_DELAY = 30.0
JITTER_RATIO = 0.25


def create_client(timeout: float = HTTP_TIMEOUT_SECONDS) -> httpx.Client:
    """Create the :class:`httpx.Client` used for all account-service calls."""
    return httpx.Client(
        timeout=timeout,
        headers={"Accept": "application/json"},
        follow_redirects=True,
    )


def backoff_delay(
    attempt: int,
    base: float = BASE_DELAY,
    cap: float = MAX_DELAY,
    rand: Callable[[], float] = random.random,
) -> float:
    """Delay before retry number *attempt* (0-based), jitter included."""
    delay = min(cap, base * (2 ** attempt))
    return delay + delay * JITTER_RATIO * rand()


def wait_or_cancel(delay: float, cancel: Optional[threading.Event]) -> None:
    """Sleep for *delay* seconds, aborting early if *cancel* is set.

    Raises:
        OperationCancelled: If *cancel* was set before or during the wait.
    """
    if cancel is None:
        cancel = threading.Event()
    if cancel.wait(delay):
        raise OperationCancelled("Credential operation cancelled by shutdown")


def send_with_retry(
    client: httpx.Client,
    method: str,
    url: str,
    *,
    cancel: Optional[threading.Event] = None,
    max_attempts: int = MAX_ATTEMPTS,
    base_delay: float = BASE_DELAY,
    **kwargs: Any,
) -> httpx.Response:
    """Send a request, retrying transient failures with backoff and jitter.

    Args:
        client: The client to send with.
        method: HTTP method.
        url: Absolute URL.
        cancel: Event that aborts the retry loop when set.
        max_attempts: Total attempts including the first.
        base_delay: Delay before the first retry, doubled each time.
        **kwargs: Passed through to :meth:`httpx.Client.request`.

    Returns:
        The first response with a status below 500.

    Raises:
        TransientNetworkError: If every attempt failed at the transport
            level or with a 5xx status.
        OperationCancelled: If *cancel* is set while waiting to retry.
    """
    last_problem = ""
    for attempt in range(max_attempts):
        if cancel is not None and cancel.is_set():
            raise OperationCancelled("Credential operation cancelled by shutdown")
        try:
            response = client.request(method, url, **kwargs)
        except (httpx.TimeoutException, httpx.NetworkError, httpx.ProtocolError) as exc:
            last_problem = f"{type(exc).__name__}: {exc}"
        else:
            if response.status_code < 500:
                return response
            last_problem = f"HTTP {response.status_code}"

        if attempt + 1 < max_attempts:
            delay = backoff_delay(attempt, base=base_delay)
            debug(
                f"{method} {url} failed ({last_problem}), retrying in {delay:.1f}s "
                f"(attempt {attempt + 1}/{max_attempts})"
            )
            wait_or_cancel(delay, cancel)

    raise TransientNetworkError(
        f"{method} {url} failed after {max_attempts} attempts: {last_problem}"
    )


def json_body(response: httpx.Response) -> dict[str, Any]:
    """Decode a JSON object body, returning ``{}`` for anything else."""
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}

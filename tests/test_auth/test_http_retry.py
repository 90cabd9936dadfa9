"""Tests for warden.auth.http -- bounded retry with backoff and cancellation."""

from __future__ import annotations

import threading
import time

import httpx
import pytest

from conftest import json_response, mock_client
from warden.auth.http import backoff_delay, json_body, send_with_retry, wait_or_cancel
from warden.exceptions import OperationCancelled, TransientNetworkError

URL = "https://auth.example.com/token"


class TestSendWithRetry:
    def test_success_is_returned_immediately(self) -> None:
        calls: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return json_response({"ok": True})

        with mock_client(handler) as client:
            response = send_with_retry(client, "GET", URL)
        assert response.status_code == 200
        assert len(calls) == 1

    def test_client_error_is_not_retried(self) -> None:
        calls: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return json_response({"error": "invalid_grant"}, status_code=400)

        with mock_client(handler) as client:
            response = send_with_retry(client, "POST", URL)
        assert response.status_code == 400
        assert len(calls) == 1

    def test_server_error_exhausts_attempts(self) -> None:
        calls: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(503)

        with mock_client(handler) as client:
            with pytest.raises(TransientNetworkError, match="HTTP 503"):
                send_with_retry(client, "POST", URL, max_attempts=3)
        assert len(calls) == 3

    def test_transport_error_then_success(self) -> None:
        attempts = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            attempts["n"] += 1
            if attempts["n"] < 3:
                raise httpx.ConnectError("connection refused", request=request)
            return json_response({"ok": True})

        with mock_client(handler) as client:
            response = send_with_retry(client, "GET", URL)
        assert response.status_code == 200
        assert attempts["n"] == 3

    def test_timeout_is_transient(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with mock_client(handler) as client:
            with pytest.raises(TransientNetworkError, match="ReadTimeout"):
                send_with_retry(client, "GET", URL, max_attempts=2)

    def test_cancel_before_first_attempt(self) -> None:
        cancel = threading.Event()
        cancel.set()

        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        with mock_client(handler) as client:
            with pytest.raises(OperationCancelled):
                send_with_retry(client, "GET", URL, cancel=cancel)

    def test_cancel_during_backoff(self) -> None:
        cancel = threading.Event()
        calls: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            cancel.set()
            return httpx.Response(502)

        with mock_client(handler) as client:
            with pytest.raises(OperationCancelled):
                send_with_retry(client, "GET", URL, cancel=cancel)
        assert len(calls) == 1


class TestBackoff:
    def test_doubles_without_jitter(self) -> None:
        delays = [backoff_delay(n, rand=lambda: 0.0) for n in range(4)]
        assert delays == [1.0, 2.0, 4.0, 8.0]

    def test_capped(self) -> None:
        assert backoff_delay(10, rand=lambda: 0.0) == 30.0

    def test_jitter_is_bounded(self) -> None:
        assert backoff_delay(0, rand=lambda: 1.0) == pytest.approx(1.25)
        assert backoff_delay(10, rand=lambda: 1.0) == pytest.approx(37.5)


class TestWaitOrCancel:
    def test_returns_after_delay(self) -> None:
        wait_or_cancel(0.01, threading.Event())

    def test_cancelled_wait_returns_early(self) -> None:
        cancel = threading.Event()
        threading.Timer(0.05, cancel.set).start()
        started = time.monotonic()
        with pytest.raises(OperationCancelled):
            wait_or_cancel(10, cancel)
        assert time.monotonic() - started < 5


class TestJsonBody:
    def test_non_json_is_empty(self) -> None:
        assert json_body(httpx.Response(200, text="<html>")) == {}

    def test_non_object_is_empty(self) -> None:
        assert json_body(json_response([1, 2, 3])) == {}

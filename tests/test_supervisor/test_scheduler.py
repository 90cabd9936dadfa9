"""Tests for warden.supervisor.scheduler -- credential health and retention loops."""

from __future__ import annotations

import os
import time
from pathlib import Path

from conftest import FakeManager
from warden.exceptions import CredentialsInvalid, OperationCancelled, TransientNetworkError
from warden.supervisor.scheduler import BackgroundScheduler


def _wait_until(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def _raiser(exc: Exception):
    def renew() -> bool:
        raise exc

    return renew


class LostRecorder:
    def __init__(self) -> None:
        self.reasons: list[str] = []

    def __call__(self, reason: str) -> None:
        self.reasons.append(reason)


class TestCredentialCheck:
    def test_successful_renewal(self, tmp_path: Path) -> None:
        lost = LostRecorder()
        manager = FakeManager(renew=lambda: True)
        BackgroundScheduler(manager, lost, tmp_path).run_credential_check()
        assert manager.renew_calls == 1
        assert lost.reasons == []

    def test_rejected_credentials_report_loss(self, tmp_path: Path) -> None:
        lost = LostRecorder()
        manager = FakeManager(renew=_raiser(CredentialsInvalid("Refresh token rejected")))
        BackgroundScheduler(manager, lost, tmp_path).run_credential_check()
        assert lost.reasons == ["Refresh token rejected"]

    def test_network_failure_reports_loss(self, tmp_path: Path) -> None:
        lost = LostRecorder()
        manager = FakeManager(renew=_raiser(TransientNetworkError("unreachable")))
        BackgroundScheduler(manager, lost, tmp_path).run_credential_check()
        assert lost.reasons == ["unreachable"]

    def test_cancellation_is_silent(self, tmp_path: Path) -> None:
        lost = LostRecorder()
        manager = FakeManager(renew=_raiser(OperationCancelled("shutdown")))
        BackgroundScheduler(manager, lost, tmp_path).run_credential_check()
        assert lost.reasons == []

    def test_no_restart_requested_after_stop(self, tmp_path: Path) -> None:
        lost = LostRecorder()
        manager = FakeManager(renew=_raiser(CredentialsInvalid("rejected")))
        scheduler = BackgroundScheduler(manager, lost, tmp_path)
        scheduler.stop()
        scheduler.run_credential_check()
        assert lost.reasons == []

    def test_persist_failure_is_contained(self, tmp_path: Path) -> None:
        lost = LostRecorder()
        manager = FakeManager(renew=_raiser(OSError("disk full")))
        BackgroundScheduler(manager, lost, tmp_path).run_credential_check()
        assert lost.reasons == []


class TestLoops:
    def test_credential_loop_repeats_until_stopped(self, tmp_path: Path) -> None:
        manager = FakeManager()
        scheduler = BackgroundScheduler(
            manager, LostRecorder(), tmp_path, check_interval=0.02, initial_delay=0
        )
        scheduler.start()
        try:
            assert _wait_until(lambda: manager.renew_calls >= 3)
        finally:
            scheduler.stop(timeout=5)
        assert not scheduler.running

    def test_initial_delay_defers_first_check(self, tmp_path: Path) -> None:
        manager = FakeManager()
        scheduler = BackgroundScheduler(
            manager, LostRecorder(), tmp_path, check_interval=0.01, initial_delay=3600
        )
        scheduler.start()
        time.sleep(0.1)
        scheduler.stop(timeout=5)
        assert manager.renew_calls == 0

    def test_stop_interrupts_long_waits(self, tmp_path: Path) -> None:
        scheduler = BackgroundScheduler(
            FakeManager(),
            LostRecorder(),
            tmp_path,
            check_interval=3600,
            initial_delay=3600,
            retention_interval=3600,
        )
        scheduler.start()
        started = time.monotonic()
        scheduler.stop(timeout=5)
        assert time.monotonic() - started < 2
        assert not scheduler.running

    def test_start_is_idempotent(self, tmp_path: Path) -> None:
        scheduler = BackgroundScheduler(FakeManager(), LostRecorder(), tmp_path, initial_delay=3600)
        scheduler.start()
        scheduler.start()
        try:
            assert len(scheduler._threads) == 2
        finally:
            scheduler.stop(timeout=5)

    def test_retention_runs_at_start(self, tmp_path: Path) -> None:
        old = tmp_path / "old.log"
        old.write_text("x")
        ancient = time.time() - 30 * 86400
        os.utime(old, (ancient, ancient))

        scheduler = BackgroundScheduler(
            FakeManager(), LostRecorder(), tmp_path, retention_days=7, initial_delay=3600
        )
        scheduler.start()
        try:
            assert _wait_until(lambda: not old.exists())
        finally:
            scheduler.stop(timeout=5)

    def test_retention_disabled(self, tmp_path: Path) -> None:
        scheduler = BackgroundScheduler(
            FakeManager(), LostRecorder(), tmp_path, retention_days=0, initial_delay=3600
        )
        scheduler.start()
        try:
            assert [t.name for t in scheduler._threads] == ["credential-health"]
        finally:
            scheduler.stop(timeout=5)

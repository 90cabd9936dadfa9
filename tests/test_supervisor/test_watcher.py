"""Tests for warden.supervisor.watcher -- output relay and marker detection."""

from __future__ import annotations

import io

from warden.supervisor.watcher import MarkerScanner, OutputWatcher

BOOT = "Hytale Server Booted"
AUTH = "No server tokens configured"


class Recorder:
    def __init__(self) -> None:
        self.boots = 0
        self.auths = 0

    def boot(self) -> None:
        self.boots += 1

    def auth(self) -> None:
        self.auths += 1


def _scanner(recorder: Recorder) -> MarkerScanner:
    return MarkerScanner(BOOT, AUTH, on_boot_complete=recorder.boot, on_auth_required=recorder.auth)


class TestMarkerScanner:
    def test_boot_marker_fires_once(self) -> None:
        recorder = Recorder()
        scanner = _scanner(recorder)
        scanner.feed("[INFO] Loading world\n")
        scanner.feed(f"[INFO] {BOOT}! took 3.2s\n")
        scanner.feed(f"[INFO] {BOOT} again\n")
        assert recorder.boots == 1
        assert scanner.booted.is_set()

    def test_auth_marker_before_boot_is_ignored(self) -> None:
        recorder = Recorder()
        scanner = _scanner(recorder)
        scanner.feed(f"[WARN] {AUTH}\n")
        assert recorder.auths == 0

    def test_auth_marker_after_boot(self) -> None:
        recorder = Recorder()
        scanner = _scanner(recorder)
        scanner.feed(f"{BOOT}\n")
        scanner.feed(f"[WARN] {AUTH}, use /auth login\n")
        assert recorder.auths == 1

    def test_failing_callback_does_not_propagate(self) -> None:
        def explode() -> None:
            raise RuntimeError("boom")

        scanner = MarkerScanner(BOOT, AUTH, on_boot_complete=explode)
        scanner.feed(f"{BOOT}\n")
        assert scanner.booted.is_set()

    def test_empty_markers_never_match(self) -> None:
        recorder = Recorder()
        scanner = MarkerScanner("", "", recorder.boot, recorder.auth)
        scanner.feed("anything\n")
        assert recorder.boots == 0


class TestOutputWatcher:
    def test_relays_every_line_and_scans(self) -> None:
        recorder = Recorder()
        relayed: list[str] = []
        stream = io.StringIO(f"one\n{BOOT}\n{AUTH}\nlast line without newline")

        watcher = OutputWatcher(stream, _scanner(recorder), sink=relayed.append)
        watcher.start()
        watcher.join(timeout=5)

        assert not watcher.is_alive()
        assert relayed == ["one\n", f"{BOOT}\n", f"{AUTH}\n", "last line without newline"]
        assert recorder.boots == 1
        assert recorder.auths == 1

    def test_closed_stream_ends_quietly(self) -> None:
        stream = io.StringIO("x\n")
        stream.close()
        watcher = OutputWatcher(stream, MarkerScanner(BOOT, AUTH), sink=lambda line: None)
        watcher.start()
        watcher.join(timeout=5)
        assert not watcher.is_alive()

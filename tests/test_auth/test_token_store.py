"""Tests for warden.auth.store -- camelCase token file, atomic 0600 writes."""

from __future__ import annotations

import json
import stat
from datetime import datetime, timezone
from pathlib import Path

from warden.auth.store import TokenStore
from warden.models import OAuthTokens


def _tokens() -> OAuthTokens:
    return OAuthTokens(
        access_token="access-1",
        refresh_token="refresh-1",
        expires_at=datetime(2030, 1, 1, tzinfo=timezone.utc),
        refreshed_at=datetime(2029, 12, 1, tzinfo=timezone.utc),
    )


class TestTokenStoreSave:
    def test_writes_camel_case_keys(self, tmp_path: Path) -> None:
        path = tmp_path / ".auth" / ".oauth-tokens.json"
        TokenStore(path).save(_tokens())

        data = json.loads(path.read_text())
        assert data["accessToken"] == "access-1"
        assert data["refreshToken"] == "refresh-1"
        assert data["expiresAt"].startswith("2030-01-01T00:00:00")
        assert "refreshedAt" in data
        assert "access_token" not in data

    def test_file_is_owner_only(self, tmp_path: Path) -> None:
        path = tmp_path / "tokens.json"
        TokenStore(path).save(_tokens())
        assert stat.S_IMODE(path.stat().st_mode) == 0o600

    def test_creates_parent_directory(self, tmp_path: Path) -> None:
        path = tmp_path / "a" / "b" / "tokens.json"
        TokenStore(path).save(_tokens())
        assert path.is_file()

    def test_no_temp_files_left_behind(self, tmp_path: Path) -> None:
        path = tmp_path / "tokens.json"
        store = TokenStore(path)
        store.save(_tokens())
        store.save(_tokens())
        assert [p.name for p in tmp_path.iterdir()] == ["tokens.json"]


class TestTokenStoreLoad:
    def test_round_trip(self, tmp_path: Path) -> None:
        store = TokenStore(tmp_path / "tokens.json")
        store.save(_tokens())
        assert store.load() == _tokens()

    def test_missing_file_is_none(self, tmp_path: Path) -> None:
        assert TokenStore(tmp_path / "absent.json").load() is None

    def test_empty_file_is_none(self, tmp_path: Path) -> None:
        path = tmp_path / "tokens.json"
        path.write_text("")
        assert TokenStore(path).load() is None

    def test_malformed_json_is_none(self, tmp_path: Path) -> None:
        path = tmp_path / "tokens.json"
        path.write_text("{not json")
        assert TokenStore(path).load() is None

    def test_missing_refresh_token_is_none(self, tmp_path: Path) -> None:
        path = tmp_path / "tokens.json"
        path.write_text(json.dumps({"accessToken": "a", "expiresAt": "2030-01-01T00:00:00Z"}))
        assert TokenStore(path).load() is None

    def test_reads_file_without_refreshed_at(self, tmp_path: Path) -> None:
        path = tmp_path / "tokens.json"
        path.write_text(
            json.dumps(
                {
                    "accessToken": "a",
                    "refreshToken": "r",
                    "expiresAt": "2030-01-01T00:00:00.000Z",
                }
            )
        )
        tokens = TokenStore(path).load()
        assert tokens is not None
        assert tokens.refresh_token == "r"
        assert tokens.refreshed_at is None
        assert tokens.expires_at == datetime(2030, 1, 1, tzinfo=timezone.utc)


class TestTokenStoreClear:
    def test_removes_file(self, tmp_path: Path) -> None:
        store = TokenStore(tmp_path / "tokens.json")
        store.save(_tokens())
        store.clear()
        assert not store.path.exists()
        assert store.load() is None

    def test_clear_when_absent_is_noop(self, tmp_path: Path) -> None:
        TokenStore(tmp_path / "tokens.json").clear()

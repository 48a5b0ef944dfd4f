"""Tests for configuration handling and the retry helper."""

import asyncio
import json

import pytest

from utils import (
    get_week_dates,
    load_config_safe,
    mask_secret,
    retry_async,
    save_config,
    timesheet_setting,
    validate_config,
)

VALID = {
    "jira": {
        "base_url": "https://example.atlassian.net",
        "user_email": "me@example.com",
        "api_token": "secret-token",
    }
}


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

class TestValidateConfig:

    def test_valid(self):
        assert validate_config(VALID) == []

    def test_missing_section(self):
        assert validate_config({}) == ["Missing section 'jira' in config.json"]

    def test_missing_keys(self):
        errors = validate_config({"jira": {"base_url": "https://example.atlassian.net"}})
        assert errors == ["Missing jira.user_email", "Missing jira.api_token"]

    def test_base_url_scheme(self):
        config = {"jira": {**VALID["jira"], "base_url": "example.atlassian.net"}}
        assert validate_config(config) == ["jira.base_url must start with https://"]

    @pytest.mark.parametrize("workers", [0, -1, "4", True])
    def test_sync_workers(self, workers):
        config = {**VALID, "timesheet": {"sync_workers": workers}}
        assert validate_config(config) == ["timesheet.sync_workers must be a positive integer"]


class TestLoadConfigSafe:

    def test_missing_file(self, tmp_path, capsys):
        assert load_config_safe(str(tmp_path / "config.json")) is None
        assert "not found" in capsys.readouterr().out

    def test_invalid_json(self, tmp_path, capsys):
        path = tmp_path / "config.json"
        path.write_text('{"jira": {')
        assert load_config_safe(str(path)) is None
        assert "not valid JSON" in capsys.readouterr().out

    def test_incomplete(self, tmp_path, capsys):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"jira": {}}))
        assert load_config_safe(str(path)) is None
        assert "Missing jira.api_token" in capsys.readouterr().out

    def test_valid(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps(VALID))
        assert load_config_safe(str(path)) == VALID


class TestSaveConfig:

    def test_writes_new_file(self, tmp_path):
        path = tmp_path / "config.json"
        save_config(VALID, str(path))
        assert json.loads(path.read_text()) == VALID

    def test_never_overwrites(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{}")
        with pytest.raises(FileExistsError):
            save_config(VALID, str(path))
        assert path.read_text() == "{}"


def test_timesheet_setting_defaults():
    assert timesheet_setting(VALID, "database") == "worklog.db"
    assert timesheet_setting(VALID, "sync_workers") == 4
    assert timesheet_setting({"timesheet": {"database": "/tmp/x.db"}}, "database") == "/tmp/x.db"


@pytest.mark.parametrize("value, masked", [("secret-token", "********oken"), ("abc", "****")])
def test_mask_secret(value, masked):
    assert mask_secret(value) == masked


@pytest.mark.parametrize(
    "week, expected",
    [
        ("202445", ("2024-11-04", "2024-11-10")),
        ("202501", ("2024-12-30", "2025-01-05")),
    ],
)
def test_get_week_dates(week, expected):
    assert get_week_dates(week) == expected


# ---------------------------------------------------------------------------
# retry_async
# ---------------------------------------------------------------------------

class Flaky:
    def __init__(self, failures: int, error: Exception):
        self.failures = failures
        self.error = error
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "done"


class TestRetryAsync:

    def test_succeeds_after_retries(self):
        op = Flaky(2, ConnectionError("down"))
        retries = []
        result = asyncio.run(retry_async(op, max_attempts=3, delay=0, on_retry=lambda n, e: retries.append(n)))
        assert result == "done"
        assert retries == [1, 2]

    def test_raises_last_error(self):
        op = Flaky(3, ConnectionError("down"))
        with pytest.raises(ConnectionError):
            asyncio.run(retry_async(op, max_attempts=3, delay=0))
        assert op.calls == 3

    def test_should_retry_declines(self):
        op = Flaky(1, KeyError("no"))
        with pytest.raises(KeyError):
            asyncio.run(retry_async(op, max_attempts=3, delay=0, should_retry=lambda e: False))
        assert op.calls == 1

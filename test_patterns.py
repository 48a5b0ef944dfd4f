"""Tests for the regex patterns used when parsing command line input."""

import pytest

from patterns import Patterns


# ---------------------------------------------------------------------------
# ISSUE_KEY: TIME-94
# ---------------------------------------------------------------------------

class TestIssueKey:

    @pytest.mark.parametrize("key", ["TIME-94", "TIME-147", "AB-1", "A1_B-2000"])
    def test_matches(self, key):
        assert Patterns.ISSUE_KEY.match(key)

    @pytest.mark.parametrize(
        "key",
        [
            "time-94",   # lower case, callers upper-case first
            "T-1",       # single letter project
            "TIME94",
            "TIME-",
            "1TIME-4",
            "TIME-94 extra",
            "",
        ],
    )
    def test_rejects(self, key):
        assert Patterns.ISSUE_KEY.match(key) is None


# ---------------------------------------------------------------------------
# PROJECT_KEY: TIME
# ---------------------------------------------------------------------------

class TestProjectKey:

    @pytest.mark.parametrize("key", ["TIME", "AB", "A1_B"])
    def test_matches(self, key):
        assert Patterns.PROJECT_KEY.match(key)

    @pytest.mark.parametrize("key", ["TIME-94", "T", "1TIME", "TIME OPS", ""])
    def test_rejects(self, key):
        assert Patterns.PROJECT_KEY.match(key) is None


# ---------------------------------------------------------------------------
# DURATION_TOKEN: number part and unit part
# ---------------------------------------------------------------------------

class TestDurationToken:

    @pytest.mark.parametrize(
        "text, number, unit",
        [
            ("1h", "1", "h"),
            ("7,5h", "7,5", "h"),
            ("1.5d", "1.5", "d"),
            ("30min", "30", "min"),
            (" 2w", "2", "w"),
            ("h", "", "h"),
            ("12", "12", ""),
        ],
    )
    def test_splits_number_and_unit(self, text, number, unit):
        m = Patterns.DURATION_TOKEN.match(text)
        assert m.group(1) == number
        assert m.group(2) == unit

    def test_continues_after_previous_token(self):
        text = "1d2h30m"
        m = Patterns.DURATION_TOKEN.match(text, 2)
        assert m.groups() == ("2", "h")


# ---------------------------------------------------------------------------
# DECIMAL: 7 / 7,5 / 7.5
# ---------------------------------------------------------------------------

class TestDecimal:

    @pytest.mark.parametrize("text", ["7", "7,5", "7.5", "0.25", "100"])
    def test_matches(self, text):
        assert Patterns.DECIMAL.match(text)

    @pytest.mark.parametrize("text", ["", ",5", "7,", "1,5,5", "-1", "1..5"])
    def test_rejects(self, text):
        assert Patterns.DECIMAL.match(text) is None


# ---------------------------------------------------------------------------
# WEEKDAY_PREFIX: Fri:1d
# ---------------------------------------------------------------------------

class TestWeekdayPrefix:

    def test_splits_day_and_duration(self):
        m = Patterns.WEEKDAY_PREFIX.match("Fri:7,5h")
        assert m.groups() == ("Fri", "7,5h")

    def test_plain_duration_has_no_prefix(self):
        assert Patterns.WEEKDAY_PREFIX.match("7,5h") is None


# ---------------------------------------------------------------------------
# Dates, times and weeks
# ---------------------------------------------------------------------------

class TestDateTimeFormats:

    @pytest.mark.parametrize("text", ["08:00", "8:00", "23:59"])
    def test_time(self, text):
        assert Patterns.TIME_FORMAT.match(text)

    def test_date(self):
        assert Patterns.DATE_FORMAT.match("2024-11-04")
        assert Patterns.DATE_FORMAT.match("2024-11-4") is None

    def test_date_time(self):
        assert Patterns.DATE_TIME_FORMAT.match("2024-11-04T08:00")
        assert Patterns.DATE_TIME_FORMAT.match("2024-11-04 08:00") is None

    @pytest.mark.parametrize("text, valid", [("202445", True), ("2024-45", False), ("20245", False)])
    def test_week(self, text, valid):
        assert bool(Patterns.WEEK_FORMAT.match(text)) is valid

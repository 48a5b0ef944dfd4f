"""Centralized regex patterns for worklog expressions."""

import re


class Patterns:
    """Regex patterns used when parsing user input."""

    # Jira project key: TIME
    PROJECT_KEY = re.compile(r"^[A-Z][A-Z0-9_]+$")

    # Jira issue key: TIME-94
    ISSUE_KEY = re.compile(r"^[A-Z][A-Z0-9_]+-\d+$")

    # One duration token: number part followed by unit part, e.g. "1,5h" or "30min"
    DURATION_TOKEN = re.compile(r"\s*([^A-Za-z\s]*)([A-Za-z]*)")

    # Number with optional fraction, "." or "," as separator: 7,5 or 7.5
    DECIMAL = re.compile(r"^\d+(?:[.,]\d+)?$")

    # Weekday anchored duration: "Fri:1d"
    WEEKDAY_PREFIX = re.compile(r"^([A-Za-z]+):(.*)$")

    # Date format: YYYY-MM-DD
    DATE_FORMAT = re.compile(r"^\d{4}-\d{2}-\d{2}$")

    # Clock time: 8:00 or 08:00
    TIME_FORMAT = re.compile(r"^\d{1,2}:\d{2}$")

    # Date and clock time: 2024-11-04T08:00
    DATE_TIME_FORMAT = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{1,2}:\d{2}$")

    # Week format: YYYYWW (e.g., 202445)
    WEEK_FORMAT = re.compile(r"^\d{6}$")

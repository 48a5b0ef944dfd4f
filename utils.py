"""Configuration and small helpers for the timesheet tool."""

import asyncio
import json
import os
from datetime import datetime, timedelta
from typing import Awaitable, Callable, TypeVar

T = TypeVar("T")

# File paths
CONFIG_FILE = "config.json"
DEFAULT_DATABASE = "worklog.db"
DEFAULT_TIMER_FILE = "timer.json"
DEFAULT_SYNC_WORKERS = 4


def load_config(path: str = CONFIG_FILE) -> dict:
    """Load config.json with Jira credentials and local file locations."""
    with open(path) as f:
        return json.load(f)


def validate_config(config: dict) -> list[str]:
    """Validate config structure and return list of error messages.

    Returns:
        Empty list if valid, otherwise list of error messages.
    """
    errors = []

    if "jira" not in config:
        errors.append("Missing section 'jira' in config.json")
    else:
        for key in ["base_url", "user_email", "api_token"]:
            if not config["jira"].get(key):
                errors.append(f"Missing jira.{key}")
        base_url = config["jira"].get("base_url") or ""
        if base_url and not base_url.startswith(("http://", "https://")):
            errors.append("jira.base_url must start with https://")

    timesheet = config.get("timesheet", {})
    if not isinstance(timesheet, dict):
        errors.append("Section 'timesheet' must be an object")
    else:
        workers = timesheet.get("sync_workers", DEFAULT_SYNC_WORKERS)
        if not isinstance(workers, int) or isinstance(workers, bool) or workers < 1:
            errors.append("timesheet.sync_workers must be a positive integer")

    return errors


def load_config_safe(path: str = CONFIG_FILE) -> dict | None:
    """Load config with user-friendly error messages.

    Returns:
        Config dict if valid, None if errors occurred.
    """
    if not os.path.exists(path):
        print(f"[!] ERROR: {path} not found!")
        print()
        print("    Create it with your Jira credentials:")
        print("    $ python timesheet.py config init --url https://you.atlassian.net --user you@example.com --token ...")
        print("    or copy config.example.json and fill it in.")
        print()
        return None

    try:
        config = load_config(path)
    except json.JSONDecodeError as e:
        print(f"[!] ERROR: {path} is not valid JSON!")
        print(f"    Line {e.lineno}, column {e.colno}: {e.msg}")
        print()
        print("    Check for missing commas, quotes, or brackets.")
        return None

    errors = validate_config(config)
    if errors:
        print(f"[!] ERROR: {path} is incomplete:")
        for err in errors:
            print(f"    - {err}")
        print()
        print("    See config.example.json for the required structure.")
        return None

    return config


def save_config(config: dict, path: str = CONFIG_FILE) -> None:
    """Write a new config file; never overwrites an existing one."""
    with open(path, "x") as f:
        json.dump(config, f, indent=2, ensure_ascii=False)


def timesheet_setting(config: dict, key: str):
    """Value from the optional 'timesheet' section, or its default."""
    defaults = {
        "database": DEFAULT_DATABASE,
        "timer_file": DEFAULT_TIMER_FILE,
        "tracking_project": None,
        "sync_workers": DEFAULT_SYNC_WORKERS,
    }
    return config.get("timesheet", {}).get(key, defaults[key])


def mask_secret(value: str) -> str:
    if len(value) <= 4:
        return "****"
    return "*" * (len(value) - 4) + value[-4:]


def get_week_dates(week_str: str) -> tuple[str, str]:
    """Get start and end date (Mon-Sun) for a week string YYYYWW."""
    year = int(week_str[:4])
    week = int(week_str[4:])
    # ISO week: Jan 4 is always in week 1
    jan4 = datetime(year, 1, 4)
    start_of_week1 = jan4 - timedelta(days=jan4.weekday())
    week_start = start_of_week1 + timedelta(weeks=week - 1)
    week_end = week_start + timedelta(days=6)
    return week_start.strftime("%Y-%m-%d"), week_end.strftime("%Y-%m-%d")


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    delay: float = 1.0,
    should_retry: Callable[[Exception], bool] = lambda e: True,
    on_retry: Callable[[int, Exception], None] | None = None,
) -> T:
    """Execute an async operation with retries.

    Args:
        operation: Async callable to execute
        max_attempts: Maximum number of attempts
        delay: Delay in seconds between attempts
        should_retry: Decides whether a failure is worth another attempt
        on_retry: Optional callback when retrying (attempt_num, exception)

    Returns:
        Result of operation. The last exception is raised if all attempts
        failed or should_retry declined.
    """
    for attempt in range(max_attempts):
        try:
            return await operation()
        except Exception as e:
            if attempt == max_attempts - 1 or not should_retry(e):
                raise
            if on_retry:
                on_retry(attempt + 1, e)
            await asyncio.sleep(delay)
    raise ValueError("max_attempts must be at least 1")

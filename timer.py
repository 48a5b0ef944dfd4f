"""The timer: at most one running, not yet submitted worklog entry.

The timer lives in a small JSON file so that "stop" in a later
invocation finds what "start" created. The file is only ever created
with an atomic exclusive operation, so two concurrent "start"s can not
both succeed.
"""

import json
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Callable

from models import Timer, WorklogEntry

# submit(issue_key, started, duration_seconds, comment) -> accepted entry
Submitter = Callable[[str, datetime, int, str | None], WorklogEntry]


class TimerStateError(Exception):
    """The requested timer operation does not fit the current state."""


class AlreadyRunningError(TimerStateError):
    def __init__(self, timer: Timer | None):
        if timer:
            message = f"A timer for {timer.issue_key} is already running since {timer.started:%Y-%m-%d %H:%M}"
        else:
            message = "A timer is already running"
        super().__init__(message)
        self.timer = timer


class NoActiveTimerError(TimerStateError):
    def __init__(self):
        super().__init__("No timer is running. Start one with 'start -i <issue>'")


class NegativeDurationError(TimerStateError):
    def __init__(self, started: datetime, stopped: datetime):
        super().__init__(
            f"Stop time {stopped:%Y-%m-%d %H:%M} is before the timer's start {started:%Y-%m-%d %H:%M}"
        )
        self.started = started
        self.stopped = stopped


class DurationTooShortError(TimerStateError):
    def __init__(self, seconds: int):
        super().__init__(
            f"Only {seconds} seconds elapsed; Jira needs at least one minute. "
            "Keep working or drop the timer with 'stop --discard'"
        )
        self.seconds = seconds


class TimerFile:
    """JSON file holding the running timer, absent when idle."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def load(self) -> Timer | None:
        if not self.path.exists():
            return None
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
            return Timer(
                issue_key=data["issue_key"],
                started=datetime.fromisoformat(data["started"]),
                comment=data.get("comment"),
            )
        except (json.JSONDecodeError, KeyError, ValueError) as e:
            raise TimerStateError(
                f"Timer file {self.path} is unreadable ({e}). Remove it with 'stop --discard'"
            ) from e

    def create(self, timer: Timer) -> None:
        """Write the timer unless one exists; check and create are one step."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "issue_key": timer.issue_key,
            "started": timer.started.isoformat(),
            "comment": timer.comment,
        }
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".timer-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            # link() fails if the target exists, unlike rename()
            os.link(tmp_name, self.path)
        except FileExistsError:
            try:
                existing = self.load()
            except TimerStateError:
                existing = None
            raise AlreadyRunningError(existing)
        finally:
            os.unlink(tmp_name)

    def remove(self) -> None:
        self.path.unlink(missing_ok=True)


class TimerStateMachine:
    """Idle or Running(issue_key, start, comment)."""

    def __init__(
        self, timer_file: TimerFile, submit: Submitter, mirror: Callable[[WorklogEntry], None] | None = None
    ):
        self.timer_file = timer_file
        self.submit = submit
        self.mirror = mirror

    @property
    def active(self) -> Timer | None:
        return self.timer_file.load()

    @property
    def state(self) -> str:
        return "running" if self.active else "idle"

    def start(
        self,
        issue_key: str,
        comment: str | None = None,
        explicit_start: datetime | None = None,
        now: datetime | None = None,
    ) -> Timer:
        """Idle -> Running. Raises AlreadyRunningError, leaving the old timer as is."""
        now = now or datetime.now().astimezone()
        timer = Timer(issue_key=issue_key.upper(), started=explicit_start or now, comment=comment)
        self.timer_file.create(timer)
        return timer

    def stop(
        self,
        comment_override: str | None = None,
        explicit_stop: datetime | None = None,
        now: datetime | None = None,
    ) -> WorklogEntry:
        """Running -> Idle, submitting the elapsed time as a worklog entry.

        The timer is removed as soon as Jira accepts the entry, before the
        local copy is written, so a failing local store can not lead to the
        same time being submitted twice. A rejected submission leaves the
        timer running and can simply be retried.
        """
        timer = self.timer_file.load()
        if timer is None:
            raise NoActiveTimerError()

        stopped = explicit_stop or now or datetime.now().astimezone()
        if stopped < timer.started:
            raise NegativeDurationError(timer.started, stopped)

        elapsed = int((stopped - timer.started).total_seconds())
        seconds = elapsed // 60 * 60
        if seconds < 60:
            raise DurationTooShortError(elapsed)

        entry = self.submit(timer.issue_key, timer.started, seconds, comment_override or timer.comment)
        self.timer_file.remove()
        if self.mirror is not None:
            self.mirror(entry)
        return entry

    def discard(self) -> Timer | None:
        """Drop the running timer without submitting anything."""
        if not self.timer_file.path.exists():
            raise NoActiveTimerError()
        try:
            timer = self.timer_file.load()
        except TimerStateError:
            timer = None
        self.timer_file.remove()
        return timer


def elapsed_seconds(timer: Timer, now: datetime | None = None) -> int:
    now = now or datetime.now().astimezone()
    return max(0, int((now - timer.started).total_seconds()))

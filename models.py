"""Data models for the local worklog cache."""

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class Component:
    """A Jira component attached to zero or more issues."""

    component_id: int
    name: str


@dataclass
class Issue:
    """A Jira issue as cached locally."""

    key: str  # e.g. TIME-94
    numeric_id: int
    summary: str
    components: list[Component] = field(default_factory=list)


@dataclass
class WorklogEntry:
    """A worklog entry accepted by Jira."""

    entry_id: int
    issue_key: str
    author: str  # Jira account id
    started: datetime  # timezone aware
    duration_seconds: int
    comment: str | None = None


@dataclass
class Timer:
    """The single running timer, persisted between invocations."""

    issue_key: str
    started: datetime
    comment: str | None = None


@dataclass
class PlannedEntry:
    """A parsed duration expression, ready to be submitted."""

    expression: str
    duration_seconds: int
    started: datetime


@dataclass
class SyncReport:
    """Outcome of a sync, per issue key."""

    synced: dict[str, int] = field(default_factory=dict)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed

"""Adding and deleting worklog entries, Jira first, local cache second."""

from datetime import datetime

from clients import JiraClient, NotFoundError
from duration import expand_durations
from models import Issue, WorklogEntry
from store import LocalStoreError, WorklogStore


class OwnershipError(Exception):
    """Refusing to touch somebody else's worklog entry."""


class UnknownEntryError(Exception):
    pass


class WorklogService:
    """Keeps Jira and the local store in step for single-entry operations.

    Nothing is written locally unless Jira accepted the change first, and
    failed remote calls are never retried here: a retry after a timeout
    could log the same time twice.
    """

    def __init__(self, client: JiraClient, store: WorklogStore):
        self.client = client
        self.store = store
        self._issues: dict[str, Issue] = {}

    def _issue(self, issue_key: str) -> Issue:
        if issue_key not in self._issues:
            self._issues[issue_key] = self.client.get_issue_summary(issue_key)
        return self._issues[issue_key]

    def add(
        self,
        issue_key: str,
        durations: list[str],
        started: datetime | None = None,
        comment: str | None = None,
        now: datetime | None = None,
    ) -> list[WorklogEntry]:
        """Add one entry per duration expression.

        Every expression is parsed before Jira is contacted. If Jira rejects
        one entry of a batch, the entries accepted before it stay recorded.
        """
        now = now or datetime.now().astimezone()
        planned = expand_durations(durations, now, started)

        issue_key = issue_key.upper()
        added = []
        for plan in planned:
            added.append(self.submit(issue_key, plan.started, plan.duration_seconds, comment))
        return added

    def submit(
        self, issue_key: str, started: datetime, duration_seconds: int, comment: str | None = None
    ) -> WorklogEntry:
        """Create one entry in Jira and mirror it locally."""
        entry = self.create_remote(issue_key, started, duration_seconds, comment)
        self.mirror(entry)
        return entry

    def create_remote(
        self, issue_key: str, started: datetime, duration_seconds: int, comment: str | None = None
    ) -> WorklogEntry:
        """Create one entry in Jira only. Once this returns, the time is logged."""
        issue = self._issue(issue_key.upper())
        return self.client.create_worklog(issue.key, started, duration_seconds, comment)

    def mirror(self, entry: WorklogEntry) -> None:
        """Copy an entry Jira accepted into the local store."""
        try:
            self.store.record_entry(self._issue(entry.issue_key), entry)
        except LocalStoreError as e:
            raise LocalStoreError(
                f"{e}. Worklog {entry.entry_id} was added in Jira; "
                f"run 'sync -i {entry.issue_key}' to update the local copy"
            ) from e

    def delete(self, entry_id: int, issue_key: str | None = None) -> WorklogEntry | None:
        """Delete an entry in Jira, then locally.

        Returns the deleted entry, or None when Jira no longer had it (the
        stale local copy is removed all the same).
        """
        local = self.store.get_entry(entry_id)
        if issue_key is None:
            if local is None:
                raise UnknownEntryError(
                    f"Worklog {entry_id} is not in the local database; give the issue key with -i"
                )
            issue_key = local.issue_key
        issue_key = issue_key.upper()

        my_account_id = self.client.get_my_account_id()
        try:
            remote = self.client.get_worklog(issue_key, entry_id)
        except NotFoundError:
            self.store.delete_entry(entry_id)
            return None
        if remote.author != my_account_id:
            raise OwnershipError(f"Worklog {entry_id} on {issue_key} was not written by you")

        if not self.client.delete_worklog(issue_key, entry_id):
            self.store.delete_entry(entry_id)
            return None

        self.store.delete_entry(entry_id)
        return remote

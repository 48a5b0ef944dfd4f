"""Pull worklogs from Jira into the local store.

Jira is always right: for every issue key, the worklogs fetched for the
sync window replace what the store held for that window. Issues are
fetched concurrently from a small thread pool; the store is only written
from the event loop, one issue at a time, each issue in one transaction.
"""

import asyncio
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, time, timedelta

from clients import ApiError, AuthenticationError, JiraClient
from models import Issue, SyncReport, WorklogEntry
from store import WorklogStore
from utils import retry_async

DEFAULT_SYNC_DAYS = 30

# Keys per "key in (...)" summary search
SUMMARY_BATCH_SIZE = 50


class PartialSyncFailure(Exception):
    """Some issue keys could not be synchronised; the rest were."""

    def __init__(self, report: SyncReport):
        failed = ", ".join(sorted(report.failed))
        super().__init__(f"Sync failed for {failed}")
        self.report = report


def default_since(now: datetime | None = None) -> datetime:
    now = now or datetime.now().astimezone()
    return datetime.combine((now - timedelta(days=DEFAULT_SYNC_DAYS)).date(), time.min, tzinfo=now.tzinfo)


class SyncEngine:
    """Reconciles the local store with Jira for a set of issue keys."""

    def __init__(
        self,
        client: JiraClient,
        store: WorklogStore,
        max_workers: int = 4,
        max_attempts: int = 3,
        retry_delay: float = 1.0,
        debug: bool = False,
    ):
        self.client = client
        self.store = store
        self.max_workers = max_workers
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.debug = debug

    def resolve_issue_keys(
        self, issue_keys: set[str] | list[str] | None, projects: set[str] | list[str] | None = None
    ) -> list[str]:
        """Keys given by the user plus the issues of the given projects.

        With neither, the keys already in the store.
        """
        keys = {key.upper() for key in issue_keys or []}
        if projects:
            jql = f"project in ({', '.join(sorted(p.upper() for p in projects))}) ORDER BY key"
            keys.update(issue.key for issue in self.client.search_issues(jql))
            if self.debug:
                print(f"    [DEBUG] {jql}: {len(keys)} issue keys")
        elif not keys:
            return self.store.distinct_issue_keys()
        return sorted(keys)

    def fetch_summaries(self, issue_keys: list[str]) -> dict[str, Issue] | None:
        """Issue metadata for many keys in a few searches.

        Returns None when a search is refused, for example because one of
        the keys does not exist; the caller then asks issue by issue.
        """
        summaries: dict[str, Issue] = {}
        for i in range(0, len(issue_keys), SUMMARY_BATCH_SIZE):
            batch = issue_keys[i:i + SUMMARY_BATCH_SIZE]
            try:
                issues = self.client.get_issue_summaries(batch)
            except AuthenticationError:
                raise
            except ApiError as e:
                print(f"    [!] Issue search failed ({e}), looking up issues one by one")
                return None
            summaries.update((issue.key, issue) for issue in issues)
        return summaries

    def fetch_issue(
        self, issue_key: str, since: date | datetime, issue: Issue | None = None
    ) -> tuple[Issue, list[WorklogEntry]]:
        """Issue metadata (unless already known) and every worklog page since the given time."""
        if issue is None:
            issue = self.client.get_issue_summary(issue_key)

        entries: list[WorklogEntry] = []
        start_at: int | None = 0
        while start_at is not None:
            page, start_at = self.client.get_worklogs(issue.key, since, start_at)
            entries.extend(page)
            if self.debug:
                print(f"    [DEBUG] {issue.key}: {len(entries)} worklogs so far")
        return issue, entries

    def sync(
        self,
        issue_keys: set[str] | list[str] | None,
        since: date | datetime | None = None,
        current_user_only: bool = True,
        projects: set[str] | list[str] | None = None,
    ) -> SyncReport:
        """Synchronise the given keys (or the stored ones) from since onwards.

        Failures of single issues are collected in the report, including
        keys the issue search did not return. An AuthenticationError stops
        the whole sync and is raised.
        """
        since = since or default_since()
        keys = self.resolve_issue_keys(issue_keys, projects)
        report = SyncReport()
        if not keys:
            return report

        author = self.client.get_my_account_id() if current_user_only else None
        summaries = self.fetch_summaries(keys)
        if summaries is not None:
            for key in keys:
                if key not in summaries:
                    report.failed[key] = f"Issue {key} does not exist or is not visible to you"
            keys = [key for key in keys if key in summaries]

        asyncio.run(self._sync_all(keys, since, author, report, summaries or {}))
        return report

    async def _sync_all(
        self,
        keys: list[str],
        since: date | datetime,
        author: str | None,
        report: SyncReport,
        summaries: dict[str, Issue],
    ) -> None:
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            tasks = [
                asyncio.ensure_future(self._sync_one(executor, key, since, author, report, summaries.get(key)))
                for key in keys
            ]
            try:
                await asyncio.gather(*tasks)
            except Exception:
                # Rejected credentials or a broken local store
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise

    async def _sync_one(
        self,
        executor: ThreadPoolExecutor,
        issue_key: str,
        since: date | datetime,
        author: str | None,
        report: SyncReport,
        known_issue: Issue | None,
    ) -> None:
        loop = asyncio.get_running_loop()

        def on_retry(attempt: int, e: Exception) -> None:
            print(f"    [!] {issue_key}: {e} - retry {attempt}...")

        try:
            issue, entries = await retry_async(
                lambda: loop.run_in_executor(executor, self.fetch_issue, issue_key, since, known_issue),
                max_attempts=self.max_attempts,
                delay=self.retry_delay,
                should_retry=lambda e: isinstance(e, ApiError) and e.retryable,
                on_retry=on_retry,
            )
        except AuthenticationError:
            raise
        except ApiError as e:
            report.failed[issue_key] = str(e)
            return

        if author is not None:
            entries = [entry for entry in entries if entry.author == author]

        # Runs on the event loop thread: one writer, one issue at a time
        report.synced[issue.key] = self.store.replace_issue_window(issue, entries, since, author=author)
        if self.debug:
            print(f"    [DEBUG] {issue.key}: stored {len(entries)} worklogs")

"""API client for the Jira worklog REST endpoints."""

from datetime import date, datetime, time

import requests

from models import Component, Issue, WorklogEntry

API_PATH = "/rest/api/3"
WORKLOG_PAGE_SIZE = 1000
JIRA_TIMESTAMP = "%Y-%m-%dT%H:%M:%S.%f%z"


class ApiError(Exception):
    """User-friendly API error.

    retryable is set for failures that may go away by themselves:
    network problems, timeouts, rate limiting and server errors.
    """

    def __init__(self, message: str, status_code: int | None = None, retryable: bool = False):
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


class AuthenticationError(ApiError):
    """Credentials rejected; nothing else will work either.

    A 403 is not one of these: it usually concerns a single issue.
    """


class NotFoundError(ApiError):
    pass


def _handle_api_error(response: requests.Response, service: str) -> str:
    """Convert HTTP errors to user-friendly messages."""
    status = response.status_code

    messages = {
        400: f"{service}: Bad request. {_error_details(response)}",
        401: f"{service}: Authentication failed. Check your API token!",
        403: f"{service}: Access denied. Check your permissions or API token!",
        404: f"{service}: Resource not found. Check the issue key and the URL in config.json!",
        429: f"{service}: Too many requests. Wait a moment and try again.",
        500: f"{service}: Server error. The service may be temporarily unavailable.",
        502: f"{service}: Bad gateway. The service may be temporarily unavailable.",
        503: f"{service}: Service unavailable. Try again later.",
    }

    return messages.get(status, f"{service}: HTTP {status} - {response.reason}")


def _error_details(response: requests.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:200]
    parts = list(data.get("errorMessages", []))
    parts.extend(f"{k}: {v}" for k, v in data.get("errors", {}).items())
    return " ".join(parts)


def _raise_for_response(response: requests.Response) -> None:
    if response.ok:
        return
    message = _handle_api_error(response, "Jira")
    status = response.status_code
    if status == 401:
        raise AuthenticationError(message, status)
    if status == 404:
        raise NotFoundError(message, status)
    raise ApiError(message, status, retryable=status == 429 or status >= 500)


def adf_to_text(node: dict | None) -> str | None:
    """Flatten an Atlassian Document Format comment to plain text."""
    if not node:
        return None
    if isinstance(node, str):
        return node

    paragraphs = []
    for block in node.get("content", []):
        texts = [child.get("text", "") for child in block.get("content", []) if child.get("type") == "text"]
        paragraphs.append("".join(texts))
    return "\n".join(paragraphs)


def text_to_adf(text: str) -> dict:
    """Wrap plain text in a single ADF paragraph."""
    return {
        "type": "doc",
        "version": 1,
        "content": [{"type": "paragraph", "content": [{"type": "text", "text": text}]}],
    }


def format_jira_timestamp(started: datetime) -> str:
    """Jira wants milliseconds and a +hhmm offset: 2024-11-04T08:00:00.000+0100"""
    return started.strftime("%Y-%m-%dT%H:%M:%S.000%z")


def worklog_from_json(data: dict, issue_key: str) -> WorklogEntry:
    """Build a WorklogEntry from a Jira worklog resource."""
    return WorklogEntry(
        entry_id=int(data["id"]),
        issue_key=issue_key,
        author=data.get("author", {}).get("accountId", ""),
        started=datetime.strptime(data["started"], JIRA_TIMESTAMP),
        duration_seconds=int(data["timeSpentSeconds"]),
        comment=adf_to_text(data.get("comment")),
    )


def issue_from_json(data: dict) -> Issue:
    """Build an Issue (with components) from a Jira issue resource."""
    fields = data.get("fields", {})
    return Issue(
        key=data["key"],
        numeric_id=int(data["id"]),
        summary=fields.get("summary", ""),
        components=[
            Component(component_id=int(c["id"]), name=c.get("name", ""))
            for c in fields.get("components", [])
        ],
    )


class JiraClient:
    """Client for Jira REST API."""

    def __init__(self, config: dict):
        self.base_url = config["jira"]["base_url"].rstrip("/")
        self.email = config["jira"]["user_email"]
        self.token = config["jira"]["api_token"]
        self.timeout = config["jira"].get("timeout", 30)

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self.base_url}{API_PATH}{path}"
        headers = {"Accept": "application/json"}
        if "json" in kwargs:
            headers["Content-Type"] = "application/json"
        try:
            r = requests.request(
                method,
                url,
                auth=(self.email, self.token),
                headers=headers,
                timeout=self.timeout,
                **kwargs,
            )
        except requests.exceptions.ConnectionError:
            raise ApiError(f"Jira: Cannot connect to {self.base_url}. Check your network!", retryable=True)
        except requests.exceptions.Timeout:
            raise ApiError("Jira: Connection timed out. The server may be slow.", retryable=True)
        return r

    def get_my_account_id(self) -> str:
        """Get the current user's Jira account ID."""
        r = self._request("GET", "/myself")
        _raise_for_response(r)
        return r.json()["accountId"]

    def get_myself(self) -> dict:
        r = self._request("GET", "/myself")
        _raise_for_response(r)
        return r.json()

    def get_issue_summary(self, issue_key: str) -> Issue:
        """Fetch key, summary and components of one issue."""
        r = self._request("GET", f"/issue/{issue_key}", params={"fields": "summary,components"})
        if r.status_code == 404:
            raise NotFoundError(f"Jira: Issue {issue_key} does not exist or is not visible to you.", 404)
        _raise_for_response(r)
        return issue_from_json(r.json())

    def search_issues(self, jql: str) -> list[Issue]:
        """Run a JQL search, following pagination."""
        issues = []
        payload = {"jql": jql, "maxResults": 100, "fields": ["summary", "components"]}

        while True:
            r = self._request("POST", "/search/jql", json=payload)
            _raise_for_response(r)
            data = r.json()

            issues.extend(issue_from_json(issue) for issue in data.get("issues", []))

            # Handle pagination
            token = data.get("nextPageToken")
            if not token or data.get("isLast", True):
                break
            payload = {**payload, "nextPageToken": token}

        return issues

    def get_issue_summaries(self, issue_keys: list[str]) -> list[Issue]:
        """Fetch summaries for several issues in one search."""
        if not issue_keys:
            return []
        return self.search_issues(f"key in ({', '.join(issue_keys)}) ORDER BY key")

    def get_worklogs(
        self, issue_key: str, since: date | datetime, start_at: int = 0
    ) -> tuple[list[WorklogEntry], int | None]:
        """Fetch one page of worklogs started after since.

        Returns:
            The entries of the page and the start offset of the next page,
            or None when this was the last page.
        """
        if not isinstance(since, datetime):
            since = datetime.combine(since, time.min).astimezone()
        params = {
            "startAt": start_at,
            "maxResults": WORKLOG_PAGE_SIZE,
            "startedAfter": int(since.timestamp() * 1000),
        }
        r = self._request("GET", f"/issue/{issue_key}/worklog", params=params)
        if r.status_code == 404:
            raise NotFoundError(f"Jira: Issue {issue_key} does not exist or is not visible to you.", 404)
        _raise_for_response(r)
        data = r.json()

        entries = [worklog_from_json(wl, issue_key) for wl in data.get("worklogs", [])]
        next_start = data.get("startAt", start_at) + len(entries)
        if not entries or next_start >= data.get("total", 0):
            return entries, None
        return entries, next_start

    def get_worklog(self, issue_key: str, entry_id: int) -> WorklogEntry:
        r = self._request("GET", f"/issue/{issue_key}/worklog/{entry_id}")
        _raise_for_response(r)
        return worklog_from_json(r.json(), issue_key)

    def create_worklog(
        self, issue_key: str, started: datetime, duration_seconds: int, comment: str | None = None
    ) -> WorklogEntry:
        """Create a worklog; Jira assigns the entry id."""
        payload = {
            "timeSpentSeconds": duration_seconds,
            "started": format_jira_timestamp(started),
        }
        if comment:
            payload["comment"] = text_to_adf(comment)

        r = self._request("POST", f"/issue/{issue_key}/worklog", json=payload)
        _raise_for_response(r)
        return worklog_from_json(r.json(), issue_key)

    def delete_worklog(self, issue_key: str, entry_id: int) -> bool:
        """Delete a worklog. Returns False if Jira does not know it."""
        r = self._request("DELETE", f"/issue/{issue_key}/worklog/{entry_id}")
        if r.status_code == 404:
            return False
        _raise_for_response(r)
        return True

"""Tests for the Jira REST client, with requests replaced by canned responses."""

from datetime import datetime, timedelta, timezone

import pytest
import requests

import clients
from clients import (
    ApiError,
    AuthenticationError,
    JiraClient,
    NotFoundError,
    adf_to_text,
    format_jira_timestamp,
    text_to_adf,
)

CET = timezone(timedelta(hours=1))
CONFIG = {
    "jira": {
        "base_url": "https://example.atlassian.net/",
        "user_email": "me@example.com",
        "api_token": "secret",
    }
}


class FakeResponse:
    def __init__(self, status_code: int = 200, data=None, reason: str = "OK"):
        self.status_code = status_code
        self._data = data
        self.reason = reason
        self.text = "" if data is None else str(data)

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self):
        if self._data is None:
            raise ValueError("No JSON")
        return self._data


class FakeRequests:
    """Records calls and replays responses in order."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def __call__(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def fake(monkeypatch):
    def install(*responses):
        fake_requests = FakeRequests(*responses)
        monkeypatch.setattr(clients.requests, "request", fake_requests)
        return fake_requests
    return install


def worklog_json(entry_id, started="2024-11-04T08:00:00.000+0100", seconds=3600, author="account-me"):
    return {
        "id": str(entry_id),
        "author": {"accountId": author},
        "started": started,
        "timeSpentSeconds": seconds,
        "comment": text_to_adf("Review"),
    }


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class TestHelpers:

    def test_format_jira_timestamp(self):
        assert format_jira_timestamp(datetime(2024, 11, 4, 8, 0, tzinfo=CET)) == "2024-11-04T08:00:00.000+0100"

    def test_adf_round_trip(self):
        assert adf_to_text(text_to_adf("Code review")) == "Code review"

    def test_adf_paragraphs(self):
        doc = {
            "type": "doc",
            "content": [
                {"type": "paragraph", "content": [{"type": "text", "text": "one "}, {"type": "text", "text": "line"}]},
                {"type": "paragraph", "content": [{"type": "text", "text": "two"}]},
            ],
        }
        assert adf_to_text(doc) == "one line\ntwo"

    def test_adf_empty(self):
        assert adf_to_text(None) is None


# ---------------------------------------------------------------------------
# Requests and errors
# ---------------------------------------------------------------------------

class TestRequests:

    def test_auth_and_url(self, fake):
        calls = fake(FakeResponse(data={"accountId": "account-me"}))
        assert JiraClient(CONFIG).get_my_account_id() == "account-me"

        method, url, kwargs = calls.calls[0]
        assert method == "GET"
        assert url == "https://example.atlassian.net/rest/api/3/myself"
        assert kwargs["auth"] == ("me@example.com", "secret")
        assert kwargs["timeout"] == 30

    def test_authentication_error(self, fake):
        fake(FakeResponse(401, reason="Unauthorized"))
        with pytest.raises(AuthenticationError):
            JiraClient(CONFIG).get_myself()

    def test_forbidden_concerns_one_issue(self, fake):
        fake(FakeResponse(403, reason="Forbidden"))
        with pytest.raises(ApiError) as exc:
            JiraClient(CONFIG).get_worklogs("TIME-94", datetime(2024, 11, 1, tzinfo=CET))
        assert not isinstance(exc.value, AuthenticationError)
        assert exc.value.status_code == 403
        assert not exc.value.retryable

    @pytest.mark.parametrize("status, retryable", [(429, True), (500, True), (503, True), (400, False), (409, False)])
    def test_retryable(self, fake, status, retryable):
        fake(FakeResponse(status, data={"errorMessages": ["nope"]}, reason="Error"))
        with pytest.raises(ApiError) as exc:
            JiraClient(CONFIG).get_myself()
        assert exc.value.retryable is retryable
        assert exc.value.status_code == status

    def test_bad_request_details(self, fake):
        fake(FakeResponse(400, data={"errorMessages": [], "errors": {"started": "invalid"}}))
        with pytest.raises(ApiError, match="started: invalid"):
            JiraClient(CONFIG).get_myself()

    @pytest.mark.parametrize(
        "error",
        [requests.exceptions.ConnectionError("down"), requests.exceptions.Timeout("slow")],
    )
    def test_network_errors_are_retryable(self, fake, error):
        fake(error)
        with pytest.raises(ApiError) as exc:
            JiraClient(CONFIG).get_myself()
        assert exc.value.retryable


# ---------------------------------------------------------------------------
# Issues
# ---------------------------------------------------------------------------

class TestIssues:

    def test_get_issue_summary(self, fake):
        fake(FakeResponse(data={
            "id": "10094",
            "key": "TIME-94",
            "fields": {"summary": "Time tracking", "components": [{"id": "1", "name": "Backend"}]},
        }))
        issue = JiraClient(CONFIG).get_issue_summary("TIME-94")
        assert issue.key == "TIME-94"
        assert issue.numeric_id == 10094
        assert [c.name for c in issue.components] == ["Backend"]

    def test_unknown_issue(self, fake):
        fake(FakeResponse(404))
        with pytest.raises(NotFoundError, match="TIME-999"):
            JiraClient(CONFIG).get_issue_summary("TIME-999")

    def test_search_follows_page_token(self, fake):
        calls = fake(
            FakeResponse(data={
                "issues": [{"id": "1", "key": "TIME-1", "fields": {"summary": "a"}}],
                "nextPageToken": "abc",
                "isLast": False,
            }),
            FakeResponse(data={
                "issues": [{"id": "2", "key": "TIME-2", "fields": {"summary": "b"}}],
                "isLast": True,
            }),
        )
        issues = JiraClient(CONFIG).search_issues("project = TIME")
        assert [i.key for i in issues] == ["TIME-1", "TIME-2"]
        assert calls.calls[1][2]["json"]["nextPageToken"] == "abc"

    def test_get_issue_summaries(self, fake):
        calls = fake(FakeResponse(data={
            "issues": [
                {"id": "147", "key": "TIME-147", "fields": {"summary": "Meetings"}},
                {"id": "94", "key": "TIME-94", "fields": {"summary": "Time tracking"}},
            ],
        }))
        issues = JiraClient(CONFIG).get_issue_summaries(["TIME-94", "TIME-147"])
        assert [i.summary for i in issues] == ["Meetings", "Time tracking"]
        assert calls.calls[0][2]["json"]["jql"] == "key in (TIME-94, TIME-147) ORDER BY key"

    def test_get_issue_summaries_without_keys(self, fake):
        calls = fake()
        assert JiraClient(CONFIG).get_issue_summaries([]) == []
        assert calls.calls == []


# ---------------------------------------------------------------------------
# Worklogs
# ---------------------------------------------------------------------------

class TestWorklogs:

    def test_get_worklogs_pages(self, fake):
        since = datetime(2024, 11, 1, 0, 0, tzinfo=timezone.utc)
        calls = fake(FakeResponse(data={"startAt": 0, "total": 3, "worklogs": [worklog_json(1), worklog_json(2)]}))

        entries, next_start = JiraClient(CONFIG).get_worklogs("TIME-94", since)

        assert [e.entry_id for e in entries] == [1, 2]
        assert next_start == 2
        params = calls.calls[0][2]["params"]
        assert params["startedAfter"] == int(since.timestamp() * 1000)
        assert params["startAt"] == 0

    def test_last_page(self, fake):
        fake(FakeResponse(data={"startAt": 2, "total": 3, "worklogs": [worklog_json(3)]}))
        entries, next_start = JiraClient(CONFIG).get_worklogs("TIME-94", datetime(2024, 11, 1, tzinfo=CET), 2)
        assert len(entries) == 1
        assert next_start is None

    def test_worklog_fields(self, fake):
        fake(FakeResponse(data={"startAt": 0, "total": 1, "worklogs": [worklog_json(7, seconds=27000)]}))
        (entry,), _ = JiraClient(CONFIG).get_worklogs("TIME-94", datetime(2024, 11, 1, tzinfo=CET))
        assert entry.issue_key == "TIME-94"
        assert entry.author == "account-me"
        assert entry.started == datetime(2024, 11, 4, 8, 0, tzinfo=CET)
        assert entry.duration_seconds == 27000
        assert entry.comment == "Review"

    def test_create_worklog(self, fake):
        calls = fake(FakeResponse(201, data=worklog_json(42)))
        entry = JiraClient(CONFIG).create_worklog("TIME-94", datetime(2024, 11, 4, 8, 0, tzinfo=CET), 3600, "Review")

        assert entry.entry_id == 42
        method, url, kwargs = calls.calls[0]
        assert method == "POST"
        assert url.endswith("/issue/TIME-94/worklog")
        assert kwargs["json"]["started"] == "2024-11-04T08:00:00.000+0100"
        assert kwargs["json"]["timeSpentSeconds"] == 3600
        assert adf_to_text(kwargs["json"]["comment"]) == "Review"

    def test_create_worklog_without_comment(self, fake):
        calls = fake(FakeResponse(201, data=worklog_json(42)))
        JiraClient(CONFIG).create_worklog("TIME-94", datetime(2024, 11, 4, 8, 0, tzinfo=CET), 3600)
        assert "comment" not in calls.calls[0][2]["json"]

    def test_delete_worklog(self, fake):
        fake(FakeResponse(204), FakeResponse(404))
        client = JiraClient(CONFIG)
        assert client.delete_worklog("TIME-94", 42) is True
        assert client.delete_worklog("TIME-94", 42) is False

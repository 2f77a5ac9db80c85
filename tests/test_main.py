import json

import pytest

import main
import processor
from config import config
from errors import IssueClientError
from feeds import PostRecord
from issues import Issue


class FakeClient:
    issues = []
    updates = {}
    fail_listing = False

    def __init__(self, token, repository, session, api_url=None, user_agent=None):
        self.repository = repository

    async def list_issues(self, state="open", labels=None):
        if FakeClient.fail_listing:
            raise IssueClientError("HTTP 401", status=401)
        return list(FakeClient.issues)

    async def update_issue_body(self, number, body):
        FakeClient.updates[number] = body


@pytest.fixture
def fake_github(monkeypatch):
    monkeypatch.setenv("DISABLE_TELEMETRY", "true")
    monkeypatch.setattr(main, "GitHubIssueClient", FakeClient)
    monkeypatch.setattr(config, "GITHUB_TOKEN", "token")
    monkeypatch.setattr(config, "GITHUB_REPOSITORY", "octo/feeds")

    async def fake_resolve_feed(session, url, settings, retry_helper=None):
        return [PostRecord("Post", f"{url}#1", "")]

    monkeypatch.setattr(processor, "resolve_feed", fake_resolve_feed)
    FakeClient.issues = [
        Issue(1, "Blog", '```json\n{"feed": "https://example.com/feed"}\n```'),
        Issue(2, "Other", "no directive"),
        Issue(3, "Blog 2", '```json\n{"feed": "https://example.org/feed"}\n```'),
    ]
    FakeClient.updates = {}
    FakeClient.fail_listing = False
    return FakeClient


def test_run_updates_issues(fake_github):
    assert main.main(["run"]) == main.EXIT_OK

    assert sorted(fake_github.updates) == [1, 3]
    assert '"link": "https://example.com/feed#1"' in fake_github.updates[1]


def test_issue_filter(fake_github):
    assert main.main(["run", "--issue", "3"]) == main.EXIT_OK

    assert sorted(fake_github.updates) == [3]


def test_dry_run_updates_nothing(fake_github):
    assert main.main(["--dry-run"]) == main.EXIT_OK

    assert fake_github.updates == {}


def test_listing_failure_is_fatal(fake_github):
    fake_github.fail_listing = True

    assert main.main(["run"]) == main.EXIT_STARTUP_FAILURE


def test_missing_repository_is_fatal(monkeypatch):
    monkeypatch.setenv("DISABLE_TELEMETRY", "true")
    monkeypatch.setattr(config, "GITHUB_TOKEN", "token")
    monkeypatch.setattr(config, "GITHUB_REPOSITORY", None)

    assert main.main(["run"]) == main.EXIT_STARTUP_FAILURE


def test_settings_mode_prints_summary(capsys):
    assert main.main(["settings"]) == main.EXIT_OK

    summary = json.loads(capsys.readouterr().out)
    assert summary["concurrency_limit"] == config.CONCURRENCY_LIMIT
    assert "has_github_token" in summary

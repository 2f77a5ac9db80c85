import pytest

from errors import IssueClientError
from issues import PER_PAGE, GitHubIssueClient, Issue


class FakeResponse:
    def __init__(self, status=200, payload=None, text=""):
        self.status = status
        self.payload = payload
        self._text = text

    async def json(self):
        return self.payload

    async def text(self):
        return self._text

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []

    def request(self, method, url, **kwargs):
        self.requests.append((method, url, kwargs))
        return self.responses.pop(0)


def issue_payload(number, body="", pull_request=False):
    item = {"number": number, "title": f"Issue {number}", "body": body}
    if pull_request:
        item["pull_request"] = {"url": "https://api.github.com/pulls/1"}
    return item


@pytest.mark.asyncio
async def test_list_issues_follows_pagination_and_skips_pull_requests():
    first_page = [issue_payload(n, pull_request=(n == 5)) for n in range(1, PER_PAGE + 1)]
    second_page = [issue_payload(n) for n in range(PER_PAGE + 1, PER_PAGE + 4)]
    session = FakeSession([FakeResponse(payload=first_page), FakeResponse(payload=second_page)])
    client = GitHubIssueClient("token", "octo/feeds", session)

    issues = await client.list_issues(labels=["feed", "blog"])

    assert len(issues) == PER_PAGE + 2
    assert 5 not in {issue.number for issue in issues}
    assert issues[0] == Issue(number=1, title="Issue 1", body="")
    pages = [kwargs["params"]["page"] for _, _, kwargs in session.requests]
    assert pages == ["1", "2"]
    method, url, kwargs = session.requests[0]
    assert method == "GET"
    assert url == "https://api.github.com/repos/octo/feeds/issues"
    assert kwargs["params"]["labels"] == "feed,blog"
    assert kwargs["params"]["state"] == "open"
    assert kwargs["headers"]["Authorization"] == "Bearer token"


@pytest.mark.asyncio
async def test_empty_repository():
    session = FakeSession([FakeResponse(payload=[])])
    client = GitHubIssueClient("token", "octo/feeds", session)

    assert await client.list_issues() == []
    assert len(session.requests) == 1


@pytest.mark.asyncio
async def test_update_issue_body_patches_issue():
    session = FakeSession([FakeResponse(payload={"number": 7})])
    client = GitHubIssueClient("token", "octo/feeds", session, api_url="https://ghe.example.com/api/v3/")

    await client.update_issue_body(7, "new body")

    method, url, kwargs = session.requests[0]
    assert method == "PATCH"
    assert url == "https://ghe.example.com/api/v3/repos/octo/feeds/issues/7"
    assert kwargs["json"] == {"body": "new body"}


@pytest.mark.asyncio
async def test_http_errors_raise_client_error():
    session = FakeSession([FakeResponse(status=404, text='{"message": "Not Found"}')])
    client = GitHubIssueClient("token", "octo/missing", session)

    with pytest.raises(IssueClientError) as excinfo:
        await client.list_issues()

    assert excinfo.value.status == 404
    assert "Not Found" in excinfo.value.details


@pytest.mark.asyncio
async def test_unexpected_payload_raises():
    session = FakeSession([FakeResponse(payload={"message": "oops"})])
    client = GitHubIssueClient("token", "octo/feeds", session)

    with pytest.raises(IssueClientError):
        await client.list_issues()


@pytest.mark.parametrize("repository", ["", "octo", "octo/", "/feeds", "a/b/c", None])
def test_invalid_repository(repository):
    with pytest.raises(ValueError):
        GitHubIssueClient("token", repository, session=None)


def test_missing_token():
    with pytest.raises(ValueError):
        GitHubIssueClient("", "octo/feeds", session=None)

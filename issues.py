#!/usr/bin/env python3
"""
GitHub issues client.

Lists the issues of a repository and rewrites issue bodies through the REST
API. Only aiohttp is needed; the caller owns the ClientSession.
"""

from asyncio import TimeoutError
from typing import Any, Dict, List, NamedTuple, Optional

from aiohttp import ClientError, ClientSession, ClientTimeout

from config import DEFAULT_USER_AGENT, get_logger
from errors import IssueClientError
from telemetry import trace_span
from utils import truncate_string

logger = get_logger("issues")

PER_PAGE = 100
DEFAULT_API_URL = "https://api.github.com"


class Issue(NamedTuple):
    number: int
    title: str = ""
    body: Optional[str] = None


class GitHubIssueClient:
    """Minimal async client for the repository issues endpoints."""

    def __init__(
        self,
        token: str,
        repository: str,
        session: ClientSession,
        api_url: str = DEFAULT_API_URL,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: float = 30.0,
    ) -> None:
        """Create a client bound to one repository.

        Args:
            token: Token with read/write access to issues
            repository: Repository in ``owner/name`` form
            session: Shared aiohttp session
            api_url: REST API root (GitHub Enterprise uses a different host)
            user_agent: User-Agent header value
            timeout: Total timeout in seconds for each API call
        """
        if not token:
            raise ValueError("A GitHub token is required. Set GITHUB_TOKEN.")
        owner, _, name = (repository or "").strip().partition("/")
        if not owner or not name or "/" in name:
            raise ValueError(f"Repository must look like 'owner/name' (got {repository!r})")

        self.owner = owner
        self.repo = name
        self.session = session
        self.api_url = api_url.rstrip("/")
        self.timeout = ClientTimeout(total=timeout)
        self._headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": user_agent,
        }

    @property
    def repository(self) -> str:
        return f"{self.owner}/{self.repo}"

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        url = f"{self.api_url}{path}"
        try:
            async with self.session.request(
                method,
                url,
                headers=self._headers,
                timeout=self.timeout,
                **kwargs,
            ) as response:
                if response.status >= 400:
                    detail = await response.text()
                    raise IssueClientError(
                        f"GitHub API {method} {path} failed: HTTP {response.status}",
                        status=response.status,
                        details=truncate_string(detail, 500),
                    )
                return await response.json()
        except TimeoutError as e:
            raise IssueClientError(f"GitHub API {method} {path} timed out") from e
        except ClientError as e:
            raise IssueClientError(f"GitHub API {method} {path} failed: {e}") from e

    @trace_span(
        "list_issues",
        tracer_name="issues",
        attr_from_args=lambda self, state="open", labels=None: {"issues.state": state},
    )
    async def list_issues(self, state: str = "open", labels: Optional[List[str]] = None) -> List[Issue]:
        """Return every issue of the repository, following pagination.

        Pull requests, which the issues endpoint also returns, are skipped.
        """
        issues: List[Issue] = []
        page = 1
        while True:
            params: Dict[str, Any] = {"state": state, "per_page": str(PER_PAGE), "page": str(page)}
            if labels:
                params["labels"] = ",".join(labels)
            batch = await self._request("GET", f"/repos/{self.owner}/{self.repo}/issues", params=params)
            if not isinstance(batch, list):
                raise IssueClientError(f"Unexpected issues payload type: {type(batch).__name__}")

            for item in batch:
                if item.get("pull_request"):
                    continue
                issues.append(Issue(
                    number=int(item["number"]),
                    title=item.get("title") or "",
                    body=item.get("body"),
                ))

            if len(batch) < PER_PAGE:
                break
            page += 1

        logger.info(f"Listed {len(issues)} issues from {self.repository} (state={state})")
        return issues

    @trace_span(
        "update_issue_body",
        tracer_name="issues",
        attr_from_args=lambda self, number, body: {"issue.number": int(number)},
    )
    async def update_issue_body(self, number: int, body: str) -> None:
        """Replace the body of issue ``number``."""
        await self._request(
            "PATCH",
            f"/repos/{self.owner}/{self.repo}/issues/{number}",
            json={"body": body},
        )
        logger.info(f"Updated issue #{number}")

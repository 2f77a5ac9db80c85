#!/usr/bin/env python3
"""
Per-issue processing.

For each issue the processor locates the embedded directive, resolves the feed
it names, and writes the updated body back through the issues client. Issues
are handled concurrently through a bounded ConcurrencyPool; one failing issue
never affects the others.
"""

from asyncio import gather
from functools import partial
from typing import Dict, Iterable, NamedTuple, Optional

from aiohttp import ClientSession

from config import WorkerSettings, get_logger
from directives import Directive, find_directive, parse_directive, replace_directive
from errors import DirectiveMalformed, DirectiveMissing
from feeds import resolve_feed
from issues import GitHubIssueClient, Issue
from telemetry import trace_span
from utils import ConcurrencyPool, RetryHelper

logger = get_logger("processor")

UPDATED = "updated"
SKIPPED = "skipped"
FAILED = "failed"


class ProcessResult(NamedTuple):
    number: int
    directive: Directive
    body: str


class RunStats:
    """Counters for one run; partial success is still a successful run."""

    def __init__(self) -> None:
        self.updated = 0
        self.skipped = 0
        self.failed = 0

    @property
    def total(self) -> int:
        return self.updated + self.skipped + self.failed

    def record(self, outcome: str) -> None:
        setattr(self, outcome, getattr(self, outcome) + 1)

    def as_dict(self) -> Dict[str, int]:
        return {UPDATED: self.updated, SKIPPED: self.skipped, FAILED: self.failed}


class IssueProcessor:
    def __init__(
        self,
        settings: WorkerSettings,
        session: ClientSession,
        issue_client: Optional[GitHubIssueClient] = None,
        dry_run: bool = False,
        retry_helper: Optional[RetryHelper] = None,
    ) -> None:
        """Set up the processor.

        Args:
            settings: Immutable worker tunables
            session: Shared aiohttp session used for feed downloads
            issue_client: Client used to persist updated bodies (required unless dry_run)
            dry_run: Log the rewritten bodies instead of saving them
            retry_helper: Optional backoff policy for feed downloads
        """
        if issue_client is None and not dry_run:
            raise ValueError("An issue client is required unless running in dry-run mode")
        self.settings = settings
        self.session = session
        self.issue_client = issue_client
        self.dry_run = dry_run
        self.retry_helper = retry_helper

    @trace_span(
        "process_issue",
        tracer_name="processor",
        attr_from_args=lambda self, issue: {"issue.number": int(issue.number)},
    )
    async def process_issue(self, issue: Issue) -> Optional[ProcessResult]:
        """Build the rewritten body for ``issue``.

        Returns None when the issue must be left untouched: empty body, no
        directive, malformed directive, or a directive without a ``feed``.
        Unexpected errors propagate to the caller.
        """
        logger.info(f"Processing issue #{issue.number}")
        if not issue.body:
            logger.warning(f"Issue #{issue.number} has no body content, skipping")
            return None

        try:
            span = find_directive(issue.body)
            directive = parse_directive(span)
        except DirectiveMissing:
            logger.warning(f"No JSON directive found in issue #{issue.number}")
            return None
        except DirectiveMalformed as e:
            logger.warning(f"Malformed JSON directive in issue #{issue.number}: {e}")
            return None

        feed_url = directive.feed
        if not feed_url:
            logger.info(f"Directive in issue #{issue.number} has no feed, leaving it untouched")
            return None

        logger.info(f"Getting feed data for issue #{issue.number} from {feed_url}")
        directive.posts = await resolve_feed(self.session, feed_url, self.settings, self.retry_helper)

        return ProcessResult(
            number=issue.number,
            directive=directive,
            body=replace_directive(issue.body, span, directive),
        )

    async def _handle_issue(self, issue: Issue) -> str:
        """Pool task: process one issue and persist the result."""
        result = await self.process_issue(issue)
        if result is None:
            return SKIPPED
        if result.body == issue.body:
            logger.info(f"Issue #{issue.number} is already up to date")
            return SKIPPED
        if self.dry_run:
            logger.info(f"[dry-run] Would update issue #{issue.number} with {len(result.directive.posts)} posts")
            logger.debug(f"[dry-run] New body for issue #{issue.number}:\n{result.body}")
            return UPDATED
        await self.issue_client.update_issue_body(issue.number, result.body)
        return UPDATED

    async def process_all(self, issues: Iterable[Issue]) -> RunStats:
        """Process every issue with at most ``concurrency_limit`` in flight.

        All issues are submitted up front; the pool starts them in order.
        """
        issues = list(issues)
        pool = ConcurrencyPool(self.settings.concurrency_limit)
        stats = RunStats()

        outcomes = await gather(
            *(pool.add(partial(self._handle_issue, issue)) for issue in issues),
            return_exceptions=True,
        )

        for issue, outcome in zip(issues, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(
                    f"Error processing issue #{issue.number}: {outcome.__class__.__name__}: {outcome}",
                    exc_info=(type(outcome), outcome, outcome.__traceback__),
                )
                stats.record(FAILED)
            else:
                stats.record(outcome)

        logger.info(
            f"Processed {stats.total} issues: {stats.updated} updated, "
            f"{stats.skipped} skipped, {stats.failed} failed"
        )
        return stats

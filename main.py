#!/usr/bin/env python3
"""
Issue feed worker entry point.

Lists the issues of a repository, resolves the feed referenced by each issue's
JSON directive, and writes the latest posts back into the issue body.

Designed to run as a scheduled GitHub Actions step, but works from any shell
with GITHUB_TOKEN and GITHUB_REPOSITORY set.
"""

import argparse
import asyncio
import json
import sys
import time
from typing import List, Optional

from aiohttp import ClientError, ClientSession

from config import config, get_logger, WorkerSettings
from errors import IssueClientError
from issues import GitHubIssueClient
from processor import IssueProcessor, RunStats
from telemetry import init_telemetry, trace_span
from utils import format_duration

logger = get_logger("main")

EXIT_OK = 0
EXIT_STARTUP_FAILURE = 1


class IssueFeedWorker:
    """Runs one pass over the repository issues."""

    def __init__(
        self,
        settings: WorkerSettings,
        token: Optional[str],
        repository: Optional[str],
        api_url: str,
        dry_run: bool = False,
    ) -> None:
        self.settings = settings
        self.token = token
        self.repository = repository
        self.api_url = api_url
        self.dry_run = dry_run

    @trace_span(
        "worker.run",
        tracer_name="main",
        attr_from_args=lambda self, state="open", labels=None, only_numbers=None: {"issues.state": state},
    )
    async def run(
        self,
        state: str = "open",
        labels: Optional[List[str]] = None,
        only_numbers: Optional[List[int]] = None,
    ) -> Optional[RunStats]:
        """Process the repository once.

        Returns:
            Run statistics, or None when the issues could not be listed at all
        """
        logger.info(">> Start")
        start_time = time.time()
        async with ClientSession() as session:
            try:
                client = GitHubIssueClient(
                    self.token,
                    self.repository,
                    session,
                    api_url=self.api_url,
                    user_agent=self.settings.user_agent,
                )
                issues = await client.list_issues(state=state, labels=labels)
            except (IssueClientError, ClientError, ValueError) as e:
                logger.error(f"Error listing issues: {e}")
                return None

            if only_numbers:
                wanted = set(only_numbers)
                issues = [issue for issue in issues if issue.number in wanted]
                logger.info(f"Restricted run to {len(issues)} selected issues")

            processor = IssueProcessor(self.settings, session, issue_client=client, dry_run=self.dry_run)
            stats = await processor.process_all(issues)

        logger.info(f">> Done in {format_duration(time.time() - start_time)}")
        return stats


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Refresh feed posts embedded in GitHub issues')
    parser.add_argument('mode', nargs='?', default='run', choices=['run', 'settings'],
                        help='Operation mode (default: run)')
    parser.add_argument('--repo', type=str, default=None,
                        help='Repository as owner/name (defaults to GITHUB_REPOSITORY)')
    parser.add_argument('--state', choices=['open', 'closed', 'all'], default=None,
                        help='Issue state to scan (defaults to ISSUE_STATE or open)')
    parser.add_argument('--label', action='append', default=None,
                        help='Only scan issues with this label (repeatable)')
    parser.add_argument('--issue', type=int, action='append', default=None,
                        help='Only process this issue number (repeatable)')
    parser.add_argument('--dry-run', action='store_true',
                        help='Resolve feeds but do not update any issue')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point; returns the process exit status."""
    args = build_parser().parse_args(argv)

    if args.mode == 'settings':
        print(json.dumps(config.get_config_summary(), indent=2))
        return EXIT_OK

    init_telemetry("issue-feed-worker")
    worker = IssueFeedWorker(
        settings=config.worker_settings(),
        token=config.GITHUB_TOKEN,
        repository=args.repo or config.GITHUB_REPOSITORY,
        api_url=config.GITHUB_API_URL,
        dry_run=args.dry_run,
    )

    try:
        stats = asyncio.run(worker.run(
            state=args.state or config.ISSUE_STATE,
            labels=args.label,
            only_numbers=args.issue,
        ))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
        return EXIT_STARTUP_FAILURE

    if stats is None:
        logger.error("Error processing issues: could not list issues")
        return EXIT_STARTUP_FAILURE
    if stats.failed:
        logger.warning(f"{stats.failed} issues failed; see errors above")
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python3
"""
Utility classes and functions for the issue feed worker.

This module contains the shared async plumbing used by the processor and the
feed resolver: retry with exponential backoff, a bounded task pool, and a few
small validation and formatting helpers.
"""

from asyncio import CancelledError, Future, Task, create_task, get_running_loop, sleep
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Optional, Set, Tuple, TypeVar

from config import get_logger

# Module-specific logger
logger = get_logger("utils")

T = TypeVar("T")


def validate_url(url: str) -> bool:
    """Validate if a string is a properly formatted http(s) URL.

    Args:
        url: The URL string to validate

    Returns:
        True if the URL appears to be valid, False otherwise
    """
    if not url or not isinstance(url, str):
        return False

    url = url.strip()
    if not url:
        return False

    return url.startswith(('http://', 'https://')) and '.' in url


def format_duration(seconds: float) -> str:
    """Format a duration in seconds to a human-readable string.

    Args:
        seconds: Duration in seconds

    Returns:
        Formatted duration string (e.g., "1m 5.2s")
    """
    if seconds < 0:
        return "0s"

    minutes = int(seconds // 60)
    secs = seconds - minutes * 60

    if minutes > 0:
        return f"{minutes}m {secs:.1f}s"
    return f"{secs:.1f}s"


def truncate_string(text: str, max_length: int, suffix: str = "...") -> str:
    """Truncate a string to a maximum length, adding a suffix if truncated.

    Args:
        text: The text to potentially truncate
        max_length: Maximum allowed length (including suffix)
        suffix: Suffix to add when truncating

    Returns:
        The original text or truncated version with suffix
    """
    if not text or len(text) <= max_length:
        return text

    if len(suffix) >= max_length:
        return text[:max_length]

    return text[:max_length - len(suffix)] + suffix


class RetryHelper:
    """Helper class for implementing retry logic with exponential backoff."""

    def __init__(self, max_retries: int = 3, base_delay: float = 1.0, max_delay: float = 60.0):
        """Initialize the retry helper.

        Args:
            max_retries: Maximum number of attempts
            base_delay: Base delay in seconds for exponential backoff (0 retries immediately)
            max_delay: Maximum delay in seconds between retries
        """
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay

    def calculate_delay(self, attempt: int) -> float:
        """Calculate the delay for a given retry attempt.

        Args:
            attempt: The current attempt number (0-based)

        Returns:
            Delay in seconds (with exponential backoff)
        """
        delay = self.base_delay * (2 ** attempt)
        return min(delay, self.max_delay)

    async def sleep_for_attempt(self, attempt: int):
        """Sleep for the calculated delay for the given attempt."""
        delay = self.calculate_delay(attempt)
        if delay > 0:
            logger.debug(f"Retry delay: sleeping for {delay:.2f} seconds")
            await sleep(delay)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int,
    retry_helper: Optional[RetryHelper] = None,
    label: str = "operation",
) -> T:
    """Run ``operation`` until it succeeds or ``max_attempts`` is exhausted.

    Attempts run strictly one after another. Each failure is logged; when a
    ``retry_helper`` is given its backoff delay is applied between attempts.
    The exception of the last attempt is re-raised unchanged.

    Args:
        operation: Zero-argument callable returning an awaitable
        max_attempts: Total number of attempts (>= 1)
        retry_helper: Optional backoff policy
        label: Short description used in log lines

    Returns:
        The result of the first successful attempt
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be at least 1 (got {max_attempts})")

    last_error: Optional[BaseException] = None
    for attempt in range(max_attempts):
        try:
            return await operation()
        except CancelledError:
            raise
        except Exception as e:
            last_error = e
            remaining = max_attempts - attempt - 1
            if remaining:
                logger.warning(
                    "Attempt %d/%d for %s failed (%s: %s); retrying",
                    attempt + 1,
                    max_attempts,
                    label,
                    e.__class__.__name__,
                    e,
                )
                if retry_helper:
                    await retry_helper.sleep_for_attempt(attempt)
            else:
                logger.error(
                    "Attempt %d/%d for %s failed (%s: %s); giving up",
                    attempt + 1,
                    max_attempts,
                    label,
                    e.__class__.__name__,
                    e,
                )
    raise last_error


class ConcurrencyPool:
    """Bounded pool of coroutine tasks started in submission order.

    ``add()`` queues a task and waits for it; at most ``limit`` tasks run at
    the same time. When a task finishes, successfully or not, the oldest
    queued task is started. A failure is raised only to the caller awaiting
    that task's ``add()``. Counters are only touched between awaits on the
    event loop thread, so no lock is required.
    """

    def __init__(self, limit: int):
        if limit < 1:
            raise ValueError(f"Concurrency limit must be at least 1 (got {limit})")
        self.limit = limit
        self.running = 0
        self._queue: Deque[Tuple[Callable[[], Awaitable[Any]], Future]] = deque()
        self._tasks: Set[Task] = set()

    @property
    def pending(self) -> int:
        """Number of submitted tasks that have not started yet."""
        return len(self._queue)

    @property
    def idle(self) -> bool:
        return self.running == 0 and not self._queue

    async def add(self, task: Callable[[], Awaitable[T]]) -> T:
        """Submit ``task`` and wait for its completion.

        Returns:
            Whatever the task returns; its exception is re-raised here.
        """
        future = get_running_loop().create_future()
        self._queue.append((task, future))
        self._start_queued()
        return await future

    def _start_queued(self) -> None:
        while self.running < self.limit and self._queue:
            task, future = self._queue.popleft()
            if future.cancelled():
                # Caller stopped waiting before the task got a slot
                continue
            self.running += 1
            runner = create_task(self._run(task, future))
            self._tasks.add(runner)
            runner.add_done_callback(self._tasks.discard)

    async def _run(self, task: Callable[[], Awaitable[Any]], future: Future) -> None:
        try:
            result = await task()
        except CancelledError:
            if not future.done():
                future.cancel()
            raise
        except Exception as e:
            if not future.done():
                future.set_exception(e)
        else:
            if not future.done():
                future.set_result(result)
        finally:
            self.running -= 1
            self._start_queued()

#!/usr/bin/env python3
"""Common error types shared across modules.

Provides shared lightweight exceptions to avoid circular imports.
"""

from typing import Optional


class FeedFetchError(Exception):
    """Raised when a feed document cannot be downloaded.

    Attributes:
        url: The feed URL that failed.
        status: HTTP status code when the server answered, else None.
    """

    def __init__(self, message: str, url: str = "", status: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status = status


class FeedParseError(Exception):
    """Raised when a feed document cannot be tokenized at all."""


class DirectiveError(Exception):
    """Base class for problems locating or decoding an embedded directive."""


class DirectiveMissing(DirectiveError):
    """No fenced JSON block was found in the text."""


class DirectiveMalformed(DirectiveError):
    """A fenced block was found but does not hold a valid JSON object."""


class IssueClientError(Exception):
    """Raised when the GitHub issues API answers with an error.

    Attributes:
        status: HTTP status code, if any.
        details: Optional response payload for diagnostics.
    """

    def __init__(self, message: str, status: Optional[int] = None, details: Optional[object] = None):
        super().__init__(message)
        self.status = status
        self.details = details


__all__ = [
    "FeedFetchError",
    "FeedParseError",
    "DirectiveError",
    "DirectiveMissing",
    "DirectiveMalformed",
    "IssueClientError",
]

#!/usr/bin/env python3
"""
Feed download and normalization.

This module fetches Atom and RSS documents and reduces either dialect to the
same short list of posts (title, link, formatted publication time). Date
handling accepts both strftime patterns and Day.js-style token patterns such
as ``YYYY-MM-DD HH:mm:ss``, which is what workflow inputs usually carry.
"""

from asyncio import TimeoutError
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import List, NamedTuple, Optional, Union
from zoneinfo import ZoneInfo
import re

import feedparser
from aiohttp import ClientError, ClientSession, ClientTimeout
from bs4 import BeautifulSoup
from bs4.builder import ParserRejectedMarkup

from config import DEFAULT_DATE_FORMAT, DEFAULT_USER_AGENT, WorkerSettings, get_logger
from errors import FeedFetchError, FeedParseError
from telemetry import trace_span
from utils import RetryHelper, truncate_string, validate_url, with_retry

# Module-specific logger
logger = get_logger("feeds")

HTTP_OK = 200
DEFAULT_FETCH_TIMEOUT = 5.0

# Day.js style tokens, longest first so that e.g. YYYY wins over YY
_DATE_TOKEN_RE = re.compile(r"\[([^\]]*)\]|YYYY|YY|MMMM|MMM|MM|M|DD|D|dddd|ddd|HH|H|hh|h|mm|m|ss|s|A|a|ZZ|Z")


class FeedDialect(Enum):
    ATOM = "atom"
    RSS = "rss"


class PostRecord(NamedTuple):
    """A normalized feed entry as stored in a directive's ``posts`` list."""
    title: str
    link: str
    published: str = ""

    def to_dict(self) -> dict:
        return {"title": self.title, "link": self.link, "published": self.published}


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a feed timestamp into an aware datetime.

    Tries ISO 8601 (Atom), RFC 822/2822 (RSS), then feedparser's lenient
    date handlers. Naive results are assumed to be UTC.

    Returns:
        The parsed datetime, or None when nothing understands the text
    """
    if not value or not value.strip():
        return None
    text = value.strip()

    dt: Optional[datetime] = None
    try:
        iso_text = text[:-1] + "+00:00" if text.endswith(("Z", "z")) else text
        dt = datetime.fromisoformat(iso_text)
    except ValueError:
        dt = None

    if dt is None:
        try:
            dt = parsedate_to_datetime(text)
        except (TypeError, ValueError, IndexError, OverflowError):
            dt = None

    if dt is None:
        try:
            time_struct = feedparser._parse_date(text)
            if time_struct:
                dt = datetime(*time_struct[:6], tzinfo=timezone.utc)
        except (ValueError, TypeError, AttributeError, OverflowError):
            dt = None

    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _format_offset(dt: datetime, separator: str) -> str:
    offset = dt.utcoffset()
    total_minutes = int(offset.total_seconds() // 60) if offset else 0
    sign = "+" if total_minutes >= 0 else "-"
    hours, minutes = divmod(abs(total_minutes), 60)
    return f"{sign}{hours:02d}{separator}{minutes:02d}"


def _render_token(dt: datetime, match: re.Match) -> str:
    literal = match.group(1)
    if literal is not None:
        return literal
    token = match.group(0)
    hour12 = dt.hour % 12 or 12
    return {
        "YYYY": f"{dt.year:04d}",
        "YY": f"{dt.year % 100:02d}",
        "MMMM": dt.strftime("%B"),
        "MMM": dt.strftime("%b"),
        "MM": f"{dt.month:02d}",
        "M": str(dt.month),
        "DD": f"{dt.day:02d}",
        "D": str(dt.day),
        "dddd": dt.strftime("%A"),
        "ddd": dt.strftime("%a"),
        "HH": f"{dt.hour:02d}",
        "H": str(dt.hour),
        "hh": f"{hour12:02d}",
        "h": str(hour12),
        "mm": f"{dt.minute:02d}",
        "m": str(dt.minute),
        "ss": f"{dt.second:02d}",
        "s": str(dt.second),
        "A": "PM" if dt.hour >= 12 else "AM",
        "a": "pm" if dt.hour >= 12 else "am",
        "ZZ": _format_offset(dt, ""),
        "Z": _format_offset(dt, ":"),
    }[token]


def format_timestamp(dt: datetime, pattern: str = DEFAULT_DATE_FORMAT) -> str:
    """Render ``dt`` with either a strftime pattern or a Day.js-style token pattern."""
    if "%" in pattern:
        return dt.strftime(pattern)
    return _DATE_TOKEN_RE.sub(lambda m: _render_token(dt, m), pattern)


def format_published(value: Optional[str], pattern: str = DEFAULT_DATE_FORMAT, timezone_name: str = "UTC") -> str:
    """Parse and re-render a feed timestamp; unparsable input yields an empty string."""
    if not value or not value.strip():
        return ""
    dt = parse_timestamp(value)
    if dt is None:
        logger.debug(f"Unable to parse published date '{value}'")
        return ""
    return format_timestamp(dt.astimezone(ZoneInfo(timezone_name)), pattern)


def _text_of(tag) -> str:
    return tag.get_text().strip() if tag is not None else ""


def _parent_name(tag) -> Optional[str]:
    parent = tag.parent
    return parent.name if parent is not None else None


def detect_entries(soup: BeautifulSoup):
    """Return the dialect and its entry elements in document order.

    Atom wins when any ``feed > entry`` exists; otherwise ``rss > channel > item``
    is looked for. Returns ``(None, [])`` for anything else.
    """
    entries = [e for e in soup.find_all("entry") if _parent_name(e) == "feed"]
    if entries:
        return FeedDialect.ATOM, entries

    items = [
        item for item in soup.find_all("item")
        if _parent_name(item) == "channel" and _parent_name(item.parent) == "rss"
    ]
    if items:
        return FeedDialect.RSS, items

    return None, []


def _entry_link(entry, dialect: FeedDialect) -> str:
    if dialect is FeedDialect.RSS:
        return _text_of(entry.find("link"))

    alternate = entry.find("link", attrs={"rel": "alternate"})
    href = alternate.get("href") if alternate is not None else None
    if not href:
        first = entry.find("link")
        href = first.get("href") if first is not None else None
    return (href or "").strip()


def normalize_feed(
    document: Union[str, bytes],
    max_posts: int,
    date_format: str = DEFAULT_DATE_FORMAT,
    timezone_name: str = "UTC",
) -> List[PostRecord]:
    """Extract up to ``max_posts`` posts from an Atom or RSS document.

    Only the first ``max_posts`` entries are considered; entries without a
    title or a link are dropped, so fewer posts may be returned. A document
    of neither dialect yields an empty list.

    Raises:
        FeedParseError: when the input cannot be tokenized at all
    """
    if not isinstance(document, (str, bytes)):
        raise FeedParseError(f"Feed document must be text or bytes, not {type(document).__name__}")

    try:
        soup = BeautifulSoup(document, "xml")
    except ParserRejectedMarkup as e:
        raise FeedParseError(f"Unable to parse feed document: {e}") from e

    dialect, entries = detect_entries(soup)
    logger.debug(f"Detected dialect {dialect.value if dialect else 'none'} with {len(entries)} entries")
    if dialect is None or max_posts <= 0:
        return []

    published_tag = "pubDate" if dialect is FeedDialect.RSS else "published"
    posts: List[PostRecord] = []
    for entry in entries[:max_posts]:
        title = _text_of(entry.find("title"))
        link = _entry_link(entry, dialect)
        published = format_published(_text_of(entry.find(published_tag)), date_format, timezone_name)
        logger.debug(f"Extracted - Title: {title}, Link: {link}, Published: {published}")
        if title and link:
            posts.append(PostRecord(title=title, link=link, published=published))
    return posts


def _format_client_error(error: ClientError) -> str:
    """Describe aiohttp client errors with any available status/errno."""
    parts: List[str] = [error.__class__.__name__]
    status = getattr(error, 'status', None)
    if status is not None:
        parts.append(f"status={status}")
    os_error = getattr(error, 'os_error', None)
    if os_error is not None:
        errno = getattr(os_error, 'errno', None)
        if errno is not None:
            parts.append(f"errno={errno}")
    message = str(error)
    if message:
        parts.append(message)
    return " ".join(parts)


async def fetch_feed_document(
    session: ClientSession,
    url: str,
    timeout: float = DEFAULT_FETCH_TIMEOUT,
    user_agent: str = DEFAULT_USER_AGENT,
) -> bytes:
    """Download a feed document with a single GET request.

    Raises:
        FeedFetchError: on invalid URLs, non-200 answers, network errors and timeouts
    """
    if not validate_url(url):
        raise FeedFetchError(f"Invalid feed URL: {url!r}", url=str(url))

    try:
        async with session.get(
            url,
            headers={'User-Agent': user_agent},
            timeout=ClientTimeout(total=timeout),
        ) as response:
            if response.status != HTTP_OK:
                raise FeedFetchError(f"HTTP {response.status} from {url}", url=url, status=response.status)
            return await response.read()
    except TimeoutError as e:
        raise FeedFetchError(f"Timed out after {timeout}s fetching {url}", url=url) from e
    except ClientError as e:
        raise FeedFetchError(f"Network error fetching {url}: {_format_client_error(e)}", url=url) from e


@trace_span(
    "resolve_feed",
    tracer_name="feeds",
    attr_from_args=lambda session, url, settings, retry_helper=None: {"feed.url": url},
)
async def resolve_feed(
    session: ClientSession,
    url: str,
    settings: WorkerSettings,
    retry_helper: Optional[RetryHelper] = None,
) -> List[PostRecord]:
    """Fetch ``url`` with retries and normalize it.

    Final fetch failures and unparsable documents are logged and degrade to
    an empty list so that one bad feed never stops the batch.
    """
    if retry_helper is None and settings.retry_delay_base > 0:
        retry_helper = RetryHelper(max_retries=settings.retry_attempts, base_delay=settings.retry_delay_base)

    try:
        document = await with_retry(
            lambda: fetch_feed_document(session, url, settings.fetch_timeout, settings.user_agent),
            settings.retry_attempts,
            retry_helper=retry_helper,
            label=f"feed {url}",
        )
    except FeedFetchError as e:
        logger.warning(f"Giving up on feed {url}: {e}")
        return []

    try:
        posts = normalize_feed(
            document,
            settings.max_posts_per_feed,
            settings.date_format,
            settings.date_timezone,
        )
    except FeedParseError as e:
        logger.warning(f"Could not parse feed {url}: {truncate_string(str(e), 200)}")
        return []

    logger.info(f"Resolved {len(posts)} posts from {url}")
    return posts

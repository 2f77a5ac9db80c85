#!/usr/bin/env python3
"""
Embedded JSON directives.

Issue bodies carry their configuration as a fenced block::

    ```json
    {"feed": "https://example.com/atom.xml"}
    ```

This module locates that block with an explicit two-phase scan (fence first,
then a string-aware brace scan), decodes it, and writes an updated value back
into the text without touching anything outside the JSON span.
"""

from json import dumps, loads, JSONDecodeError
from typing import Any, Callable, List, NamedTuple, Optional

from config import get_logger
from errors import DirectiveMalformed, DirectiveMissing

# Module-specific logger
logger = get_logger("directives")

FENCE = "```"
JSON_FENCE = "```json"
WHITESPACE = " \t\r\n"


class DirectiveSpan(NamedTuple):
    """Location of the JSON object inside a text body; ``text[start:end] == raw``."""
    start: int
    end: int
    raw: str


class Directive(dict):
    """Decoded directive payload.

    Behaves as a plain mapping so every key survives the round trip in its
    original order; ``feed`` and ``posts`` are the only keys the worker reads
    or writes.
    """

    @property
    def feed(self) -> Optional[str]:
        value = self.get("feed")
        if isinstance(value, str) and value.strip():
            return value.strip()
        return None

    @property
    def posts(self) -> List[dict]:
        return list(self.get("posts") or [])

    @posts.setter
    def posts(self, records) -> None:
        self["posts"] = [r.to_dict() if hasattr(r, "to_dict") else dict(r) for r in records]


def _match_brace(text: str, start: int) -> int:
    """Return the index of the ``}`` closing the object opened at ``start``, or -1.

    Braces inside JSON string literals (including escaped quotes) are ignored.
    """
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return index
    return -1


def find_directive(text: Optional[str]) -> DirectiveSpan:
    """Locate the first fenced JSON object in ``text``.

    Phase one looks for a ```` ```json ```` fence whose content starts with
    ``{``. Phase two scans for the balanced end of that object and the closing
    fence after it; the span covers the widest ``{ ... }`` region before that
    fence.

    Raises:
        DirectiveMissing: no fenced object is present
        DirectiveMalformed: the object's braces never balance
    """
    if not text:
        raise DirectiveMissing("Text is empty")

    search_from = 0
    while True:
        fence = text.find(JSON_FENCE, search_from)
        if fence < 0:
            raise DirectiveMissing("No ```json block found")

        start = fence + len(JSON_FENCE)
        while start < len(text) and text[start] in WHITESPACE:
            start += 1
        if start >= len(text) or text[start] != "{":
            search_from = fence + len(JSON_FENCE)
            continue

        object_end = _match_brace(text, start)
        if object_end < 0:
            raise DirectiveMalformed(f"Unbalanced braces in ```json block at offset {fence}")

        closing = text.find(FENCE, object_end + 1)
        if closing < 0:
            raise DirectiveMissing(f"```json block at offset {fence} is never closed")

        end = text.rfind("}", object_end, closing) + 1
        return DirectiveSpan(start=start, end=end, raw=text[start:end])


def parse_directive(span: DirectiveSpan) -> Directive:
    """Decode the JSON object held by ``span``.

    Raises:
        DirectiveMalformed: invalid JSON, or a value that is not an object
    """
    try:
        value = loads(span.raw)
    except JSONDecodeError as e:
        raise DirectiveMalformed(f"Invalid JSON in directive: {e}") from e
    if not isinstance(value, dict):
        raise DirectiveMalformed(f"Directive must be a JSON object, got {type(value).__name__}")
    return Directive(value)


def render_directive(directive: dict) -> str:
    return dumps(directive, indent=2, ensure_ascii=False)


def replace_directive(text: str, span: DirectiveSpan, directive: dict) -> str:
    """Substitute the rendered directive for exactly the original span."""
    return text[:span.start] + render_directive(directive) + text[span.end:]


def extract_and_replace(text: Optional[str], transform: Callable[[Directive], Any]) -> Optional[str]:
    """Rewrite the directive embedded in ``text``.

    ``transform`` receives the decoded directive and either returns the new
    value or mutates it in place and returns None.

    Returns:
        The updated text, or None when no usable directive exists
    """
    try:
        span = find_directive(text)
        directive = parse_directive(span)
    except DirectiveMissing as e:
        logger.info(f"No directive found: {e}")
        return None
    except DirectiveMalformed as e:
        logger.warning(f"Skipping malformed directive: {e}")
        return None

    updated = transform(directive)
    if updated is None:
        updated = directive
    return replace_directive(text, span, updated)

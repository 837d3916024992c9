"""Excerpt previews and near-duplicate detection for grouped results."""

from __future__ import annotations

import re

METADATA_PREFIXES = (
    "Document:",
    "Title:",
    "Description:",
    "Summary:",
    "Authors:",
    "Publishers:",
    "Keywords:",
    "Tags:",
)
SEPARATOR_LINES = frozenset({"---", "=== Content ==="})

HEADER_SCAN_LINES = 10
CONTEXT_BEFORE = 50
CONTEXT_AFTER = 100
PREVIEW_LENGTH = 200
ELLIPSIS = "..."

_WORDS = re.compile(r"\s+")


def _is_header_line(line: str) -> bool:
    return line.startswith(METADATA_PREFIXES) or line in SEPARATOR_LINES or not line.strip()


def strip_metadata_header(text: str) -> str:
    """Drop leading metadata-header lines (within the first ten lines).

    Returns ``""`` when the passage consists of header lines only.
    """
    lines = text.split("\n")
    start = 0
    for i, line in enumerate(lines[:HEADER_SCAN_LINES]):
        if not _is_header_line(line):
            break
        start = i + 1
    return "\n".join(lines[start:]).strip()


def has_body_content(text: str) -> bool:
    """Whether anything but metadata header lines is left in *text*."""
    return bool(strip_metadata_header(text))


def highlight_match(text: str, query: str) -> str:
    """Return a preview of *text* around the first occurrence of *query*.

    The match is wrapped in ``**`` markers with 50 characters of context
    before and 100 after; truncated ends get an ellipsis.  Without a
    literal occurrence the first 200 characters are returned.
    """
    if not text or not query:
        return ""

    body = strip_metadata_header(text) or text.strip()
    index = body.lower().find(query.lower())
    if index == -1:
        return body[:PREVIEW_LENGTH] + (ELLIPSIS if len(body) > PREVIEW_LENGTH else "")

    match_end = index + len(query)
    start = max(0, index - CONTEXT_BEFORE)
    end = min(len(body), match_end + CONTEXT_AFTER)

    prefix = ELLIPSIS if start > 0 else ""
    suffix = ELLIPSIS if end < len(body) else ""
    return f"{prefix}{body[start:index]}**{body[index:match_end]}**{body[match_end:end]}{suffix}"


def excerpt_similarity(first: str, second: str) -> float:
    """Similarity of two previews in ``[0, 1]``.

    Highlight markers and case are ignored.  Identical text scores 1.0,
    containment 0.9, otherwise the Dice coefficient of the word sets.
    """
    if not first or not second:
        return 0.0
    a = first.replace("**", "").lower().strip()
    b = second.replace("**", "").lower().strip()
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    if a in b or b in a:
        return 0.9

    words_a = set(_WORDS.split(a))
    words_b = set(_WORDS.split(b))
    return 2 * len(words_a & words_b) / (len(words_a) + len(words_b))

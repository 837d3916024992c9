"""Section-aware text chunking with sentence overlap.

Text is split on blank lines into sections.  Sections that look like
headings become the section label of the passages that follow them and
are kept as the first line of the next passage, so heading words stay
searchable.  Sections that fit within ``max_size`` become one passage;
larger ones are handed to LangChain's ``RecursiveCharacterTextSplitter``,
which packs them line by line, then sentence by sentence, then word by
word, carrying trailing sentences of each passage into the next as
overlap context.
"""

from __future__ import annotations

import math
import re

from langchain_text_splitters import RecursiveCharacterTextSplitter

from docsearch.retrieval.models import Passage

_MAX_HEADER_LENGTH = 80

_SECTION_SPLIT = re.compile(r"\n[ \t]*\n")

# Line, sentence, word.  No empty separator: an undelimited run stays whole.
_SEPARATORS = [r"\n", r"(?<=[.!?])\s+", r" "]

# Independent heading heuristics; a line matching any of them is a candidate.
_HEADER_PATTERNS: tuple[re.Pattern[str], ...] = (
    # ALL CAPS LINES of at most eight words
    re.compile(
        r"^(?=.{3,60}$)(?=(?:[^A-Za-z]*[A-Z]){3})"
        r"[A-Z0-9][A-Z0-9&/,'()\-]*(?: [A-Z0-9&/,'()\-]+){0,7}(?<=[A-Z0-9)])$"
    ),
    # 1. Numbered / 2.3 Numbered Title Case headings
    re.compile(
        r"^\d+(?:\.\d+)*\.?\s+[A-Z][\w'\-]*"
        r"(?:\s+(?:[A-Z][\w'\-]*|of|and|the|for|in|on|to|a|an|with|&)){0,7}$"
    ),
    # Title Case Ending In Colon:
    re.compile(
        r"^[A-Z][\w'\-]*(?:\s+(?:[A-Z][\w'\-]*|of|and|the|for|in|on|to|a|an|with|&))*:$"
    ),
    # Markdown headings
    re.compile(r"^#{1,6}\s+\S.*$"),
    # **Emphasised** or __emphasised__ short lines
    re.compile(r"^(\*\*|__)[^*_\n]{1,60}\1$"),
)


def estimate_tokens(text: str) -> int:
    """Cheap token estimate: one token per four characters, rounded up."""
    return math.ceil(len(text) / 4)


def detect_section_headers(text: str) -> list[str]:
    """Return the distinct lines of *text* that look like section headings.

    Order follows first appearance in the text.
    """
    seen: dict[str, None] = {}
    for line in text.splitlines():
        candidate = line.strip()
        if not candidate or len(candidate) > _MAX_HEADER_LENGTH:
            continue
        if any(p.match(candidate) for p in _HEADER_PATTERNS):
            seen.setdefault(candidate, None)
    return list(seen)


def chunk_text(text: str, max_size: int = 1000, overlap: int = 200) -> list[Passage]:
    """Split *text* into ordered, overlapping passages.

    Parameters
    ----------
    text:
        Normalised document text.  Blank lines separate sections.
    max_size:
        Nominal maximum passage length in characters.  A single word
        longer than this is emitted whole.
    overlap:
        Character budget for the context carried from one passage into
        the next.

    Returns
    -------
    list[Passage]
        Passages with contiguous 0-based positions.
    """
    if max_size <= 0:
        raise ValueError(f"max_size must be positive, got {max_size}")
    if overlap < 0 or overlap >= max_size:
        raise ValueError(f"overlap ({overlap}) must be >= 0 and < max_size ({max_size})")

    if not text or not text.strip():
        return []

    splitter = _make_splitter(max_size, overlap)
    headers = set(detect_section_headers(text))
    current_section: str | None = None
    pending_headers: list[str] = []
    pieces: list[tuple[str, str | None]] = []

    for section in _SECTION_SPLIT.split(text):
        section = section.strip()
        if not section:
            continue
        if section in headers:
            current_section = _clean_label(section)
            pending_headers.append(section)
            continue
        body = "\n".join(pending_headers + [section])
        pending_headers = []
        if len(body) <= max_size:
            pieces.append((body, current_section))
            continue
        for piece in splitter.split_text(body):
            pieces.append((piece, current_section))

    # Headings with no body after them are still content.
    if pending_headers:
        for piece in splitter.split_text("\n".join(pending_headers)):
            pieces.append((piece, current_section))

    return [
        Passage(text=t, position=i, section=s, token_estimate=estimate_tokens(t))
        for i, (t, s) in enumerate(pieces)
    ]


# -- internals ----------------------------------------------------------------


def _make_splitter(max_size: int, overlap: int) -> RecursiveCharacterTextSplitter:
    return RecursiveCharacterTextSplitter(
        chunk_size=max_size,
        chunk_overlap=overlap,
        length_function=len,
        separators=_SEPARATORS,
        is_separator_regex=True,
        keep_separator="end",
    )


def _clean_label(header: str) -> str:
    label = header.strip()
    label = re.sub(r"^#{1,6}\s+", "", label)
    label = re.sub(r"^(\*\*|__)(.*)\1$", r"\2", label)
    return label.rstrip(":").strip()

"""Text normalisation applied to extracted content before chunking."""

from __future__ import annotations

import re

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_PARAGRAPH_BREAK = re.compile(r"\n{2,}")
_SINGLE_NEWLINE = re.compile(r"(?<!\n)\n(?!\n)")
_SPACE_RUN = re.compile(r"[ \t]{2,}|\t")


def normalize_text(raw: str) -> str:
    """Return a canonical form of *raw* extracted text.

    * control characters (other than newline and tab) are removed
    * ``\\r\\n`` / ``\\r`` line endings become ``\\n``
    * blank-line runs collapse to exactly one paragraph break
    * single line breaks inside a paragraph become spaces
    * tabs and runs of spaces collapse to one space
    * Unicode replacement characters (U+FFFD) are dropped

    The function is pure and total: empty input yields ``""``.
    """
    if not raw:
        return ""

    text = raw.replace("\r\n", "\n").replace("\r", "\n")
    text = _CONTROL_CHARS.sub("", text)
    text = text.replace("\ufffd", "")
    # Whitespace-only lines count as blank so they collapse into the break.
    text = re.sub(r"\n[ \t]+(?=\n)", "\n", text)
    text = _PARAGRAPH_BREAK.sub("\n\n", text)
    text = _SINGLE_NEWLINE.sub(" ", text)
    text = _SPACE_RUN.sub(" ", text)
    # Spaces hugging a paragraph break are leftovers from line joins.
    text = re.sub(r"[ \t]*\n\n[ \t]*", "\n\n", text)
    return text.strip()

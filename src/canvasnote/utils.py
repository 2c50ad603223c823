"""Utility functions for canvasnote-core."""
import html
import re
import time

# Characters allowed in an ingested asset filename
_FILENAME_ALLOWED = frozenset(
    "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789.-_"
)

_TAG_RE = re.compile(r"<[^>]+>")
_WHITESPACE_RE = re.compile(r"\s+")


def sanitize_filename(name: str) -> str:
    """Reduce a filename hint to alphanumerics, '.', '-' and '_'.

    Disallowed characters are dropped, not replaced.

    Examples:
        "my photo (1).png" -> "myphoto1.png"
        "../../etc/passwd" -> "....etcpasswd"
        "日本.pdf" -> ".pdf"

    Args:
        name: Filename supplied by the caller.

    Returns:
        The sanitized name, possibly empty.
    """
    if not name:
        return ""
    return "".join(c for c in name if c in _FILENAME_ALLOWED)


def collapse_whitespace(text: str) -> str:
    """Collapse runs of whitespace into single spaces and strip the ends."""
    return _WHITESPACE_RE.sub(" ", text).strip()


def strip_html(markup: str) -> str:
    """Strip HTML tags, unescape entities and collapse whitespace.

    Tags are replaced by a space so adjacent block contents don't fuse
    into one word.
    """
    if not markup:
        return ""
    return collapse_whitespace(html.unescape(_TAG_RE.sub(" ", markup)))


def now_millis() -> int:
    """Current time as a millisecond epoch timestamp."""
    return time.time_ns() // 1_000_000

"""Snippet extraction for search results."""
import re
from collections import Counter
from typing import Iterable

from canvasnote.storage.scoring import token_spans

MARK_OPEN = "<mark>"
MARK_CLOSE = "</mark>"
ELLIPSIS = "..."

_GAP_WHITESPACE_RE = re.compile(r"\s+")


def build_snippet(
    text: str,
    query_terms: Iterable[str],
    window: int = 20,
    mark_open: str = MARK_OPEN,
    mark_close: str = MARK_CLOSE,
    ellipsis: str = ELLIPSIS,
) -> str:
    """Excerpt ``text`` around its best match.

    Picks the first ``window``-token span holding the largest number of
    distinct query terms, wraps every matching token in the mark strings and
    adds an ellipsis on each side where the excerpt was cut.
    """
    if not text:
        return ""
    spans = list(token_spans(text))
    if not spans:
        return _GAP_WHITESPACE_RE.sub(" ", text).strip()

    wanted = set(query_terms)
    start = _best_window_start(spans, wanted, window)
    end = min(start + window, len(spans))

    parts = []
    if start > 0:
        parts.append(ellipsis)
    cursor = spans[start][1] if start > 0 else 0
    for token, tok_start, tok_end in spans[start:end]:
        parts.append(_GAP_WHITESPACE_RE.sub(" ", text[cursor:tok_start]))
        if token in wanted:
            parts.append(f"{mark_open}{text[tok_start:tok_end]}{mark_close}")
        else:
            parts.append(text[tok_start:tok_end])
        cursor = tok_end
    if end < len(spans):
        parts.append(ellipsis)
    else:
        parts.append(_GAP_WHITESPACE_RE.sub(" ", text[cursor:]))

    return "".join(parts).strip()


def _best_window_start(spans, wanted, window: int) -> int:
    """Index of the first window with the most distinct query terms."""
    if len(spans) <= window or not wanted:
        return 0

    counts: Counter = Counter()
    for token, _, _ in spans[:window]:
        if token in wanted:
            counts[token] += 1
    best_start, best_hits = 0, len(counts)

    for start in range(1, len(spans) - window + 1):
        leaving = spans[start - 1][0]
        if leaving in wanted:
            counts[leaving] -= 1
            if counts[leaving] == 0:
                del counts[leaving]
        entering = spans[start + window - 1][0]
        if entering in wanted:
            counts[entering] += 1
        if len(counts) > best_hits:
            best_start, best_hits = start, len(counts)

    return best_start

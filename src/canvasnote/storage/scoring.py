"""Tokenization and relevance scoring for the search index.

The scorer sits behind a narrow protocol so the ranking can be tuned or
replaced without touching index storage or the indexing coordinator.
"""
import math
import re
from collections import Counter
from dataclasses import dataclass
from typing import FrozenSet, Iterator, List, Protocol, Sequence, Tuple

from canvasnote.models.schema import IndexRecord

# Letters and digits only, so "_" separates tokens like other punctuation
_TOKEN_RE = re.compile(r"[^\W_]+", re.UNICODE)


def tokenize(text: str) -> List[str]:
    """Split text into case-folded word tokens.

    Any run of non-word characters (whitespace, punctuation) delimits
    tokens, so "Beta-Gamma, alpha_one!" -> ["beta", "gamma", "alpha", "one"].
    """
    if not text:
        return []
    return [m.group(0).casefold() for m in _TOKEN_RE.finditer(text)]


def token_spans(text: str) -> Iterator[Tuple[str, int, int]]:
    """Yield (token, start, end) for every token, with offsets into text."""
    for m in _TOKEN_RE.finditer(text or ""):
        yield m.group(0).casefold(), m.start(), m.end()


@dataclass(frozen=True)
class IndexedDocument:
    """An index record together with its per-field term frequencies."""

    record: IndexRecord
    title_tf: Counter
    content_tf: Counter
    tags_tf: Counter
    terms: FrozenSet[str]

    @classmethod
    def from_record(cls, record: IndexRecord) -> "IndexedDocument":
        title_tf = Counter(tokenize(record.title))
        content_tf = Counter(tokenize(record.content))
        tags_tf = Counter(tokenize(record.tags))
        terms = frozenset(title_tf) | frozenset(content_tf) | frozenset(tags_tf)
        return cls(
            record=record,
            title_tf=title_tf,
            content_tf=content_tf,
            tags_tf=tags_tf,
            terms=terms,
        )


class CorpusStats(Protocol):
    """Collection-wide statistics a scorer may consult."""

    @property
    def document_count(self) -> int: ...

    def document_frequency(self, term: str) -> int: ...


class Scorer(Protocol):
    """Relevance function. Higher scores mean more relevant."""

    def score(
        self,
        query_terms: Sequence[str],
        document: IndexedDocument,
        corpus: CorpusStats,
    ) -> float: ...


class TfIdfScorer:
    """Field-weighted TF-IDF.

    For every distinct query term the log-dampened term frequency of each
    field is multiplied by the field weight, summed, and scaled by
    ``idf = ln(1 + N / df)``.
    """

    def __init__(
        self,
        title_weight: float = 3.0,
        tags_weight: float = 2.0,
        content_weight: float = 1.0,
    ) -> None:
        self.title_weight = title_weight
        self.tags_weight = tags_weight
        self.content_weight = content_weight

    @staticmethod
    def _dampen(tf: int) -> float:
        return 1.0 + math.log(tf) if tf > 0 else 0.0

    def score(
        self,
        query_terms: Sequence[str],
        document: IndexedDocument,
        corpus: CorpusStats,
    ) -> float:
        total = 0.0
        n = max(corpus.document_count, 1)
        for term in set(query_terms):
            df = corpus.document_frequency(term)
            if df == 0:
                continue
            weighted_tf = (
                self.title_weight * self._dampen(document.title_tf.get(term, 0))
                + self.tags_weight * self._dampen(document.tags_tf.get(term, 0))
                + self.content_weight * self._dampen(document.content_tf.get(term, 0))
            )
            total += weighted_tf * math.log(1.0 + n / df)
        return total

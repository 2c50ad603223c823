"""Unified full-text search index over heterogeneous entities.

Records are persisted to the ``search_records`` table through SQLAlchemy and
served from an immutable in-memory snapshot. Every mutation commits to the
database first and then publishes a new snapshot with a single reference
assignment, so readers always see one consistent index version.
"""
import heapq
import logging
import sqlite3
import threading
from collections import Counter
from contextlib import contextmanager
from typing import (Any, Callable, Dict, FrozenSet, Iterable, Iterator, List,
                    Mapping, Optional, Sequence, Set, Tuple, Union)

from sqlalchemy import delete, insert, select
from sqlalchemy import text as sql_text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DisconnectionError, InterfaceError, OperationalError
from sqlalchemy.exc import SQLAlchemyError

from canvasnote.config import config
from canvasnote.exceptions import (ErrorCode, InvalidInputError,
                                   IOFailureError, StorageUnavailableError)
from canvasnote.models.db_models import DBIndexRecord, get_session_factory
from canvasnote.models.schema import (EntityType, IndexKey, IndexRecord,
                                      SearchResult, make_record,
                                      parse_entity_key, parse_entity_type)
from canvasnote.observability import timed_operation, traced
from canvasnote.storage.scoring import IndexedDocument, Scorer, TfIdfScorer, tokenize
from canvasnote.storage.snippets import build_snippet

logger = logging.getLogger(__name__)

_UNAVAILABLE_ERRORS = (
    OperationalError,
    InterfaceError,
    DisconnectionError,
    sqlite3.OperationalError,
)


class IndexSnapshot:
    """Immutable index version: documents plus an inverted term index.

    Mutating helpers return a new snapshot and leave this one untouched.
    """

    __slots__ = ("_docs", "_postings")

    def __init__(
        self,
        docs: Dict[IndexKey, IndexedDocument],
        postings: Dict[str, FrozenSet[IndexKey]],
    ) -> None:
        self._docs = docs
        self._postings = postings

    @classmethod
    def empty(cls) -> "IndexSnapshot":
        return cls({}, {})

    @classmethod
    def build(cls, docs: Dict[IndexKey, IndexedDocument]) -> "IndexSnapshot":
        postings: Dict[str, Set[IndexKey]] = {}
        for key, doc in docs.items():
            for term in doc.terms:
                postings.setdefault(term, set()).add(key)
        return cls(dict(docs), {t: frozenset(k) for t, k in postings.items()})

    # CorpusStats protocol
    @property
    def document_count(self) -> int:
        return len(self._docs)

    def document_frequency(self, term: str) -> int:
        return len(self._postings.get(term, ()))

    def __len__(self) -> int:
        return len(self._docs)

    def __contains__(self, key: IndexKey) -> bool:
        return key in self._docs

    def get(self, key: IndexKey) -> Optional[IndexedDocument]:
        return self._docs.get(key)

    def documents(self) -> Iterable[IndexedDocument]:
        return self._docs.values()

    def terms(self) -> Iterable[str]:
        return self._postings.keys()

    def candidates(self, terms: Sequence[str]) -> FrozenSet[IndexKey]:
        """Keys of documents containing every one of ``terms``."""
        unique = set(terms)
        if not unique:
            return frozenset()
        postings = sorted(
            (self._postings.get(term, frozenset()) for term in unique), key=len
        )
        result = postings[0]
        for other in postings[1:]:
            if not result:
                break
            result = result & other
        return result

    def with_document(self, doc: IndexedDocument) -> "IndexSnapshot":
        key = doc.record.key
        docs = dict(self._docs)
        postings = dict(self._postings)
        old = docs.get(key)
        if old is not None:
            for term in old.terms - doc.terms:
                remaining = postings[term] - {key}
                if remaining:
                    postings[term] = remaining
                else:
                    del postings[term]
        for term in doc.terms:
            postings[term] = postings.get(term, frozenset()) | {key}
        docs[key] = doc
        return IndexSnapshot(docs, postings)

    def without(self, key: IndexKey) -> "IndexSnapshot":
        old = self._docs.get(key)
        if old is None:
            return self
        docs = dict(self._docs)
        del docs[key]
        postings = dict(self._postings)
        for term in old.terms:
            remaining = postings[term] - {key}
            if remaining:
                postings[term] = remaining
            else:
                del postings[term]
        return IndexSnapshot(docs, postings)


class SearchIndex:
    """Full-text index keyed by ``(entity_type, entity_id)``.

    Args:
        engine: SQLAlchemy engine holding the ``search_records`` table.
        session_factory: Callable returning a context-manager session.
            Defaults to a sessionmaker bound to ``engine``.
        scorer: Relevance function. Defaults to field-weighted TF-IDF.
        max_results: Ceiling applied when a query has no limit.
        snippet_tokens: Token window used for result snippets.
        load: Build the in-memory snapshot from the database on creation.
    """

    def __init__(
        self,
        engine: Engine,
        session_factory: Optional[Callable] = None,
        scorer: Optional[Scorer] = None,
        max_results: Optional[int] = None,
        snippet_tokens: Optional[int] = None,
        load: bool = True,
    ) -> None:
        self.engine = engine
        self._session_factory = session_factory or get_session_factory(engine)
        self.scorer: Scorer = scorer or TfIdfScorer(
            title_weight=config.title_weight, tags_weight=config.tags_weight
        )
        self.max_results = max_results or config.search_max_results
        self.snippet_tokens = snippet_tokens or config.snippet_tokens
        self.available: bool = True

        self._snapshot = IndexSnapshot.empty()
        self._write_lock = threading.RLock()
        self._rebuild_lock = threading.Lock()
        # Mutations made while a rebuild is collecting its records
        self._journal: Optional[List[Tuple[str, Any]]] = None

        if load:
            self.load()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @traced("search_load")
    def load(self) -> int:
        """Build the in-memory snapshot from the persisted records.

        Returns:
            Number of records loaded.
        """
        with self._write_lock:
            with self._storage_errors("load"):
                with self._session_factory() as session:
                    rows = session.scalars(select(DBIndexRecord)).all()
                    records = [row.to_record() for row in rows]
            docs = {r.key: IndexedDocument.from_record(r) for r in records}
            self._snapshot = IndexSnapshot.build(docs)
            self.available = True
        logger.info(f"Search index loaded with {len(docs)} records")
        return len(docs)

    def reset_availability(self) -> bool:
        """Probe the backing store and reload the index if it answers again."""
        try:
            with self._session_factory() as session:
                session.execute(sql_text("SELECT 1"))
            self.load()
            logger.info("Search index availability reset, index is enabled")
            return True
        except (SQLAlchemyError, StorageUnavailableError, IOFailureError) as e:
            logger.error(f"Search index still unavailable: {e}")
            self.available = False
            return False

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def upsert(self, record: Union[IndexRecord, Mapping[str, Any]]) -> None:
        """Insert or fully replace the record with the same key.

        Applying the same record twice leaves the index unchanged. The stored
        ``updated_at`` never moves backwards for a key.
        """
        record = self._coerce_record(record)
        self._ensure_available("upsert")

        with self._write_lock:
            current = self._snapshot.get(record.key)
            if current is not None and current.record.updated_at > record.updated_at:
                record = record.model_copy(
                    update={"updated_at": current.record.updated_at}
                )
            if current is not None and current.record == record:
                logger.debug(f"Upsert of {record.key} is a no-op")
                return

            with self._storage_errors("upsert"):
                with self._session_factory() as session:
                    session.merge(DBIndexRecord.from_record(record))
                    session.commit()

            self._snapshot = self._snapshot.with_document(
                IndexedDocument.from_record(record)
            )
            if self._journal is not None:
                self._journal.append(("upsert", record))
        logger.debug(f"Indexed {record.entity_type.value}:{record.entity_id}")

    def remove(self, entity_type: Union[EntityType, str], entity_id: str) -> bool:
        """Delete a record if present.

        Returns:
            True if a record was removed, False if none existed.
        """
        key = parse_entity_key(entity_type, entity_id)
        self._ensure_available("remove")

        with self._write_lock:
            with self._storage_errors("remove"):
                with self._session_factory() as session:
                    result = session.execute(
                        delete(DBIndexRecord).where(
                            DBIndexRecord.entity_type == key[0].value,
                            DBIndexRecord.entity_id == key[1],
                        )
                    )
                    session.commit()
                    deleted_rows = result.rowcount or 0

            removed = deleted_rows > 0 or key in self._snapshot
            self._snapshot = self._snapshot.without(key)
            if self._journal is not None:
                self._journal.append(("remove", key))

        if removed:
            logger.debug(f"Removed {key[0].value}:{key[1]} from index")
        return removed

    @traced("search_rebuild")
    def rebuild(self, records: Iterable[Union[IndexRecord, Mapping[str, Any]]]) -> int:
        """Atomically replace the entire index with ``records``.

        The replacement snapshot is built off to the side while queries keep
        reading the current one. Writes that land during the build are
        replayed onto the new snapshot, then the table is replaced in one
        transaction and the active snapshot is swapped.

        Returns:
            Number of records in the new index.
        """
        with self._rebuild_lock:
            self._ensure_available("rebuild")
            with self._write_lock:
                self._journal = []
            try:
                fresh: Dict[IndexKey, IndexRecord] = {}
                for record in records:
                    record = self._coerce_record(record)
                    fresh[record.key] = record
                docs = {k: IndexedDocument.from_record(r) for k, r in fresh.items()}
                staged = IndexSnapshot.build(docs)

                with self._write_lock:
                    for op, payload in self._journal:
                        if op == "upsert":
                            fresh[payload.key] = payload
                            staged = staged.with_document(
                                IndexedDocument.from_record(payload)
                            )
                        else:
                            fresh.pop(payload, None)
                            staged = staged.without(payload)
                    if self._journal:
                        logger.info(
                            f"Replayed {len(self._journal)} writes made during rebuild"
                        )

                    with self._storage_errors("rebuild"):
                        with self._session_factory() as session:
                            session.execute(delete(DBIndexRecord))
                            if fresh:
                                session.execute(
                                    insert(DBIndexRecord),
                                    [_row_values(r) for r in fresh.values()],
                                )
                            session.commit()

                    self._snapshot = staged
            finally:
                with self._write_lock:
                    self._journal = None

        logger.info(f"Search index rebuilt with {len(fresh)} records")
        return len(fresh)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def query(
        self,
        text: str,
        types: Optional[Iterable[Union[EntityType, str]]] = None,
        date_from: Optional[int] = None,
        date_to: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> Iterator[SearchResult]:
        """Rank records containing every token of ``text``.

        Args:
            text: Free text; tokens are matched case-insensitively with AND
                semantics over title, content and tags.
            types: Entity types to keep. Empty or None keeps all.
            date_from: Inclusive lower bound on ``updated_at`` (ms epoch).
            date_to: Inclusive upper bound on ``updated_at`` (ms epoch).
            limit: Maximum results; None applies ``max_results``.

        Returns:
            Iterator of results, best first (rank ascending, then most
            recently updated). Snippets are computed as it is consumed.
        """
        if not isinstance(text, str):
            raise InvalidInputError(
                "Query text must be a string",
                field="text",
                value=text,
                code=ErrorCode.INVALID_QUERY,
            )
        type_filter = self._parse_types(types)
        cap = self._resolve_limit(limit)
        for name, bound in (("date_from", date_from), ("date_to", date_to)):
            if bound is not None and (isinstance(bound, bool) or not isinstance(bound, int)):
                raise InvalidInputError(
                    f"{name} must be a millisecond timestamp",
                    field=name,
                    value=bound,
                    code=ErrorCode.INVALID_QUERY,
                )
        if date_from is not None and date_to is not None and date_from > date_to:
            raise InvalidInputError(
                "date_from must not be after date_to",
                field="date_from",
                value=date_from,
                code=ErrorCode.INVALID_QUERY,
            )
        self._ensure_available("query")

        snapshot = self._snapshot
        terms = tokenize(text)
        with timed_operation("search_query", terms=len(terms)) as op:
            ranked = self._rank(snapshot, terms, type_filter, date_from, date_to, cap)
            op["result_count"] = len(ranked)
        return self._iter_results(ranked, terms)

    def get(
        self, entity_type: Union[EntityType, str], entity_id: str
    ) -> Optional[IndexRecord]:
        """Return the indexed record for a key, if any."""
        key = parse_entity_key(entity_type, entity_id)
        self._ensure_available("get")
        doc = self._snapshot.get(key)
        return doc.record if doc else None

    def suggest(self, prefix: str, limit: int = 5) -> List[str]:
        """Indexed terms starting with the last token of ``prefix``.

        Ordered by document frequency, most common first.
        """
        if limit < 1:
            raise InvalidInputError(
                "limit must be positive", field="limit", value=limit,
                code=ErrorCode.INVALID_QUERY,
            )
        self._ensure_available("suggest")
        tokens = tokenize(prefix)
        if not tokens:
            return []
        stem = tokens[-1]
        snapshot = self._snapshot
        matches = [t for t in snapshot.terms() if t.startswith(stem)]
        matches.sort(key=lambda t: (-snapshot.document_frequency(t), t))
        return matches[:limit]

    def stats(self) -> Dict[str, Any]:
        """Record counts per entity type and vocabulary size."""
        snapshot = self._snapshot
        by_type = Counter(doc.record.entity_type.value for doc in snapshot.documents())
        return {
            "records": len(snapshot),
            "terms": sum(1 for _ in snapshot.terms()),
            "by_type": dict(sorted(by_type.items())),
            "available": self.available,
        }

    def __len__(self) -> int:
        return len(self._snapshot)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _rank(
        self,
        snapshot: IndexSnapshot,
        terms: List[str],
        type_filter: Set[EntityType],
        date_from: Optional[int],
        date_to: Optional[int],
        cap: int,
    ) -> List[Tuple[float, IndexedDocument]]:
        if not terms:
            return []
        scored = []
        for key in snapshot.candidates(terms):
            doc = snapshot.get(key)
            rec = doc.record
            if type_filter and rec.entity_type not in type_filter:
                continue
            if date_from is not None and rec.updated_at < date_from:
                continue
            if date_to is not None and rec.updated_at > date_to:
                continue
            rank = -self.scorer.score(terms, doc, snapshot)
            scored.append(
                ((rank, -rec.updated_at, rec.entity_type.value, rec.entity_id), doc)
            )
        best = heapq.nsmallest(cap, scored, key=lambda item: item[0])
        return [(sort_key[0], doc) for sort_key, doc in best]

    def _iter_results(
        self, ranked: List[Tuple[float, IndexedDocument]], terms: List[str]
    ) -> Iterator[SearchResult]:
        for rank, doc in ranked:
            rec = doc.record
            yield SearchResult(
                entity_type=rec.entity_type,
                entity_id=rec.entity_id,
                title=rec.title,
                snippet=build_snippet(
                    _snippet_source(doc, terms), terms, window=self.snippet_tokens
                ),
                rank=rank,
                updated_at=rec.updated_at,
            )

    def _coerce_record(self, record: Union[IndexRecord, Mapping[str, Any]]) -> IndexRecord:
        if isinstance(record, IndexRecord):
            return record
        if isinstance(record, Mapping):
            return make_record(**record)
        raise InvalidInputError(
            f"Expected an IndexRecord, got {type(record).__name__}",
            field="record",
        )

    def _parse_types(
        self, types: Optional[Iterable[Union[EntityType, str]]]
    ) -> Set[EntityType]:
        if not types:
            return set()
        if isinstance(types, (str, EntityType)):
            types = [types]
        return {parse_entity_type(t) for t in types}

    def _resolve_limit(self, limit: Optional[int]) -> int:
        if limit is None:
            return self.max_results
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise InvalidInputError(
                "limit must be a positive integer",
                field="limit",
                value=limit,
                code=ErrorCode.INVALID_QUERY,
            )
        return min(limit, self.max_results)

    def _ensure_available(self, operation: str) -> None:
        if not self.available:
            raise StorageUnavailableError(
                "Search index storage is unavailable",
                operation=operation,
                code=ErrorCode.INDEX_UNAVAILABLE,
            )

    @contextmanager
    def _storage_errors(self, operation: str):
        """Translate database failures into index error kinds."""
        try:
            yield
        except _UNAVAILABLE_ERRORS as e:
            self.available = False
            logger.error(f"Search index storage unavailable during {operation}: {e}")
            raise StorageUnavailableError(
                f"Search index storage unavailable during {operation}",
                operation=operation,
                code=ErrorCode.INDEX_UNAVAILABLE,
                original_error=e,
            ) from e
        except SQLAlchemyError as e:
            logger.error(f"Search index {operation} failed: {e}")
            raise IOFailureError(
                f"Search index {operation} failed",
                operation=operation,
                code=ErrorCode.WRITE_FAILED,
                original_error=e,
            ) from e


def _snippet_source(doc: IndexedDocument, terms: List[str]) -> str:
    """Content if a query term occurs there, else a matching title."""
    rec = doc.record
    if rec.content and any(t in doc.content_tf for t in terms):
        return rec.content
    if rec.title and any(t in doc.title_tf for t in terms):
        return rec.title
    return rec.content or rec.title


def _row_values(record: IndexRecord) -> Dict[str, Any]:
    return {
        "entity_type": record.entity_type.value,
        "entity_id": record.entity_id,
        "title": record.title,
        "content": record.content,
        "tags": record.tags,
        "updated_at": record.updated_at,
    }

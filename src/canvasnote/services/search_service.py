"""Caller-facing search over the unified index."""

import logging
from typing import Dict, Iterable, List, Optional, Union

from canvasnote.config import config
from canvasnote.models.schema import EntityType, SearchResult
from canvasnote.storage.search_index import SearchIndex

logger = logging.getLogger(__name__)


class SearchService:
    """Service for searching cards, boards, journal entries and the rest."""

    def __init__(self, search_index: SearchIndex):
        self.search_index = search_index

    def search(
        self,
        query: str,
        types: Optional[Iterable[Union[EntityType, str]]] = None,
        date_from: Optional[int] = None,
        date_to: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[SearchResult]:
        """Run a query and materialize its results.

        A blank query returns no results without touching the index.

        Args:
            query: Free text to match.
            types: Entity types to include; None or empty includes all.
            date_from: Inclusive lower bound on last update (ms epoch).
            date_to: Inclusive upper bound on last update (ms epoch).
            limit: Maximum results, defaults to ``config.search_default_limit``.
        """
        if not query or not query.strip():
            return []
        results = list(
            self.search_index.query(
                query.strip(),
                types=types,
                date_from=date_from,
                date_to=date_to,
                limit=limit if limit is not None else config.search_default_limit,
            )
        )
        logger.debug(f"Search for '{query[:50]}' returned {len(results)} results")
        return results

    def suggest(self, prefix: str, limit: int = 5) -> List[str]:
        """Autocomplete indexed terms for a partially typed query."""
        if not prefix or not prefix.strip():
            return []
        return self.search_index.suggest(prefix, limit=limit)

    @staticmethod
    def group_results_by_type(
        results: Iterable[SearchResult],
    ) -> Dict[EntityType, List[SearchResult]]:
        """Bucket results by entity type, keeping their order.

        Every entity type is present as a key, possibly with an empty list.
        """
        grouped: Dict[EntityType, List[SearchResult]] = {t: [] for t in EntityType}
        for result in results:
            grouped[result.entity_type].append(result)
        return grouped

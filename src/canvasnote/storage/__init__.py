"""Storage layer for canvasnote-core."""

from canvasnote.storage.asset_store import AssetStore, ensure_layout
from canvasnote.storage.search_index import IndexSnapshot, SearchIndex

__all__ = [
    "AssetStore",
    "IndexSnapshot",
    "SearchIndex",
    "ensure_layout",
]

"""Derive searchable text from entity snapshots.

Editors hand over opaque serialized blobs: TipTap documents (JSON or HTML)
for cards and journal entries, tldraw store snapshots for boards. Each
entity type has one extractor registered in ``EXTRACTORS``.
"""
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List

from canvasnote.models.schema import EntitySnapshot, EntityType
from canvasnote.utils import collapse_whitespace, strip_html

logger = logging.getLogger(__name__)

# Shape properties in a tldraw snapshot that hold user-visible text
_CANVAS_TEXT_KEYS = ("text", "title", "content")


@dataclass(frozen=True)
class ExtractedText:
    """Normalized text fields for one entity."""

    title: str
    content: str
    tags: str


def rich_text_to_plain(value: Any) -> str:
    """Plain text from a TipTap document given as JSON (str or dict) or HTML."""
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return collapse_whitespace(" ".join(_tiptap_text(value)))
    if not isinstance(value, str):
        return collapse_whitespace(str(value))
    stripped = value.strip()
    if stripped[:1] in ("{", "["):
        try:
            doc = json.loads(stripped)
        except json.JSONDecodeError:
            logger.debug("Rich text is not valid JSON, treating it as HTML")
        else:
            return collapse_whitespace(" ".join(_tiptap_text(doc)))
    return strip_html(value)


def _tiptap_text(node: Any) -> Iterator[str]:
    if isinstance(node, list):
        for child in node:
            yield from _tiptap_text(child)
    elif isinstance(node, dict):
        text = node.get("text")
        if isinstance(text, str):
            yield text
        yield from _tiptap_text(node.get("content", []))


def canvas_snapshot_text(snapshot: Any) -> str:
    """Collect user-visible strings from a tldraw store snapshot."""
    if not snapshot:
        return ""
    if isinstance(snapshot, str):
        try:
            snapshot = json.loads(snapshot)
        except json.JSONDecodeError:
            return strip_html(snapshot)
    return collapse_whitespace(" ".join(_canvas_strings(snapshot)))


def _canvas_strings(node: Any) -> Iterator[str]:
    if isinstance(node, list):
        for child in node:
            yield from _canvas_strings(child)
    elif isinstance(node, dict):
        for key, value in node.items():
            if key in _CANVAS_TEXT_KEYS and isinstance(value, str):
                yield rich_text_to_plain(value)
            elif isinstance(value, (dict, list)):
                yield from _canvas_strings(value)


def join_tags(tags: List[str]) -> str:
    """Comma-join distinct, non-blank tag names preserving order."""
    seen = []
    for tag in tags:
        name = tag.strip()
        if name and name not in seen:
            seen.append(name)
    return ", ".join(seen)


def _title(snapshot: EntitySnapshot, fallback: str = "") -> str:
    return collapse_whitespace(snapshot.title or fallback)


def _extract_card(s: EntitySnapshot) -> ExtractedText:
    return ExtractedText(
        title=_title(s),
        content=rich_text_to_plain(s.fields.get("content")),
        tags=join_tags(s.tags),
    )


def _extract_journal(s: EntitySnapshot) -> ExtractedText:
    date = s.fields.get("date") or s.entity_id
    return ExtractedText(
        title=_title(s, fallback=f"Journal: {date}"),
        content=rich_text_to_plain(s.fields.get("content")),
        tags=join_tags(s.tags),
    )


def _extract_board(s: EntitySnapshot) -> ExtractedText:
    return ExtractedText(
        title=_title(s),
        content=canvas_snapshot_text(s.fields.get("tldraw_snapshot")),
        tags=join_tags(s.tags),
    )


def _extract_project(s: EntitySnapshot) -> ExtractedText:
    return ExtractedText(
        title=_title(s),
        content=strip_html(s.fields.get("description") or ""),
        tags=join_tags(s.tags),
    )


def _extract_tag(s: EntitySnapshot) -> ExtractedText:
    name = _title(s, fallback=s.fields.get("name") or "")
    if not name:
        raise ValueError("tag has no name")
    return ExtractedText(title=name, content="", tags=name)


def _extract_file(s: EntitySnapshot) -> ExtractedText:
    filename = s.fields.get("filename") or ""
    parts = [filename, s.fields.get("mime_type") or ""]
    return ExtractedText(
        title=_title(s, fallback=filename),
        content=collapse_whitespace(" ".join(p for p in parts if p)),
        tags=join_tags(s.tags),
    )


def _extract_highlight(s: EntitySnapshot) -> ExtractedText:
    parts = [
        rich_text_to_plain(s.fields.get("content")),
        rich_text_to_plain(s.fields.get("note")),
    ]
    return ExtractedText(
        title=_title(s),
        content=collapse_whitespace(" ".join(p for p in parts if p)),
        tags=join_tags(s.tags),
    )


EXTRACTORS: Dict[EntityType, Callable[[EntitySnapshot], ExtractedText]] = {
    EntityType.CARD: _extract_card,
    EntityType.JOURNAL: _extract_journal,
    EntityType.BOARD: _extract_board,
    EntityType.PROJECT: _extract_project,
    EntityType.TAG: _extract_tag,
    EntityType.FILE: _extract_file,
    EntityType.HIGHLIGHT: _extract_highlight,
}


def extract_text(snapshot: EntitySnapshot) -> ExtractedText:
    """Run the extractor registered for the snapshot's entity type.

    Raises:
        ValueError: If the snapshot lacks data its type requires.
        RecursionError: If an editor document is nested too deeply to walk.
        KeyError: If no extractor is registered for the type.
    """
    return EXTRACTORS[snapshot.entity_type](snapshot)

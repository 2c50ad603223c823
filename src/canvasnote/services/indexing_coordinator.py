"""Keeps the search index in sync with primary entity mutations.

The coordinator is the only component that writes to the search index:
incremental changes arrive through ``on_entity_changed`` and full rebuilds
through ``rebuild_all``.
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Mapping, Optional, Sequence, Union

from pydantic import ValidationError

from canvasnote.exceptions import (CanvasNoteError, ErrorCode,
                                   InvalidInputError, StorageUnavailableError)
from canvasnote.models.schema import (EntitySnapshot, EntityType, IndexRecord,
                                      RebuildReport, SyncResult, make_record,
                                      parse_entity_key, parse_entity_type)
from canvasnote.observability import traced
from canvasnote.services.content_extraction import extract_text
from canvasnote.storage.search_index import SearchIndex
from canvasnote.utils import now_millis

logger = logging.getLogger(__name__)

SnapshotLike = Union[EntitySnapshot, Mapping[str, Any]]


@dataclass(frozen=True)
class SnapshotSource:
    """Loader of every current snapshot of one entity type.

    Attributes:
        entity_type: Type all loaded snapshots must have.
        load: Callable returning an iterable of snapshots, typically a
            full scan over the type's table.
    """

    entity_type: EntityType
    load: Callable[[], Iterable[SnapshotLike]]


class IndexingCoordinator:
    """Single synchronization point between entity storage and the index."""

    def __init__(self, search_index: SearchIndex):
        self.search_index = search_index

    def derive_record(self, snapshot: SnapshotLike) -> IndexRecord:
        """Normalize a snapshot into an index record.

        Raises:
            InvalidInputError: If the snapshot cannot be turned into a record.
        """
        snapshot = _coerce_snapshot(snapshot)
        try:
            extracted = extract_text(snapshot)
        except (ValueError, KeyError, TypeError, RecursionError) as e:
            raise InvalidInputError(
                f"Cannot derive index record for "
                f"{snapshot.entity_type.value}:{snapshot.entity_id}: {e}",
                field="new_state",
                value=snapshot.entity_id,
            ) from e
        return make_record(
            entity_type=snapshot.entity_type,
            entity_id=snapshot.entity_id,
            title=extracted.title,
            content=extracted.content,
            tags=extracted.tags,
            updated_at=snapshot.updated_at
            if snapshot.updated_at is not None
            else now_millis(),
        )

    def on_entity_changed(
        self,
        entity_type: Union[EntityType, str],
        entity_id: str,
        new_state: Optional[SnapshotLike] = None,
    ) -> SyncResult:
        """Apply one entity mutation to the index.

        A present, non-deleted ``new_state`` is indexed; an absent or
        soft-deleted one removes the entity from the index.

        Returns:
            SyncResult; ``warning`` is set when the change could not be
            indexed for a reason local to this entity.

        Raises:
            InvalidInputError: If the key is malformed or does not match
                ``new_state``.
            StorageUnavailableError: If the index storage is unavailable.
        """
        etype, eid = parse_entity_key(entity_type, entity_id)
        snapshot = _coerce_snapshot(new_state) if new_state is not None else None
        if snapshot is not None and snapshot.key != (etype, eid):
            raise InvalidInputError(
                f"Snapshot {snapshot.entity_type.value}:{snapshot.entity_id} "
                f"does not match {etype.value}:{eid}",
                field="new_state",
                value=snapshot.entity_id,
                code=ErrorCode.INVALID_ENTITY_KEY,
            )

        if snapshot is None or snapshot.deleted:
            try:
                removed = self.search_index.remove(etype, eid)
            except StorageUnavailableError:
                raise
            except CanvasNoteError as e:
                return self._warn("remove", etype, eid, e)
            return SyncResult(action="remove", entity_type=etype, entity_id=eid, changed=removed)

        try:
            record = self.derive_record(snapshot)
            self.search_index.upsert(record)
        except StorageUnavailableError:
            raise
        except CanvasNoteError as e:
            return self._warn("upsert", etype, eid, e)
        return SyncResult(action="upsert", entity_type=etype, entity_id=eid, changed=True)

    @traced("rebuild_all")
    def rebuild_all(self, sources: Sequence[SnapshotSource]) -> RebuildReport:
        """Rebuild the whole index from one snapshot source per entity type.

        Records that fail derivation are skipped and reported. A source that
        fails to load aborts the rebuild before the index is touched.

        Raises:
            InvalidInputError: If two sources share an entity type.
            StorageUnavailableError: If a source or the index storage fails.
        """
        seen = set()
        for source in sources:
            etype = parse_entity_type(source.entity_type)
            if etype in seen:
                raise InvalidInputError(
                    f"Duplicate snapshot source for '{etype.value}'",
                    field="sources",
                    value=etype.value,
                )
            seen.add(etype)

        report = RebuildReport()
        records: List[IndexRecord] = []
        for source in sources:
            etype = parse_entity_type(source.entity_type)
            report.counts[etype] = 0
            for item in _drain(source, etype):
                try:
                    snapshot = _coerce_snapshot(item)
                    if snapshot.entity_type is not etype:
                        raise InvalidInputError(
                            f"{snapshot.entity_type.value} snapshot in {etype.value} source",
                            field="entity_type",
                            value=snapshot.entity_type.value,
                            code=ErrorCode.INVALID_ENTITY_TYPE,
                        )
                    if snapshot.deleted:
                        report.skipped_deleted += 1
                        continue
                    records.append(self.derive_record(snapshot))
                    report.counts[etype] += 1
                except InvalidInputError as e:
                    entity_id = _item_id(item)
                    logger.warning(
                        f"Skipping {etype.value}:{entity_id} during rebuild: {e.message}"
                    )
                    report.failures.append((etype, entity_id, e.message))

        report.total_written = self.search_index.rebuild(records)
        logger.info(
            f"Rebuilt search index: {report.total_written} records, "
            f"{report.failed_count} failures, {report.skipped_deleted} deleted skipped"
        )
        return report

    def _warn(
        self, action: str, etype: EntityType, eid: str, error: CanvasNoteError
    ) -> SyncResult:
        logger.warning(f"Index {action} failed for {etype.value}:{eid}: {error}")
        return SyncResult(
            action=action,
            entity_type=etype,
            entity_id=eid,
            changed=False,
            warning=error.message,
        )


def _coerce_snapshot(value: SnapshotLike) -> EntitySnapshot:
    if isinstance(value, EntitySnapshot):
        return value
    if isinstance(value, Mapping):
        try:
            return EntitySnapshot(**value)
        except ValidationError as e:
            first = e.errors()[0] if e.errors() else {}
            loc = ".".join(str(part) for part in first.get("loc", ()))
            raise InvalidInputError(
                f"Invalid entity snapshot: {first.get('msg', str(e))}",
                field=loc or "new_state",
                value=value.get("entity_id"),
            ) from e
    raise InvalidInputError(
        f"Expected an EntitySnapshot, got {type(value).__name__}",
        field="new_state",
    )


def _drain(source: SnapshotSource, etype: EntityType) -> Iterable[SnapshotLike]:
    """Iterate a source, reporting loader failures as source unavailability."""
    try:
        iterator = iter(source.load())
    except Exception as e:
        raise _source_failure(etype, e) from e
    while True:
        try:
            item = next(iterator)
        except StopIteration:
            return
        except Exception as e:
            raise _source_failure(etype, e) from e
        yield item


def _source_failure(etype: EntityType, error: Exception) -> StorageUnavailableError:
    logger.error(f"Snapshot source for {etype.value} failed: {error}")
    return StorageUnavailableError(
        f"Snapshot source for '{etype.value}' failed",
        operation="rebuild_all",
        code=ErrorCode.SOURCE_UNAVAILABLE,
        original_error=error,
    )


def _item_id(item: Any) -> str:
    if isinstance(item, EntitySnapshot):
        return item.entity_id
    if isinstance(item, Mapping):
        return str(item.get("entity_id", "?"))
    return "?"

"""Data models for canvasnote-core."""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, Field, ValidationError, field_validator

from canvasnote.exceptions import ErrorCode, InvalidInputError
from canvasnote.utils import now_millis

# Control characters are never valid in an asset filename
UNSAFE_ASSET_NAME_PATTERN = re.compile(r"[\x00-\x1f\x7f]")


class EntityType(str, Enum):
    """Kinds of entities that can appear in the search index."""

    CARD = "card"  # Rich-text card
    JOURNAL = "journal"  # Daily journal entry, keyed by date
    BOARD = "board"  # Infinite canvas
    PROJECT = "project"  # Top-level container of boards
    TAG = "tag"  # Tag definition
    FILE = "file"  # Imported file (pdf, image, ...)
    HIGHLIGHT = "highlight"  # PDF or card annotation


class FileType(str, Enum):
    """Kinds of files the asset store accepts."""

    PDF = "pdf"
    IMAGE = "image"
    VIDEO = "video"
    DOCUMENT = "document"
    OTHER = "other"

    @classmethod
    def coerce(cls, value: Union[str, "FileType", None]) -> "FileType":
        """Map any caller-supplied type to a FileType, defaulting to OTHER."""
        if isinstance(value, FileType):
            return value
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return cls.OTHER


class AssetCategory(str, Enum):
    """Directories under assets/ that files are routed into."""

    PDFS = "pdfs"
    IMAGES = "images"
    OTHER = "other"

    @classmethod
    def for_file_type(cls, file_type: FileType) -> "AssetCategory":
        """Route a file type to its category directory."""
        if file_type is FileType.PDF:
            return cls.PDFS
        if file_type is FileType.IMAGE:
            return cls.IMAGES
        return cls.OTHER


IndexKey = Tuple[EntityType, str]


def parse_entity_type(entity_type: Any) -> EntityType:
    """Validate an entity type given as an enum member or its string value.

    Raises:
        InvalidInputError: If the type is empty or not a known EntityType.
    """
    if isinstance(entity_type, EntityType):
        return entity_type
    if not entity_type or not str(entity_type).strip():
        raise InvalidInputError(
            "entity_type is required",
            field="entity_type",
            code=ErrorCode.INVALID_ENTITY_KEY,
        )
    try:
        return EntityType(str(entity_type).strip().lower())
    except ValueError:
        raise InvalidInputError(
            f"Unsupported entity type '{entity_type}'",
            field="entity_type",
            value=entity_type,
            code=ErrorCode.INVALID_ENTITY_TYPE,
        ) from None


def parse_entity_key(entity_type: Any, entity_id: Any) -> IndexKey:
    """Validate an (entity_type, entity_id) pair.

    Raises:
        InvalidInputError: If the type is empty or unknown, or the id is empty.
    """
    etype = parse_entity_type(entity_type)
    if not isinstance(entity_id, str) or not entity_id.strip():
        raise InvalidInputError(
            "entity_id is required",
            field="entity_id",
            value=entity_id,
            code=ErrorCode.INVALID_ENTITY_KEY,
        )
    return etype, entity_id


class IndexRecord(BaseModel):
    """Denormalized search representation of one entity."""

    entity_type: EntityType = Field(..., description="Type of the source entity")
    entity_id: str = Field(..., description="ID of the source entity within its type")
    title: str = Field(default="", description="Display title, may be empty")
    content: str = Field(default="", description="Normalized text body")
    tags: str = Field(default="", description="Comma-joined tag names")
    updated_at: int = Field(
        default_factory=now_millis,
        ge=0,
        description="Millisecond epoch of the last index write",
    )

    model_config = {"extra": "forbid", "frozen": True}

    @field_validator("entity_id")
    @classmethod
    def validate_entity_id(cls, v: str) -> str:
        """Entity IDs must not be blank."""
        if not v or not v.strip():
            raise ValueError("entity_id cannot be empty")
        return v

    @property
    def key(self) -> IndexKey:
        """Primary key of the record across the whole index."""
        return (self.entity_type, self.entity_id)


def make_record(**fields: Any) -> IndexRecord:
    """Build an IndexRecord, reporting validation failures as InvalidInputError."""
    try:
        return IndexRecord(**fields)
    except ValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        loc = ".".join(str(part) for part in first.get("loc", ()))
        raise InvalidInputError(
            f"Invalid index record: {first.get('msg', str(e))}",
            field=loc or None,
            value=fields.get(loc) if loc else None,
            code=ErrorCode.INVALID_ENTITY_KEY
            if loc in ("entity_type", "entity_id")
            else ErrorCode.INVALID_INPUT,
        ) from e


class SearchResult(BaseModel):
    """One ranked match produced by a query. Lower rank is more relevant."""

    entity_type: EntityType
    entity_id: str
    title: str
    snippet: str
    rank: float
    updated_at: int

    model_config = {"frozen": True}


class EntitySnapshot(BaseModel):
    """Serialized state of a primary entity as handed over by the CRUD layer.

    ``fields`` carries the raw columns the content extractor for this type
    knows how to read (``content``, ``description``, ``tldraw_snapshot`` ...).
    """

    entity_type: EntityType
    entity_id: str
    title: Optional[str] = None
    fields: Dict[str, Any] = Field(default_factory=dict)
    tags: List[str] = Field(default_factory=list)
    updated_at: Optional[int] = Field(default=None, ge=0)
    deleted: bool = Field(default=False, description="Soft-deleted in primary storage")

    model_config = {"extra": "forbid"}

    @property
    def key(self) -> IndexKey:
        return (self.entity_type, self.entity_id)


class AssetLocator(BaseModel):
    """Relative path of a stored asset: ``<category>/<unique-filename>``."""

    category: AssetCategory
    filename: str

    model_config = {"frozen": True}

    @field_validator("filename")
    @classmethod
    def validate_filename(cls, v: str) -> str:
        """Reject names that could escape their category directory."""
        if not v:
            raise ValueError("filename cannot be empty")
        if "/" in v or "\\" in v:
            raise ValueError("filename cannot contain path separators")
        if v in (".", "..") or v.startswith(".."):
            raise ValueError("filename cannot reference a parent directory")
        if UNSAFE_ASSET_NAME_PATTERN.search(v):
            raise ValueError("filename contains control characters")
        return v

    @classmethod
    def parse(cls, value: Union[str, "AssetLocator"]) -> "AssetLocator":
        """Parse ``<category>/<filename>``.

        Raises:
            InvalidInputError: If the locator is malformed.
        """
        if isinstance(value, AssetLocator):
            return value
        if not isinstance(value, str) or value.count("/") != 1:
            raise InvalidInputError(
                "Asset locator must have the form '<category>/<filename>'",
                field="locator",
                value=value,
                code=ErrorCode.INVALID_LOCATOR,
            )
        category, filename = value.split("/", 1)
        try:
            return cls(category=category, filename=filename)
        except ValidationError as e:
            raise InvalidInputError(
                f"Invalid asset locator: {e.errors()[0]['msg']}",
                field="locator",
                value=value,
                code=ErrorCode.PATH_TRAVERSAL_DETECTED
                if ".." in filename
                else ErrorCode.INVALID_LOCATOR,
            ) from e

    def __str__(self) -> str:
        return f"{self.category.value}/{self.filename}"


@dataclass
class SyncResult:
    """Outcome of synchronizing one entity change into the index.

    Attributes:
        action: Whether the change was applied as an upsert or a remove.
        entity_type: Type of the synchronized entity.
        entity_id: ID of the synchronized entity.
        changed: Whether the index content changed.
        warning: Non-fatal problem that kept the change from being indexed.
    """

    action: Literal["upsert", "remove"]
    entity_type: EntityType
    entity_id: str
    changed: bool
    warning: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.warning is None


@dataclass
class RebuildReport:
    """Summary of a full index rebuild."""

    counts: Dict[EntityType, int] = field(default_factory=dict)
    failures: List[Tuple[EntityType, str, str]] = field(default_factory=list)
    skipped_deleted: int = 0
    total_written: int = 0

    @property
    def failed_count(self) -> int:
        return len(self.failures)

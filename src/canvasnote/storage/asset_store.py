"""Managed asset directory for files imported into boards and cards.

Files are routed by type into ``assets/pdfs``, ``assets/images`` or
``assets/other`` under the application data directory and named
``<millisecond-timestamp>_<name>``. Every ingestion writes to a staging file
under ``temp/`` and publishes it with one atomic rename, so a final name
either holds the complete file or does not exist.
"""
import base64
import binascii
import logging
import mimetypes
import os
import shutil
import threading
import uuid
from pathlib import Path
from typing import BinaryIO, Callable, Optional, Union

from canvasnote.exceptions import (ErrorCode, IOFailureError,
                                   InvalidEncodingError, InvalidInputError,
                                   NotFoundError)
from canvasnote.models.schema import AssetCategory, AssetLocator, FileType
from canvasnote.observability import traced
from canvasnote.utils import now_millis, sanitize_filename

logger = logging.getLogger(__name__)

ASSETS_DIR = "assets"
BACKUPS_DIR = "backups"
TEMP_DIR = "temp"

# Name used when a filename hint sanitizes to nothing
PLACEHOLDER_FILENAME = "pasted_file"

# Give up bumping the timestamp after this many taken names
MAX_NAME_ATTEMPTS = 1000

_MIME_OVERRIDES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".svg": "image/svg+xml",
    ".bmp": "image/bmp",
    ".pdf": "application/pdf",
}

LocatorLike = Union[str, AssetLocator]


def ensure_layout(root: Union[str, Path]) -> Path:
    """Create the data directory skeleton under ``root``.

    Idempotent; safe to call on every startup.

    Returns:
        The root path.

    Raises:
        IOFailureError: If a directory cannot be created.
    """
    root = Path(root)
    layout = [root / ASSETS_DIR / c.value for c in AssetCategory]
    layout += [root / BACKUPS_DIR, root / TEMP_DIR]
    for directory in layout:
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise IOFailureError(
                f"Failed to create directory {directory}",
                operation="ensure_layout",
                path=str(directory),
                code=ErrorCode.WRITE_FAILED,
                original_error=e,
            ) from e
    logger.debug(f"Data directory layout ready at {root}")
    return root


class AssetStore:
    """Ingests, resolves and deletes asset files.

    The store keeps no record of which entity refers to which locator.

    Args:
        root: Application data directory.
        clock: Millisecond clock used for filename prefixes.
    """

    def __init__(
        self,
        root: Union[str, Path],
        clock: Callable[[], int] = now_millis,
    ) -> None:
        self.root = Path(root)
        self._clock = clock
        # Serializes name reservation within this process
        self._name_lock = threading.Lock()

    @property
    def assets_dir(self) -> Path:
        return self.root / ASSETS_DIR

    @property
    def temp_dir(self) -> Path:
        return self.root / TEMP_DIR

    def ensure_layout(self) -> Path:
        return ensure_layout(self.root)

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    @traced("asset_ingest_path")
    def ingest_from_path(
        self, source_path: Union[str, Path], file_type: Union[str, FileType, None]
    ) -> AssetLocator:
        """Copy an existing file into the store.

        The source is left untouched.

        Raises:
            NotFoundError: If ``source_path`` is not an existing regular file.
            IOFailureError: If the copy fails.
        """
        source = Path(source_path)
        if not source.is_file():
            raise NotFoundError(
                f"Source file not found: {source}",
                path=str(source),
                code=ErrorCode.SOURCE_FILE_NOT_FOUND,
            )
        category = AssetCategory.for_file_type(FileType.coerce(file_type))

        def write(dest: BinaryIO) -> None:
            with open(source, "rb") as src:
                shutil.copyfileobj(src, dest)

        locator = self._store(category, source.name, write, operation="copy")
        logger.info(f"Copied {source.name} into assets as {locator}")
        return locator

    @traced("asset_ingest_bytes")
    def ingest_from_bytes(
        self,
        data: str,
        filename_hint: Optional[str],
        file_type: Union[str, FileType, None],
    ) -> AssetLocator:
        """Decode a base64 payload and store it as a new file.

        ``data`` may carry a ``data:<mime>;base64,`` prefix.

        Raises:
            InvalidEncodingError: If ``data`` is not valid base64.
            IOFailureError: If the write fails.
        """
        payload = decode_payload(data, filename_hint)
        name = sanitize_filename(filename_hint or "") or PLACEHOLDER_FILENAME
        category = AssetCategory.for_file_type(FileType.coerce(file_type))

        def write(dest: BinaryIO) -> None:
            dest.write(payload)

        locator = self._store(category, name, write, operation="write")
        logger.info(f"Saved {len(payload)} bytes into assets as {locator}")
        return locator

    # ------------------------------------------------------------------
    # Lookup and deletion
    # ------------------------------------------------------------------

    def resolve_path(self, locator: LocatorLike) -> Path:
        """Absolute path for a locator. Performs no I/O."""
        parsed = AssetLocator.parse(locator)
        return self.assets_dir / parsed.category.value / parsed.filename

    def exists(self, locator: LocatorLike) -> bool:
        return self.resolve_path(locator).is_file()

    @traced("asset_delete")
    def delete(self, locator: LocatorLike) -> bool:
        """Remove the file behind a locator.

        Returns:
            True if a file was removed, False if it was already absent.
        """
        path = self.resolve_path(locator)
        try:
            path.unlink()
        except FileNotFoundError:
            logger.debug(f"Asset already absent: {locator}")
            return False
        except IsADirectoryError as e:
            raise InvalidInputError(
                "Locator does not point to a file",
                field="locator",
                value=str(locator),
                code=ErrorCode.INVALID_LOCATOR,
            ) from e
        except OSError as e:
            raise IOFailureError(
                f"Failed to delete asset {locator}",
                operation="delete",
                path=str(path),
                code=ErrorCode.DELETE_FAILED,
                original_error=e,
            ) from e
        logger.info(f"Deleted asset {locator}")
        return True

    def guess_mime_type(self, locator: LocatorLike) -> str:
        """MIME type from the file extension, ``application/octet-stream`` if unknown."""
        suffix = Path(AssetLocator.parse(locator).filename).suffix.lower()
        if suffix in _MIME_OVERRIDES:
            return _MIME_OVERRIDES[suffix]
        guessed, _ = mimetypes.guess_type(f"file{suffix}")
        return guessed or "application/octet-stream"

    def to_data_url(self, locator: LocatorLike) -> str:
        """Read an asset and return it as a base64 ``data:`` URL.

        Raises:
            NotFoundError: If the asset does not exist.
            IOFailureError: If it cannot be read.
        """
        path = self.resolve_path(locator)
        try:
            raw = path.read_bytes()
        except FileNotFoundError as e:
            raise NotFoundError(
                f"Asset not found: {locator}",
                path=str(locator),
                code=ErrorCode.ASSET_NOT_FOUND,
            ) from e
        except OSError as e:
            raise IOFailureError(
                f"Failed to read asset {locator}",
                operation="read",
                path=str(path),
                code=ErrorCode.READ_FAILED,
                original_error=e,
            ) from e
        encoded = base64.b64encode(raw).decode("ascii")
        return f"data:{self.guess_mime_type(locator)};base64,{encoded}"

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _store(
        self,
        category: AssetCategory,
        name: str,
        write: Callable[[BinaryIO], None],
        operation: str,
    ) -> AssetLocator:
        """Stage, fsync and publish a new file under a fresh name."""
        category_dir = self.assets_dir / category.value
        for directory in (category_dir, self.temp_dir):
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise IOFailureError(
                    f"Failed to create directory {directory}",
                    operation="mkdir",
                    path=str(directory),
                    code=ErrorCode.WRITE_FAILED,
                    original_error=e,
                ) from e

        staging_path = self.temp_dir / f".{uuid.uuid4().hex}.part"
        try:
            with open(staging_path, "wb") as dest:
                write(dest)
                dest.flush()
                os.fsync(dest.fileno())

            with self._name_lock:
                locator = self._reserve_name(category, category_dir, name)
                os.replace(staging_path, category_dir / locator.filename)
        except OSError as e:
            _discard(staging_path)
            raise IOFailureError(
                f"Failed to {operation} {name} into assets/{category.value}",
                operation=operation,
                path=str(category_dir / name),
                code=ErrorCode.COPY_FAILED if operation == "copy" else ErrorCode.WRITE_FAILED,
                original_error=e,
            ) from e
        except BaseException:
            _discard(staging_path)
            raise

        return locator

    def _reserve_name(
        self, category: AssetCategory, category_dir: Path, name: str
    ) -> AssetLocator:
        """Pick ``<ms>_<name>``, bumping the timestamp while the name is taken."""
        stamp = self._clock()
        for _ in range(MAX_NAME_ATTEMPTS):
            filename = f"{stamp}_{name}"
            if not (category_dir / filename).exists():
                return AssetLocator(category=category, filename=filename)
            stamp += 1
        raise IOFailureError(
            f"No free filename for {name} after {MAX_NAME_ATTEMPTS} attempts",
            operation="reserve_name",
            path=str(category_dir / name),
            code=ErrorCode.WRITE_FAILED,
        )


def decode_payload(data: str, filename_hint: Optional[str] = None) -> bytes:
    """Strictly decode base64 text, tolerating a ``data:`` URL prefix.

    Raises:
        InvalidEncodingError: If the payload is not valid base64.
    """
    if not isinstance(data, str):
        raise InvalidEncodingError("Payload must be base64 text", filename=filename_hint)
    body = data.strip()
    if body.startswith("data:"):
        header, sep, body = body.partition(",")
        if not sep or ";base64" not in header:
            raise InvalidEncodingError(
                "Data URL payload is not base64 encoded", filename=filename_hint
            )
    body = "".join(body.split())
    try:
        return base64.b64decode(body, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidEncodingError(
            f"Invalid base64 payload: {e}", filename=filename_hint
        ) from e


def _discard(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Failed to clean up staging file {path}: {e}")

"""Tests for the managed asset directory."""
import base64
import re
from unittest.mock import patch

import pytest

from canvasnote.exceptions import (ErrorCode, InvalidEncodingError,
                                   InvalidInputError, IOFailureError,
                                   NotFoundError)
from canvasnote.models.schema import AssetCategory, AssetLocator
from canvasnote.storage.asset_store import (PLACEHOLDER_FILENAME, AssetStore,
                                            decode_payload, ensure_layout)
from tests.fakes import FakeClock


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def all_files(root):
    return sorted(p for p in root.rglob("*") if p.is_file())


@pytest.fixture
def source_file(tmp_path):
    path = tmp_path / "incoming" / "notes.txt"
    path.parent.mkdir()
    path.write_bytes(b"0123456789")
    return path


@pytest.fixture
def fixed_store(test_config):
    """Asset store whose clock never advances on its own."""
    store = AssetStore(test_config.data_dir, clock=FakeClock(1_700_000_000_000))
    store.ensure_layout()
    return store


class TestLayout:
    """Tests for the data directory skeleton."""

    def test_creates_directories(self, tmp_path):
        root = tmp_path / "data"
        assert ensure_layout(root) == root
        for rel in ("assets/pdfs", "assets/images", "assets/other", "backups", "temp"):
            assert (root / rel).is_dir()

    def test_is_idempotent(self, tmp_path):
        root = tmp_path / "data"
        ensure_layout(root)
        (root / "assets" / "pdfs" / "keep.pdf").write_bytes(b"x")
        ensure_layout(root)
        assert (root / "assets" / "pdfs" / "keep.pdf").read_bytes() == b"x"

    def test_unwritable_root_raises(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")
        with pytest.raises(IOFailureError):
            ensure_layout(blocker)


class TestIngestFromPath:
    """Copying existing files into the store."""

    def test_copy_roundtrip(self, asset_store, source_file):
        locator = asset_store.ingest_from_path(source_file, "other")

        assert re.fullmatch(r"other/\d+_notes\.txt", str(locator))
        path = asset_store.resolve_path(locator)
        assert path.parent == asset_store.assets_dir / "other"
        assert path.read_bytes() == b"0123456789"
        assert source_file.read_bytes() == b"0123456789"

        assert asset_store.delete(locator) is True
        assert not path.exists()
        assert asset_store.delete(locator) is False

    def test_missing_source_raises_and_creates_nothing(self, asset_store, tmp_path):
        with pytest.raises(NotFoundError) as exc_info:
            asset_store.ingest_from_path(tmp_path / "nope.pdf", "pdf")
        assert exc_info.value.code is ErrorCode.SOURCE_FILE_NOT_FOUND
        assert all_files(asset_store.root) == []

    def test_directory_source_is_not_a_file(self, asset_store, tmp_path):
        with pytest.raises(NotFoundError):
            asset_store.ingest_from_path(tmp_path, "other")

    def test_same_file_twice_gets_distinct_locators(self, asset_store, tmp_path):
        pdf = tmp_path / "paper.pdf"
        pdf.write_bytes(b"%PDF-1.7")
        first = asset_store.ingest_from_path(pdf, "pdf")
        second = asset_store.ingest_from_path(pdf, "pdf")
        assert first != second
        assert first.category is second.category is AssetCategory.PDFS
        assert asset_store.exists(first) and asset_store.exists(second)

    def test_name_collision_bumps_timestamp(self, fixed_store, source_file):
        first = fixed_store.ingest_from_path(source_file, "other")
        second = fixed_store.ingest_from_path(source_file, "other")
        assert first.filename == "1700000000000_notes.txt"
        assert second.filename == "1700000000001_notes.txt"

    @pytest.mark.parametrize("file_type, category", [
        ("pdf", "pdfs"),
        ("image", "images"),
        ("IMAGE", "images"),
        ("video", "other"),
        ("document", "other"),
        ("spreadsheet", "other"),
        (None, "other"),
    ])
    def test_routing_by_file_type(self, asset_store, source_file, file_type, category):
        locator = asset_store.ingest_from_path(source_file, file_type)
        assert locator.category.value == category

    def test_no_staging_files_left_behind(self, asset_store, source_file):
        asset_store.ingest_from_path(source_file, "other")
        assert list(asset_store.temp_dir.iterdir()) == []

    def test_failed_publish_leaves_nothing(self, asset_store, source_file):
        with patch("canvasnote.storage.asset_store.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(IOFailureError) as exc_info:
                asset_store.ingest_from_path(source_file, "other")

        assert exc_info.value.code is ErrorCode.COPY_FAILED
        assert exc_info.value.details["operation"] == "copy"
        assert list(asset_store.temp_dir.iterdir()) == []
        assert list((asset_store.assets_dir / "other").iterdir()) == []


class TestIngestFromBytes:
    """Decoding and storing pasted payloads."""

    def test_bytes_roundtrip_with_sanitized_name(self, asset_store):
        locator = asset_store.ingest_from_bytes(b64(b"hello"), "my photo (1).png", "image")
        assert locator.category is AssetCategory.IMAGES
        assert locator.filename.endswith("_myphoto1.png")
        assert asset_store.resolve_path(locator).read_bytes() == b"hello"

    def test_data_url_prefix_is_accepted(self, asset_store):
        data = "data:image/png;base64," + b64(b"\x89PNG")
        locator = asset_store.ingest_from_bytes(data, "shot.png", "image")
        assert asset_store.resolve_path(locator).read_bytes() == b"\x89PNG"

    @pytest.mark.parametrize("hint", [None, "", "日本", "()"])
    def test_unusable_hint_uses_placeholder(self, asset_store, hint):
        locator = asset_store.ingest_from_bytes(b64(b"x"), hint, "other")
        assert locator.filename.endswith(f"_{PLACEHOLDER_FILENAME}")

    def test_traversal_in_hint_is_neutralized(self, asset_store):
        locator = asset_store.ingest_from_bytes(b64(b"x"), "../../etc/passwd", "other")
        path = asset_store.resolve_path(locator)
        assert path.parent == asset_store.assets_dir / "other"
        assert path.is_file()

    def test_invalid_base64_raises_and_creates_nothing(self, asset_store):
        with pytest.raises(InvalidEncodingError) as exc_info:
            asset_store.ingest_from_bytes("not base64!!", "a.png", "image")
        assert isinstance(exc_info.value, InvalidInputError)
        assert exc_info.value.code is ErrorCode.INVALID_ENCODING
        assert all_files(asset_store.root) == []

    def test_empty_payload_is_an_empty_file(self, asset_store):
        locator = asset_store.ingest_from_bytes("", "empty.txt", "other")
        assert asset_store.resolve_path(locator).read_bytes() == b""

    def test_decode_payload_rejects_non_base64_data_url(self):
        with pytest.raises(InvalidEncodingError):
            decode_payload("data:text/plain,hello")
        assert decode_payload("aGVs\nbG8=") == b"hello"

    def test_failed_write_removes_staging_file(self, asset_store):
        with patch("canvasnote.storage.asset_store.os.fsync", side_effect=OSError("io error")):
            with pytest.raises(IOFailureError) as exc_info:
                asset_store.ingest_from_bytes(b64(b"data"), "a.bin", "other")
        assert exc_info.value.code is ErrorCode.WRITE_FAILED
        assert list(asset_store.temp_dir.iterdir()) == []
        assert list((asset_store.assets_dir / "other").iterdir()) == []


class TestResolveAndDelete:
    """Locator handling."""

    def test_resolve_performs_no_io(self, asset_store):
        path = asset_store.resolve_path("pdfs/123_missing.pdf")
        assert path == asset_store.assets_dir / "pdfs" / "123_missing.pdf"
        assert not asset_store.exists("pdfs/123_missing.pdf")

    def test_accepts_locator_objects(self, asset_store):
        locator = AssetLocator(category=AssetCategory.IMAGES, filename="1_a.png")
        assert asset_store.resolve_path(locator) == asset_store.resolve_path("images/1_a.png")

    @pytest.mark.parametrize("bad", [
        "",
        "noslash",
        "../etc/passwd",
        "pdfs/../secret",
        "pdfs/..",
        "videos/a.mp4",
        "pdfs/",
        "pdfs/a\x00b",
    ])
    def test_malformed_locators_are_rejected(self, asset_store, bad):
        with pytest.raises(InvalidInputError):
            asset_store.resolve_path(bad)

    def test_delete_malformed_locator_raises(self, asset_store):
        with pytest.raises(InvalidInputError):
            asset_store.delete("../x")

    def test_delete_directory_is_rejected(self, asset_store):
        (asset_store.assets_dir / "other" / "1_dir").mkdir()
        with pytest.raises((InvalidInputError, IOFailureError)):
            asset_store.delete("other/1_dir")


class TestMimeAndDataUrl:
    """MIME guessing and data URL export."""

    @pytest.mark.parametrize("locator, mime", [
        ("images/1_a.png", "image/png"),
        ("images/1_a.JPG", "image/jpeg"),
        ("pdfs/1_a.pdf", "application/pdf"),
        ("other/1_a.zzqx", "application/octet-stream"),
        ("other/1_noext", "application/octet-stream"),
    ])
    def test_guess_mime_type(self, asset_store, locator, mime):
        assert asset_store.guess_mime_type(locator) == mime

    def test_to_data_url(self, asset_store):
        locator = asset_store.ingest_from_bytes(b64(b"\x89PNG"), "a.png", "image")
        assert asset_store.to_data_url(locator) == "data:image/png;base64," + b64(b"\x89PNG")

    def test_to_data_url_missing(self, asset_store):
        with pytest.raises(NotFoundError) as exc_info:
            asset_store.to_data_url("images/1_missing.png")
        assert exc_info.value.code is ErrorCode.ASSET_NOT_FOUND

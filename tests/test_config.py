"""Tests for configuration loading."""
from pathlib import Path

import pytest
from pydantic import ValidationError

from canvasnote.config import CanvasNoteConfig


class TestCanvasNoteConfig:
    def test_env_overrides(self, monkeypatch, tmp_path):
        monkeypatch.setenv("CANVASNOTE_DATA_DIR", str(tmp_path))
        monkeypatch.setenv("CANVASNOTE_SEARCH_MAX_RESULTS", "25")
        monkeypatch.setenv("CANVASNOTE_TITLE_WEIGHT", "5")
        cfg = CanvasNoteConfig()
        assert cfg.data_dir == tmp_path
        assert cfg.search_max_results == 25
        assert cfg.title_weight == 5.0

    def test_db_url_resolves_against_data_dir(self, tmp_path):
        cfg = CanvasNoteConfig(data_dir=tmp_path, database_path=Path("db/search.db"))
        assert cfg.get_db_url() == f"sqlite:///{tmp_path / 'db' / 'search.db'}"
        assert (tmp_path / "db").is_dir()

    def test_absolute_database_path_is_kept(self, tmp_path):
        cfg = CanvasNoteConfig(data_dir=tmp_path / "data", database_path=tmp_path / "x.db")
        assert cfg.get_absolute_path(cfg.database_path) == tmp_path / "x.db"

    @pytest.mark.parametrize("field", [
        "search_max_results", "search_default_limit", "snippet_tokens", "title_weight",
    ])
    def test_non_positive_values_rejected(self, field):
        with pytest.raises(ValidationError):
            CanvasNoteConfig(**{field: 0})

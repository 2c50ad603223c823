"""Configuration module for canvasnote-core."""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from canvasnote import __version__

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config: lives alongside the application data
_USER_ENV = Path.home() / ".canvasnote" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)


class CanvasNoteConfig(BaseModel):
    """Configuration for the search index and asset store."""

    # Application data directory (assets/, backups/, temp/ live here)
    data_dir: Path = Field(
        default_factory=lambda: Path(
            os.getenv("CANVASNOTE_DATA_DIR", str(Path.home() / ".canvasnote" / "data"))
        )
    )
    # Search index database, relative paths resolve against data_dir
    database_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("CANVASNOTE_DATABASE_PATH", "db/search.db")
        )
    )
    # Hard ceiling on results when the caller gives no limit
    search_max_results: int = Field(
        default_factory=lambda: int(
            os.getenv("CANVASNOTE_SEARCH_MAX_RESULTS", "1000")
        )
    )
    # Limit used by the search service when none is given
    search_default_limit: int = Field(
        default_factory=lambda: int(
            os.getenv("CANVASNOTE_SEARCH_DEFAULT_LIMIT", "50")
        )
    )
    snippet_tokens: int = Field(
        default_factory=lambda: int(os.getenv("CANVASNOTE_SNIPPET_TOKENS", "20"))
    )
    # Field boosts relative to content (weight 1.0)
    title_weight: float = Field(
        default_factory=lambda: float(os.getenv("CANVASNOTE_TITLE_WEIGHT", "3.0"))
    )
    tags_weight: float = Field(
        default_factory=lambda: float(os.getenv("CANVASNOTE_TAGS_WEIGHT", "2.0"))
    )
    log_level: str = Field(
        default_factory=lambda: os.getenv("CANVASNOTE_LOG_LEVEL", "INFO")
    )
    app_version: str = Field(default=__version__)

    @model_validator(mode="after")
    def _validate_search_config(self) -> "CanvasNoteConfig":
        """Reject limits and windows that would make search meaningless."""
        if self.search_max_results < 1:
            raise ValueError("search_max_results must be >= 1")
        if self.search_default_limit < 1:
            raise ValueError("search_default_limit must be >= 1")
        if self.snippet_tokens < 1:
            raise ValueError("snippet_tokens must be >= 1")
        if self.title_weight <= 0 or self.tags_weight <= 0:
            raise ValueError("field weights must be positive")
        if self.search_default_limit > self.search_max_results:
            logger.warning(
                "search_default_limit (%d) exceeds search_max_results (%d); "
                "results will be capped at the maximum",
                self.search_default_limit,
                self.search_max_results,
            )
        return self

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on data_dir."""
        if path.is_absolute():
            return path
        return self.data_dir / path

    def get_db_url(self) -> str:
        """Get the database URL for SQLite."""
        db_path = self.get_absolute_path(self.database_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{db_path}"


# Create a global config instance
config = CanvasNoteConfig()

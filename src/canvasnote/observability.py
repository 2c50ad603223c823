"""Observability utilities for canvasnote-core.

Rotating log files for the ``canvasnote`` logger tree, and per-operation
timing for index and asset calls. Timings are kept in memory for the life of
the process and reported by the ``stats`` command.
"""
import functools
import logging
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Dict, Iterator, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

DEFAULT_LOG_DIR = Path.home() / ".canvasnote" / "logs"
LOG_FILENAME = "canvasnote.log"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

F = TypeVar('F', bound=Callable[..., Any])


def _has_handler(target: logging.Logger, match: Callable[[logging.Handler], bool]) -> bool:
    return any(match(h) for h in target.handlers)


def configure_logging(
    log_dir: Optional[Union[str, Path]] = None,
    level: int = logging.INFO,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    console: bool = True,
) -> Path:
    """Send ``canvasnote.*`` log records to a rotating file.

    Calling it again with the same directory does not add a second file
    handler.

    Args:
        log_dir: Directory for ``canvasnote.log``. Defaults to ~/.canvasnote/logs/
        level: Level for the package logger and its handlers.
        max_bytes: Rotate once the file reaches this size.
        backup_count: Rotated files to keep.
        console: Also echo records to stderr.

    Returns:
        The log directory.
    """
    directory = Path(log_dir) if log_dir else DEFAULT_LOG_DIR
    directory.mkdir(parents=True, exist_ok=True)
    log_file = (directory / LOG_FILENAME).resolve()

    package_logger = logging.getLogger("canvasnote")
    package_logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    new_handlers = []
    if not _has_handler(
        package_logger,
        lambda h: isinstance(h, RotatingFileHandler) and Path(h.baseFilename) == log_file,
    ):
        new_handlers.append(
            RotatingFileHandler(
                log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
            )
        )
    if console and not _has_handler(
        package_logger,
        lambda h: type(h) is logging.StreamHandler,
    ):
        new_handlers.append(logging.StreamHandler())

    for handler in new_handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        package_logger.addHandler(handler)

    package_logger.info(f"Logging to {log_file}")
    return directory


@dataclass
class OperationStats:
    """Running totals for one operation name."""

    calls: int = 0
    failures: int = 0
    total_ms: float = 0.0
    slowest_ms: float = 0.0
    last_error: Optional[str] = None

    def add(self, duration_ms: float, error: Optional[str]) -> None:
        self.calls += 1
        self.total_ms += duration_ms
        self.slowest_ms = max(self.slowest_ms, duration_ms)
        if error is not None:
            self.failures += 1
            self.last_error = error

    def as_dict(self) -> Dict[str, Any]:
        return {
            "count": self.calls,
            "error_count": self.failures,
            "avg_duration_ms": round(self.total_ms / self.calls, 2) if self.calls else 0.0,
            "max_duration_ms": round(self.slowest_ms, 2),
            "last_error": self.last_error,
        }


class MetricsCollector:
    """Thread-safe in-memory timings keyed by operation name."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._stats: Dict[str, OperationStats] = {}
        self._since = datetime.now(timezone.utc)

    def record_operation(
        self, operation: str, duration_ms: float, success: bool, error: Optional[str] = None
    ) -> None:
        if not success and error is None:
            error = "unknown error"
        with self._lock:
            self._stats.setdefault(operation, OperationStats()).add(
                duration_ms, None if success else error
            )

    def get_metrics(self) -> Dict[str, Dict[str, Any]]:
        """Per-operation counts and durations."""
        with self._lock:
            return {name: stats.as_dict() for name, stats in sorted(self._stats.items())}

    def get_summary(self) -> Dict[str, Any]:
        """Totals across all operations since start or the last reset."""
        with self._lock:
            calls = sum(s.calls for s in self._stats.values())
            failures = sum(s.failures for s in self._stats.values())
            return {
                "since": self._since.isoformat(),
                "total_operations": calls,
                "total_errors": failures,
                "operations_tracked": sorted(self._stats),
            }

    def reset(self) -> None:
        with self._lock:
            self._stats.clear()
            self._since = datetime.now(timezone.utc)


# Process-wide collector
metrics = MetricsCollector()


@contextmanager
def timed_operation(operation: str, **context) -> Iterator[Dict[str, Any]]:
    """Time a block, log it at DEBUG and record it in ``metrics``.

    Yields a dict the block may fill with result details; they are appended
    to the completion log line.

    Example:
        with timed_operation('search_query', terms=2) as op:
            op['result_count'] = len(ranked)
    """
    tag = uuid.uuid4().hex[:8]
    details: Dict[str, Any] = {}
    started = time.perf_counter()
    logger.debug(f"[{tag}] {operation} started {context or ''}")
    error: Optional[str] = None
    try:
        yield details
    except Exception as e:
        error = f"{type(e).__name__}: {e}"
        raise
    finally:
        elapsed = (time.perf_counter() - started) * 1000
        metrics.record_operation(operation, elapsed, error is None, error)
        outcome = "ok" if error is None else f"failed ({error})"
        logger.debug(f"[{tag}] {operation} {outcome} in {elapsed:.2f}ms {details or ''}")


def traced(operation_name: Optional[str] = None) -> Callable[[F], F]:
    """Run the decorated call inside ``timed_operation``.

    A ``locator`` or ``entity_id`` keyword argument is logged as context.

    Example:
        @traced('asset_delete')
        def delete(self, locator) -> bool:
            ...
    """
    def decorator(func: F) -> F:
        name = operation_name or func.__name__

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            context = {k: kwargs[k] for k in ("entity_id", "locator") if k in kwargs}
            with timed_operation(name, **context) as details:
                result = func(*args, **kwargs)
                if isinstance(result, (list, tuple, dict, set)):
                    details["result_count"] = len(result)
                return result

        return wrapper  # type: ignore
    return decorator

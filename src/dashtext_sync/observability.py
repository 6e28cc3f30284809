"""Logging and operation timing for the draft repository.

- ``configure_logging`` attaches a rotating log file (and optionally the
  console) to the ``dashtext_sync`` logger hierarchy
- ``traced`` / ``timed_operation`` time repository and storage calls into
  the in-process ``metrics`` collector and log them at DEBUG
- ``get_logger`` returns a logger that appends ``key=value`` context
"""
import functools
import inspect
import logging
import time
import uuid
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Deque, Dict, Iterator, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

ROOT_LOGGER_NAME = "dashtext_sync"

DEFAULT_LOG_DIR = Path.home() / ".dashtext" / "logs"
LOG_FILE_NAME = "dashtext-sync.log"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

# Durations kept per operation for percentile estimates
DURATION_WINDOW = 256

F = TypeVar('F', bound=Callable[..., Any])


def _installed(root_logger: logging.Logger, kind: str) -> bool:
    return any(getattr(h, "_dashtext_kind", None) == kind for h in root_logger.handlers)


def _install(root_logger: logging.Logger, handler: logging.Handler, kind: str,
             level: int, formatter: logging.Formatter) -> None:
    handler._dashtext_kind = kind  # type: ignore[attr-defined]
    handler.setLevel(level)
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)


def configure_logging(
    log_dir: Optional[Union[str, Path]] = None,
    level: Union[int, str] = logging.INFO,
    max_bytes: int = 2 * 1024 * 1024,
    backup_count: int = 5,
    console: bool = False,
) -> Path:
    """Send the package's log records to a rotating file.

    Calling this again only adjusts the level; handlers are never doubled.

    Args:
        log_dir: Directory for ``dashtext-sync.log``. Defaults to
            ``~/.dashtext/logs``.
        level: Level as a number or a name such as ``"DEBUG"``.
        max_bytes: Size at which the file is rotated.
        backup_count: Rotated files to keep.
        console: Also write to stderr.

    Returns:
        The log directory.
    """
    if isinstance(level, str):
        name = level.upper()
        level = logging.getLevelName(name)
        if not isinstance(level, int):
            raise ValueError(f"Unknown log level: {name}")

    log_path = Path(log_dir) if log_dir else DEFAULT_LOG_DIR
    log_path.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    if not _installed(root_logger, "file"):
        file_handler = RotatingFileHandler(
            log_path / LOG_FILE_NAME,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        _install(root_logger, file_handler, "file", level, formatter)
    if console and not _installed(root_logger, "console"):
        _install(root_logger, logging.StreamHandler(), "console", level, formatter)

    for handler in root_logger.handlers:
        if getattr(handler, "_dashtext_kind", None):
            handler.setLevel(level)

    root_logger.debug(f"Logging to {log_path / LOG_FILE_NAME}")
    return log_path


@dataclass
class OperationStats:
    """Running statistics for one operation name."""
    calls: int = 0
    failures: int = 0
    total_ms: float = 0.0
    max_ms: float = 0.0
    recent_ms: Deque[float] = field(default_factory=lambda: deque(maxlen=DURATION_WINDOW))
    last_error: Optional[str] = None
    last_error_at: Optional[datetime] = None

    def percentile(self, pct: float) -> float:
        if not self.recent_ms:
            return 0.0
        ordered = sorted(self.recent_ms)
        index = min(len(ordered) - 1, int(round(pct / 100 * (len(ordered) - 1))))
        return ordered[index]

    def as_dict(self) -> Dict[str, Any]:
        return {
            'calls': self.calls,
            'failures': self.failures,
            'mean_ms': round(self.total_ms / self.calls, 2) if self.calls else 0.0,
            'p95_ms': round(self.percentile(95), 2),
            'max_ms': round(self.max_ms, 2),
            'last_error': self.last_error,
            'last_error_at': self.last_error_at.isoformat() if self.last_error_at else None,
        }


class MetricsCollector:
    """Thread-safe, in-process timings for repository and storage operations.

    Nothing is persisted; :meth:`reset` starts over.
    """

    def __init__(self):
        self._stats: Dict[str, OperationStats] = {}
        self._lock = Lock()
        self._since = datetime.now(timezone.utc)

    def record_operation(
        self,
        operation: str,
        duration_ms: float,
        success: bool,
        error: Optional[str] = None
    ) -> None:
        with self._lock:
            stats = self._stats.setdefault(operation, OperationStats())
            stats.calls += 1
            stats.total_ms += duration_ms
            stats.max_ms = max(stats.max_ms, duration_ms)
            stats.recent_ms.append(duration_ms)
            if not success:
                stats.failures += 1
                stats.last_error = error
                stats.last_error_at = datetime.now(timezone.utc)

    def get_metrics(self) -> Dict[str, Dict[str, Any]]:
        """Per-operation statistics keyed by operation name."""
        with self._lock:
            return {name: stats.as_dict() for name, stats in self._stats.items()}

    def get_summary(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'since': self._since.isoformat(),
                'calls': sum(s.calls for s in self._stats.values()),
                'failures': sum(s.failures for s in self._stats.values()),
                'operations': sorted(self._stats),
            }

    def reset(self) -> None:
        with self._lock:
            self._stats.clear()
            self._since = datetime.now(timezone.utc)


metrics = MetricsCollector()


@contextmanager
def timed_operation(operation: str, **context) -> Iterator[Dict[str, Any]]:
    """Time a block, record it in ``metrics`` and log it at DEBUG.

    The yielded dict is appended to the completion log line, so callers can
    attach results::

        with timed_operation('load_range', doc_id=doc_id) as op:
            chunks = ...
            op['chunks'] = len(chunks)
    """
    trace_id = uuid.uuid4().hex[:8]
    details: Dict[str, Any] = {}
    label = ' '.join(f'{k}={v}' for k, v in context.items())
    logger.debug(f"{trace_id} {operation} begin {label}".rstrip())

    started = time.perf_counter()
    error: Optional[BaseException] = None
    try:
        yield details
    except Exception as e:
        error = e
        raise
    finally:
        elapsed_ms = (time.perf_counter() - started) * 1000
        metrics.record_operation(
            operation, elapsed_ms, error is None, str(error) if error else None
        )
        outcome = 'ok' if error is None else f'failed ({type(error).__name__}: {error})'
        extra = ' '.join(f'{k}={v}' for k, v in details.items())
        logger.debug(f"{trace_id} {operation} {outcome} in {elapsed_ms:.1f}ms {extra}".rstrip())


def _call_context(args: tuple, kwargs: Dict[str, Any]) -> Dict[str, Any]:
    # Methods are called as (self, uuid, ...) or (self, doc_id)
    for key in ('uuid', 'doc_id'):
        if key in kwargs:
            return {key: kwargs[key]}
    if len(args) > 1 and isinstance(args[1], str):
        return {'key': args[1]}
    return {}


def _describe(details: Dict[str, Any], result: Any) -> None:
    if isinstance(result, (list, tuple, dict)):
        details['results'] = len(result)


def traced(operation_name: Optional[str] = None) -> Callable[[F], F]:
    """Wrap a function or coroutine function in :func:`timed_operation`.

    Example::

        @traced('create_draft')
        async def create_draft(self) -> CreateDraftResult:
            ...
    """
    def decorator(func: F) -> F:
        name = operation_name or func.__name__

        if inspect.iscoroutinefunction(func):
            @functools.wraps(func)
            async def run_async(*args, **kwargs):
                with timed_operation(name, **_call_context(args, kwargs)) as details:
                    result = await func(*args, **kwargs)
                    _describe(details, result)
                    return result
            return run_async  # type: ignore

        @functools.wraps(func)
        def run(*args, **kwargs):
            with timed_operation(name, **_call_context(args, kwargs)) as details:
                result = func(*args, **kwargs)
                _describe(details, result)
                return result
        return run  # type: ignore
    return decorator


class StructuredLogger(logging.LoggerAdapter):
    """Logger that prefixes the component and appends ``key=value`` pairs.

    Context set with :meth:`set_context` sticks to every later message;
    keyword arguments to a single call apply to that message only.
    """

    def __init__(self, component: str):
        super().__init__(logging.getLogger(f"{ROOT_LOGGER_NAME}.{component}"), {})
        self.component = component

    def set_context(self, **context) -> None:
        self.extra.update(context)

    def clear_context(self) -> None:
        self.extra.clear()

    def process(self, msg, kwargs):
        fields = dict(self.extra)
        for key in list(kwargs):
            if key not in ('exc_info', 'stack_info', 'stacklevel', 'extra'):
                fields[key] = kwargs.pop(key)
        text = f"[{self.component}] {msg}"
        if fields:
            text += ' | ' + ' '.join(f'{k}={v}' for k, v in fields.items())
        return text, kwargs


def get_logger(component: str) -> StructuredLogger:
    """Structured logger for a component, e.g. ``get_logger('migration')``."""
    return StructuredLogger(component)

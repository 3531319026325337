"""Observability utilities for the whatidid knowledge base.

Provides persistent disk logging with rotation and timed operation
tracing with correlation IDs.
"""
import functools
import inspect
import logging
import time
import uuid
from contextlib import contextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Callable, Dict, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

# Root of the package logger hierarchy
ROOT_LOGGER_NAME = "whatidid"

# Logging format with ISO 8601 timestamps
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

# Type variable for decorators
F = TypeVar('F', bound=Callable[..., Any])

# Global flag to track if logging has been configured
_logging_configured = False


def configure_logging(
    log_dir: Optional[Union[str, Path]] = None,
    level: Optional[Union[int, str]] = None,
    max_bytes: int = 10 * 1024 * 1024,  # 10 MB per file
    backup_count: int = 5,
    console: bool = True,
) -> Path:
    """Configure persistent file logging with rotation.

    Sets up a rotating file handler for the whatidid logger hierarchy.
    Calling it again replaces the file handler instead of stacking a second one.

    Args:
        log_dir: Directory for log files. Defaults to the configured log_dir.
        level: Logging level. Defaults to the configured log_level.
        max_bytes: Maximum size per log file before rotation (default: 10 MB)
        backup_count: Number of rotated files to keep (default: 5)
        console: Also log to console (default: True)

    Returns:
        Path to the log directory
    """
    global _logging_configured

    if log_dir is None or level is None:
        from whatidid.config import config
        if log_dir is None:
            log_dir = config.log_dir
        if level is None:
            level = config.log_level
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(level)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    for handler in list(root_logger.handlers):
        if isinstance(handler, RotatingFileHandler):
            root_logger.removeHandler(handler)
            handler.close()

    log_file = log_path / "whatidid.log"
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)

    if console and not any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, RotatingFileHandler)
        for h in root_logger.handlers
    ):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    _logging_configured = True
    root_logger.info(f"Logging configured: {log_file} (max {max_bytes} bytes, {backup_count} backups)")

    return log_path


def is_logging_configured() -> bool:
    """Check if file logging has been configured."""
    return _logging_configured


@contextmanager
def timed_operation(operation: str, **context):
    """Context manager for timing and logging operations.

    Args:
        operation: Name of the operation being performed
        **context: Additional context to include in log messages

    Yields:
        A dictionary where you can store result info (e.g., result_count)

    Example:
        with timed_operation('search', query='deploy') as op:
            results = run_query()
            op['result_count'] = len(results)
    """
    correlation_id = str(uuid.uuid4())[:8]
    start_time = time.perf_counter()
    result_info: Dict[str, Any] = {'correlation_id': correlation_id}

    context_str = ', '.join(f'{k}={v}' for k, v in context.items())
    logger.debug(f"[{correlation_id}] START {operation} ({context_str})")

    error_msg = None
    success = True

    try:
        yield result_info
    except Exception as e:
        success = False
        error_msg = str(e)
        raise
    finally:
        duration_ms = (time.perf_counter() - start_time) * 1000
        result_str = ', '.join(f'{k}={v}' for k, v in result_info.items() if k != 'correlation_id')
        status = 'OK' if success else f'ERROR: {error_msg}'
        logger.debug(
            f"[{correlation_id}] END {operation} "
            f"({duration_ms:.2f}ms) [{status}] {result_str}"
        )


def traced(operation_name: Optional[str] = None) -> Callable[[F], F]:
    """Decorator for automatic operation tracing.

    Times the function and logs start/end with a correlation ID.

    Args:
        operation_name: Name to use for the operation. If None, uses function name.

    Example:
        @traced('create_page')
        def create(self, space_slug: str, title: str, ...) -> Page:
            ...
    """
    def decorator(func: F) -> F:
        op_name = operation_name or func.__name__
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                arguments = signature.bind_partial(*args, **kwargs).arguments
            except TypeError:
                # Let the call itself report the bad arguments
                arguments = kwargs
            context = {}
            if 'page_id' in arguments:
                context['page_id'] = arguments['page_id']
            elif 'title' in arguments:
                title = arguments['title']
                context['title'] = title[:50] if isinstance(title, str) else None

            with timed_operation(op_name, **context) as op:
                result = func(*args, **kwargs)
                if isinstance(result, (list, tuple)):
                    op['result_count'] = len(result)
                elif result is not None:
                    op['has_result'] = True
                return result

        return wrapper  # type: ignore
    return decorator

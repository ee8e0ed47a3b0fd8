"""
Logging Configuration for the OKR analytics engine.

Provides structured logging with:
- JSON formatting for production
- Human-readable formatting for development
- Cascade-specific logging for check-in audit trails
"""

import asyncio
import json
import logging
import sys
import time
from datetime import datetime, timezone
from functools import wraps
from pathlib import Path
from contextvars import ContextVar
from typing import Callable, Dict, Optional, Union

# Context variables for request tracking
request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
tenant_id_var: ContextVar[Optional[str]] = ContextVar('tenant_id', default=None)


def _context() -> Dict[str, str]:
    context = {}
    request_id = request_id_var.get()
    if request_id:
        context["request_id"] = request_id
    tenant_id = tenant_id_var.get()
    if tenant_id:
        context["tenant_id"] = tenant_id
    return context


class JsonFormatter(logging.Formatter):
    """
    JSON log formatter for structured logging.

    Outputs logs as JSON objects for easy parsing by log aggregators.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        log_data.update(_context())

        if hasattr(record, 'extra_data'):
            log_data.update(record.extra_data)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class ReadableFormatter(logging.Formatter):
    """Human-readable log formatter for development."""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
        'RESET': '\033[0m',
    }

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.COLORS['RESET'])
        reset = self.COLORS['RESET']

        timestamp = datetime.now().strftime('%H:%M:%S.%f')[:-3]
        level = f"{color}{record.levelname:8s}{reset}"

        message = f"{timestamp} {level} [{record.name}] {record.getMessage()}"

        if hasattr(record, 'extra_data') and record.extra_data:
            extras = ' | '.join(f"{k}={v}" for k, v in record.extra_data.items())
            message += f" | {extras}"

        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)

        return message


class ContextLogger(logging.LoggerAdapter):
    """Logger adapter that includes bound and request context in every record."""

    def process(self, msg: str, kwargs: Dict) -> tuple:
        extra = dict(kwargs.get('extra') or {})
        extra_data = dict(extra.get('extra_data') or {})

        for key, value in _context().items():
            extra_data.setdefault(key, value)
        for key, value in self.extra.items():
            if value is not None:
                extra_data.setdefault(key, value)

        extra['extra_data'] = extra_data
        kwargs['extra'] = extra
        return msg, kwargs


def configure_logging(
    level: str = "INFO",
    json_output: bool = False,
    log_file: Optional[Union[str, Path]] = None
) -> None:
    """
    Configure application logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: If True, output JSON formatted logs
        log_file: Optional file path for log output
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level.upper())
    root_logger.handlers.clear()

    formatter = JsonFormatter() if json_output else ReadableFormatter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
        file_handler.setFormatter(JsonFormatter())  # Always JSON for files
        root_logger.addHandler(file_handler)

    # SQL echo is controlled by DB_ECHO_SQL, not the root level
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


def configure_from_settings(settings=None) -> None:
    """Configure logging from LOG_* settings."""
    if settings is None:
        from config.settings import get_settings
        settings = get_settings().logging
    configure_logging(settings.level, settings.json_output, settings.file)


def get_logger(name: str, **extra) -> ContextLogger:
    """
    Get a context-aware logger.

    Args:
        name: Logger name (typically __name__)
        **extra: Additional context to include in all logs
    """
    return ContextLogger(logging.getLogger(name), extra)


class CascadeLogger:
    """
    Audit logger for one check-in and its rollup cascade.

    Records the check-in, each cascade step with its duration, retries after
    concurrent writes, and the final outcome.
    """

    def __init__(self, entity_type: str, entity_id: str, check_in_id: Optional[str] = None):
        self.logger = get_logger(
            "okr.cascade",
            entity_type=entity_type,
            entity_id=entity_id,
            check_in_id=check_in_id,
        )
        self.entity_type = entity_type
        self.entity_id = entity_id
        self._start_time = time.time()
        self._step_times: Dict[str, int] = {}

    def log_step(self, step_name: str, **data) -> float:
        """Log the start of a cascade step and return its start time."""
        self.logger.debug(
            f"Cascade step: {step_name}",
            extra={'extra_data': {'step': step_name, **data}}
        )
        return time.time()

    def complete_step(self, step_name: str, step_start: float, **result) -> None:
        """Log step completion with timing."""
        duration_ms = int((time.time() - step_start) * 1000)
        self._step_times[step_name] = duration_ms
        self.logger.debug(
            f"Completed step: {step_name}",
            extra={'extra_data': {'step': step_name, 'duration_ms': duration_ms, **result}}
        )

    def log_recorded(self, previous_progress: Optional[int], new_progress: int) -> None:
        self.logger.info(
            "Check-in recorded",
            extra={'extra_data': {
                'previous_progress': previous_progress,
                'new_progress': new_progress,
            }}
        )

    def log_rollup(
        self,
        objective_id: str,
        previous_progress: int,
        new_progress: int,
        key_result_count: int
    ) -> None:
        self.logger.info(
            "Objective progress recalculated",
            extra={'extra_data': {
                'objective_id': objective_id,
                'previous_progress': previous_progress,
                'new_progress': new_progress,
                'key_result_count': key_result_count,
            }}
        )

    def log_skipped(self, reason: str, **data) -> None:
        self.logger.debug(
            f"Cascade skipped: {reason}",
            extra={'extra_data': data}
        )

    def log_retry(self, attempt: int, max_attempts: int, error: Exception) -> None:
        self.logger.warning(
            f"Concurrent update, retrying ({attempt}/{max_attempts})",
            extra={'extra_data': {'attempt': attempt, 'error': str(error)}}
        )

    def log_complete(self, **result) -> None:
        duration_ms = int((time.time() - self._start_time) * 1000)
        self.logger.info(
            "Check-in cascade complete",
            extra={'extra_data': {
                'duration_ms': duration_ms,
                'step_times': self._step_times,
                **result,
            }}
        )

    def log_error(self, message: str, **data) -> None:
        self.logger.error(message, extra={'extra_data': data})


def log_performance(name: Optional[str] = None) -> Callable:
    """
    Decorator to log function performance.

    Args:
        name: Optional name override for the log entry
    """
    def decorator(func: Callable) -> Callable:
        func_name = name or func.__name__

        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            logger = get_logger("performance")
            start = time.time()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                logger.error(
                    f"{func_name} failed",
                    extra={'extra_data': {
                        'duration_ms': int((time.time() - start) * 1000),
                        'error': str(e),
                    }}
                )
                raise
            logger.info(
                f"{func_name} completed",
                extra={'extra_data': {'duration_ms': int((time.time() - start) * 1000)}}
            )
            return result

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            logger = get_logger("performance")
            start = time.time()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                logger.error(
                    f"{func_name} failed",
                    extra={'extra_data': {
                        'duration_ms': int((time.time() - start) * 1000),
                        'error': str(e),
                    }}
                )
                raise
            logger.info(
                f"{func_name} completed",
                extra={'extra_data': {'duration_ms': int((time.time() - start) * 1000)}}
            )
            return result

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator

"""
Logging utilities for the colorization engine.

Modules log through ``logging.getLogger(__name__)``; this module adds the
engine-wide ``deoldify_engine`` logger with optional rotating log files,
structured records for model loads and colorization passes, and a timing
context manager used around slow operations.
"""

import json
import logging
import logging.handlers
import sys
import time
from datetime import datetime
from functools import wraps
from pathlib import Path
from typing import Optional, Dict, Any, Union

CONSOLE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
FILE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'

MB = 1024 * 1024


def _rotating_handler(path: Path, level: int, max_mb: int, backups: int) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(path, maxBytes=max_mb * MB, backupCount=backups)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(FILE_FORMAT))
    return handler


class ColorizationLogger:
    """
    Engine logger writing to stdout and, when ``log_dir`` is given, to
    ``<name>.log`` (everything) and ``<name>_errors.log`` (errors only).
    """

    def __init__(self, name: str = "deoldify_engine",
                 log_dir: Optional[Union[str, Path]] = None,
                 console_level: int = logging.INFO):
        self.name = name
        self.log_dir = Path(log_dir) if log_dir is not None else None

        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.DEBUG)

        # handlers survive across instances sharing a name
        if not self.logger.handlers:
            for handler in self._build_handlers(console_level):
                self.logger.addHandler(handler)

    def _build_handlers(self, console_level: int):
        console = logging.StreamHandler(sys.stdout)
        console.setLevel(console_level)
        console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
        handlers = [console]

        if self.log_dir is not None:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            handlers.append(_rotating_handler(self.log_dir / f"{self.name}.log",
                                              logging.DEBUG, max_mb=10, backups=5))
            handlers.append(_rotating_handler(self.log_dir / f"{self.name}_errors.log",
                                              logging.ERROR, max_mb=5, backups=3))
        return handlers

    def _record(self, kind: str, payload: Dict[str, Any], level: int = logging.INFO):
        self.logger.log(level, f"{kind}: {json.dumps(payload, default=str)}")

    def log_error(self, error: Exception, context: Optional[Dict[str, Any]] = None):
        """Log an exception with its error code and the surrounding context."""
        payload = {
            'error_type': type(error).__name__,
            'error_message': str(error),
            'error_code': getattr(error, 'error_code', None),
            'context': context or {},
        }
        self._record("Error occurred", payload, logging.ERROR)

    def log_performance(self, operation: str, duration: float,
                        additional_metrics: Optional[Dict[str, Any]] = None):
        payload = {'operation': operation, 'duration_seconds': round(duration, 3)}
        payload.update(additional_metrics or {})
        self._record("Performance", payload)

    def log_model_load(self, variant: str, model_path: Union[str, Path], half: bool,
                       num_values: int, convolutions: int):
        """Log which generator was loaded and how large it is."""
        self._record("Model loaded", {
            'variant': variant,
            'model_path': str(model_path),
            'precision': 'half' if half else 'full',
            'parameters': num_values,
            'convolutions': convolutions,
            'timestamp': datetime.now().isoformat(),
        })

    def log_colorization(self, variant: str, image_size: tuple, render_size: tuple,
                         duration: float):
        self._record("Colorization", {
            'variant': variant,
            'image_size': list(image_size),
            'render_size': list(render_size),
            'duration_seconds': round(duration, 3),
        })


_global_logger: Optional[ColorizationLogger] = None


def get_logger(name: str = "deoldify_engine",
               log_dir: Optional[Union[str, Path]] = None) -> ColorizationLogger:
    """Return the engine logger, creating it on first use."""
    global _global_logger

    if _global_logger is None:
        _global_logger = ColorizationLogger(name, log_dir)

    return _global_logger


def setup_logging(log_level: str = "INFO", log_dir: Optional[Union[str, Path]] = None):
    """Configure the root logger for command line use."""
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_dir is not None:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(Path(log_dir) / "colorize.log"))

    logging.basicConfig(level=getattr(logging, log_level.upper()),
                        format=CONSOLE_FORMAT, handlers=handlers)

    # Pillow and torch are chatty at DEBUG
    logging.getLogger('PIL').setLevel(logging.WARNING)
    logging.getLogger('torch').setLevel(logging.WARNING)


class LoggingContext:
    """
    Time a block, logging its start, its duration and any exception.

    Exceptions are logged and re-raised, never suppressed. ``duration`` holds
    the elapsed seconds once the block exits.
    """

    def __init__(self, operation_name: str, logger: Optional[ColorizationLogger] = None,
                 metrics: Optional[Dict[str, Any]] = None):
        self.operation_name = operation_name
        self.logger = logger or get_logger()
        self.metrics = metrics
        self.duration = None
        self._start = None

    def __enter__(self):
        self._start = time.perf_counter()
        self.logger.logger.debug(f"Starting operation: {self.operation_name}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration = time.perf_counter() - self._start

        if exc_type is None:
            self.logger.log_performance(self.operation_name, self.duration, self.metrics)
        else:
            self.logger.log_error(exc_val, {'operation': self.operation_name,
                                            'duration': round(self.duration, 3)})
        return False


def log_function_call(func):
    """Wrap ``func`` in a LoggingContext named after its module and name."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        with LoggingContext(f"{func.__module__}.{func.__name__}"):
            return func(*args, **kwargs)

    return wrapper

"""
Logging configuration for the generation engine.

This module provides centralized logging setup plus structured
loggers for generation runs.
"""

import logging
import logging.handlers
import os
from datetime import datetime, timezone
from typing import Dict, Any


def setup_logging(config: Dict[str, Any]):
    """
    Setup logging configuration.

    Args:
        config: Configuration dictionary
    """
    log_file = config.get('LOG_FILE', 'logs/engine.log')
    log_dir = os.path.dirname(log_file) if log_file else ''
    if log_dir and not os.path.exists(log_dir):
        os.makedirs(log_dir)

    level = getattr(logging, config.get('LOG_LEVEL', 'INFO'))

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # File handler with rotation
    if log_file:
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=config.get('LOG_MAX_BYTES', 10485760),  # 10MB
            backupCount=config.get('LOG_BACKUP_COUNT', 5)
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    configure_loggers()


def configure_loggers():
    """Quiet noisy third-party loggers."""
    for name in ('litellm', 'LiteLLM', 'httpx', 'httpcore', 'supabase', 'postgrest'):
        logging.getLogger(name).setLevel(logging.WARNING)


class StructuredLogger:
    """Structured logger for better log formatting."""

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def info(self, message: str, **kwargs):
        self._log(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs):
        self._log(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs):
        self._log(logging.ERROR, message, **kwargs)

    def debug(self, message: str, **kwargs):
        self._log(logging.DEBUG, message, **kwargs)

    def _log(self, level: int, message: str, **kwargs):
        extra = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            **kwargs
        }

        self.logger.log(level, message, extra=extra)


def get_logger(name: str) -> StructuredLogger:
    """
    Get a structured logger.

    Args:
        name: Logger name

    Returns:
        Structured logger instance
    """
    return StructuredLogger(name)


class GenerationLogger:
    """Logger for orchestrated generation runs."""

    def __init__(self):
        self.logger = get_logger('generation')

    def log_generation_start(self, mode: str, task: str, **kwargs):
        self.logger.info(
            f"Generation started: {mode} ({task})",
            mode=mode,
            task=task,
            **kwargs
        )

    def log_generation_step(self, mode: str, step: str, progress: float, **kwargs):
        self.logger.debug(
            f"Generation progress: {progress:.0%} - {step}",
            mode=mode,
            step=step,
            progress=progress,
            **kwargs
        )

    def log_generation_complete(self, mode: str, task: str, duration_ms: int, **kwargs):
        self.logger.info(
            f"Generation completed: {mode} ({task}) in {duration_ms}ms",
            mode=mode,
            task=task,
            duration_ms=duration_ms,
            **kwargs
        )

    def log_generation_error(self, mode: str, task: str, error: str, **kwargs):
        self.logger.error(
            f"Generation failed: {mode} ({task}) - {error}",
            mode=mode,
            task=task,
            error=error,
            **kwargs
        )

"""
Utility modules for the generation engine.
"""

from .config import Config, get_config, validate_config
from .logging import setup_logging, get_logger, GenerationLogger
from .health import HealthChecker

__all__ = [
    'Config',
    'get_config',
    'validate_config',
    'setup_logging',
    'get_logger',
    'GenerationLogger',
    'HealthChecker'
]

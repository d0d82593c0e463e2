"""
Configuration management for the generation engine.

This module provides configuration loading from the environment
(optionally through a ``.env`` file) and validation.
"""

import os
from typing import List
from dataclasses import dataclass
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


@dataclass
class Config:
    """Base configuration class."""

    DEBUG: bool = os.environ.get('DEBUG', 'false').lower() == 'true'
    TESTING: bool = os.environ.get('TESTING', 'false').lower() == 'true'

    # Logging
    LOG_LEVEL: str = os.environ.get('LOG_LEVEL', 'INFO')
    LOG_FILE: str = os.environ.get('LOG_FILE', 'logs/engine.log')
    LOG_MAX_BYTES: int = int(os.environ.get('LOG_MAX_BYTES', 10485760))  # 10MB
    LOG_BACKUP_COUNT: int = int(os.environ.get('LOG_BACKUP_COUNT', 5))

    # Persistence
    SUPABASE_URL: str = os.environ.get('SUPABASE_URL', '')
    SUPABASE_KEY: str = os.environ.get('SUPABASE_KEY', '') or os.environ.get('SUPABASE_ANON_KEY', '')

    # Provider defaults
    DEFAULT_PROVIDER: str = os.environ.get('DEFAULT_PROVIDER', 'anthropic')
    PROVIDER_TIMEOUT: int = int(os.environ.get('PROVIDER_TIMEOUT', '60'))
    PROVIDER_REQUESTS_PER_MINUTE: int = int(os.environ.get('PROVIDER_REQUESTS_PER_MINUTE', '60'))
    DEFAULT_MAX_RETRIES: int = int(os.environ.get('DEFAULT_MAX_RETRIES', '3'))
    DEFAULT_RETRY_DELAY_MS: int = int(os.environ.get('DEFAULT_RETRY_DELAY_MS', '1000'))

    # Usage tracking
    USAGE_BUFFER_SIZE: int = int(os.environ.get('USAGE_BUFFER_SIZE', '100'))
    USAGE_FLUSH_INTERVAL: float = float(os.environ.get('USAGE_FLUSH_INTERVAL', '30'))  # seconds
    USAGE_HISTORY_SIZE: int = int(os.environ.get('USAGE_HISTORY_SIZE', '10000'))

    # Orchestration
    BATCH_SIZE: int = int(os.environ.get('BATCH_SIZE', '5'))
    MAX_CONTEXT_TOKENS: int = int(os.environ.get('MAX_CONTEXT_TOKENS', '50000'))

    # Caches
    CONTEXT_CACHE_SIZE: int = int(os.environ.get('CONTEXT_CACHE_SIZE', '100'))
    CONTEXT_CACHE_TTL: int = int(os.environ.get('CONTEXT_CACHE_TTL', '1800'))  # 30 minutes
    TREE_CACHE_SIZE: int = int(os.environ.get('TREE_CACHE_SIZE', '50'))


@dataclass
class DevelopmentConfig(Config):
    """Development configuration."""
    DEBUG: bool = True
    LOG_LEVEL: str = 'DEBUG'


@dataclass
class ProductionConfig(Config):
    """Production configuration."""
    DEBUG: bool = False
    LOG_LEVEL: str = 'WARNING'


@dataclass
class TestingConfig(Config):
    """Testing configuration."""
    TESTING: bool = True
    DEBUG: bool = True
    LOG_LEVEL: str = 'CRITICAL'
    LOG_FILE: str = ''
    USAGE_FLUSH_INTERVAL: float = 0.0
    DEFAULT_RETRY_DELAY_MS: int = 0


def get_config(config_name: str = None) -> Config:
    """
    Get configuration based on environment.

    Args:
        config_name: Configuration name (development, production, testing)

    Returns:
        Configuration object
    """
    if config_name is None:
        config_name = os.environ.get('ENGINE_ENV', 'development').lower()

    config_map = {
        'development': DevelopmentConfig,
        'production': ProductionConfig,
        'testing': TestingConfig
    }

    config_class = config_map.get(config_name, DevelopmentConfig)
    return config_class()


def validate_config(config: Config) -> List[str]:
    """
    Validate configuration.

    Args:
        config: Configuration to validate

    Returns:
        List of validation errors
    """
    errors = []

    if config.SUPABASE_URL and not config.SUPABASE_KEY:
        errors.append("SUPABASE_KEY is required when SUPABASE_URL is set")

    if config.USAGE_BUFFER_SIZE < 1:
        errors.append("USAGE_BUFFER_SIZE must be at least 1")

    if config.BATCH_SIZE < 1:
        errors.append("BATCH_SIZE must be at least 1")

    if config.DEFAULT_MAX_RETRIES < 0:
        errors.append("DEFAULT_MAX_RETRIES must not be negative")

    if config.TREE_CACHE_SIZE < 1 or config.CONTEXT_CACHE_SIZE < 1:
        errors.append("Cache sizes must be at least 1")

    return errors

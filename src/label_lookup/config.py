"""
Configuration for Label Lookup

Loads configuration from environment variables (and a .env file if present).
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional, Tuple
import logging

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing required values."""
    pass


@dataclass
class APIConfig:
    """openFDA client configuration."""
    openfda_api_key: Optional[str] = None
    openfda_base_url: str = "https://api.fda.gov"
    label_endpoint: str = "/drug/label.json"
    request_timeout: int = 30  # seconds
    max_retries: int = 0  # fallback/pagination policy lives in the resolver


@dataclass
class ProcessingConfig:
    """Resolution and concurrency configuration."""
    max_concurrent_queries: int = 4
    default_page_size: int = 100
    pagination_page_size: int = 1000
    compound_page_size: int = 50  # smaller window, compound labels are large
    max_skip: int = 25000  # openFDA rejects skip beyond this


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    log_dir: str = "logs/label_lookup"
    max_file_size: int = 10 * 1024 * 1024  # 10MB
    backup_count: int = 5


@dataclass
class Config:
    """Main configuration class."""
    api: APIConfig = field(default_factory=APIConfig)
    processing: ProcessingConfig = field(default_factory=ProcessingConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _int_from_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got: {value!r}")


def load_config() -> Config:
    """
    Load configuration from environment variables.

    Environment variables:
        OPEN_FDA_API_KEY: openFDA API key (optional but recommended)
        OPEN_FDA_BASE_URL: openFDA base URL
        OPEN_FDA_TIMEOUT: Request timeout in seconds
        LABEL_LOOKUP_MAX_CONCURRENT_QUERIES: Worker pool size
        LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR)
        LABEL_LOOKUP_LOG_DIR: Directory for rotating log files
    """
    config = Config()

    # API
    config.api.openfda_api_key = os.getenv("OPEN_FDA_API_KEY") or None
    if not config.api.openfda_api_key:
        logger.warning("OPEN_FDA_API_KEY not set - openFDA will apply anonymous rate limits")

    config.api.openfda_base_url = os.getenv("OPEN_FDA_BASE_URL", config.api.openfda_base_url)
    config.api.request_timeout = _int_from_env("OPEN_FDA_TIMEOUT", config.api.request_timeout)

    # Processing
    config.processing.max_concurrent_queries = _int_from_env(
        "LABEL_LOOKUP_MAX_CONCURRENT_QUERIES", config.processing.max_concurrent_queries
    )

    # Logging
    config.logging.level = os.getenv("LOG_LEVEL", "INFO")
    config.logging.log_dir = os.getenv("LABEL_LOOKUP_LOG_DIR", config.logging.log_dir)

    logger.debug("Configuration loaded successfully")
    return config


def validate_config(config: Config, strict: bool = True) -> Tuple[List[str], List[str]]:
    """
    Validate configuration and return errors and warnings.

    Args:
        config: Configuration to validate
        strict: If True, raise ConfigurationError for critical issues

    Returns:
        Tuple of (errors, warnings) lists

    Raises:
        ConfigurationError: If strict=True and critical errors found
    """
    errors = []
    warnings = []

    if not config.api.openfda_base_url.startswith(("http://", "https://")):
        errors.append(f"OPEN_FDA_BASE_URL must be an http(s) URL, got: {config.api.openfda_base_url}")

    if config.api.request_timeout <= 0:
        errors.append(f"request_timeout must be > 0, got: {config.api.request_timeout}")

    if config.api.max_retries < 0:
        errors.append(f"max_retries must be >= 0, got: {config.api.max_retries}")

    if not config.api.openfda_api_key:
        warnings.append("OPEN_FDA_API_KEY not set - requests are limited to 40/min")

    processing = config.processing
    if processing.max_concurrent_queries < 1:
        errors.append(f"max_concurrent_queries must be >= 1, got: {processing.max_concurrent_queries}")

    for name in ("default_page_size", "pagination_page_size", "compound_page_size"):
        size = getattr(processing, name)
        if not 1 <= size <= 1000:
            errors.append(f"{name} must be between 1 and 1000, got: {size}")

    if processing.compound_page_size > processing.default_page_size:
        warnings.append(
            f"compound_page_size ({processing.compound_page_size}) is larger than "
            f"default_page_size ({processing.default_page_size})"
        )

    if processing.max_skip < 0:
        errors.append(f"max_skip must be >= 0, got: {processing.max_skip}")

    if config.logging.level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        errors.append(f"LOG_LEVEL must be a standard logging level, got: {config.logging.level}")

    # Log results
    if errors:
        logger.error(f"Configuration validation failed with {len(errors)} error(s):")
        for error in errors:
            logger.error(f"  - {error}")

    if warnings:
        logger.warning(f"Configuration has {len(warnings)} warning(s):")
        for warning in warnings:
            logger.warning(f"  - {warning}")

    if strict and errors:
        error_msg = "\n".join(f"  - {e}" for e in errors)
        raise ConfigurationError(f"Configuration validation failed:\n{error_msg}")

    return errors, warnings


# Global config instance
_config: Optional[Config] = None


def get_config(validate: bool = True, strict: bool = False) -> Config:
    """
    Get or create global config instance.

    Args:
        validate: If True, validate configuration
        strict: If True, raise ConfigurationError on validation errors

    Returns:
        Config instance
    """
    global _config
    if _config is None:
        _config = load_config()
        if validate:
            validate_config(_config, strict=strict)
    return _config


def reload_config(validate: bool = True, strict: bool = False) -> Config:
    """Force reload configuration."""
    global _config
    _config = load_config()
    if validate:
        validate_config(_config, strict=strict)
    return _config

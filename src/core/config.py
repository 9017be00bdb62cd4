"""
Centralized configuration management for the Discovery Data Service
"""

import os
import sys
import logging
from logging.handlers import RotatingFileHandler
from typing import Optional, Dict, Any, List
from dataclasses import dataclass, field
from functools import lru_cache
from urllib.parse import urlsplit, urlunsplit

logger = logging.getLogger(__name__)

_HANDLER_TAG = "_discovery_handler"


def _optional_float(value: Optional[str]) -> Optional[float]:
    """Parse an optional positive float; empty or zero disables the setting"""
    if value is None or value.strip() == "":
        return None
    parsed = float(value)
    return parsed if parsed > 0 else None


@dataclass
class HTTPConfig:
    """Upstream provider HTTP settings (all timeouts in seconds)"""
    connect_timeout: float = field(default_factory=lambda: float(os.getenv("PROVIDER_CONNECT_TIMEOUT", "0.25")))
    request_timeout: float = field(default_factory=lambda: float(os.getenv("PROVIDER_REQUEST_TIMEOUT", "1.0")))
    retries: int = field(default_factory=lambda: int(os.getenv("PROVIDER_RETRIES", "1")))
    min_retry_timeout: float = field(default_factory=lambda: float(os.getenv("PROVIDER_MIN_RETRY_TIMEOUT", "0.25")))
    max_pages: int = field(default_factory=lambda: int(os.getenv("PROVIDER_MAX_PAGES", "500")))

    # Connection pool
    max_pool_size: int = field(default_factory=lambda: int(os.getenv("CONNECTION_POOL_SIZE", "100")))
    max_per_host: int = field(default_factory=lambda: int(os.getenv("HTTP_MAX_PER_HOST", "30")))
    ttl_dns_cache: int = field(default_factory=lambda: int(os.getenv("HTTP_DNS_CACHE_TTL", "300")))


@dataclass
class AggregationConfig:
    """Participant aggregation settings"""
    # Whole-request deadline above the per-branch transport timeouts; None disables it
    request_deadline: Optional[float] = field(
        default_factory=lambda: _optional_float(os.getenv("AGGREGATION_DEADLINE", "30"))
    )


@dataclass
class AnnotationConfig:
    """Annotation store settings"""
    backend: str = field(default_factory=lambda: os.getenv("ANNOTATION_BACKEND", "redis"))
    entry_field: str = field(default_factory=lambda: os.getenv("ANNOTATION_FIELD", "annotation"))
    key_prefix: str = field(default_factory=lambda: os.getenv("ANNOTATION_KEY_PREFIX", "annotations:"))
    collection: str = field(default_factory=lambda: os.getenv("ANNOTATION_COLLECTION", "annotations"))


@dataclass
class DatabaseConfig:
    """MongoDB settings for the 'mongo' annotation backend"""
    uri: str = field(default_factory=lambda: os.getenv("MONGODB_URI", "mongodb://localhost:27017"))
    name: str = field(default_factory=lambda: os.getenv("DISCOVERY_DB", "discovery_data"))
    max_pool_size: int = field(default_factory=lambda: int(os.getenv("MONGO_POOL_SIZE", "50")))
    min_pool_size: int = field(default_factory=lambda: int(os.getenv("MONGO_MIN_POOL_SIZE", "10")))
    max_idle_time_ms: int = field(default_factory=lambda: int(os.getenv("MONGO_MAX_IDLE_TIME_MS", "10000")))
    server_selection_timeout_ms: int = field(default_factory=lambda: int(os.getenv("MONGO_SERVER_SELECTION_TIMEOUT_MS", "5000")))


@dataclass
class RedisConfig:
    """Redis settings for the 'redis' annotation backend"""
    host: str = field(default_factory=lambda: os.getenv("REDIS_HOST", "localhost"))
    port: int = field(default_factory=lambda: int(os.getenv("REDIS_PORT", "6379")))
    password: Optional[str] = field(default_factory=lambda: os.getenv("REDIS_PASSWORD"))
    db: int = field(default_factory=lambda: int(os.getenv("REDIS_DB", "0")))
    max_connections: int = field(default_factory=lambda: int(os.getenv("REDIS_POOL_SIZE", "50")))
    socket_timeout: int = field(default_factory=lambda: int(os.getenv("REDIS_SOCKET_TIMEOUT", "30")))
    socket_connect_timeout: int = field(default_factory=lambda: int(os.getenv("REDIS_CONNECT_TIMEOUT", "30")))
    decode_responses: bool = False  # We want bytes for orjson deserialization


@dataclass
class LoggingConfig:
    """Logging configuration settings"""
    level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    format: str = field(default_factory=lambda: os.getenv("LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"))

    # File logging
    log_file: Optional[str] = field(default_factory=lambda: os.getenv("LOG_FILE"))
    max_file_size: int = field(default_factory=lambda: int(os.getenv("LOG_MAX_FILE_SIZE", "10485760")))  # 10MB
    backup_count: int = field(default_factory=lambda: int(os.getenv("LOG_BACKUP_COUNT", "5")))


@dataclass
class ApplicationConfig:
    """Main application configuration"""
    app_name: str = field(default_factory=lambda: os.getenv("APP_NAME", "Discovery Data Service"))
    app_version: str = field(default_factory=lambda: os.getenv("APP_VERSION", "1.1.0"))
    environment: str = field(default_factory=lambda: os.getenv("ENVIRONMENT", "development"))

    # Component configurations
    http: HTTPConfig = field(default_factory=HTTPConfig)
    aggregation: AggregationConfig = field(default_factory=AggregationConfig)
    annotation: AnnotationConfig = field(default_factory=AnnotationConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def __post_init__(self):
        """Validate configuration after initialization"""
        self.validate()

    def validate(self):
        """Validate configuration settings"""
        errors = []

        # HTTP validation
        if self.http.connect_timeout <= 0:
            errors.append("Provider connect timeout must be positive")
        if self.http.request_timeout <= 0:
            errors.append("Provider request timeout must be positive")
        if self.http.retries < 0:
            errors.append("Provider retries cannot be negative")
        if self.http.min_retry_timeout < 0:
            errors.append("Provider minimum retry timeout cannot be negative")
        if self.http.max_pages < 1:
            errors.append("Provider max pages must be at least 1")

        # Annotation backend validation
        if self.annotation.backend not in ("redis", "mongo"):
            errors.append(f"Unknown annotation backend '{self.annotation.backend}' (expected redis or mongo)")
        if not self.annotation.entry_field:
            errors.append("Annotation entry field is required")

        if self.annotation.backend == "mongo":
            if not self.database.uri:
                errors.append("Database URI is required for the mongo annotation backend")
            if not self.database.name:
                errors.append("Database name is required for the mongo annotation backend")
        else:
            if not self.redis.host:
                errors.append("Redis host is required for the redis annotation backend")
            if not (1 <= self.redis.port <= 65535):
                errors.append("Redis port must be between 1 and 65535")

        if errors:
            raise ValueError(f"Configuration validation failed: {'; '.join(errors)}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary (for logging/debugging)"""
        config_dict = {}
        for field_name, field_value in self.__dict__.items():
            if hasattr(field_value, '__dict__'):
                config_dict[field_name] = field_value.__dict__.copy()
                # Mask sensitive values
                if field_name == 'redis':
                    if config_dict[field_name].get('password'):
                        config_dict[field_name]['password'] = '***masked***'
                elif field_name == 'database':
                    config_dict[field_name]['uri'] = _mask_uri(config_dict[field_name]['uri'])
            else:
                config_dict[field_name] = field_value
        return config_dict


def _mask_uri(uri: str) -> str:
    """Hide credentials embedded in a connection URI"""
    parts = urlsplit(uri)
    if parts.password is None:
        return uri
    netloc = f"{parts.username}:***masked***@{parts.hostname}"
    if parts.port:
        netloc += f":{parts.port}"
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


@lru_cache(maxsize=1)
def get_config() -> ApplicationConfig:
    """
    Get application configuration singleton.
    Uses LRU cache to ensure same instance is returned.
    """
    config = ApplicationConfig()
    logger.info(f"Configuration loaded for environment: {config.environment}")
    return config


def configure_logging(config: Optional[LoggingConfig] = None) -> List[logging.Handler]:
    """
    Install console (and optional rotating file) handlers on the root logger

    Handlers installed by an earlier call are replaced, so calling this again
    never duplicates output. Returns the installed handlers.
    """
    config = config or get_config().logging
    formatter = logging.Formatter(config.format)

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if config.log_file:
        handlers.append(RotatingFileHandler(
            config.log_file,
            maxBytes=config.max_file_size,
            backupCount=config.backup_count
        ))

    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, _HANDLER_TAG, False):
            root.removeHandler(handler)
            handler.close()

    for handler in handlers:
        handler.setFormatter(formatter)
        setattr(handler, _HANDLER_TAG, True)
        root.addHandler(handler)
    root.setLevel(config.level.upper())
    return handlers


# Convenience functions for common config access patterns
def get_http_config() -> HTTPConfig:
    """Get upstream HTTP configuration"""
    return get_config().http


def get_redis_config() -> RedisConfig:
    """Get Redis configuration"""
    return get_config().redis


def get_database_config() -> DatabaseConfig:
    """Get database configuration"""
    return get_config().database

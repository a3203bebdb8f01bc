# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Application configuration settings using Pydantic Settings.

Settings are loaded from environment variables (and an optional .env file)
with defaults that run the whole subsystem in memory. Each concern has its
own subsettings class with its own environment prefix.

Example:
    >>> from src.core.config.settings import get_settings
    >>> settings = get_settings()
    >>> settings.enrollment_cache.ttl_seconds
    300.0
"""

import string
from functools import lru_cache
from typing import Literal, Self

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RedisSettings(BaseSettings):
    """Redis connection used by the Redis document store.

    Attributes:
        host: Redis server host.
        port: Redis server port.
        password: Redis password (empty for none).
        database: Redis database number.
        max_connections: Maximum connection pool size.
    """

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        extra="ignore",
    )

    host: str = "localhost"
    port: int = 6379
    password: SecretStr = SecretStr("")
    database: int = 0
    max_connections: int = 20

    @property
    def url(self) -> str:
        """Build the Redis connection URL."""
        pwd = self.password.get_secret_value()
        auth = f":{pwd}@" if pwd else ""
        return f"redis://{auth}{self.host}:{self.port}/{self.database}"


class StoreSettings(BaseSettings):
    """Document store selection and tuning.

    Attributes:
        backend: Which adapter create_document_store() builds.
        key_prefix: Namespace for every key/channel the Redis adapter uses.
        lock_timeout: Seconds a scope lock is held before it auto-expires.
        lock_blocking_timeout: Seconds to wait for a scope lock.
    """

    model_config = SettingsConfigDict(
        env_prefix="STORE_",
        extra="ignore",
    )

    backend: Literal["memory", "redis"] = "memory"
    key_prefix: str = "classroom"
    lock_timeout: float = 10.0
    lock_blocking_timeout: float = 5.0


class InviteCodeSettings(BaseSettings):
    """Invite code issuance.

    Attributes:
        length: Characters per code.
        alphabet: Characters codes are drawn from.
        max_generation_attempts: Draws before giving up on a unique code.
        link_base_url: Origin used when building shareable join links.
    """

    model_config = SettingsConfigDict(
        env_prefix="INVITE_CODE_",
        extra="ignore",
    )

    length: int = Field(default=8, ge=4, le=32)
    alphabet: str = string.ascii_uppercase + string.digits
    max_generation_attempts: int = Field(default=10, ge=1)
    link_base_url: str = "http://localhost:5173"


class EnrollmentCacheSettings(BaseSettings):
    """Enrollment read-through cache.

    Attributes:
        ttl_seconds: How long a cold-fetched entry is served without
            re-querying. Live subscriptions refresh entries independently.
    """

    model_config = SettingsConfigDict(
        env_prefix="ENROLLMENT_CACHE_",
        extra="ignore",
    )

    ttl_seconds: float = Field(default=300.0, gt=0)


class Settings(BaseSettings):
    """Main settings aggregating all subsettings.

    Use get_settings() to obtain a cached instance.

    Attributes:
        environment: Current environment (development, staging, production).
        debug: Enable debug mode.
        log_level: Logging level.
        redis: Redis settings.
        store: Document store settings.
        invite_code: Invite code settings.
        enrollment_cache: Enrollment cache settings.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "DEBUG"

    redis: RedisSettings = Field(default_factory=RedisSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    invite_code: InviteCodeSettings = Field(default_factory=InviteCodeSettings)
    enrollment_cache: EnrollmentCacheSettings = Field(
        default_factory=EnrollmentCacheSettings
    )

    @model_validator(mode="after")
    def validate_production_settings(self) -> Self:
        """Reject configurations that cannot work in production.

        Raises:
            ValueError: If production runs on the in-memory store.
        """
        if self.environment == "production" and self.store.backend == "memory":
            raise ValueError(
                "The in-memory document store cannot be used in production. "
                "Set STORE_BACKEND=redis."
            )
        return self

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance.

    Call clear_settings_cache() to reload from the environment.

    Returns:
        Cached Settings instance.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache (used by tests and reconfiguration)."""
    get_settings.cache_clear()

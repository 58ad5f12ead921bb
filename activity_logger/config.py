"""Configuration module for the activity logger."""
from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        populate_by_name=True,
        extra="ignore",
    )

    contact_point: str = Field(default="127.0.0.1", validation_alias="CASSANDRA_HOST")
    port: int = Field(default=9042, ge=1, le=65535, validation_alias="CASSANDRA_PORT")
    keyspace: str = Field(default="activity_log", validation_alias="CASSANDRA_KEYSPACE")
    local_datacenter: str = Field(default="datacenter1", validation_alias="CASSANDRA_LOCAL_DC")
    replication_factor: int = Field(default=3, ge=1, validation_alias="CASSANDRA_REPLICATION_FACTOR")
    username: Optional[str] = Field(default=None, validation_alias="CASSANDRA_USERNAME")
    password: Optional[str] = Field(default=None, validation_alias="CASSANDRA_PASSWORD")
    request_timeout: float = Field(default=10.0, gt=0, validation_alias="CASSANDRA_REQUEST_TIMEOUT")
    connect_timeout: float = Field(default=5.0, gt=0, validation_alias="CASSANDRA_CONNECT_TIMEOUT")
    default_ttl_days: int = Field(default=30, ge=0, validation_alias="ACTIVITY_TTL_DAYS")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")


@lru_cache()
def load_settings() -> Settings:
    return Settings()

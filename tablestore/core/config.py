"""Application configuration using Pydantic Settings.

This project loads configuration from environment variables.

Optionally, you may point `ENV_FILE` at a local env file (for development).
The data-access layer never reads the environment itself: the composition
root builds a `Settings` instance and hands `Settings.table_config()` to
every Store it constructs.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Mapping

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from tablestore.domain.keys import (
    EMAIL_INDEX,
    EXTERNAL_ID_INDEX,
    TAG_INDEX,
    TIME_SORT_INDEX,
    TYPE_STATUS_INDEX,
)

# Hard limits of the underlying engine
ENGINE_BATCH_GET_MAX = 100
ENGINE_BATCH_WRITE_MAX = 25
ENGINE_TRANSACT_MAX = 100


class AppEnvironment(str, Enum):
    """Application environment values."""

    LOCAL = "local"
    TEST = "test"
    PROD = "prod"


@dataclass(frozen=True)
class TableConfig:
    """
    Immutable tuning knobs for a Store.

    `index_names` maps logical index names (see `tablestore.domain.keys`)
    to the physical index names of the deployed table. Missing entries
    fall back to the logical name.
    """

    index_names: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    batch_get_limit: int = ENGINE_BATCH_GET_MAX
    batch_write_limit: int = ENGINE_BATCH_WRITE_MAX
    batch_max_retries: int = 3
    batch_retry_base_delay: float = 0.05
    default_page_size: int = 20
    max_query_items: int = 1000
    query_all_page_size: int = 100

    def physical_index_name(self, logical_name: str) -> str:
        return self.index_names.get(logical_name, logical_name)


class Settings(BaseSettings):
    """
    Application settings with type validation.

    Configuration is loaded from environment variables, with support
    for .env files in development.
    """

    model_config = SettingsConfigDict(
        env_file=os.getenv("ENV_FILE") or None, env_prefix="", extra="ignore"
    )

    # Application
    app_env: AppEnvironment = AppEnvironment.LOCAL
    app_name: str = "tablestore"
    app_log_level: str = "INFO"

    # Observability
    observability_structured_logs: bool = True

    # OpenTelemetry Configuration
    otel_enabled: bool = False
    otel_service_name: str = "tablestore"
    otel_exporter_otlp_endpoint: str = "http://localhost:4317"

    # Table
    table_name: str = "clkk-backend-app-table"
    aws_region: str = "us-east-1"
    dynamodb_endpoint_url: str | None = None
    aws_access_key_id: str | None = None
    aws_secret_access_key: str | None = None

    # Physical index names
    index_external_id_name: str = EXTERNAL_ID_INDEX.name
    index_email_name: str = EMAIL_INDEX.name
    index_tag_name: str = TAG_INDEX.name
    index_time_sort_name: str = TIME_SORT_INDEX.name
    index_type_status_name: str = TYPE_STATUS_INDEX.name

    # Batching and paging
    batch_get_limit: int = ENGINE_BATCH_GET_MAX
    batch_write_limit: int = ENGINE_BATCH_WRITE_MAX
    batch_max_retries: int = 3
    batch_retry_base_delay: float = 0.05
    default_page_size: int = 20
    max_query_items: int = 1000
    query_all_page_size: int = 100

    # Caller-facing read cache
    cache_max_entries: int = 1000
    cache_ttl_seconds: float = 60.0

    @field_validator("app_env", mode="before")
    @classmethod
    def validate_app_env(cls, v: str | AppEnvironment) -> AppEnvironment:
        """Validate and parse app_env to AppEnvironment enum."""
        if isinstance(v, AppEnvironment):
            return v
        try:
            return AppEnvironment(v.lower())
        except ValueError:
            raise ValueError(
                f"app_env must be one of {[e.value for e in AppEnvironment]}, got '{v}'"
            )

    @field_validator("table_name")
    @classmethod
    def validate_table_name(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("table_name must be set")
        return v.strip()

    @field_validator("batch_get_limit")
    @classmethod
    def validate_batch_get_limit(cls, v: int) -> int:
        if not 1 <= v <= ENGINE_BATCH_GET_MAX:
            raise ValueError(f"batch_get_limit must be between 1 and {ENGINE_BATCH_GET_MAX}")
        return v

    @field_validator("batch_write_limit")
    @classmethod
    def validate_batch_write_limit(cls, v: int) -> int:
        if not 1 <= v <= ENGINE_BATCH_WRITE_MAX:
            raise ValueError(f"batch_write_limit must be between 1 and {ENGINE_BATCH_WRITE_MAX}")
        return v

    @field_validator("batch_max_retries")
    @classmethod
    def validate_batch_max_retries(cls, v: int) -> int:
        if not 0 <= v <= 10:
            raise ValueError("batch_max_retries must be between 0 and 10")
        return v

    @field_validator(
        "default_page_size", "max_query_items", "query_all_page_size", "cache_max_entries"
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be a positive integer")
        return v

    @model_validator(mode="after")
    def validate_production_settings(self) -> "Settings":
        """Reject local-only endpoints in production."""
        if self.app_env == AppEnvironment.PROD and self.dynamodb_endpoint_url:
            endpoint = self.dynamodb_endpoint_url
            if "localhost" in endpoint or "127.0.0.1" in endpoint:
                raise ValueError(
                    f"DYNAMODB_ENDPOINT_URL must not point at localhost in production: {endpoint}"
                )
        return self

    @property
    def index_names(self) -> dict[str, str]:
        """Logical index name -> physical index name."""
        return {
            EXTERNAL_ID_INDEX.name: self.index_external_id_name,
            EMAIL_INDEX.name: self.index_email_name,
            TAG_INDEX.name: self.index_tag_name,
            TIME_SORT_INDEX.name: self.index_time_sort_name,
            TYPE_STATUS_INDEX.name: self.index_type_status_name,
        }

    def table_config(self) -> TableConfig:
        """Build the immutable Store configuration from these settings."""
        return TableConfig(
            index_names=MappingProxyType(self.index_names),
            batch_get_limit=self.batch_get_limit,
            batch_write_limit=self.batch_write_limit,
            batch_max_retries=self.batch_max_retries,
            batch_retry_base_delay=self.batch_retry_base_delay,
            default_page_size=self.default_page_size,
            max_query_items=self.max_query_items,
            query_all_page_size=self.query_all_page_size,
        )

import json
from functools import lru_cache
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from pydantic import AliasChoices, AnyUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StorageInitializationError(RuntimeError):
    """Raised when the storage backend cannot be configured."""


def _ensure_sqlalchemy_postgres_scheme(value: str) -> str:
    if not value.lower().startswith("postgres"):
        return value

    parsed = urlparse(value)
    scheme = parsed.scheme.lower()

    if scheme == "postgres":
        scheme = "postgresql"

    if scheme == "postgresql":
        scheme = "postgresql+psycopg"

    if scheme not in {"postgresql+psycopg", "postgresql+asyncpg"}:
        scheme = "postgresql+psycopg"

    query_params = dict(parse_qsl(parsed.query, keep_blank_values=True))
    query_params.setdefault("sslmode", "require")
    query_params.setdefault("target_session_attrs", "read-write")
    new_query = urlencode(query_params, doseq=True)

    normalized = urlunparse(
        parsed._replace(
            scheme=scheme,
            query=new_query,
        )
    )
    return normalized


def _database_url_from_credentials(blob: str) -> str:
    try:
        credentials = json.loads(blob)
    except json.JSONDecodeError as exc:
        raise StorageInitializationError(
            "STORAGE_CREDENTIALS must be a JSON object"
        ) from exc
    if not isinstance(credentials, dict):
        raise StorageInitializationError("STORAGE_CREDENTIALS must be a JSON object")

    url = credentials.get("database_url") or credentials.get("url")
    if not url or not isinstance(url, str):
        raise StorageInitializationError(
            "STORAGE_CREDENTIALS is missing a 'database_url' entry"
        )
    return url


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    debug: bool = Field(False, description="Enable FastAPI debug mode")
    environment: str = Field(
        default="development",
        description="Runtime environment (development|staging|production)",
    )
    database_url: AnyUrl | str = Field(
        default="sqlite:///../data/market_sync.db",
        description="SQLAlchemy compatible database URL used outside production",
    )
    storage_credentials: str | None = Field(
        default=None,
        description="JSON credential blob for the storage backend, e.g. {\"database_url\": \"postgresql://...\"}",
    )
    polymarket_base_url: AnyUrl = Field(
        default="https://gamma-api.polymarket.com",
        description="Base URL for the Polymarket Gamma API",
    )
    polymarket_markets_path: str = Field(
        default="/markets",
        description="Relative path for the markets endpoint (also used for /markets/{id})",
    )
    upstream_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout applied to every upstream HTTP call",
        gt=0,
    )
    sync_fetch_batch_size: int = Field(
        default=10,
        description="Number of per-market upstream fetches issued concurrently",
        ge=1,
    )
    sync_fetch_batch_delay_seconds: float = Field(
        default=0.1,
        description="Pause between per-market fetch batches",
        ge=0,
    )
    sync_write_batch_limit: int = Field(
        default=490,
        description="Maximum number of writes committed per storage batch",
        ge=1,
        le=500,
    )
    sync_interval_seconds: int = Field(
        default=60,
        description="Interval between scheduled reconciliation cycles",
        ge=1,
    )
    enable_sync_schedule: bool = Field(
        default=True,
        validation_alias=AliasChoices("enable_sync_schedule", "enable_cron"),
        description="Run reconciliation cycles on a recurring schedule",
    )
    sync_title_fallback: bool = Field(
        default=False,
        description="Match markets without an upstream id by case-insensitive question/title",
    )
    min_volume_usd: float = Field(
        default=20_000,
        description="Minimum upstream volume for a market to be refreshed",
        ge=0,
    )
    max_markets_per_event: int = Field(
        default=5,
        description="Maximum number of sub-markets kept per upstream event",
        ge=1,
    )
    host: str = Field(default="0.0.0.0", description="Bind address for the trigger server")
    port: int = Field(default=3001, description="Port for the trigger server", ge=1, le=65535)

    @field_validator("database_url", mode="before")
    @classmethod
    def _normalize_postgres_urls(cls, value: Any) -> Any:
        if value is None or not isinstance(value, str):
            return value

        if value.startswith("postgresql+psycopg://") or value.startswith(
            "postgresql+asyncpg://"
        ):
            return value

        normalized = value
        if normalized.startswith("postgres://"):
            normalized = "postgresql://" + normalized[len("postgres://") :]

        return normalized

    @field_validator("storage_credentials", mode="before")
    @classmethod
    def _blank_credentials_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def resolved_database_url(self) -> str:
        if self.storage_credentials:
            return _ensure_sqlalchemy_postgres_scheme(
                _database_url_from_credentials(self.storage_credentials)
            )
        if self.environment.lower() == "production":
            raise StorageInitializationError(
                "STORAGE_CREDENTIALS must be set when ENVIRONMENT=production"
            )
        return _ensure_sqlalchemy_postgres_scheme(str(self.database_url))


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()

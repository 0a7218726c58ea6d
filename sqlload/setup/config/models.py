"""
Pydantic configuration models with validation.

DatabaseConfig: where to connect (host, port, credentials, schema)
LoadingConfig: how to load (format, target, threads, commit and retry policy)
AppConfig: top-level configuration (environment + database + loading)
"""

import codecs
import re
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator, model_validator
from sqlalchemy.engine import URL

from ...core.constants import (
    BUFFER_SIZE,
    COMMIT_AUTO,
    DEFAULT_ENCODING,
    SMALL_BUFFER_SIZE,
    Format,
    parse_commit_frequency,
)

_KEYWORD = re.compile(r"^\w+$")


class Environment(str, Enum):
    """Application environment enumeration."""
    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TESTING = "testing"


class DatabaseConfig(BaseModel):
    """Database connection configuration with validation."""

    host: str = Field(default="localhost", description="Database host")
    port: int = Field(default=5432, ge=1, le=65535, description="Database port")
    user: str = Field(default="postgres", description="Database username")
    password: str = Field(default="postgres", description="Database password")
    database_name: str = Field(default="postgres", description="Database name")
    schema_name: Optional[str] = Field(default=None, description="Schema used as search_path")
    application_name: str = Field(default="sqlload", description="Reported to the server")
    connect_timeout: Optional[int] = Field(default=None, ge=1, description="Connect timeout in seconds")

    @field_validator('host')
    @classmethod
    def validate_host(cls, v):
        if not v.strip():
            raise ValueError('Host cannot be empty')
        return v.strip()

    @field_validator('schema_name')
    @classmethod
    def validate_schema(cls, v):
        if v is not None and not v.strip():
            return None
        return v

    def get_connection_string(self, hide_password: bool = False) -> str:
        """Get PostgreSQL connection URL."""
        url = URL.create(
            "postgresql",
            username=self.user,
            password=self.password,
            host=self.host,
            port=self.port,
            database=self.database_name,
        )
        return url.render_as_string(hide_password=hide_password)

    def get_connect_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for ``psycopg2.connect``."""
        kwargs = {
            "host": self.host,
            "port": self.port,
            "user": self.user,
            "password": self.password,
            "dbname": self.database_name,
            "application_name": self.application_name,
        }
        if self.connect_timeout is not None:
            kwargs["connect_timeout"] = self.connect_timeout
        if self.schema_name:
            kwargs["options"] = f"-c search_path={self.schema_name}"
        return kwargs


class LoadingConfig(BaseModel):
    """Loading, batching and retry settings."""

    format: Format = Field(default=Format.AUTO, description="Input format, AUTO detects from the file")
    header: bool = Field(default=False, description="CSV files start with a header row")
    target: Optional[str] = Field(default=None, description="Target table override")
    threads: int = Field(default=1, ge=1, le=256, description="Number of segments loaded concurrently")
    commit_frequency: int = Field(
        default=0,
        ge=COMMIT_AUTO,
        description="0 commits once at the end, N every N rows, -1 lets the server commit periodically"
    )
    max_retries: int = Field(default=1, ge=0, description="Retries for transient server conflicts")
    retry_rollback: Optional[bool] = Field(
        default=None,
        description="Also retry transaction rollback errors (defaults to max_retries > 0)"
    )
    retry_backoff_seconds: float = Field(
        default=0.0,
        ge=0.0,
        description="Linear delay between retries (backoff * attempt)"
    )
    constraint_check_time: Optional[str] = Field(
        default=None,
        description="When to check uniqueness constraints, e.g. DEFERRED_WITH_RANGE_CACHE"
    )
    encoding: str = Field(default=DEFAULT_ENCODING, description="Input file encoding")
    bulk_copy: bool = Field(default=False, description="Load CSV through COPY instead of INSERTs")
    quiet: bool = Field(default=False, description="No progress output")
    periodic_commit_setting: str = Field(
        default="transactionPeriodicallyCommit",
        description="Session setting enabled for server managed commits"
    )
    constraint_check_setting: str = Field(
        default="constraintCheckTime",
        description="Session setting receiving constraint_check_time"
    )
    byte_buffer_size: int = Field(default=BUFFER_SIZE, ge=16, description="Read size for segment loading")
    split_buffer_size: int = Field(default=SMALL_BUFFER_SIZE, ge=16, description="Window size for boundary search")

    @field_validator('format', mode='before')
    @classmethod
    def validate_format(cls, v):
        if isinstance(v, str):
            return Format.from_name(v)
        return v

    @field_validator('commit_frequency', mode='before')
    @classmethod
    def validate_commit_frequency(cls, v):
        if isinstance(v, str):
            return parse_commit_frequency(v)
        return v

    @field_validator('constraint_check_time')
    @classmethod
    def validate_constraint_check_time(cls, v):
        if v is not None and not _KEYWORD.match(v):
            raise ValueError(f'Constraint check time {v!r} is not a keyword')
        return v

    @field_validator('periodic_commit_setting', 'constraint_check_setting')
    @classmethod
    def validate_setting_name(cls, v):
        if not _KEYWORD.match(v):
            raise ValueError(f'Setting name {v!r} is not a keyword')
        return v

    @field_validator('encoding')
    @classmethod
    def validate_encoding(cls, v):
        try:
            codecs.lookup(v)
        except LookupError as e:
            raise ValueError(f'Unknown encoding: {v}') from e
        return v

    @model_validator(mode='after')
    def default_retry_rollback(self):
        if self.retry_rollback is None:
            self.retry_rollback = self.max_retries > 0
        return self

    @property
    def is_auto_commit(self) -> bool:
        return self.commit_frequency == COMMIT_AUTO


class AppConfig(BaseModel):
    """Top-level application configuration."""

    environment: Environment = Field(default=Environment.DEVELOPMENT)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    loading: LoadingConfig = Field(default_factory=LoadingConfig)

    def with_overrides(self, **overrides) -> "AppConfig":
        """
        Copy with explicit overrides applied. Keys naming a ``DatabaseConfig``
        field go to ``database``, the rest to ``loading``. None values are ignored.
        """
        database = self.database.model_dump()
        loading = self.loading.model_dump()
        for key, value in overrides.items():
            if value is None:
                continue
            if key in DatabaseConfig.model_fields:
                database[key] = value
            elif key in LoadingConfig.model_fields:
                loading[key] = value
            else:
                raise ValueError(f"Unknown configuration option: {key}")
        if overrides.get('max_retries') is not None and overrides.get('retry_rollback') is None:
            loading['retry_rollback'] = None
        return AppConfig(
            environment=self.environment,
            database=DatabaseConfig(**database),
            loading=LoadingConfig(**loading),
        )

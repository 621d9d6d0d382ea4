"""Database configuration for the permission store.

Grants, roles and tenant-owned entities live in one relational database:
PostgreSQL in deployments, SQLite for local development and tests.
Values come from DB_* environment variables or a .env file.
"""

from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """
    Connection settings.

    DB_URL, when set, is used verbatim and the discrete host/port/name
    fields are ignored.

    Example environment:
        DB_DRIVER=postgresql+asyncpg
        DB_HOST=db.internal
        DB_NAME=clinic_authz
        DB_USER=authz
        DB_PASSWORD=...
    """

    model_config = SettingsConfigDict(
        env_prefix="DB_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    url: Optional[str] = Field(default=None, description="Full async DSN; overrides discrete fields")
    driver: str = Field(default="sqlite+aiosqlite", description="SQLAlchemy async driver")

    host: str = Field(default="localhost")
    port: int = Field(default=5432)
    name: str = Field(default="clinic_authz")
    user: str = Field(default="")
    password: str = Field(default="")

    sqlite_path: Path = Field(default=Path("data/authz.db"), description="SQLite database file")
    sqlite_timeout_seconds: float = Field(default=15.0, gt=0, description="SQLite busy timeout")

    # Pool sizing applies to server databases only; SQLite uses NullPool
    pool_size: int = Field(default=10, ge=1, le=100)
    max_overflow: int = Field(default=20, ge=0, le=100)
    pool_pre_ping: bool = Field(default=True)

    echo_sql: bool = Field(default=False, description="Log every SQL statement")

    @computed_field
    @property
    def is_sqlite(self) -> bool:
        return (self.url or self.driver).lower().startswith("sqlite")

    @computed_field
    @property
    def async_url(self) -> str:
        """Async DSN handed to create_async_engine."""
        if self.url:
            return self.url

        if self.is_sqlite:
            self.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
            return f"{self.driver}:///{self.sqlite_path.absolute()}"

        credentials = ""
        if self.user:
            credentials = self.user if not self.password else f"{self.user}:{self.password}"
            credentials += "@"
        return f"{self.driver}://{credentials}{self.host}:{self.port}/{self.name}"

    def connect_args(self) -> Dict[str, Any]:
        """Driver-level connection arguments."""
        if self.is_sqlite:
            return {"check_same_thread": False, "timeout": self.sqlite_timeout_seconds}
        return {}


@lru_cache
def get_database_settings() -> DatabaseSettings:
    """Get cached database settings instance."""
    return DatabaseSettings()

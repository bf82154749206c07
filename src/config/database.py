"""Hierarchy store connection settings.

The store runs on PostgreSQL in production and on SQLite for development
and tests. Every field is read from the environment with the DB_ prefix:

    DB_DRIVER=postgresql+asyncpg
    DB_HOST=db.internal
    DB_NAME=role_hierarchy
    DB_SQLITE_PATH=:memory:
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import URL

SQLITE_MEMORY = ":memory:"


class DatabaseSettings(BaseSettings):
    """Where the hierarchy tables live and how connections are pooled."""

    model_config = SettingsConfigDict(
        env_prefix="DB_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    driver: str = Field(
        default="sqlite+aiosqlite",
        description="SQLAlchemy async driver, sqlite+aiosqlite or postgresql+asyncpg"
    )

    # PostgreSQL
    host: str = Field(default="localhost")
    port: int = Field(default=5432)
    name: str = Field(default="role_hierarchy")
    user: str = Field(default="")
    password: str = Field(default="")

    # SQLite file, or ":memory:" for one shared in-process database
    sqlite_path: str = Field(default="data/role_hierarchy.db")

    # PostgreSQL pool
    pool_size: int = Field(default=10, ge=1, le=100)
    max_overflow: int = Field(default=20, ge=0, le=100)
    pool_timeout: int = Field(default=30, ge=1)
    pool_recycle: int = Field(default=1800, ge=60)
    pool_pre_ping: bool = Field(default=True)

    echo_sql: bool = Field(default=False, description="Log every SQL statement")
    query_timeout: int = Field(default=30, ge=1, description="Seconds before a query is abandoned")

    @computed_field
    @property
    def is_sqlite(self) -> bool:
        return self.driver.lower().startswith("sqlite")

    @computed_field
    @property
    def is_postgres(self) -> bool:
        return self.driver.lower().startswith("postgres")

    @computed_field
    @property
    def is_memory(self) -> bool:
        return self.is_sqlite and self.sqlite_path == SQLITE_MEMORY

    @computed_field
    @property
    def async_url(self) -> str:
        """Connection URL for create_async_engine. Creates the SQLite directory."""
        if self.is_memory:
            return f"{self.driver}://"
        if self.is_sqlite:
            path = Path(self.sqlite_path)
            path.parent.mkdir(parents=True, exist_ok=True)
            return f"{self.driver}:///{path.absolute()}"

        url = URL.create(
            drivername=self.driver,
            username=self.user or None,
            password=self.password or None,
            host=self.host,
            port=self.port,
            database=self.name,
        )
        return url.render_as_string(hide_password=False)

    def get_connect_args(self) -> dict:
        if self.is_sqlite:
            return {"check_same_thread": False, "timeout": self.query_timeout}
        return {"command_timeout": self.query_timeout}


@lru_cache
def get_database_settings() -> DatabaseSettings:
    """Settings loaded once from the environment."""
    return DatabaseSettings()

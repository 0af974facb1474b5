"""Settings and the immutable migration configuration.

Two layers:

- ``ChangeLedgerSettings`` reads the environment (``CHANGELEDGER_*``) and
  ``.env`` files through pydantic-settings. It is permissive; every field
  has a default so the CLI can overlay command-line options on top.
- ``MigrationConfig`` is the frozen value the engine consumes. It is
  validated once, when it is constructed, and rejects an invalid state
  with ``ConfigurationError`` before any connection is attempted.

Examples:
    >>> config = MigrationConfig(database="app")
    >>> config.ledger_collection
    'dbchangelog'
    >>> MigrationConfig(database="")
    Traceback (most recent call last):
    ...
    changeledger.core.errors.ConfigurationError: ...

Tags:
    settings, configuration, pydantic, environment, changeledger
"""

from __future__ import annotations

from urllib.parse import unquote, urlsplit

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from changeledger.core.errors import ConfigurationError

DEFAULT_URI = "mongodb://localhost:27017/"
DEFAULT_LEDGER_COLLECTION = "dbchangelog"


class ChangeLedgerSettings(BaseSettings):
    """Environment-driven settings.

    Fields
    ──────
    uri                          : MongoDB connection string
    database                     : Target database (falls back to the URI path)
    ledger_collection            : Collection holding ledger entries
    catalog                      : ``module:attribute`` reference to a Catalog
    enabled                      : Set to false to turn runs into no-ops
    log_level                    : Structlog log level
    json_logs                    : Force JSON (true) or console (false) output
    server_selection_timeout_ms  : How long to wait for the server on connect
    """

    model_config = SettingsConfigDict(
        env_prefix="CHANGELEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    uri: str = DEFAULT_URI
    database: str = ""
    ledger_collection: str = DEFAULT_LEDGER_COLLECTION
    catalog: str = ""
    enabled: bool = True

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    json_logs: bool | None = None

    # ── Connection ───────────────────────────────────────────────
    server_selection_timeout_ms: int = Field(default=5000, gt=0)


class MigrationConfig(BaseModel):
    """Validated, immutable configuration for one engine."""

    model_config = ConfigDict(frozen=True)

    uri: str = DEFAULT_URI
    database: str
    ledger_collection: str = DEFAULT_LEDGER_COLLECTION
    enabled: bool = True
    server_selection_timeout_ms: int = 5000

    def __init__(self, **data) -> None:
        try:
            super().__init__(**data)
        except ValidationError as exc:
            errors = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}"
                for err in exc.errors()
            )
            raise ConfigurationError(f"Invalid migration configuration: {errors}", cause=exc) from exc

    @field_validator("database")
    @classmethod
    def _database_not_empty(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError(
                "database name is not set; define it in the MongoDB URI or via the database setting"
            )
        return value

    @field_validator("ledger_collection")
    @classmethod
    def _collection_not_empty(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("ledger collection name must not be empty")
        return value

    @field_validator("server_selection_timeout_ms")
    @classmethod
    def _positive_timeout(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("server selection timeout must be positive")
        return value

    @classmethod
    def from_settings(cls, settings: ChangeLedgerSettings) -> MigrationConfig:
        """Build a config, taking the database from the URI path when unset."""
        return cls(
            uri=settings.uri,
            database=settings.database or database_from_uri(settings.uri),
            ledger_collection=settings.ledger_collection,
            enabled=settings.enabled,
            server_selection_timeout_ms=settings.server_selection_timeout_ms,
        )


def database_from_uri(uri: str) -> str:
    """Return the database named in a MongoDB URI path, or ``""``.

    Only the path is read; hosts and options are left to the driver.
    """
    parts = urlsplit(uri)
    if parts.scheme not in ("mongodb", "mongodb+srv"):
        raise ConfigurationError(f"Invalid MongoDB URI scheme: {parts.scheme or uri!r}")
    path = unquote(parts.path.lstrip("/"))
    # "/database.collection" is still accepted by the driver
    return path.split(".", 1)[0]


__all__ = [
    "DEFAULT_URI",
    "DEFAULT_LEDGER_COLLECTION",
    "ChangeLedgerSettings",
    "MigrationConfig",
    "database_from_uri",
]

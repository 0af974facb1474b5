"""
Structured error types for changeledger.

Every failure the migration engine can raise is a ``ChangeLedgerError``
subclass carrying a category, a structured context (which changeset, which
changelog) and an optional chained cause. The category tells the caller
whether the run was stopped or only one changeset was passed over.

Manifesto:
    - **Typed Error Hierarchy:** One class per failure mode of a run
    - **Fatal vs recoverable is explicit:** ``recoverable`` is a class default
    - **Rich Context:** Errors carry the changeset identity for logging
    - **Error Chaining:** Driver exceptions are preserved as ``cause``

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                      ChangeLedgerError                        │
        │          (category, recoverable, context, cause)              │
        ├──────────────────────────────────────────────────────────────┤
        │                                                               │
        │  ConfigurationError      StorageConnectionError               │
        │  (CONFIG, fatal)         (DATABASE, fatal)                    │
        │       │                                                       │
        │  MissingConfigError                                           │
        │                                                               │
        │  ChangesetArityError     InvocationError                      │
        │  (CHANGESET, skip)       (CHANGESET, fatal)                   │
        │                                                               │
        │  DuplicateEntryError     CatalogError                         │
        │  (INTEGRITY, fatal)      (CATALOG, fatal)                     │
        │                                                               │
        │  LedgerIntegrityError                                         │
        │  (INTEGRITY, fatal)                                           │
        └──────────────────────────────────────────────────────────────┘

Examples:
    >>> error = ChangesetArityError("bad signature")
    >>> error.recoverable
    True
    >>> error.with_context(change_id="001", author="ops").context.change_id
    '001'

Tags:
    error-handling, exception-hierarchy, changeledger, migrations

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """
    Error categories for classification and routing.

    Attributes:
        CONFIG: Missing or invalid settings
        DATABASE: Connection to the document store
        CHANGESET: Problems with a single changeset body
        INTEGRITY: Ledger uniqueness violations
        CATALOG: Catalog registration and loading
        INTERNAL: Bugs, unexpected state
    """

    CONFIG = "CONFIG"
    DATABASE = "DATABASE"
    CHANGESET = "CHANGESET"
    INTEGRITY = "INTEGRITY"
    CATALOG = "CATALOG"
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Only the fields that are set end up in ``to_dict()``, so the same
    context type serves connection errors (no changeset) and changeset
    errors alike.

    Attributes:
        change_id: Changeset id
        author: Changeset author
        source_unit: Changelog the changeset belongs to
        source_method: Changeset label inside the changelog
        metadata: Additional key-value pairs
    """

    change_id: str | None = None
    author: str | None = None
    source_unit: str | None = None
    source_method: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["change_id", "author", "source_unit", "source_method"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class ChangeLedgerError(Exception):
    """
    Base exception for all changeledger errors.

    Subclasses set ``default_category`` and ``default_recoverable``. A
    recoverable error affects one changeset only; the engine logs it and
    moves on to the next descriptor. Everything else stops the run.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_recoverable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        recoverable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.recoverable = recoverable if recoverable is not None else self.default_recoverable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> ChangeLedgerError:
        """
        Add context to this error (fluent API).

        Usage:
            raise InvocationError("Body failed").with_context(
                change_id="001", author="ops"
            )
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "recoverable": self.recoverable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================


class ConfigurationError(ChangeLedgerError):
    """
    Configuration error.

    Raised while the configuration value is built, so it always happens
    before a connection is attempted.
    """

    default_category = ErrorCategory.CONFIG


class MissingConfigError(ConfigurationError):
    """Required configuration is missing."""

    def __init__(self, key: str, message: str | None = None):
        self.key = key
        super().__init__(message or f"Missing required configuration: {key}")


# =============================================================================
# STORAGE ERRORS
# =============================================================================


class StorageConnectionError(ChangeLedgerError):
    """Cannot establish or verify the document store connection."""

    default_category = ErrorCategory.DATABASE


class DuplicateEntryError(ChangeLedgerError):
    """
    The ledger rejected an append because the identity is already recorded.

    Either another runner applied the same changeset concurrently or two
    descriptors share an identity.
    """

    default_category = ErrorCategory.INTEGRITY

    def __init__(self, change_id: str, author: str, **kwargs: Any):
        self.change_id = change_id
        self.author = author
        super().__init__(
            f"Ledger already holds an entry for changeset {change_id!r} by {author!r}",
            **kwargs,
        )
        self.with_context(change_id=change_id, author=author)


class LedgerIntegrityError(ChangeLedgerError):
    """
    The unique ``(changeId, author)`` index cannot be put in place.

    ``duplicates`` lists the identities recorded more than once; they have
    to be cleaned up by hand before the engine can run.
    """

    default_category = ErrorCategory.INTEGRITY

    def __init__(self, message: str, duplicates: list[tuple[str, str]] | None = None, **kwargs: Any):
        self.duplicates = list(duplicates or [])
        super().__init__(message, **kwargs)
        if self.duplicates:
            self.with_context(duplicates=[f"{i}:{a}" for i, a in self.duplicates])


# =============================================================================
# CHANGESET ERRORS
# =============================================================================


class ChangesetArityError(ChangeLedgerError):
    """Changeset body has an unsupported parameter list."""

    default_category = ErrorCategory.CHANGESET
    default_recoverable = True


class InvocationError(ChangeLedgerError):
    """Changeset body raised during execution."""

    default_category = ErrorCategory.CHANGESET


# =============================================================================
# CATALOG ERRORS
# =============================================================================


class CatalogError(ChangeLedgerError):
    """Catalog registration or loading error."""

    default_category = ErrorCategory.CATALOG


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_recoverable(error: Exception) -> bool:
    """Check if an error only affects a single changeset."""
    if isinstance(error, ChangeLedgerError):
        return error.recoverable
    return False


def categorize_error(error: Exception) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, ChangeLedgerError):
        return error.category
    return ErrorCategory.INTERNAL


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "ChangeLedgerError",
    "ConfigurationError",
    "MissingConfigError",
    "StorageConnectionError",
    "DuplicateEntryError",
    "LedgerIntegrityError",
    "ChangesetArityError",
    "InvocationError",
    "CatalogError",
    "is_recoverable",
    "categorize_error",
]

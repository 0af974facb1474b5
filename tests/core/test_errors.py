"""Tests for changeledger.core.errors module."""

import pytest

from changeledger.core.errors import (
    CatalogError,
    ChangeLedgerError,
    ChangesetArityError,
    ConfigurationError,
    DuplicateEntryError,
    ErrorCategory,
    ErrorContext,
    InvocationError,
    MissingConfigError,
    StorageConnectionError,
    categorize_error,
    is_recoverable,
)


class TestErrorContext:
    """Test ErrorContext dataclass."""

    def test_empty_context_serializes_to_empty_dict(self):
        assert ErrorContext().to_dict() == {}

    def test_only_set_fields_are_serialized(self):
        ctx = ErrorContext(change_id="001", author="ops")
        assert ctx.to_dict() == {"change_id": "001", "author": "ops"}

    def test_metadata_is_merged(self):
        ctx = ErrorContext(change_id="001", metadata={"database": "app"})
        assert ctx.to_dict() == {"change_id": "001", "database": "app"}


class TestChangeLedgerError:
    """Test the base error."""

    def test_defaults(self):
        error = ChangeLedgerError("boom")
        assert error.message == "boom"
        assert error.category == ErrorCategory.INTERNAL
        assert error.recoverable is False
        assert error.cause is None

    def test_cause_is_chained(self):
        cause = ValueError("inner")
        error = ChangeLedgerError("outer", cause=cause)
        assert error.cause is cause
        assert error.__cause__ is cause

    def test_with_context_sets_known_fields_and_metadata(self):
        error = ChangeLedgerError("boom").with_context(change_id="001", database="app")
        assert error.context.change_id == "001"
        assert error.context.metadata == {"database": "app"}

    def test_to_dict(self):
        error = InvocationError("failed", cause=RuntimeError("x")).with_context(author="ops")
        d = error.to_dict()
        assert d["error_type"] == "InvocationError"
        assert d["category"] == "CHANGESET"
        assert d["recoverable"] is False
        assert d["context"] == {"author": "ops"}
        assert d["cause"] == "x"

    def test_repr(self):
        assert repr(ConfigurationError("bad")) == "ConfigurationError('bad', category=CONFIG)"


class TestErrorTaxonomy:
    """Fatal vs recoverable defaults for each error type."""

    @pytest.mark.parametrize(
        "error, category, recoverable",
        [
            (ConfigurationError("x"), ErrorCategory.CONFIG, False),
            (StorageConnectionError("x"), ErrorCategory.DATABASE, False),
            (ChangesetArityError("x"), ErrorCategory.CHANGESET, True),
            (InvocationError("x"), ErrorCategory.CHANGESET, False),
            (DuplicateEntryError("001", "ops"), ErrorCategory.INTEGRITY, False),
            (CatalogError("x"), ErrorCategory.CATALOG, False),
        ],
    )
    def test_defaults(self, error, category, recoverable):
        assert error.category == category
        assert error.recoverable is recoverable
        assert is_recoverable(error) is recoverable
        assert categorize_error(error) == category

    def test_missing_config_message(self):
        error = MissingConfigError("database")
        assert error.key == "database"
        assert "database" in error.message
        assert isinstance(error, ConfigurationError)

    def test_duplicate_entry_carries_identity(self):
        error = DuplicateEntryError("001", "ops")
        assert error.change_id == "001"
        assert error.author == "ops"
        assert error.context.to_dict() == {"change_id": "001", "author": "ops"}

    def test_plain_exceptions(self):
        assert is_recoverable(ValueError("x")) is False
        assert categorize_error(ValueError("x")) == ErrorCategory.INTERNAL

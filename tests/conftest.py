"""
Shared pytest fixtures for changeledger tests.

This module provides:
- An in-memory MongoDB (mongomock) client and database
- A connected MigrationEngine and its Ledger
- A ``make_descriptor`` factory and a ``CallRecorder`` for changeset bodies

Usage:
    def test_something(engine, make_descriptor):
        engine.run([make_descriptor("001")])
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import mongomock
import pytest
import structlog

from changeledger.core.engine import MigrationEngine
from changeledger.core.models import ChangesetDescriptor
from changeledger.core.settings import MigrationConfig

FIXED_TIME = datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)

        if "integration" in str(test_path):
            item.add_marker(pytest.mark.integration)

        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration"}):
            item.add_marker(pytest.mark.unit)


@pytest.fixture(autouse=True)
def clean_log_context():
    """Make sure no structlog context leaks between tests."""
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()


# =============================================================================
# MongoDB Fixtures
# =============================================================================


@pytest.fixture()
def mongo_client() -> mongomock.MongoClient:
    """In-memory MongoDB client."""
    return mongomock.MongoClient()


@pytest.fixture()
def config() -> MigrationConfig:
    return MigrationConfig(uri="mongodb://localhost:27017/", database="app")


@pytest.fixture()
def engine(config: MigrationConfig, mongo_client: mongomock.MongoClient) -> MigrationEngine:
    """Connected engine with the ledger index in place."""
    eng = MigrationEngine(config, client=mongo_client, clock=lambda: FIXED_TIME)
    eng.connect()
    eng.ledger.ensure_unique_index()
    return eng


@pytest.fixture()
def database(engine: MigrationEngine):
    return engine.database


@pytest.fixture()
def ledger(engine: MigrationEngine):
    return engine.ledger


# =============================================================================
# Changeset Fixtures
# =============================================================================


class CallRecorder:
    """Collects the names of changeset bodies in the order they ran."""

    def __init__(self) -> None:
        self.calls: list[str] = []

    def body(self, name: str) -> Callable[[], None]:
        def fn() -> None:
            self.calls.append(name)

        fn.__qualname__ = name
        return fn

    def count(self, name: str) -> int:
        return self.calls.count(name)


@pytest.fixture()
def recorder() -> CallRecorder:
    return CallRecorder()


@pytest.fixture()
def make_descriptor(recorder: CallRecorder) -> Callable[..., ChangesetDescriptor]:
    """Factory for descriptors whose default body records its id."""

    def factory(
        id: str,
        author: str = "ops",
        order: str = "001",
        run_always: bool = False,
        invoke: Callable[..., Any] | None = None,
        source_unit: str = "tests.Changelog",
    ) -> ChangesetDescriptor:
        return ChangesetDescriptor(
            id=id,
            author=author,
            order=order,
            invoke=invoke or recorder.body(id),
            run_always=run_always,
            source_unit=source_unit,
            source_method=f"changeset_{id}",
        )

    return factory


@pytest.fixture()
def fixed_time() -> datetime:
    """Timestamp the ``engine`` fixture stamps on new ledger entries."""
    return FIXED_TIME

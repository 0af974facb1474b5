"""Migration engine.

Walks an ordered sequence of changeset descriptors and decides, for each,
whether to apply it, re-apply it or pass over it:

====================  ===========  ==========  ==============
Ledger has identity   run_always   Invoke      Append entry
====================  ===========  ==========  ==============
no                    any          yes         yes
yes                   true         yes         no
yes                   false        no          no
====================  ===========  ==========  ==============

Descriptors are processed strictly one after another, in the order given;
the engine never re-sorts them.

Failure policy
--------------
Errors are sorted by their ``recoverable`` flag:

- recoverable (``ChangesetArityError``): logged, that changeset is passed
  over without a ledger entry, the run continues.
- anything else (``InvocationError``, ``DuplicateEntryError``): the run
  stops at that changeset. Nothing is retried.
- ``LedgerIntegrityError`` from ``execute()``: the ledger already holds
  duplicate identities; nothing runs.

Concurrent runners
------------------
``exists`` -> ``invoke`` -> ``append`` is not atomic. Two engines started
at the same time against the same ledger can both see a changeset as new
and both invoke it; the unique index then rejects the second ``append``
and that engine's run stops with ``DuplicateEntryError``. The ledger never
holds a duplicate, but the body has run twice. Changesets that cannot
tolerate this must be deployed by a single runner at a time.

Example::

    from changeledger import Catalog, MigrationConfig, MigrationEngine

    config = MigrationConfig(uri="mongodb://localhost:27017/", database="app")
    with MigrationEngine(config) as engine:
        report = engine.execute(catalog)

Tags:
    changeledger, engine, migrations, idempotent, exactly-once
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pymongo import MongoClient
from pymongo.errors import PyMongoError

from changeledger.core.catalog import Catalog
from changeledger.core.errors import (
    ChangeLedgerError,
    StorageConnectionError,
    categorize_error,
    is_recoverable,
)
from changeledger.core.invoker import Invoker
from changeledger.core.ledger import Ledger
from changeledger.core.logging import LogContext, get_logger
from changeledger.core.models import ChangesetDescriptor, LedgerEntry, utcnow
from changeledger.core.settings import MigrationConfig


@dataclass
class RunReport:
    """Outcome of one run, by changeset identity."""

    run_id: str = ""
    applied: list[tuple[str, str]] = field(default_factory=list)
    reapplied: list[tuple[str, str]] = field(default_factory=list)
    skipped: list[tuple[str, str]] = field(default_factory=list)
    rejected: dict[tuple[str, str], str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return len(self.rejected) == 0

    def to_dict(self) -> dict[str, Any]:
        def fmt(identity: tuple[str, str]) -> str:
            return f"{identity[0]}:{identity[1]}"

        return {
            "run_id": self.run_id,
            "applied": [fmt(i) for i in self.applied],
            "reapplied": [fmt(i) for i in self.reapplied],
            "skipped": [fmt(i) for i in self.skipped],
            "rejected": {fmt(i): reason for i, reason in self.rejected.items()},
            "success": self.success,
        }


class MigrationEngine:
    """Applies changesets exactly once each, recording them in the ledger.

    Parameters
    ----------
    config
        Validated ``MigrationConfig``.
    client
        Optional ``MongoClient`` (or compatible). When omitted, ``connect()``
        creates one from ``config.uri`` and ``close()`` closes it.
    invoker
        Optional ``Invoker``; mainly for tests.
    clock
        Returns the ``applied_at`` timestamp for new ledger entries.
    logger
        Structlog logger; defaults to this module's logger.
    """

    def __init__(
        self,
        config: MigrationConfig,
        *,
        client: Any | None = None,
        invoker: Invoker | None = None,
        clock: Callable[[], datetime] = utcnow,
        logger: Any | None = None,
    ) -> None:
        self.config = config
        self._client = client
        self._owns_client = False
        self._database: Any | None = None
        self._ledger: Ledger | None = None
        self._invoker = invoker or Invoker()
        self._clock = clock
        self._log = logger or get_logger(__name__)

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    def connect(self) -> Any:
        """Connect, verify with ``ping`` and select the target database.

        Raises:
            StorageConnectionError: The server cannot be reached.
        """
        if self._database is not None:
            return self._database

        try:
            if self._client is None:
                self._client = MongoClient(
                    self.config.uri,
                    serverSelectionTimeoutMS=self.config.server_selection_timeout_ms,
                    tz_aware=True,
                )
                self._owns_client = True
            self._client.admin.command("ping")
        except PyMongoError as exc:
            raise StorageConnectionError(
                f"Cannot connect to MongoDB: {exc}", cause=exc
            ).with_context(database=self.config.database) from exc

        self._database = self._client[self.config.database]
        self._ledger = Ledger(self._database[self.config.ledger_collection])
        self._log.info(
            "engine.connected",
            database=self.config.database,
            ledger_collection=self.config.ledger_collection,
        )
        return self._database

    @property
    def database(self) -> Any:
        if self._database is None:
            raise StorageConnectionError("Database is not connected; call connect() first")
        return self._database

    @property
    def ledger(self) -> Ledger:
        if self._ledger is None:
            raise StorageConnectionError("Database is not connected; call connect() first")
        return self._ledger

    def close(self) -> None:
        """Close the client if this engine created it."""
        if self._owns_client and self._client is not None:
            self._client.close()
            self._client = None
            self._owns_client = False
        self._database = None
        self._ledger = None

    def __enter__(self) -> MigrationEngine:
        return self

    def __exit__(self, *args) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def execute(self, catalog: Catalog | Iterable[ChangesetDescriptor]) -> RunReport | None:
        """Connect, ensure the ledger index and run the whole catalog.

        Returns ``None`` without touching the database when the engine is
        disabled in configuration.
        """
        if not self.config.enabled:
            self._log.info("engine.disabled")
            return None

        self._log.info("engine.started", database=self.config.database)
        self.connect()
        self.ledger.ensure_unique_index()
        descriptors = catalog.descriptors() if isinstance(catalog, Catalog) else list(catalog)
        report = self.run(descriptors)
        self._log.info("engine.finished", **_counts(report))
        return report

    def run(self, descriptors: Iterable[ChangesetDescriptor]) -> RunReport:
        """Apply, re-apply or pass over each descriptor, in order.

        Raises:
            InvocationError: A changeset body failed; the run stops there.
            DuplicateEntryError: The ledger rejected an entry; the run stops.
        """
        report = RunReport(run_id=uuid.uuid4().hex)
        ledger = self.ledger
        database = self.database

        with LogContext(run_id=report.run_id):
            for descriptor in descriptors:
                self._log.debug(
                    "engine.examining",
                    change_id=descriptor.id,
                    author=descriptor.author,
                    changelog=descriptor.source_unit,
                )
                try:
                    self._process(descriptor, ledger, database, report)
                except ChangeLedgerError as exc:
                    if not is_recoverable(exc):
                        raise
                    report.rejected[descriptor.identity] = exc.message
                    self._log.error(
                        "engine.changeset_rejected",
                        change_id=descriptor.id,
                        author=descriptor.author,
                        category=categorize_error(exc).value,
                        error=exc.message,
                    )
        return report

    def pending(self, catalog: Catalog | Iterable[ChangesetDescriptor]) -> list[ChangesetDescriptor]:
        """Descriptors that have no ledger entry yet."""
        descriptors = catalog.descriptors() if isinstance(catalog, Catalog) else list(catalog)
        ledger = self.ledger
        return [d for d in descriptors if not ledger.exists(d.id, d.author)]

    def _process(
        self,
        descriptor: ChangesetDescriptor,
        ledger: Ledger,
        database: Any,
        report: RunReport,
    ) -> None:
        if not ledger.exists(descriptor.id, descriptor.author):
            self._invoker.invoke(descriptor, database)
            ledger.append(LedgerEntry.for_descriptor(descriptor, applied_at=self._clock()))
            report.applied.append(descriptor.identity)
            self._log.info("engine.changeset_applied", change_id=descriptor.id, author=descriptor.author)
        elif descriptor.run_always:
            self._invoker.invoke(descriptor, database)
            report.reapplied.append(descriptor.identity)
            self._log.info("engine.changeset_reapplied", change_id=descriptor.id, author=descriptor.author)
        else:
            report.skipped.append(descriptor.identity)
            self._log.debug("engine.changeset_passed_over", change_id=descriptor.id, author=descriptor.author)


def _counts(report: RunReport) -> dict[str, int]:
    return {
        "applied": len(report.applied),
        "reapplied": len(report.reapplied),
        "skipped": len(report.skipped),
        "rejected": len(report.rejected),
    }


__all__ = ["MigrationEngine", "RunReport"]

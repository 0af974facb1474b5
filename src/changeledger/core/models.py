"""Data model: changeset descriptors, ledger entries and ordering.

``ChangesetDescriptor`` is what a catalog hands the engine: one per
changeset, immutable. ``LedgerEntry`` is what the ledger stores once a
changeset has been applied. Both are keyed by the ``(id, author)`` identity.

Ordering
--------
Changesets are grouped by changelog; changelogs are sorted by their order
key, changesets inside a changelog by theirs. Equal keys keep declaration
order because ``sorted`` is stable. Keys are strings compared
lexicographically, so ``"002"`` runs before ``"010"`` but ``"2"`` does not.

Tags:
    changeledger, models, dataclass, ordering
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

# Document field names of a ledger entry
KEY_CHANGE_ID = "changeId"
KEY_AUTHOR = "author"
KEY_TIMESTAMP = "timestamp"
KEY_CHANGELOG_CLASS = "changeLogClass"
KEY_CHANGESET_METHOD = "changeSetMethod"


@dataclass(frozen=True)
class ChangesetDescriptor:
    """
    One changeset as supplied by the catalog.

    Attributes:
        id: Changeset id, unique together with ``author``
        author: Changeset author
        order: Order key inside its changelog
        invoke: Callable taking no argument or one storage handle
        run_always: Invoke on every run, not only the first
        source_unit: Label of the originating changelog
        source_method: Label of the changeset inside the changelog
    """

    id: str
    author: str
    order: str
    invoke: Callable[..., Any] = field(compare=False)
    run_always: bool = False
    source_unit: str = ""
    source_method: str = ""

    @property
    def identity(self) -> tuple[str, str]:
        return (self.id, self.author)

    def __str__(self) -> str:
        return f"ChangeSet[id={self.id}, author={self.author}, unit={self.source_unit}.{self.source_method}]"


@dataclass
class LedgerEntry:
    """
    Record of one applied changeset.

    Attributes:
        change_id: Changeset id
        author: Changeset author
        applied_at: When the changeset was first applied (UTC)
        source_unit: Originating changelog
        source_method: Changeset label inside the changelog
    """

    change_id: str
    author: str
    applied_at: datetime
    source_unit: str = ""
    source_method: str = ""

    @property
    def identity(self) -> tuple[str, str]:
        return (self.change_id, self.author)

    @classmethod
    def for_descriptor(
        cls,
        descriptor: ChangesetDescriptor,
        applied_at: datetime | None = None,
    ) -> LedgerEntry:
        """Build the entry recorded after ``descriptor`` has been applied."""
        return cls(
            change_id=descriptor.id,
            author=descriptor.author,
            applied_at=applied_at or utcnow(),
            source_unit=descriptor.source_unit,
            source_method=descriptor.source_method,
        )

    def to_document(self) -> dict[str, Any]:
        return {
            KEY_CHANGE_ID: self.change_id,
            KEY_AUTHOR: self.author,
            KEY_TIMESTAMP: self.applied_at,
            KEY_CHANGELOG_CLASS: self.source_unit,
            KEY_CHANGESET_METHOD: self.source_method,
        }

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> LedgerEntry:
        applied_at = document.get(KEY_TIMESTAMP)
        # BSON datetimes come back naive (UTC) unless the client is tz_aware
        if isinstance(applied_at, datetime) and applied_at.tzinfo is None:
            applied_at = applied_at.replace(tzinfo=timezone.utc)
        return cls(
            change_id=document[KEY_CHANGE_ID],
            author=document[KEY_AUTHOR],
            applied_at=applied_at,
            source_unit=document.get(KEY_CHANGELOG_CLASS, ""),
            source_method=document.get(KEY_CHANGESET_METHOD, ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "change_id": self.change_id,
            "author": self.author,
            "applied_at": self.applied_at.isoformat() if self.applied_at else None,
            "source_unit": self.source_unit,
            "source_method": self.source_method,
        }


@dataclass(frozen=True)
class ChangelogUnit:
    """A changelog: an ordered group of changesets with its own order key."""

    name: str
    order: str
    changesets: Sequence[ChangesetDescriptor] = ()


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def order_descriptors(units: Iterable[ChangelogUnit]) -> list[ChangesetDescriptor]:
    """Flatten changelogs into the execution sequence.

    Units sorted by ``order``, then changesets within each unit sorted by
    ``order``; ties keep the order they were given in.
    """
    ordered: list[ChangesetDescriptor] = []
    for unit in sorted(units, key=lambda u: u.order):
        ordered.extend(sorted(unit.changesets, key=lambda d: d.order))
    return ordered


__all__ = [
    "ChangesetDescriptor",
    "LedgerEntry",
    "ChangelogUnit",
    "order_descriptors",
    "utcnow",
]

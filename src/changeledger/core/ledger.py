"""Ledger of applied changesets.

The ledger is one MongoDB collection holding a document per applied
changeset. A unique index on ``(changeId, author)`` is what actually
guarantees that an identity is recorded at most once; the engine's
``exists()`` pre-check only avoids needless invocations.

Every read goes to the collection. There is no cache, so ``exists()`` always
reflects what other runners have written in the meantime.

Example::

    from pymongo import MongoClient
    from changeledger.core.ledger import Ledger

    ledger = Ledger(MongoClient()["app"]["dbchangelog"])
    ledger.ensure_unique_index()
    ledger.exists("001", "ops")

Tags:
    changeledger, ledger, mongodb, unique-index, idempotent
"""

from __future__ import annotations

from typing import Any

from pymongo import ASCENDING
from pymongo.errors import DuplicateKeyError, PyMongoError

from changeledger.core.errors import DuplicateEntryError, LedgerIntegrityError
from changeledger.core.logging import get_logger
from changeledger.core.models import (
    KEY_AUTHOR,
    KEY_CHANGE_ID,
    KEY_TIMESTAMP,
    LedgerEntry,
)

logger = get_logger(__name__)

IDENTITY_KEYS = [(KEY_CHANGE_ID, ASCENDING), (KEY_AUTHOR, ASCENDING)]


class Ledger:
    """Durable record of applied changesets over a ``pymongo`` collection.

    Parameters
    ----------
    collection
        The ledger collection (``pymongo.collection.Collection`` or a
        compatible object such as ``mongomock``'s).
    """

    def __init__(self, collection: Any) -> None:
        self._collection = collection

    @property
    def collection(self) -> Any:
        return self._collection

    @property
    def name(self) -> str:
        return self._collection.name

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def ensure_unique_index(self) -> None:
        """Make sure a unique index covers ``(changeId, author)``.

        Creates it when missing and replaces a non-unique index on the same
        keys. Calling it again is a no-op.

        Raises:
            LedgerIntegrityError: The ledger already records an identity more
                than once, or the server refused the index. A non-unique
                index that was there before is left in place.
        """
        index = self.find_identity_index()
        if index is not None and index[1].get("unique", False):
            return

        duplicates = self.find_duplicates()
        if duplicates:
            raise LedgerIntegrityError(
                f"Ledger '{self.name}' records {len(duplicates)} identities more than once "
                f"({', '.join(f'{i}:{a}' for i, a in duplicates)}); "
                "remove the extra entries before running",
                duplicates=duplicates,
            )

        if index is None:
            self._create_identity_index()
            logger.debug("ledger.index_created", collection=self.name)
        else:
            self._collection.drop_index(index[0])
            self._create_identity_index(restore=index[0])
            logger.debug("ledger.index_recreated", collection=self.name, dropped=index[0])

    def find_identity_index(self) -> tuple[str, dict[str, Any]] | None:
        """Return ``(name, info)`` of the index on exactly the identity keys."""
        for name, info in self._collection.index_information().items():
            if _normalize_keys(info.get("key", [])) == IDENTITY_KEYS:
                return name, info
        return None

    def find_duplicates(self) -> list[tuple[str, str]]:
        """Identities recorded more than once, sorted."""
        pipeline = [
            {
                "$group": {
                    "_id": {KEY_CHANGE_ID: f"${KEY_CHANGE_ID}", KEY_AUTHOR: f"${KEY_AUTHOR}"},
                    "count": {"$sum": 1},
                }
            },
            {"$match": {"count": {"$gt": 1}}},
        ]
        return sorted(
            (doc["_id"][KEY_CHANGE_ID], doc["_id"][KEY_AUTHOR])
            for doc in self._collection.aggregate(pipeline)
        )

    def _create_identity_index(self, restore: str | None = None) -> None:
        try:
            self._collection.create_index(IDENTITY_KEYS, unique=True)
        except PyMongoError as exc:
            if restore is not None:
                self._collection.create_index(IDENTITY_KEYS, name=restore)
            raise LedgerIntegrityError(
                f"Cannot create the unique identity index on '{self.name}': {exc}",
                duplicates=self.find_duplicates(),
                cause=exc,
            ) from exc

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def exists(self, change_id: str, author: str) -> bool:
        """True when an entry with this identity is recorded."""
        return self._collection.find_one(_identity_filter(change_id, author)) is not None

    def find(self, change_id: str, author: str) -> LedgerEntry | None:
        document = self._collection.find_one(_identity_filter(change_id, author))
        return LedgerEntry.from_document(document) if document else None

    def entries(self) -> list[LedgerEntry]:
        """All entries in the order they were applied."""
        cursor = self._collection.find().sort([(KEY_TIMESTAMP, ASCENDING), ("_id", ASCENDING)])
        return [LedgerEntry.from_document(doc) for doc in cursor]

    def count(self, change_id: str | None = None, author: str | None = None) -> int:
        query: dict[str, Any] = {}
        if change_id is not None:
            query[KEY_CHANGE_ID] = change_id
        if author is not None:
            query[KEY_AUTHOR] = author
        return self._collection.count_documents(query)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def append(self, entry: LedgerEntry) -> None:
        """Insert a new entry.

        Raises:
            DuplicateEntryError: The unique index rejected the identity.
        """
        try:
            self._collection.insert_one(entry.to_document())
        except DuplicateKeyError as exc:
            raise DuplicateEntryError(entry.change_id, entry.author, cause=exc) from exc
        logger.debug(
            "ledger.entry_appended",
            change_id=entry.change_id,
            author=entry.author,
        )


def _identity_filter(change_id: str, author: str) -> dict[str, str]:
    return {KEY_CHANGE_ID: change_id, KEY_AUTHOR: author}


def _normalize_keys(keys: Any) -> list[tuple[str, Any]]:
    # index_information() yields a list of pairs; some drivers give a SON/dict
    items = keys.items() if hasattr(keys, "items") else keys
    return [
        (str(field), direction if isinstance(direction, str) else int(direction))
        for field, direction in items
    ]


__all__ = ["Ledger", "IDENTITY_KEYS"]

"""Query-mapping handle for changeset bodies.

A changeset that declares a ``QueryMapper`` parameter receives this wrapper
instead of the raw ``pymongo`` database. Queries can be written as
Extended JSON strings with ``#`` placeholders, which keeps data-migration
changesets short:

    >>> def rename_status(mapper: QueryMapper) -> None:
    ...     mapper.collection("orders").update(
    ...         '{"status": #}', '{"$set": {"status": #}}', "NEW", "OPEN", multi=True
    ...     )

Plain dicts are accepted everywhere a query string is, and ``database``
exposes the underlying handle for anything the wrapper does not cover.

Tags:
    changeledger, mongodb, query, extended-json
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from typing import Any

from bson import json_util

Query = str | Mapping[str, Any]

PLACEHOLDER = "#"


def bind_query(query: Query | None, *params: Any) -> dict[str, Any]:
    """Turn a query string with ``#`` placeholders (or a mapping) into a dict.

    Each ``#`` outside a quoted string is replaced by the Extended JSON
    encoding of the next parameter.

    Raises:
        ValueError: If the number of placeholders and parameters differ,
            or the result is not a JSON object.
    """
    if query is None:
        if params:
            raise ValueError("Parameters given without a query")
        return {}
    if isinstance(query, Mapping):
        if params:
            raise ValueError("Parameters can only be bound into query strings")
        return dict(query)

    remaining = list(params)
    out: list[str] = []
    for char, is_placeholder in _scan(query):
        if not is_placeholder:
            out.append(char)
            continue
        if not remaining:
            raise ValueError(f"Not enough parameters for query: {query}")
        out.append(json_util.dumps(remaining.pop(0)))

    if remaining:
        raise ValueError(f"Too many parameters for query: {query}")

    document = json_util.loads("".join(out))
    if not isinstance(document, dict):
        raise ValueError(f"Query must be a JSON object: {query}")
    return document


class MappedCollection:
    """A collection whose operations take query strings or mappings."""

    def __init__(self, collection: Any) -> None:
        self.collection = collection

    @property
    def name(self) -> str:
        return self.collection.name

    # -- Reads -------------------------------------------------------------

    def find(self, query: Query | None = None, *params: Any) -> list[dict[str, Any]]:
        return list(self.collection.find(bind_query(query, *params)))

    def find_one(self, query: Query | None = None, *params: Any) -> dict[str, Any] | None:
        return self.collection.find_one(bind_query(query, *params))

    def count(self, query: Query | None = None, *params: Any) -> int:
        return self.collection.count_documents(bind_query(query, *params))

    # -- Writes ------------------------------------------------------------

    def insert(self, *documents: Mapping[str, Any]) -> int:
        """Insert one or more documents; returns how many were inserted."""
        if not documents:
            return 0
        if len(documents) == 1:
            self.collection.insert_one(dict(documents[0]))
            return 1
        result = self.collection.insert_many([dict(d) for d in documents])
        return len(result.inserted_ids)

    def update(
        self,
        query: Query,
        modifier: Query,
        *params: Any,
        multi: bool = False,
        upsert: bool = False,
    ) -> int:
        """Apply ``modifier`` to documents matching ``query``.

        Placeholders are filled left to right across the query and then the
        modifier. Returns the number of modified documents.
        """
        query_params, modifier_params = _split_params(query, params)
        filter_doc = bind_query(query, *query_params)
        update_doc = bind_query(modifier, *modifier_params)
        if multi:
            result = self.collection.update_many(filter_doc, update_doc, upsert=upsert)
        else:
            result = self.collection.update_one(filter_doc, update_doc, upsert=upsert)
        return result.modified_count

    def remove(self, query: Query | None = None, *params: Any) -> int:
        result = self.collection.delete_many(bind_query(query, *params))
        return result.deleted_count

    def ensure_index(self, keys: Query, *, unique: bool = False) -> str:
        spec = bind_query(keys)
        return self.collection.create_index(list(spec.items()), unique=unique)


class QueryMapper:
    """Higher-level handle built by wrapping the raw database handle."""

    def __init__(self, database: Any) -> None:
        self.database = database

    def collection(self, name: str) -> MappedCollection:
        return MappedCollection(self.database[name])

    def __getitem__(self, name: str) -> MappedCollection:
        return self.collection(name)

    def __repr__(self) -> str:
        return f"QueryMapper({getattr(self.database, 'name', self.database)!r})"


def _split_params(query: Query, params: tuple[Any, ...]) -> tuple[tuple[Any, ...], tuple[Any, ...]]:
    if not isinstance(query, str):
        return (), params
    needed = sum(1 for _, is_placeholder in _scan(query) if is_placeholder)
    return params[:needed], params[needed:]


def _scan(query: str) -> Iterator[tuple[str, bool]]:
    """Yield ``(char, is_placeholder)``; quoted text never holds placeholders."""
    quote: str | None = None
    escaped = False
    for char in query:
        if quote:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == quote:
                quote = None
            yield char, False
        elif char in ('"', "'"):
            quote = char
            yield char, False
        else:
            yield char, char == PLACEHOLDER


__all__ = ["QueryMapper", "MappedCollection", "bind_query"]

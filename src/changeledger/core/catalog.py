"""Catalog of changelogs and their changesets.

Changesets are registered explicitly: a ``Catalog`` instance collects
changelog classes through a class decorator, and changeset methods are
marked with ``@changeset``. Nothing is discovered by scanning packages; the
catalog only knows what was imported and registered.

Example::

    from pymongo.database import Database
    from changeledger import Catalog, changeset

    catalog = Catalog()

    @catalog.changelog(order="001")
    class InitialSetup:
        @changeset(id="create-users-index", author="ops", order="001")
        def users_index(self, db: Database) -> None:
            db.users.create_index("email", unique=True)

        @changeset(id="refresh-views", author="ops", order="002", run_always=True)
        def refresh_views(self) -> None:
            ...

    descriptors = catalog.descriptors()

Tags:
    changeledger, catalog, registry, decorator
"""

from __future__ import annotations

import importlib
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from changeledger.core.errors import CatalogError
from changeledger.core.logging import get_logger
from changeledger.core.models import ChangelogUnit, ChangesetDescriptor, order_descriptors

logger = get_logger(__name__)

CHANGESET_ATTR = "__changeset__"


@dataclass(frozen=True)
class ChangesetMeta:
    """Metadata attached to a changeset method by ``@changeset``."""

    id: str
    author: str
    order: str
    run_always: bool = False


def changeset(
    id: str,
    author: str,
    order: str,
    run_always: bool = False,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Decorator marking a changelog method as a changeset."""
    if not id or not author:
        raise CatalogError("A changeset needs both an id and an author")

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        target = getattr(fn, "__func__", fn)
        setattr(target, CHANGESET_ATTR, ChangesetMeta(id, author, str(order), run_always))
        return fn

    return decorator


def changeset_meta(obj: Any) -> ChangesetMeta | None:
    """Return the ``@changeset`` metadata of a function, if any."""
    return getattr(getattr(obj, "__func__", obj), CHANGESET_ATTR, None)


@dataclass(frozen=True)
class _Registration:
    cls: type
    order: str
    name: str


class Catalog:
    """Ordered supply of changeset descriptors."""

    def __init__(self) -> None:
        self._registrations: list[_Registration] = []

    def changelog(self, order: str, name: str | None = None) -> Callable[[type], type]:
        """Class decorator registering a changelog with its order key."""

        def decorator(cls: type) -> type:
            self.add_changelog(cls, order=order, name=name)
            return cls

        return decorator

    def add_changelog(self, cls: type, order: str, name: str | None = None) -> None:
        if not isinstance(cls, type):
            raise CatalogError(f"Changelog must be a class, got {cls!r}")
        label = name or f"{cls.__module__}.{cls.__qualname__}"
        if any(r.name == label for r in self._registrations):
            raise CatalogError(f"Changelog '{label}' is already registered")
        self._registrations.append(_Registration(cls=cls, order=str(order), name=label))
        logger.debug("catalog.changelog_registered", changelog=label, order=str(order))

    def changelogs(self) -> list[str]:
        """Registered changelog names in execution order."""
        return [r.name for r in sorted(self._registrations, key=lambda r: r.order)]

    def units(self) -> list[ChangelogUnit]:
        """Instantiate every changelog and collect its changesets.

        Each changelog class is instantiated once with no arguments.
        Changesets inherited from base classes come first, then those
        declared in the class body; ``order_descriptors`` then sorts them by
        their order key. A method overridden in a subclass keeps its base
        position and is a changeset only if the override is decorated.
        """
        units = []
        for registration in self._registrations:
            try:
                instance = registration.cls()
            except Exception as exc:
                raise CatalogError(
                    f"Cannot instantiate changelog '{registration.name}': {exc}",
                    cause=exc,
                ) from exc
            units.append(
                ChangelogUnit(
                    name=registration.name,
                    order=registration.order,
                    changesets=tuple(self._collect(registration, instance)),
                )
            )
        return units

    def descriptors(self) -> list[ChangesetDescriptor]:
        """All changesets in execution order.

        Raises:
            CatalogError: Two changesets share an ``(id, author)`` identity.
        """
        ordered = order_descriptors(self.units())
        seen: dict[tuple[str, str], ChangesetDescriptor] = {}
        for descriptor in ordered:
            first = seen.setdefault(descriptor.identity, descriptor)
            if first is not descriptor:
                raise CatalogError(
                    f"Duplicate changeset identity {descriptor.identity}: "
                    f"{first.source_unit}.{first.source_method} and "
                    f"{descriptor.source_unit}.{descriptor.source_method}"
                )
        return ordered

    def __len__(self) -> int:
        return len(self._registrations)

    @staticmethod
    def _collect(registration: _Registration, instance: Any) -> list[ChangesetDescriptor]:
        members: dict[str, Any] = {}
        for klass in reversed(registration.cls.__mro__):
            if klass is not object:
                members.update(vars(klass))

        found = []
        for attr, value in members.items():
            meta = changeset_meta(value)
            if meta is None:
                continue
            found.append(
                ChangesetDescriptor(
                    id=meta.id,
                    author=meta.author,
                    order=meta.order,
                    invoke=getattr(instance, attr),
                    run_always=meta.run_always,
                    source_unit=registration.name,
                    source_method=attr,
                )
            )
        return found


def load_catalog(reference: str) -> Catalog:
    """Import a catalog from a ``package.module:attribute`` reference.

    The attribute may be a ``Catalog`` or a zero-argument callable
    returning one.
    """
    module_name, _, attr = reference.partition(":")
    if not module_name or not attr:
        raise CatalogError(f"Catalog reference must look like 'package.module:attribute', got {reference!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise CatalogError(f"Cannot import catalog module '{module_name}': {exc}", cause=exc) from exc

    target = getattr(module, attr, None)
    if target is None:
        raise CatalogError(f"Module '{module_name}' has no attribute '{attr}'")
    if callable(target) and not isinstance(target, Catalog):
        target = target()
    if not isinstance(target, Catalog):
        raise CatalogError(f"'{reference}' is not a Catalog (got {type(target).__name__})")
    return target


__all__ = [
    "Catalog",
    "ChangesetMeta",
    "changeset",
    "changeset_meta",
    "load_catalog",
]

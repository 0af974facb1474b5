"""Changeset invocation.

A changeset body may take no argument, the raw ``pymongo`` database, or a
``QueryMapper`` built around it. The Invoker decides which one from the
body's signature and calls it:

=========  ==============================================  ===========================
Priority   Signature                                        Called with
=========  ==============================================  ===========================
1          ``def body()``                                   nothing
2          ``def body(db: Database)`` or ``def body(db)``   the live database handle
3          ``def body(mapper: QueryMapper)``                ``QueryMapper(database)``
=========  ==============================================  ===========================

Any other signature raises ``ChangesetArityError``. Exceptions raised by
the body itself are wrapped in ``InvocationError``.

Tags:
    changeledger, invoker, signature, introspection
"""

from __future__ import annotations

import inspect
import typing
from collections.abc import Callable
from enum import Enum
from typing import Any

from pymongo.database import Database

from changeledger.core.errors import ChangesetArityError, InvocationError
from changeledger.core.logging import get_logger
from changeledger.core.mapper import QueryMapper
from changeledger.core.models import ChangesetDescriptor

logger = get_logger(__name__)

_POSITIONAL = (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD)


class InvocationShape(str, Enum):
    """Accepted changeset signatures."""

    NO_ARGS = "no_args"
    DATABASE = "database"
    MAPPER = "mapper"


def shape_of(fn: Callable[..., Any], name: str | None = None) -> InvocationShape:
    """Classify the signature of a changeset body.

    Raises:
        ChangesetArityError: The signature is not one of the accepted shapes.
    """
    label = name or getattr(fn, "__qualname__", repr(fn))
    try:
        signature = inspect.signature(fn)
    except (TypeError, ValueError) as exc:
        raise ChangesetArityError(f"ChangeSet {label} has no inspectable signature", cause=exc) from exc

    params = list(signature.parameters.values())
    if not params:
        return InvocationShape.NO_ARGS

    if len(params) == 1 and params[0].kind in _POSITIONAL:
        annotation = _resolve_annotation(fn, params[0])
        if annotation is inspect.Parameter.empty or _is_subclass(annotation, Database):
            return InvocationShape.DATABASE
        if _is_subclass(annotation, QueryMapper):
            return InvocationShape.MAPPER

    raise ChangesetArityError(
        f"ChangeSet {label} has wrong arguments list {signature}. "
        "Expected no arguments, one Database argument or one QueryMapper argument"
    )


class Invoker:
    """Validates and executes changeset bodies against a database handle."""

    def invoke(self, descriptor: ChangesetDescriptor, database: Any) -> Any:
        """Run ``descriptor.invoke`` with the handle its signature asks for.

        Raises:
            ChangesetArityError: Unsupported signature; nothing was executed.
            InvocationError: The body raised.
        """
        shape = shape_of(descriptor.invoke, name=str(descriptor))
        logger.debug("invoker.shape", change_id=descriptor.id, author=descriptor.author, shape=shape.value)

        if shape is InvocationShape.NO_ARGS:
            args: tuple[Any, ...] = ()
        elif shape is InvocationShape.DATABASE:
            args = (database,)
        else:
            args = (QueryMapper(database),)

        try:
            return descriptor.invoke(*args)
        except Exception as exc:
            raise InvocationError(
                f"ChangeSet {descriptor.id} by {descriptor.author} failed: {exc}",
                cause=exc,
            ).with_context(
                change_id=descriptor.id,
                author=descriptor.author,
                source_unit=descriptor.source_unit,
                source_method=descriptor.source_method,
            ) from exc


def _resolve_annotation(fn: Callable[..., Any], param: inspect.Parameter) -> Any:
    annotation = param.annotation
    if not isinstance(annotation, str):
        return annotation
    # Postponed annotations: resolve against the body's module globals
    target = getattr(fn, "__func__", fn)
    try:
        hints = typing.get_type_hints(target)
    except (NameError, TypeError):
        return annotation
    return hints.get(param.name, annotation)


def _is_subclass(annotation: Any, cls: type) -> bool:
    return isinstance(annotation, type) and issubclass(annotation, cls)


__all__ = ["Invoker", "InvocationShape", "shape_of"]

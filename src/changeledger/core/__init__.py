"""changeledger core: the apply-once engine and its collaborators.

Modules
-------
errors      Typed error hierarchy (fatal vs per-changeset)
logging     structlog configuration and the run context binder
settings    Environment settings and the frozen MigrationConfig
models      ChangesetDescriptor, LedgerEntry, ordering
catalog     Explicit changelog/changeset registration
mapper      QueryMapper handle for changeset bodies
ledger      Ledger collection with the (changeId, author) unique index
invoker     Signature-based changeset invocation
engine      MigrationEngine run loop

Tags:
    changeledger, migrations, package-overview
"""

from changeledger.core.catalog import Catalog, changeset, load_catalog
from changeledger.core.engine import MigrationEngine, RunReport
from changeledger.core.errors import (
    CatalogError,
    ChangeLedgerError,
    ChangesetArityError,
    ConfigurationError,
    DuplicateEntryError,
    InvocationError,
    LedgerIntegrityError,
    MissingConfigError,
    StorageConnectionError,
)
from changeledger.core.invoker import InvocationShape, Invoker, shape_of
from changeledger.core.ledger import Ledger
from changeledger.core.mapper import QueryMapper
from changeledger.core.models import ChangelogUnit, ChangesetDescriptor, LedgerEntry, order_descriptors
from changeledger.core.settings import ChangeLedgerSettings, MigrationConfig

__all__ = [
    "Catalog",
    "changeset",
    "load_catalog",
    "MigrationEngine",
    "RunReport",
    "CatalogError",
    "ChangeLedgerError",
    "ChangesetArityError",
    "ConfigurationError",
    "DuplicateEntryError",
    "InvocationError",
    "LedgerIntegrityError",
    "MissingConfigError",
    "StorageConnectionError",
    "InvocationShape",
    "Invoker",
    "shape_of",
    "Ledger",
    "QueryMapper",
    "ChangelogUnit",
    "ChangesetDescriptor",
    "LedgerEntry",
    "order_descriptors",
    "ChangeLedgerSettings",
    "MigrationConfig",
]

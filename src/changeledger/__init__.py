"""
changeledger - apply data-migration changesets to MongoDB exactly once.

Re-exports the public API of ``changeledger.core``.
"""

__version__ = "0.1.0"

from changeledger.core import *  # noqa

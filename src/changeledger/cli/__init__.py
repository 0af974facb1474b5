"""
CLI layer for changeledger.

Provides a Typer application that runs a catalog against MongoDB and
inspects the ledger. All migration logic lives in ``changeledger.core``;
this package handles only argument parsing and terminal output.

Entry point::

    changeledger --help
"""

from changeledger.cli.app import app

__all__ = ["app"]

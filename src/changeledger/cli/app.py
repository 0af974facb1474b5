"""
Root Typer application for the changeledger CLI.

Commands::

    changeledger run      --catalog myapp.migrations:catalog
    changeledger pending  --catalog myapp.migrations:catalog
    changeledger status
"""

from __future__ import annotations

import typer
from typer import Typer

from changeledger.cli.utils import (
    build_config,
    console,
    fail,
    load_settings,
    output_json,
    print_dict,
    print_table,
)
from changeledger.core.catalog import load_catalog
from changeledger.core.engine import MigrationEngine
from changeledger.core.errors import ChangeLedgerError, MissingConfigError

app = Typer(
    name="changeledger",
    help="changeledger: apply MongoDB data-migration changesets exactly once.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    if value:
        from changeledger import __version__

        typer.echo(f"changeledger {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """changeledger CLI: run changesets and inspect the ledger."""


# ── Shared options ───────────────────────────────────────────────────────

CatalogOpt = typer.Option(None, "--catalog", "-c", help="Catalog reference, e.g. 'myapp.migrations:catalog'")
UriOpt = typer.Option(None, "--uri", help="MongoDB connection string")
DatabaseOpt = typer.Option(None, "--database", "-d", help="Target database (defaults to the URI path)")
CollectionOpt = typer.Option(None, "--collection", help="Ledger collection name")
JsonOpt = typer.Option(False, "--json", help="JSON output")


@app.command()
def run(
    catalog: str | None = CatalogOpt,
    uri: str | None = UriOpt,
    database: str | None = DatabaseOpt,
    collection: str | None = CollectionOpt,
    json_out: bool = JsonOpt,
) -> None:
    """Apply every changeset of the catalog that is not yet in the ledger."""
    try:
        settings = load_settings(uri=uri, database=database, collection=collection, catalog=catalog)
        config = build_config(settings)
        if not settings.catalog:
            raise MissingConfigError("catalog", "Catalog reference is not set: use --catalog or CHANGELEDGER_CATALOG")
        changesets = load_catalog(settings.catalog)
        with MigrationEngine(config) as engine:
            report = engine.execute(changesets)
    except ChangeLedgerError as exc:
        fail(exc)
        return

    if report is None:
        console.print("[yellow]changeledger is disabled; nothing was run.[/yellow]")
        return
    if json_out:
        output_json(report.to_dict())
    else:
        print_dict(report.to_dict(), title="Run Report")
    if not report.success:
        raise typer.Exit(code=1)


@app.command()
def pending(
    catalog: str | None = CatalogOpt,
    uri: str | None = UriOpt,
    database: str | None = DatabaseOpt,
    collection: str | None = CollectionOpt,
    json_out: bool = JsonOpt,
) -> None:
    """List changesets of the catalog that have not been applied yet."""
    try:
        settings = load_settings(uri=uri, database=database, collection=collection, catalog=catalog)
        config = build_config(settings)
        if not settings.catalog:
            raise MissingConfigError("catalog", "Catalog reference is not set: use --catalog or CHANGELEDGER_CATALOG")
        changesets = load_catalog(settings.catalog)
        with MigrationEngine(config) as engine:
            engine.connect()
            rows = [
                {
                    "id": d.id,
                    "author": d.author,
                    "changelog": d.source_unit,
                    "method": d.source_method,
                    "run_always": d.run_always,
                }
                for d in engine.pending(changesets)
            ]
    except ChangeLedgerError as exc:
        fail(exc)
        return

    if json_out:
        output_json(rows)
        return
    print_table(rows, title="Pending Changesets")


@app.command()
def status(
    uri: str | None = UriOpt,
    database: str | None = DatabaseOpt,
    collection: str | None = CollectionOpt,
    json_out: bool = JsonOpt,
) -> None:
    """Show the ledger entries of applied changesets."""
    try:
        config = build_config(load_settings(uri=uri, database=database, collection=collection))
        with MigrationEngine(config) as engine:
            engine.connect()
            rows = [entry.to_dict() for entry in engine.ledger.entries()]
    except ChangeLedgerError as exc:
        fail(exc)
        return

    if json_out:
        output_json(rows)
        return
    print_table(rows, title="Ledger")

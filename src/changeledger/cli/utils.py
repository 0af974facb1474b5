"""
CLI utility helpers: configuration building and output formatting.
"""

from __future__ import annotations

import json
from typing import Any

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from changeledger.core.errors import ChangeLedgerError, ConfigurationError
from changeledger.core.logging import configure_logging
from changeledger.core.settings import ChangeLedgerSettings, MigrationConfig

console = Console()
err_console = Console(stderr=True)


# ── Configuration helpers ────────────────────────────────────────────────


def load_settings(
    *,
    uri: str | None = None,
    database: str | None = None,
    collection: str | None = None,
    catalog: str | None = None,
) -> ChangeLedgerSettings:
    """Read settings from the environment, overlaid with explicit options."""
    overrides = {
        "uri": uri,
        "database": database,
        "ledger_collection": collection,
        "catalog": catalog,
    }
    try:
        return ChangeLedgerSettings(**{k: v for k, v in overrides.items() if v is not None})
    except ValidationError as exc:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'settings'}: {err['msg']}" for err in exc.errors()
        )
        raise ConfigurationError(f"Invalid settings: {errors}", cause=exc) from exc


def build_config(settings: ChangeLedgerSettings) -> MigrationConfig:
    configure_logging(level=settings.log_level, json_format=settings.json_logs)
    return MigrationConfig.from_settings(settings)


# ── Output helpers ───────────────────────────────────────────────────────


def fail(error: ChangeLedgerError) -> None:
    """Print a ``ChangeLedgerError`` and exit with status 1."""
    err_console.print(f"[bold red]Error[/bold red] ({error.category.value}): {escape(error.message)}")
    raise typer.Exit(code=1)


def output_json(payload: Any) -> None:
    console.print_json(json.dumps(payload, default=str))


def print_table(rows: list[dict[str, Any]], *, title: str = "") -> None:
    """Render a list of dicts as a Rich table."""
    if not rows:
        console.print("[dim]No items.[/dim]")
        return
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in rows[0]:
        table.add_column(col, overflow="fold")
    for row in rows:
        table.add_row(*(escape(str(v)) for v in row.values()))
    console.print(table)


def print_dict(data: dict[str, Any], *, title: str = "") -> None:
    """Render a single dict as key-value pairs."""
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {escape(str(v))}")

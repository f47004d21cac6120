from __future__ import annotations

import logging
import signal
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from .cancel import CancellationToken
from .config import ensure_workspace
from .io import seed_store
from .manager import PhonebookManager
from .model import Category, OrderKey, ResponseCode, VCardVersion, Window
from .sink import FileTransport
from .store import SqliteRecordSource
from .vcard_filter import parse_mask

app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help="pbap-vcard: serve phonebook and call history as filtered vCard streams.",
)
console = Console()


def _manager() -> PhonebookManager:
    _, settings = ensure_workspace()
    return PhonebookManager(SqliteRecordSource(settings.database), settings)


def _mask(text: str | None) -> bytes | None:
    if text is None:
        return None
    try:
        return parse_mask(text)
    except ValueError:
        console.print(f"[bold red]Not a hex filter mask: {text!r}[/bold red]")
        raise typer.Exit(code=2)


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Log every record")) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


# ── Workspace ──────────────────────────────────────────────────────────────────

@app.command()
def init() -> None:
    """Create local/pbap.conf and the var/ and exports/ folders."""
    paths, settings = ensure_workspace()
    console.print(Panel(
        f"Config   : [bold]{paths.conf_file}[/bold]\n"
        f"Database : [bold]{settings.database}[/bold]\n"
        f"Exports  : [bold]{paths.out_dir}[/bold]",
        title="pbap-vcard workspace",
        border_style="cyan",
    ))


@app.command()
def seed(file: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON seed file")) -> None:
    """Load contacts and calls from a JSON seed file into the store."""
    manager = _manager()
    contacts, calls = seed_store(manager.source, file)
    console.print(f"[bold green]✓ Loaded {contacts} contact(s) and {calls} call(s)[/bold green]")


# ── Listings ───────────────────────────────────────────────────────────────────

@app.command()
def size(category: Category = typer.Argument(Category.PHONEBOOK)) -> None:
    """Number of records in a collection (phonebook counts the owner)."""
    console.print(_manager().get_collection_size(category))


@app.command()
def names(order: OrderKey = typer.Option(OrderKey.INDEXED, "--order", "-o")) -> None:
    """Phonebook listing, owner first."""
    table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
    table.add_column("Handle", justify="right")
    table.add_column("Name")
    for i, entry in enumerate(_manager().get_ordered_name_list(order)):
        name = entry.rpartition(",")[0] if i else entry
        table.add_row(f"{i}.vcf", name)
    console.print(table)


@app.command()
def lookup(number: str = typer.Argument(..., help="Phone number; '' lists everyone")) -> None:
    """Contacts owning a phone number."""
    found = _manager().find_names_by_number(number)
    if not found:
        console.print("[dim]No match.[/dim]")
        raise typer.Exit(code=1)
    for entry in found:
        console.print(entry)


@app.command()
def history(category: Category = typer.Argument(Category.COMBINED)) -> None:
    """Call-history names, newest first."""
    if not category.is_call_history:
        console.print("[bold red]Pick a call-history category (ich, och, mch, cch).[/bold red]")
        raise typer.Exit(code=2)
    for i, name in enumerate(_manager().get_call_history_names(category), start=1):
        console.print(f"{i:>4}  {name}")


@app.command()
def owner(
    version: VCardVersion = typer.Option(VCardVersion.V21, "--version"),
    filter_mask: str | None = typer.Option(None, "--filter", help="Hex property mask"),
) -> None:
    """Print the owner vCard."""
    manager = _manager()
    vcard = manager.owner_vcard_or_none(version, _mask(filter_mask))
    if vcard is None:
        raise typer.Exit(code=2)
    console.print(vcard, end="", markup=False, highlight=False)


# ── Export ─────────────────────────────────────────────────────────────────────

@app.command()
def export(
    category: Category = typer.Argument(Category.PHONEBOOK),
    start: int = typer.Option(1, "--start", "-s", help="First ordinal (1-based)"),
    end: int = typer.Option(65535, "--end", "-e", help="Last ordinal, inclusive"),
    version: VCardVersion = typer.Option(VCardVersion.V21, "--version"),
    filter_mask: str | None = typer.Option(None, "--filter", help="Hex property mask"),
    ignore_filter: bool = typer.Option(False, "--ignore-filter"),
    with_owner: bool = typer.Option(False, "--with-owner", help="Write the owner vCard first"),
    order: OrderKey = typer.Option(OrderKey.INDEXED, "--order", "-o"),
    output: Path | None = typer.Option(None, "--output", help="Output .vcf path"),
) -> None:
    """Export a window of records as a vCard stream. Ctrl-C aborts cleanly."""
    paths, _ = ensure_workspace()
    manager = _manager()
    mask = _mask(filter_mask)
    out_path = output or paths.out_dir / f"{category.value}-{start}-{end}.vcf"

    owner_vcard = None
    if with_owner and category is Category.PHONEBOOK:
        owner_vcard = manager.owner_vcard_or_none(version, None if ignore_filter else mask)
        if owner_vcard is None:
            raise typer.Exit(code=2)

    token = CancellationToken()
    previous = signal.signal(signal.SIGINT, lambda *_: token.set())
    try:
        code = manager.export_window(
            FileTransport(out_path), category, Window(start, end), version,
            owner_vcard, mask, ignore_filter, token, order,
        )
    finally:
        signal.signal(signal.SIGINT, previous)

    result = manager.last_result
    if code is ResponseCode.OK:
        console.print(f"[bold green]✓ Wrote {result.records_written} vCard(s) → {out_path}[/bold green]")
        return
    console.print(Panel(
        f"[bold]{code.name}[/bold] ({result.outcome.value})\n{result.reason or ''}",
        title="Export failed",
        border_style="red",
    ))
    raise typer.Exit(code=1)


if __name__ == "__main__":
    app()

"""Command line interface for readtrace."""

from __future__ import annotations

from pathlib import Path
from typing import List, NoReturn, Optional

import typer
from rich.console import Console
from rich.table import Table

from .analytics import AnalyticsAggregator, AnalyticsLevel
from .config import get_settings
from .graph_io import export_archive, import_archives
from .logging_setup import setup_logging
from .models import Canvas, ReadtraceError, pair_key
from .storage import FileBlobStore, SQLiteRecordStore, StorageError
from .templates import READ_TEMPLATES

app = typer.Typer(help="Purpose-driven reading traces: sessions, annotation graphs and analytics.")
console = Console()


@app.callback()
def main(log_level: Optional[str] = typer.Option(None, help="Override READTRACE_LOG_LEVEL.")) -> None:
    setup_logging(log_level)


def _open_store() -> SQLiteRecordStore:
    return SQLiteRecordStore(get_settings().db_path)


def _fail(message: str) -> NoReturn:
    console.print(f"[bold red]Error[/bold red]: {message}")
    raise typer.Exit(code=1)


def _format_ms(value: float) -> str:
    seconds = int(value // 1000)
    minutes, seconds = divmod(seconds, 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h {minutes:02d}m"
    return f"{minutes}m {seconds:02d}s"


@app.command("export")
def export_command(
    owner: str = typer.Argument(..., help="Owner whose graph is exported."),
    document: str = typer.Argument(..., help="Document the graph belongs to."),
    out: Path = typer.Argument(..., help="Destination .zip file."),
    with_document: bool = typer.Option(False, "--with-document", help="Embed the stored PDF."),
) -> None:
    """Export one reader's graph for a document as a zip archive."""

    try:
        store = _open_store()
        key = pair_key(owner, document)
        canvas = store.load_canvas(owner, document) or Canvas(id=key, owner_id=owner, document_id=document)
        document_bytes = None
        if with_document:
            document_bytes = FileBlobStore(get_settings().blob_dir).read_document_blob(document)
        payload = export_archive(
            out,
            owner_id=owner,
            highlights=store.load_highlights([owner], [document]).get(key, []),
            nodes=canvas.nodes,
            edges=canvas.edges,
            purposes=store.load_purposes([owner], [document]).get(key, []),
            sessions=store.load_sessions([owner], [document]).get(key, []),
            document_bytes=document_bytes,
        )
    except (ReadtraceError, OSError) as exc:
        _fail(str(exc))
    console.print(f"[bold green]Exported[/bold green] {key} to [italic]{out}[/italic] [dim]({len(payload)} bytes)[/dim]")


@app.command("import")
def import_command(
    archives: List[Path] = typer.Argument(..., help="Archives to merge."),
    owner: str = typer.Option(..., help="Owner the merged graph is stored under."),
    document: str = typer.Option(..., help="Document the merged graph is stored under."),
) -> None:
    """Merge archives from several readers into one owner's graph for a document."""

    result = import_archives(archives).rehome(owner, document)
    for name, reason in result.failures:
        console.print(f"[yellow]Skipped[/yellow] {name}: {reason}")
    if len(result.failures) == len(archives):
        _fail("no archive could be imported")

    try:
        store = _open_store()
        store.save_purposes(result.purposes)
        store.save_highlights(result.highlights)
        store.save_sessions(result.sessions)
        store.save_canvas(
            Canvas(
                id=pair_key(owner, document),
                owner_id=owner,
                document_id=document,
                nodes=result.nodes,
                edges=result.edges,
            )
        )
        if result.document_bytes is not None:
            FileBlobStore(get_settings().blob_dir).store_document_blob(document, result.document_bytes)
    except StorageError as exc:
        _fail(str(exc))

    console.print(
        f"[bold green]Imported[/bold green] {len(result.highlights)} highlights, "
        f"{len(result.nodes)} nodes and {len(result.edges)} edges "
        f"from {len(archives) - len(result.failures)} archive(s)"
    )


@app.command()
def analytics(
    document: List[str] = typer.Option(..., "--document", "-d", help="Document id (repeatable)."),
    user: List[str] = typer.Option(..., "--user", "-u", help="User id (repeatable)."),
    pin_document: Optional[str] = typer.Option(None, help="Drill into this document's users."),
    pin_user: Optional[str] = typer.Option(None, help="Drill into this user's purposes."),
) -> None:
    """Show reading time and highlight counts at one drill-down level."""

    try:
        aggregator = AnalyticsAggregator.from_store(_open_store(), user, document)
        if pin_document:
            aggregator.select_document(pin_document)
        if pin_user:
            aggregator.select_user(pin_user)
    except (ReadtraceError, ValueError) as exc:
        _fail(str(exc))

    table = Table(title=f"Reading analytics ({aggregator.level.value})")
    if aggregator.level is AnalyticsLevel.DOCUMENTS:
        for column in ("Document", "Total time", "Avg/user", "Highlights", "Users"):
            table.add_column(column)
        for row in aggregator.document_rows():
            table.add_row(
                row.title if row.title != "Unknown Document" else row.document_id,
                _format_ms(row.total_duration),
                _format_ms(row.average_duration_per_user),
                str(row.total_highlights),
                str(row.user_count),
            )
    elif aggregator.level is AnalyticsLevel.USERS:
        for column in ("User", "Time", "Highlights", "Text", "Image", "Purposes"):
            table.add_column(column)
        for row in aggregator.user_rows():
            table.add_row(
                row.user_id,
                _format_ms(row.duration),
                str(row.highlight_count),
                str(row.text_highlight_count),
                str(row.image_highlight_count),
                str(row.purpose_count),
            )
    else:
        for column in ("Purpose", "Time", "Highlights", "Text", "Image"):
            table.add_column(column)
        for row in aggregator.purpose_rows():
            table.add_row(
                f"[{row.color}]{row.title}[/]" if row.color.startswith("#") else row.title,
                _format_ms(row.duration),
                str(row.highlight_count),
                str(row.text_highlight_count),
                str(row.image_highlight_count),
            )
    console.print(table)
    console.print(f"Total reading time: [bold]{_format_ms(aggregator.total_time())}[/bold]")


@app.command()
def templates() -> None:
    """List the built-in purpose templates."""

    table = Table(title="Purpose templates")
    table.add_column("Template")
    table.add_column("Purposes")
    for template in READ_TEMPLATES:
        table.add_row(template.name, ", ".join(title for title, _ in template.purposes))
    console.print(table)


if __name__ == "__main__":  # pragma: no cover
    app()

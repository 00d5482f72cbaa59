"""
CLI Interface
=============
Command-line interface for the PDF structure engine.

Usage:
    python -m pdfstruct convert <pdf_path> [options]
    python -m pdfstruct replay <tokens_json> [options]
    python -m pdfstruct info <pdf_path>
    python -m pdfstruct serve [options]
"""

from __future__ import annotations

import json
import os
import sys
from dataclasses import replace
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from . import __version__
from .config import LayoutThresholds
from .engine import ConversionEngine, ConverterConfig
from .errors import ConversionError
from .insertion import InsertMode, insert_fragment

console = Console()

READ_FAILURE = "Could not read document"


@click.group()
@click.version_option(version=__version__, prog_name="pdfstruct")
def cli():
    """PDF Structure Engine — rebuild headings, lists and tables from PDF layout."""
    pass


# ─── Shared Options ───────────────────────────────────────────────────────────


def _output_options(func):
    options = [
        click.option(
            "--output", "-o",
            default=None,
            type=click.Path(dir_okay=False),
            help="Write the resulting HTML to this file",
        ),
        click.option(
            "--mode",
            default="replace",
            type=click.Choice([m.value for m in InsertMode]),
            help="Insertion mode applied against --into",
        ),
        click.option(
            "--into",
            default=None,
            type=click.Path(exists=True, dir_okay=False),
            help="Existing HTML document the fragment is inserted into",
        ),
        click.option(
            "--skip-failed-pages",
            is_flag=True,
            default=False,
            help="Skip pages that cannot be decoded instead of failing",
        ),
        click.option(
            "--heading-ratio",
            default=LayoutThresholds.heading_ratio,
            type=float,
            show_default=True,
            help="Glyph height ratio above which a line is a heading",
        ),
        click.option(
            "--table-gap",
            default=LayoutThresholds.table_gap,
            type=float,
            show_default=True,
            help="Minimum horizontal gap (points) that opens a table",
        ),
        click.option(
            "--log-level",
            default="INFO",
            type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
            help="Logging level",
        ),
        click.option(
            "--log-file",
            default=None,
            help="Path to log file",
        ),
        click.option(
            "--json-output",
            is_flag=True,
            default=False,
            help="Output only the JSON result to stdout (for programmatic use)",
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _build_config(
    heading_ratio: float,
    table_gap: float,
    skip_failed_pages: bool,
    log_level: str,
    log_file: Optional[str],
    json_output: bool,
    **extra,
) -> ConverterConfig:
    if json_output:
        # Suppress console output for JSON mode
        log_level = "ERROR"

    thresholds = replace(
        LayoutThresholds(),
        heading_ratio=heading_ratio,
        table_gap=table_gap,
    )
    return ConverterConfig(
        thresholds=thresholds,
        skip_failed_pages=skip_failed_pages,
        log_level=log_level,
        log_file=log_file,
        **extra,
    )


def _run_conversion(run, label: str, json_output: bool, log_level: str):
    """Run a conversion callable, reporting failures as one generic message."""
    if not json_output:
        console.print()
        console.print(
            Panel.fit(
                f"[bold cyan]PDF Structure Engine v{__version__}[/]\n"
                f"[dim]Converting: {label}[/]",
                border_style="cyan",
            )
        )
        console.print()

    try:
        if json_output:
            return run(None)

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            console=console,
        ) as progress:
            task = progress.add_task("Reading pages...", total=None)

            def on_page(current, total):
                progress.update(task, completed=current, total=total)

            return run(on_page)

    except FileNotFoundError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)
    except ConversionError as e:
        console.print(f"[red]{READ_FAILURE}.[/]")
        if log_level == "DEBUG":
            console.print(f"[dim]{e}[/]")
        sys.exit(1)


def _emit(result, output: Optional[str], mode: str, into: Optional[str], json_output: bool):
    html = result.html
    if into:
        existing = Path(into).read_text(encoding="utf-8")
        html = insert_fragment(existing, html, InsertMode(mode))

    if output:
        Path(output).write_text(html, encoding="utf-8")
    elif into:
        Path(into).write_text(html, encoding="utf-8")

    if json_output:
        data = result.model_dump(mode="json")
        data["html"] = html
        print(json.dumps(data, indent=2, ensure_ascii=False, default=str))
        return

    try:
        _display_results(result)
    except UnicodeEncodeError:
        # Windows console may not support special chars
        print(f"Conversion complete: {result.report.block_count} blocks")

    if output or into:
        console.print(f"[green]HTML written to:[/] {output or into}")
        console.print()
    else:
        click.echo(html)


# ─── Commands ─────────────────────────────────────────────────────────────────


@cli.command()
@click.argument("pdf_path", type=click.Path(exists=True))
@_output_options
@click.option(
    "--page-start",
    default=None,
    type=int,
    help="Start page (1-indexed)",
)
@click.option(
    "--page-end",
    default=None,
    type=int,
    help="End page (1-indexed, inclusive)",
)
@click.option(
    "--save-tokens",
    default=None,
    type=click.Path(file_okay=False),
    help="Directory to save the HTML, JSON result and token snapshot",
)
def convert(
    pdf_path: str,
    output: Optional[str],
    mode: str,
    into: Optional[str],
    skip_failed_pages: bool,
    heading_ratio: float,
    table_gap: float,
    log_level: str,
    log_file: Optional[str],
    json_output: bool,
    page_start: Optional[int],
    page_end: Optional[int],
    save_tokens: Optional[str],
):
    """Convert a PDF file into an HTML fragment."""

    page_range = None
    if page_start is not None or page_end is not None:
        page_range = (page_start or 1, page_end or 99999)

    config = _build_config(
        heading_ratio, table_gap, skip_failed_pages, log_level, log_file,
        json_output,
        page_range=page_range,
        output_dir=save_tokens,
        save_raw_tokens=save_tokens is not None,
    )
    engine = ConversionEngine(config)

    result = _run_conversion(
        lambda on_page: engine.convert(pdf_path, progress_callback=on_page),
        os.path.basename(pdf_path),
        json_output,
        log_level,
    )
    _emit(result, output, mode, into, json_output)


@cli.command()
@click.argument("tokens_json", type=click.Path(exists=True, dir_okay=False))
@_output_options
def replay(
    tokens_json: str,
    output: Optional[str],
    mode: str,
    into: Optional[str],
    skip_failed_pages: bool,
    heading_ratio: float,
    table_gap: float,
    log_level: str,
    log_file: Optional[str],
    json_output: bool,
):
    """Convert a saved token snapshot into an HTML fragment."""

    config = _build_config(
        heading_ratio, table_gap, skip_failed_pages, log_level, log_file,
        json_output,
    )
    engine = ConversionEngine(config)

    result = _run_conversion(
        lambda on_page: engine.convert_tokens(tokens_json),
        os.path.basename(tokens_json),
        json_output,
        log_level,
    )
    _emit(result, output, mode, into, json_output)


@cli.command()
@click.option("--host", default="0.0.0.0", help="Server host")
@click.option("--port", default=5000, type=int, help="Server port")
@click.option("--debug", is_flag=True, default=False, help="Debug mode")
def serve(host: str, port: int, debug: bool):
    """Start the HTTP conversion service."""
    from .server import run_server

    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]PDF Structure Service[/]\n"
            f"[dim]Starting on {host}:{port}[/]",
            border_style="cyan",
        )
    )
    console.print()

    run_server(host=host, port=port, debug=debug)


@cli.command()
@click.argument("pdf_path", type=click.Path(exists=True))
def info(pdf_path: str):
    """Display PDF file information."""

    import fitz

    try:
        doc = fitz.open(pdf_path)
    except (RuntimeError, ValueError):
        console.print(f"[red]{READ_FAILURE}.[/]")
        sys.exit(1)

    console.print()
    table = Table(title="PDF Information", border_style="cyan")
    table.add_column("Property", style="bold")
    table.add_column("Value")

    table.add_row("File", os.path.basename(pdf_path))
    table.add_row("Pages", str(doc.page_count))
    table.add_row(
        "File Size",
        f"{os.path.getsize(pdf_path) / 1024 / 1024:.2f} MB",
    )

    metadata = doc.metadata or {}
    for key in ["title", "author", "subject", "creator", "producer"]:
        val = metadata.get(key, "")
        if val:
            table.add_row(key.title(), val)

    # Count fonts, a rough hint of how much extractable text there is
    fonts = set()
    for page in doc:
        for font in page.get_fonts(full=True):
            fonts.add(font[3])
    table.add_row("Fonts", str(len(fonts)))

    doc.close()
    console.print(table)
    console.print()


# ─── Display Helpers ──────────────────────────────────────────────────────────


def _display_results(result):
    """Display conversion results in a formatted table."""
    console.print()

    document = result.document
    table = Table(title="Document Information", border_style="cyan")
    table.add_column("Property", style="bold")
    table.add_column("Value")
    table.add_row("Name", document.name or "(auto)")
    table.add_row("Source PDF", document.source_pdf or "-")
    table.add_row("Total Pages", str(document.total_pages))
    if document.file_hash:
        table.add_row("File Hash", document.file_hash[:16] + "...")
    console.print(table)
    console.print()

    _display_report_table(result.report.model_dump())

    version = result.version
    console.print(
        f"[dim]Converter v{version.converter_version} | "
        f"Tokens: {version.token_count} | "
        f"Blocks: {version.block_count} | "
        f"Timestamp: {version.conversion_timestamp}[/]"
    )
    console.print()


def _display_report_table(report: dict):
    """Display the conversion report as a rich table."""
    table = Table(title="Conversion Report", border_style="green")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_column("Status", justify="center")

    def status_icon(count, threshold=0):
        if count <= threshold:
            return "[green]✓[/]"
        return "[yellow]⚠[/]"

    total = report.get("total_pages", 0)
    table.add_row(
        "Pages",
        str(total),
        "[green]✓[/]" if total > 0 else "[red]✗[/]",
    )

    empty = report.get("empty_pages", [])
    table.add_row("Pages Without Text", str(len(empty)), status_icon(len(empty)))

    skipped = report.get("skipped_pages", [])
    table.add_row("Skipped Pages", str(len(skipped)), status_icon(len(skipped)))

    table.add_row("Lines", str(report.get("line_count", 0)), "")
    table.add_row("Headings", str(report.get("headings", 0)), "")
    table.add_row("Paragraphs", str(report.get("paragraphs", 0)), "")
    table.add_row("List Items", str(report.get("list_items", 0)), "")
    table.add_row(
        "Tables",
        f"{report.get('tables', 0)} ({report.get('table_rows', 0)} rows)",
        "",
    )

    mismatched = report.get("mismatched_table_rows", 0)
    if mismatched:
        table.add_row("Mismatched Table Rows", str(mismatched), "[red]✗[/]")

    console.print(table)
    console.print()


# ─── Entry point (for python -m pdfstruct.cli) ────────────────────────────────


if __name__ == "__main__":
    cli()

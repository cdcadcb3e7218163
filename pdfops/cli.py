"""
Command-line interface for pdfops.
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn
from rich.table import Table

from . import __version__
from .config import ServiceConfig
from .errors import PdfError
from .passwords import password_strength
from .service import ResilientPdfService
from .utils import configure_logging

console = Console()

_ENGINE_ORDERS = {
    "cli": ("cli",),
    "library": ("library",),
}


def _fail(exc: PdfError) -> None:
    console.print(f"\n[bold red]✗ Error:[/bold red] {escape(exc.detailed_message)}")
    console.print(f"[dim]{escape(str(exc))}[/dim]")
    sys.exit(1)


def _service(ctx: click.Context) -> ResilientPdfService:
    return ResilientPdfService(config=ctx.obj)


def _read_dictionary(path: str) -> List[str]:
    with open(path, encoding="utf-8") as handle:
        return [line.rstrip("\r\n") for line in handle if line.rstrip("\r\n")]


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "config_path", type=click.Path(exists=True, dir_okay=False), help="JSON configuration file")
@click.option(
    "--engine",
    type=click.Choice(["auto", "cli", "library"]),
    default="auto",
    show_default=True,
    help="Engine to use; auto follows the configured discovery order",
)
@click.option("--verbose", "-v", is_flag=True, help="Log debug output to stderr")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[str], engine: str, verbose: bool) -> None:
    """
    pdfops - resilient PDF validation, decryption and merging.
    """
    configure_logging(logging.DEBUG if verbose else logging.WARNING)
    try:
        config = ServiceConfig.load(config_path) if config_path else ServiceConfig()
        if engine in _ENGINE_ORDERS:
            config.discovery_order = _ENGINE_ORDERS[engine]
        ctx.obj = config.validate()
    except PdfError as exc:
        _fail(exc)


@cli.command(name="engine")
@click.pass_context
def show_engine(ctx: click.Context) -> None:
    """
    Show which PDF engine is available.

    Example:

        pdfops engine
    """
    status = _service(ctx).status

    table = Table(title="PDF Engine", show_header=False)
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("State", status.state.value)
    table.add_row("Engine", status.engine_name)
    if status.version:
        table.add_row("Version", status.version)
    console.print(table)

    if not status.available:
        console.print(f"\n[bold red]✗[/bold red] {escape(status.fallback_message)}")
        sys.exit(1)


@cli.command(name="validate")
@click.argument("paths", nargs=-1, required=True, type=click.Path())
@click.option("--strict", is_flag=True, help="Also check header and trailer, and use the engine's strict mode")
@click.pass_context
def validate(ctx: click.Context, paths: tuple, strict: bool) -> None:
    """
    Validate one or more PDF files.

    Example:

        pdfops validate --strict a.pdf b.pdf
    """
    with _service(ctx) as service:
        results = service.validate_many(paths, strict=strict)

    table = Table(title="Validation")
    table.add_column("File", style="cyan")
    table.add_column("Result")
    for path, error in zip(paths, results):
        if error is None:
            table.add_row(Path(path).name, "[green]✓ valid[/green]")
        else:
            table.add_row(Path(path).name, f"[red]✗ {escape(error.detailed_message)}[/red]")
    console.print(table)

    failed = sum(1 for error in results if error is not None)
    if failed:
        console.print(f"\n[bold red]{failed} of {len(results)} file(s) failed validation[/bold red]")
        sys.exit(1)
    console.print(f"\n[bold green]✓ All {len(results)} file(s) are valid[/bold green]")


@cli.command(name="info")
@click.argument("path", type=click.Path())
@click.pass_context
def show_info(ctx: click.Context, path: str) -> None:
    """
    Display information about a PDF file.

    Example:

        pdfops info input.pdf
    """
    try:
        with _service(ctx) as service:
            info = service.info(path)
    except PdfError as exc:
        _fail(exc)
        return

    table = Table(title=f"PDF Information: {info.path.name}")
    table.add_column("Property", style="cyan", no_wrap=True)
    table.add_column("Value", style="green")
    table.add_row("Pages", str(info.page_count) if info.page_count is not None else "unknown")
    table.add_row("Size", info.formatted_size)
    if info.version:
        table.add_row("PDF Version", info.version)
    table.add_row("Encrypted", "yes" if info.is_encrypted else "no")
    if info.is_encrypted:
        method = f"{info.encryption_method} {info.key_length}-bit".strip()
        table.add_row("Encryption", method)
    table.add_row("Permissions", info.permission_summary)
    for name, value in info.metadata_map.items():
        table.add_row(name, escape(value))
    if info.engine_version:
        table.add_row("Engine", info.engine_version)
    console.print(table)


@cli.command(name="report")
@click.argument("path", type=click.Path())
@click.option("--json", "as_json", is_flag=True, help="Print the report as JSON")
@click.pass_context
def show_report(ctx: click.Context, path: str, as_json: bool) -> None:
    """
    Validate a PDF and print a report with errors, warnings and tips.

    Example:

        pdfops report input.pdf --json
    """
    try:
        with _service(ctx) as service:
            report = service.validation_report(path)
    except PdfError as exc:
        _fail(exc)
        return

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2, default=str))
    else:
        table = Table(title=f"Validation Report: {Path(report.path).name}")
        table.add_column("Property", style="cyan", no_wrap=True)
        table.add_column("Value")
        table.add_row("Valid", "[green]yes[/green]" if report.is_valid else "[red]no[/red]")
        for name, value in report.details.items():
            table.add_row(name.replace("_", " ").capitalize(), escape(str(value)))
        for error in report.errors:
            table.add_row("Error", f"[red]{escape(error)}[/red]")
        for warning in report.warnings:
            table.add_row("Warning", f"[yellow]{escape(warning)}[/yellow]")
        for tip in report.performance_tips:
            table.add_row("Tip", escape(tip))
        console.print(table)

    if not report.is_valid:
        sys.exit(1)


@cli.command(name="decrypt")
@click.argument("path", type=click.Path())
@click.option("--output", "-o", type=click.Path(), help="Where to write the decrypted PDF")
@click.option("--password", "-p", help="Password to use instead of the dictionary")
@click.option(
    "--dictionary",
    type=click.Path(exists=True, dir_okay=False),
    help="File with one candidate password per line",
)
@click.pass_context
def decrypt(
    ctx: click.Context,
    path: str,
    output: Optional[str],
    password: Optional[str],
    dictionary: Optional[str],
) -> None:
    """
    Decrypt a password protected PDF.

    Without --password the built-in dictionary (or --dictionary) is tried.

    Examples:

        pdfops decrypt locked.pdf -p secret

        pdfops decrypt locked.pdf --dictionary words.txt -o unlocked.pdf
    """
    source = Path(path)
    target = output or str(source.with_name(f"{source.stem}_decrypted.pdf"))
    candidates = _read_dictionary(dictionary) if dictionary else None

    try:
        with _service(ctx) as service:
            with Progress(
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                TaskProgressColumn(),
                console=console,
                transient=True,
            ) as progress:
                task = progress.add_task("Trying passwords", total=None)

                def update_progress(current: int, total: int, _candidate: str) -> None:
                    progress.update(task, completed=current, total=total)

                result = service.decrypt(
                    source,
                    target,
                    password=password,
                    passwords=candidates,
                    progress=update_progress,
                )
    except PdfError as exc:
        _fail(exc)
        return

    if result.is_original:
        console.print(f"\n[bold yellow]{escape(source.name)} is not encrypted[/bold yellow]")
        return
    console.print(
        f"\n[bold green]✓ Decrypted after {result.attempt_count} attempt(s) "
        f"in {result.processing_time:.2f}s[/bold green]"
    )
    console.print(f"[dim]Output file: {escape(str(result.decrypted_path))}[/dim]")


@cli.command(name="merge")
@click.argument("inputs", nargs=-1, required=True, type=click.Path())
@click.option("--output", "-o", type=click.Path(), help="Merged PDF path")
@click.option("--batch-size", type=click.IntRange(min=1), help="Inputs merged per engine call")
@click.pass_context
def merge(ctx: click.Context, inputs: tuple, output: Optional[str], batch_size: Optional[int]) -> None:
    """
    Merge PDF files in the order given.

    Examples:

        pdfops merge a.pdf b.pdf -o merged.pdf

        pdfops merge chapters/*.pdf --batch-size 20
    """
    try:
        with _service(ctx) as service:
            result = service.merge_streaming(list(inputs), output, batch_size=batch_size, progress=sys.stdout)
    except PdfError as exc:
        _fail(exc)
        return

    console.print(f"\n[bold green]✓ Merged {len(inputs)} file(s)[/bold green]")
    console.print(f"[dim]Output file: {escape(str(result))}[/dim]")


@cli.command(name="strength")
@click.argument("password")
def strength(password: str) -> None:
    """
    Score a password.

    Example:

        pdfops strength 'correct horse'
    """
    report = password_strength(password)
    colour = {"strong": "green", "medium": "yellow"}.get(report.level, "red")
    console.print(f"Score: [bold]{report.score}[/bold] ([{colour}]{report.level}[/{colour}])")
    for suggestion in report.suggestions:
        console.print(f"  • {suggestion}")


if __name__ == "__main__":
    cli()

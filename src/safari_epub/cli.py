"""Main CLI application."""

import logging
from pathlib import Path
from typing import Annotated, Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler

from safari_epub.core.errors import SafariEpubError
from safari_epub.models.config import DownloaderConfig, DownloadOptions, Theme

app = typer.Typer(
    name="safari-epub",
    help="Convert O'Reilly learning-platform books into EPUB files.",
    add_completion=False,
)

console = Console()


def configure_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Route log records through rich on stderr."""
    level = logging.DEBUG if verbose else logging.WARNING if quiet else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )
    # urllib3 connection chatter drowns out pipeline progress
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def load_config(path: Path | None) -> DownloaderConfig:
    try:
        return DownloaderConfig.load(path)
    except (OSError, ValidationError) as e:
        console.print(f"[red]Invalid config file {path}: {e}[/]")
        raise typer.Exit(1)


CookiesOption = Annotated[
    Path,
    typer.Option(
        "--cookies",
        "-c",
        help="JSON file with session cookies exported from a logged-in browser",
    ),
]

ConfigOption = Annotated[
    Optional[Path],
    typer.Option(
        "--config",
        help="JSON file overriding downloader settings",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    ),
]


@app.command()
def download(
    book_id: Annotated[
        str,
        typer.Argument(help="Book identifier (the number in the book's URL)"),
    ],
    theme: Annotated[
        Theme,
        typer.Option(
            "--theme",
            "-t",
            help="Reading theme embedded in every chapter",
        ),
    ] = Theme.NONE,
    kindle: Annotated[
        bool,
        typer.Option(
            "--kindle",
            "-k",
            help="Add Kindle-friendly overrides for tables and code blocks",
        ),
    ] = False,
    cookies: CookiesOption = Path("cookies.json"),
    output_dir: Annotated[
        Path,
        typer.Option(
            "--output-dir",
            "-o",
            help="Directory that receives <title (id)>/<file>.epub",
        ),
    ] = Path("Books"),
    config_path: ConfigOption = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show debug logging"),
    ] = False,
    quiet: Annotated[
        bool,
        typer.Option("--quiet", "-q", help="Suppress progress output"),
    ] = False,
) -> None:
    """Download a book and package it as an EPUB."""
    if verbose and quiet:
        console.print("[red]Error: --verbose and --quiet are mutually exclusive[/]")
        raise typer.Exit(1)

    configure_logging(verbose, quiet)
    config = load_config(config_path)

    from safari_epub.commands.download import execute_download

    try:
        result = execute_download(
            book_id=book_id,
            options=DownloadOptions(theme=theme, kindle=kindle),
            cookies=cookies,
            output_dir=output_dir,
            config=config,
            quiet=quiet,
            console=console,
        )
    except Exception as e:
        console.print(f"[red]Error: {e}[/]")
        raise typer.Exit(1)

    if not result.ok:
        raise typer.Exit(1)


@app.command()
def info(
    book_id: Annotated[
        str,
        typer.Argument(help="Book identifier (the number in the book's URL)"),
    ],
    cookies: CookiesOption = Path("cookies.json"),
    config_path: ConfigOption = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show debug logging"),
    ] = False,
) -> None:
    """Display book metadata and chapter list without downloading content."""
    configure_logging(verbose, quiet=not verbose)
    config = load_config(config_path)

    from safari_epub.commands.info import execute_info

    try:
        execute_info(book_id=book_id, cookies=cookies, config=config, console=console)
    except SafariEpubError as e:
        console.print(f"[red]Error: {e}[/]")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()

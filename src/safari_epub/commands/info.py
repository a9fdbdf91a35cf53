"""Info command implementation."""

from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from safari_epub.commands.download import build_downloader
from safari_epub.models.book import BookMetadata, Chapter
from safari_epub.models.config import DownloaderConfig


def display_book(metadata: BookMetadata, chapters: list[Chapter], console: Console) -> None:
    info_lines = [
        f"[bold]{metadata.title}[/]",
        "",
        f"[dim]Author(s):[/] {', '.join(metadata.authors) or 'Unknown'}",
        f"[dim]Publisher:[/] {', '.join(metadata.publishers) or 'Unknown'}",
        f"[dim]ISBN:[/] {metadata.isbn or 'Unknown'}",
        f"[dim]Published:[/] {metadata.publication_date or 'Unknown'}",
        f"[dim]Chapters:[/] {len(chapters)}",
    ]
    console.print()
    console.print(Panel("\n".join(info_lines), title="Book Information", border_style="green"))

    console.print()
    table = Table(title="Chapters", show_header=True, header_style="bold cyan")
    table.add_column("#", style="dim", width=4)
    table.add_column("Title", style="white")
    table.add_column("File", style="dim")
    table.add_column("Images", justify="right", style="green")

    for i, chapter in enumerate(chapters):
        table.add_row(
            str(i + 1),
            chapter.title or "Untitled",
            chapter.xhtml_filename(),
            str(len(chapter.related_assets.images)),
        )
    console.print(table)
    console.print()


def execute_info(
    book_id: str,
    cookies: Path,
    config: DownloaderConfig,
    console: Console,
) -> None:
    """Execute the info command."""
    downloader = build_downloader(cookies, config)
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True,
    ) as progress:
        progress.add_task(f"Resolving {book_id}...", total=None)
        metadata, chapters = downloader.inspect(book_id)

    display_book(metadata, chapters, console)

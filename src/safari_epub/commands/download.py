"""Download command implementation."""

from pathlib import Path

import requests
from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
)

from safari_epub.core.downloader import BookDownloader
from safari_epub.core.http_client import RequestsTransport
from safari_epub.core.output_writer import DirectorySink
from safari_epub.core.session import CookieFileCredentials
from safari_epub.models.config import DownloaderConfig, DownloadOptions
from safari_epub.models.events import DownloadResult, ProgressEvent, ProgressStage

STAGE_LABELS = {
    ProgressStage.STARTING: "Starting...",
    ProgressStage.SESSION_CHECK: "Checking session...",
    ProgressStage.SESSION_OK: "Session verified",
    ProgressStage.METADATA: "Retrieving metadata...",
    ProgressStage.CHAPTERS_DISCOVERED: "Chapters discovered",
    ProgressStage.CSS_IMAGES_START: "Fetching stylesheet images...",
    ProgressStage.PACKAGING_COMPLETE: "Packaging complete",
    ProgressStage.DOWNLOAD_START: "Saving EPUB...",
    ProgressStage.COMPLETE: "Done",
}


class ProgressRenderer:
    """Map pipeline events onto a single rich progress task."""

    def __init__(self, progress: Progress, task_id: TaskID):
        self.progress = progress
        self.task_id = task_id

    def __call__(self, event: ProgressEvent) -> None:
        stage = event.stage
        if stage == ProgressStage.CHAPTERS_DISCOVERED:
            self.progress.update(
                self.task_id,
                description=f"Found {event.total} chapters",
                total=event.total,
                completed=0,
            )
        elif stage == ProgressStage.CHAPTER_START:
            self.progress.update(
                self.task_id,
                description=f"Chapter: {event.title}",
                completed=(event.index or 1) - 1,
            )
        elif stage == ProgressStage.IMAGES_START:
            self.progress.update(
                self.task_id,
                description="Fetching images...",
                total=event.total or None,
                completed=0,
            )
        elif stage == ProgressStage.IMAGES_PROGRESS:
            self.progress.update(self.task_id, completed=event.completed)
        elif stage == ProgressStage.IMAGES_COMPLETE:
            self.progress.update(
                self.task_id, description=f"Fetched {event.completed} images"
            )
        elif stage in STAGE_LABELS:
            self.progress.update(self.task_id, description=STAGE_LABELS[stage])


def build_downloader(
    cookies: Path,
    config: DownloaderConfig,
    progress=None,
) -> BookDownloader:
    """Wire the requests-backed transport and cookie credentials together."""
    session = requests.Session()
    transport = RequestsTransport(session, timeout=config.request_timeout)
    credentials = CookieFileCredentials(session, cookies)
    return BookDownloader(transport, credentials=credentials, config=config, progress=progress)


def display_result(result: DownloadResult, output_dir: Path, console: Console) -> None:
    """Print the summary panel for a finished conversion."""
    if not result.ok:
        console.print(
            Panel(
                f"[red]{result.error}[/]",
                title="Download Failed",
                border_style="red",
            )
        )
        return

    lines = [
        "[green]EPUB created successfully[/]",
        "",
        f"[dim]File:[/] {output_dir / result.filename}",
    ]
    if result.warnings:
        lines.append("")
        lines.append(f"[yellow]{len(result.warnings)} asset(s) could not be fetched:[/]")
        for warning in result.warnings[:10]:
            lines.append(f"[yellow]  {warning}[/]")
        if len(result.warnings) > 10:
            lines.append(f"[dim]  ... and {len(result.warnings) - 10} more[/]")

    console.print()
    console.print(Panel("\n".join(lines), title="Download Complete", border_style="green"))


def execute_download(
    book_id: str,
    options: DownloadOptions,
    cookies: Path,
    output_dir: Path,
    config: DownloaderConfig,
    quiet: bool,
    console: Console,
) -> DownloadResult:
    """Execute the download command."""
    sink = DirectorySink(output_dir)

    if quiet:
        downloader = build_downloader(cookies, config)
        result = downloader.convert(book_id, options, sink)
    else:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            console=console,
        ) as progress:
            task_id = progress.add_task(f"Downloading {book_id}...", total=None)
            downloader = build_downloader(
                cookies, config, progress=ProgressRenderer(progress, task_id)
            )
            result = downloader.convert(book_id, options, sink)

    if not quiet or not result.ok:
        display_result(result, output_dir, console)
    return result

"""Conversion pipeline: one book id in, one EPUB archive out."""

import logging
import random
from typing import Callable

from safari_epub.core.assets import AssetCollector
from safari_epub.core.errors import SafariEpubError
from safari_epub.core.http_client import CredentialProvider, FetchClient, Transport
from safari_epub.core.metadata import MetadataResolver
from safari_epub.core.naming import make_file_friendly_name, make_folder_friendly_name
from safari_epub.core.output_writer import OutputSink
from safari_epub.core.packager import EpubPackager
from safari_epub.core.scheduler import Clock, RequestScheduler
from safari_epub.core.transformer import ChapterTransformer
from safari_epub.models.assets import AssetRegistry
from safari_epub.models.book import BookMetadata, Chapter
from safari_epub.models.config import DownloaderConfig, DownloadOptions
from safari_epub.models.events import (
    DownloadResult,
    EpubArtifact,
    ProgressEvent,
    ProgressStage,
)

log = logging.getLogger(__name__)

ProgressSink = Callable[[ProgressEvent], None]


def output_filename(metadata: BookMetadata, book_id: str) -> str:
    """Suggested ``<folder>/<file>.epub`` path for a book."""
    authors = ", ".join(metadata.authors) or "Unknown Author"
    folder = make_folder_friendly_name(metadata.title, book_id)
    name = make_file_friendly_name(metadata.title, authors, book_id)
    return f"{folder}/{name}.epub"


class BookDownloader:
    """Drive metadata, chapters, assets and packaging for one book at a time.

    All per-book state (scheduler, asset registry, referrer) is rebuilt at the
    start of every run.
    """

    def __init__(
        self,
        transport: Transport,
        credentials: CredentialProvider | None = None,
        config: DownloaderConfig | None = None,
        clock: Clock | None = None,
        rng: random.Random | None = None,
        progress: ProgressSink | None = None,
    ):
        self.config = config or DownloaderConfig()
        self.scheduler = RequestScheduler(self.config, clock=clock, rng=rng)
        self.client = FetchClient(
            transport,
            scheduler=self.scheduler,
            credentials=credentials,
            config=self.config,
        )
        self.credentials = credentials
        self.progress = progress
        self.registry = AssetRegistry()
        self.metadata: BookMetadata | None = None
        self.warnings: list[str] = []

    def emit(self, stage: ProgressStage, **payload) -> None:
        if self.progress:
            self.progress(ProgressEvent(stage=stage, **payload))

    def reset(self) -> None:
        self.client.reset()
        self.registry = AssetRegistry()
        self.metadata = None
        self.warnings = []

    def check_session(self, resolver: MetadataResolver) -> None:
        self.emit(ProgressStage.SESSION_CHECK)
        if self.credentials is not None:
            # A missing session is fatal here, unlike refreshes during retries
            self.credentials.refresh()
            self.scheduler.mark_session_refreshed()
        log.info("Verifying session by loading profile page...")
        resolver.check_login()
        self.emit(ProgressStage.SESSION_OK)

    def inspect(self, book_id: str) -> tuple[BookMetadata, list[Chapter]]:
        """Check the session and resolve metadata and chapters only."""
        self.reset()
        self.client.update_referrer(self.config.book_page_url(book_id))
        resolver = MetadataResolver(self.client)
        self.check_session(resolver)
        metadata = resolver.fetch_book_info(book_id)
        self.client.update_referrer(metadata.base_url)
        return metadata, resolver.fetch_chapters(metadata.chapters)

    def download(self, book_id: str, options: DownloadOptions | None = None) -> EpubArtifact:
        """Run the full pipeline and return the archive; raises on failure."""
        options = options or DownloadOptions()
        clock = self.scheduler.clock
        self.reset()
        started = clock.now()
        self.emit(ProgressStage.STARTING)
        self.client.update_referrer(self.config.book_page_url(book_id))

        resolver = MetadataResolver(self.client)
        self.check_session(resolver)

        log.info("Retrieving book metadata for %s...", book_id)
        metadata = resolver.fetch_book_info(book_id)
        self.metadata = metadata
        self.client.update_referrer(metadata.base_url)
        self.emit(ProgressStage.METADATA, title=metadata.title)

        log.info("Fetching table of chapters...")
        chapters = resolver.fetch_chapters(metadata.chapters)
        log.info("Chapters discovered: %d", len(chapters))
        self.emit(ProgressStage.CHAPTERS_DISCOVERED, total=len(chapters))

        transformer = ChapterTransformer(self.client, metadata, self.registry, options)
        result = transformer.process_chapters(
            chapters,
            on_chapter=lambda i, total, title: self.emit(
                ProgressStage.CHAPTER_START, index=i + 1, total=total, title=title
            ),
        )

        collector = AssetCollector(self.client, self.registry, metadata)
        collector.fetch_css_sources()
        collector.fetch_fonts()

        self.emit(
            ProgressStage.IMAGES_START,
            total=len(self.registry.images),
            concurrency=1,
        )
        fetched = collector.fetch_images(
            on_progress=lambda done, total, elapsed: self.emit(
                ProgressStage.IMAGES_PROGRESS,
                completed=done,
                total=total,
                elapsed_seconds=round(elapsed, 3),
            )
        )
        self.emit(ProgressStage.IMAGES_COMPLETE, completed=fetched)

        self.emit(ProgressStage.CSS_IMAGES_START, total=len(collector.pending_css_assets()))
        collector.fetch_css_images()
        self.warnings = [str(w) for w in collector.warnings]

        toc = resolver.fetch_table_of_contents(metadata)
        packager = EpubPackager(
            metadata,
            book_id,
            self.registry,
            result.documents,
            toc=toc,
            cover_path=result.cover_path,
        )
        data = packager.build()
        self.emit(
            ProgressStage.PACKAGING_COMPLETE,
            duration_ms=int((clock.now() - started) * 1000),
        )
        filename = output_filename(metadata, book_id)
        log.info("Packaged %s (%d bytes)", filename, len(data))
        return EpubArtifact(filename=filename, data=data)

    def convert(
        self,
        book_id: str,
        options: DownloadOptions | None = None,
        sink: OutputSink | None = None,
    ) -> DownloadResult:
        """Download and optionally save; pipeline failures come back as a result."""
        if not book_id:
            return DownloadResult(ok=False, error="Missing book ID.")
        try:
            artifact = self.download(book_id, options)
        except SafariEpubError as e:
            log.error("Download failed: %s", e)
            return DownloadResult(ok=False, error=str(e))

        if sink is not None:
            self.emit(ProgressStage.DOWNLOAD_START)
            if not sink.save(artifact.data, artifact.filename):
                return DownloadResult(
                    ok=False,
                    error=f"Unable to save {artifact.filename}",
                    filename=artifact.filename,
                )
            log.info("EPUB saved as %s", artifact.filename)

        self.emit(ProgressStage.COMPLETE)
        return DownloadResult(ok=True, filename=artifact.filename, warnings=self.warnings)

"""Data models."""

from safari_epub.models.assets import AssetEntry, AssetRegistry
from safari_epub.models.book import (
    BookMetadata,
    Chapter,
    ChapterDocument,
    RelatedAssets,
    TOCEntry,
)
from safari_epub.models.config import DownloaderConfig, DownloadOptions, Theme
from safari_epub.models.events import (
    DownloadResult,
    EpubArtifact,
    ProgressEvent,
    ProgressStage,
)

__all__ = [
    # Book models
    "TOCEntry",
    "RelatedAssets",
    "Chapter",
    "ChapterDocument",
    "BookMetadata",
    # Asset models
    "AssetEntry",
    "AssetRegistry",
    # Configuration
    "Theme",
    "DownloadOptions",
    "DownloaderConfig",
    # Events and results
    "ProgressStage",
    "ProgressEvent",
    "EpubArtifact",
    "DownloadResult",
]

"""Progress events and conversion results."""

from enum import Enum

from pydantic import BaseModel


class ProgressStage(str, Enum):
    """Stage tag carried by every progress event."""

    STARTING = "starting"
    SESSION_CHECK = "session-check"
    SESSION_OK = "session-ok"
    METADATA = "metadata"
    CHAPTERS_DISCOVERED = "chapters-discovered"
    CHAPTER_START = "chapter-start"
    IMAGES_START = "images-start"
    IMAGES_PROGRESS = "images-progress"
    IMAGES_COMPLETE = "images-complete"
    CSS_IMAGES_START = "css-images-start"
    PACKAGING_COMPLETE = "packaging-complete"
    DOWNLOAD_START = "download-start"
    COMPLETE = "complete"


class ProgressEvent(BaseModel):
    """Advisory progress update emitted by the pipeline."""

    stage: ProgressStage
    index: int | None = None
    total: int | None = None
    title: str | None = None
    completed: int | None = None
    concurrency: int | None = None
    elapsed_seconds: float | None = None
    duration_ms: int | None = None


class EpubArtifact(BaseModel):
    """Finished archive with its suggested relative filename."""

    filename: str
    data: bytes


class DownloadResult(BaseModel):
    """Outcome reported back to the caller."""

    ok: bool
    error: str | None = None
    filename: str | None = None
    warnings: list[str] = []

"""Downloader configuration and per-run options."""

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field


class Theme(str, Enum):
    """Reading theme applied to every chapter document."""

    NONE = "none"
    WHITE = "white"
    SEPIA = "sepia"
    BLACK = "black"


class DownloadOptions(BaseModel):
    """Options supplied with a conversion request."""

    theme: Theme = Theme.NONE
    kindle: bool = False

    @property
    def theme_mode(self) -> str:
        """Mode class used in the document shell (``none`` renders as white)."""
        return Theme.WHITE.value if self.theme == Theme.NONE else self.theme.value


class DownloaderConfig(BaseModel):
    """Tunables for the remote service and the request scheduler."""

    base_url: str = "https://learning.oreilly.com"

    # Pacing
    request_spacing_ms: int = Field(default=200, ge=0)
    penalty_step_ms: int = 250
    penalty_floor_ms: int = 500
    penalty_cap_ms: int = 8000
    penalty_step_cap_ms: int = 6000

    # Retry
    max_attempts: int = Field(default=4, ge=1)
    base_retry_delay_ms: int = 750
    max_retry_delay_ms: int = 8000
    retry_jitter_ms: int = 250
    rate_limit_extra_delay_ms: int = 1000

    # Session
    session_refresh_cooldown_ms: int = 30000
    request_timeout: float = 60.0

    cover_cdn_sizes: list[str] = Field(default_factory=lambda: ["600w", "400w", "250w", ""])

    @property
    def api_v2_template(self) -> str:
        return f"{self.base_url}/api/v2/epubs/urn:orm:book:"

    @property
    def api_v1_template(self) -> str:
        return f"{self.base_url}/api/v1/book/"

    @property
    def profile_url(self) -> str:
        return f"{self.base_url}/profile/"

    def book_page_url(self, book_id: str) -> str:
        return f"{self.base_url}/library/view/{book_id}/"

    def cover_cdn_url(self, isbn: str, size: str) -> str:
        suffix = f"/{size}" if size else ""
        return f"{self.base_url}/library/cover/{isbn}{suffix}/"

    @classmethod
    def load(cls, path: Path | None) -> "DownloaderConfig":
        """Load from a JSON file, falling back to defaults."""
        if path is None:
            return cls()
        return cls.model_validate_json(path.read_text())

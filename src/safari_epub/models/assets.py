"""Asset bookkeeping for one conversion run."""

from dataclasses import dataclass, field


@dataclass
class AssetEntry:
    """A remote asset registered under a virtual path."""

    source_url: str
    data: bytes | None = None
    fetched_from: str | None = None  # set when a fallback URL succeeded

    @property
    def fetched(self) -> bool:
        return self.data is not None


@dataclass
class AssetRegistry:
    """Deduplicating maps of every asset a book references.

    The first registration of a virtual path wins for the rest of the run.
    """

    css_sources: dict[str, str] = field(default_factory=dict)  # url -> StyleNN.css
    css_content: dict[str, str] = field(default_factory=dict)  # url -> css text
    fonts: dict[str, str] = field(default_factory=dict)  # Styles/... -> url
    images: dict[str, AssetEntry] = field(default_factory=dict)  # relative to Images/
    css_assets: dict[str, AssetEntry] = field(default_factory=dict)  # Styles/... path

    def register_css_source(self, url: str) -> str:
        if url not in self.css_sources:
            self.css_sources[url] = f"Style{len(self.css_sources):02d}.css"
        return self.css_sources[url]

    def register_font(self, path: str, url: str) -> bool:
        if path in self.fonts:
            return False
        self.fonts[path] = url
        return True

    def register_image(self, relative: str, url: str) -> bool:
        if relative in self.images:
            return False
        self.images[relative] = AssetEntry(source_url=url)
        return True

    def register_css_asset(self, path: str, url: str) -> bool:
        if path in self.css_assets:
            return False
        self.css_assets[path] = AssetEntry(source_url=url)
        return True

"""Name sanitizing and URL classification helpers."""

import re
from urllib.parse import urljoin, urlparse

INVALID_DIR_CHARS = re.compile(r"[~#%&*{}\\<>?/`'\"|+:]")
IMAGE_EXTENSIONS = {"jpg", "jpeg", "png", "gif", "svg", "webp"}
FONT_EXTENSIONS = {"otf", "ttf", "woff", "woff2", "eot"}
DOC_EXTENSIONS = (".html", ".xhtml", ".pdf")

_XML_ESCAPES = {
    "&": "&amp;",
    "<": "&lt;",
    ">": "&gt;",
    '"': "&quot;",
    "'": "&apos;",
}


def clean_directory_name(name: str) -> str:
    """Strip reserved filesystem characters and collapse whitespace.

    A colon far into the title (past position 15) marks a subtitle, which is
    dropped; earlier colons become commas.
    """
    sanitized = name
    if ":" in sanitized:
        if sanitized.index(":") > 15:
            sanitized = sanitized.split(":")[0]
        else:
            sanitized = sanitized.replace(":", ",")
    sanitized = INVALID_DIR_CHARS.sub("_", sanitized)
    return re.sub(r"\s+", " ", sanitized).strip()


def make_folder_friendly_name(title: str, book_id: str) -> str:
    """Folder name: first two comma parts of the title plus the book id."""
    safe_title = clean_directory_name(title)
    prefix = ",".join(safe_title.split(",")[:2])
    return f"{prefix or safe_title} ({book_id})".strip()


def make_file_friendly_name(*segments: object) -> str:
    """Join non-empty sanitized segments with `` - ``."""
    cleaned = [clean_directory_name(str(s)) for s in segments if s is not None]
    cleaned = [s for s in cleaned if s]
    if not cleaned:
        return "download"
    return re.sub(r"\s+", " ", " - ".join(cleaned)).strip()


def escape_xml(value: object) -> str:
    """Escape a value for use in XML text or attributes."""
    return "".join(_XML_ESCAPES.get(ch, ch) for ch in str(value))


def is_absolute_url(url: str) -> bool:
    try:
        return bool(urlparse(url).scheme)
    except ValueError:
        return False


def is_doc_link(url: str) -> bool:
    return any(ext in url for ext in DOC_EXTENSIONS)


def _extension(url: str) -> str:
    return url.lower().split("?")[0].rsplit(".", 1)[-1]


def is_image_link(url: str) -> bool:
    """Loose check used for in-page links (folder names count as images)."""
    lowered = url.lower()
    if "cover" in lowered or "images" in lowered or "graphics" in lowered:
        return True
    return _extension(url) in IMAGE_EXTENSIONS


def is_font_url(url: str) -> bool:
    return _extension(url) in FONT_EXTENSIONS


def is_likely_image_asset(url: str) -> bool:
    return _extension(url) in IMAGE_EXTENSIONS


def make_valid_id(value: str) -> str:
    """Turn an arbitrary string into a valid XML name."""
    sanitized = re.sub(r"\W", "_", value)
    if not sanitized or sanitized[0].isdigit():
        return f"_{sanitized}"
    return sanitized


def resolve_styles_relative_path(relative_path: str) -> str:
    """Resolve a CSS-relative path against the virtual ``Styles/`` root.

    ``..`` segments first consume resolved segments, then climb out of
    ``Styles`` itself.
    """
    base_parts = ["Styles"]
    resolved: list[str] = []
    for segment in relative_path.split("/"):
        if not segment or segment == ".":
            continue
        if segment == "..":
            if resolved:
                resolved.pop()
            elif base_parts:
                base_parts.pop()
            continue
        resolved.append(segment)
    return "/".join(base_parts + resolved)


def ensure_forward_slashes(path: str) -> str:
    return path.replace("\\", "/")


def to_absolute_url(link: str, base: str) -> str:
    try:
        return urljoin(base, link)
    except ValueError:
        return link


def media_type_for(path: str) -> str:
    """Manifest media type inferred from a file extension."""
    ext = path.rsplit(".", 1)[-1].lower()
    if ext in FONT_EXTENSIONS:
        return f"font/{ext}"
    if "jp" in ext:
        return "image/jpeg"
    if ext == "svg":
        return "image/svg+xml"
    return f"image/{ext}"

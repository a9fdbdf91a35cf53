"""Session cookie loading."""

import json
import logging
from pathlib import Path

import requests

from safari_epub.core.errors import AuthenticationError

log = logging.getLogger(__name__)

COOKIE_DOMAIN = ".oreilly.com"


def read_cookie_file(path: Path) -> dict[str, str]:
    """Read cookies exported from a browser session.

    Accepts either a plain ``{name: value}`` mapping or a list of cookie
    objects with ``name``/``value`` keys (the browser-extension export format).
    """
    try:
        data = json.loads(path.read_text())
    except FileNotFoundError as e:
        raise AuthenticationError(f"Cookie file not found: {path}") from e
    except json.JSONDecodeError as e:
        raise AuthenticationError(f"Cookie file {path} is not valid JSON.") from e
    except (OSError, UnicodeDecodeError) as e:
        raise AuthenticationError(f"Unable to read cookie file {path}: {e}") from e

    if isinstance(data, dict):
        return {str(k): str(v) for k, v in data.items()}
    if isinstance(data, list):
        return {
            str(item["name"]): str(item.get("value", ""))
            for item in data
            if isinstance(item, dict) and "name" in item
        }
    raise AuthenticationError(f"Unrecognized cookie file format in {path}")


class CookieFileCredentials:
    """Attach cookies from a JSON file to a shared session.

    The profile check itself is left to ``MetadataResolver.check_login`` so it
    goes through the paced fetch client.
    """

    def __init__(self, session: requests.Session, cookie_path: Path):
        self.session = session
        self.cookie_path = cookie_path

    def refresh(self) -> None:
        cookies = read_cookie_file(self.cookie_path)
        if not cookies:
            raise AuthenticationError(
                f"No session cookies found in {self.cookie_path}. "
                "Export them from a logged-in browser session first."
            )
        for name, value in cookies.items():
            self.session.cookies.set(name, value, domain=COOKIE_DOMAIN)
        log.debug("Loaded %d session cookies from %s", len(cookies), self.cookie_path)

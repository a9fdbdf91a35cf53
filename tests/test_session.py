from __future__ import annotations

import json
from pathlib import Path

import pytest
import requests

from safari_epub.core.errors import AuthenticationError
from safari_epub.core.session import CookieFileCredentials, read_cookie_file


def test_read_cookie_file_accepts_mapping(tmp_path: Path) -> None:
    path = tmp_path / "cookies.json"
    path.write_text(json.dumps({"orm-jwt": "abc", "groot_sessionid": 1}))
    assert read_cookie_file(path) == {"orm-jwt": "abc", "groot_sessionid": "1"}


def test_read_cookie_file_accepts_browser_export(tmp_path: Path) -> None:
    path = tmp_path / "cookies.json"
    path.write_text(json.dumps([
        {"name": "orm-jwt", "value": "abc", "domain": ".oreilly.com"},
        {"value": "orphan"},
    ]))
    assert read_cookie_file(path) == {"orm-jwt": "abc"}


@pytest.mark.parametrize("content", [None, "{not json", "42"])
def test_read_cookie_file_errors(tmp_path: Path, content: str | None) -> None:
    path = tmp_path / "cookies.json"
    if content is not None:
        path.write_text(content)
    with pytest.raises(AuthenticationError):
        read_cookie_file(path)


def test_read_cookie_file_unreadable(tmp_path: Path) -> None:
    with pytest.raises(AuthenticationError, match="Unable to read"):
        read_cookie_file(tmp_path)

    path = tmp_path / "cookies.json"
    path.write_bytes(b"\xff\xfe\x00{")
    with pytest.raises(AuthenticationError):
        read_cookie_file(path)


class _OfflineSession(requests.Session):
    def request(self, method, url, *args, **kwargs):  # type: ignore[override]
        raise AssertionError(f"unexpected request to {url}")


def test_refresh_sets_cookies_without_requests(tmp_path: Path) -> None:
    path = tmp_path / "cookies.json"
    path.write_text(json.dumps({"orm-jwt": "abc"}))
    session = _OfflineSession()
    CookieFileCredentials(session, path).refresh()
    assert session.cookies.get("orm-jwt", domain=".oreilly.com") == "abc"


def test_refresh_requires_cookies(tmp_path: Path) -> None:
    path = tmp_path / "cookies.json"
    path.write_text("{}")
    with pytest.raises(AuthenticationError, match="No session cookies"):
        CookieFileCredentials(_OfflineSession(), path).refresh()

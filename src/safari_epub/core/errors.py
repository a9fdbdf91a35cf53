"""Exceptions raised by the download pipeline."""


class SafariEpubError(Exception):
    """Base error for a failed conversion."""


class AuthenticationError(SafariEpubError):
    """Session check failed or the subscription has expired."""


class MetadataError(SafariEpubError):
    """Book metadata or the chapter list could not be resolved."""


class TransformError(SafariEpubError):
    """Chapter markup is missing its content root."""


class NetworkError(SafariEpubError):
    """Request failed after exhausting all retries."""

    def __init__(self, message: str, url: str | None = None, status: int | None = None):
        self.url = url
        self.status = status
        super().__init__(message)


class AssetFetchWarning(UserWarning):
    """An optional asset could not be fetched and was left out."""

"""
Registry client error classes.

Provides a clear taxonomy of errors that can occur while talking to a
Docker/OCI Distribution registry. Errors raised from an HTTP response carry
the response and any structured error code/message the server returned.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .transport import DockerResponse


class RegistryError(Exception):
    """
    Base class for all registry client errors.
    
    Attributes:
        response: Registry response the error was derived from, if any
        status_code: HTTP status of that response, if any
        rest_code: Server-supplied error code (e.g. "MANIFEST_UNKNOWN")
        rest_text: Server-supplied error message
    """
    
    def __init__(
        self,
        message: str,
        *,
        response: Optional["DockerResponse"] = None,
        rest_code: str = "",
        rest_text: str = "",
    ):
        super().__init__(message)
        self.message = message
        self.response = response
        self.rest_code = rest_code
        self.rest_text = rest_text
    
    @property
    def status_code(self) -> Optional[int]:
        return self.response.status_code if self.response is not None else None


class ParseError(RegistryError):
    """
    Malformed header value.
    
    Raised when:
    - WWW-Authenticate challenge cannot be parsed
    - Docker-Content-Digest header is malformed
    - Token realm uses an unsupported URL scheme
    """
    pass


class UnsupportedSchemeError(RegistryError):
    """Auth challenge scheme is neither Basic nor Bearer."""
    pass


class RegistryHTTPError(RegistryError):
    """
    Registry returned a status the caller did not expect.
    
    The message includes the server's structured error (``(CODE) message``)
    when the body had one, otherwise a truncated text body.
    """
    pass


class AuthenticationError(RegistryError):
    """
    Authentication failed.
    
    Raised when:
    - Token endpoint answers 401
    - Token endpoint answers 200 without a token
    """
    pass


class UnauthorizedError(RegistryHTTPError, AuthenticationError):
    """HTTP 401/403 on a registry request."""
    pass


class NotFoundError(RegistryHTTPError):
    """
    Resource not found in registry.
    
    Raised for HTTP 404, and for a manifest fetch answered with 401 after
    a successful login for the repository scope.
    """
    pass


class InvalidContentError(RegistryError):
    """
    Response content is structurally invalid.
    
    Raised when:
    - A manifest has no layers (or an index has no manifests)
    - A schemaVersion 1 manifest is received
    - A response body is not valid JSON
    """
    pass


class BadDigestError(RegistryError):
    """
    Content integrity validation failed.
    
    Raised when:
    - Content-MD5 does not match the body
    - Docker-Content-Digest does not match the streamed blob
    - Docker-Content-Digest does not match the requested digest
    - Body length does not match Content-Length
    """
    
    def __init__(self, message: str, expected: str | None = None, actual: str | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.expected = expected
        self.actual = actual


class TooManyRedirectsError(RegistryError):
    """Redirect chain exceeded the maximum number of hops."""
    pass


class UploadError(RegistryError):
    """
    Manifest or blob upload failed.
    
    The underlying failure is available as ``__cause__``.
    """
    pass


__all__ = [
    "RegistryError",
    "ParseError",
    "UnsupportedSchemeError",
    "RegistryHTTPError",
    "AuthenticationError",
    "UnauthorizedError",
    "NotFoundError",
    "InvalidContentError",
    "BadDigestError",
    "TooManyRedirectsError",
    "UploadError",
]

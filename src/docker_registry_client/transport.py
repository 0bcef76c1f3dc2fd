"""
HTTP transport for the registry client.

Wraps ``httpx.AsyncClient`` with the registry's conventions: an explicit set
of expected statuses per request, structured errors built from the response
body, and body decoding with Content-MD5, gzip and Content-Length checks.
Responses are always opened in streaming mode; whoever receives a
:class:`DockerResponse` must read it (``docker_body``/``docker_json``),
stream it (``docker_stream``) or close it.
"""
from __future__ import annotations

import base64
import gzip
import hashlib
import json
import logging
from typing import Any, AsyncIterable, AsyncIterator, Iterable, Optional, Union

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .errors import (
    BadDigestError,
    InvalidContentError,
    NotFoundError,
    RegistryHTTPError,
    UnauthorizedError,
)

logger = logging.getLogger(__name__)

__all__ = ["DockerJsonClient", "DockerResponse", "RequestContent"]

MAX_ERROR_BODY_LENGTH = 1024

IDEMPOTENT_METHODS = ("GET", "HEAD", "DELETE")

# Network failures worth another attempt
TRANSIENT_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout, httpx.ReadTimeout, httpx.RemoteProtocolError)

RequestContent = Union[bytes, AsyncIterable[bytes], Iterable[bytes]]


class DockerResponse:
    """
    A registry response with lazy, verified body access.

    The decoded body is cached after the first ``docker_body()`` call.
    """

    def __init__(self, response: httpx.Response, path: str):
        self._response = response
        self.path = path
        self._decoded_body: Optional[bytes] = None
        self._raw_body: Optional[bytes] = None
        self._raw_is_decoded = False

    @property
    def status_code(self) -> int:
        return self._response.status_code

    @property
    def headers(self) -> httpx.Headers:
        return self._response.headers

    @property
    def url(self) -> httpx.URL:
        return self._response.url

    @property
    def method(self) -> str:
        return self._response.request.method

    @property
    def raw(self) -> httpx.Response:
        """Underlying httpx response."""
        return self._response

    @property
    def is_closed(self) -> bool:
        return self._response.is_closed

    async def aclose(self) -> None:
        """Release the connection without reading the rest of the body."""
        await self._response.aclose()

    async def __aenter__(self) -> "DockerResponse":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def docker_body(self) -> bytes:
        """
        Read, verify and decode the whole body.

        Checks Content-MD5 (except for 206 responses) and Content-Length
        against the bytes on the wire, then gunzips a gzip-encoded body.
        HEAD responses are not checked. For a response httpx has already
        read, only identity-encoded bodies can be checked.

        Raises:
            BadDigestError: On Content-MD5 mismatch or a short/long body
            InvalidContentError: If a gzip body cannot be decoded
        """
        if self._decoded_body is not None:
            return self._decoded_body

        raw = await self._read_raw()

        content_encoding = self.headers.get("content-encoding", "").lower()
        if self._raw_is_decoded and content_encoding not in ("", "identity"):
            self._decoded_body = raw
            return raw

        content_md5 = self.headers.get("content-md5")
        if content_md5 and self.status_code != 206 and self._carries_body():
            digest = base64.b64encode(hashlib.md5(raw).digest()).decode("ascii")
            if content_md5 != digest:
                raise BadDigestError(
                    f"Content-MD5 ({content_md5} vs {digest})",
                    expected=content_md5,
                    actual=digest,
                )

        content_length = self.headers.get("content-length")
        if content_length is not None and self._carries_body():
            try:
                expected_length = int(content_length)
            except ValueError:
                expected_length = None
            if expected_length is not None and expected_length != len(raw):
                raise BadDigestError(
                    f"Incomplete content: Content-Length:{expected_length} but got {len(raw)} bytes",
                    expected=str(expected_length),
                    actual=str(len(raw)),
                )

        body = raw
        if content_encoding == "gzip":
            try:
                body = gzip.decompress(raw)
            except (OSError, EOFError) as e:
                raise InvalidContentError(f"could not gunzip response body: {e}") from None

        self._decoded_body = body
        return body

    async def docker_json(self) -> Any:
        """
        Parse the body as JSON.

        Returns:
            Parsed value, or None for an empty/all-whitespace body

        Raises:
            InvalidContentError: If the body is not valid JSON
        """
        body = await self.docker_body()
        text = body.decode("utf-8", errors="replace")
        if not text.strip():
            return None
        try:
            return json.loads(text)
        except ValueError as e:
            raise InvalidContentError(f"Invalid JSON in response: {e}") from None

    async def docker_stream(self) -> AsyncIterator[bytes]:
        """
        Stream the (content-decoded) body.

        The connection is released when the stream is exhausted, fails, or
        the consumer closes the generator early.
        """
        try:
            async for chunk in self._response.aiter_bytes():
                yield chunk
        finally:
            await self._response.aclose()

    async def docker_error(self, base_msg: str) -> RegistryHTTPError:
        """
        Build the error for an unexpected status.

        The server's ``{errors: [{code, message}]}`` (or ``{error: ...}`` or
        bare ``{code, message}``) body is unwrapped into the message when
        present, otherwise the text body is used.
        """
        message = ""
        rest_code = ""
        rest_text = ""

        if self.status_code >= 400:
            try:
                obj = await self.docker_json()
            except (InvalidContentError, BadDigestError):
                obj = None
            err_obj = _error_object(obj)
            if err_obj is not None:
                rest_code = str(err_obj.get("code") or "")
                rest_text = str(err_obj.get("message") or "")
                if rest_code and rest_text:
                    message = f"({rest_code}) {rest_text}"
                else:
                    message = rest_text or rest_code

        if not message:
            if self.headers.get("content-type", "").startswith("text/html"):
                message = "(HTML body)"
            else:
                try:
                    body = await self.docker_body()
                except (InvalidContentError, BadDigestError) as e:
                    body = f"failed to read error body: {e}".encode()
                message = body.decode("utf-8", errors="replace")[:MAX_ERROR_BODY_LENGTH]

        error_cls = RegistryHTTPError
        if self.status_code == 404:
            error_cls = NotFoundError
        elif self.status_code in (401, 403):
            error_cls = UnauthorizedError

        return error_cls(
            f"{base_msg}: {message}" if message else base_msg,
            response=self,
            rest_code=rest_code,
            rest_text=rest_text,
        )

    def _carries_body(self) -> bool:
        return self.method != "HEAD" and self.status_code not in (204, 304)

    async def _read_raw(self) -> bytes:
        if self._raw_body is not None:
            return self._raw_body
        if self._response.is_stream_consumed:
            # httpx reads responses built from in-memory content (MockTransport)
            # on construction; only the content-decoded bytes remain
            self._raw_body = self._response.content
            self._raw_is_decoded = True
            await self._response.aclose()
        else:
            try:
                self._raw_body = b"".join([chunk async for chunk in self._response.aiter_raw()])
            finally:
                await self._response.aclose()
        return self._raw_body


def _error_object(obj: Any) -> Optional[dict]:
    if not isinstance(obj, dict):
        return None
    if isinstance(obj.get("error"), dict):
        return obj["error"]
    errors = obj.get("errors")
    if isinstance(errors, list) and errors and isinstance(errors[0], dict):
        return errors[0]
    if obj.get("code") or obj.get("message"):
        return obj
    return None


class DockerJsonClient:
    """
    Request wrapper bound to one origin.

    Several instances can share one ``httpx.AsyncClient`` (and so one
    connection pool); each redirect hop to a new origin gets its own
    instance with fresh headers.
    """

    def __init__(
        self,
        url: str,
        http: httpx.AsyncClient,
        *,
        accept: str = "application/json",
        timeout_s: float = 30.0,
        retries: int = 0,
    ):
        """
        Args:
            url: Base URL, e.g. "https://registry-1.docker.io"
            http: Shared async HTTP client
            accept: Default Accept header ("" for none)
            timeout_s: Read/write/pool timeout in seconds
            retries: Extra attempts for transient network errors
        """
        self.url = url
        self.http = http
        self.accept = accept
        self.timeout_s = timeout_s
        self.retries = retries

    def build_url(self, path: str) -> httpx.URL:
        """Resolve ``path`` (relative or absolute) against the base URL."""
        return httpx.URL(self.url).join(path)

    async def request(
        self,
        method: str,
        path: str,
        *,
        headers: Optional[Union[httpx.Headers, dict]] = None,
        expect_status: Iterable[int] = (200,),
        follow_redirects: bool = False,
        retry: bool = True,
        connect_timeout_s: Optional[float] = None,
        content: Optional[RequestContent] = None,
    ) -> DockerResponse:
        """
        Send one request and check its status.

        Args:
            method: HTTP method
            path: Path relative to the base URL, or an absolute URL
            headers: Request headers (copied, never mutated)
            expect_status: Statuses that count as success
            follow_redirects: Let httpx follow redirects
            retry: Retry transient network errors (idempotent methods only)
            connect_timeout_s: Connect timeout override
            content: Request body

        Returns:
            DockerResponse, body not yet read

        Raises:
            RegistryHTTPError: (or NotFoundError/UnauthorizedError) for a
                status outside ``expect_status``
            httpx.TransportError: For network failures
        """
        request_headers = httpx.Headers(headers or {})
        if "accept" not in request_headers and self.accept:
            request_headers["accept"] = self.accept

        url = self.build_url(path)
        timeout = httpx.Timeout(self.timeout_s, connect=connect_timeout_s or self.timeout_s)
        request = self.http.build_request(method, url, headers=request_headers, content=content, timeout=timeout)

        raw = await self._send(request, follow_redirects=follow_redirects, retry=retry)
        resp = DockerResponse(raw, path)
        logger.debug(f"{method} {url} -> {raw.status_code}")

        expected = tuple(expect_status)
        if raw.status_code not in expected:
            base_msg = f"Received unexpected HTTP {raw.status_code} from {path}"
            try:
                err = await resp.docker_error(base_msg)
            except httpx.HTTPError as e:
                err = RegistryHTTPError(f"{base_msg} - and failed to read error body: {e}", response=resp)
            finally:
                await resp.aclose()
            raise err
        return resp

    async def get(self, path: str, **kwargs) -> DockerResponse:
        return await self.request("GET", path, **kwargs)

    async def _send(self, request: httpx.Request, *, follow_redirects: bool, retry: bool) -> httpx.Response:
        if not retry or self.retries <= 0 or request.method not in IDEMPOTENT_METHODS:
            return await self.http.send(request, stream=True, follow_redirects=follow_redirects)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.retries + 1),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
            before_sleep=before_sleep_log(logger, logging.DEBUG),
            reraise=True,
        )
        return await retrying(self.http.send, request, stream=True, follow_redirects=follow_redirects)

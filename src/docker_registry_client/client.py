"""
Docker Registry HTTP API v2 client.

One :class:`RegistryClient` targets one repository. Every operation logs in
as needed for its scope before issuing the real request.

<https://docs.docker.com/registry/spec/api/>
<https://github.com/opencontainers/distribution-spec/blob/main/spec.md>
"""
from __future__ import annotations

import dataclasses
import json
import logging
import re
from dataclasses import dataclass
from typing import AsyncIterator, List, Optional, Sequence, Union
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from .auth import (
    AuthInfo,
    Authenticator,
    BasicAuth,
    BearerAuth,
    NoAuth,
    make_auth_scope,
    response_error_message,
    set_auth_header,
)
from .digest import DigestInfo, parse_digest_header
from .errors import (
    BadDigestError,
    InvalidContentError,
    NotFoundError,
    RegistryError,
    TooManyRedirectsError,
    UploadError,
)
from .media_types import (
    MEDIATYPE_MANIFEST_LIST_V2,
    MEDIATYPE_MANIFEST_V2,
    MEDIATYPE_OCI_MANIFEST_INDEX_V1,
    MEDIATYPE_OCI_MANIFEST_V1,
    MEDIATYPE_OCTET_STREAM,
    manifest_media_type_for_schema,
)
from .models import Manifest, TagList, parse_manifest
from .reference import RepositoryRef, is_localhost, parse_repo, url_from_index
from .settings import DEFAULT_USER_AGENT, Settings
from .transport import DockerJsonClient, DockerResponse, RequestContent

logger = logging.getLogger(__name__)

__all__ = [
    "RegistryClient",
    "create_client",
    "ManifestResult",
    "PutManifestResult",
    "BlobUploadResult",
    "BlobReadResult",
    "BlobStream",
]

MAX_REDIRECTS = 3
REDIRECT_STATUSES = (302, 307)

_API_VERSION_SPLIT_RE = re.compile(r"[\s,]+")


@dataclass
class ManifestResult:
    """
    Result of ``get_manifest``.

    Attributes:
        response: Registry response (headers such as Docker-Content-Digest)
        manifest: Typed manifest
        body: Exact manifest bytes as served
    """
    response: DockerResponse
    manifest: Manifest
    body: bytes

    @property
    def digest(self) -> Optional[str]:
        """Docker-Content-Digest header; may be absent on some registries."""
        return self.response.headers.get("docker-content-digest")


@dataclass(frozen=True)
class PutManifestResult:
    digest: Optional[str]
    location: Optional[str]


@dataclass(frozen=True)
class BlobUploadResult:
    digest: Optional[str]
    location: Optional[str]


class BlobStream:
    """
    Async byte stream of one blob.

    Verifies the byte count against Content-Length and, when a digest is
    known, the content against it; both checks fire after the last chunk
    has been yielded. The connection is released on exhaustion, on error,
    and on ``aclose()`` (also called by ``async with``).
    """

    def __init__(self, response: DockerResponse, digest_info: Optional[DigestInfo] = None):
        self.response = response
        self.digest_info = digest_info
        self.bytes_read = 0
        self._iter = self._generate()

    @property
    def validated(self) -> bool:
        """True when the stream is checked against a Docker-Content-Digest."""
        return self.digest_info is not None

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self

    async def __anext__(self) -> bytes:
        return await self._iter.__anext__()

    async def aclose(self) -> None:
        try:
            await self._iter.aclose()
        finally:
            await self.response.aclose()

    async def __aenter__(self) -> "BlobStream":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def read(self) -> bytes:
        """Read the whole (verified) blob into memory."""
        return b"".join([chunk async for chunk in self])

    async def _generate(self) -> AsyncIterator[bytes]:
        chunks = self._counted(self.response.docker_stream())
        if self.digest_info is not None:
            chunks = self.digest_info.validate(chunks)
        async for chunk in chunks:
            yield chunk

    async def _counted(self, chunks: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
        async for chunk in chunks:
            self.bytes_read += len(chunk)
            yield chunk

        content_length = self.response.headers.get("content-length")
        if content_length is None or "content-encoding" in self.response.headers:
            return
        try:
            expected_length = int(content_length)
        except ValueError:
            return
        if expected_length != self.bytes_read:
            raise BadDigestError(
                f"Incomplete content: Content-Length:{content_length} but got {self.bytes_read} bytes",
                expected=content_length,
                actual=str(self.bytes_read),
            )


@dataclass
class BlobReadResult:
    """
    Result of ``create_blob_read_stream``.

    Attributes:
        responses: Every response in the redirect chain; the first carries
            Docker-Content-Digest, the last Content-Length
        stream: Blob content
    """
    responses: List[DockerResponse]
    stream: BlobStream


class RegistryClient:
    """
    Docker Registry API v2 client for a single repository.

    The credential obtained by the last login and the scope it was
    obtained for are cached on the instance; the repository reference is
    never replaced after construction.
    """

    version = 2

    def __init__(
        self,
        name: Optional[str] = None,
        repo: Optional[RepositoryRef] = None,
        *,
        username: Optional[str] = None,
        password: Optional[str] = None,
        token: Optional[str] = None,
        insecure: bool = False,
        scheme: Optional[str] = None,
        accept_manifest_lists: bool = False,
        accept_oci_manifests: bool = False,
        user_agent: str = DEFAULT_USER_AGENT,
        scopes: Optional[Sequence[str]] = None,
        timeout_s: float = 30.0,
        connect_timeout_s: float = 10.0,
        retries: int = 0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Create a client for one repository.

        Args:
            name: Repository reference string (mutually exclusive with repo)
            repo: Parsed repository reference; the client keeps its own copy
            username: Username for Basic auth and token requests
            password: Password for Basic auth and token requests
            token: Pre-obtained Bearer token
            insecure: Do not verify TLS certificates
            scheme: Force "http" or "https"; localhost defaults to http
            accept_manifest_lists: Accept manifest lists by default
            accept_oci_manifests: Accept OCI manifests by default
            user_agent: User-Agent header value
            scopes: Actions for the default repository scope (["pull"])
            timeout_s: HTTP timeout in seconds
            connect_timeout_s: Connect timeout for ping
            retries: Retries for transient network errors
            transport: httpx transport override (tests, proxies)
        """
        if repo is not None:
            self.repo = dataclasses.replace(repo, index=dataclasses.replace(repo.index))
        elif name:
            self.repo = parse_repo(name)
        else:
            raise ValueError("name or repo required")

        if scheme:
            self.repo = dataclasses.replace(self.repo, index=dataclasses.replace(self.repo.index, scheme=scheme))
        elif not self.repo.index.scheme and is_localhost(self.repo.index.name):
            # Per docker.git:registry/config.go#NewServiceConfig localhost may
            # use plain HTTP; no https-then-http fallback is attempted.
            self.repo = dataclasses.replace(self.repo, index=dataclasses.replace(self.repo.index, scheme="http"))

        self.insecure = insecure
        self.accept_manifest_lists = accept_manifest_lists
        self.accept_oci_manifests = accept_oci_manifests
        self.username = username
        self.password = password
        self.scopes = list(scopes) if scopes else ["pull"]
        self.user_agent = user_agent
        self.timeout_s = timeout_s
        self.connect_timeout_s = connect_timeout_s
        self.retries = retries

        self._headers = httpx.Headers()
        if token:
            set_auth_header(self._headers, BearerAuth(token=token))
        elif username or password:
            set_auth_header(self._headers, BasicAuth(username=username or "", password=password or ""))
        else:
            set_auth_header(self._headers, NoAuth())

        self._url = url_from_index(self.repo.index)
        self._http = httpx.AsyncClient(
            transport=transport,
            verify=not insecure,
            follow_redirects=False,
            timeout=httpx.Timeout(timeout_s, connect=connect_timeout_s),
            headers={"User-Agent": user_agent},
        )
        self._auth = Authenticator(
            ping=self.ping,
            http=self._http,
            headers=self._headers,
            username=username,
            password=password,
            insecure=insecure,
            timeout_s=timeout_s,
            retries=retries,
        )
        logger.debug(f"RegistryClient for {self.repo.canonical_name} at {self._url}")

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "RegistryClient":
        """Build a client from Settings; keyword arguments override."""
        options = dict(
            username=settings.username,
            password=settings.password,
            token=settings.token,
            insecure=settings.insecure,
            scheme=settings.scheme,
            accept_manifest_lists=settings.accept_manifest_lists,
            accept_oci_manifests=settings.accept_oci_manifests,
            user_agent=settings.user_agent,
            scopes=list(settings.scopes),
            timeout_s=settings.http_timeout_s,
            connect_timeout_s=settings.connect_timeout_s,
            retries=settings.http_retry,
        )
        options.update(kwargs)
        return cls(name=settings.repository, **options)

    @property
    def url(self) -> str:
        """Base URL of the registry."""
        return self._url

    @property
    def logged_in(self) -> bool:
        return self._auth.logged_in

    @property
    def logged_in_scope(self) -> Optional[str]:
        return self._auth.logged_in_scope

    @property
    def auth_info(self) -> Optional[AuthInfo]:
        return self._auth.auth_info

    @property
    def headers(self) -> httpx.Headers:
        """Default headers (Authorization) sent with registry requests."""
        return self._headers

    def _api(self) -> DockerJsonClient:
        return DockerJsonClient(self._url, self._http, timeout_s=self.timeout_s, retries=self.retries)

    def _repo_path(self, suffix: str) -> str:
        return f"/v2/{quote(self.repo.remote_name, safe='/')}/{suffix}"

    def _scope(self, actions: Sequence[str]) -> str:
        return make_auth_scope("repository", self.repo.remote_name, actions)

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._http.aclose()

    async def __aenter__(self) -> "RegistryClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def ping(
        self,
        headers: Optional[httpx.Headers] = None,
        expect_status: Sequence[int] = (200, 401, 404),
    ) -> DockerResponse:
        """
        Ping the base URL (``GET /v2/``) without logging in.

        Use ``status_code`` to infer information:
            404  This registry URL does not support the v2 API.
            401  Authentication is required (or failed). The
                 WWW-Authenticate header names the auth method; the
                 response can be passed to ``login()``.
            200  No authentication needed (or the given headers worked).

        No retry and a short connect timeout: ping must fail fast.
        """
        resp = await self._api().request(
            "GET",
            "/v2/",
            headers=headers,
            expect_status=expect_status,
            retry=False,
            connect_timeout_s=self.connect_timeout_s,
        )
        await resp.docker_body()
        return resp

    async def login(self, scope: Optional[str] = None, ping_res: Optional[DockerResponse] = None) -> AuthInfo:
        """
        Log in to the registry for ``scope``.

        Most methods call this themselves; ``ping`` intentionally does not.
        A repeated call with the same scope is a no-op.

        Args:
            scope: Token scope (defaults to the repository with the
                configured actions, e.g. "repository:library/alpine:pull")
            ping_res: Earlier ``ping()`` response to save a round trip

        Returns:
            The credential now in use
        """
        scope = scope or self._scope(self.scopes)
        return await self._auth.ensure_logged_in(scope, ping_res=ping_res)

    async def perform_login(self, scope: str = "", ping_res: Optional[DockerResponse] = None) -> AuthInfo:
        """Run the login sequence once without caching the result."""
        return await self._auth.perform_login(scope=scope, ping_res=ping_res)

    async def supports_v2(self) -> bool:
        """
        Determine if this registry supports the v2 API.

        A 401 counts as support; auth is deferred to later calls.
        <https://docs.docker.com/registry/spec/api/#api-version-check>
        """
        try:
            res = await self.ping()
        except RegistryError as e:
            # status or body checks failed; transport errors propagate
            logger.debug(f"Ping failed, assuming no v2 support: {e}")
            return False

        header = res.headers.get("docker-distribution-api-version")
        if header:
            # Space- or comma-separated; the latter when the header repeats
            versions = _API_VERSION_SPLIT_RE.split(header)
            if "registry/2.0" in versions:
                return True
        return res.status_code in (200, 401)

    async def list_tags(self) -> TagList:
        """
        List the repository's tags.

        Only the first page is returned when the registry paginates.
        """
        await self.login()
        resp = await self._api().request(
            "GET",
            self._repo_path("tags/list"),
            headers=self._headers,
            follow_redirects=True,
        )
        body = await resp.docker_json()
        try:
            return TagList.model_validate(body)
        except ValidationError as e:
            raise InvalidContentError(f"invalid tag list for {self.repo.local_name}: {e}") from None

    def _manifest_accept(self, accept_manifest_lists: bool, accept_oci_manifests: bool) -> str:
        accept = [MEDIATYPE_MANIFEST_V2]
        if accept_manifest_lists:
            accept.append(MEDIATYPE_MANIFEST_LIST_V2)
        if accept_oci_manifests:
            accept.append(MEDIATYPE_OCI_MANIFEST_V1)
            if accept_manifest_lists:
                accept.append(MEDIATYPE_OCI_MANIFEST_INDEX_V1)
        return ", ".join(accept)

    async def get_manifest(
        self,
        ref: Optional[str] = None,
        *,
        accept_manifest_lists: Optional[bool] = None,
        accept_oci_manifests: Optional[bool] = None,
        follow_redirects: bool = True,
    ) -> ManifestResult:
        """
        Get an image manifest. ``ref`` is a tag or a digest.

        Use ``result.digest`` for the Docker-Content-Digest header; it can
        be missing, in which case ``digest_from_manifest_str(result.body)``
        computes it.

        Args:
            ref: Tag or digest (defaults to the repository's own ref)
            accept_manifest_lists: Override the client default
            accept_oci_manifests: Override the client default
            follow_redirects: Follow redirects on the manifest request

        Raises:
            NotFoundError: Unknown tag/digest, or 401 after login (the
                registry does not distinguish missing from unauthorized)
            InvalidContentError: schemaVersion 1, or no layers/manifests
        """
        ref = ref or self.repo.ref
        if accept_manifest_lists is None:
            accept_manifest_lists = self.accept_manifest_lists
        if accept_oci_manifests is None:
            accept_oci_manifests = self.accept_oci_manifests

        await self.login()
        headers = httpx.Headers(self._headers)
        headers["accept"] = self._manifest_accept(accept_manifest_lists, accept_oci_manifests)

        resp = await self._api().request(
            "GET",
            self._repo_path(f"manifests/{quote(ref, safe=':@')}"),
            headers=headers,
            follow_redirects=follow_redirects,
            expect_status=(200, 401),
        )
        if resp.status_code == 401:
            err_msg = await response_error_message(resp)
            raise NotFoundError(
                f"Manifest {json.dumps(ref)} Not Found: {err_msg}",
                response=resp,
                rest_text=err_msg or "",
            )

        body = await resp.docker_body()
        manifest_obj = await resp.docker_json()
        manifest = parse_manifest(
            manifest_obj,
            resp.headers.get("content-type"),
            context=f"{self.repo.local_name}:{ref}",
        )
        return ManifestResult(response=resp, manifest=manifest, body=body)

    async def delete_manifest(self, ref: str) -> DockerResponse:
        """Delete a manifest by tag or digest."""
        await self.login()
        resp = await self._api().request(
            "DELETE",
            self._repo_path(f"manifests/{quote(ref, safe=':@')}"),
            headers=self._headers,
            expect_status=(200, 202),
        )
        # GCR answers with { errors: [] }
        await resp.docker_body()
        return resp

    async def put_manifest(
        self,
        manifest_data: Union[bytes, str],
        ref: str,
        *,
        media_type: Optional[str] = None,
        schema_version: Optional[int] = None,
    ) -> PutManifestResult:
        """
        Upload a manifest. ``ref`` is a tag or a digest.

        The Content-Type is ``media_type``, else the docker type for
        ``schema_version``, else the document's own ``mediaType``, else the
        Schema 2 manifest type.

        Raises:
            UploadError: Any failure of the request, with the cause chained
        """
        data = manifest_data.encode("utf-8") if isinstance(manifest_data, str) else manifest_data
        if not media_type:
            if schema_version is not None:
                media_type = manifest_media_type_for_schema(schema_version)
            else:
                media_type = _embedded_media_type(data) or MEDIATYPE_MANIFEST_V2

        await self.login(scope=self._scope(["pull", "push"]))
        headers = set_auth_header(httpx.Headers({"content-type": media_type}), self._auth.auth_info)

        try:
            resp = await self._api().request(
                "PUT",
                self._repo_path(f"manifests/{quote(ref, safe='')}"),
                headers=headers,
                content=data,
                expect_status=(201,),
            )
            await resp.docker_body()
        except (RegistryError, httpx.HTTPError) as cause:
            raise UploadError("Manifest upload failed.") from cause

        return PutManifestResult(
            digest=resp.headers.get("docker-content-digest"),
            location=resp.headers.get("location"),
        )

    async def _make_http_request(
        self,
        method: str,
        path: str,
        headers: Optional[httpx.Headers] = None,
        *,
        follow_redirects: bool = True,
        max_redirects: int = MAX_REDIRECTS,
    ) -> List[DockerResponse]:
        """
        Request ``path``, following 302/307 redirects by hand.

        Each hop goes to the new origin with fresh headers: the registry's
        Authorization is never sent to a redirect target. Redirect bodies
        are drained before the next hop.

        Returns:
            Every response in order; the last one's body is unread

        Raises:
            TooManyRedirectsError: More than ``max_redirects`` requests needed
        """
        client = DockerJsonClient(self._url, self._http, accept="", timeout_s=self.timeout_s, retries=self.retries)
        req_path = path
        req_headers = headers
        responses: List[DockerResponse] = []

        num_redirs = 0
        while num_redirs < max_redirects:
            num_redirs += 1

            resp = await client.request(
                method,
                req_path,
                headers=req_headers,
                follow_redirects=False,
                expect_status=(200,) + REDIRECT_STATUSES,
            )
            responses.append(resp)

            if not follow_redirects or resp.status_code not in REDIRECT_STATUSES:
                return responses

            location = resp.headers.get("location")
            if not location:
                return responses

            loc = client.build_url(req_path).join(location)
            logger.debug(f"Redirect {num_redirs} for {method} {path} -> {loc.scheme}://{loc.host}{loc.path}")
            client = DockerJsonClient(
                f"{loc.scheme}://{loc.netloc.decode('ascii')}",
                self._http,
                accept="",
                timeout_s=self.timeout_s,
                retries=self.retries,
            )
            req_path = str(loc)
            req_headers = httpx.Headers()

            # consume the redirect's body since no one else will
            await resp.docker_body()

        raise TooManyRedirectsError(f"maximum number of redirects ({max_redirects}) hit")

    async def _head_or_get_blob(self, method: str, digest: str) -> List[DockerResponse]:
        await self.login()
        return await self._make_http_request(
            method,
            self._repo_path(f"blobs/{quote(digest, safe=':')}"),
            headers=httpx.Headers(self._headers),
        )

    async def head_blob(self, digest: str) -> List[DockerResponse]:
        """
        Get a blob's headers, following redirects.

        Interesting headers:
        - ``responses[0].headers["docker-content-digest"]``: digest of the content
        - ``responses[-1].headers["content-length"]``: bytes to download

        Returns:
            Every response in the redirect chain
        """
        responses = await self._head_or_get_blob("HEAD", digest)
        # HEAD bodies carry nothing, but release the connection
        await responses[-1].docker_body()
        return responses

    async def create_blob_read_stream(self, digest: str) -> BlobReadResult:
        """
        Open a byte stream of the given blob.

        When the first response carries Docker-Content-Digest, it must equal
        ``digest`` and the stream is verified against it; without the
        header the content is returned unverified.

        Example:
            result = await client.create_blob_read_stream(digest)
            async with result.stream as stream:
                async for chunk in stream:
                    out.write(chunk)

        Raises:
            BadDigestError: Header digest differs from ``digest`` (before
                any byte is read), or, from the stream at its end, content
                digest or length mismatch
        """
        responses = await self._head_or_get_blob("GET", digest)
        last = responses[-1]

        digest_info: Optional[DigestInfo] = None
        dcd_header = responses[0].headers.get("docker-content-digest")
        try:
            if dcd_header:
                digest_info = parse_digest_header(dcd_header)
                if digest_info.raw != digest:
                    raise BadDigestError(
                        f"Docker-Content-Digest header, {digest_info.raw}, does not match given digest, {digest}",
                        expected=digest,
                        actual=digest_info.raw,
                    )
            else:
                logger.debug(f"No Docker-Content-Digest for blob {digest}; stream is not verified")
        except BaseException:
            await last.aclose()
            raise

        return BlobReadResult(responses=responses, stream=BlobStream(last, digest_info))

    async def blob_upload(
        self,
        digest: str,
        stream: RequestContent,
        content_length: int,
        content_type: Optional[str] = None,
    ) -> BlobUploadResult:
        """
        Upload a blob in a single request (POST, then PUT).

        <https://github.com/opencontainers/distribution-spec/blob/main/spec.md#post-then-put>

        Args:
            digest: Digest of the content ("sha256:...")
            stream: Content as bytes or an (async) iterable of bytes
            content_length: Exact byte length of the content
            content_type: Content-Type (application/octet-stream)

        Raises:
            UploadError: Either request failed, or no upload location
        """
        await self.login(scope=self._scope(["pull", "push"]))
        api = self._api()

        try:
            session = await api.request(
                "POST",
                self._repo_path("blobs/uploads/"),
                headers=set_auth_header(httpx.Headers(), self._auth.auth_info),
                expect_status=(202,),
            )
            await session.docker_body()
        except (RegistryError, httpx.HTTPError) as cause:
            raise UploadError("Blob upload rejected.") from cause

        upload_url = session.headers.get("location")
        if not upload_url:
            raise UploadError("No registry upload location header returned", response=session)

        destination = api.build_url(self._repo_path("blobs/uploads/")).join(upload_url)
        destination = destination.copy_add_param("digest", digest)

        headers = set_auth_header(
            httpx.Headers({
                "content-length": str(content_length),
                "content-type": content_type or MEDIATYPE_OCTET_STREAM,
            }),
            self._auth.auth_info,
        )
        try:
            resp = await api.request(
                "PUT",
                str(destination),
                headers=headers,
                content=stream,
                expect_status=(201,),
            )
            await resp.docker_body()
        except (RegistryError, httpx.HTTPError) as cause:
            raise UploadError("Blob upload failed.") from cause

        return BlobUploadResult(
            digest=resp.headers.get("docker-content-digest"),
            location=resp.headers.get("location"),
        )


def _embedded_media_type(data: bytes) -> Optional[str]:
    try:
        obj = json.loads(data)
    except ValueError:
        return None
    media_type = obj.get("mediaType") if isinstance(obj, dict) else None
    return media_type if isinstance(media_type, str) else None


def create_client(name: Optional[str] = None, repo: Optional[RepositoryRef] = None, **kwargs) -> RegistryClient:
    """Create a RegistryClient; see RegistryClient for options."""
    return RegistryClient(name=name, repo=repo, **kwargs)

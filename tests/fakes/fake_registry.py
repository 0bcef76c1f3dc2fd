"""
In-memory fake registry for testing.

Serves the Docker Registry v2 API, a token service and an object store
through ``httpx.MockTransport`` so that RegistryClient can be exercised
end-to-end without a network. Every request is recorded for assertions.

Hosts:
    registry.test   the registry (/v2/...)
    auth.test       bearer token endpoint (/token)
    objects.test    blob storage that blob GETs are redirected to
"""
from __future__ import annotations

import base64
import hashlib
import json
import re
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import httpx

REGISTRY_HOST = "registry.test"
AUTH_HOST = "auth.test"
OBJECTS_HOST = "objects.test"

MANIFEST_V2 = "application/vnd.docker.distribution.manifest.v2+json"
MANIFEST_LIST_V2 = "application/vnd.docker.distribution.manifest.list.v2+json"
OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
OCI_INDEX = "application/vnd.oci.image.index.v1+json"

_TAGS_RE = re.compile(r"^/v2/(?P<name>.+)/tags/list$")
_MANIFEST_RE = re.compile(r"^/v2/(?P<name>.+)/manifests/(?P<ref>[^/]+)$")
_UPLOAD_RE = re.compile(r"^/v2/(?P<name>.+)/blobs/uploads/(?P<session>[^/]*)$")
_BLOB_RE = re.compile(r"^/v2/(?P<name>.+)/blobs/(?P<digest>[^/]+)$")


def sha256_digest(data: bytes) -> str:
    return "sha256:" + hashlib.sha256(data).hexdigest()


def make_manifest(layers: List[bytes], config: bytes = b"{}", media_type: str = MANIFEST_V2) -> dict:
    """Schema 2 (or OCI) image manifest document for the given blobs."""
    layer_type = (
        "application/vnd.oci.image.layer.v1.tar+gzip"
        if media_type == OCI_MANIFEST
        else "application/vnd.docker.image.rootfs.diff.tar.gzip"
    )
    return {
        "schemaVersion": 2,
        "mediaType": media_type,
        "config": {
            "mediaType": "application/vnd.docker.container.image.v1+json",
            "size": len(config),
            "digest": sha256_digest(config),
        },
        "layers": [
            {"mediaType": layer_type, "size": len(layer), "digest": sha256_digest(layer)}
            for layer in layers
        ],
    }


def _error(status: int, code: str, message: str, headers: Optional[dict] = None) -> httpx.Response:
    return httpx.Response(
        status,
        json={"errors": [{"code": code, "message": message, "detail": None}]},
        headers=headers,
    )


@dataclass
class _Repo:
    manifests: Dict[str, Tuple[str, bytes]] = field(default_factory=dict)
    tags: List[str] = field(default_factory=list)
    blobs: Dict[str, bytes] = field(default_factory=dict)


class FakeRegistry:
    """
    Fake registry with configurable auth.

    Args:
        auth: None (anonymous), "basic" or "bearer"
        username: Accepted username (basic auth and token endpoint)
        password: Accepted password
        redirect_blobs: Redirect blob GET/HEAD to the object store
        scheme: Scheme used in generated absolute URLs
    """

    def __init__(
        self,
        auth: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        redirect_blobs: bool = True,
        scheme: str = "https",
    ):
        self.auth = auth
        self.username = username
        self.password = password
        self.redirect_blobs = redirect_blobs
        self.scheme = scheme

        self.repos: Dict[str, _Repo] = {}
        self.requests: List[httpx.Request] = []
        self.token_requests: List[httpx.Request] = []
        self.object_requests: List[httpx.Request] = []
        self.tokens: Dict[str, List[str]] = {}

        # Knobs for failure injection
        self.corrupt_blobs = False
        self.truncate_blobs = False
        self.blob_digest_header: Optional[str] = None
        self.omit_blob_digest_header = False
        self.redirect_loop = False
        self.token_response: Optional[dict] = None
        self.challenge_override: Optional[str] = None
        self.api_version_header: Optional[str] = "registry/2.0"
        self.upload_location: Optional[str] = "relative"
        # Object store sends Content-MD5 (as Azure Blob Storage does)
        self.blob_content_md5 = False

    # -- seeding ---------------------------------------------------------

    def add_blob(self, name: str, data: bytes) -> str:
        digest = sha256_digest(data)
        self._repo(name).blobs[digest] = data
        return digest

    def add_manifest(self, name: str, tag: Optional[str], manifest: dict, media_type: Optional[str] = None) -> str:
        """Store a manifest under its digest (and tag). Returns the digest."""
        body = json.dumps(manifest, indent=3).encode()
        return self.add_raw_manifest(name, tag, body, media_type or manifest.get("mediaType", MANIFEST_V2))

    def add_raw_manifest(self, name: str, tag: Optional[str], body: bytes, media_type: str) -> str:
        repo = self._repo(name)
        digest = sha256_digest(body)
        repo.manifests[digest] = (media_type, body)
        if tag:
            repo.manifests[tag] = (media_type, body)
            if tag not in repo.tags:
                repo.tags.append(tag)
        return digest

    def add_image(self, name: str, tag: str, layers: List[bytes], media_type: str = MANIFEST_V2) -> str:
        config = json.dumps({"architecture": "amd64", "os": "linux"}).encode()
        self.add_blob(name, config)
        for layer in layers:
            self.add_blob(name, layer)
        return self.add_manifest(name, tag, make_manifest(layers, config, media_type))

    def _repo(self, name: str) -> _Repo:
        return self.repos.setdefault(name, _Repo())

    # -- transport -------------------------------------------------------

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    @property
    def registry_requests(self) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.host == REGISTRY_HOST]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host = request.url.host
        if host == AUTH_HOST:
            self.token_requests.append(request)
            return self._token(request)
        if host == OBJECTS_HOST:
            self.object_requests.append(request)
            return self._object(request)
        if host == REGISTRY_HOST:
            return self._registry(request)
        return httpx.Response(502, text=f"unknown host {host}")

    # -- token service ---------------------------------------------------

    def _check_basic(self, request: httpx.Request) -> bool:
        header = request.headers.get("authorization", "")
        if not header.startswith("Basic "):
            return False
        user, _, password = base64.b64decode(header[6:]).decode().partition(":")
        return user == self.username and password == self.password

    def _token(self, request: httpx.Request) -> httpx.Response:
        if self.username is not None and not self._check_basic(request):
            return httpx.Response(401, json={"details": "incorrect username or password"})
        if self.token_response is not None:
            return httpx.Response(200, json=self.token_response)

        token = f"token-{len(self.tokens) + 1}"
        self.tokens[token] = request.url.params.get_list("scope")
        return httpx.Response(200, json={"token": token, "access_token": token, "expires_in": 300})

    # -- object store ----------------------------------------------------

    def _object(self, request: httpx.Request) -> httpx.Response:
        if self.redirect_loop:
            return httpx.Response(302, headers={"location": f"https://{OBJECTS_HOST}/loop/{uuid.uuid4().hex}"})

        hex_digest = request.url.path.rsplit("/", 1)[-1]
        digest = f"sha256:{hex_digest}"
        for repo in self.repos.values():
            if digest in repo.blobs:
                return self._blob_response(request, repo.blobs[digest], first_hop=False)
        return httpx.Response(404, text="NoSuchKey")

    # -- registry --------------------------------------------------------

    def _challenge(self) -> str:
        if self.challenge_override is not None:
            return self.challenge_override
        if self.auth == "basic":
            return 'Basic realm="fake registry"'
        return f'Bearer realm="https://{AUTH_HOST}/token",service="{REGISTRY_HOST}"'

    def _unauthorized(self) -> httpx.Response:
        headers = {"www-authenticate": self._challenge()}
        if self.api_version_header:
            headers["docker-distribution-api-version"] = self.api_version_header
        return _error(401, "UNAUTHORIZED", "authentication required", headers)

    def _authorized(self, request: httpx.Request, name: Optional[str], action: str) -> bool:
        if self.auth is None:
            return True
        header = request.headers.get("authorization", "")
        if self.auth == "basic":
            return self._check_basic(request)
        if not header.startswith("Bearer "):
            return False
        scopes = self.tokens.get(header[7:])
        if scopes is None:
            return False
        if name is None:
            return True
        for scope in scopes:
            resource, _, rest = scope.partition(":")
            scope_name, _, actions = rest.rpartition(":")
            if resource == "repository" and scope_name == name and action in actions.split(","):
                return True
        return False

    def _registry(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/v2/":
            if not self._authorized(request, None, "pull"):
                return self._unauthorized()
            headers = {}
            if self.api_version_header:
                headers["docker-distribution-api-version"] = self.api_version_header
            return httpx.Response(200, json={}, headers=headers)

        for regex, route in (
            (_TAGS_RE, self._tags),
            (_MANIFEST_RE, self._manifest),
            (_UPLOAD_RE, self._upload),
            (_BLOB_RE, self._blob),
        ):
            match = regex.match(path)
            if match:
                name = match.group("name")
                action = "pull" if request.method in ("GET", "HEAD", "DELETE") else "push"
                if not self._authorized(request, name, action):
                    return self._unauthorized()
                return route(request, **match.groupdict())
        return _error(404, "NOT_FOUND", "route not found")

    def _tags(self, request: httpx.Request, name: str) -> httpx.Response:
        repo = self.repos.get(name)
        if repo is None:
            return _error(404, "NAME_UNKNOWN", "repository name not known to registry")
        return httpx.Response(200, json={"name": name, "tags": list(repo.tags) or None})

    def _manifest(self, request: httpx.Request, name: str, ref: str) -> httpx.Response:
        repo = self._repo(name)
        if request.method == "PUT":
            digest = self.add_raw_manifest(
                name,
                None if ref.startswith("sha256:") else ref,
                request.content,
                request.headers.get("content-type", ""),
            )
            return httpx.Response(
                201,
                headers={"location": f"/v2/{name}/manifests/{digest}", "docker-content-digest": digest},
            )
        if request.method == "DELETE":
            if ref not in repo.manifests:
                return _error(404, "MANIFEST_UNKNOWN", "manifest unknown")
            del repo.manifests[ref]
            return httpx.Response(202)

        if ref not in repo.manifests:
            return _error(404, "MANIFEST_UNKNOWN", "manifest unknown")
        media_type, body = repo.manifests[ref]
        accept = request.headers.get("accept", "")
        if media_type not in accept:
            return _error(404, "MANIFEST_UNKNOWN", f"manifest type {media_type} not accepted")

        headers = {"content-type": media_type, "docker-content-digest": sha256_digest(body)}
        if request.method == "HEAD":
            headers["content-length"] = str(len(body))
            return httpx.Response(200, headers=headers)
        return httpx.Response(200, content=body, headers=headers)

    def _blob(self, request: httpx.Request, name: str, digest: str) -> httpx.Response:
        repo = self._repo(name)
        if digest not in repo.blobs:
            return _error(404, "BLOB_UNKNOWN", "blob unknown to registry")

        if self.redirect_blobs:
            headers = {
                "location": f"https://{OBJECTS_HOST}/blobs/{digest.split(':', 1)[1]}?sig=abc",
                "content-type": "application/octet-stream",
            }
            self._add_digest_header(headers, digest)
            return httpx.Response(307, headers=headers, content=b"<a href>Temporary Redirect</a>")
        return self._blob_response(request, repo.blobs[digest], first_hop=True)

    def _blob_response(self, request: httpx.Request, data: bytes, first_hop: bool) -> httpx.Response:
        digest = sha256_digest(data)
        headers = {"content-type": "application/octet-stream"}
        if first_hop:
            self._add_digest_header(headers, digest)
        if self.blob_content_md5:
            headers["content-md5"] = base64.b64encode(hashlib.md5(data).digest()).decode("ascii")

        body = data
        if self.corrupt_blobs:
            body = bytes(b ^ 0xFF for b in data)
        if request.method == "HEAD":
            headers["content-length"] = str(len(data))
            return httpx.Response(200, headers=headers)
        if self.truncate_blobs:
            headers["content-length"] = str(len(body))
            return httpx.Response(200, headers=headers, stream=_Stream(body[: len(body) // 2]))
        return httpx.Response(200, headers=headers, content=body)

    def _add_digest_header(self, headers: dict, digest: str) -> None:
        if self.omit_blob_digest_header:
            return
        headers["docker-content-digest"] = self.blob_digest_header or digest

    def _upload(self, request: httpx.Request, name: str, session: str) -> httpx.Response:
        if request.method == "POST":
            headers = {"docker-upload-uuid": "u1"}
            session_id = uuid.uuid4().hex
            if self.upload_location == "relative":
                headers["location"] = f"/v2/{name}/blobs/uploads/{session_id}?_state=abc"
            elif self.upload_location == "absolute":
                headers["location"] = f"{self.scheme}://{REGISTRY_HOST}/v2/{name}/blobs/uploads/{session_id}?_state=abc"
            return httpx.Response(202, headers=headers)

        if request.method == "PUT":
            digest = request.url.params.get("digest")
            data = request.content
            if sha256_digest(data) != digest:
                return _error(400, "DIGEST_INVALID", "provided digest did not match uploaded content")
            self._repo(name).blobs[digest] = data
            return httpx.Response(
                201,
                headers={"location": f"/v2/{name}/blobs/{digest}", "docker-content-digest": digest},
            )
        return _error(405, "UNSUPPORTED", "method not allowed")


class _Stream(httpx.AsyncByteStream):
    """Body that declares more bytes than it delivers."""

    def __init__(self, data: bytes):
        self.data = data

    async def __aiter__(self):
        yield self.data

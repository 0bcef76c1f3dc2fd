"""
Async client for the Docker Registry HTTP API v2 / OCI Distribution API.

Typical use:

    async with RegistryClient("alpine:3.18") as client:
        result = await client.get_manifest()
        for layer in result.manifest.layers:
            blob = await client.create_blob_read_stream(layer.digest)
            async with blob.stream as stream:
                async for chunk in stream:
                    ...
"""
from .auth import AuthInfo, AuthState, BasicAuth, BearerAuth, NoAuth, make_auth_scope
from .client import (
    BlobReadResult,
    BlobStream,
    BlobUploadResult,
    ManifestResult,
    PutManifestResult,
    RegistryClient,
    create_client,
)
from .digest import DigestInfo, digest_from_manifest_str, parse_digest_header
from .errors import (
    AuthenticationError,
    BadDigestError,
    InvalidContentError,
    NotFoundError,
    ParseError,
    RegistryError,
    RegistryHTTPError,
    TooManyRedirectsError,
    UnauthorizedError,
    UnsupportedSchemeError,
    UploadError,
)
from .models import (
    Descriptor,
    Manifest,
    ManifestOCI,
    ManifestOCIIndex,
    ManifestV2,
    ManifestV2List,
    Platform,
    TagList,
    parse_manifest,
)
from .reference import RegistryIndex, RepositoryRef, parse_index, parse_repo, url_from_index
from .settings import Settings, create_settings_from_env
from .www_authenticate import AuthChallenge, parse_www_authenticate

__version__ = "0.1.0"

__all__ = [
    "RegistryClient",
    "create_client",
    "ManifestResult",
    "PutManifestResult",
    "BlobUploadResult",
    "BlobReadResult",
    "BlobStream",
    "AuthInfo",
    "AuthState",
    "NoAuth",
    "BasicAuth",
    "BearerAuth",
    "make_auth_scope",
    "DigestInfo",
    "parse_digest_header",
    "digest_from_manifest_str",
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
    "Platform",
    "Descriptor",
    "ManifestV2",
    "ManifestV2List",
    "ManifestOCI",
    "ManifestOCIIndex",
    "Manifest",
    "TagList",
    "parse_manifest",
    "RegistryIndex",
    "RepositoryRef",
    "parse_index",
    "parse_repo",
    "url_from_index",
    "Settings",
    "create_settings_from_env",
    "AuthChallenge",
    "parse_www_authenticate",
]

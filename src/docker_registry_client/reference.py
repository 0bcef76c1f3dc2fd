"""
Repository reference parsing.

Turns user strings such as ``alpine``, ``quay.io/coreos/etcd:v2.0.0`` or
``localhost:5000/foo/bar@sha256:...`` into a registry index plus repository
components.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

__all__ = [
    "DEFAULT_INDEX_NAME",
    "DEFAULT_TAG",
    "DEFAULT_V2_REGISTRY",
    "RegistryIndex",
    "RepositoryRef",
    "parse_index",
    "parse_repo",
    "url_from_index",
    "is_localhost",
]

DEFAULT_INDEX_NAME = "docker.io"
DEFAULT_TAG = "latest"
# https://github.com/docker/docker/blob/77da5d8/registry/config_unix.go#L10
DEFAULT_V2_REGISTRY = "https://registry-1.docker.io"

_OFFICIAL_INDEX_NAMES = ("docker.io", "index.docker.io", "registry-1.docker.io")
_SCHEME_RE = re.compile(r"^(https?)://(.*)$")
_COMPONENT_RE = re.compile(r"^[a-z0-9]+(?:(?:[._]|__|[-]*)[a-z0-9]+)*$")
_TAG_RE = re.compile(r"^[\w][\w.-]{0,127}$")
_DIGEST_RE = re.compile(r"^[a-z0-9]+(?:[.+_-][a-z0-9]+)*:[a-zA-Z0-9=_-]+$")


@dataclass(frozen=True)
class RegistryIndex:
    """
    Registry host a repository lives on.

    Attributes:
        name: Hostname with optional port ("docker.io", "localhost:5000")
        scheme: "https" or "http", None when not given explicitly
        official: True for the public Docker Hub index
    """
    name: str
    scheme: Optional[str] = None
    official: bool = False


@dataclass(frozen=True)
class RepositoryRef:
    """
    A parsed repository reference.

    Attributes:
        index: Registry index
        remote_name: Repository name on the registry ("library/alpine")
        local_name: Short name as a user would type it ("alpine")
        canonical_name: Fully qualified name ("docker.io/library/alpine")
        tag: Tag, if any
        digest: Content digest, if any
    """
    index: RegistryIndex
    remote_name: str
    local_name: str
    canonical_name: str
    tag: Optional[str] = None
    digest: Optional[str] = None

    @property
    def official(self) -> bool:
        return self.index.official

    @property
    def ref(self) -> str:
        """Digest if present, otherwise tag (defaulting to "latest")."""
        return self.digest or self.tag or DEFAULT_TAG


def is_localhost(host: str) -> bool:
    """True for ``localhost``/``127.0.0.1`` with or without a port."""
    hostname = host.rsplit(":", 1)[0] if host.count(":") == 1 else host
    return hostname in ("localhost", "127.0.0.1", "[::1]")


def parse_index(arg: Optional[str] = None) -> RegistryIndex:
    """
    Parse a registry index name.

    Args:
        arg: Index such as "quay.io", "https://myreg:5000" or None for
            the default Docker Hub index

    Returns:
        RegistryIndex

    Raises:
        ValueError: If the index name is invalid
    """
    if not arg:
        return RegistryIndex(name=DEFAULT_INDEX_NAME, official=True)

    scheme: Optional[str] = None
    name = arg
    match = _SCHEME_RE.match(arg)
    if match:
        scheme, name = match.group(1), match.group(2)
    elif "://" in arg:
        raise ValueError(f"invalid index scheme, must be http or https: {arg}")

    name = name.rstrip("/")
    if not name:
        raise ValueError(f"invalid index, empty host: {arg}")
    if "/" in name:
        raise ValueError(f"invalid index, may not contain '/': {arg}")

    official = name in _OFFICIAL_INDEX_NAMES
    if official:
        name = DEFAULT_INDEX_NAME
    return RegistryIndex(name=name, scheme=scheme, official=official)


def parse_repo(arg: str, default_index: Optional[str] = None) -> RepositoryRef:
    """
    Parse a repository reference string.

    Args:
        arg: Reference like "alpine", "library/alpine:3.18",
            "quay.io/coreos/etcd@sha256:..." or "localhost:5000/foo/bar"
        default_index: Index used when ``arg`` does not name one

    Returns:
        RepositoryRef; the tag defaults to "latest" when neither a tag
        nor a digest is given

    Raises:
        ValueError: If ``arg`` is empty or any component is invalid

    Examples:
        >>> parse_repo("alpine").canonical_name
        'docker.io/library/alpine'
        >>> parse_repo("quay.io/coreos/etcd:v2.0.0").remote_name
        'coreos/etcd'
    """
    if not arg:
        raise ValueError("repository name cannot be empty")

    rest = arg
    scheme: Optional[str] = None
    match = _SCHEME_RE.match(rest)
    if match:
        scheme, rest = match.group(1), match.group(2)
    elif "://" in rest:
        raise ValueError(f"invalid repository scheme, must be http or https: {arg}")

    # Index is the first component when it looks like a host
    first, slash, remainder = rest.partition("/")
    if slash and ("." in first or ":" in first or first == "localhost"):
        index = parse_index(f"{scheme}://{first}" if scheme else first)
        rest = remainder
    elif scheme:
        raise ValueError(f"scheme given but no registry host in: {arg}")
    else:
        index = parse_index(default_index)

    digest: Optional[str] = None
    if "@" in rest:
        rest, digest = rest.split("@", 1)
        if not _DIGEST_RE.match(digest):
            raise ValueError(f"invalid digest {digest!r} in: {arg}")

    tag: Optional[str] = None
    last_slash = rest.rfind("/")
    colon = rest.rfind(":")
    if colon > last_slash:
        rest, tag = rest[:colon], rest[colon + 1:]
        if not _TAG_RE.match(tag):
            raise ValueError(f"invalid tag {tag!r} in: {arg}")

    if not rest:
        raise ValueError(f"repository name cannot be empty: {arg}")
    for component in rest.split("/"):
        if not _COMPONENT_RE.match(component):
            raise ValueError(
                f"invalid repository name component {component!r} in {arg!r}: "
                "must match [a-z0-9]+(?:[._-][a-z0-9]+)*"
            )

    if index.official and "/" not in rest:
        remote_name = f"library/{rest}"
    else:
        remote_name = rest

    if index.official:
        local_name = remote_name[len("library/"):] if remote_name.startswith("library/") else remote_name
    else:
        local_name = f"{index.name}/{remote_name}"

    if tag is None and digest is None:
        tag = DEFAULT_TAG

    return RepositoryRef(
        index=index,
        remote_name=remote_name,
        local_name=local_name,
        canonical_name=f"{index.name}/{remote_name}",
        tag=tag,
        digest=digest,
    )


def url_from_index(index: RegistryIndex, scheme: Optional[str] = None) -> str:
    """
    Base URL for an index.

    The official Docker Hub index is served from ``registry-1.docker.io``.
    """
    if index.official:
        return DEFAULT_V2_REGISTRY
    return f"{scheme or index.scheme or 'https'}://{index.name}"

"""
Settings and configuration for the registry client.

Centralizes configuration values and provides validation with fail-fast behavior.
Loads settings from environment variables on request.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional, Tuple

__all__ = ["Settings", "create_settings_from_env", "DEFAULT_USER_AGENT"]

DEFAULT_USER_AGENT = "docker-registry-client/0.1.0"

_VALID_ACTIONS = ("pull", "push", "delete", "*")


@dataclass(frozen=True)
class Settings:
    """
    Configuration settings for a RegistryClient.

    Target:
        repository: Repository reference, e.g. "quay.io/coreos/etcd" (required)
        scheme: Force "http" or "https" for the registry
        insecure: Skip TLS verification (and default token realms to http)

    Credentials:
        username: Username for Basic auth / token requests
        password: Password for Basic auth / token requests
        token: Pre-obtained Bearer token

    Behavior:
        accept_manifest_lists: Accept manifest lists (and OCI indexes)
        accept_oci_manifests: Accept OCI manifests
        user_agent: User-Agent header value
        scopes: Actions requested for the repository scope
        http_timeout_s: HTTP read/write timeout in seconds
        connect_timeout_s: Connect timeout for ping in seconds
        http_retry: Retries for transient network errors (0=no retry)
    """
    repository: str
    scheme: Optional[str] = None
    insecure: bool = False

    username: Optional[str] = None
    password: Optional[str] = None
    token: Optional[str] = None

    accept_manifest_lists: bool = False
    accept_oci_manifests: bool = False
    user_agent: str = DEFAULT_USER_AGENT
    scopes: Tuple[str, ...] = ("pull",)
    http_timeout_s: float = 30.0
    connect_timeout_s: float = 10.0
    http_retry: int = 0

    def __post_init__(self):
        """Validate settings on construction."""
        if not self.repository:
            raise ValueError("repository is required")

        if self.scheme is not None and self.scheme not in ("http", "https"):
            raise ValueError(f"scheme must be 'http' or 'https', got {self.scheme!r}")

        if not self.scopes:
            raise ValueError("scopes must name at least one action")
        for action in self.scopes:
            if action not in _VALID_ACTIONS:
                raise ValueError(f"Invalid scope action {action!r}. Expected one of: {', '.join(_VALID_ACTIONS)}")

        # Validate timeouts are positive
        if self.http_timeout_s <= 0:
            raise ValueError(f"http_timeout_s must be positive, got {self.http_timeout_s}")

        if self.connect_timeout_s <= 0:
            raise ValueError(f"connect_timeout_s must be positive, got {self.connect_timeout_s}")

        # Validate retry count is non-negative
        if self.http_retry < 0:
            raise ValueError(f"http_retry must be non-negative, got {self.http_retry}")

        if self.password and not self.username:
            raise ValueError("password specified but username is missing")


def create_settings_from_env() -> Settings:
    """
    Load settings from environment variables.

    Environment Variables:
        - DOCKER_REGISTRY_REPOSITORY (required)
        - DOCKER_REGISTRY_SCHEME (optional)
        - DOCKER_REGISTRY_INSECURE (default: false)
        - DOCKER_REGISTRY_USERNAME (optional)
        - DOCKER_REGISTRY_PASSWORD (optional)
        - DOCKER_REGISTRY_TOKEN (optional)
        - DOCKER_REGISTRY_ACCEPT_MANIFEST_LISTS (default: false)
        - DOCKER_REGISTRY_ACCEPT_OCI_MANIFESTS (default: false)
        - DOCKER_REGISTRY_USER_AGENT (default: docker-registry-client/<version>)
        - DOCKER_REGISTRY_SCOPES (default: pull, comma separated)
        - DOCKER_REGISTRY_HTTP_TIMEOUT (default: 30.0)
        - DOCKER_REGISTRY_CONNECT_TIMEOUT (default: 10.0)
        - DOCKER_REGISTRY_HTTP_RETRY (default: 0)

    Returns:
        Settings object with validated configuration

    Raises:
        ValueError: If configuration is invalid or required values missing

    Note:
        Creates a fresh Settings instance every time (no caching).
    """
    def str_to_bool(value: str) -> bool:
        return value.lower() in ('true', '1', 'yes', 'on')

    def get_float(key: str, default: float) -> float:
        value = os.getenv(key)
        return float(value) if value else default

    def get_int(key: str, default: int) -> int:
        value = os.getenv(key)
        return int(value) if value else default

    repository = os.getenv("DOCKER_REGISTRY_REPOSITORY")
    if not repository:
        raise ValueError("DOCKER_REGISTRY_REPOSITORY environment variable is required")

    scopes_env = os.getenv("DOCKER_REGISTRY_SCOPES")
    scopes = tuple(s.strip() for s in scopes_env.split(",") if s.strip()) if scopes_env else ("pull",)

    return Settings(
        repository=repository,
        scheme=os.getenv("DOCKER_REGISTRY_SCHEME") or None,
        insecure=str_to_bool(os.getenv("DOCKER_REGISTRY_INSECURE", "false")),
        username=os.getenv("DOCKER_REGISTRY_USERNAME") or None,
        password=os.getenv("DOCKER_REGISTRY_PASSWORD") or None,
        token=os.getenv("DOCKER_REGISTRY_TOKEN") or None,
        accept_manifest_lists=str_to_bool(os.getenv("DOCKER_REGISTRY_ACCEPT_MANIFEST_LISTS", "false")),
        accept_oci_manifests=str_to_bool(os.getenv("DOCKER_REGISTRY_ACCEPT_OCI_MANIFESTS", "false")),
        user_agent=os.getenv("DOCKER_REGISTRY_USER_AGENT") or DEFAULT_USER_AGENT,
        scopes=scopes,
        http_timeout_s=get_float("DOCKER_REGISTRY_HTTP_TIMEOUT", 30.0),
        connect_timeout_s=get_float("DOCKER_REGISTRY_CONNECT_TIMEOUT", 10.0),
        http_retry=get_int("DOCKER_REGISTRY_HTTP_RETRY", 0),
    )

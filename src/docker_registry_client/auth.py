"""
Registry authentication.

Implements the Docker Registry v2 login sequence (ping, challenge, credential
exchange) and caches the resulting credential against the scope it was
obtained for. Mirrors docker.git:registry/auth.go#loginV2.
"""
from __future__ import annotations

import base64
import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Union

import httpx

from .errors import AuthenticationError, InvalidContentError, ParseError, UnsupportedSchemeError
from .transport import DockerJsonClient, DockerResponse
from .www_authenticate import parse_www_authenticate

logger = logging.getLogger(__name__)

__all__ = [
    "NoAuth",
    "BasicAuth",
    "BearerAuth",
    "AuthInfo",
    "AuthState",
    "Authenticator",
    "set_auth_header",
    "make_auth_scope",
    "registry_error_message",
]

MAX_REGISTRY_ERROR_LENGTH = 10000

_URL_SCHEME_RE = re.compile(r"^(\w+)://")


@dataclass(frozen=True)
class NoAuth:
    """Registry requires no authentication."""
    type: str = "None"


@dataclass(frozen=True)
class BasicAuth:
    """HTTP Basic credentials, sent as-is on each request."""
    username: str
    password: str
    type: str = "Basic"

    def __repr__(self) -> str:
        return f"BasicAuth(username={self.username!r}, password='***')"


@dataclass(frozen=True)
class BearerAuth:
    """Token obtained from the registry's authorization service."""
    token: str
    type: str = "Bearer"

    def __repr__(self) -> str:
        return "BearerAuth(token='***')"


AuthInfo = Union[NoAuth, BasicAuth, BearerAuth]


class AuthState(str, Enum):
    """Login state of an Authenticator."""
    UNAUTHENTICATED = "unauthenticated"
    PENDING_CHALLENGE = "pending_challenge"
    AUTHENTICATED = "authenticated"


def set_auth_header(headers: httpx.Headers, auth_info: Optional[AuthInfo]) -> httpx.Headers:
    """
    Set (or remove) the Authorization header for ``auth_info``.

    - Bearer: ``Bearer <token>``
    - Basic: ``Basic base64(user:pass)``
    - None or NoAuth: header removed

    Returns:
        The same headers object
    """
    if isinstance(auth_info, BearerAuth):
        headers["authorization"] = f"Bearer {auth_info.token}"
    elif isinstance(auth_info, BasicAuth):
        credentials = f"{auth_info.username or ''}:{auth_info.password or ''}"
        headers["authorization"] = "Basic " + base64.b64encode(credentials.encode("utf-8")).decode("ascii")
    elif "authorization" in headers:
        del headers["authorization"]
    return headers


def make_auth_scope(resource: str, name: str, actions: Sequence[str]) -> str:
    """
    Scope string for a token request.

    Example:
        >>> make_auth_scope("repository", "library/nginx", ["pull"])
        'repository:library/nginx:pull'
    """
    return f"{resource}:{name}:{','.join(actions)}"


def registry_error_message(body: Any) -> Optional[str]:
    """
    Pull a human-readable message out of a registry error body.

    Handles, in order:
    - a JSON string (parsed first; returned verbatim if it is not JSON)
    - ``{"errors": [{"code": ..., "message": ...}, ...]}`` (messages joined)
    - ``{"details": "..."}`` (Docker Hub token service)
    - ``{"message": "..."}``

    Returns:
        The message, or None when the body has no recognizable shape
    """
    obj = body
    if isinstance(obj, bytes):
        obj = obj.decode("utf-8", errors="replace")
    if isinstance(obj, str):
        if not obj.strip():
            return None
        if len(obj) > MAX_REGISTRY_ERROR_LENGTH:
            return obj[:MAX_REGISTRY_ERROR_LENGTH]
        try:
            obj = json.loads(obj)
        except ValueError:
            return obj

    if not isinstance(obj, dict):
        return None

    errors = obj.get("errors")
    if isinstance(errors, list) and errors:
        messages = [str(e.get("message")) for e in errors if isinstance(e, dict) and e.get("message")]
        if messages:
            return ", ".join(messages)
    if obj.get("details"):
        return str(obj["details"])
    if obj.get("message"):
        return str(obj["message"])
    return None


async def response_error_message(resp: DockerResponse) -> Optional[str]:
    """``registry_error_message`` over a response body that may not be JSON."""
    try:
        return registry_error_message(await resp.docker_json())
    except InvalidContentError:
        return registry_error_message(await resp.docker_body())


PingFn = Callable[..., Awaitable[DockerResponse]]


class Authenticator:
    """
    Login state machine for one registry client.

    States: UNAUTHENTICATED -> PENDING_CHALLENGE -> AUTHENTICATED. The
    credential is cached against the exact scope string it was obtained
    for; a call with another scope logs in again. Concurrent logins are
    not serialized: whichever finishes last wins, and any credential for
    the same scope is interchangeable.
    """

    def __init__(
        self,
        *,
        ping: PingFn,
        http: httpx.AsyncClient,
        headers: httpx.Headers,
        username: Optional[str] = None,
        password: Optional[str] = None,
        insecure: bool = False,
        timeout_s: float = 30.0,
        retries: int = 0,
    ):
        """
        Args:
            ping: Coroutine issuing ``GET /v2/`` without credentials
            http: Shared HTTP client used for token requests
            headers: Default header set whose Authorization is kept current
            username: Username for Basic auth and token requests
            password: Password for Basic auth and token requests
            insecure: Default token realms without a scheme to http
            timeout_s: Token request timeout
            retries: Transient-error retries for token requests
        """
        self._ping = ping
        self._http = http
        self.headers = headers
        self.username = username
        self.password = password
        self.insecure = insecure
        self.timeout_s = timeout_s
        self.retries = retries

        self.state = AuthState.UNAUTHENTICATED
        self.auth_info: Optional[AuthInfo] = None
        self.logged_in_scope: Optional[str] = None

    @property
    def logged_in(self) -> bool:
        return self.auth_info is not None

    async def ensure_logged_in(self, scope: str, ping_res: Optional[DockerResponse] = None) -> AuthInfo:
        """
        Log in unless already authenticated for exactly ``scope``.

        On success the cached credential, the logged-in scope and the
        Authorization default header are updated together. A failed login
        leaves the previous credential in place.
        """
        if self.auth_info is not None and self.logged_in_scope == scope:
            logger.debug(f"Already logged in for scope {scope!r}")
            return self.auth_info

        previous_state = self.state
        self.state = AuthState.PENDING_CHALLENGE
        try:
            auth_info = await self.perform_login(scope=scope, ping_res=ping_res)
        except BaseException:
            self.state = previous_state
            raise

        self.auth_info = auth_info
        self.logged_in_scope = scope
        self.state = AuthState.AUTHENTICATED
        set_auth_header(self.headers, auth_info)
        logger.debug(f"Logged in for scope {scope!r} using {auth_info.type} auth")
        return auth_info

    async def perform_login(self, scope: str = "", ping_res: Optional[DockerResponse] = None) -> AuthInfo:
        """
        Run the login sequence once, without touching the cache.

        Args:
            scope: Scope for a Bearer token ("" for a plain login)
            ping_res: Earlier ``GET /v2/`` response to reuse

        Returns:
            NoAuth, BasicAuth or BearerAuth

        Raises:
            RegistryHTTPError: Ping answered 401 without WWW-Authenticate
            ParseError: Malformed challenge
            UnsupportedSchemeError: Challenge scheme is not Basic/Bearer
            AuthenticationError: Token endpoint rejected the credentials
        """
        res = ping_res
        if res is None or "www-authenticate" not in res.headers:
            res = await self._ping(expect_status=(200, 401))
            if res.status_code == 200:
                logger.debug("Registry requires no authentication")
                return NoAuth()

        chal_header = res.headers.get("www-authenticate")
        if not chal_header:
            raise await res.docker_error(
                'missing WWW-Authenticate header from "GET /v2/" (see '
                'https://docs.docker.com/registry/spec/api/#api-version-check)'
            )

        challenge = parse_www_authenticate(chal_header)
        scheme = challenge.scheme.lower()
        logger.debug(f"Registry auth challenge scheme: {challenge.scheme}")

        if scheme == "basic":
            return BasicAuth(username=self.username or "", password=self.password or "")
        if scheme == "bearer":
            realm = challenge.get("realm")
            if not realm:
                raise ParseError(f'WWW-Authenticate Bearer challenge has no realm: "{chal_header}"')
            token = await self.get_token(
                realm=realm,
                service=challenge.get("service"),
                scopes=[scope] if scope else [],
            )
            return BearerAuth(token=token)

        raise UnsupportedSchemeError(f'unsupported auth scheme: "{challenge.scheme}"')

    async def get_token(self, realm: str, service: Optional[str] = None, scopes: Optional[List[str]] = None) -> str:
        """
        Exchange credentials for a Bearer token.

        ``GET {realm}?service=..&scope=..(&scope=..)*&account=..`` with Basic
        auth when a username is configured. See docker/docker.git:registry/token.go.

        Raises:
            ParseError: Realm uses a scheme other than http/https
            AuthenticationError: Endpoint answered 401, or 200 without a token
        """
        token_url = realm
        match = _URL_SCHEME_RE.match(token_url)
        if not match:
            token_url = f"{'http' if self.insecure else 'https'}://{token_url}"
        elif match.group(1) not in ("http", "https"):
            raise ParseError(f'unsupported scheme for WWW-Authenticate realm "{realm}": "{match.group(1)}"')

        params: List[tuple] = []
        if service:
            params.append(("service", service))
        for scope in scopes or []:
            # intentionally singular 'scope', repeated
            params.append(("scope", scope))

        headers = httpx.Headers()
        if self.username:
            params.append(("account", self.username))
            set_auth_header(headers, BasicAuth(username=self.username, password=self.password or ""))

        url = httpx.URL(token_url)
        if params:
            url = url.copy_merge_params(httpx.QueryParams(params))
        origin = f"{url.scheme}://{url.netloc.decode('ascii')}"
        logger.debug(f"Requesting token from {origin}{url.path} (service={service}, scopes={scopes})")

        client = DockerJsonClient(origin, self._http, timeout_s=self.timeout_s, retries=self.retries)
        resp = await client.request("GET", str(url), headers=headers, expect_status=(200, 401))

        if resp.status_code == 401:
            err_msg = await response_error_message(resp)
            raise AuthenticationError(
                f"Registry auth failed: {err_msg or 'unauthorized'}",
                response=resp,
                rest_text=err_msg or "",
            )

        body = await resp.docker_json()
        token = body.get("token") if isinstance(body, dict) else None
        if not isinstance(token, str):
            raise AuthenticationError(
                "authorization server did not include a token in the response",
                response=resp,
            )
        return token

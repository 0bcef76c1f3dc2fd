"""
WWW-Authenticate header parsing.

Parses a challenge like::

    Bearer realm="https://auth.docker.io/token",service="registry.docker.io"
    Basic realm="registry456.example.com"

into an :class:`AuthChallenge`. Only the first challenge of a header is
understood; a header offering several alternatives is not decomposed.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .errors import ParseError

__all__ = ["AuthChallenge", "parse_www_authenticate", "parse_authentication_info"]

_SCHEME_RE = re.compile(r"^\s*(\w+)(?:\s+(.*))?$", re.DOTALL)
_SEPARATORS_RE = re.compile(r'([",=])')

# Tokenizer states
_KEY = 0
_EQUALS = 1
_VALUE = 2
_QUOTED = 3
_END_QUOTE = 8
_COMMA = 9


@dataclass(frozen=True)
class AuthChallenge:
    """
    One parsed authentication challenge.

    Attributes:
        scheme: Auth scheme as sent by the server ("Bearer", "Basic", ...)
        params: Challenge parameters in header order
    """
    scheme: str
    params: Dict[str, str] = field(default_factory=dict)

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.params.get(name, default)


def _parse_params(value: str) -> Dict[str, str]:
    """
    Parse ``k1="v1",k2=v2`` into an ordered dict.

    A doubled quote inside a quoted value is unescaped to one literal quote.

    Raises:
        ValueError: With a description of the first unexpected token
    """
    params: Dict[str, str] = {}
    key = ""
    buf = ""
    state = _KEY

    tokens: List[str] = _SEPARATORS_RE.split(value)
    for tok in tokens:
        if not tok:
            continue
        # Whitespace between tokens is insignificant outside quotes
        if state != _QUOTED and not tok.strip():
            continue

        if state == _KEY:
            if tok in (",", "=", '"'):
                raise ValueError(f"Parameter name expected, got {tok!r}")
            key = tok.strip()
            state = _EQUALS
        elif state == _EQUALS:
            if tok != "=":
                raise ValueError(f"Equal sign was expected after {key}")
            state = _VALUE
        elif state == _VALUE:
            if tok == '"':
                buf = ""
                state = _QUOTED
            elif tok in (",", "="):
                raise ValueError(f"Value expected after {key}=")
            else:
                buf = tok.strip()
                params[key] = buf
                state = _COMMA
        elif state == _QUOTED:
            if tok == '"':
                state = _END_QUOTE
            else:
                buf += tok
        elif state == _END_QUOTE:
            if tok == '"':
                # "" inside a quoted string
                buf += '"'
                state = _QUOTED
            elif tok == ",":
                params[key] = buf
                state = _KEY
                key = ""
            else:
                raise ValueError(f'Unexpected token ({tok}) after {buf}"')
        elif state == _COMMA:
            if tok != ",":
                raise ValueError(f"Comma expected after {buf}")
            state = _KEY
            key = ""

    if state == _END_QUOTE:
        params[key] = buf
        return params
    if state == _COMMA:
        return params
    if state == _KEY and not params:
        return params
    if state == _KEY:
        raise ValueError("Dangling comma at end of www-authenticate value.")
    raise ValueError("Unexpected end of www-authenticate value.")


def parse_www_authenticate(header: str) -> AuthChallenge:
    """
    Parse a ``WWW-Authenticate`` header value.

    Args:
        header: Raw header value

    Returns:
        AuthChallenge with scheme and parameters

    Raises:
        ParseError: If the header is malformed (missing ``=``, missing or
            dangling comma, unterminated quote). No partial parameters are
            returned in that case.
    """
    match = _SCHEME_RE.match(header or "")
    if not match:
        raise ParseError(f'could not parse WWW-Authenticate header "{header}": no auth scheme')

    scheme, rest = match.group(1), match.group(2) or ""
    try:
        params = _parse_params(rest)
    except ValueError as e:
        raise ParseError(f'could not parse WWW-Authenticate header "{header}": {e}') from None

    return AuthChallenge(scheme=scheme, params=params)


def parse_authentication_info(value: str) -> AuthChallenge:
    """Parse an ``Authentication-Info`` header (parameters only, Digest scheme)."""
    try:
        params = _parse_params(value or "")
    except ValueError as e:
        raise ParseError(f'could not parse Authentication-Info header "{value}": {e}') from None
    return AuthChallenge(scheme="Digest", params=params)

"""
Content digest helpers.

Parses ``Docker-Content-Digest`` header values and verifies streamed content
against them without buffering the whole payload.
"""
from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from typing import AsyncIterable, AsyncIterator, Union

from .errors import BadDigestError, InvalidContentError, ParseError

__all__ = [
    "SUPPORTED_ALGORITHMS",
    "DigestInfo",
    "parse_digest_header",
    "digest_from_manifest_str",
    "hash_bytes",
]

SUPPORTED_ALGORITHMS = ("sha256",)


@dataclass(frozen=True)
class DigestInfo:
    """
    Parsed ``<algorithm>:<hex>`` digest.

    Attributes:
        raw: Header value as received
        algorithm: Hash algorithm name (only "sha256")
        expected_digest: Expected lowercase hex digest
    """
    raw: str
    algorithm: str
    expected_digest: str

    def start_hash(self):
        """Return a fresh hash accumulator for this digest's algorithm."""
        if self.algorithm == "sha256":
            return hashlib.sha256()
        raise BadDigestError(f"Unsupported hash algorithm {self.algorithm}")

    async def validate(self, chunks: AsyncIterable[bytes]) -> AsyncIterator[bytes]:
        """
        Forward every chunk unchanged while hashing it.

        The comparison happens once the source is exhausted, so every byte
        has already been handed downstream when a mismatch is reported.

        Raises:
            BadDigestError: At end of stream if the computed digest differs
        """
        hash_obj = self.start_hash()
        async for chunk in chunks:
            hash_obj.update(chunk)
            yield chunk

        actual = hash_obj.hexdigest()
        if actual != self.expected_digest:
            raise BadDigestError(
                f"Docker-Content-Digest ({self.expected_digest} vs {actual})",
                expected=self.expected_digest,
                actual=actual,
            )


def parse_digest_header(value: str) -> DigestInfo:
    """
    Parse a ``Docker-Content-Digest`` header value.

    Args:
        value: Header value, e.g. "sha256:887f7ecfd0bda3..."

    Returns:
        DigestInfo for the value

    Raises:
        ParseError: If the value is missing, has no colon, or names an
            unsupported algorithm
    """
    if not value:
        raise ParseError('missing "Docker-Content-Digest" header')

    err_pre = f'could not parse Docker-Content-Digest header "{value}": '
    algorithm, sep, expected = value.partition(":")
    if not sep:
        raise ParseError(err_pre + json.dumps(value))
    if algorithm not in SUPPORTED_ALGORITHMS:
        raise ParseError(err_pre + f"Unsupported hash algorithm {json.dumps(algorithm)}")

    return DigestInfo(raw=value, algorithm=algorithm, expected_digest=expected)


def hash_bytes(data: bytes) -> str:
    """Return the registry digest (``sha256:<hex>``) of ``data``."""
    return "sha256:" + hashlib.sha256(data).hexdigest()


def digest_from_manifest_str(manifest_str: Union[str, bytes]) -> str:
    """
    Calculate the ``Docker-Content-Digest`` for a serialized manifest.

    The digest covers the exact bytes given; the text is parsed only to
    reject formats that cannot be digested this way.

    Raises:
        InvalidContentError: If the text is not JSON or is a schemaVersion 1
            manifest (signed manifests need signature-aware digesting)
    """
    raw = manifest_str.encode("utf-8") if isinstance(manifest_str, str) else manifest_str

    try:
        manifest = json.loads(raw)
    except ValueError as e:
        raise InvalidContentError(f"could not parse manifest: {e}") from None

    if isinstance(manifest, dict) and manifest.get("schemaVersion") == 1:
        raise InvalidContentError("schemaVersion 1 manifests are not supported")

    return hash_bytes(raw)

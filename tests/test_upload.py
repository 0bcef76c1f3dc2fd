"""
Tests for monolithic blob upload (POST then PUT).
"""
from __future__ import annotations

import httpx
import pytest

from docker_registry_client.client import RegistryClient
from docker_registry_client.errors import RegistryHTTPError, UploadError
from tests.fakes.fake_registry import REGISTRY_HOST, FakeRegistry, sha256_digest

REPO = "team/app"
DATA = b"\x00\x01layer bytes" * 512


def _client(fake: FakeRegistry, **kwargs) -> RegistryClient:
    return RegistryClient(f"{REGISTRY_HOST}/{REPO}", transport=fake.transport(), **kwargs)


async def _chunked(data: bytes, size: int = 1000):
    for i in range(0, len(data), size):
        yield data[i:i + size]


class TestBlobUpload:
    """Test blob uploads against the fake registry."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("location", ["relative", "absolute"])
    async def test_upload_bytes(self, location):
        """Test an upload with relative and absolute Location headers."""
        fake = FakeRegistry()
        fake.upload_location = location
        digest = sha256_digest(DATA)

        async with _client(fake) as client:
            result = await client.blob_upload(digest, DATA, len(DATA))

        assert result.digest == digest
        assert result.location == f"/v2/{REPO}/blobs/{digest}"
        assert fake.repos[REPO].blobs[digest] == DATA

        put = fake.registry_requests[-1]
        assert put.method == "PUT"
        assert put.url.params.get("digest") == digest
        assert put.url.params.get("_state") == "abc"
        assert put.headers["content-length"] == str(len(DATA))
        assert put.headers["content-type"] == "application/octet-stream"

    @pytest.mark.asyncio
    async def test_upload_async_stream(self, registry):
        """Test uploading from an async iterator."""
        digest = sha256_digest(DATA)

        async with _client(registry) as client:
            await client.blob_upload(digest, _chunked(DATA), len(DATA), content_type="application/x-tar")

        assert registry.repos[REPO].blobs[digest] == DATA
        assert registry.registry_requests[-1].headers["content-type"] == "application/x-tar"

    @pytest.mark.asyncio
    async def test_upload_requests_push_scope(self, bearer_registry):
        """Test that uploads log in for pull,push."""
        digest = sha256_digest(DATA)

        async with _client(bearer_registry, username="alice", password="s3cret") as client:
            await client.blob_upload(digest, DATA, len(DATA))

        assert bearer_registry.token_requests[-1].url.params.get("scope") == f"repository:{REPO}:pull,push"
        upload_requests = [r for r in bearer_registry.registry_requests if "/blobs/uploads/" in r.url.path]
        assert [r.method for r in upload_requests] == ["POST", "PUT"]
        assert all(r.headers["authorization"].startswith("Bearer ") for r in upload_requests)

    @pytest.mark.asyncio
    async def test_digest_mismatch_fails(self, registry):
        """Test that a rejected PUT is wrapped in UploadError."""
        async with _client(registry) as client:
            with pytest.raises(UploadError, match="Blob upload failed") as exc_info:
                await client.blob_upload(sha256_digest(b"other"), DATA, len(DATA))

        assert isinstance(exc_info.value.__cause__, RegistryHTTPError)
        assert exc_info.value.__cause__.rest_code == "DIGEST_INVALID"

    @pytest.mark.asyncio
    async def test_missing_location(self, registry):
        """Test that an upload session without Location fails."""
        registry.upload_location = None

        async with _client(registry) as client:
            with pytest.raises(UploadError, match="No registry upload location"):
                await client.blob_upload(sha256_digest(DATA), DATA, len(DATA))

    @pytest.mark.asyncio
    async def test_post_rejected(self):
        """Test that a refused upload session is wrapped in UploadError."""
        def handler(request):
            if request.method == "POST":
                return httpx.Response(403, json={"errors": [{"code": "DENIED", "message": "denied"}]})
            return httpx.Response(200)

        async with RegistryClient(f"{REGISTRY_HOST}/{REPO}", transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(UploadError, match="Blob upload rejected"):
                await client.blob_upload(sha256_digest(DATA), DATA, len(DATA))

    @pytest.mark.asyncio
    async def test_transport_error_wrapped(self):
        """Test that network failures during upload are wrapped."""
        def handler(request):
            if request.method == "PUT":
                raise httpx.ConnectError("reset", request=request)
            if request.method == "POST":
                return httpx.Response(202, headers={"location": f"/v2/{REPO}/blobs/uploads/1"})
            return httpx.Response(200)

        async with RegistryClient(f"{REGISTRY_HOST}/{REPO}", transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(UploadError) as exc_info:
                await client.blob_upload(sha256_digest(DATA), DATA, len(DATA))

        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)

"""Root pytest configuration for docker-registry-client tests."""
import os

import pytest

from .fakes.fake_registry import REGISTRY_HOST, FakeRegistry

# Import fixtures to make them available
from .fixtures.oci_registry import oci_registry  # noqa: F401


# Configure pytest markers
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: mark test as integration test (requires Docker)"
    )
    config.addinivalue_line(
        "markers",
        "network: mark test as requiring access to public registries"
    )


def pytest_collection_modifyitems(config, items):
    """Skip network tests unless DOCKER_REGISTRY_NETWORK_TESTS=1."""
    if os.getenv("DOCKER_REGISTRY_NETWORK_TESTS") == "1":
        return
    skip_network = pytest.mark.skip(reason="set DOCKER_REGISTRY_NETWORK_TESTS=1 to run")
    for item in items:
        if "network" in item.keywords:
            item.add_marker(skip_network)


# Keep the developer's environment out of settings tests
@pytest.fixture(autouse=True)
def test_env(monkeypatch):
    """Clear DOCKER_REGISTRY_* variables for every test."""
    for key in list(os.environ):
        if key.startswith("DOCKER_REGISTRY_") and key != "DOCKER_REGISTRY_NETWORK_TESTS":
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def registry():
    """Anonymous fake registry."""
    return FakeRegistry()


@pytest.fixture
def bearer_registry():
    """Fake registry with a token service requiring credentials."""
    return FakeRegistry(auth="bearer", username="alice", password="s3cret")


@pytest.fixture
def repo_name():
    """Repository reference on the fake registry."""
    return f"{REGISTRY_HOST}/library/alpine:latest"

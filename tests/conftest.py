"""Pytest configuration and fixtures for the test suite."""

import pytest

from raindrop_sync.utils.state_manager import IdentityStore
from raindrop_sync.utils.sync import RaindropSync, SyncConfig
from tests.fixtures import FakeRaindrop, FakeVault


@pytest.fixture
def sync_config(tmp_path):
    """Configuration writing everything under the test's temp dir."""
    return SyncConfig(
        vault_path=str(tmp_path / "vault"),
        api_token="test-token",
        sync_state_path=str(tmp_path / "sync_state.json"),
        lock_file_path=str(tmp_path / "raindrop-sync.lock"),
        import_location="dedicated",
    )


@pytest.fixture
def store(sync_config):
    """Provide an identity store backed by a temp state file."""
    return IdentityStore(sync_config.sync_state_path, namespace=sync_config.namespace)


@pytest.fixture
def fake_raindrop():
    """Provide an in-memory Raindrop.io client."""
    return FakeRaindrop()


@pytest.fixture
def fake_vault():
    """Provide a vault that only records calls."""
    return FakeVault()


@pytest.fixture
def sync_manager(sync_config, fake_raindrop, fake_vault, store):
    """Provide a RaindropSync wired to the fakes."""
    return RaindropSync(sync_config, raindrop=fake_raindrop, vault=fake_vault, store=store)

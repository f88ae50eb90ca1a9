"""pytest configuration for RadioStack tests."""

from __future__ import annotations

import pytest

from fakes import FakeCompute, FakeInstaller, FakeStorage, make_record, no_sleep
from radiostack.config import RadioStackConfig
from radiostack.inventory import CsvInventoryStore
from radiostack.models import Platform
from radiostack.orchestrator import LifecycleOrchestrator
from radiostack.stack import RadioStack


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "asyncio: mark test as async"
    )


# ── Fixtures ──────────────────────────────────────────────────────


@pytest.fixture()
def config(tmp_path):
    return RadioStackConfig(
        inventory_file=str(tmp_path / "inventory" / "stations.csv"),
        boot_wait_attempts=3,
        boot_wait_interval=0.0,
    )


@pytest.fixture()
def store(config):
    return CsvInventoryStore(config.inventory_file)


@pytest.fixture()
def compute():
    return FakeCompute()


@pytest.fixture()
def storage():
    return FakeStorage()


@pytest.fixture()
def installers():
    return {p: FakeInstaller(p) for p in (Platform.AZURACAST, Platform.LIBRETIME)}


@pytest.fixture()
def orchestrator(config, store, compute, storage, installers):
    return LifecycleOrchestrator(
        config, store, compute, storage,
        installer_factory=lambda platform, _compute: installers[platform],
        sleep=no_sleep,
    )


@pytest.fixture()
def stack(config, store, compute, storage, installers):
    return RadioStack(
        config,
        store=store,
        compute=compute,
        storage=storage,
        installer_factory=lambda platform, _compute: installers[platform],
        sleep=no_sleep,
    )


@pytest.fixture()
def populated(store, compute):
    """Five live stations: 340-342 AzuraCast, 350-351 LibreTime."""
    for station_id, platform in (
        (340, "azuracast"),
        (341, "azuracast"),
        (342, "azuracast"),
        (350, "libretime"),
        (351, "libretime"),
    ):
        record = make_record(station_id, platform)
        store.upsert(record)
        compute.add(station_id, record.hostname)
    return store

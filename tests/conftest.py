from pathlib import Path
from typing import Any

import pytest

from flightflasher.config.models import ProvisioningConfig
from flightflasher.provisioning.credentials import PasswordHasher
from flightflasher.provisioning.generator import ArtifactGenerator
from flightflasher.provisioning.wifi import RuntimeRenderedWifi
from flightflasher.stages.rehearsal import STOCK_CMDLINE, STOCK_CONFIG
from flightflasher.system.path_resolver import PathResolver


@pytest.fixture(autouse=True)
def isolated_paths(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Keep settings, profiles and the image cache out of the real home directory."""
    host_dir = tmp_path / "host"
    monkeypatch.setenv("FLIGHTFLASHER_CONFIG_DIR", str(host_dir / "config"))
    monkeypatch.setenv("FLIGHTFLASHER_CACHE_DIR", str(host_dir / "cache"))
    monkeypatch.delenv("FLIGHTFLASHER_SETTINGS", raising=False)
    monkeypatch.delenv("FLIGHTFLASHER_JSON_LOGS", raising=False)
    return host_dir


@pytest.fixture
def path_resolver(isolated_paths: Path) -> PathResolver:
    """PathResolver pointing at the per-test host directory."""
    return PathResolver()


@pytest.fixture
def scenario_values() -> dict[str, Any]:
    """The reference provisioning answers."""
    return {
        "wifi_ssid": "Net1",
        "wifi_password": "wifi-secret-42",
        "latitude": "39.5259",
        "longitude": "-76.4352",
        "hostname": "flight-tracker",
        "username": "pi",
        "password": "pw123",
        "device": "/dev/disk4",
    }


@pytest.fixture
def scenario_config(scenario_values: dict[str, Any]) -> ProvisioningConfig:
    return ProvisioningConfig.capture(**scenario_values)


@pytest.fixture
def boot_dir(tmp_path: Path) -> Path:
    """A freshly flashed boot partition."""
    boot = tmp_path / "bootfs"
    boot.mkdir()
    (boot / "cmdline.txt").write_text(STOCK_CMDLINE)
    (boot / "config.txt").write_text(STOCK_CONFIG)
    return boot


@pytest.fixture
def generator(scenario_config: ProvisioningConfig) -> ArtifactGenerator:
    """Generator for the reference scenario with the runtime WiFi strategy."""
    return ArtifactGenerator(
        scenario_config,
        RuntimeRenderedWifi(country="US"),
        hasher=PasswordHasher(),
        timezone="America/New_York",
    )

import abc
import logging
from pathlib import Path

from flightflasher.config.models import ProvisioningConfig, WifiStrategyKind
from flightflasher.errors import PreconditionError
from flightflasher.provisioning.layout import DeviceLayout
from flightflasher.provisioning.network import PROFILE_MODE, NetworkProfile
from flightflasher.stages.driver import Transition
from flightflasher.stages.stage_one import regdomain_set, wifi_assumed_configured, wifi_configured

logger = logging.getLogger(__name__)


class WifiProvisioningStrategy(abc.ABC):
    """Where the WiFi connection profile is rendered.

    The rest of the bootstrap is identical for every strategy; a strategy
    only contributes Stage-1 parameters, Stage-1 network transitions and
    optional root filesystem writes on the host.
    """

    kind: WifiStrategyKind
    requires_root_mount: bool = False

    @abc.abstractmethod
    def preamble_parameters(self, config: ProvisioningConfig) -> list[tuple[str, str]]:
        """Extra Stage-1 CONF_* parameters."""
        pass

    @abc.abstractmethod
    def network_transitions(self, layout: DeviceLayout) -> list[Transition]:
        """Stage-1 transitions between TIMEZONE_SET and UNITS_INSTALLED."""
        pass

    def write_root_artifacts(
        self, config: ProvisioningConfig, root_mount: Path | None, layout: DeviceLayout
    ) -> list[Path]:
        """Write files into the root filesystem on the host."""
        return []


class RuntimeRenderedWifi(WifiProvisioningStrategy):
    """Stage-1 writes the profile on the device from its preamble."""

    kind = WifiStrategyKind.RUNTIME

    def __init__(self, country: str = "US"):
        self.country = country

    def preamble_parameters(self, config: ProvisioningConfig) -> list[tuple[str, str]]:
        return [
            ("CONF_WIFI_SSID", config.wifi_ssid),
            ("CONF_WIFI_PASS", config.wifi_password),
            ("CONF_WIFI_COUNTRY", self.country),
        ]

    def network_transitions(self, layout: DeviceLayout) -> list[Transition]:
        return [regdomain_set(layout), wifi_configured(layout)]


class PreRenderedWifi(WifiProvisioningStrategy):
    """The host writes the profile straight into the ext4 root filesystem.

    The WiFi secret never lands on the FAT boot partition.
    """

    kind = WifiStrategyKind.PRERENDERED
    requires_root_mount = True

    def preamble_parameters(self, config: ProvisioningConfig) -> list[tuple[str, str]]:
        return []

    def network_transitions(self, layout: DeviceLayout) -> list[Transition]:
        return [wifi_assumed_configured(layout)]

    def write_root_artifacts(
        self, config: ProvisioningConfig, root_mount: Path | None, layout: DeviceLayout
    ) -> list[Path]:
        if root_mount is None:
            raise PreconditionError("The pre-rendered WiFi strategy needs the root filesystem")
        profile = root_mount / layout.nm_profile_path.lstrip("/")
        profile.parent.mkdir(parents=True, exist_ok=True)
        # Restrict the file before the passphrase goes into it
        profile.touch(mode=PROFILE_MODE, exist_ok=True)
        profile.chmod(PROFILE_MODE)
        profile.write_text(NetworkProfile(config.wifi_ssid, config.wifi_password).render())
        logger.info(f"Wrote WiFi profile to {profile}")
        return [profile]


def select_wifi_strategy(kind: WifiStrategyKind, country: str = "US") -> WifiProvisioningStrategy:
    if kind is WifiStrategyKind.PRERENDERED:
        return PreRenderedWifi()
    return RuntimeRenderedWifi(country=country)

"""Builds the boot partition payload for one card.

Every precondition is checked, and the password hashed, before the first
write. Once writing starts a failure leaves a partially configured card;
nothing is rolled back and the operator reflashes.
"""

import logging
from dataclasses import dataclass
from pathlib import Path

from flightflasher.config.models import ProvisioningConfig
from flightflasher.errors import PreconditionError
from flightflasher.provisioning.credentials import CredentialHash, PasswordHasher
from flightflasher.provisioning.firmware import (
    AUDIO_OFF,
    append_boot_trigger,
    disable_onboard_audio,
)
from flightflasher.provisioning.layout import DEVICE_LAYOUT, DeviceLayout
from flightflasher.provisioning.templates import ParameterPreamble, ScriptTemplate
from flightflasher.provisioning.wifi import WifiProvisioningStrategy
from flightflasher.stages.stage_one import stage_one_script
from flightflasher.system.system_utils import detect_host_timezone

logger = logging.getLogger(__name__)

FIRSTRUN_MODE = 0o755


@dataclass(frozen=True)
class BootArtifactSet:
    """Paths written by one generation run."""

    ssh_marker: Path
    userconf: Path
    firmware_config: Path
    firstrun: Path
    cmdline: Path
    stage_one: ScriptTemplate
    credential: CredentialHash
    root_artifacts: tuple[Path, ...] = ()


@dataclass(frozen=True)
class PlannedWrite:
    target: str
    action: str


class ArtifactGenerator:
    """Writes SSH marker, account seed, config.txt patch, firstrun.sh and trigger."""

    def __init__(
        self,
        config: ProvisioningConfig,
        strategy: WifiProvisioningStrategy,
        hasher: PasswordHasher | None = None,
        timezone: str | None = None,
        layout: DeviceLayout = DEVICE_LAYOUT,
    ):
        self.config = config
        self.strategy = strategy
        self.hasher = hasher or PasswordHasher()
        self.timezone = timezone or detect_host_timezone()
        self.layout = layout

    def preamble(self) -> ParameterPreamble:
        """Stage-1 parameters: identity, timezone, coordinates, then strategy extras."""
        parameters = [
            ("CONF_HOSTNAME", self.config.hostname),
            ("CONF_TIMEZONE", self.timezone),
            ("CONF_LATITUDE", self.config.latitude_text),
            ("CONF_LONGITUDE", self.config.longitude_text),
            *self.strategy.preamble_parameters(self.config),
        ]
        return ParameterPreamble(tuple(parameters))

    def stage_one_template(self) -> ScriptTemplate:
        return stage_one_script(self.preamble(), self.strategy, self.layout)

    def plan(self) -> list[PlannedWrite]:
        """Describe the writes `generate` would perform, without touching anything."""
        self.hasher.ensure_available()
        layout = self.layout
        writes = [
            PlannedWrite(layout.ssh_marker_name, "enable SSH"),
            PlannedWrite(layout.userconf_name, f"{self.config.username}:<sha512-crypt hash>"),
            PlannedWrite(layout.firmware_config_name, f"ensure {AUDIO_OFF}"),
            PlannedWrite(layout.firstrun_name, "first-boot setup script"),
        ]
        for name, value in self.preamble().parameters:
            shown = "<hidden>" if name == "CONF_WIFI_PASS" else value
            writes.append(PlannedWrite(layout.firstrun_name, f"  {name}={shown}"))
        writes.append(PlannedWrite(layout.cmdline_name, "append firstrun trigger"))
        if self.strategy.requires_root_mount:
            writes.append(PlannedWrite(f"rootfs:{layout.nm_profile_path}", "WiFi profile (0600)"))
        return writes

    def check_preconditions(self, boot_mount: Path, root_mount: Path | None) -> None:
        """Raise PreconditionError for anything that would fail mid-write."""
        if not boot_mount.is_dir():
            raise PreconditionError(f"Boot partition not mounted at {boot_mount}")
        if not (boot_mount / self.layout.cmdline_name).is_file():
            raise PreconditionError(f"{self.layout.cmdline_name} not found on boot partition")
        if self.strategy.requires_root_mount and (root_mount is None or not root_mount.is_dir()):
            raise PreconditionError(
                f"The {self.strategy.kind} WiFi strategy needs the root filesystem mounted"
            )
        self.hasher.ensure_available()

    def generate(self, boot_mount: Path, root_mount: Path | None = None) -> BootArtifactSet:
        self.check_preconditions(boot_mount, root_mount)
        credential = self.hasher.hash(self.config.password)
        template = self.stage_one_template()

        # Writes start here
        ssh_marker = boot_mount / self.layout.ssh_marker_name
        ssh_marker.touch()

        userconf = boot_mount / self.layout.userconf_name
        userconf.write_text(credential.seed_line(self.config.username))

        firmware_config = boot_mount / self.layout.firmware_config_name
        existing = firmware_config.read_text() if firmware_config.exists() else ""
        firmware_config.write_text(disable_onboard_audio(existing))

        firstrun = boot_mount / self.layout.firstrun_name
        firstrun.write_bytes(template.render())
        try:
            firstrun.chmod(FIRSTRUN_MODE)
        except PermissionError:
            # vfat mounts reject mode changes; the mount's fmask decides
            logger.debug(f"Could not chmod {firstrun}; relying on boot partition fmask")

        cmdline = boot_mount / self.layout.cmdline_name
        cmdline.write_text(append_boot_trigger(cmdline.read_text()))

        root_artifacts = self.strategy.write_root_artifacts(self.config, root_mount, self.layout)

        logger.info(f"Boot partition at {boot_mount} configured for {self.config.hostname}")
        return BootArtifactSet(
            ssh_marker=ssh_marker,
            userconf=userconf,
            firmware_config=firmware_config,
            firstrun=firstrun,
            cmdline=cmdline,
            stage_one=template,
            credential=credential,
            root_artifacts=tuple(root_artifacts),
        )

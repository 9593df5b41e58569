"""Fixed locations on the target device.

Every stage script and the Python rehearsal read paths from one
DeviceLayout so the two can never drift apart.
"""

from dataclasses import dataclass
from pathlib import PurePosixPath

TRIGGER_TOKENS = (
    "systemd.run=/boot/firmware/firstrun.sh",
    "systemd.run_success_action=reboot",
    "systemd.unit=kernel-command-line.target",
)


@dataclass(frozen=True)
class DeviceLayout:
    # Boot partition, as the running device sees it
    boot_dir: str = "/boot/firmware"
    firstrun_name: str = "firstrun.sh"
    cmdline_name: str = "cmdline.txt"
    firmware_config_name: str = "config.txt"
    ssh_marker_name: str = "ssh"
    userconf_name: str = "userconf.txt"

    # Identity and locale
    hostname_path: str = "/etc/hostname"
    hosts_path: str = "/etc/hosts"
    localtime_path: str = "/etc/localtime"
    timezone_path: str = "/etc/timezone"
    zoneinfo_dir: str = "/usr/share/zoneinfo"

    # Radio and network
    regdomain_path: str = "/etc/default/crda"
    nm_connections_dir: str = "/etc/NetworkManager/system-connections"
    nm_profile_name: str = "wifi.nmconnection"

    # Units
    unit_dir: str = "/etc/systemd/system"
    stage_two_unit: str = "flight-tracker-setup.service"
    service_unit: str = "flight-tracker.service"

    # Stage-2 and application
    stage_two_script: str = "/opt/flight-tracker-setup.sh"
    stage_two_log: str = "/var/log/flight-tracker-setup.log"
    app_dir: str = "/opt/flight-tracker-led"
    app_repo: str = "https://github.com/rl-enjoyer/flight-display.git"
    driver_dir: str = "/opt/rpi-rgb-led-matrix"
    driver_repo: str = "https://github.com/hzeller/rpi-rgb-led-matrix.git"
    status_helper: str = "/opt/matrix_log.py"
    site_config_name: str = "config_local.py"
    python: str = "/usr/bin/python3"
    reachability_host: str = "google.com"
    reachability_attempts: int = 60
    reachability_interval: int = 1
    system_packages: tuple[str, ...] = (
        "git",
        "python3-pip",
        "python3-venv",
        "python3-dev",
        "libfreetype6-dev",
        "libjpeg-dev",
        "zlib1g-dev",
        "build-essential",
        "cython3",
    )

    def _join(self, *parts: str) -> str:
        return str(PurePosixPath(*parts))

    @property
    def firstrun_path(self) -> str:
        return self._join(self.boot_dir, self.firstrun_name)

    @property
    def cmdline_path(self) -> str:
        return self._join(self.boot_dir, self.cmdline_name)

    @property
    def nm_profile_path(self) -> str:
        return self._join(self.nm_connections_dir, self.nm_profile_name)

    @property
    def stage_two_unit_path(self) -> str:
        return self._join(self.unit_dir, self.stage_two_unit)

    @property
    def service_unit_path(self) -> str:
        return self._join(self.unit_dir, self.service_unit)

    @property
    def site_config_path(self) -> str:
        return self._join(self.app_dir, self.site_config_name)

    @property
    def driver_binding_dir(self) -> str:
        return self._join(self.driver_dir, "bindings", "python")

    @property
    def trigger(self) -> str:
        """Kernel command line tokens that run firstrun.sh once."""
        return " ".join(TRIGGER_TOKENS)


DEVICE_LAYOUT = DeviceLayout()

import abc
import configparser
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


class ServiceManagementStrategy(abc.ABC):
    """Abstract Base Class for service management strategies.

    The bootstrap stages only need the boot-time subset of systemd: unit
    enablement, daemon reloads, restarts and a final reboot.
    """

    @abc.abstractmethod
    def enable_service(self, service_name: str) -> None:
        """Enable a specified system service to start on boot."""
        pass

    @abc.abstractmethod
    def disable_service(self, service_name: str) -> None:
        """Disables a specified system service from starting on boot."""
        pass

    @abc.abstractmethod
    def is_enabled(self, service_name: str) -> bool:
        """Return whether the service starts on boot."""
        pass

    @abc.abstractmethod
    def restart_service(self, service_name: str) -> None:
        """Restarts a specified system service."""
        pass

    @abc.abstractmethod
    def daemon_reload(self) -> None:
        """Reload daemon configuration (if applicable)."""
        pass

    @abc.abstractmethod
    def reboot_system(self) -> bool:
        """Reboot the system if supported.

        Returns:
            True if reboot initiated, False if not supported.
        """
        pass


class OfflineSystemdStrategy(ServiceManagementStrategy):
    """systemd operations applied to an unbooted root filesystem.

    Enablement is expressed the way `systemctl enable` expresses it: a
    symlink in the `.wants` directory of every target named by the unit's
    `WantedBy=`. Runtime-only operations are recorded in `actions`.
    """

    UNIT_DIR = Path("etc/systemd/system")

    def __init__(self, root: Path):
        self.root = root
        self.actions: list[str] = []

    @property
    def unit_dir(self) -> Path:
        return self.root / self.UNIT_DIR

    def _wanted_by(self, service_name: str) -> list[str]:
        unit_path = self.unit_dir / service_name
        if not unit_path.exists():
            raise FileNotFoundError(f"Unit {service_name} not found in {self.unit_dir}")
        parser = configparser.ConfigParser(strict=False, interpolation=None)
        parser.optionxform = str  # type: ignore[assignment,method-assign]
        parser.read_string(unit_path.read_text())
        targets = parser.get("Install", "WantedBy", fallback="").split()
        if not targets:
            raise ValueError(f"Unit {service_name} has no WantedBy= and cannot be enabled")
        return targets

    def enable_service(self, service_name: str) -> None:
        """Enable a specified system service to start on boot."""
        for target in self._wanted_by(service_name):
            wants_dir = self.unit_dir / f"{target}.wants"
            wants_dir.mkdir(parents=True, exist_ok=True)
            link = wants_dir / service_name
            if link.is_symlink() or link.exists():
                link.unlink()
            link.symlink_to(Path("/") / self.UNIT_DIR / service_name)
        self.actions.append(f"enable {service_name}")
        logger.info(f"Service {service_name} enabled.")

    def disable_service(self, service_name: str) -> None:
        """Disable a specified system service from starting on boot."""
        for wants_dir in self.unit_dir.glob("*.wants"):
            link = wants_dir / service_name
            if link.is_symlink() or link.exists():
                link.unlink()
        self.actions.append(f"disable {service_name}")
        logger.info(f"Service {service_name} disabled.")

    def is_enabled(self, service_name: str) -> bool:
        """Return whether any target wants the service."""
        return any(
            (wants_dir / service_name).is_symlink() for wants_dir in self.unit_dir.glob("*.wants")
        )

    def restart_service(self, service_name: str) -> None:
        """Restart a specified system service."""
        self.actions.append(f"restart {service_name}")

    def daemon_reload(self) -> None:
        """Reload systemd daemon configuration."""
        self.actions.append("daemon-reload")

    def reboot_system(self) -> bool:
        """Record the reboot; nothing is running to restart."""
        self.actions.append("reboot")
        logger.info("Reboot requested")
        return True

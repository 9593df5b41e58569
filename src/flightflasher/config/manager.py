"""Settings and profile persistence."""

import logging
import shutil
from typing import Any

import yaml
from pydantic import ValidationError

from flightflasher.config.models import FlasherSettings, ProvisioningProfile
from flightflasher.errors import PreconditionError
from flightflasher.system.path_resolver import PathResolver

logger = logging.getLogger(__name__)


class SettingsManager:
    """Loads and saves host settings."""

    CURRENT_VERSION = "1.0.0"

    def __init__(self, path_resolver: PathResolver | None = None):
        """Initialize SettingsManager.

        Args:
            path_resolver: Optional PathResolver instance. If None, creates a new one.
        """
        self.path_resolver = path_resolver or PathResolver()
        self.settings_path = self.path_resolver.get_settings_path()

    def load(self) -> FlasherSettings:
        """Load settings, using defaults when no file exists.

        Returns:
            FlasherSettings: Loaded and validated settings

        Raises:
            PreconditionError: If the settings file is not valid
        """
        if not self.settings_path.exists():
            logger.debug(f"No settings file at {self.settings_path}; using defaults")
            return FlasherSettings()

        raw = self._read_yaml()
        try:
            return FlasherSettings(**raw)
        except ValidationError as e:
            raise PreconditionError(f"Invalid settings in {self.settings_path}: {e}") from e

    def save(self, settings: FlasherSettings) -> None:
        """Save settings to file with backup.

        Args:
            settings: Settings to save
        """
        self.settings_path.parent.mkdir(parents=True, exist_ok=True)

        if self.settings_path.exists():
            backup_path = self.settings_path.with_suffix(".yaml.backup")
            try:
                shutil.copy2(self.settings_path, backup_path)
            except PermissionError:
                logger.warning(f"Could not create backup at {backup_path}")

        data = settings.model_dump(mode="json")
        data["config_version"] = self.CURRENT_VERSION
        self.settings_path.write_text(yaml.dump(data, default_flow_style=False, sort_keys=False))
        logger.info(f"Settings saved to {self.settings_path}")

    def _read_yaml(self) -> dict[str, Any]:
        try:
            data = yaml.safe_load(self.settings_path.read_text()) or {}
        except yaml.YAMLError as e:
            raise PreconditionError(f"Cannot parse {self.settings_path}: {e}") from e
        if not isinstance(data, dict):
            raise PreconditionError(f"{self.settings_path} must contain a mapping")
        return data


class ProfileStore:
    """Named, non-secret provisioning profiles stored as YAML."""

    def __init__(self, path_resolver: PathResolver | None = None):
        self.path_resolver = path_resolver or PathResolver()

    def save(self, name: str, profile: ProvisioningProfile) -> None:
        """Write a profile, replacing any previous one with the same name."""
        path = self.path_resolver.get_profile_path(name)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = profile.model_dump(mode="json", exclude_none=True)
        path.write_text(yaml.dump(data, default_flow_style=False, sort_keys=False))
        logger.info(f"Profile '{name}' saved to {path}")

    def load(self, name: str) -> ProvisioningProfile:
        """Load a saved profile.

        Raises:
            PreconditionError: If the profile does not exist or is malformed
        """
        path = self.path_resolver.get_profile_path(name)
        if not path.exists():
            raise PreconditionError(f"Profile '{name}' not found at {path}")
        try:
            data = yaml.safe_load(path.read_text()) or {}
            return ProvisioningProfile(**data)
        except (yaml.YAMLError, TypeError, ValidationError) as e:
            raise PreconditionError(f"Profile '{name}' is invalid: {e}") from e

    def list_profiles(self) -> list[str]:
        """Names of all saved profiles, sorted."""
        profiles_dir = self.path_resolver.get_profiles_dir()
        if not profiles_dir.is_dir():
            return []
        return sorted(p.stem for p in profiles_dir.glob("*.yaml"))

import os
from pathlib import Path


class PathResolver:
    """Central authority for host-side file locations.

    Uses environment variables for configuration with sensible defaults.
    """

    def __init__(self) -> None:
        """Initialize PathResolver with environment-based configuration."""
        home = Path.home()
        self.config_dir = Path(
            os.getenv("FLIGHTFLASHER_CONFIG_DIR", home / ".config" / "flight-tracker-flasher")
        )
        self.cache_dir = Path(
            os.getenv("FLIGHTFLASHER_CACHE_DIR", home / ".cache" / "flight-tracker-flasher")
        )

    def get_settings_path(self) -> Path:
        """Get the path to the settings file.

        Checks FLIGHTFLASHER_SETTINGS environment variable first, then falls back to default.
        """
        settings_path = os.getenv("FLIGHTFLASHER_SETTINGS")
        if settings_path:
            return Path(settings_path)
        return self.config_dir / "settings.yaml"

    def get_profiles_dir(self) -> Path:
        """Get the directory holding saved provisioning profiles."""
        return self.config_dir / "profiles"

    def get_profile_path(self, name: str) -> Path:
        """Get the path for a named profile."""
        if not name.endswith(".yaml"):
            name = f"{name}.yaml"
        return self.get_profiles_dir() / name

    def get_image_cache_dir(self, override: str | None = None) -> Path:
        """Get the directory downloaded OS images are cached in.

        Args:
            override: Directory from settings; the environment variable still wins.
        """
        if override and not os.getenv("FLIGHTFLASHER_CACHE_DIR"):
            return Path(override).expanduser()
        return self.cache_dir

    def get_cached_image_path(self, url: str, override: str | None = None) -> Path:
        """Cache entries are keyed by the final URL path component."""
        filename = url.rstrip("/").rsplit("/", 1)[-1]
        return self.get_image_cache_dir(override) / filename

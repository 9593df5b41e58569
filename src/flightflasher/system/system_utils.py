import logging
import os
import platform
import shutil
from pathlib import Path

from tzlocal import get_localzone_name

from flightflasher.errors import PreconditionError

logger = logging.getLogger(__name__)

HOMEBREW_PATHS = [
    "/opt/homebrew/bin",  # Apple Silicon
    "/usr/local/bin",  # Intel Macs
]


def host_platform() -> str:
    """Return "Darwin" or "Linux"; anything else is unsupported."""
    system = platform.system()
    if system not in ("Darwin", "Linux"):
        raise PreconditionError(f"Unsupported host operating system: {system}")
    return system


def is_root() -> bool:
    """Whether the current process has an effective uid of 0."""
    return os.geteuid() == 0


def find_command(cmd: str, homebrew_paths: list[str] | None = None) -> str:
    """Find command in PATH or common Homebrew locations.

    Args:
        cmd: Command name to find (e.g., "diskutil", "dd")
        homebrew_paths: Optional list of Homebrew paths to check

    Returns:
        Full path to command or command name (will fail later if not found)
    """
    if result := shutil.which(cmd):
        return result

    if platform.system() == "Darwin":
        for path in homebrew_paths or HOMEBREW_PATHS:
            full_path = Path(path) / cmd
            if full_path.exists() and full_path.is_file():
                return str(full_path)

    return cmd


def require_commands(*commands: str) -> dict[str, str]:
    """Resolve every command or raise before anything destructive happens.

    Returns:
        Mapping of command name to resolved path
    """
    resolved = {cmd: find_command(cmd) for cmd in commands}
    missing = [cmd for cmd, path in resolved.items() if not Path(path).is_absolute()]
    if missing:
        raise PreconditionError(f"Required host tools not found: {', '.join(missing)}")
    return resolved


def detect_host_timezone() -> str:
    """Attempt to determine the host's IANA timezone name."""
    try:
        name = get_localzone_name()
    except Exception as e:  # tzlocal raises assorted errors on odd hosts
        logger.warning(f"Could not determine host timezone ({e}); using UTC")
        return "UTC"
    return name or "UTC"

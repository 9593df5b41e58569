"""Flasher configuration package.

This package provides:
- Validated provisioning answers captured once per flashing session
- Host settings loaded from YAML
- Saved, non-secret provisioning profiles
"""

from .manager import ProfileStore, SettingsManager
from .models import (
    FlasherSettings,
    LoggingConfig,
    OsVariant,
    ProvisioningConfig,
    ProvisioningProfile,
    WifiStrategyKind,
)

__all__ = [
    "FlasherSettings",
    "LoggingConfig",
    "OsVariant",
    "ProfileStore",
    "ProvisioningConfig",
    "ProvisioningProfile",
    "SettingsManager",
    "WifiStrategyKind",
]

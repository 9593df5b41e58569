"""Configuration models for the flight-tracker flasher.

This module contains the Pydantic models for host settings, saved profiles
and the per-session provisioning answers.
"""

import re
from decimal import Decimal
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from flightflasher.errors import PreconditionError

IMAGE_URL_LITE = (
    "https://downloads.raspberrypi.com/raspios_lite_armhf/images/raspios_lite_armhf-2024-11-19/"
    "2024-11-19-raspios-bookworm-armhf-lite.img.xz"
)
IMAGE_URL_DESKTOP = (
    "https://downloads.raspberrypi.com/raspios_armhf/images/raspios_armhf-2024-11-19/"
    "2024-11-19-raspios-bookworm-armhf.img.xz"
)

# Plain decimal degrees only: no exponent, no inf/nan
_DECIMAL_DEGREES = re.compile(r"^-?[0-9]+\.?[0-9]*$")
_HOSTNAME = re.compile(r"^[A-Za-z0-9]([A-Za-z0-9-]{0,61}[A-Za-z0-9])?$")
_USERNAME = re.compile(r"^[a-z_][a-z0-9_-]{0,31}$")
_COUNTRY = re.compile(r"^[A-Z]{2}$")


class OsVariant(StrEnum):
    """Raspberry Pi OS image flavours."""

    LITE = "lite"
    DESKTOP = "desktop"

    @property
    def label(self) -> str:
        """Human-readable variant name."""
        return "Desktop" if self is OsVariant.DESKTOP else "Lite"


class WifiStrategyKind(StrEnum):
    """Where the WiFi connection profile gets rendered."""

    RUNTIME = "runtime"  # materialized by Stage-1 on the device
    PRERENDERED = "prerendered"  # written into the root filesystem by the host


class LoggingConfig(BaseModel):
    """Structlog-based logging configuration."""

    level: str = "INFO"
    json_logs: bool = False
    include_caller: bool = False
    extra_fields: dict[str, str] = Field(
        default_factory=lambda: {"service": "flight-tracker-flasher"}
    )


class FlasherSettings(BaseModel):
    """Host-side settings for the flasher."""

    config_version: str = "1.0.0"

    image_url_lite: str = IMAGE_URL_LITE
    image_url_desktop: str = IMAGE_URL_DESKTOP
    image_cache_dir: str | None = None  # None means ~/.cache/flight-tracker-flasher

    wifi_country: str = "US"  # Regulatory domain written by Stage-1
    default_hostname: str = "flight-tracker"
    default_username: str = "pi"
    wifi_strategy: WifiStrategyKind = WifiStrategyKind.RUNTIME

    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("wifi_country")
    @classmethod
    def validate_wifi_country(cls, v: str) -> str:
        """Validate the regulatory domain is an ISO 3166 alpha-2 code."""
        if not _COUNTRY.match(v):
            raise ValueError(f"Invalid WiFi country '{v}'. Must be a two-letter code like 'US'.")
        return v

    def image_url(self, variant: OsVariant) -> str:
        """Return the download URL for an OS variant."""
        if variant is OsVariant.DESKTOP:
            return self.image_url_desktop
        return self.image_url_lite


class ProvisioningProfile(BaseModel):
    """Saved, non-secret provisioning answers.

    Passwords and the WiFi passphrase are deliberately absent so a profile
    can sit in the operator's home directory.
    """

    model_config = ConfigDict(extra="ignore")

    wifi_ssid: str | None = None
    latitude: str | None = None
    longitude: str | None = None
    hostname: str | None = None
    username: str | None = None
    os_variant: OsVariant | None = None
    wifi_strategy: WifiStrategyKind | None = None


def _check_range(name: str, value: Decimal, low: int, high: int) -> Decimal:
    if value < low or value > high:
        raise ValueError(f"{name} must be between {low} and {high} (got: {value})")
    return value


class ProvisioningConfig(BaseModel):
    """Immutable answers captured before any filesystem write.

    Coordinates are kept as Decimal so the text the operator typed is what
    lands in the generated scripts.
    """

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    wifi_ssid: str = Field(min_length=1)
    wifi_password: str = Field(min_length=1, repr=False)
    latitude: Decimal
    longitude: Decimal
    hostname: str = Field(min_length=1)
    username: str = Field(min_length=1)
    password: str = Field(min_length=1, repr=False)
    device: str = Field(min_length=1)
    os_variant: OsVariant = OsVariant.LITE

    @field_validator("latitude", "longitude", mode="before")
    @classmethod
    def validate_decimal_degrees(cls, v: Any, info: Any) -> Any:
        """Reject anything that is not a plain decimal number."""
        label = info.field_name.capitalize()
        if isinstance(v, bool) or v is None:
            raise ValueError(f"{label} must be a decimal number (got: {v})")
        text = str(v).strip()
        if not _DECIMAL_DEGREES.match(text):
            raise ValueError(f"{label} must be a decimal number (got: {text})")
        return text

    @field_validator("latitude")
    @classmethod
    def validate_latitude(cls, v: Decimal) -> Decimal:
        """Latitude must fall within [-90, 90]."""
        return _check_range("Latitude", v, -90, 90)

    @field_validator("longitude")
    @classmethod
    def validate_longitude(cls, v: Decimal) -> Decimal:
        """Longitude must fall within [-180, 180]."""
        return _check_range("Longitude", v, -180, 180)

    @field_validator("hostname")
    @classmethod
    def validate_hostname(cls, v: str) -> str:
        """Hostname must be a single RFC 1123 label."""
        if not _HOSTNAME.match(v):
            raise ValueError(
                f"Invalid hostname '{v}'. Use letters, digits and inner hyphens (max 63)."
            )
        return v

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: str) -> str:
        """Username must be a valid Linux account name."""
        if not _USERNAME.match(v):
            raise ValueError(
                f"Invalid username '{v}'. Use lowercase letters, digits, '_' and '-'."
            )
        return v

    @field_validator("wifi_ssid", "wifi_password", "password")
    @classmethod
    def validate_single_line(cls, v: str, info: Any) -> str:
        """Secrets and the SSID end up in line-oriented files."""
        if any(ch in v for ch in "\r\n\x00"):
            raise ValueError(f"{info.field_name} must not contain line breaks")
        return v

    @property
    def latitude_text(self) -> str:
        """Latitude exactly as it is written into generated files."""
        return str(self.latitude)

    @property
    def longitude_text(self) -> str:
        """Longitude exactly as it is written into generated files."""
        return str(self.longitude)

    @classmethod
    def capture(cls, **values: Any) -> "ProvisioningConfig":
        """Build a config, converting validation failures to PreconditionError."""
        try:
            return cls(**values)
        except ValidationError as e:
            messages = []
            for error in e.errors():
                message = str(error["msg"]).removeprefix("Value error, ")
                field = ".".join(str(part) for part in error["loc"])
                if field.lower() not in message.lower():
                    message = f"{field}: {message}"
                messages.append(message)
            raise PreconditionError("; ".join(messages)) from e

    def to_profile(self, wifi_strategy: WifiStrategyKind | None = None) -> ProvisioningProfile:
        """Strip secrets and the target device for saving as a profile."""
        return ProvisioningProfile(
            wifi_ssid=self.wifi_ssid,
            latitude=self.latitude_text,
            longitude=self.longitude_text,
            hostname=self.hostname,
            username=self.username,
            os_variant=self.os_variant,
            wifi_strategy=wifi_strategy,
        )

"""NetworkManager keyfile for the WiFi connection."""

from dataclasses import dataclass, field

from flightflasher.provisioning.templates import render_asset

PROFILE_MODE = 0o600


@dataclass(frozen=True)
class NetworkProfile:
    """WPA-PSK connection with autoconnect and DHCP on both address families."""

    ssid: str
    psk: str = field(repr=False)

    def render(self) -> str:
        return render_asset("wifi.nmconnection.j2", ssid=self.ssid, psk=self.psk)


def runtime_profile_template() -> str:
    """Profile text with shell references, expanded by Stage-1 on the device."""
    return render_asset(
        "wifi.nmconnection.j2", ssid="${CONF_WIFI_SSID}", psk="${CONF_WIFI_PASS}"
    )

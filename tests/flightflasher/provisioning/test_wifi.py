import stat

import pytest

from flightflasher.config.models import WifiStrategyKind
from flightflasher.errors import PreconditionError
from flightflasher.provisioning.layout import DEVICE_LAYOUT
from flightflasher.provisioning.wifi import (
    PreRenderedWifi,
    RuntimeRenderedWifi,
    select_wifi_strategy,
)
from flightflasher.stages.stage_one import Stage1State


class TestRuntimeRenderedWifi:
    def test_parameters(self, scenario_config):
        """Should hand the SSID, passphrase and country to Stage-1."""
        strategy = RuntimeRenderedWifi(country="GB")

        assert strategy.preamble_parameters(scenario_config) == [
            ("CONF_WIFI_SSID", "Net1"),
            ("CONF_WIFI_PASS", "wifi-secret-42"),
            ("CONF_WIFI_COUNTRY", "GB"),
        ]
        assert not strategy.requires_root_mount

    def test_transitions(self):
        """Should set the regulatory domain before writing the profile."""
        states = [t.state for t in RuntimeRenderedWifi().network_transitions(DEVICE_LAYOUT)]

        assert states == [Stage1State.REGDOMAIN_SET, Stage1State.WIFI_CONFIGURED]

    def test_no_root_artifacts(self, scenario_config, tmp_path):
        """Should not write into the root filesystem."""
        strategy = RuntimeRenderedWifi()

        assert strategy.write_root_artifacts(scenario_config, tmp_path, DEVICE_LAYOUT) == []
        assert list(tmp_path.iterdir()) == []


class TestPreRenderedWifi:
    def test_no_secrets_in_parameters(self, scenario_config):
        """Should keep WiFi values off the boot partition."""
        assert PreRenderedWifi().preamble_parameters(scenario_config) == []

    def test_transitions(self):
        """Should replace the runtime network steps with a single check."""
        states = [t.state for t in PreRenderedWifi().network_transitions(DEVICE_LAYOUT)]

        assert states == [Stage1State.WIFI_ASSUMED_CONFIGURED]

    def test_writes_private_profile(self, scenario_config, tmp_path):
        """Should write the profile into the root filesystem with mode 0600."""
        (written,) = PreRenderedWifi().write_root_artifacts(
            scenario_config, tmp_path, DEVICE_LAYOUT
        )

        assert written == tmp_path / "etc/NetworkManager/system-connections/wifi.nmconnection"
        assert stat.S_IMODE(written.stat().st_mode) == 0o600
        assert "psk=wifi-secret-42" in written.read_text()

    def test_requires_root_mount(self, scenario_config):
        """Should refuse to run without the root filesystem."""
        with pytest.raises(PreconditionError, match="root filesystem"):
            PreRenderedWifi().write_root_artifacts(scenario_config, None, DEVICE_LAYOUT)


class TestSelectWifiStrategy:
    @pytest.mark.parametrize(
        "kind,expected",
        [
            pytest.param(WifiStrategyKind.RUNTIME, RuntimeRenderedWifi, id="runtime"),
            pytest.param(WifiStrategyKind.PRERENDERED, PreRenderedWifi, id="prerendered"),
        ],
    )
    def test_select(self, kind, expected):
        """Should map the configured kind to its strategy."""
        strategy = select_wifi_strategy(kind, "DE")

        assert isinstance(strategy, expected)
        assert strategy.kind is kind

    def test_country_is_passed_through(self):
        """Should pass the regulatory domain to the runtime strategy."""
        strategy = select_wifi_strategy(WifiStrategyKind.RUNTIME, "DE")

        assert isinstance(strategy, RuntimeRenderedWifi)
        assert strategy.country == "DE"

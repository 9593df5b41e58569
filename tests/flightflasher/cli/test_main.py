"""Tests for the flightflasher command-line interface."""

import subprocess
from unittest.mock import MagicMock, patch

import pytest
import requests
from click.testing import CliRunner

from flightflasher.cli.main import cli
from flightflasher.errors import FlashError
from flightflasher.provisioning.firmware import count_boot_triggers
from flightflasher.stages.rehearsal import seed_boot_partition
from flightflasher.system.disks import BlockDevice

ANSWERS = [
    "--ssid",
    "Net1",
    "--wifi-password",
    "wifi-secret-42",
    "--lat",
    "39.5259",
    "--lon",
    "-76.4352",
    "--hostname",
    "flight-tracker",
    "--username",
    "pi",
    "--password",
    "pw123",
]


@pytest.fixture
def runner():
    """Create a Click test runner."""
    return CliRunner()


@pytest.fixture(autouse=True)
def quiet_logging():
    """Keep configure_structlog from replacing the test process's log handlers."""
    with patch("flightflasher.cli.main.configure_structlog"):
        yield


@pytest.fixture(autouse=True)
def fixed_timezone():
    with patch("flightflasher.provisioning.generator.detect_host_timezone", return_value="UTC"):
        yield


def answers_with(**overrides):
    args = list(ANSWERS)
    for option, value in overrides.items():
        args[args.index(f"--{option}") + 1] = value
    return args


class TestDevices:
    def test_lists_candidates(self, runner):
        """Should print the available disks."""
        with (
            patch("flightflasher.cli.main.host_platform", return_value="Linux"),
            patch(
                "flightflasher.cli.main.list_candidate_devices",
                return_value=[BlockDevice("/dev/sdb", "29.7G", "Reader")],
            ),
        ):
            result = runner.invoke(cli, ["devices"])

        assert result.exit_code == 0
        assert "/dev/sdb" in result.output

    def test_no_candidates(self, runner):
        """Should explain that no card was found."""
        with (
            patch("flightflasher.cli.main.host_platform", return_value="Linux"),
            patch("flightflasher.cli.main.list_candidate_devices", return_value=[]),
        ):
            result = runner.invoke(cli, ["devices"])

        assert result.exit_code == 0
        assert "No target disks found" in result.output


class TestRender:
    def test_render(self, runner, tmp_path):
        """Should write the boot payload into the output directory."""
        output_dir = tmp_path / "bootfs"

        result = runner.invoke(cli, ["render", str(output_dir), *ANSWERS])

        assert result.exit_code == 0, result.output
        assert "Boot partition payload written" in result.output
        assert (output_dir / "ssh").exists()
        assert b'CONF_LATITUDE="39.5259"' in (output_dir / "firstrun.sh").read_bytes()
        assert count_boot_triggers((output_dir / "cmdline.txt").read_text()) == 1

    def test_invalid_latitude_writes_nothing(self, runner, tmp_path):
        """Should reject an out-of-range latitude before touching the output."""
        output_dir = tmp_path / "bootfs"

        result = runner.invoke(cli, ["render", str(output_dir), *answers_with(lat="95")])

        assert result.exit_code == 1
        assert "Latitude must be between -90 and 90" in result.output
        assert not output_dir.exists()

    def test_existing_payload_untouched_on_invalid_input(self, runner, tmp_path):
        """Should leave an existing boot directory byte-for-byte unchanged."""
        output_dir = tmp_path / "bootfs"
        seed_boot_partition(output_dir)
        before = {p.name: p.read_bytes() for p in output_dir.iterdir()}

        result = runner.invoke(cli, ["render", str(output_dir), *answers_with(lon="east")])

        assert result.exit_code == 1
        assert "Longitude must be a decimal number" in result.output
        assert {p.name: p.read_bytes() for p in output_dir.iterdir()} == before

    def test_prerendered_needs_root_dir(self, runner, tmp_path):
        """Should require --root-dir for the pre-rendered WiFi strategy."""
        result = runner.invoke(
            cli,
            ["render", str(tmp_path / "bootfs"), *ANSWERS, "--wifi-strategy", "prerendered"],
        )

        assert result.exit_code == 1
        assert "--root-dir is required" in result.output

    def test_prerendered_writes_root_profile(self, runner, tmp_path):
        """Should write the WiFi profile into the root directory only."""
        output_dir, root_dir = tmp_path / "bootfs", tmp_path / "rootfs"

        result = runner.invoke(
            cli,
            [
                "render",
                str(output_dir),
                "--root-dir",
                str(root_dir),
                "--wifi-strategy",
                "prerendered",
                *ANSWERS,
            ],
        )

        assert result.exit_code == 0, result.output
        profile = root_dir / "etc/NetworkManager/system-connections/wifi.nmconnection"
        assert "psk=wifi-secret-42" in profile.read_text()
        assert b"wifi-secret-42" not in (output_dir / "firstrun.sh").read_bytes()

    def test_profiles(self, runner, tmp_path, path_resolver):
        """Should save non-secret answers and prompt only for secrets when reusing them."""
        first = runner.invoke(
            cli, ["render", str(tmp_path / "one"), *ANSWERS, "--save-profile", "home"]
        )
        assert first.exit_code == 0, first.output
        saved = path_resolver.get_profile_path("home").read_text()
        assert "pw123" not in saved
        assert "wifi-secret-42" not in saved

        second = runner.invoke(
            cli,
            ["render", str(tmp_path / "two"), "--profile", "home"],
            input="wifi-secret-42\npw123\npw123\n",
        )

        assert second.exit_code == 0, second.output
        assert b'CONF_LONGITUDE="-76.4352"' in (tmp_path / "two" / "firstrun.sh").read_bytes()

    def test_missing_profile(self, runner, tmp_path):
        """Should report an unknown profile name."""
        result = runner.invoke(cli, ["render", str(tmp_path / "out"), "--profile", "nope"])

        assert result.exit_code == 1
        assert "Profile 'nope' not found" in result.output


class TestRehearse:
    def test_success(self, runner, tmp_path):
        """Should report the boot sequence reaching steady state."""
        result = runner.invoke(cli, ["rehearse", "--root", str(tmp_path / "device"), *ANSWERS])

        assert result.exit_code == 0, result.output
        assert "Rehearsal reached steady state" in result.output
        assert "flight-tracker.service" in result.output

    def test_failure(self, runner, tmp_path):
        """Should exit non-zero when a required step fails."""
        result = runner.invoke(
            cli, ["rehearse", "--root", str(tmp_path / "device"), "--fail", "apt-get", *ANSWERS]
        )

        assert result.exit_code == 1
        assert "packages_installed" in result.output


class TestFlash:
    @pytest.fixture
    def linux_host(self):
        with (
            patch("flightflasher.cli.main.host_platform", return_value="Linux"),
            patch("flightflasher.cli.main.require_commands", return_value={}),
        ):
            yield

    @pytest.mark.usefixtures("linux_host")
    def test_dry_run(self, runner):
        """Should validate and describe the plan without touching disks."""
        with (
            patch("flightflasher.cli.main.list_candidate_devices") as mock_list,
            patch("flightflasher.cli.main.flash_image") as mock_flash,
            patch("subprocess.Popen") as mock_popen,
        ):
            result = runner.invoke(
                cli, ["flash", "--dry-run", "--device", "/dev/sdb", *ANSWERS]
            )

        assert result.exit_code == 0, result.output
        assert "Done! (dry run, no changes were made)" in result.output
        assert "<hidden>" in result.output
        assert "wifi-secret-42" not in result.output
        assert "pw123" not in result.output
        mock_list.assert_not_called()
        mock_flash.assert_not_called()
        mock_popen.assert_not_called()

    @pytest.mark.usefixtures("linux_host")
    def test_requires_root(self, runner):
        """Should refuse a real flash without root."""
        with patch("flightflasher.cli.main.is_root", return_value=False):
            result = runner.invoke(cli, ["flash", "--device", "/dev/sdb", *ANSWERS])

        assert result.exit_code == 1
        assert "must be run as root" in result.output

    def test_prerendered_needs_linux(self, runner):
        """Should refuse the pre-rendered strategy on macOS."""
        with (
            patch("flightflasher.cli.main.host_platform", return_value="Darwin"),
            patch("flightflasher.cli.main.require_commands", return_value={}),
        ):
            result = runner.invoke(
                cli,
                [
                    "flash",
                    "--dry-run",
                    "--device",
                    "/dev/disk4",
                    "--wifi-strategy",
                    "prerendered",
                    *ANSWERS,
                ],
            )

        assert result.exit_code == 1
        assert "prerendered WiFi strategy" in result.output

    @pytest.mark.usefixtures("linux_host")
    def test_rejects_unknown_device(self, runner):
        """Should refuse a device that is not a candidate disk."""
        with (
            patch("flightflasher.cli.main.is_root", return_value=True),
            patch(
                "flightflasher.cli.main.list_candidate_devices",
                return_value=[BlockDevice("/dev/sdb")],
            ),
        ):
            result = runner.invoke(cli, ["flash", "--device", "/dev/nvme0n1", *ANSWERS])

        assert result.exit_code == 1
        assert "not a valid target disk" in result.output

    @pytest.fixture
    def flash_session(self, tmp_path, linux_host):
        """Mock the destructive layer; the boot partition is a temp directory."""
        boot = tmp_path / "mnt-boot"
        seed_boot_partition(boot)
        session = MagicMock()
        session.mount_boot.return_value = boot
        image = tmp_path / "os.img.xz"
        image.write_bytes(b"")
        with (
            patch("flightflasher.cli.main.is_root", return_value=True),
            patch(
                "flightflasher.cli.main.list_candidate_devices",
                return_value=[BlockDevice("/dev/sdb", "29.7G", "Reader")],
            ),
            patch("flightflasher.cli.main.DiskSession") as mock_session_cls,
            patch("flightflasher.cli.main.flash_image") as mock_flash,
        ):
            mock_session_cls.return_value.__enter__.return_value = session
            yield {"boot": boot, "image": image, "session": session, "flash": mock_flash}

    def test_flash(self, runner, flash_session):
        """Should flash, mount the boot partition and write the payload."""
        result = runner.invoke(
            cli,
            ["flash", "--image", str(flash_session["image"]), "--device", "/dev/sdb", "-y"]
            + ANSWERS,
        )

        assert result.exit_code == 0, result.output
        assert "SD Card Ready" in result.output
        assert "ssh pi@flight-tracker.local" in result.output
        flash_session["session"].unmount_all.assert_called_once()
        flash_session["flash"].assert_called_once()
        flash_session["session"].mount_root.assert_not_called()
        boot = flash_session["boot"]
        assert (boot / "ssh").exists()
        assert count_boot_triggers((boot / "cmdline.txt").read_text()) == 1

    def test_confirmation_declined(self, runner, flash_session):
        """Should abort before touching the card when the operator says no."""
        result = runner.invoke(
            cli,
            ["flash", "--image", str(flash_session["image"]), "--device", "/dev/sdb"] + ANSWERS,
            input="n\n",
        )

        assert result.exit_code == 1
        flash_session["flash"].assert_not_called()
        assert not (flash_session["boot"] / "ssh").exists()

    @pytest.mark.parametrize(
        "error",
        [
            pytest.param(FlashError("dd failed with exit code 1"), id="dd"),
            pytest.param(subprocess.CalledProcessError(1, ["sync"]), id="sync"),
        ],
    )
    def test_write_failure_asks_for_reflash(self, runner, flash_session, error):
        """Should tell the operator to reflash after a mid-write failure."""
        flash_session["flash"].side_effect = error

        result = runner.invoke(
            cli,
            ["flash", "--image", str(flash_session["image"]), "--device", "/dev/sdb", "-y"]
            + ANSWERS,
        )

        assert result.exit_code == 1
        assert "Reflash it before use" in result.output
        assert not (flash_session["boot"] / "ssh").exists()

    def test_download_failure(self, runner, flash_session):
        """Should report a failed download cleanly and leave the card alone."""
        with patch(
            "requests.get", side_effect=requests.ConnectionError("no route to host")
        ) as mock_get:
            result = runner.invoke(cli, ["flash", "--device", "/dev/sdb", "-y", *ANSWERS])

        assert result.exit_code == 1
        assert not isinstance(result.exception, requests.RequestException)
        assert "Image download failed: no route to host" in result.output
        assert "Reflash" not in result.output
        mock_get.assert_called_once()
        flash_session["flash"].assert_not_called()
        flash_session["session"].unmount_all.assert_not_called()

    def test_write_to_card_fails(self, runner, flash_session):
        """Should treat an I/O error on the mounted card as a destructive-phase failure."""
        with patch(
            "flightflasher.provisioning.generator.ArtifactGenerator.generate",
            side_effect=OSError(28, "No space left on device"),
        ):
            result = runner.invoke(
                cli,
                ["flash", "--image", str(flash_session["image"]), "--device", "/dev/sdb", "-y"]
                + ANSWERS,
            )

        assert result.exit_code == 1
        assert not isinstance(result.exception, OSError)
        assert "No space left on device" in result.output
        assert "Reflash it before use" in result.output


class TestHostErrors:
    def test_invalid_settings_file(self, runner, path_resolver):
        """Should exit cleanly when settings.yaml cannot be parsed."""
        settings_path = path_resolver.get_settings_path()
        settings_path.parent.mkdir(parents=True)
        settings_path.write_text("logging: [unclosed\n")

        result = runner.invoke(cli, ["devices"])

        assert result.exit_code == 1
        assert "Error: Cannot parse" in result.output

    def test_invalid_settings_values(self, runner, path_resolver):
        """Should exit cleanly when settings.yaml holds values of the wrong shape."""
        settings_path = path_resolver.get_settings_path()
        settings_path.parent.mkdir(parents=True)
        settings_path.write_text("- just\n- a list\n")

        result = runner.invoke(cli, ["devices"])

        assert result.exit_code == 1
        assert "Error:" in result.output
        assert "mapping" in result.output

    def test_unwritable_output(self, runner, tmp_path):
        """Should report an I/O error while rendering without a card warning."""
        with patch(
            "flightflasher.cli.main.seed_boot_partition",
            side_effect=PermissionError(13, "Permission denied"),
        ):
            result = runner.invoke(cli, ["render", str(tmp_path / "bootfs"), *ANSWERS])

        assert result.exit_code == 1
        assert "Error:" in result.output
        assert "Permission denied" in result.output
        assert "Reflash" not in result.output

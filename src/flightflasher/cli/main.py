"""Command-line interface for flashing and pre-configuring flight-tracker SD cards.

Usage:
    sudo flightflasher flash
    flightflasher flash --dry-run
    flightflasher render ./bootfs
    flightflasher rehearse
"""

import functools
import subprocess
import sys
import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import Any, NoReturn

import click
import requests
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from flightflasher.config import (
    FlasherSettings,
    OsVariant,
    ProfileStore,
    ProvisioningConfig,
    ProvisioningProfile,
    SettingsManager,
    WifiStrategyKind,
)
from flightflasher.errors import FlashError, PreconditionError
from flightflasher.imaging.decompress import check_image, detect_format
from flightflasher.imaging.download import download_image
from flightflasher.imaging.flasher import dd_command, flash_image
from flightflasher.provisioning.credentials import PasswordHasher
from flightflasher.provisioning.generator import ArtifactGenerator
from flightflasher.provisioning.wifi import select_wifi_strategy
from flightflasher.stages.rehearsal import Rehearsal, seed_boot_partition
from flightflasher.system.disks import (
    BlockDevice,
    DiskSession,
    list_candidate_devices,
    raw_device_path,
    validate_target,
)
from flightflasher.system.path_resolver import PathResolver
from flightflasher.system.structlog_configurator import configure_structlog
from flightflasher.system.system_utils import host_platform, is_root, require_commands

console = Console()

HOST_TOOLS = {
    "Darwin": ("dd", "diskutil", "sync"),
    "Linux": ("dd", "lsblk", "findmnt", "mount", "umount", "sync"),
}


def _fail(message: str) -> NoReturn:
    console.print(f"[red]Error: {message}[/red]")
    sys.exit(1)


def handle_errors(func: Callable[..., Any]) -> Callable[..., Any]:
    """Map flasher errors onto messages and exit code 1."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except PreconditionError as e:
            _fail(str(e))
        except requests.RequestException as e:
            _fail(f"Image download failed: {e}")
        except (FlashError, subprocess.CalledProcessError) as e:
            console.print(f"[red]Error: {e}[/red]")
            console.print(
                "[yellow]The card may be partially written. Reflash it before use.[/yellow]"
            )
            sys.exit(1)
        except OSError as e:
            _fail(str(e))

    return wrapper


def provisioning_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Options shared by every command that builds a ProvisioningConfig."""
    options = [
        click.option("--ssid", help="WiFi network name"),
        click.option("--wifi-password", help="WiFi password"),
        click.option("--lat", "latitude", help="Latitude in decimal degrees"),
        click.option("--lon", "longitude", help="Longitude in decimal degrees"),
        click.option("--hostname", help="Hostname for the Pi"),
        click.option("--username", help="Login username"),
        click.option("--password", help="Login password"),
        click.option("--desktop", is_flag=True, default=None, help="Use the Desktop image"),
        click.option(
            "--wifi-strategy",
            type=click.Choice([k.value for k in WifiStrategyKind]),
            help="Render the WiFi profile on the device (runtime) or on this host",
        ),
        click.option("--profile", "profile_name", help="Load saved answers from a profile"),
        click.option("--save-profile", help="Save the non-secret answers under this name"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _prompt(value: str | None, label: str, default: str | None = None, secret: bool = False) -> str:
    if value:
        return value
    return click.prompt(
        label,
        default=default,
        hide_input=secret,
        confirmation_prompt=secret and label == "Password",
        show_default=default is not None,
    )


def collect_config(
    settings: FlasherSettings,
    device: str,
    options: dict[str, Any],
) -> tuple[ProvisioningConfig, WifiStrategyKind]:
    """Prompt for anything not given on the command line, then validate."""
    store = ProfileStore(PathResolver())
    profile = ProvisioningProfile()
    if options.get("profile_name"):
        profile = store.load(options["profile_name"])

    ssid = _prompt(options.get("ssid") or profile.wifi_ssid, "WiFi SSID")
    wifi_password = _prompt(options.get("wifi_password"), "WiFi password", secret=True)
    latitude = _prompt(options.get("latitude") or profile.latitude, "Latitude (decimal degrees)")
    longitude = _prompt(
        options.get("longitude") or profile.longitude, "Longitude (decimal degrees)"
    )
    hostname = _prompt(
        options.get("hostname") or profile.hostname, "Hostname", settings.default_hostname
    )
    username = _prompt(
        options.get("username") or profile.username, "Username", settings.default_username
    )
    password = _prompt(options.get("password"), "Password", secret=True)

    if options.get("desktop") is not None:
        variant = OsVariant.DESKTOP if options["desktop"] else OsVariant.LITE
    else:
        variant = profile.os_variant or OsVariant.LITE
    strategy = WifiStrategyKind(
        options.get("wifi_strategy") or profile.wifi_strategy or settings.wifi_strategy
    )

    config = ProvisioningConfig.capture(
        wifi_ssid=ssid,
        wifi_password=wifi_password,
        latitude=latitude,
        longitude=longitude,
        hostname=hostname,
        username=username,
        password=password,
        device=device,
        os_variant=variant,
    )
    if options.get("save_profile"):
        store.save(options["save_profile"], config.to_profile(strategy))
    return config, strategy


def _split_options(kwargs: dict[str, Any]) -> dict[str, Any]:
    keys = (
        "ssid",
        "wifi_password",
        "latitude",
        "longitude",
        "hostname",
        "username",
        "password",
        "desktop",
        "wifi_strategy",
        "profile_name",
        "save_profile",
    )
    return {key: kwargs.pop(key, None) for key in keys}


def print_config_summary(config: ProvisioningConfig, strategy: WifiStrategyKind, tz: str) -> None:
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Setting", style="cyan bold")
    table.add_column("Value", style="white")
    table.add_row("Target Device", config.device)
    table.add_row("OS Variant", f"Raspberry Pi OS {config.os_variant.label} (Bookworm)")
    table.add_row("WiFi SSID", config.wifi_ssid)
    table.add_row("WiFi Profile", strategy.value)
    table.add_row("Hostname", config.hostname)
    table.add_row("Username", config.username)
    table.add_row("Location", f"{config.latitude_text}, {config.longitude_text}")
    table.add_row("Timezone", tz)
    console.print(table)


def print_devices(devices: list[BlockDevice]) -> None:
    table = Table(title="Available disks")
    table.add_column("#", justify="right")
    table.add_column("Device", style="cyan")
    table.add_column("Size")
    table.add_column("Name")
    for index, device in enumerate(devices, start=1):
        table.add_row(str(index), device.device, device.size, device.name)
    console.print(table)


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """Flash Raspberry Pi OS and pre-configure it for the flight-tracker display."""
    try:
        settings = SettingsManager().load()
    except PreconditionError as e:
        _fail(str(e))
    if verbose:
        settings.logging.level = "DEBUG"
    configure_structlog(settings)
    ctx.obj = settings


@cli.command()
@handle_errors
def devices() -> None:
    """List disks that can be flashed."""
    candidates = list_candidate_devices(host_platform())
    if not candidates:
        console.print("[yellow]No target disks found. Insert an SD card and try again.[/yellow]")
        return
    print_devices(candidates)


@cli.command()
@click.argument("output_dir", type=click.Path(file_okay=False, path_type=Path))
@click.option(
    "--root-dir",
    type=click.Path(file_okay=False, path_type=Path),
    help="Root filesystem directory for the pre-rendered WiFi profile",
)
@provisioning_options
@click.pass_obj
@handle_errors
def render(
    settings: FlasherSettings, output_dir: Path, root_dir: Path | None, **kwargs: Any
) -> None:
    """Render the boot partition payload into OUTPUT_DIR."""
    config, kind = collect_config(settings, str(output_dir), _split_options(kwargs))
    strategy = select_wifi_strategy(kind, settings.wifi_country)
    if strategy.requires_root_mount and root_dir is None:
        raise PreconditionError("--root-dir is required with the prerendered WiFi strategy")

    seed_boot_partition(output_dir)
    if root_dir is not None:
        root_dir.mkdir(parents=True, exist_ok=True)
    generator = ArtifactGenerator(config, strategy)
    artifacts = generator.generate(output_dir, root_mount=root_dir)

    console.print(f"[green]✓ Boot partition payload written to {output_dir}[/green]")
    for path in (
        artifacts.ssh_marker,
        artifacts.userconf,
        artifacts.firmware_config,
        artifacts.firstrun,
        artifacts.cmdline,
        *artifacts.root_artifacts,
    ):
        console.print(f"  [dim]{path}[/dim]")


@cli.command()
@click.option(
    "--root",
    "root_dir",
    type=click.Path(file_okay=False, path_type=Path),
    help="Keep the scratch root filesystem here instead of a temporary directory",
)
@click.option(
    "--fail",
    "failing",
    multiple=True,
    help="Make a command fail during the rehearsal (e.g. 'git' or 'apt-get update')",
)
@click.option("--offline", is_flag=True, help="Simulate a device that never reaches the network")
@provisioning_options
@click.pass_obj
@handle_errors
def rehearse(
    settings: FlasherSettings,
    root_dir: Path | None,
    failing: tuple[str, ...],
    offline: bool,
    **kwargs: Any,
) -> None:
    """Run Stage-1 and Stage-2 against a scratch root filesystem."""
    with tempfile.TemporaryDirectory(prefix="flightflasher-rehearsal-") as scratch:
        root = root_dir or Path(scratch)
        config, kind = collect_config(settings, str(root), _split_options(kwargs))
        generator = ArtifactGenerator(config, select_wifi_strategy(kind, settings.wifi_country))
        rehearsal = Rehearsal(
            generator,
            root,
            failing_commands=failing,
            probe=(lambda host: False) if offline else (lambda host: True),
        )
        report = rehearsal.run()

        table = Table(title="Boot sequence")
        table.add_column("Boot")
        table.add_column("States")
        table.add_row("1", " → ".join(str(s) for s in report.stage_one))
        if report.stage_two:
            table.add_row("2", " → ".join(str(s) for s in report.stage_two))
        console.print(table)

        for unit, enabled in report.enabled_units.items():
            status = "[green]enabled[/green]" if enabled else "[dim]disabled[/dim]"
            console.print(f"  {unit}: {status}")
        console.print(f"[dim]{len(report.commands)} commands recorded[/dim]")
        if report.log_path is not None and report.log_path.exists():
            console.print(f"[dim]Stage-2 log: {report.log_path}[/dim]")

        if report.failure is not None:
            console.print(f"[red]✗ {report.failure}[/red]")
            sys.exit(1)
        console.print("[green]✓ Rehearsal reached steady state[/green]")


def _select_device(system: str, requested: str | None, dry_run: bool) -> str:
    if requested and dry_run:
        # Dry runs never probe disks
        return requested
    candidates = list_candidate_devices(system)
    if requested:
        return validate_target(requested, candidates).device
    if not candidates:
        raise PreconditionError("No target disks found. Insert an SD card and try again.")
    print_devices(candidates)
    chosen = click.prompt("Target device", default=candidates[0].device)
    try:
        return validate_target(chosen, candidates).device
    except PreconditionError:
        raise PreconditionError(f"{chosen} is not in the list of available disks") from None


@cli.command()
@click.option(
    "--image",
    "image_arg",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Use a local image (.img, .img.xz, .img.gz, .zip) instead of downloading",
)
@click.option("--device", help="Target disk (e.g. /dev/disk4 or /dev/sdb)")
@click.option("--dry-run", is_flag=True, help="Prompt and validate, but change nothing")
@click.option("-y", "--yes", is_flag=True, help="Skip the erase confirmation")
@provisioning_options
@click.pass_obj
@handle_errors
def flash(
    settings: FlasherSettings,
    image_arg: Path | None,
    device: str | None,
    dry_run: bool,
    yes: bool,
    **kwargs: Any,
) -> None:
    """Flash an SD card and stage the unattended bootstrap on it."""
    console.print(
        Panel.fit(
            "[bold cyan]Flight Tracker SD Flasher[/bold cyan]\n"
            "[dim]Raspberry Pi OS with unattended flight-tracker setup[/dim]",
            border_style="cyan",
        )
    )

    # Preconditions: nothing below may touch the card until confirmation
    system = host_platform()
    if not dry_run and not is_root():
        raise PreconditionError("This command must be run as root (sudo).")
    require_commands(*HOST_TOOLS[system])

    options = _split_options(kwargs)
    target = _select_device(system, device, dry_run)
    config, kind = collect_config(settings, target, options)
    strategy = select_wifi_strategy(kind, settings.wifi_country)
    if strategy.requires_root_mount and system != "Linux":
        raise PreconditionError(
            "The prerendered WiFi strategy mounts the ext4 root partition and needs a Linux host"
        )

    generator = ArtifactGenerator(config, strategy, hasher=PasswordHasher())
    generator.hasher.ensure_available()

    resolver = PathResolver()
    if image_arg is not None:
        check_image(image_arg)
        image_path = image_arg
    else:
        url = settings.image_url(config.os_variant)
        image_path = resolver.get_cached_image_path(url, settings.image_cache_dir)
        detect_format(image_path)

    console.print()
    print_config_summary(config, kind, generator.timezone)

    if not yes and not dry_run:
        console.print(
            Panel.fit(
                f"[bold yellow]WARNING: ALL DATA ON {target} WILL BE ERASED![/bold yellow]",
                border_style="red",
            )
        )
        click.confirm("Continue?", default=False, abort=True)

    if dry_run:
        raw = raw_device_path(target, system)
        console.print(f"[dim]\\[dry-run] Would use image: {image_path}[/dim]")
        console.print(f"[dim]\\[dry-run] Would run: {' '.join(dd_command(target, system))}[/dim]")
        console.print(f"[dim]\\[dry-run] Raw device: {raw}[/dim]")
        for write in generator.plan():
            console.print(f"[dim]\\[dry-run] Would write {write.target}: {write.action}[/dim]")
        console.print("[green]Done! (dry run, no changes were made)[/green]")
        return

    if image_arg is None:
        download_image(settings.image_url(config.os_variant), image_path, console=console)
        check_image(image_path)

    with DiskSession(target, system) as session:
        session.unmount_all()
        try:
            flash_image(image_path, target, system, console=console)
            boot_mount = session.mount_boot()
            root_mount = session.mount_root() if strategy.requires_root_mount else None
            console.print("[cyan]Configuring boot partition...[/cyan]")
            generator.generate(boot_mount, root_mount=root_mount)
        except OSError as e:
            raise FlashError(f"Writing to {target} failed: {e}") from e

    console.print(
        Panel.fit(
            "[bold green]✓ SD Card Ready![/bold green]\n\n"
            "Insert the card into the Pi and power it on.\n"
            "It reboots twice while it installs; the display starts on the third boot.\n\n"
            f"SSH: [cyan]ssh {config.username}@{config.hostname}.local[/cyan]\n"
            "[dim]Setup log on the device: /var/log/flight-tracker-setup.log[/dim]",
            border_style="green",
        )
    )


if __name__ == "__main__":
    cli()

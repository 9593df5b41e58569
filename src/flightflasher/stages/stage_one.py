"""Stage-1: firstrun.sh, run once by systemd.run on the cold first boot.

There is no network yet. Stage-1 sets identity, timezone and (with the
runtime WiFi strategy) the radio and connection profile, lays down the
Stage-2 script and units, clears its own kernel command line trigger and
lets systemd reboot.
"""

import re
from enum import StrEnum, auto
from typing import TYPE_CHECKING

from flightflasher.provisioning.firmware import remove_boot_trigger
from flightflasher.provisioning.layout import DEVICE_LAYOUT, TRIGGER_TOKENS, DeviceLayout
from flightflasher.provisioning.network import (
    PROFILE_MODE,
    NetworkProfile,
    runtime_profile_template,
)
from flightflasher.provisioning.shell import Heredoc
from flightflasher.provisioning.templates import ParameterPreamble, ScriptTemplate
from flightflasher.provisioning.units import service_unit, stage_two_unit
from flightflasher.stages import stage_two
from flightflasher.stages.context import DeviceContext
from flightflasher.stages.driver import Transition, render_body

if TYPE_CHECKING:
    from flightflasher.provisioning.wifi import WifiProvisioningStrategy

_HOSTS_LINE = re.compile(r"127\.0\.1\.1.*")


class Stage1State(StrEnum):
    COLD_START = auto()
    IDENTITY_SET = auto()
    TIMEZONE_SET = auto()
    REGDOMAIN_SET = auto()
    WIFI_CONFIGURED = auto()
    WIFI_ASSUMED_CONFIGURED = auto()
    UNITS_INSTALLED = auto()
    TRIGGER_CLEARED = auto()
    REBOOT = auto()


def identity_set(layout: DeviceLayout) -> Transition:
    shell = (
        f'echo "$CONF_HOSTNAME" > {layout.hostname_path}\n'
        f'sed -i "s/127\\.0\\.1\\.1.*/127.0.1.1\\t$CONF_HOSTNAME/" {layout.hosts_path}\n'
    )

    def apply(ctx: DeviceContext) -> None:
        hostname = ctx.param("CONF_HOSTNAME")
        ctx.write_text(ctx.layout.hostname_path, f"{hostname}\n")
        hosts = ctx.path(ctx.layout.hosts_path)
        hosts.write_text(_HOSTS_LINE.sub(f"127.0.1.1\t{hostname}", hosts.read_text()))

    return Transition(Stage1State.IDENTITY_SET, shell, apply)


def timezone_set(layout: DeviceLayout) -> Transition:
    shell = (
        f'ln -sf "{layout.zoneinfo_dir}/$CONF_TIMEZONE" {layout.localtime_path}\n'
        f'echo "$CONF_TIMEZONE" > {layout.timezone_path}\n'
    )

    def apply(ctx: DeviceContext) -> None:
        timezone = ctx.param("CONF_TIMEZONE")
        localtime = ctx.path(ctx.layout.localtime_path)
        localtime.parent.mkdir(parents=True, exist_ok=True)
        if localtime.is_symlink() or localtime.exists():
            localtime.unlink()
        localtime.symlink_to(f"{ctx.layout.zoneinfo_dir}/{timezone}")
        ctx.write_text(ctx.layout.timezone_path, f"{timezone}\n")

    return Transition(Stage1State.TIMEZONE_SET, shell, apply)


def regdomain_set(layout: DeviceLayout) -> Transition:
    crda = layout.regdomain_path
    shell = (
        f"if grep -q '^REGDOMAIN=' {crda} 2>/dev/null; then\n"
        f'    sed -i "s/^REGDOMAIN=.*/REGDOMAIN=$CONF_WIFI_COUNTRY/" {crda}\n'
        "else\n"
        f'    echo "REGDOMAIN=$CONF_WIFI_COUNTRY" >> {crda}\n'
        "fi\n"
        'iw reg set "$CONF_WIFI_COUNTRY" 2>/dev/null || true\n'
        "rfkill unblock wifi 2>/dev/null || true\n"
    )

    def apply(ctx: DeviceContext) -> None:
        country = ctx.param("CONF_WIFI_COUNTRY")
        path = ctx.path(ctx.layout.regdomain_path)
        lines = path.read_text().splitlines() if path.exists() else []
        if any(line.startswith("REGDOMAIN=") for line in lines):
            lines = [
                f"REGDOMAIN={country}" if line.startswith("REGDOMAIN=") else line
                for line in lines
            ]
        else:
            lines.append(f"REGDOMAIN={country}")
        ctx.write_text(ctx.layout.regdomain_path, "\n".join(lines) + "\n")
        ctx.best_effort(["iw", "reg", "set", country])
        ctx.best_effort(["rfkill", "unblock", "wifi"])

    return Transition(Stage1State.REGDOMAIN_SET, shell, apply)


def wifi_configured(layout: DeviceLayout) -> Transition:
    profile = layout.nm_profile_path
    writer = Heredoc(profile, runtime_profile_template(), "NM_PROFILE_EOF", expand=True)
    shell = (
        f"mkdir -p {layout.nm_connections_dir}\n"
        f"{writer.render()}"
        f"chmod 600 {profile}\n"
        "systemctl restart NetworkManager 2>/dev/null || true\n"
        "sleep 2\n"
        'nmcli connection up "$CONF_WIFI_SSID" 2>/dev/null || true\n'
    )

    def apply(ctx: DeviceContext) -> None:
        ssid = ctx.param("CONF_WIFI_SSID")
        text = NetworkProfile(ssid=ssid, psk=ctx.param("CONF_WIFI_PASS")).render()
        ctx.write_text(ctx.layout.nm_profile_path, text, mode=PROFILE_MODE)
        try:
            ctx.services.restart_service("NetworkManager")
        except Exception as e:  # activation is retried by NetworkManager itself
            ctx.note(f"Ignoring NetworkManager restart failure: {e}")
        ctx.sleep(2)
        ctx.best_effort(["nmcli", "connection", "up", ssid])

    return Transition(Stage1State.WIFI_CONFIGURED, shell, apply)


def wifi_assumed_configured(layout: DeviceLayout) -> Transition:
    profile = layout.nm_profile_path
    shell = (
        f"if [ -f {profile} ]; then\n"
        f"    chmod 600 {profile}\n"
        "else\n"
        '    echo "No pre-rendered WiFi profile found" >&2\n'
        "fi\n"
    )

    def apply(ctx: DeviceContext) -> None:
        path = ctx.path(ctx.layout.nm_profile_path)
        if path.exists():
            path.chmod(PROFILE_MODE)
        else:
            ctx.note("No pre-rendered WiFi profile found")

    return Transition(Stage1State.WIFI_ASSUMED_CONFIGURED, shell, apply)


def _stage_two_writer(layout: DeviceLayout) -> str:
    """Shell that reproduces stage_two_script() on the device.

    The header and body go through quoted heredocs; only the coordinate
    preamble is expanded from this script's own CONF_* variables.
    """
    target = layout.stage_two_script
    header = Heredoc(target, "#!/bin/bash\nset -e\n\n", "STAGE2_HEAD_EOF")
    variables = Heredoc(
        target,
        "".join(f'{name}="${{{name}}}"\n' for name in stage_two.PARAMETERS) + "\n",
        "STAGE2_VARS_EOF",
        expand=True,
        append=True,
    )
    body = Heredoc(
        target, stage_two.stage_two_body(layout).decode(), "STAGE2_BODY_EOF", append=True
    )
    return f"{header.render()}{variables.render()}{body.render()}chmod +x {target}\n"


def units_installed(layout: DeviceLayout) -> Transition:
    setup_unit = stage_two_unit(layout)
    app_unit = service_unit(layout)
    shell = (
        f"{_stage_two_writer(layout)}"
        f"{Heredoc(layout.stage_two_unit_path, setup_unit.render(), 'SETUP_UNIT_EOF').render()}"
        f"{Heredoc(layout.service_unit_path, app_unit.render(), 'SERVICE_UNIT_EOF').render()}"
        f"systemctl enable {setup_unit.name}\n"
    )

    def apply(ctx: DeviceContext) -> None:
        script = stage_two.stage_two_script(
            ctx.param("CONF_LATITUDE"), ctx.param("CONF_LONGITUDE"), ctx.layout
        )
        ctx.write_text(ctx.layout.stage_two_script, script.render(), mode=0o755)
        ctx.write_text(ctx.layout.stage_two_unit_path, stage_two_unit(ctx.layout).render())
        ctx.write_text(ctx.layout.service_unit_path, service_unit(ctx.layout).render())
        ctx.services.enable_service(ctx.layout.stage_two_unit)

    return Transition(Stage1State.UNITS_INSTALLED, shell, apply)


def _sed_literal(text: str) -> str:
    return re.sub(r"([.\[\]*^$\\])", r"\\\1", text)


def trigger_cleared(layout: DeviceLayout) -> Transition:
    cmdline = layout.cmdline_path
    expressions = " ".join(f"-e 's| *{_sed_literal(token)}||g'" for token in TRIGGER_TOKENS)
    shell = f"if [ -f {cmdline} ]; then\n    sed -i {expressions} {cmdline}\nfi\n"

    def apply(ctx: DeviceContext) -> None:
        path = ctx.path(ctx.layout.cmdline_path)
        if path.exists():
            path.write_text(remove_boot_trigger(path.read_text()))

    return Transition(Stage1State.TRIGGER_CLEARED, shell, apply)


def reboot(layout: DeviceLayout) -> Transition:
    # systemd.run_success_action=reboot performs the reboot once we exit 0
    shell = "exit 0\n"

    def apply(ctx: DeviceContext) -> None:
        ctx.services.reboot_system()

    return Transition(Stage1State.REBOOT, shell, apply)


def stage_one_transitions(
    strategy: "WifiProvisioningStrategy", layout: DeviceLayout = DEVICE_LAYOUT
) -> list[Transition]:
    return [
        identity_set(layout),
        timezone_set(layout),
        *strategy.network_transitions(layout),
        units_installed(layout),
        trigger_cleared(layout),
        reboot(layout),
    ]


def stage_one_script(
    parameters: ParameterPreamble,
    strategy: "WifiProvisioningStrategy",
    layout: DeviceLayout = DEVICE_LAYOUT,
) -> ScriptTemplate:
    return ScriptTemplate(parameters, render_body(stage_one_transitions(strategy, layout)))

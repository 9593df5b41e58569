"""Stage-2: the one-shot unit that installs the display application.

Runs on the first boot with networking. Output goes to the stage log
before anything else happens; every step is fatal except the status
display calls and the reachability wait, which gives up and carries on.
"""

import logging
from collections.abc import Callable
from enum import StrEnum, auto

from flightflasher.provisioning.layout import DEVICE_LAYOUT, DeviceLayout
from flightflasher.provisioning.shell import Heredoc
from flightflasher.provisioning.templates import (
    ParameterPreamble,
    ScriptTemplate,
    load_asset,
    render_asset,
)
from flightflasher.provisioning.units import service_unit
from flightflasher.stages.context import DeviceContext
from flightflasher.stages.driver import Transition, render_body

logger = logging.getLogger(__name__)

PARAMETERS = ("CONF_LATITUDE", "CONF_LONGITUDE")


class Stage2State(StrEnum):
    STARTED = auto()
    LOG_REDIRECTED = auto()
    NETWORK_WAITED = auto()
    PACKAGES_INSTALLED = auto()
    SOURCES_FETCHED = auto()
    DRIVER_BUILT = auto()
    DEPENDENCIES_INSTALLED = auto()
    SITE_CONFIG_RENDERED = auto()
    SERVICE_INSTALLED = auto()
    STAGE_DISABLED = auto()
    REBOOT = auto()


def wait_for_network(
    probe: Callable[[str], bool],
    host: str,
    attempts: int = 60,
    interval: float = 1.0,
    sleep: Callable[[float], None] | None = None,
    note: Callable[[str], None] | None = None,
) -> bool:
    """Probe `host` up to `attempts` times.

    Returns whether the host answered. Running out of attempts is not an
    error; the next step that needs the network fails on its own.
    """
    for attempt in range(1, attempts + 1):
        if probe(host):
            if note:
                note("Network is up.")
            return True
        if note:
            note(f"Waiting for network... ({attempt}/{attempts})")
        if sleep:
            sleep(interval)
    if note:
        note(f"No answer from {host} after {attempts} attempts; continuing")
    return False


def _status_shell(layout: DeviceLayout, message: str) -> str:
    return f'{layout.python} {layout.status_helper} "{message}" 2>/dev/null || true\n'


def _show_status(ctx: DeviceContext, message: str) -> None:
    ctx.best_effort([ctx.layout.python, ctx.layout.status_helper, message])


def site_config_text(latitude: str, longitude: str) -> str:
    return render_asset("config_local.py.j2", latitude=latitude, longitude=longitude)


def _log_redirected(layout: DeviceLayout) -> Transition:
    shell = (
        f"exec >> {layout.stage_two_log} 2>&1\n"
        'echo "=== Flight tracker setup started at $(date) ==="\n'
    )

    def apply(ctx: DeviceContext) -> None:
        ctx.note("=== Flight tracker setup started ===")

    return Transition(Stage2State.LOG_REDIRECTED, shell, apply)


def _network_waited(layout: DeviceLayout) -> Transition:
    attempts = layout.reachability_attempts
    shell = (
        f"for i in $(seq 1 {attempts}); do\n"
        f"    if ping -c1 -W2 {layout.reachability_host} >/dev/null 2>&1; then\n"
        '        echo "Network is up."\n'
        "        break\n"
        "    fi\n"
        f'    echo "Waiting for network... ($i/{attempts})"\n'
        f"    sleep {layout.reachability_interval}\n"
        "done\n"
    )

    def apply(ctx: DeviceContext) -> None:
        wait_for_network(
            ctx.probe,
            ctx.layout.reachability_host,
            attempts=ctx.layout.reachability_attempts,
            interval=ctx.layout.reachability_interval,
            sleep=ctx.sleep,
            note=ctx.note,
        )

    return Transition(Stage2State.NETWORK_WAITED, shell, apply)


def _packages_installed(layout: DeviceLayout) -> Transition:
    packages = " ".join(layout.system_packages)
    shell = f"apt-get update\napt-get install -y {packages}\n"

    def apply(ctx: DeviceContext) -> None:
        ctx.runner.run(["apt-get", "update"])
        ctx.runner.run(["apt-get", "install", "-y", *ctx.layout.system_packages])

    return Transition(Stage2State.PACKAGES_INSTALLED, shell, apply)


def _sources_fetched(layout: DeviceLayout) -> Transition:
    checkouts = ((layout.app_repo, layout.app_dir), (layout.driver_repo, layout.driver_dir))
    shell = "".join(
        f"if [ ! -d {directory} ]; then\n    git clone {repo} {directory}\nfi\n"
        for repo, directory in checkouts
    )

    def apply(ctx: DeviceContext) -> None:
        for repo, directory in (
            (ctx.layout.app_repo, ctx.layout.app_dir),
            (ctx.layout.driver_repo, ctx.layout.driver_dir),
        ):
            if ctx.path(directory).is_dir():
                ctx.note(f"{directory} already present; skipping clone")
                continue
            ctx.runner.run(["git", "clone", repo, directory])

    return Transition(Stage2State.SOURCES_FETCHED, shell, apply)


def _driver_built(layout: DeviceLayout) -> Transition:
    helper = Heredoc(layout.status_helper, load_asset("matrix_log.py.in"), "MATRIX_LOG_EOF")
    shell = (
        f"cd {layout.driver_dir}\n"
        f"make build-python PYTHON={layout.python}\n"
        f"make install-python PYTHON={layout.python}\n"
        f"{helper.render()}"
        f"chmod +x {layout.status_helper}\n"
        f"{_status_shell(layout, 'Matrix OK')}"
    )

    def apply(ctx: DeviceContext) -> None:
        cwd = ctx.layout.driver_dir
        ctx.runner.run(["make", "build-python", f"PYTHON={ctx.layout.python}"], cwd=cwd)
        ctx.runner.run(["make", "install-python", f"PYTHON={ctx.layout.python}"], cwd=cwd)
        ctx.write_text(ctx.layout.status_helper, load_asset("matrix_log.py.in"), mode=0o755)
        _show_status(ctx, "Matrix OK")

    return Transition(Stage2State.DRIVER_BUILT, shell, apply)


def _dependencies_installed(layout: DeviceLayout) -> Transition:
    shell = (
        f"{_status_shell(layout, 'Installing deps...')}"
        f"cd {layout.app_dir}\n"
        "pip3 install --break-system-packages -r requirements.txt 2>/dev/null || \\\n"
        "    pip3 install -r requirements.txt\n"
    )

    def apply(ctx: DeviceContext) -> None:
        _show_status(ctx, "Installing deps...")
        cwd = ctx.layout.app_dir
        if not ctx.best_effort(
            ["pip3", "install", "--break-system-packages", "-r", "requirements.txt"], cwd=cwd
        ):
            # Older pip releases do not know --break-system-packages
            ctx.runner.run(["pip3", "install", "-r", "requirements.txt"], cwd=cwd)

    return Transition(Stage2State.DEPENDENCIES_INSTALLED, shell, apply)


def _site_config_rendered(layout: DeviceLayout) -> Transition:
    writer = Heredoc(
        layout.site_config_path,
        site_config_text("${CONF_LATITUDE}", "${CONF_LONGITUDE}"),
        "SITE_CONFIG_EOF",
        expand=True,
    )
    shell = f"{writer.render()}{_status_shell(layout, 'Config written')}"

    def apply(ctx: DeviceContext) -> None:
        text = site_config_text(ctx.param("CONF_LATITUDE"), ctx.param("CONF_LONGITUDE"))
        ctx.write_text(ctx.layout.site_config_path, text)
        _show_status(ctx, "Config written")

    return Transition(Stage2State.SITE_CONFIG_RENDERED, shell, apply)


def _service_installed(layout: DeviceLayout) -> Transition:
    unit = service_unit(layout)
    writer = Heredoc(layout.service_unit_path, unit.render(), "SERVICE_UNIT_EOF")
    shell = f"{writer.render()}systemctl daemon-reload\nsystemctl enable {unit.name}\n"

    def apply(ctx: DeviceContext) -> None:
        ctx.write_text(ctx.layout.service_unit_path, service_unit(ctx.layout).render())
        ctx.services.daemon_reload()
        ctx.services.enable_service(ctx.layout.service_unit)

    return Transition(Stage2State.SERVICE_INSTALLED, shell, apply)


def _stage_disabled(layout: DeviceLayout) -> Transition:
    shell = f"systemctl disable {layout.stage_two_unit}\n"

    def apply(ctx: DeviceContext) -> None:
        ctx.services.disable_service(ctx.layout.stage_two_unit)

    return Transition(Stage2State.STAGE_DISABLED, shell, apply)


def _reboot(layout: DeviceLayout) -> Transition:
    shell = (
        'echo "=== Flight tracker setup complete at $(date) ==="\n'
        f"{_status_shell(layout, 'Setup done! Rebooting...')}"
        "sleep 2\n"
        "reboot\n"
    )

    def apply(ctx: DeviceContext) -> None:
        ctx.note("=== Flight tracker setup complete ===")
        _show_status(ctx, "Setup done! Rebooting...")
        ctx.sleep(2)
        ctx.services.reboot_system()

    return Transition(Stage2State.REBOOT, shell, apply)


def stage_two_transitions(layout: DeviceLayout = DEVICE_LAYOUT) -> list[Transition]:
    return [
        _log_redirected(layout),
        _network_waited(layout),
        _packages_installed(layout),
        _sources_fetched(layout),
        _driver_built(layout),
        _dependencies_installed(layout),
        _site_config_rendered(layout),
        _service_installed(layout),
        _stage_disabled(layout),
        _reboot(layout),
    ]


def stage_two_body(layout: DeviceLayout = DEVICE_LAYOUT) -> bytes:
    return render_body(stage_two_transitions(layout))


def stage_two_script(
    latitude: str, longitude: str, layout: DeviceLayout = DEVICE_LAYOUT
) -> ScriptTemplate:
    preamble = ParameterPreamble((("CONF_LATITUDE", latitude), ("CONF_LONGITUDE", longitude)))
    return ScriptTemplate(preamble, stage_two_body(layout))

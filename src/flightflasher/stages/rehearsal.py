"""Dry-run the whole boot sequence against a scratch root filesystem.

The generator writes into `<root>/boot/firmware`, then Stage-1 runs from
the parameters it parses back out of firstrun.sh, then Stage-2 runs from
the script Stage-1 installed. Nothing outside the scratch tree is touched
and no command is executed.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

from flightflasher.errors import StageAbortedError
from flightflasher.provisioning.generator import ArtifactGenerator, BootArtifactSet
from flightflasher.provisioning.layout import DeviceLayout
from flightflasher.provisioning.templates import ScriptTemplate
from flightflasher.stages.context import DeviceContext, RecordingCommandRunner
from flightflasher.stages.driver import StageDriver
from flightflasher.stages.stage_one import Stage1State, stage_one_transitions
from flightflasher.stages.stage_two import Stage2State, stage_two_transitions
from flightflasher.system.service_strategies import OfflineSystemdStrategy
from flightflasher.system.structlog_configurator import StageLogSink

logger = logging.getLogger(__name__)

STOCK_CMDLINE = (
    "console=serial0,115200 console=tty1 root=PARTUUID=00000000-02 rootfstype=ext4 "
    "fsck.repair=yes rootwait quiet init=/usr/lib/raspberrypi-sys-mods/firstboot\n"
)
STOCK_CONFIG = (
    "# For more options and information see\n"
    "# http://rpf.io/configurationdocs\n"
    "\n"
    "dtparam=audio=on\n"
)
STOCK_HOSTS = (
    "127.0.0.1\tlocalhost\n"
    "::1\t\tlocalhost ip6-localhost ip6-loopback\n"
    "\n"
    "127.0.1.1\traspberrypi\n"
)


def seed_boot_partition(boot_dir: Path) -> None:
    """Create stock cmdline.txt and config.txt where missing."""
    boot_dir.mkdir(parents=True, exist_ok=True)
    cmdline = boot_dir / "cmdline.txt"
    if not cmdline.exists():
        cmdline.write_text(STOCK_CMDLINE)
    config = boot_dir / "config.txt"
    if not config.exists():
        config.write_text(STOCK_CONFIG)


def seed_root_filesystem(root: Path, layout: DeviceLayout) -> None:
    """Just enough of a Raspberry Pi OS root for the stages to run against."""
    hosts = root / layout.hosts_path.lstrip("/")
    hosts.parent.mkdir(parents=True, exist_ok=True)
    if not hosts.exists():
        hosts.write_text(STOCK_HOSTS)
    (root / layout.unit_dir.lstrip("/")).mkdir(parents=True, exist_ok=True)
    seed_boot_partition(root / layout.boot_dir.lstrip("/"))


@dataclass
class RehearsalReport:
    artifacts: BootArtifactSet
    stage_one: list[StrEnum]
    stage_two: list[StrEnum] = field(default_factory=list)
    enabled_units: dict[str, bool] = field(default_factory=dict)
    service_actions: list[str] = field(default_factory=list)
    commands: list[str] = field(default_factory=list)
    log_path: Path | None = None
    failure: StageAbortedError | None = None

    @property
    def completed(self) -> bool:
        return (
            self.failure is None
            and bool(self.stage_two)
            and self.stage_two[-1] is Stage2State.REBOOT
        )


class Rehearsal:
    """Runs generator, Stage-1 and Stage-2 in sequence against `root`."""

    def __init__(
        self,
        generator: ArtifactGenerator,
        root: Path,
        failing_commands: tuple[str, ...] = (),
        probe: Callable[[str], bool] = lambda host: True,
    ):
        self.generator = generator
        self.root = root
        self.layout = generator.layout
        self.services = OfflineSystemdStrategy(root)
        self.runner = RecordingCommandRunner(failing=failing_commands, root=root)
        self.probe = probe

    def _context(self, parameters: dict[str, str]) -> DeviceContext:
        return DeviceContext(
            root=self.root,
            services=self.services,
            runner=self.runner,
            parameters=parameters,
            layout=self.layout,
            probe=self.probe,
        )

    def run(self) -> RehearsalReport:
        seed_root_filesystem(self.root, self.layout)
        boot_dir = self.root / self.layout.boot_dir.lstrip("/")
        root_mount = self.root if self.generator.strategy.requires_root_mount else None
        artifacts = self.generator.generate(boot_dir, root_mount=root_mount)

        first_boot = ScriptTemplate.parse_preamble(artifacts.firstrun.read_bytes())
        stage_one = StageDriver(
            "stage-1",
            Stage1State.COLD_START,
            stage_one_transitions(self.generator.strategy, self.layout),
            self._context(first_boot.as_dict()),
        )
        report = RehearsalReport(artifacts=artifacts, stage_one=stage_one.history)
        try:
            stage_one.run()
        except StageAbortedError as e:
            report.failure = e
            return self._finish(report)

        setup_script = self.root / self.layout.stage_two_script.lstrip("/")
        second_boot = ScriptTemplate.parse_preamble(setup_script.read_bytes())
        log_path = self.root / self.layout.stage_two_log.lstrip("/")
        stage_two = StageDriver(
            "stage-2",
            Stage2State.STARTED,
            stage_two_transitions(self.layout),
            self._context(second_boot.as_dict()),
            log_sink=StageLogSink(log_path),
        )
        report.stage_two = stage_two.history
        report.log_path = log_path
        try:
            stage_two.run()
        except StageAbortedError as e:
            report.failure = e
        return self._finish(report)

    def _finish(self, report: RehearsalReport) -> RehearsalReport:
        report.enabled_units = {
            unit: self.services.is_enabled(unit)
            for unit in (self.layout.stage_two_unit, self.layout.service_unit)
        }
        report.service_actions = list(self.services.actions)
        report.commands = self.runner.commands()
        return report

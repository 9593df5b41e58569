"""Execution context for running bootstrap transitions against a root tree."""

import abc
import logging
import subprocess
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path

from flightflasher.provisioning.layout import DEVICE_LAYOUT, DeviceLayout
from flightflasher.system.service_strategies import ServiceManagementStrategy
from flightflasher.system.structlog_configurator import StageLogSink

logger = logging.getLogger(__name__)


class CommandRunner(abc.ABC):
    """Runs external programs on behalf of a stage."""

    @abc.abstractmethod
    def run(self, argv: list[str], cwd: str | None = None) -> None:
        """Run a command.

        Raises:
            subprocess.CalledProcessError: If the command exits non-zero
        """
        pass


class RecordingCommandRunner(CommandRunner):
    """Records commands instead of executing them.

    Programs listed in `failing` exit non-zero. When `root` is given,
    `git clone` creates its destination under that root so later steps see
    the checkout.
    """

    def __init__(self, failing: Iterable[str] = (), root: Path | None = None):
        self.failing = set(failing)
        self.root = root
        self.calls: list[tuple[list[str], str | None]] = []

    def run(self, argv: list[str], cwd: str | None = None) -> None:
        self.calls.append((list(argv), cwd))
        if argv[0] in self.failing or " ".join(argv) in self.failing:
            raise subprocess.CalledProcessError(1, argv)
        if self.root is not None and argv[:2] == ["git", "clone"]:
            (self.root / argv[-1].lstrip("/")).mkdir(parents=True, exist_ok=True)

    def commands(self) -> list[str]:
        return [" ".join(argv) for argv, _ in self.calls]


@dataclass
class DeviceContext:
    """Everything a transition may touch: a root tree, services and commands."""

    root: Path
    services: ServiceManagementStrategy
    runner: CommandRunner
    parameters: dict[str, str] = field(default_factory=dict)
    layout: DeviceLayout = DEVICE_LAYOUT
    probe: Callable[[str], bool] = lambda host: True
    sleep: Callable[[float], None] = lambda seconds: None
    log: StageLogSink | None = None

    def path(self, device_path: str) -> Path:
        """Map an absolute device path into the root tree."""
        return self.root / device_path.lstrip("/")

    def param(self, name: str) -> str:
        try:
            return self.parameters[name]
        except KeyError:
            raise KeyError(f"Missing stage parameter {name}") from None

    def write_text(self, device_path: str, text: str | bytes, mode: int | None = None) -> Path:
        target = self.path(device_path)
        target.parent.mkdir(parents=True, exist_ok=True)
        if mode is not None:
            target.touch(mode=mode, exist_ok=True)
            target.chmod(mode)
        if isinstance(text, bytes):
            target.write_bytes(text)
        else:
            target.write_text(text)
        return target

    def note(self, message: str) -> None:
        """Record a progress line in the stage log, if one is attached."""
        if self.log is not None and self.log.is_open:
            self.log.write(message)
        logger.info(message)

    def best_effort(self, argv: list[str], cwd: str | None = None) -> bool:
        """Run a command whose failure is expected to be recovered later."""
        try:
            self.runner.run(argv, cwd=cwd)
        except (subprocess.CalledProcessError, OSError) as e:
            self.note(f"Ignoring failure of {' '.join(argv)}: {e}")
            return False
        return True

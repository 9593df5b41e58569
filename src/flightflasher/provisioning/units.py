"""systemd unit descriptors for the Stage-2 one-shot and the display service."""

from dataclasses import dataclass

from flightflasher.provisioning.layout import DEVICE_LAYOUT, DeviceLayout
from flightflasher.provisioning.templates import render_asset

NETWORK_ONLINE = "network-online.target"


@dataclass(frozen=True)
class UnitDescriptor:
    name: str
    description: str
    exec_start: str
    service_type: str = "simple"
    working_directory: str | None = None
    exec_start_pre: tuple[str, ...] = ()
    restart: str | None = None
    restart_sec: int | None = None
    user: str | None = None
    remain_after_exit: bool = False
    after: tuple[str, ...] = (NETWORK_ONLINE,)
    wants: tuple[str, ...] = (NETWORK_ONLINE,)
    wanted_by: str = "multi-user.target"

    def __post_init__(self) -> None:
        if self.restart and self.restart_sec is None:
            raise ValueError(f"{self.name}: Restart= needs RestartSec=")

    def render(self) -> str:
        return render_asset("unit.service.j2", unit=self)


def stage_two_unit(layout: DeviceLayout = DEVICE_LAYOUT) -> UnitDescriptor:
    """One-shot unit that runs Stage-2 on the first networked boot."""
    return UnitDescriptor(
        name=layout.stage_two_unit,
        description="Flight Tracker First-Boot Setup",
        service_type="oneshot",
        remain_after_exit=True,
        exec_start=layout.stage_two_script,
    )


def service_unit(layout: DeviceLayout = DEVICE_LAYOUT) -> UnitDescriptor:
    """Long-running display service: restarted on failure every 10s, forever."""
    return UnitDescriptor(
        name=layout.service_unit,
        description="Flight Tracker LED Display",
        working_directory=layout.app_dir,
        exec_start_pre=(f'-{layout.python} {layout.status_helper} "Starting tracker..."',),
        exec_start=f"{layout.python} main.py",
        restart="on-failure",
        restart_sec=10,
        user="root",
    )

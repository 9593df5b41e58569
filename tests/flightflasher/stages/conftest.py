import pytest

from flightflasher.provisioning.layout import DEVICE_LAYOUT
from flightflasher.stages.context import DeviceContext, RecordingCommandRunner
from flightflasher.stages.rehearsal import seed_root_filesystem
from flightflasher.system.service_strategies import OfflineSystemdStrategy


@pytest.fixture
def device_root(tmp_path):
    """A minimal Raspberry Pi OS root filesystem."""
    root = tmp_path / "rootfs"
    seed_root_filesystem(root, DEVICE_LAYOUT)
    return root


@pytest.fixture
def make_context(device_root):
    """Build a DeviceContext over the seeded root with a recording runner."""

    def factory(parameters=None, failing=(), probe=lambda host: True):
        return DeviceContext(
            root=device_root,
            services=OfflineSystemdStrategy(device_root),
            runner=RecordingCommandRunner(failing=failing, root=device_root),
            parameters=dict(parameters or {}),
            probe=probe,
        )

    return factory

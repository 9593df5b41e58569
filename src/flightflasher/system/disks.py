"""Target disk discovery and mount handling for macOS and Linux hosts."""

import json
import logging
import re
import subprocess
import tempfile
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from flightflasher.errors import FlashError, PreconditionError

logger = logging.getLogger(__name__)

CARD_TRANSPORTS = ("usb", "mmc")


@dataclass(frozen=True)
class BlockDevice:
    """A whole-disk device the card image may be written to."""

    device: str
    size: str = "unknown"
    name: str = ""


def _diskutil_info(target: str) -> dict[str, str]:
    """Parse `diskutil info` "Key: Value" lines into a dict."""
    result = subprocess.run(
        ["diskutil", "info", target], capture_output=True, text=True, check=False
    )
    info: dict[str, str] = {}
    if result.returncode != 0:
        return info
    for line in result.stdout.splitlines():
        if ":" not in line:
            continue
        key, value = line.split(":", 1)
        info.setdefault(key.strip(), value.strip())
    return info


def _macos_boot_disks(listing: str) -> set[str]:
    """The disk holding / plus the physical store backing its APFS container."""
    boot: set[str] = set()
    whole = _diskutil_info("/").get("Part of Whole")
    if not whole:
        return boot
    boot_disk = f"/dev/{whole}"
    boot.add(boot_disk)

    current = None
    for line in listing.splitlines():
        if match := re.match(r"^(/dev/disk\d+)", line):
            current = match.group(1)
        elif current and "Apple_APFS" in line and f"Container {whole}" in line:
            boot.add(current)
            break
    return boot


def list_macos_devices() -> list[BlockDevice]:
    """List candidate disks on macOS using diskutil."""
    listing = subprocess.run(
        ["diskutil", "list"], capture_output=True, text=True, check=True
    ).stdout
    boot = _macos_boot_disks(listing)

    devices = []
    for line in listing.splitlines():
        match = re.match(r"^(/dev/disk\d+)", line)
        if not match:
            continue
        device = match.group(1)
        if device in boot:
            continue
        info = _diskutil_info(device)
        if info.get("Virtual") == "Yes":
            continue
        devices.append(
            BlockDevice(
                device=device,
                size=info.get("Disk Size", "unknown"),
                name=info.get("Media Name", ""),
            )
        )
    return devices


def _linux_root_disk() -> str | None:
    source = subprocess.run(
        ["findmnt", "-n", "-o", "SOURCE", "/"], capture_output=True, text=True, check=False
    ).stdout.strip()
    if not source.startswith("/dev/"):
        return None
    parent = subprocess.run(
        ["lsblk", "-n", "-o", "PKNAME", source], capture_output=True, text=True, check=False
    ).stdout.strip()
    return f"/dev/{parent}" if parent else source


def _is_card_disk(entry: dict) -> bool:
    # Built-in SD readers (mmcblk) report RM=0, so the transport counts too
    if entry.get("rm") in (True, "1", 1):
        return True
    if (entry.get("tran") or "").lower() in CARD_TRANSPORTS:
        return True
    return entry["name"].startswith("mmcblk")


def list_linux_devices() -> list[BlockDevice]:
    """List whole disks on Linux that may hold an SD card, using lsblk.

    Removable disks, USB readers and built-in MMC readers qualify. The disk
    the host booted from never does.
    """
    result = subprocess.run(
        ["lsblk", "-J", "-d", "-o", "NAME,SIZE,TYPE,RM,TRAN,MODEL"],
        capture_output=True,
        text=True,
        check=True,
    )
    root_disk = _linux_root_disk()

    devices = []
    for entry in json.loads(result.stdout).get("blockdevices", []):
        if entry.get("type") != "disk":
            continue
        if not _is_card_disk(entry):
            continue
        device = f"/dev/{entry['name']}"
        if device == root_disk:
            continue
        devices.append(
            BlockDevice(
                device=device,
                size=entry.get("size") or "unknown",
                name=(entry.get("model") or "").strip(),
            )
        )
    return devices


def list_candidate_devices(system: str) -> list[BlockDevice]:
    """List disks that are safe to offer as flashing targets."""
    if system == "Darwin":
        return list_macos_devices()
    return list_linux_devices()


def validate_target(device: str, candidates: list[BlockDevice]) -> BlockDevice:
    """Return the candidate matching `device` or refuse the target."""
    for candidate in candidates:
        if candidate.device == device:
            return candidate
    raise PreconditionError(
        f"{device} is not a valid target disk (must be a non-boot physical disk)"
    )


def raw_device_path(device: str, system: str) -> str:
    """The unbuffered device node to write the image through."""
    if system == "Darwin":
        return re.sub(r"^/dev/disk", "/dev/rdisk", device)
    return device


def partition_path(device: str, index: int, system: str) -> str:
    """Device node of the Nth partition on a whole disk."""
    if system == "Darwin":
        return f"{device}s{index}"
    if device[-1].isdigit():  # mmcblk0, nvme0n1
        return f"{device}p{index}"
    return f"{device}{index}"


class DiskSession:
    """Mount bookkeeping for one target disk during a flashing session.

    Cleanup (unmount and eject) is best-effort: failures are logged and never
    mask the error that ended the session.
    """

    def __init__(self, device: str, system: str, sleep: Callable[[float], None] = time.sleep):
        self.device = device
        self.system = system
        self.sleep = sleep
        self.boot_mount: Path | None = None
        self.root_mount: Path | None = None
        self._owned_mounts: list[Path] = []

    def unmount_all(self) -> None:
        """Unmount every volume on the disk before the raw write."""
        if self.system == "Darwin":
            subprocess.run(
                ["diskutil", "unmountDisk", self.device], capture_output=True, check=False
            )
            return
        result = subprocess.run(
            ["lsblk", "-ln", "-o", "PATH,MOUNTPOINT", self.device],
            capture_output=True,
            text=True,
            check=False,
        )
        for line in result.stdout.splitlines():
            parts = line.split(None, 1)
            if len(parts) == 2 and parts[1].strip():
                subprocess.run(["umount", parts[0]], capture_output=True, check=False)

    def _mount_point_macos(self, partition: str) -> Path | None:
        mount_point = _diskutil_info(partition).get("Mount Point", "")
        return Path(mount_point) if mount_point else None

    def _mount_linux(self, partition: str, label: str) -> Path:
        mount_dir = Path(tempfile.mkdtemp(prefix=f"flightflasher-{label}-"))
        try:
            subprocess.run(["mount", partition, str(mount_dir)], check=True)
        except subprocess.CalledProcessError as e:
            mount_dir.rmdir()
            raise FlashError(f"Could not mount {partition}: {e}") from e
        self._owned_mounts.append(mount_dir)
        return mount_dir

    def mount_boot(self) -> Path:
        """Mount the FAT boot partition and return its mount point."""
        partition = partition_path(self.device, 1, self.system)
        if self.system == "Darwin":
            # Give macOS time to notice the new partition table
            self.sleep(3)
            subprocess.run(
                ["diskutil", "mountDisk", self.device], capture_output=True, check=False
            )
            self.sleep(2)
            mount_point = self._mount_point_macos(partition)
            if mount_point is None:
                subprocess.run(["diskutil", "mount", partition], capture_output=True, check=False)
                self.sleep(1)
                mount_point = self._mount_point_macos(partition)
            if mount_point is None or not mount_point.is_dir():
                raise FlashError(f"Could not find boot partition mount point for {partition}")
        else:
            mount_point = self._mount_linux(partition, "boot")
        self.boot_mount = mount_point
        logger.info(f"Boot partition mounted at {mount_point}")
        return mount_point

    def mount_root(self) -> Path:
        """Mount the ext4 root partition (Linux hosts only)."""
        if self.system != "Linux":
            raise PreconditionError("Mounting the ext4 root partition requires a Linux host")
        partition = partition_path(self.device, 2, self.system)
        self.root_mount = self._mount_linux(partition, "root")
        logger.info(f"Root partition mounted at {self.root_mount}")
        return self.root_mount

    def close(self, eject: bool = True) -> None:
        """Sync, unmount and eject; every step is best-effort."""
        subprocess.run(["sync"], check=False)
        if self.system == "Darwin":
            if self.boot_mount is not None:
                self._best_effort(["diskutil", "unmount", str(self.boot_mount)])
            if eject:
                self._best_effort(["diskutil", "eject", self.device])
        else:
            for mount_dir in reversed(self._owned_mounts):
                if self._best_effort(["umount", str(mount_dir)]):
                    try:
                        mount_dir.rmdir()
                    except OSError:
                        logger.debug(f"Leaving mount directory {mount_dir} in place")
            if eject:
                self._best_effort(["eject", self.device])
        self._owned_mounts.clear()
        self.boot_mount = None
        self.root_mount = None

    def _best_effort(self, cmd: list[str]) -> bool:
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, check=False)
        except OSError as e:
            logger.warning(f"{' '.join(cmd)} failed: {e}")
            return False
        if result.returncode != 0:
            logger.warning(f"{' '.join(cmd)} failed: {(result.stderr or '').strip()}")
            return False
        return True

    def __enter__(self) -> "DiskSession":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

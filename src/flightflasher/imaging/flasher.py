import logging
import subprocess
import time
from pathlib import Path

from rich.console import Console
from rich.progress import BarColumn, DownloadColumn, Progress, TextColumn, TimeElapsedColumn

from flightflasher.errors import FlashError
from flightflasher.imaging.decompress import open_image
from flightflasher.system.disks import raw_device_path

logger = logging.getLogger(__name__)

CHUNK_SIZE = 4 * 1024 * 1024


def dd_command(device: str, system: str) -> list[str]:
    """dd invocation writing stdin to the raw device."""
    if system == "Darwin":
        return ["dd", f"of={raw_device_path(device, system)}", "bs=1m"]
    return ["dd", f"of={raw_device_path(device, system)}", "bs=4M", "conv=fsync"]


def flash_image(
    image_path: Path, device: str, system: str, console: Console | None = None
) -> None:
    """Decompress an image into dd and sync.

    The device must already be unmounted. Any failure here leaves the card
    partially written.
    """
    console = console or Console()
    cmd = dd_command(device, system)
    console.print(f"[cyan]Flashing {image_path.name} to {cmd[1][3:]}...[/cyan]")
    logger.info(f"Running {' '.join(cmd)} from {image_path}")
    start_time = time.time()

    with (
        subprocess.Popen(cmd, stdin=subprocess.PIPE, stderr=subprocess.PIPE) as dd_proc,
        Progress(
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            DownloadColumn(),
            TimeElapsedColumn(),
            console=console,
        ) as progress,
    ):
        task = progress.add_task("Writing", total=None)
        assert dd_proc.stdin is not None
        try:
            with open_image(image_path) as stream:
                while chunk := stream.read(CHUNK_SIZE):
                    dd_proc.stdin.write(chunk)
                    progress.update(task, advance=len(chunk))
        except BrokenPipeError as e:
            raise FlashError(f"dd exited early while writing {device}") from e
        finally:
            dd_proc.stdin.close()
        stderr = dd_proc.stderr.read() if dd_proc.stderr else b""
        returncode = dd_proc.wait()

    if returncode != 0:
        raise FlashError(f"dd failed with exit code {returncode}: {stderr.decode().strip()}")

    subprocess.run(["sync"], check=True)

    duration = time.time() - start_time
    minutes, seconds = int(duration // 60), int(duration % 60)
    duration_str = f"{minutes}m {seconds}s" if minutes > 0 else f"{seconds}s"
    console.print(f"[green]✓ Image flashed successfully in {duration_str}[/green]")

import logging
from pathlib import Path

import requests
from rich.console import Console
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TextColumn,
    TimeElapsedColumn,
    TransferSpeedColumn,
)

logger = logging.getLogger(__name__)


def download_image(url: str, filepath: Path, console: Console | None = None) -> Path:
    """Download an OS image, reusing a cached file with the same name.

    The body is streamed to `<name>.part` and renamed once complete so an
    interrupted download is never mistaken for a cached image.

    Args:
        url: Image URL
        filepath: Destination inside the cache directory
        console: Rich console for progress output

    Returns:
        Path to the downloaded (or cached) image
    """
    console = console or Console()
    if filepath.exists():
        console.print(f"[green]Using cached image: {filepath}[/green]")
        return filepath

    filepath.parent.mkdir(parents=True, exist_ok=True)
    partial = filepath.with_name(f"{filepath.name}.part")
    console.print(f"[cyan]Downloading {filepath.name}...[/cyan]")
    logger.info(f"Downloading {url} to {partial}")

    with Progress(
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        DownloadColumn(),
        TransferSpeedColumn(),
        TimeElapsedColumn(),
        console=console,
    ) as progress:
        response = requests.get(url, stream=True, timeout=30)
        response.raise_for_status()

        total = int(response.headers.get("content-length", 0)) or None
        task = progress.add_task(f"Downloading {filepath.name}", total=total)

        with open(partial, "wb") as f:
            for chunk in response.iter_content(chunk_size=1024 * 1024):
                f.write(chunk)
                progress.update(task, advance=len(chunk))

    partial.rename(filepath)
    console.print(f"[green]Downloaded: {filepath}[/green]")
    return filepath

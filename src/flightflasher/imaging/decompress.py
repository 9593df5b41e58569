"""Open OS images as a stream of raw disk bytes, whatever their packaging."""

import gzip
import lzma
import zipfile
from collections.abc import Iterator
from contextlib import contextmanager
from enum import StrEnum
from pathlib import Path
from typing import BinaryIO

from flightflasher.errors import PreconditionError


class ImageFormat(StrEnum):
    XZ = ".img.xz"
    GZ = ".img.gz"
    ZIP = ".zip"
    RAW = ".img"


def detect_format(image_path: Path) -> ImageFormat:
    """Classify an image by file name.

    Raises:
        PreconditionError: For anything other than .img, .img.xz, .img.gz or .zip
    """
    name = image_path.name.lower()
    # Longest suffixes first so ".img.xz" is not mistaken for ".img"
    for fmt in (ImageFormat.XZ, ImageFormat.GZ, ImageFormat.ZIP, ImageFormat.RAW):
        if name.endswith(fmt.value):
            return fmt
    raise PreconditionError(f"Unsupported image format: {image_path}")


def zip_image_member(image_path: Path) -> str:
    """Name of the first .img member inside a zip archive."""
    try:
        with zipfile.ZipFile(image_path) as archive:
            for member in archive.namelist():
                if member.lower().endswith(".img"):
                    return member
    except zipfile.BadZipFile as e:
        raise PreconditionError(f"{image_path} is not a valid zip archive: {e}") from e
    raise PreconditionError(f"No .img file found inside {image_path}")


def check_image(image_path: Path) -> ImageFormat:
    """Validate an image before the destructive phase starts."""
    if not image_path.is_file():
        raise PreconditionError(f"Image file not found: {image_path}")
    fmt = detect_format(image_path)
    if fmt is ImageFormat.ZIP:
        zip_image_member(image_path)
    return fmt


@contextmanager
def open_image(image_path: Path) -> Iterator[BinaryIO]:
    """Yield a binary stream of the decompressed disk image."""
    fmt = detect_format(image_path)
    if fmt is ImageFormat.XZ:
        with lzma.open(image_path, "rb") as stream:
            yield stream  # type: ignore[misc]
    elif fmt is ImageFormat.GZ:
        with gzip.open(image_path, "rb") as stream:
            yield stream  # type: ignore[misc]
    elif fmt is ImageFormat.ZIP:
        member = zip_image_member(image_path)
        with zipfile.ZipFile(image_path) as archive, archive.open(member) as stream:
            yield stream  # type: ignore[misc]
    else:
        with open(image_path, "rb") as stream:
            yield stream

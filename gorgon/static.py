"""Static file inventory for templates.

Templates can look up any static file by its relative path through the
``static`` context variable, e.g. ``{{ static["images/logo.png"].width }}``.
Image dimensions are read from the file header with Pillow. A file that
cannot be inspected still appears, with zero size or dimensions, so a broken
image never stops the build.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from .assets import StaticFile, collect_static_files
from .concurrency import TaskGroup

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp"}


@dataclass(frozen=True)
class StaticFileInfo:
    """Metadata about one static file.

    Attributes:
        path: Path relative to the static root, ``/``-separated.
        size: Size in bytes.
        width: Image width in pixels, 0 if not an image.
        height: Image height in pixels, 0 if not an image.
    """

    path: str
    size: int = 0
    width: int = 0
    height: int = 0


def scan_static_files(
    static_dir: Path, parallelism: int | None = None
) -> dict[str, StaticFileInfo]:
    """Collect metadata for every file in the static directory.

    Args:
        static_dir: Static root directory.
        parallelism: Maximum files inspected at once.

    Returns:
        Mapping of relative path to StaticFileInfo; empty if the directory
        does not exist.

    Raises:
        StaticError: If the path exists but is not a directory.
    """
    return inspect_static_files(collect_static_files(Path(static_dir)) or [], parallelism)


def inspect_static_files(
    files: list[StaticFile], parallelism: int | None = None
) -> dict[str, StaticFileInfo]:
    """Collect metadata for already discovered static files."""
    if not files:
        return {}
    group = TaskGroup(max_workers=parallelism)
    infos = group.run((lambda _, f=f: scan_file(f)) for f in files)
    return {info.path: info for info in infos}


def scan_file(static_file: StaticFile) -> StaticFileInfo:
    """Return metadata for a single file, ignoring inspection errors."""
    try:
        size = static_file.path.stat().st_size
    except OSError:
        return StaticFileInfo(path=static_file.rel_path)

    if static_file.path.suffix.lower() not in IMAGE_EXTENSIONS:
        return StaticFileInfo(path=static_file.rel_path, size=size)

    try:
        with Image.open(static_file.path) as img:
            width, height = img.size
    except (OSError, UnidentifiedImageError, ValueError):
        return StaticFileInfo(path=static_file.rel_path, size=size)

    return StaticFileInfo(
        path=static_file.rel_path, size=size, width=width, height=height
    )

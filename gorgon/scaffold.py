"""Project scaffolding for Gorgon.

Copies the starter site bundled with the package (``scaffold_files/``) into
a directory. Existing files are never overwritten.
"""

from __future__ import annotations

import shutil
from pathlib import Path

SCAFFOLD_DIR = Path(__file__).parent / "scaffold_files"


def init_project(directory: Path) -> list[Path]:
    """Create a starter project.

    Args:
        directory: Target directory; created if missing.

    Returns:
        Paths of the files written, skipping ones that already existed.
    """
    written: list[Path] = []
    for src_path in sorted(SCAFFOLD_DIR.rglob("*")):
        if src_path.is_dir():
            continue
        rel_path = src_path.relative_to(SCAFFOLD_DIR)
        dest_path = Path(directory) / rel_path
        if dest_path.exists():
            continue
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(src_path, dest_path)
        written.append(dest_path)
    return written

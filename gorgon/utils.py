"""Utility functions for Gorgon.

Key functions:
    ensure_clean_dir: Ensure a directory exists and is empty.
    normalize_relpath: Canonical ``/``-separated form of a relative path.
"""

from __future__ import annotations

import posixpath
import shutil
from pathlib import Path


def ensure_clean_dir(path: Path) -> None:
    """Ensure a directory exists and is empty.

    If the directory exists, removes it with all its contents, then creates
    it again.

    Args:
        path: Directory path to clean or create.

    Raises:
        OSError: If the tree cannot be removed or the directory created.
    """
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.exists():
        shutil.rmtree(path)
    path.mkdir(parents=True, exist_ok=True)


def normalize_relpath(path: str) -> str:
    """Return the canonical form of a relative path for comparisons.

    Args:
        path: Relative path using ``/`` or ``\\`` separators.

    Returns:
        Normalized ``/``-separated path.

    Examples:
        >>> normalize_relpath("about/./index.html")
        'about/index.html'
    """
    return posixpath.normpath(path.replace("\\", "/"))

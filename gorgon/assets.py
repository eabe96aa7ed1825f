"""Static asset processing for Gorgon.

This module walks the static directory and hands every file to the processor
chosen by the ProcessorRegistry, in parallel. Files run through a shell
pipeline when a pattern matches and are copied otherwise.

Key components:
- StaticFile: A discovered file and its path relative to the static root.
- collect_static_files: Recursive walk that skips dotfiles.
- StaticPipeline: Parallel per-file processing with first-error-wins.
- process_static: Convenience wrapper used by the build.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from .concurrency import Deadline, TaskGroup
from .errors import PipelineError, StaticError
from .processors import ProcessorRegistry, create_registry

if TYPE_CHECKING:
    from .config import PipelineConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StaticFile:
    """A file found under the static root.

    Attributes:
        path: Absolute path of the file.
        rel_path: Path relative to the static root, ``/``-separated.
    """

    path: Path
    rel_path: str


def collect_static_files(static_dir: Path) -> list[StaticFile] | None:
    """List every file under the static directory.

    Entries whose name starts with ``.`` are skipped; for directories the
    whole subtree is skipped.

    Args:
        static_dir: Static root directory.

    Returns:
        Files sorted by relative path, or None if the directory does not exist.

    Raises:
        StaticError: If the path exists but is not a directory, or cannot be
            walked.
    """
    if not static_dir.exists():
        return None
    if not static_dir.is_dir():
        raise StaticError(f"static {static_dir}: path is not a directory")

    files: list[StaticFile] = []

    def _raise(exc: OSError) -> None:
        raise StaticError(f"walk static dir: {exc}") from exc

    for root, dirs, names in os.walk(static_dir, onerror=_raise):
        dirs[:] = [d for d in dirs if not d.startswith(".")]
        root_path = Path(root)
        for name in names:
            if name.startswith("."):
                continue
            path = root_path / name
            rel_path = path.relative_to(static_dir).as_posix()
            files.append(StaticFile(path=path, rel_path=rel_path))

    files.sort(key=lambda f: f.rel_path)
    return files


class StaticPipeline:
    """Processes the static directory into the output directory.

    Attributes:
        static_dir: Directory containing source assets.
        output_dir: Directory where processed assets are written.
        processor_registry: Registry choosing a processor per file.
        parallelism: Maximum number of files processed at once.
    """

    def __init__(
        self,
        static_dir: Path,
        output_dir: Path,
        processor_registry: ProcessorRegistry | None = None,
        parallelism: int | None = None,
    ):
        self.static_dir = Path(static_dir).resolve()
        self.output_dir = Path(output_dir).resolve()
        self.processor_registry = processor_registry or ProcessorRegistry()
        self.parallelism = parallelism

    def run(
        self,
        deadline: Deadline | None = None,
        files: list[StaticFile] | None = None,
    ) -> int:
        """Process every static file.

        Args:
            deadline: Optional deadline shared with the rest of the build.
            files: Files already collected from the static directory; the
                directory is walked when omitted.

        Returns:
            Number of files processed (0 when there is no static directory).

        Raises:
            StaticError: If the static path is not a directory.
            PipelineError: For the first file whose pipeline or copy failed.
        """
        if files is None:
            files = collect_static_files(self.static_dir)
        if files is None:
            logger.debug("No static directory at %s", self.static_dir)
            return 0

        group = TaskGroup(deadline, max_workers=self.parallelism)
        group.run(self._job(f) for f in files)
        return len(files)

    def _job(self, static_file: StaticFile):
        def run(deadline: Deadline) -> None:
            dest = self.output_dir / static_file.rel_path
            try:
                dest.parent.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise PipelineError(
                    f"create dir for {static_file.rel_path}: {exc}",
                    path=static_file.path,
                ) from exc
            processor = self.processor_registry.get_processor(static_file.rel_path)
            processor.process(static_file.path, dest, deadline)
            logger.debug("  Processed: %s", static_file.rel_path)

        return run


def process_static(
    static_dir: Path,
    output_dir: Path,
    pipelines: Iterable[PipelineConfig],
    deadline: Deadline | None = None,
    parallelism: int | None = None,
    files: list[StaticFile] | None = None,
) -> int:
    """Run the static pipeline with the configured pipelines.

    Args:
        static_dir: Static root directory (may not exist).
        output_dir: Output root directory.
        pipelines: Pipelines in declaration order.
        deadline: Optional deadline shared with the rest of the build.
        parallelism: Maximum concurrent files; defaults to the CPU count.
        files: Pre-collected files, see StaticPipeline.run.

    Returns:
        Number of files processed.
    """
    registry = create_registry(pipelines)
    pipeline = StaticPipeline(static_dir, output_dir, registry, parallelism)
    return pipeline.run(deadline, files)

"""Static file processors for Gorgon.

Each static file is handled by exactly one processor: the first configured
pipeline whose pattern matches it, or a plain copy when none does.

Key classes:
- BaseStaticProcessor: Interface shared by all processors.
- CommandPipelineProcessor: Runs a pipeline's shell commands in order.
- CopyProcessor: Copies a file byte-for-byte.
- ProcessorRegistry: Picks the processor for a file, first match wins.
"""

from __future__ import annotations

import shutil
from abc import ABC, abstractmethod
from collections.abc import Iterable
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

from .concurrency import Deadline
from .errors import PipelineError
from .pipeline import GlobPatternError, PipelineVars, glob_match, render_command, run_command

if TYPE_CHECKING:
    from .config import PipelineConfig


class BaseStaticProcessor(ABC):
    """Base class for static file processors.

    Subclasses decide whether they handle a file (by its path relative to the
    static root) and produce the destination file.
    """

    @abstractmethod
    def can_process(self, rel_path: str) -> bool:
        """Check if this processor handles the given file.

        Args:
            rel_path: Path relative to the static root, ``/``-separated.

        Returns:
            True if this processor should handle the file.
        """
        ...

    @abstractmethod
    def process(self, source: Path, dest: Path, deadline: Deadline | None = None) -> None:
        """Produce ``dest`` from ``source``.

        Args:
            source: Absolute source path.
            dest: Absolute destination path. Its directory already exists.
            deadline: Optional deadline bounding the work.

        Raises:
            PipelineError: If processing fails.
        """
        ...

    def ensure_dest_dir(self, dest: Path) -> None:
        """Ensure the parent directory of the destination exists."""
        dest.parent.mkdir(parents=True, exist_ok=True)


class CommandPipelineProcessor(BaseStaticProcessor):
    """Runs a configured pipeline's commands for matching files.

    A pattern containing ``/`` is matched against the whole relative path,
    otherwise only against the file name. A malformed pattern never matches.
    """

    def __init__(self, pipeline: PipelineConfig):
        self.pipeline = pipeline

    @property
    def match(self) -> str:
        return self.pipeline.match

    def can_process(self, rel_path: str) -> bool:
        name = rel_path if "/" in self.match else PurePosixPath(rel_path).name
        try:
            return glob_match(self.match, name)
        except GlobPatternError:
            return False

    def process(self, source: Path, dest: Path, deadline: Deadline | None = None) -> None:
        variables = PipelineVars.for_file(source, dest)
        for template in self.pipeline.commands:
            command = render_command(template, variables)
            run_command(command, deadline)


class CopyProcessor(BaseStaticProcessor):
    """Copies files without modification.

    This is the fallback for files no pipeline matches.
    """

    def can_process(self, rel_path: str) -> bool:
        return True

    def process(self, source: Path, dest: Path, deadline: Deadline | None = None) -> None:
        self.ensure_dest_dir(dest)
        try:
            shutil.copyfile(source, dest)
        except OSError as exc:
            raise PipelineError(f"copy to {dest}: {exc}", path=source) from exc


class ProcessorRegistry:
    """Ordered registry of static processors.

    Processors are consulted in registration order and the first one whose
    ``can_process`` accepts the file wins. The fallback handles anything left.
    """

    def __init__(self, fallback: BaseStaticProcessor | None = None):
        self._processors: list[BaseStaticProcessor] = []
        self.fallback = fallback or CopyProcessor()

    def register(self, processor: BaseStaticProcessor) -> None:
        self._processors.append(processor)

    def get_processor(self, rel_path: str) -> BaseStaticProcessor:
        """Return the processor for a file.

        Args:
            rel_path: Path relative to the static root, ``/``-separated.

        Returns:
            The first matching processor, or the fallback.
        """
        for processor in self._processors:
            if processor.can_process(rel_path):
                return processor
        return self.fallback

    def __len__(self) -> int:
        return len(self._processors)


def create_registry(pipelines: Iterable[PipelineConfig]) -> ProcessorRegistry:
    """Create a registry with one processor per pipeline, in declaration order.

    Args:
        pipelines: Configured pipelines.

    Returns:
        Configured ProcessorRegistry with a copy fallback.
    """
    registry = ProcessorRegistry()
    for pipeline in pipelines:
        registry.register(CommandPipelineProcessor(pipeline))
    return registry

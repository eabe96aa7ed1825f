"""Exception types for Gorgon.

Every failure the build can report derives from GorgonError, so callers
(the CLI in particular) can catch one type and still get file or source
context out of the specific subclass.
"""

from __future__ import annotations

from pathlib import Path


class GorgonError(Exception):
    """Base class for all Gorgon errors."""


class ConfigError(GorgonError):
    """The site configuration is missing, unparsable, or invalid."""


class BuildCancelled(GorgonError):
    """Work was abandoned because its deadline expired or a sibling failed."""


class FetchError(GorgonError):
    """A data source could not be resolved.

    Attributes:
        source: The source identifier (path or URL) that failed.
        message: Human-readable error message.
        key: Name of the fetch directive that requested the source, if known.
        status_code: HTTP status for non-200 responses, None otherwise.
    """

    def __init__(
        self,
        source: str,
        message: str,
        key: str | None = None,
        status_code: int | None = None,
    ):
        self.source = source
        self.message = message
        self.key = key
        self.status_code = status_code
        prefix = f"fetch {key!r} ({source})" if key else f"fetch {source}"
        super().__init__(f"{prefix}: {message}")


class RenderError(GorgonError):
    """A page failed to parse, execute, or write.

    Attributes:
        output: Output path of the page, relative to the output root.
        message: Human-readable error message.
        original_error: The original exception that was caught.
    """

    def __init__(
        self,
        output: str,
        message: str,
        original_error: Exception | None = None,
    ):
        self.output = output
        self.message = message
        self.original_error = original_error
        super().__init__(f"{output}: {message}")


class PipelineError(GorgonError):
    """A static file pipeline command or copy failed.

    Attributes:
        message: Human-readable error message.
        command: The rendered shell command, when a command failed.
        path: The static file being processed.
    """

    def __init__(
        self,
        message: str,
        command: str | None = None,
        path: Path | None = None,
    ):
        self.message = message
        self.command = command
        self.path = path
        where = f"command {command!r}" if command else str(path or "")
        super().__init__(f"{where}: {message}" if where else message)


class StaticError(GorgonError):
    """The static directory exists but cannot be walked."""


class BuildError(GorgonError):
    """Error during a site build, tagged with the phase that failed.

    Attributes:
        phase: One of ``config``, ``clean``, ``fetch``, ``render``, ``static``.
        message: Human-readable error message.
        original_error: The original exception that was caught.
    """

    def __init__(
        self,
        phase: str,
        message: str,
        original_error: Exception | None = None,
    ):
        self.phase = phase
        self.message = message
        self.original_error = original_error
        super().__init__(f"{phase}: {message}")

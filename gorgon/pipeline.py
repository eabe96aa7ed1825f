"""Static file pipeline primitives for Gorgon.

A pipeline pairs a glob pattern with shell commands. This module holds the
pieces that do not depend on how files are discovered:

- glob_match / validate_pattern: Glob matching where ``*`` and ``?`` stop at
  ``/``, with ``[...]`` classes and ``\\`` escapes.
- PipelineVars / render_command: Substitute ``{Src}``, ``{Dest}``, ``{Dir}``,
  ``{Name}``, ``{Ext}`` and ``{Base}`` into a command template.
- run_command: Run a rendered command through the shell, honouring the build
  deadline.
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path

from .concurrency import Deadline
from .errors import GorgonError, PipelineError

logger = logging.getLogger(__name__)

# How often a running command checks for cancellation, in seconds.
POLL_INTERVAL = 0.05


class GlobPatternError(GorgonError):
    """A glob pattern is malformed (bad class or trailing escape)."""


def validate_pattern(pattern: str) -> None:
    """Check a glob pattern for syntax errors.

    Args:
        pattern: Glob pattern to check.

    Raises:
        GlobPatternError: If a character class is unterminated or empty, a
            range is malformed, or the pattern ends with a lone backslash.
    """
    i = 0
    while i < len(pattern):
        c = pattern[i]
        if c == "\\":
            if i + 1 >= len(pattern):
                raise GlobPatternError(f"trailing backslash in {pattern!r}")
            i += 2
        elif c == "[":
            _, i = _match_class(pattern, i, "")
        else:
            i += 1


def glob_match(pattern: str, name: str) -> bool:
    """Match a name against a glob pattern.

    ``*`` matches any run of characters except ``/``, ``?`` matches one
    character except ``/``, ``[abc]``/``[a-z]``/``[^a-z]``/``[!a-z]`` match
    one character from (or outside) a class, and ``\\`` escapes the next
    character.

    Args:
        pattern: Glob pattern.
        name: Name or slash-separated relative path to test.

    Returns:
        True if the whole name matches the whole pattern.

    Raises:
        GlobPatternError: If the pattern is malformed.
    """
    validate_pattern(pattern)

    p = n = 0
    star_p = star_n = -1
    while n < len(name):
        if p < len(pattern):
            c = pattern[p]
            if c == "*":
                star_p, star_n = p, n
                p += 1
                continue
            if name[n] != "/" or c not in "?[":
                if c == "?":
                    p += 1
                    n += 1
                    continue
                if c == "[":
                    matched, end = _match_class(pattern, p, name[n])
                    if matched:
                        p = end
                        n += 1
                        continue
                elif c == "\\":
                    if pattern[p + 1] == name[n]:
                        p += 2
                        n += 1
                        continue
                elif c == name[n]:
                    p += 1
                    n += 1
                    continue
        # Backtrack: let the last star swallow one more character.
        if star_p >= 0 and name[star_n] != "/":
            star_n += 1
            p, n = star_p + 1, star_n
            continue
        return False

    while p < len(pattern) and pattern[p] == "*":
        p += 1
    return p == len(pattern)


def _match_class(pattern: str, start: int, ch: str) -> tuple[bool, int]:
    """Match one character against the class opening at ``pattern[start]``.

    Returns:
        (matched, index just past the closing bracket).
    """
    i = start + 1
    negate = i < len(pattern) and pattern[i] in "^!"
    if negate:
        i += 1

    matched = False
    count = 0
    while True:
        if i >= len(pattern):
            raise GlobPatternError(f"unterminated character class in {pattern!r}")
        if pattern[i] == "]" and count > 0:
            i += 1
            break
        lo, i = _class_char(pattern, i)
        hi = lo
        if i + 1 < len(pattern) and pattern[i] == "-" and pattern[i + 1] != "]":
            hi, i = _class_char(pattern, i + 1)
            if hi < lo:
                raise GlobPatternError(f"bad range {lo}-{hi} in {pattern!r}")
        if ch and lo <= ch <= hi:
            matched = True
        count += 1

    return matched != negate, i


def _class_char(pattern: str, i: int) -> tuple[str, int]:
    c = pattern[i]
    if c == "]":
        raise GlobPatternError(f"empty character class in {pattern!r}")
    if c == "\\":
        if i + 1 >= len(pattern):
            raise GlobPatternError(f"trailing backslash in {pattern!r}")
        return pattern[i + 1], i + 2
    return c, i + 1


@dataclass(frozen=True)
class PipelineVars:
    """Values substituted into pipeline command templates.

    Attributes:
        src: Absolute source path.
        dest: Absolute destination path.
        dir: Destination directory.
        name: File name with extension.
        ext: Extension including the dot ("" if none).
        base: File name without extension.
    """

    src: str
    dest: str
    dir: str
    name: str
    ext: str
    base: str

    @classmethod
    def for_file(cls, source: Path, dest: Path) -> PipelineVars:
        return cls(
            src=str(source),
            dest=str(dest),
            dir=str(dest.parent),
            name=source.name,
            ext=source.suffix,
            base=source.name[: len(source.name) - len(source.suffix)],
        )

    def fields(self) -> dict[str, str]:
        return {
            "Src": self.src,
            "Dest": self.dest,
            "Dir": self.dir,
            "Name": self.name,
            "Ext": self.ext,
            "Base": self.base,
        }


def render_command(template: str, variables: PipelineVars) -> str:
    """Substitute pipeline variables into a command template.

    Args:
        template: Command with ``{Src}``-style fields; ``{{``/``}}`` are
            literal braces.
        variables: Values for the current file.

    Returns:
        The rendered command string.

    Raises:
        PipelineError: On an unknown field or malformed template.
    """
    try:
        return template.format_map(variables.fields())
    except KeyError as exc:
        raise PipelineError(
            f"unknown field {exc.args[0]!r} in command template {template!r}"
        ) from exc
    except (ValueError, IndexError, AttributeError) as exc:
        raise PipelineError(f"bad command template {template!r}: {exc}") from exc


def run_command(command: str, deadline: Deadline | None = None) -> None:
    """Run a shell command, inheriting stdout and stderr.

    The process is killed if the deadline expires or is cancelled while it
    runs.

    Args:
        command: Rendered command string, handed to the shell as-is.
        deadline: Optional deadline bounding the command.

    Raises:
        PipelineError: If the command cannot start, exits non-zero, or is
            killed.
    """
    logger.debug("$ %s", command)
    try:
        proc = subprocess.Popen(command, shell=True)
    except OSError as exc:
        raise PipelineError(str(exc), command=command) from exc

    while True:
        try:
            returncode = proc.wait(timeout=POLL_INTERVAL)
            break
        except subprocess.TimeoutExpired:
            if deadline is not None and (deadline.cancelled or deadline.expired):
                proc.kill()
                proc.wait()
                reason = "cancelled" if deadline.cancelled else "deadline exceeded"
                raise PipelineError(reason, command=command) from None

    if returncode != 0:
        raise PipelineError(f"exit status {returncode}", command=command)

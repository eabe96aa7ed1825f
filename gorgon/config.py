"""Site configuration loading for Gorgon.

This module parses ``site.yaml`` into immutable dataclasses and validates it
before any build phase starts.

Example::

    global:
      layout: "_layout.html"
      data:
        site_name: "My Site"
      fetch:
        reset_css: "https://example.com/reset.css"

    pages:
      - template: "index.html"
        output: "index.html"
        data:
          title: "Home"
        fetch:
          readme: "data/readme.txt"

    static:
      pipelines:
        - match: "*.jpg"
          commands:
            - "cp {Src} {Dest}"

Key functions:
- load_config: Read, parse, and validate a configuration file.
- parse_config: Validate an already-parsed mapping.
"""

from __future__ import annotations

import posixpath
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError
from .pipeline import GlobPatternError, validate_pattern


@dataclass(frozen=True)
class GlobalConfig:
    """Site-wide settings.

    Attributes:
        layout: Default layout template for every page ("" for none).
        data: Literal data exposed to templates as ``global``.
        fetch: Mapping of data key to source, merged into ``global``.
    """

    layout: str = ""
    data: dict[str, Any] = field(default_factory=dict)
    fetch: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class PageConfig:
    """A single page to render.

    Attributes:
        template: Template path relative to the template directory.
        output: Output path relative to the output directory.
        layout: Layout override; empty means use the global layout.
        data: Literal data exposed to the template as ``page``.
        fetch: Mapping of data key to source, merged into ``page``.
    """

    template: str
    output: str
    layout: str = ""
    data: dict[str, Any] = field(default_factory=dict)
    fetch: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class PipelineConfig:
    """A glob pattern and the shell commands run for matching static files."""

    match: str
    commands: tuple[str, ...]


@dataclass(frozen=True)
class StaticConfig:
    pipelines: tuple[PipelineConfig, ...] = ()


@dataclass(frozen=True)
class SiteConfig:
    """The whole parsed ``site.yaml``."""

    global_: GlobalConfig = field(default_factory=GlobalConfig)
    pages: tuple[PageConfig, ...] = ()
    static: StaticConfig = field(default_factory=StaticConfig)


def load_config(path: Path) -> SiteConfig:
    """Load and validate a site configuration file.

    Args:
        path: Path to ``site.yaml``.

    Returns:
        The validated SiteConfig.

    Raises:
        ConfigError: If the file is missing, is not valid YAML, or fails
            validation.
    """
    try:
        with open(path, encoding="utf-8") as f:
            loaded = yaml.safe_load(f)
    except OSError as exc:
        raise ConfigError(f"read config file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"parse config file {path}: {exc}") from exc
    return parse_config(loaded or {})


def parse_config(raw: Any) -> SiteConfig:
    """Build a SiteConfig from a parsed YAML document.

    Args:
        raw: The document, expected to be a mapping.

    Returns:
        The validated SiteConfig.

    Raises:
        ConfigError: On a structural or validation problem.
    """
    if not isinstance(raw, dict):
        raise ConfigError("config root must be a mapping")

    global_raw = _mapping(raw.get("global"), "global")
    global_config = GlobalConfig(
        layout=_string(global_raw.get("layout"), "global.layout"),
        data=_mapping(global_raw.get("data"), "global.data"),
        fetch=_fetch_map(global_raw.get("fetch"), "global.fetch"),
    )

    pages_raw = raw.get("pages") or []
    if not isinstance(pages_raw, list):
        raise ConfigError("pages must be a list")
    pages = tuple(_parse_page(item, i) for i, item in enumerate(pages_raw))

    static_raw = _mapping(raw.get("static"), "static")
    pipelines_raw = static_raw.get("pipelines") or []
    if not isinstance(pipelines_raw, list):
        raise ConfigError("static.pipelines must be a list")
    pipelines = tuple(
        _parse_pipeline(item, i) for i, item in enumerate(pipelines_raw)
    )

    return SiteConfig(
        global_=global_config,
        pages=pages,
        static=StaticConfig(pipelines=pipelines),
    )


def _parse_page(raw: Any, index: int) -> PageConfig:
    where = f"pages[{index}]"
    raw = _mapping(raw, where)
    template = _string(raw.get("template"), f"{where}.template")
    output = _string(raw.get("output"), f"{where}.output")
    if not template:
        raise ConfigError(f"{where}: template is required")
    if not output:
        raise ConfigError(f"{where}: output is required")
    if escapes_root(output):
        raise ConfigError(
            f"{where}: output path must not escape output directory: {output}"
        )
    return PageConfig(
        template=template,
        output=output,
        layout=_string(raw.get("layout"), f"{where}.layout"),
        data=_mapping(raw.get("data"), f"{where}.data"),
        fetch=_fetch_map(raw.get("fetch"), f"{where}.fetch"),
    )


def _parse_pipeline(raw: Any, index: int) -> PipelineConfig:
    where = f"static.pipelines[{index}]"
    raw = _mapping(raw, where)
    match = _string(raw.get("match"), f"{where}.match")
    if not match:
        raise ConfigError(f"{where}: pipeline match pattern is required")
    try:
        validate_pattern(match)
    except GlobPatternError as exc:
        raise ConfigError(
            f"{where}: pipeline match pattern is invalid: {match}"
        ) from exc

    commands = raw.get("commands") or []
    if not isinstance(commands, list) or not all(
        isinstance(c, str) for c in commands
    ):
        raise ConfigError(f"{where}.commands must be a list of strings")
    if not commands:
        raise ConfigError(f"{where}: pipeline must have at least one command")
    return PipelineConfig(match=match, commands=tuple(commands))


def escapes_root(output: str) -> bool:
    """Check whether an output path is absolute or climbs out of its root.

    Args:
        output: Output path as written in the config.

    Returns:
        True if writing ``output`` under a root could land outside it.
    """
    normalized = output.replace("\\", "/")
    if normalized.startswith("/") or Path(output).is_absolute():
        return True
    cleaned = posixpath.normpath(normalized)
    return cleaned == ".." or cleaned.startswith("../")


def _mapping(value: Any, where: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{where} must be a mapping")
    return {str(k): v for k, v in value.items()}


def _string(value: Any, where: str) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ConfigError(f"{where} must be a string")
    return value


def _fetch_map(value: Any, where: str) -> dict[str, str]:
    mapping = _mapping(value, where)
    for key, source in mapping.items():
        if not isinstance(source, str) or not source:
            raise ConfigError(f"{where}.{key} must be a non-empty string")
    return mapping

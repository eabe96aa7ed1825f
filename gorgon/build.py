"""Site building functionality for Gorgon.

This module drives a full build. Each phase runs to completion (or to its
first failure) before the next one starts:

1. Load ``site.yaml`` and derive the template, static, and output
   directories from its location.
2. Optionally remove the previous output.
3. Resolve every fetch source used anywhere in the config, in parallel.
4. Build the global data from literal data and fetched content.
5. Walk the static directory once for the template inventory.
6. Render every page in parallel.
7. Run the static pipeline over the files found in step 5.

All fetch, render, and pipeline work shares one deadline.

Key functions:
- build_site: Main function to build the entire site.
- collect_fetch_sources: De-duplicated union of all fetch sources.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any

import requests

from .assets import collect_static_files, process_static
from .concurrency import Deadline, TaskGroup
from .config import PageConfig, SiteConfig, load_config
from .errors import (
    BuildCancelled,
    BuildError,
    ConfigError,
    FetchError,
    PipelineError,
    RenderError,
    StaticError,
)
from .fetcher import Fetcher
from .static import StaticFileInfo, inspect_static_files
from .templates import TemplateData, TemplateEngine, render_page
from .utils import ensure_clean_dir, normalize_relpath

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = "site.yaml"
DEFAULT_TIMEOUT = 30.0
DEFAULT_DIRS = {
    "template_dir": "templates",
    "static_dir": "static",
    "output_dir": "public",
}


@dataclass
class BuildOptions:
    """Options for one build.

    Attributes:
        config_path: Path to ``site.yaml``.
        template_dir: Template root; defaults to ``templates/`` next to the config.
        static_dir: Static root; defaults to ``static/`` next to the config.
        output_dir: Output root; defaults to ``public/`` next to the config.
        timeout: Seconds allowed for fetch, render, and static work.
        clean: Remove the output directory before building.
        parallelism: Maximum concurrent jobs per phase; defaults to the CPU count.
        strict: Treat undefined template variables as errors.
        session: Optional requests session used for HTTP sources.
    """

    config_path: Path = Path(DEFAULT_CONFIG)
    template_dir: Path | None = None
    static_dir: Path | None = None
    output_dir: Path | None = None
    timeout: float | None = DEFAULT_TIMEOUT
    clean: bool = False
    parallelism: int | None = None
    strict: bool = False
    session: requests.Session | None = None

    def resolved(self) -> BuildOptions:
        """Return a copy with directory and timeout defaults filled in."""
        config_path = Path(self.config_path)
        base_dir = config_path.parent
        dirs = {
            attr: Path(getattr(self, attr) or base_dir / default)
            for attr, default in DEFAULT_DIRS.items()
        }
        return BuildOptions(
            config_path=config_path,
            timeout=self.timeout or DEFAULT_TIMEOUT,
            clean=self.clean,
            parallelism=self.parallelism,
            strict=self.strict,
            session=self.session,
            **dirs,
        )


@dataclass
class BuildResult:
    """Result of a site build operation.

    Attributes:
        pages: Paths of every rendered page.
        output_dir: Directory where the site was built.
        sources: Number of distinct fetch sources resolved.
        static_files: Number of static files processed.
    """

    pages: list[Path]
    output_dir: Path
    sources: int
    static_files: int


def build_site(options: BuildOptions) -> BuildResult:
    """Build the entire static site.

    Args:
        options: Build options; unset directories and timeout get defaults.

    Returns:
        BuildResult describing what was produced.

    Raises:
        BuildError: For the first failure, tagged with its phase.
    """
    opts = options.resolved()
    logger.info("Loading config: %s", opts.config_path)
    try:
        config = load_config(opts.config_path)
    except ConfigError as exc:
        raise BuildError("config", str(exc), exc) from exc

    logger.info("Templates: %s", opts.template_dir)
    logger.info("Output:    %s", opts.output_dir)

    if opts.clean:
        logger.info("Cleaning output directory...")
        try:
            ensure_clean_dir(opts.output_dir)
        except OSError as exc:
            raise BuildError("clean", f"clean output dir: {exc}", exc) from exc

    deadline = Deadline(opts.timeout)
    fetcher = Fetcher(opts.config_path.parent, session=opts.session)

    sources = collect_fetch_sources(config)
    if sources:
        logger.info("Fetching %d source(s) in parallel...", len(sources))
        try:
            _prefetch(fetcher, sources, deadline, opts.parallelism)
        except (FetchError, BuildCancelled) as exc:
            raise BuildError("fetch", str(exc), exc) from exc

    try:
        global_data = _merge_fetched(
            config.global_.data, config.global_.fetch, fetcher, deadline, "global"
        )
    except (FetchError, BuildCancelled) as exc:
        raise BuildError("fetch", str(exc), exc) from exc

    # One walk serves both the template inventory and the pipeline. A bad
    # static root is reported in the static phase, after rendering.
    static_error: StaticError | None = None
    try:
        files = collect_static_files(opts.static_dir)
    except StaticError as exc:
        files, static_error = None, exc
    static_info = inspect_static_files(files or [], opts.parallelism)
    _check_destinations(config, static_info)

    pages = _render_pages(
        config, opts, fetcher, MappingProxyType(global_data), static_info, deadline
    )

    logger.info("Processing static files...")
    if static_error is not None:
        raise BuildError("static", str(static_error), static_error) from static_error
    try:
        static_files = process_static(
            opts.static_dir,
            opts.output_dir,
            config.static.pipelines,
            deadline,
            parallelism=opts.parallelism,
            files=files or [],
        )
    except (PipelineError, StaticError, BuildCancelled) as exc:
        raise BuildError("static", str(exc), exc) from exc

    logger.info("Done!")
    return BuildResult(
        pages=pages,
        output_dir=opts.output_dir,
        sources=len(sources),
        static_files=static_files,
    )


def collect_fetch_sources(config: SiteConfig) -> dict[str, str]:
    """Collect every fetch source in the config, de-duplicated by source.

    Args:
        config: Parsed site configuration.

    Returns:
        Mapping of each distinct source string to the label of its first use
        (``global.<key>`` or ``<output>.<key>``).
    """
    sources: dict[str, str] = {}

    def add(label: str, source: str) -> None:
        if source not in sources:
            logger.info("Fetching %s: %s", label, source)
            sources[source] = label

    for key, source in config.global_.fetch.items():
        add(f"global.{key}", source)
    for page in config.pages:
        for key, source in page.fetch.items():
            add(f"{page.output}.{key}", source)
    return sources


def _prefetch(
    fetcher: Fetcher,
    sources: Mapping[str, str],
    deadline: Deadline,
    parallelism: int | None,
) -> None:
    """Warm the fetch cache with every source, naming failures by label."""
    try:
        fetcher.resolve_fetch_map({s: s for s in sources}, deadline, max_workers=parallelism)
    except FetchError as exc:
        raise FetchError(
            exc.source,
            exc.message,
            key=sources.get(exc.key, exc.key),
            status_code=exc.status_code,
        ) from exc


def _merge_fetched(
    data: Mapping[str, Any],
    fetch: Mapping[str, str],
    fetcher: Fetcher,
    deadline: Deadline,
    scope: str,
) -> dict[str, Any]:
    """Merge literal data with fetched content; fetched keys win."""
    merged = dict(data)
    for key, source in fetch.items():
        try:
            merged[key] = fetcher.fetch(source, deadline)
        except FetchError as exc:
            raise FetchError(
                source, exc.message, key=f"{scope}.{key}", status_code=exc.status_code
            ) from exc
    return merged


def _check_destinations(config: SiteConfig, static_info: Mapping[str, StaticFileInfo]) -> None:
    """Reject configs where two jobs would write the same output file."""
    owners: dict[str, str] = {}
    for i, page in enumerate(config.pages):
        dest = normalize_relpath(page.output)
        if dest in owners:
            raise BuildError(
                "config",
                f"pages[{i}]: output {page.output!r} already produced by {owners[dest]}",
            )
        owners[dest] = f"pages[{i}]"
    for rel_path in static_info:
        if rel_path in owners:
            raise BuildError(
                "config",
                f"static file {rel_path!r} collides with output of {owners[rel_path]}",
            )


def _render_pages(
    config: SiteConfig,
    opts: BuildOptions,
    fetcher: Fetcher,
    global_data: Mapping[str, Any],
    static_info: Mapping[str, StaticFileInfo],
    deadline: Deadline,
) -> list[Path]:
    logger.info("Building %d page(s)...", len(config.pages))
    engine = TemplateEngine(opts.template_dir, strict=opts.strict)

    def job(page: PageConfig):
        def run(task_deadline: Deadline) -> Path:
            page_data = _merge_fetched(
                page.data, page.fetch, fetcher, task_deadline, page.output
            )
            data = TemplateData(global_=global_data, page=page_data, static=static_info)
            path = render_page(
                opts.template_dir,
                page,
                config.global_.layout,
                data,
                opts.output_dir,
                engine=engine,
            )
            logger.info("  Generated: %s", page.output)
            return path

        return run

    group = TaskGroup(deadline, max_workers=opts.parallelism)
    try:
        return group.run(job(page) for page in config.pages)
    except (RenderError, FetchError, BuildCancelled) as exc:
        raise BuildError("render", str(exc), exc) from exc

"""Command-line interface for Gorgon.

This module defines the CLI commands using the Click framework.

Commands:
- build: Build the site into the output directory.
- init: Scaffold a new Gorgon project.
"""

from __future__ import annotations

import logging
from pathlib import Path

import click

from . import __version__

logger = logging.getLogger("gorgon")


class ClickEchoHandler(logging.Handler):
    """Logging handler that writes through click.echo to stderr."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            click.echo(self.format(record), err=True)
        except Exception:
            self.handleError(record)


def _configure_logging(verbose: bool) -> None:
    """Send gorgon log records to stderr as bare messages."""
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    if not any(isinstance(h, ClickEchoHandler) for h in logger.handlers):
        handler = ClickEchoHandler()
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)


@click.group()
@click.version_option(version=__version__, prog_name="gorgon")
def cli():
    """Gorgon static site generator."""


@cli.command()
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path),
    default="site.yaml",
    show_default=True,
    help="Path to the config file",
)
@click.option("--templates", "template_dir", type=click.Path(path_type=Path), help="Templates directory")
@click.option("--static", "static_dir", type=click.Path(path_type=Path), help="Static directory")
@click.option("--output", "output_dir", type=click.Path(path_type=Path), help="Output directory")
@click.option(
    "--timeout",
    type=float,
    default=30.0,
    show_default=True,
    help="Seconds allowed for fetching, rendering, and static processing",
)
@click.option("--clean", is_flag=True, help="Remove the output directory first")
@click.option("--parallelism", type=click.IntRange(min=1), help="Maximum parallel jobs per phase")
@click.option("--strict", is_flag=True, help="Fail on undefined template variables")
@click.option("-v", "--verbose", is_flag=True, help="Log every fetch, command, and file")
def build(
    config_path: Path,
    template_dir: Path | None,
    static_dir: Path | None,
    output_dir: Path | None,
    timeout: float,
    clean: bool,
    parallelism: int | None,
    strict: bool,
    verbose: bool,
):
    """Build the site into the output directory."""
    from .build import BuildError, BuildOptions, build_site

    _configure_logging(verbose)
    options = BuildOptions(
        config_path=config_path,
        template_dir=template_dir,
        static_dir=static_dir,
        output_dir=output_dir,
        timeout=timeout,
        clean=clean,
        parallelism=parallelism,
        strict=strict,
    )
    try:
        result = build_site(options)
    except BuildError as exc:
        click.echo(click.style("Build failed:", fg="red", bold=True), err=True)
        click.echo(click.style(f"  Phase: {exc.phase}", fg="yellow"), err=True)
        click.echo(click.style(f"  Error: {exc.message}", fg="white"), err=True)
        raise SystemExit(1) from None
    click.echo(
        f"Built {len(result.pages)} page(s) and {result.static_files} static file(s) "
        f"into {result.output_dir}"
    )


@cli.command()
@click.argument("directory", required=False, default=".", type=click.Path(path_type=Path))
def init(directory: Path):
    """Scaffold a new Gorgon project."""
    from .scaffold import init_project

    written = init_project(directory)
    for path in written:
        click.echo(f"  Created: {path}")
    click.echo(f"Initialized new gorgon project in {directory}")


def main():
    """Entry point for the CLI application."""
    cli()

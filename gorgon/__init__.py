"""Gorgon static site generator.

Gorgon reads a declarative ``site.yaml``, renders HTML pages from Jinja2
templates bound to per-page and global data (including remotely or locally
fetched content), and publishes a static asset tree next to the rendered pages.

The build runs in three parallel phases, each of which fails as a whole on the
first error:

- fetch: every data source referenced by the config is resolved once.
- render: every page is rendered against its layout.
- static: every static file is copied or run through a shell pipeline.
"""

__all__ = ["__version__"]
__version__ = "0.1.0"

"""Page rendering for Gorgon.

This module uses Jinja2 to render pages. Files in the template root whose name
starts with ``_`` are shared templates: layouts and partials. A page is
rendered either on its own or, when a layout applies, as a child of the
layout so that its ``content`` block fills the layout's ``content`` block::

    {# _layout.html #}
    <html><body>{% block content %}{% endblock %}</body></html>

    {# index.html #}
    {% block content %}<h1>{{ page.title }}</h1>{% endblock %}

Templates see three variables: ``global`` (site-wide data, read-only),
``page`` (this page's data) and ``static`` (the static file inventory).
Values are escaped for the context they land in (see ``gorgon.escaping``):
HTML text and attributes use Jinja autoescaping, ``<script>`` bodies and
``on*`` attributes use ``escape_js``, ``<style>`` bodies and ``style``
attributes use ``escape_css``, and URL attributes such as ``href`` and ``src``
use ``escape_url``. Each context has its own raw opt-out: ``raw`` for HTML,
``raw_css`` for CSS, ``raw_js`` for JavaScript and ``raw_url`` for URLs.

Key components:
- TemplateData: The data bound to one render.
- TemplateEngine: Jinja2 environment for one template root.
- render_page: Render a page and write it under the output root.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from jinja2 import (
    Environment,
    FileSystemLoader,
    StrictUndefined,
    TemplateError,
    TemplateNotFound,
    TemplateSyntaxError,
    Undefined,
)
from markupsafe import Markup

from .errors import RenderError
from .escaping import ContextualEscapeExtension, RawCSS, RawJS, RawURL

if TYPE_CHECKING:
    from .config import PageConfig
    from .static import StaticFileInfo

logger = logging.getLogger(__name__)

SHARED_PREFIX = "_"
CONTENT_BLOCK = "content"


def raw(value: Any) -> Markup:
    """Mark an HTML fragment as trusted so it is not escaped."""
    return Markup(str(value))


def raw_css(value: Any) -> RawCSS:
    """Mark a CSS fragment as trusted in CSS contexts."""
    return RawCSS(str(value))


def raw_js(value: Any) -> RawJS:
    """Mark a JavaScript fragment as trusted in script contexts."""
    return RawJS(str(value))


def raw_url(value: Any) -> RawURL:
    """Mark a URL as trusted, skipping the scheme check and encoding."""
    return RawURL(str(value))


RAW_HELPERS = {
    "raw": raw,
    "raw_css": raw_css,
    "raw_js": raw_js,
    "raw_url": raw_url,
}


@dataclass
class TemplateData:
    """Data bound to a single page render.

    Attributes:
        global_: Site-wide data shared by every page; exposed as ``global``.
        page: This page's data; exposed as ``page``.
        static: Static file inventory; exposed as ``static``.
    """

    global_: Mapping[str, Any] = field(default_factory=dict)
    page: dict[str, Any] = field(default_factory=dict)
    static: Mapping[str, StaticFileInfo] = field(default_factory=dict)

    def as_context(self) -> dict[str, Any]:
        """Return the Jinja render context."""
        global_ = self.global_
        if not isinstance(global_, MappingProxyType):
            global_ = MappingProxyType(dict(global_))
        return {"global": global_, "page": self.page, "static": self.static}


class TemplateEngine:
    """Jinja2 environment bound to one template root.

    Templates are addressed by their path relative to the root with ``/``
    separators. The environment is shared by every page of a build; Jinja2
    environments are safe to render from several threads.

    Attributes:
        template_dir: Directory containing shared and page templates.
        strict: Whether undefined variables raise instead of rendering empty.
        env: Jinja2 environment.
    """

    def __init__(self, template_dir: Path, strict: bool = False):
        """Initialize the template engine.

        Args:
            template_dir: Directory with templates.
            strict: Raise on undefined variables when True.
        """
        self.template_dir = Path(template_dir)
        self.strict = strict
        self.env = Environment(
            loader=FileSystemLoader(str(self.template_dir)),
            autoescape=True,
            undefined=StrictUndefined if strict else Undefined,
            keep_trailing_newline=True,
            extensions=[ContextualEscapeExtension],
        )
        self.env.globals.update(RAW_HELPERS)

    def shared_templates(self) -> list[str]:
        """Return the names of shared templates (``_*`` files in the root)."""
        if not self.template_dir.is_dir():
            return []
        return sorted(
            p.name
            for p in self.template_dir.iterdir()
            if p.is_file() and p.name.startswith(SHARED_PREFIX)
        )

    def render(self, page: PageConfig, global_layout: str, data: TemplateData) -> str:
        """Render a page to a string.

        Args:
            page: Page to render.
            global_layout: Site-wide default layout ("" for none).
            data: Data bound to this render.

        Returns:
            Rendered HTML.

        Raises:
            RenderError: On any parse or execution failure.
        """
        try:
            for name in self.shared_templates():
                self.env.get_template(name)
            template = self._page_template(page, page.layout or global_layout)
            return template.render(data.as_context())
        except TemplateSyntaxError as exc:
            where = exc.name or page.template
            raise RenderError(
                page.output,
                f"{where}: template syntax error on line {exc.lineno}: {exc.message}",
                exc,
            ) from exc
        except TemplateNotFound as exc:
            raise RenderError(page.output, f"template not found: {exc.name}", exc) from exc
        except Exception as exc:
            raise RenderError(page.output, _format_error_message(exc), exc) from exc

    def _page_template(self, page: PageConfig, layout: str):
        name = _template_name(page.template)
        if not layout:
            return self.env.get_template(name)
        source, _, _ = self.env.loader.get_source(self.env, name)
        # The page becomes a child of the layout; the extends tag stays on
        # the first line so reported line numbers still match the file.
        return self.env.from_string(
            "{% extends __layout__ %}" + source,
            globals={"__layout__": layout},
        )


def render_page(
    template_dir: Path,
    page: PageConfig,
    global_layout: str,
    data: TemplateData,
    output_dir: Path,
    strict: bool = False,
    engine: TemplateEngine | None = None,
) -> Path:
    """Render a page and write it under the output root.

    Args:
        template_dir: Template root directory.
        page: Page to render.
        global_layout: Site-wide default layout ("" for none).
        data: Data bound to this render.
        output_dir: Output root directory.
        strict: Raise on undefined variables when True.
        engine: Optional engine to reuse across pages.

    Returns:
        Path of the written file.

    Raises:
        RenderError: If rendering fails or the output path escapes
            ``output_dir``. Nothing is written in either case.
    """
    target = resolve_output_path(output_dir, page.output)
    engine = engine or TemplateEngine(template_dir, strict=strict)
    rendered = engine.render(page, global_layout, data)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(rendered.encode("utf-8"))
    except OSError as exc:
        raise RenderError(page.output, f"write output {target}: {exc}", exc) from exc
    return target


def resolve_output_path(output_dir: Path, output: str) -> Path:
    """Resolve a page output path, refusing anything outside the output root.

    Args:
        output_dir: Output root directory.
        output: Page output path from the config.

    Returns:
        Absolute destination path.

    Raises:
        RenderError: If the path is absolute or resolves outside the root.
    """
    root = Path(output_dir).resolve()
    if Path(output).is_absolute():
        raise RenderError(output, "output path must not escape output directory")
    target = (root / output).resolve()
    if target == root or root not in target.parents:
        raise RenderError(output, "output path must not escape output directory")
    return target


def _template_name(path: str) -> str:
    return Path(path).as_posix()


def _format_error_message(exc: Exception) -> str:
    """Format an exception into a user-friendly error message.

    Args:
        exc: The exception to format.

    Returns:
        A human-readable error message.
    """
    error_type = type(exc).__name__
    error_msg = str(exc)

    if error_type == "UndefinedError":
        return f"Undefined variable: {error_msg}"
    if error_type == "TypeError":
        return f"Type error: {error_msg}"
    if isinstance(exc, TemplateError):
        return f"Template error: {error_msg}"

    return f"{error_type}: {error_msg}"

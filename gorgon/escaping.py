"""Context-aware output escaping for Gorgon templates.

Jinja2 autoescaping only knows about HTML. ``ContextualEscapeExtension``
looks at where each ``{{ ... }}`` sits in the surrounding markup and pipes
the expression through the filter for that context before Jinja compiles
the template:

=============================================  ===============================
Context                                        Filter
=============================================  ===============================
HTML text and ordinary attribute values        Jinja autoescape (no rewrite)
``<script>`` body, ``on*`` attribute            ``escape_js``
``<style>`` body, ``style`` attribute           ``escape_css``
URL attributes (``href``, ``src``, ...)         ``escape_url``
=============================================  ===============================

``escape_js`` writes values as JSON literals (or as string-literal contents
when the expression already sits inside quotes). ``escape_css`` replaces any
value that could break out of a property value with ``ZgotmplZ``.
``escape_url`` replaces a URL whose scheme is not http, https or mailto with
``#ZgotmplZ`` and percent-encodes the rest.

Each filter lets its matching raw marker through unchanged: ``raw_js`` in
JS, ``raw_css`` in CSS, ``raw_url`` in URLs. ``raw`` only trusts HTML.
Expressions inside ``{% raw %}`` blocks and comments are left alone.
"""

from __future__ import annotations

import json
import re
from typing import Any
from urllib.parse import quote

from jinja2 import Undefined
from jinja2.ext import Extension
from jinja2.utils import htmlsafe_json_dumps
from markupsafe import Markup

UNSAFE_CSS = "ZgotmplZ"
UNSAFE_URL = "#ZgotmplZ"
SAFE_URL_SCHEMES = frozenset({"http", "https", "mailto"})

URL_ATTRIBUTES = frozenset(
    {
        "action",
        "background",
        "cite",
        "codebase",
        "data",
        "formaction",
        "href",
        "icon",
        "longdesc",
        "manifest",
        "poster",
        "profile",
        "src",
        "usemap",
        "xmlns",
    }
)

# Characters kept as-is when normalizing a URL: RFC 3986 reserved set plus %.
_URL_RESERVED = "/:?#[]@!$&'()*+,;=%"
_CSS_BANNED = set("\x00\"'()/;@[\\]`{}<>&")
_CSS_BANNED_WORDS = ("expression", "mozbinding", "<!--", "-->")

_EXPRESSION = re.compile(r"\{\{(?P<left>[-+]?)(?P<expr>.*?)(?P<right>[-+]?)\}\}", re.S)
_PROTECTED = re.compile(
    r"\{%-?\s*raw\s*-?%\}.*?\{%-?\s*endraw\s*-?%\}|\{#.*?#\}",
    re.S,
)
_JINJA_MARKUP = re.compile(r"\{\{.*?\}\}|\{%.*?%\}|\{#.*?#\}", re.S)
_ELEMENT_OPEN = re.compile(r"<(script|style)\b[^>]*>", re.I)
_ELEMENT_CLOSE = re.compile(r"</(script|style)\s*>", re.I)
_ATTRIBUTE_VALUE = re.compile(
    r"""([^\s"'<>/=]+)\s*=\s*(?:"([^"]*)|'([^']*)|([^\s"'>]*))\Z"""
)


class RawCSS(Markup):
    """Trusted CSS; passes through ``escape_css`` untouched."""


class RawJS(Markup):
    """Trusted JavaScript; passes through ``escape_js`` untouched."""


class RawURL(Markup):
    """Trusted URL; passes through ``escape_url`` untouched."""


def _text(value: Any) -> str:
    # str() renders a plain Undefined empty and makes StrictUndefined raise.
    return str(value)


def escape_js(value: Any, attr: bool = False, in_string: bool = False):
    """Escape a value for a JavaScript context.

    Args:
        value: Value to embed.
        attr: The script sits in an HTML attribute; the result is left for
            HTML autoescaping to encode.
        in_string: The expression is already inside a quoted JS string, so
            only the literal's contents are written.
    """
    if isinstance(value, RawJS):
        return value
    if isinstance(value, Undefined):
        value = _text(value)
        if not in_string:
            value = value or None
    if in_string:
        encoded = str(htmlsafe_json_dumps(_text(value)))[1:-1]
        encoded = encoded.replace("`", "\\u0060").replace("$", "\\u0024")
    else:
        encoded = str(htmlsafe_json_dumps(value, default=str))
    return encoded if attr else Markup(encoded)


def escape_css(value: Any, attr: bool = False):
    """Escape a value for a CSS property value context."""
    if isinstance(value, RawCSS):
        return value
    text = _text(value)
    lowered = text.lower()
    if any(ch in _CSS_BANNED for ch in text) or any(w in lowered for w in _CSS_BANNED_WORDS):
        text = UNSAFE_CSS
    return text if attr else Markup(text)


def escape_url(value: Any, part: str = "start") -> Any:
    """Escape a value for a URL attribute.

    Args:
        value: Value to embed.
        part: ``start`` when the value begins the URL (its scheme is
            checked), ``path`` when it follows other URL text, ``query``
            when it follows a ``?`` or ``#``.
    """
    if isinstance(value, RawURL):
        return value
    text = _text(value)
    if part == "query":
        return quote(text, safe="")
    if part == "start":
        scheme, sep, _ = text.partition(":")
        if sep and "/" not in scheme and scheme.lower() not in SAFE_URL_SCHEMES:
            return UNSAFE_URL
    return quote(text, safe=_URL_RESERVED)


ESCAPE_FILTERS = {
    "escape_js": escape_js,
    "escape_css": escape_css,
    "escape_url": escape_url,
}


class ContextualEscapeExtension(Extension):
    """Rewrite ``{{ expr }}`` so CSS, JS and URL contexts get their filter."""

    def __init__(self, environment):
        super().__init__(environment)
        environment.filters.update(ESCAPE_FILTERS)

    def preprocess(self, source, name, filename=None):
        return add_context_filters(source)


def add_context_filters(source: str) -> str:
    """Return ``source`` with a context filter appended to each expression."""
    protected = [m.span() for m in _PROTECTED.finditer(source)]
    pieces = []
    last = 0
    for match in _EXPRESSION.finditer(source):
        start = match.start()
        if any(lo <= start < hi for lo, hi in protected):
            continue
        call = context_filter(_JINJA_MARKUP.sub(_placeholder, source[:start]))
        if call is None:
            continue
        pieces.append(source[last:start])
        pieces.append(
            "{{%s (%s)|%s %s}}"
            % (match.group("left"), match.group("expr"), call, match.group("right"))
        )
        last = match.end()
    pieces.append(source[last:])
    return "".join(pieces)


def _placeholder(match: re.Match) -> str:
    # Earlier expressions still count as text when deciding where a URL starts.
    return "x" if match.group(0).startswith("{{") else ""


def context_filter(html: str) -> str | None:
    """Return the filter call for an expression placed after ``html``.

    Returns None for plain HTML contexts, which autoescaping already covers.
    """
    element = _open_element(html)
    if element is not None:
        name, body = element
        if name == "script":
            return "escape_js(false, %s)" % _js_bool(_in_js_string(body))
        return "escape_css(false)"

    lt = html.rfind("<")
    if lt == -1 or lt < html.rfind(">"):
        return None
    attribute = _ATTRIBUTE_VALUE.search(html, lt)
    if attribute is None:
        return None
    attr_name = attribute.group(1).lower()
    prefix = next((g for g in attribute.groups()[1:] if g is not None), "")
    if attr_name.startswith("on"):
        return "escape_js(true, %s)" % _js_bool(_in_js_string(prefix))
    if attr_name == "style":
        return "escape_css(true)"
    if attr_name in URL_ATTRIBUTES:
        if not prefix.strip():
            return "escape_url('start')"
        if "?" in prefix or "#" in prefix:
            return "escape_url('query')"
        return "escape_url('path')"
    return None


def _open_element(html: str) -> tuple[str, str] | None:
    opened = None
    for opened in _ELEMENT_OPEN.finditer(html):
        pass
    if opened is None:
        return None
    for closed in _ELEMENT_CLOSE.finditer(html, opened.end()):
        if closed.group(1).lower() == opened.group(1).lower():
            return None
    return opened.group(1).lower(), html[opened.end():]


def _in_js_string(code: str) -> bool:
    quote_char = None
    i = 0
    while i < len(code):
        ch = code[i]
        if quote_char:
            if ch == "\\":
                i += 2
                continue
            if ch == quote_char:
                quote_char = None
        elif ch in "\"'`":
            quote_char = ch
        elif code.startswith("//", i):
            end = code.find("\n", i)
            i = len(code) if end == -1 else end
            continue
        elif code.startswith("/*", i):
            end = code.find("*/", i + 2)
            i = len(code) if end == -1 else end + 2
            continue
        i += 1
    return quote_char is not None


def _js_bool(flag: bool) -> str:
    return json.dumps(flag)

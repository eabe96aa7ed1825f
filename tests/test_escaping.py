import pytest

from gorgon.config import PageConfig
from gorgon.errors import RenderError
from gorgon.escaping import (
    add_context_filters,
    context_filter,
    escape_css,
    escape_js,
    escape_url,
)
from gorgon.templates import TemplateData, TemplateEngine, raw_css, raw_js, raw_url


def render(tmp_path, source, page_data, strict=False):
    templates = tmp_path / "templates"
    templates.mkdir(exist_ok=True)
    (templates / "index.html").write_text(source, encoding="utf-8")
    page = PageConfig(template="index.html", output="index.html")
    engine = TemplateEngine(templates, strict=strict)
    return engine.render(page, "", TemplateData(page=page_data))


def test_url_attribute_rejects_unsafe_scheme(tmp_path):
    source = '<a href="{{ page.u }}">x</a><a href="{{ raw_url(page.u) }}">y</a>'
    rendered = render(tmp_path, source, {"u": "javascript:alert(1)"})
    assert rendered == '<a href="#ZgotmplZ">x</a><a href="javascript:alert(1)">y</a>'


def test_url_attribute_encodes_safe_urls(tmp_path):
    source = '<a href="{{ page.u }}">x</a>'
    rendered = render(tmp_path, source, {"u": "https://example.com/a b?x=1&y=2"})
    assert rendered == '<a href="https://example.com/a%20b?x=1&amp;y=2">x</a>'


def test_url_query_and_path_parts(tmp_path):
    source = '<a href="/search?q={{ page.q }}"></a><img src="/img/{{ page.name }}">'
    rendered = render(tmp_path, source, {"q": "a&b c", "name": "my pic.png"})
    assert rendered == '<a href="/search?q=a%26b%20c"></a><img src="/img/my%20pic.png">'


def test_script_body_gets_json_literals(tmp_path):
    source = (
        "<script>var t = {{ page.title }}; var n = {{ page.n }}; "
        "var d = {{ page.d }};</script>"
    )
    rendered = render(
        tmp_path, source, {"title": '</script><b>"x"', "n": 3, "d": {"a": [1, 2]}}
    )
    assert rendered == (
        r'<script>var t = "\u003c/script\u003e\u003cb\u003e\"x\""; var n = 3; '
        r'var d = {"a": [1, 2]};</script>'
    )


def test_script_string_literal_and_raw_js(tmp_path):
    source = "<script>var s = '{{ page.name }}'; {{ raw_js(page.code) }}</script>"
    rendered = render(tmp_path, source, {"name": "it's", "code": "alert('hi')"})
    assert rendered == r"<script>var s = 'it\u0027s'; alert('hi')</script>"


def test_event_handler_attribute(tmp_path):
    source = '<button onclick="go({{ page.title }})">x</button>'
    rendered = render(tmp_path, source, {"title": 'a"b'})
    assert rendered == '<button onclick="go(&#34;a\\&#34;b&#34;)">x</button>'


def test_undefined_in_script_renders_null_unless_strict(tmp_path):
    source = "<script>var m = {{ page.missing }};</script>"
    assert render(tmp_path, source, {}) == "<script>var m = null;</script>"
    with pytest.raises(RenderError):
        render(tmp_path, source, {}, strict=True)


def test_style_contexts(tmp_path):
    source = (
        "<style>body { color: {{ page.color }}; } {{ raw_css(page.rule) }}</style>"
        '<p style="color: {{ page.bad }}">x</p>'
    )
    rendered = render(
        tmp_path,
        source,
        {"color": "red", "rule": "a>b{}", "bad": "red; background: url(x)"},
    )
    assert rendered == (
        "<style>body { color: red; } a>b{}</style>"
        '<p style="color: ZgotmplZ">x</p>'
    )


def test_plain_attributes_keep_html_escaping(tmp_path):
    source = '<p class="{{ page.c }}" title="{{ page.t }}">{{ page.t }}</p>'
    rendered = render(tmp_path, source, {"c": "javascript:x", "t": "<b>"})
    assert rendered == '<p class="javascript:x" title="&lt;b&gt;">&lt;b&gt;</p>'


def test_context_filter_detection():
    assert context_filter('<a href="') == "escape_url('start')"
    assert context_filter("<a href='/x/") == "escape_url('path')"
    assert context_filter('<a href="/x?q=') == "escape_url('query')"
    assert context_filter('<p class="') is None
    assert context_filter("<p>") is None
    assert context_filter("<script>var a = ") == "escape_js(false, false)"
    assert context_filter("<script>var a = '") == "escape_js(false, true)"
    assert context_filter("<script>// don't\nvar a = ") == "escape_js(false, false)"
    assert context_filter("<script>x</script><p>") is None
    assert context_filter('<div onclick="f(') == "escape_js(true, false)"
    assert context_filter("<style>a { color: ") == "escape_css(false)"
    assert context_filter('<p style="') == "escape_css(true)"


def test_add_context_filters_rewrites_only_non_html_contexts():
    assert add_context_filters("<p>{{ x }}</p>") == "<p>{{ x }}</p>"
    assert (
        add_context_filters('<a href="{{- u -}}">')
        == "<a href=\"{{- ( u )|escape_url('start') -}}\">"
    )
    protected = '{% raw %}<a href="{{ x }}">{% endraw %}{# <a href="{{ y }}"> #}'
    assert add_context_filters(protected) == protected


def test_filters_pass_their_own_raw_marker_only():
    assert escape_url(raw_url("javascript:x")) == "javascript:x"
    assert escape_url(raw_css("javascript:x")) == "#ZgotmplZ"
    assert escape_css(raw_css("a{}")) == "a{}"
    assert escape_css(raw_js("a{}")) == "ZgotmplZ"
    assert escape_js(raw_js("f()")) == "f()"
    assert escape_js(raw_url("f()")) == '"f()"'
    assert escape_css("expression(alert(1))") == "ZgotmplZ"
    assert escape_url("MAILTO:me@example.com") == "MAILTO:me@example.com"

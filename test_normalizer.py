"""
Tests for HTML normalization
"""
from services.config import NormalizerConfig
from services.normalizer import HtmlNormalizer, content_view, normalize, strip_tags


def test_scripts_and_styles_are_removed():
    html = "<div><script>var t = Date.now();</script><style>p{}</style><p>Hi</p></div>"
    assert normalize(html) == "<div><p>Hi</p></div>"


def test_volatile_comments_removed_and_others_kept():
    html = "<!-- main nav --><p>A</p><!-- Last Published: Mon Jan 01 2024 12:00:00 GMT -->"
    assert normalize(html) == "<!-- main nav --><p>A</p>"


def test_attributes_sorted_and_whitespace_collapsed():
    html = '<a href="/x"   class="b">Hello    \n  world</a>'
    assert normalize(html) == '<a class="b" href="/x">Hello world</a>'


def test_preformatted_whitespace_is_preserved():
    assert normalize("<pre>a   b\n  c</pre>") == "<pre>a   b\n  c</pre>"


def test_csrf_tokens_and_nonces_removed():
    first = (
        '<head><meta name="csrf-token" content="abc"></head>'
        '<form><input type="hidden" name="authenticity_token" value="111">'
        '<input type="text" name="q"></form><div nonce="r4nd0m">x</div>'
    )
    second = first.replace("abc", "def").replace("111", "222").replace("r4nd0m", "0th3r")
    assert normalize(first) == normalize(second)
    assert "csrf" not in normalize(first)
    assert 'name="q"' in normalize(first)


def test_dynamic_widgets_removed():
    html = '<div><ins class="adsbygoogle"></ins><ul class="stories-listing-wrapper"><li>1</li></ul><p>x</p></div>'
    assert normalize(html) == "<div><p>x</p></div>"


def test_custom_dynamic_selectors():
    normalizer = HtmlNormalizer(NormalizerConfig(dynamic_selectors=["#clock", "not a [valid"]))
    assert normalizer.normalize('<p>a</p><span id="clock">12:01</span>') == "<p>a</p>"


def test_normalize_is_idempotent():
    html = """
    <html>
      <head><title>Test   Page</title><script>track()</script></head>
      <body class="home" id="top">
        <!-- generated at 2024-01-01 10:00 -->
        <h1>Heading</h1>
        <p>Some    text</p>
      </body>
    </html>
    """
    once = normalize(html)
    assert normalize(once) == once


def test_empty_input():
    assert normalize("") == ""
    assert normalize(None) == ""
    assert content_view("") == ""


def test_content_view_ignores_presentation():
    first = normalize('<p class="a" style="color: red">Hi <a href="/x" class="btn">there</a></p>')
    second = normalize('<p class="b">Hi <a class="link" href="/x">there</a></p>')
    assert first != second
    assert content_view(first) == content_view(second)
    assert content_view(first) == '<p>Hi <a href="/x">there</a></p>'


def test_content_view_sees_text_changes():
    assert content_view(normalize("<p>Hi</p>")) != content_view(normalize("<p>Bye</p>"))


def test_strip_tags():
    assert strip_tags("<p>Hello <b>big</b> world</p><!-- hidden -->") == ["Hello", "big", "world"]

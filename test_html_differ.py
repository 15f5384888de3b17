"""
Tests for the structural HTML differ
"""
import pytest

import services.html_differ as html_differ
from services.html_differ import (
    NO_CONTENT_HTML,
    compute_html_diff,
    extract_stylesheets,
    generate_diff_patch,
    merge_tokens,
    token_count,
    tokenize,
    wrap_diff_html,
)


def test_word_replacement():
    result = compute_html_diff("<p>Hello world</p>", "<p>Hello there</p>")
    assert result.diff_html == (
        '<p>Hello <del class="diff-removed">world</del><ins class="diff-added">there</ins></p>'
    )
    assert result.stats.additions == 1
    assert result.stats.deletions == 1


def test_identical_documents_have_no_markers():
    result = compute_html_diff("<p>Same text</p>", "<p>Same text</p>")
    assert result.diff_html == "<p>Same text</p>"
    assert result.stats.additions == 0
    assert result.stats.deletions == 0


def test_removed_image_is_shown_struck_out():
    result = compute_html_diff('<p>A<img src="a.png"/></p>', "<p>A</p>")
    assert '<del class="diff-removed"><img src="a.png"/></del>' in result.diff_html
    assert result.stats.deletions == 1


def test_removed_container_keeps_text_but_not_tags():
    result = compute_html_diff("<p>A</p><div>Gone</div>", "<p>A</p>")
    assert "<div>" not in result.diff_html
    assert '<del class="diff-removed">Gone</del>' in result.diff_html


def test_stray_angle_bracket_is_escaped():
    assert tokenize("a < b") == ["a", " ", "<", " ", "b"]
    diff_html, stats = merge_tokens(["a"], ["a", " ", "<"])
    assert diff_html == 'a<ins class="diff-added"> &lt;</ins>'
    assert stats.additions == 1


def test_both_empty():
    result = compute_html_diff("", "")
    assert result.diff_html == NO_CONTENT_HTML


def test_relative_images_resolved_against_base_url():
    result = compute_html_diff("", '<body><img src="/a.png"></body>', "https://example.com/page")
    assert 'src="https://example.com/a.png"' in result.diff_html
    assert result.base_url == "https://example.com/page"


def test_stylesheets_extracted():
    html = (
        '<head><link rel="stylesheet" href="/s.css"><link rel="icon" href="/f.ico">'
        '<link rel="stylesheet" href="https://cdn.example.com/x.css"></head>'
    )
    assert extract_stylesheets(html, "https://example.com/p") == [
        "https://example.com/s.css",
        "https://cdn.example.com/x.css",
    ]


def test_falls_back_to_text_diff(monkeypatch):
    def broken(old_tokens, new_tokens):
        raise RuntimeError("tokenizer exploded")

    monkeypatch.setattr(html_differ, "merge_tokens", broken)
    result = compute_html_diff("<p>one two</p>", "<p>one three</p>")
    assert result.diff_html.startswith('<pre class="diff-fallback">')
    assert '<ins class="diff-added">three</ins>' in result.diff_html
    assert result.stats.additions == 1


def test_wrap_diff_html():
    document = wrap_diff_html("<p>x</p>", "https://example.com/", ["https://example.com/s.css"])
    assert document.startswith("<!DOCTYPE html>")
    assert '<base href="https://example.com/">' in document
    assert '<link rel="stylesheet" href="https://example.com/s.css">' in document
    assert "<p>x</p>" in document


def test_diff_patch():
    assert generate_diff_patch("<p>a</p>", "<p>a</p>") is None
    assert generate_diff_patch("", "<p>a</p>") is None

    patch = generate_diff_patch("<div><p>a</p><p>b</p></div>", "<div><p>a</p><p>c</p></div>")
    assert patch.startswith("--- Previous Version\n+++ Current Version\n")
    assert "-<p>b</p>\n" in patch
    assert "+<p>c</p>\n" in patch


def test_token_count_ignores_whitespace():
    assert token_count("<body><p>Hello   big world</p></body>") == 5
    assert token_count("") == 0


DOCUMENTS = [
    "<html><body><p>Hello <b>big</b> world</p></body></html>",
    '<body><p>Line one<br>Line two</p><img src="a.png"><hr/><input type="text"></body>',
    "<body><!-- promo slot --><p>Kept</p><!-- end --></body>",
    "<body><p>a < b and c</p></body>",
    "<div><ul><li>One</li><li>Two</li></ul><table><tr><td>x</td></tr></table></div>",
    "plain text without tags",
]


@pytest.mark.parametrize("document", DOCUMENTS)
def test_diff_from_empty_adds_every_token(document):
    stats = compute_html_diff("", document).stats
    assert stats.additions == token_count(document)
    assert stats.additions > 0
    assert stats.deletions == 0


@pytest.mark.parametrize("document", DOCUMENTS)
def test_diff_against_itself_is_empty(document):
    result = compute_html_diff(document, document)
    assert result.stats.additions == 0
    assert result.stats.deletions == 0
    assert "diff-added" not in result.diff_html
    assert "diff-removed" not in result.diff_html

"""
Structural HTML diff between two page snapshots.

Documents are split into tag, word and whitespace tokens and diffed with
difflib's longest-matching-block algorithm. The merged output always carries
the current document's tags in order, so it renders like the current page:

* removed words are wrapped in <del class="diff-removed">, added words in
  <ins class="diff-added">;
* tags that exist only in the previous document are dropped, except void
  elements (img, br, ...) which are kept inside <del> so removed images show;
* a "<" that does not open a complete tag is treated as text and escaped.
  Unbalanced tags are never repaired by the tokenizer; they are passed through
  exactly as the parser serialized them.

Text is never dropped. If anything fails, a plain-text word diff is returned
instead.
"""
import difflib
import html as html_lib
import logging
import re
from typing import List, Optional, Tuple
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from .models import DiffStats, HtmlDiffResult
from .normalizer import PARSER, strip_tags

logger = logging.getLogger(__name__)

_TOKEN = re.compile(
    r"<!--.*?-->"  # comment
    r"|<[a-zA-Z/!][^<>]*>"  # tag
    r"|[ \t\n\r\f]+"  # whitespace
    r"|[^ \t\n\r\f<]+"  # word
    r"|<",  # stray angle bracket
    re.DOTALL,
)
_TAG_NAME = re.compile(r"^</?\s*([a-zA-Z][a-zA-Z0-9-]*)")
_STYLE_URL = re.compile(r"url\(['\"]?([^'\")\s]+)['\"]?\)")

VOID_ELEMENTS = {
    "area", "base", "br", "col", "embed", "hr", "img", "input",
    "link", "meta", "source", "track", "wbr",
}

INSERT = "ins"
DELETE = "del"
_MARKER_CLASSES = {INSERT: "diff-added", DELETE: "diff-removed"}

NO_CONTENT_HTML = "<p>No content found in either version</p>"

DIFF_STYLES = """
    .diff-container {
      font-family: system-ui, -apple-system, sans-serif;
      line-height: 1.6;
      padding: 16px;
    }
    del, .diff-removed {
      background-color: #fecaca;
      text-decoration: line-through;
      color: #991b1b;
      padding: 2px 4px;
      border-radius: 2px;
    }
    ins, .diff-added {
      background-color: #bbf7d0;
      text-decoration: none;
      color: #166534;
      padding: 2px 4px;
      border-radius: 2px;
    }
    del img {
      border: 4px solid #ef4444;
      opacity: 0.5;
    }
    ins img {
      border: 4px solid #22c55e;
    }
    img {
      max-width: 100%;
      height: auto;
    }
    pre.diff-fallback {
      white-space: pre-wrap;
    }
"""


def tokenize(html: str) -> List[str]:
    return _TOKEN.findall(html or "")


def is_tag(token: str) -> bool:
    return len(token) > 1 and token.startswith("<") and token.endswith(">")


def is_whitespace(token: str) -> bool:
    return token.isspace()


def is_void_tag(token: str) -> bool:
    if not is_tag(token) or token.startswith("</"):
        return False
    match = _TAG_NAME.match(token)
    return bool(match) and match.group(1).lower() in VOID_ELEMENTS


def _count(tokens: List[str]) -> int:
    return sum(1 for token in tokens if not is_whitespace(token))


def extract_content(html: str, base_url: Optional[str] = None) -> str:
    """Body markup of a document with image references made absolute."""
    if not html:
        return ""
    soup = BeautifulSoup(html, PARSER)
    for element in soup.find_all(["script", "noscript", "iframe"]):
        element.decompose()

    if base_url:
        for img in soup.find_all("img"):
            src = img.get("src")
            if src and not src.startswith(("http://", "https://", "data:", "//")):
                img["src"] = urljoin(base_url, src)
        for element in soup.select("[style*='url(']"):
            element["style"] = _STYLE_URL.sub(
                lambda match: _absolute_style_url(match, base_url), element["style"]
            )

    content = soup.body.decode_contents() if soup.body else str(soup)
    return content.strip()


def _absolute_style_url(match: "re.Match", base_url: str) -> str:
    url = match.group(1)
    if url.startswith(("http://", "https://", "data:", "//")):
        return match.group(0)
    return f"url('{urljoin(base_url, url)}')"


def token_count(html: str, base_url: Optional[str] = None) -> int:
    """Number of word and tag tokens the differ sees for a document."""
    return _count(tokenize(extract_content(html, base_url)))


def extract_stylesheets(html: str, base_url: Optional[str] = None) -> List[str]:
    """External stylesheet URLs of a document, absolute when base_url is known."""
    if not html:
        return []
    soup = BeautifulSoup(html, PARSER)
    stylesheets: List[str] = []
    for link in soup.find_all("link"):
        rel = link.get("rel") or []
        if isinstance(rel, str):
            rel = rel.split()
        href = link.get("href")
        if not href or "stylesheet" not in [value.lower() for value in rel]:
            continue
        if base_url and not href.startswith(("http://", "https://", "//")):
            href = urljoin(base_url, href)
        if href not in stylesheets:
            stylesheets.append(href)
    return stylesheets


def _emit_segment(tokens: List[str], kind: str) -> str:
    css_class = _MARKER_CLASSES[kind]
    out: List[str] = []
    run: List[str] = []

    def flush():
        if not run:
            return
        text = "".join(run)
        if text.strip():
            out.append(f'<{kind} class="{css_class}">{text}</{kind}>')
        elif kind == INSERT:
            out.append(text)
        run.clear()

    for token in tokens:
        if is_tag(token):
            if is_void_tag(token):
                run.append(token)
                continue
            flush()
            if kind == INSERT:
                out.append(token)
        else:
            run.append(_escape_stray(token))
    flush()
    return "".join(out)


def _escape_stray(token: str) -> str:
    return "&lt;" if token == "<" else token


def merge_tokens(old_tokens: List[str], new_tokens: List[str]) -> Tuple[str, DiffStats]:
    matcher = difflib.SequenceMatcher(None, old_tokens, new_tokens, autojunk=False)
    out: List[str] = []
    additions = deletions = 0

    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            out.extend(_escape_stray(token) for token in new_tokens[j1:j2])
            continue
        if tag in ("delete", "replace"):
            deleted = old_tokens[i1:i2]
            deletions += _count(deleted)
            out.append(_emit_segment(deleted, DELETE))
        if tag in ("insert", "replace"):
            inserted = new_tokens[j1:j2]
            additions += _count(inserted)
            out.append(_emit_segment(inserted, INSERT))

    return "".join(out), DiffStats(additions=additions, deletions=deletions)


def plain_text_diff(previous_html: str, current_html: str) -> Tuple[str, DiffStats]:
    """Word diff of visible text, wrapped in a minimal HTML shell."""
    old_words = [html_lib.escape(word) for word in strip_tags(previous_html)]
    new_words = [html_lib.escape(word) for word in strip_tags(current_html)]
    matcher = difflib.SequenceMatcher(None, old_words, new_words, autojunk=False)
    parts: List[str] = []
    additions = deletions = 0

    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            parts.extend(new_words[j1:j2])
            continue
        if tag in ("delete", "replace"):
            deletions += i2 - i1
            parts.append(f'<del class="diff-removed">{" ".join(old_words[i1:i2])}</del>')
        if tag in ("insert", "replace"):
            additions += j2 - j1
            parts.append(f'<ins class="diff-added">{" ".join(new_words[j1:j2])}</ins>')

    diff_html = f'<pre class="diff-fallback">{" ".join(parts)}</pre>'
    return diff_html, DiffStats(additions=additions, deletions=deletions)


def compute_html_diff(
    previous_html: str, current_html: str, base_url: Optional[str] = None
) -> HtmlDiffResult:
    """
    Compute an inline HTML diff between two snapshots.

    Args:
        previous_html: Older snapshot (normalized HTML), may be empty
        current_html: Newer snapshot (normalized HTML)
        base_url: Page URL used to resolve relative stylesheets and images

    Returns:
        HtmlDiffResult with merged markup, token stats and stylesheet URLs
    """
    try:
        stylesheets = extract_stylesheets(current_html, base_url)
        previous_content = extract_content(previous_html, base_url)
        current_content = extract_content(current_html, base_url)

        if not previous_content and not current_content:
            return HtmlDiffResult(
                diff_html=NO_CONTENT_HTML, stylesheets=stylesheets, base_url=base_url
            )

        diff_html, stats = merge_tokens(tokenize(previous_content), tokenize(current_content))
        return HtmlDiffResult(
            diff_html=diff_html, stats=stats, stylesheets=stylesheets, base_url=base_url
        )
    except Exception:
        logger.exception("Structural HTML diff failed, falling back to text diff")
        diff_html, stats = plain_text_diff(previous_html or "", current_html or "")
        return HtmlDiffResult(diff_html=diff_html, stats=stats, base_url=base_url)


def wrap_diff_html(
    diff_html: str, base_url: Optional[str] = None, stylesheets: Optional[List[str]] = None
) -> str:
    """Wrap diff markup in a complete document for iframe rendering."""
    links = "\n  ".join(
        f'<link rel="stylesheet" href="{html_lib.escape(href, quote=True)}">'
        for href in stylesheets or []
    )
    base = f'<base href="{html_lib.escape(base_url, quote=True)}">' if base_url else ""
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  {base}
  {links}
  <style>{DIFF_STYLES}</style>
</head>
<body>
  <div class="diff-container">
    {diff_html}
  </div>
</body>
</html>"""


def _patch_lines(html: str) -> List[str]:
    return re.sub(r">\s*<", ">\n<", html).splitlines(keepends=True)


def generate_diff_patch(old_html: str, new_html: str) -> Optional[str]:
    """Unified diff of two snapshots, one tag per line. None when there is nothing to diff."""
    if not old_html or not new_html or old_html == new_html:
        return None
    lines = difflib.unified_diff(
        _patch_lines(old_html),
        _patch_lines(new_html),
        fromfile="Previous Version",
        tofile="Current Version",
        n=3,
    )
    return "".join(line if line.endswith("\n") else line + "\n" for line in lines)

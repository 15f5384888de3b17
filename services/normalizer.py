"""
HTML normalization for stable page hashing and diffing.

Two captures of an unchanged page must normalize to byte-identical output,
so everything that changes between loads without a human edit is removed
here: scripts and styles, generator timestamp comments, ad slots and other
randomized widgets, CSRF tokens and nonces. Output is canonicalized (sorted
attributes, collapsed whitespace) and normalize() is idempotent.
"""
import logging
import re
from typing import Iterable, List, Optional

from bs4 import BeautifulSoup, Comment
from bs4.element import NavigableString, PreformattedString, Tag

from .config import NormalizerConfig, normalizer_config

logger = logging.getLogger(__name__)

PARSER = "html.parser"

REMOVED_TAGS = ["script", "style", "noscript", "iframe", "svg"]
WHITESPACE_PRESERVING_TAGS = {"pre", "textarea"}

VOLATILE_COMMENT_PATTERNS = [
    re.compile(r"last\s+published", re.IGNORECASE),
    re.compile(r"\bgenerated\b.*\b(on|at)\b", re.IGNORECASE),
    re.compile(r"\bcached?\b.*\b(on|at|until)\b", re.IGNORECASE),
    re.compile(r"\d{4}-\d{2}-\d{2}[T ]\d{1,2}:\d{2}"),
    re.compile(r"\b\d{1,2}:\d{2}:\d{2}\b"),
]

VOLATILE_META_NAMES = {"csrf-token", "csrf-param", "_csrf", "csrf", "nonce"}
VOLATILE_INPUT_NAME = re.compile(r"csrf|authenticity|nonce|_token", re.IGNORECASE)
VOLATILE_ATTRIBUTES = {"nonce", "data-csrf", "data-nonce", "data-csrf-token"}

# Attributes that survive into the content-only view
CONTENT_ATTRIBUTES = {"href", "src", "alt"}

_WHITESPACE_RUN = re.compile(r"[ \t\n\r\f]+")
_REGEX_REMOVED_ELEMENTS = re.compile(
    r"<(script|style|noscript|iframe|svg)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL
)
_REGEX_COMMENT = re.compile(r"<!--(.*?)-->", re.DOTALL)


def is_volatile_comment(text: str) -> bool:
    return any(pattern.search(text) for pattern in VOLATILE_COMMENT_PATTERNS)


class HtmlNormalizer:
    """Strips non-deterministic markup from rendered HTML."""

    def __init__(self, config: Optional[NormalizerConfig] = None):
        self.config = config or normalizer_config

    def normalize(self, raw_html: Optional[str]) -> str:
        """Return the canonical, noise-free form of raw_html. Never raises."""
        if not raw_html:
            return ""
        try:
            soup = BeautifulSoup(raw_html, PARSER)
            self._remove_noise(soup)
            return self._canonicalize(str(soup))
        except Exception as e:
            logger.warning(f"HTML parse failed, falling back to regex stripping: {e}")
            return self._regex_normalize(raw_html)

    def content_view(self, normalized_html: Optional[str]) -> str:
        """
        Presentation-insensitive view of normalized HTML.

        Drops all comments, link/meta/base elements and every attribute except
        href, src and alt, so class and inline style churn does not register.
        """
        if not normalized_html:
            return ""
        try:
            soup = BeautifulSoup(normalized_html, PARSER)
            for comment in soup.find_all(string=lambda s: isinstance(s, Comment)):
                comment.extract()
            for element in soup.find_all(["link", "meta", "base"]):
                element.decompose()
            for tag in soup.find_all(True):
                tag.attrs = {
                    name: value for name, value in tag.attrs.items() if name in CONTENT_ATTRIBUTES
                }
            return self._canonicalize(str(soup))
        except Exception as e:
            logger.warning(f"Content view parse failed, using text fallback: {e}")
            stripped = _REGEX_COMMENT.sub("", normalized_html)
            stripped = re.sub(r"<[^>]+>", " ", stripped)
            return _WHITESPACE_RUN.sub(" ", stripped).strip()

    def _remove_noise(self, soup: BeautifulSoup) -> None:
        for element in soup.find_all(REMOVED_TAGS):
            element.decompose()

        for comment in soup.find_all(string=lambda s: isinstance(s, Comment)):
            if is_volatile_comment(str(comment)):
                comment.extract()

        for selector in self.config.dynamic_selectors:
            try:
                matches = soup.select(selector)
            except Exception as e:
                logger.warning(f"Ignoring invalid dynamic selector {selector!r}: {e}")
                continue
            for element in matches:
                element.decompose()

        for meta in soup.find_all("meta"):
            name = str(meta.get("name", "")).lower()
            if name in VOLATILE_META_NAMES:
                meta.decompose()

        for hidden in soup.find_all("input", attrs={"type": "hidden"}):
            if VOLATILE_INPUT_NAME.search(str(hidden.get("name", ""))):
                hidden.decompose()

        for tag in soup.find_all(True):
            for attribute in VOLATILE_ATTRIBUTES.intersection(tag.attrs):
                del tag.attrs[attribute]

    def _canonicalize(self, html: str) -> str:
        # Re-parse so text nodes left adjacent by removals are merged before
        # whitespace is collapsed.
        soup = BeautifulSoup(html, PARSER)
        for tag in soup.find_all(True):
            if tag.attrs:
                tag.attrs = dict(sorted(tag.attrs.items()))
        for text in list(soup.find_all(string=True)):
            if isinstance(text, PreformattedString) or not isinstance(text, NavigableString):
                continue
            if _inside(text, WHITESPACE_PRESERVING_TAGS):
                continue
            collapsed = _WHITESPACE_RUN.sub(" ", str(text))
            if collapsed != str(text):
                text.replace_with(collapsed)
        return str(soup).strip()

    def _regex_normalize(self, raw_html: str) -> str:
        html = raw_html
        previous = None
        while previous != html:
            previous = html
            html = _REGEX_REMOVED_ELEMENTS.sub("", html)
        html = _REGEX_COMMENT.sub(
            lambda match: "" if is_volatile_comment(match.group(1)) else match.group(0), html
        )
        return _WHITESPACE_RUN.sub(" ", html).strip()


def _inside(node: NavigableString, names: Iterable[str]) -> bool:
    names = set(names)
    parent: Optional[Tag] = node.parent
    while parent is not None:
        if parent.name in names:
            return True
        parent = parent.parent
    return False


_default_normalizer = HtmlNormalizer()


def normalize(raw_html: Optional[str]) -> str:
    return _default_normalizer.normalize(raw_html)


def content_view(normalized_html: Optional[str]) -> str:
    return _default_normalizer.content_view(normalized_html)


def strip_tags(html: str) -> List[str]:
    """Visible words of an HTML fragment, used by text-only fallbacks."""
    text = _REGEX_COMMENT.sub(" ", html or "")
    text = re.sub(r"<[^>]+>", " ", text)
    return [word for word in _WHITESPACE_RUN.split(text) if word]

"""
Field-level change reports between two captures of a page.

A hash mismatch only says that a page changed. This module says what changed
in terms an editor recognizes: title, main heading, meta description, word
count, images, links, the H1-H3 outline and the lines of body text that were
added or removed.
"""
import re
from typing import List, Optional

from bs4 import BeautifulSoup

from .models import ContentSnapshot, FieldChange, FieldChangeType
from .normalizer import PARSER

BODY_PREVIEW_CHARS = 500

_IGNORED_TAGS = ["script", "style", "noscript", "template"]
_BLOCK_TAGS = [
    "p", "div", "li", "tr", "section", "article", "header", "footer",
    "h1", "h2", "h3", "h4", "h5", "h6", "blockquote", "pre", "td", "th",
    "ul", "ol", "table", "main", "nav", "aside", "form",
]
_WHITESPACE_RUN = re.compile(r"\s+")
_VERBS = {
    FieldChangeType.ADDED: "Added",
    FieldChangeType.REMOVED: "Removed",
    FieldChangeType.MODIFIED: "Updated",
}


def _text(node) -> str:
    if node is None:
        return ""
    return _WHITESPACE_RUN.sub(" ", node.get_text(" ")).strip()


def _soup(html: Optional[str]) -> BeautifulSoup:
    soup = BeautifulSoup(html or "", PARSER)
    for element in soup.find_all(_IGNORED_TAGS):
        element.decompose()
    return soup


def extract_snapshot(html: Optional[str]) -> ContentSnapshot:
    """Pull the reader-facing facts out of a page."""
    soup = _soup(html)

    meta = soup.find("meta", attrs={"name": re.compile(r"^description$", re.IGNORECASE)})
    body_text = _text(soup.body or soup)

    return ContentSnapshot(
        title=_text(soup.title),
        h1=_text(soup.find("h1")),
        meta_description=(meta.get("content") or "").strip() if meta else "",
        word_count=len(body_text.split()),
        headings=[
            f"[{heading.name.upper()}] {_text(heading)}"
            for heading in soup.find_all(["h1", "h2", "h3"])
        ],
        images=[img["src"] for img in soup.find_all("img") if img.get("src")],
        links=[a["href"] for a in soup.find_all("a") if a.get("href")],
        body_text_preview=body_text[:BODY_PREVIEW_CHARS],
    )


def _text_change(field: str, old: str, new: str) -> Optional[FieldChange]:
    if old == new:
        return None
    if not old:
        change_type = FieldChangeType.ADDED
    elif not new:
        change_type = FieldChangeType.REMOVED
    else:
        change_type = FieldChangeType.MODIFIED
    return FieldChange(field=field, old_value=old or None, new_value=new or None, change_type=change_type)


def _collection_change(field: str, old: List[str], new: List[str]) -> Optional[FieldChange]:
    if len(old) == len(new) and set(new) <= set(old):
        return None
    if len(new) > len(old):
        change_type = FieldChangeType.ADDED
    elif len(new) < len(old):
        change_type = FieldChangeType.REMOVED
    else:
        change_type = FieldChangeType.MODIFIED
    return FieldChange(field=field, old_value=old, new_value=new, change_type=change_type)


def _line_change(field: str, old_lines: List[str], new_lines: List[str]) -> Optional[FieldChange]:
    """Lines only present on one side; shared lines are left out."""
    old_set, new_set = set(old_lines), set(new_lines)
    removed = [line for line in old_lines if line not in new_set]
    added = [line for line in new_lines if line not in old_set]
    if not removed and not added:
        return None
    return FieldChange(
        field=field,
        old_value="\n".join(removed),
        new_value="\n".join(added),
        change_type=FieldChangeType.MODIFIED,
    )


def compute_field_changes(current: ContentSnapshot, previous: ContentSnapshot) -> List[FieldChange]:
    """Compare two snapshots field by field."""
    changes = [
        _text_change("title", previous.title, current.title),
        _text_change("h1", previous.h1, current.h1),
        _text_change("metaDescription", previous.meta_description, current.meta_description),
    ]
    if current.word_count != previous.word_count:
        changes.append(
            FieldChange(
                field="wordCount",
                old_value=previous.word_count,
                new_value=current.word_count,
                change_type=FieldChangeType.MODIFIED,
            )
        )
    changes.append(_collection_change("images", previous.images, current.images))
    changes.append(_collection_change("links", previous.links, current.links))
    changes.append(_line_change("headings", previous.headings, current.headings))
    if current.body_text_preview != previous.body_text_preview:
        changes.append(
            FieldChange(
                field="bodyText",
                old_value=previous.body_text_preview[:50] + "...",
                new_value=current.body_text_preview[:50] + "...",
                change_type=FieldChangeType.MODIFIED,
            )
        )
    return [change for change in changes if change is not None]


def body_text_lines(html: Optional[str]) -> List[str]:
    """Visible text split at block boundaries and <br>, blank lines dropped."""
    soup = _soup(html)
    for br in soup.find_all("br"):
        br.replace_with("\n")
    for block in soup.find_all(_BLOCK_TAGS):
        block.insert_before("\n")
        block.insert_after("\n")
    lines = (_WHITESPACE_RUN.sub(" ", line).strip() for line in soup.get_text().split("\n"))
    return [line for line in lines if line]


def compute_body_text_diff(previous_html: Optional[str], current_html: Optional[str]) -> Optional[FieldChange]:
    if not previous_html or not current_html:
        return None
    return _line_change("bodyText", body_text_lines(previous_html), body_text_lines(current_html))


def summarize_field_changes(changes: List[FieldChange]) -> Optional[str]:
    """One-line summary such as "Updated title, Added images"."""
    if not changes:
        return None
    return ", ".join(f"{_VERBS[change.change_type]} {change.field}" for change in changes)


def build_change_report(previous_html: Optional[str], current_html: Optional[str]) -> List[FieldChange]:
    """
    Field changes between two captures.

    The snapshot's body preview is replaced by a line-level body text diff
    so the report names the sentences that were edited.
    """
    if not previous_html or not current_html:
        return []
    changes = compute_field_changes(extract_snapshot(current_html), extract_snapshot(previous_html))
    body_change = compute_body_text_diff(previous_html, current_html)
    changes = [change for change in changes if change.field != "bodyText"]
    if body_change is not None:
        changes.append(body_change)
    return changes

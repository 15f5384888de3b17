"""
Tests for field-level change reports
"""
from services.change_report import (
    body_text_lines,
    build_change_report,
    compute_body_text_diff,
    compute_field_changes,
    extract_snapshot,
    summarize_field_changes,
)
from services.models import ContentSnapshot, FieldChange, FieldChangeType

PAGE = """
<html>
  <head>
    <title>Acme  Tools</title>
    <meta name="Description" content=" Hand tools since 1920 ">
    <script>var tracking = "not content";</script>
  </head>
  <body>
    <h1>Hammers</h1>
    <h2>Claw hammers</h2>
    <p>Forged steel<br>Lifetime warranty</p>
    <img src="/claw.png" alt="Claw"><img alt="no source">
    <a href="/shop">Shop</a><a>anchor only</a>
  </body>
</html>
"""


def test_extract_snapshot():
    snapshot = extract_snapshot(PAGE)
    assert snapshot.title == "Acme Tools"
    assert snapshot.h1 == "Hammers"
    assert snapshot.meta_description == "Hand tools since 1920"
    assert snapshot.headings == ["[H1] Hammers", "[H2] Claw hammers"]
    assert snapshot.images == ["/claw.png"]
    assert snapshot.links == ["/shop"]
    assert snapshot.word_count == 10
    assert "tracking" not in snapshot.body_text_preview


def test_extract_snapshot_of_empty_page():
    assert extract_snapshot("") == ContentSnapshot()


def test_text_fields_added_removed_and_modified():
    previous = ContentSnapshot(title="Old", meta_description="About us")
    current = ContentSnapshot(title="New", h1="Welcome")
    changes = {change.field: change for change in compute_field_changes(current, previous)}

    assert changes["title"].change_type == FieldChangeType.MODIFIED
    assert (changes["title"].old_value, changes["title"].new_value) == ("Old", "New")
    assert changes["h1"].change_type == FieldChangeType.ADDED
    assert changes["h1"].old_value is None
    assert changes["metaDescription"].change_type == FieldChangeType.REMOVED
    assert changes["metaDescription"].new_value is None


def test_collections_compare_by_source():
    previous = ContentSnapshot(images=["a.png", "b.png"], links=["/x", "/y"])

    same = compute_field_changes(ContentSnapshot(images=["b.png", "a.png"], links=["/x", "/y"]), previous)
    assert same == []

    changes = {
        change.field: change
        for change in compute_field_changes(ContentSnapshot(images=["a.png", "c.png"], links=["/x"]), previous)
    }
    assert changes["images"].change_type == FieldChangeType.MODIFIED
    assert changes["links"].change_type == FieldChangeType.REMOVED
    assert changes["links"].old_value == ["/x", "/y"]


def test_headings_report_only_differing_lines():
    previous = ContentSnapshot(headings=["[H1] Shop", "[H2] Sale", "[H2] New"])
    current = ContentSnapshot(headings=["[H1] Shop", "[H2] New", "[H3] Gift cards"])
    (change,) = compute_field_changes(current, previous)
    assert change.field == "headings"
    assert change.old_value == "[H2] Sale"
    assert change.new_value == "[H3] Gift cards"


def test_word_count_change():
    (change,) = compute_field_changes(ContentSnapshot(word_count=12), ContentSnapshot(word_count=10))
    assert change.field == "wordCount"
    assert (change.old_value, change.new_value) == (10, 12)


def test_body_text_lines_split_on_blocks_and_breaks():
    html = "<div><p>First <b>line</b></p>Loose text<br/>After break<ul><li>Item</li></ul></div>"
    assert body_text_lines(html) == ["First line", "Loose text", "After break", "Item"]


def test_body_text_diff():
    old = "<p>Opening hours</p><p>Mon-Fri 9-5</p><p>Closed Sunday</p>"
    new = "<p>Opening hours</p><p>Mon-Sat 9-5</p><p>Closed Sunday</p>"
    change = compute_body_text_diff(old, new)
    assert change.old_value == "Mon-Fri 9-5"
    assert change.new_value == "Mon-Sat 9-5"
    assert compute_body_text_diff(old, old) is None
    assert compute_body_text_diff("", new) is None


def test_build_change_report_uses_line_level_body_diff():
    old = "<html><body><h1>Menu</h1><p>Soup of the day</p></body></html>"
    new = "<html><body><h1>Menu</h1><p>Salad of the day</p></body></html>"
    (change,) = build_change_report(old, new)
    assert change.field == "bodyText"
    assert change.old_value == "Soup of the day"
    assert change.new_value == "Salad of the day"

    assert build_change_report(old, old) == []
    assert build_change_report(None, new) == []


def test_summarize_field_changes():
    changes = [
        FieldChange(field="title", change_type=FieldChangeType.MODIFIED),
        FieldChange(field="images", change_type=FieldChangeType.ADDED),
        FieldChange(field="links", change_type=FieldChangeType.REMOVED),
    ]
    assert summarize_field_changes(changes) == "Updated title, Added images, Removed links"
    assert summarize_field_changes([]) is None

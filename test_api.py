"""
API tests with in-memory storage and a canned-HTML renderer
"""
import asyncio
import base64
import datetime
import io
import time

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from main import AppContainer, app, get_container
from services.models import AuditLogEntry, ChangeStatus, utc_now


def make_png(width, height, pixels=None) -> str:
    image = Image.new("RGBA", (width, height), (255, 255, 255, 255))
    for position, value in (pixels or {}).items():
        image.putpixel(position, value)
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return base64.b64encode(buffer.getvalue()).decode()


def save_capture(container, html_source, age_minutes, link_id="link-1"):
    entry = AuditLogEntry(
        project_id="proj-1",
        link_id=link_id,
        url="https://example.com/page-1",
        timestamp=utc_now() - datetime.timedelta(minutes=age_minutes),
        full_hash="f",
        content_hash="c",
        html_source=html_source,
        change_status=ChangeStatus.CONTENT_CHANGED,
    )
    asyncio.run(container.repository.save_entry(entry))


@pytest.fixture
def container(store, repository, catalog, renderer, orchestrator):
    return AppContainer(
        store=store,
        repository=repository,
        catalog=catalog,
        renderer=renderer,
        orchestrator=orchestrator,
    )


@pytest.fixture
def client(container):
    app.dependency_overrides[get_container] = lambda: container
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def wait_for_scan(client, scan_id, attempts=100):
    for _ in range(attempts):
        response = client.get("/scan-bulk/status", params={"scanId": scan_id})
        body = response.json()
        if body["status"] != "running":
            return body
        time.sleep(0.02)
    raise AssertionError(f"Scan {scan_id} did not finish")


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy"}


def test_scan_bulk_runs_to_completion(client):
    response = client.post("/scan-bulk", json={"projectId": "proj-1"})
    assert response.status_code == 200
    started = response.json()
    assert started["totalPages"] == 3
    assert started["scanId"].startswith("scan_")

    body = wait_for_scan(client, started["scanId"])
    assert body["status"] == "completed"
    assert body["current"] == 3
    assert body["total"] == 3
    assert body["percentage"] == 100
    assert body["summary"] == {"noChange": 0, "techChange": 0, "contentChanged": 3, "failed": 0}
    assert body["projectId"] == "proj-1"


def test_scan_bulk_options(client):
    response = client.post(
        "/scan-bulk", json={"projectId": "proj-1", "options": {"scanCollections": True, "linkIds": ["link-blog"]}}
    )
    assert response.json()["totalPages"] == 1
    wait_for_scan(client, response.json()["scanId"])


def test_scan_bulk_errors(client, store):
    assert client.post("/scan-bulk", json={}).status_code == 400
    assert client.post("/scan-bulk", json={"projectId": "nope"}).status_code == 404

    empty = client.post("/scan-bulk", json={"projectId": "proj-empty"}).json()
    assert empty["scanId"] is None
    assert empty["message"] == "No pages to scan"

    store.init("scan_1_running", "proj-1", 3)
    conflict = client.post("/scan-bulk", json={"projectId": "proj-1"})
    assert conflict.status_code == 409
    assert conflict.json()["detail"]["scanId"] == "scan_1_running"


def test_status_errors(client):
    assert client.get("/scan-bulk/status").status_code == 400
    missing = client.get("/scan-bulk/status", params={"scanId": "scan_0_missing"})
    assert missing.status_code == 404
    assert missing.json()["detail"]["error"] == "Scan not found"


def test_cancel(client, store):
    assert client.post("/scan-bulk/cancel", json={}).status_code == 400
    assert client.post("/scan-bulk/cancel", json={"scanId": "scan_0_missing"}).status_code == 404

    store.init("scan_1_running", "proj-1", 3)
    body = client.post("/scan-bulk/cancel", json={"scanId": "scan_1_running"}).json()
    assert body["success"] is True
    assert body["status"] == "running"
    assert store.is_cancel_requested("scan_1_running")

    store.update("scan_1_running", status="cancelled")
    again = client.post("/scan-bulk/cancel", json={"scanId": "scan_1_running"}).json()
    assert again["status"] == "cancelled"
    assert again["message"] == "Scan already finished."


def test_running_scans(client, store):
    assert client.get("/scan-bulk/running").status_code == 400
    assert client.get("/scan-bulk/running", params={"projectId": "proj-1"}).json() == {
        "scans": [],
        "hasRunningScans": False,
    }

    store.init("scan_1_a", "proj-1", 3)
    store.init("scan_2_b", "proj-2", 3)
    running = client.get("/scan-bulk/running", params={"projectId": "proj-1"}).json()
    assert running["hasRunningScans"] is True
    assert [scan["scanId"] for scan in running["scans"]] == ["scan_1_a"]

    everything = client.get("/scan-bulk/running-all").json()
    assert {scan["scanId"] for scan in everything["scans"]} == {"scan_1_a", "scan_2_b"}


def test_visual_diff(client, container):
    assert client.get("/visual-diff", params={"projectId": "proj-1"}).status_code == 400
    assert client.get("/visual-diff", params={"projectId": "proj-1", "linkId": "link-1"}).status_code == 404

    save_capture(container, "<body><p>Hello world</p></body>", age_minutes=10)
    first = client.get("/visual-diff", params={"projectId": "proj-1", "linkId": "link-1"}).json()
    assert first["isFirstScan"] is True
    assert "first scan" in first["diffHtml"]
    assert "Hello world" in first["diffHtml"]

    save_capture(container, "<body><p>Hello there</p></body>", age_minutes=1)
    diff = client.get("/visual-diff", params={"projectId": "proj-1", "linkId": "link-1"}).json()
    assert diff["isFirstScan"] is False
    assert diff["baseUrl"] == "https://example.com/page-1"
    assert diff["stats"] == {"additions": 1, "deletions": 1}
    assert '<ins class="diff-added">there</ins>' in diff["diffHtml"]
    assert diff["previousTimestamp"] < diff["currentTimestamp"]


def test_visual_diff_without_html(client, container):
    save_capture(container, "", age_minutes=10, link_id="link-2")
    save_capture(container, "<p>new</p>", age_minutes=1, link_id="link-2")
    response = client.get("/visual-diff", params={"projectId": "proj-1", "linkId": "link-2"})
    assert response.status_code == 400


def test_compare_screenshots(client):
    before = make_png(10, 10)
    after = make_png(10, 10, {(5, 5): (0, 0, 0, 255)})
    body = client.post("/compare-screenshots", json={"before": before, "after": after}).json()
    assert body["success"] is True
    assert body["diffPixelCount"] == 1
    assert body["width"] == 10
    assert body["diffImage"]

    data_url = client.post(
        "/compare-screenshots", json={"before": f"data:image/png;base64,{before}", "after": before}
    ).json()
    assert data_url["diffPixelCount"] == 0


def test_compare_screenshots_errors(client):
    assert client.post("/compare-screenshots", json={"before": make_png(2, 2)}).status_code == 400
    invalid = client.post(
        "/compare-screenshots", json={"before": base64.b64encode(b"nope").decode(), "after": make_png(2, 2)}
    )
    assert invalid.status_code == 400

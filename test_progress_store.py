"""
Tests for in-memory scan progress tracking
"""
import re

import pytest

from services.errors import ScanNotFound
from services.models import ChangeStatus, ScanStatus
from services.progress_store import ScanProgressStore


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_generate_scan_id_format():
    scan_id = ScanProgressStore.generate_scan_id()
    assert re.match(r"^scan_\d+_[a-z0-9]{7}$", scan_id)
    assert scan_id != ScanProgressStore.generate_scan_id()


def test_init_and_get():
    store = ScanProgressStore()
    store.init("scan_1", "proj-1", 4, ["a", "b", "c", "d"])
    progress = store.get("scan_1")
    assert progress.status == ScanStatus.RUNNING
    assert progress.total == 4
    assert progress.current == 0
    assert progress.percentage == 0
    assert progress.target_link_ids == ["a", "b", "c", "d"]
    assert store.get("missing") is None
    with pytest.raises(ScanNotFound):
        store.require("missing")


def test_current_is_clamped_and_monotonic():
    store = ScanProgressStore()
    store.init("scan_1", "proj-1", 3)
    assert store.update("scan_1", current=5).current == 3
    assert store.update("scan_1", current=1).current == 3
    assert store.get("scan_1").percentage == 100


def test_terminal_records_are_frozen():
    store = ScanProgressStore()
    store.init("scan_1", "proj-1", 3)
    completed = store.update("scan_1", status="completed")
    assert completed.status == ScanStatus.COMPLETED
    assert completed.completed_at is not None

    after = store.update("scan_1", status=ScanStatus.RUNNING, current=2)
    assert after.status == ScanStatus.COMPLETED
    assert after.current == 0
    assert store.mark_page_completed("scan_1", "a", ChangeStatus.NO_CHANGE).current == 0


def test_unknown_fields_rejected():
    store = ScanProgressStore()
    store.init("scan_1", "proj-1", 1)
    with pytest.raises(ValueError):
        store.update("scan_1", project_id="other")
    assert store.update("missing", current=1) is None


def test_returned_records_are_copies():
    store = ScanProgressStore()
    progress = store.init("scan_1", "proj-1", 2)
    progress.current = 2
    progress.summary.failed = 9
    assert store.get("scan_1").current == 0
    assert store.get("scan_1").summary.failed == 0


def test_mark_page_completed_counts_outcomes():
    store = ScanProgressStore()
    store.init("scan_1", "proj-1", 3)
    store.mark_page_completed("scan_1", "a", ChangeStatus.NO_CHANGE)
    store.mark_page_completed("scan_1", "b", ChangeStatus.CONTENT_CHANGED)
    progress = store.mark_page_completed("scan_1", "c", ChangeStatus.SCAN_FAILED)
    assert progress.current == 3
    assert progress.completed_link_ids == ["a", "b", "c"]
    assert progress.summary.no_change == 1
    assert progress.summary.content_changed == 1
    assert progress.summary.failed == 1
    assert progress.summary.resolved == 2


def test_cancel_requests():
    store = ScanProgressStore()
    store.init("scan_1", "proj-1", 3)
    assert store.find_active("proj-1").scan_id == "scan_1"

    assert store.request_cancel("scan_1").cancel_requested
    assert store.request_cancel("scan_1").cancel_requested
    assert store.is_cancel_requested("scan_1")
    assert store.find_active("proj-1") is None
    # Still running until the scan loop notices
    assert [p.scan_id for p in store.list_running("proj-1")] == ["scan_1"]

    assert store.mark_cancelled("scan_1").status == ScanStatus.CANCELLED
    assert store.list_running() == []
    assert store.request_cancel("missing") is None


def test_cancelling_a_finished_scan_is_a_no_op():
    store = ScanProgressStore()
    store.init("scan_1", "proj-1", 1)
    store.update("scan_1", status=ScanStatus.COMPLETED)
    progress = store.request_cancel("scan_1")
    assert progress.status == ScanStatus.COMPLETED
    assert not progress.cancel_requested


def test_finished_scans_evicted_after_retention():
    clock = FakeClock()
    store = ScanProgressStore(retention_seconds=600, clock=clock)
    store.init("done", "proj-1", 1)
    store.init("running", "proj-1", 1)
    store.update("done", status=ScanStatus.FAILED, error="boom")

    clock.now += 599
    assert store.get("done") is not None

    clock.now += 1
    assert store.get("done") is None
    assert store.get("running") is not None

    clock.now += 10_000
    assert store.get("running") is not None


def test_eviction_listeners_are_told_which_scans_left():
    clock = FakeClock()
    store = ScanProgressStore(retention_seconds=60, clock=clock)
    evicted = []
    store.add_eviction_listener(evicted.append)
    store.init("done", "proj-1", 1)
    store.init("running", "proj-1", 1)
    store.update("done", status=ScanStatus.COMPLETED)

    store.list_all()
    assert evicted == []

    clock.now += 60
    store.list_all()
    assert evicted == ["done"]
    store.list_all()
    assert evicted == ["done"]


def test_list_running_filters_by_project():
    store = ScanProgressStore()
    store.init("scan_1", "proj-1", 1)
    store.init("scan_2", "proj-2", 1)
    store.init("scan_3", "proj-1", 1)
    store.update("scan_3", status=ScanStatus.COMPLETED)
    assert [p.scan_id for p in store.list_running("proj-1")] == ["scan_1"]
    assert {p.scan_id for p in store.list_running()} == {"scan_1", "scan_2"}
    assert len(store.list_all()) == 3

"""
In-memory progress tracking for bulk scans.

Records live for the lifetime of the process. A record that reaches a
terminal status is frozen and evicted once the retention window has passed;
eviction happens lazily on every access.
"""
import logging
import random
import string
import threading
import time
from typing import Callable, Dict, Iterable, List, Optional

from .config import scan_config
from .errors import ScanNotFound
from .models import ChangeStatus, ScanProgress, ScanStatus, ScanSummary, utc_now

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.ascii_lowercase + string.digits

# Fields a caller may change through update()
_UPDATABLE_FIELDS = {"status", "current", "total", "current_url", "error", "summary", "completed_at"}


class ScanProgressStore:
    """
    Thread-safe map of scanId -> ScanProgress.

    Readers always receive copies, so a record handed out can never be mutated
    behind the store's back.
    """

    def __init__(
        self,
        retention_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.retention_seconds = (
            scan_config.progress_retention_seconds if retention_seconds is None else retention_seconds
        )
        self._clock = clock
        self._lock = threading.Lock()
        self._records: Dict[str, ScanProgress] = {}
        self._terminal_since: Dict[str, float] = {}
        self._eviction_listeners: List[Callable[[str], None]] = []

    @staticmethod
    def generate_scan_id() -> str:
        suffix = "".join(random.choices(_ID_ALPHABET, k=7))
        return f"scan_{int(time.time() * 1000)}_{suffix}"

    def init(
        self,
        scan_id: str,
        project_id: str,
        total: int,
        target_link_ids: Optional[Iterable[str]] = None,
    ) -> ScanProgress:
        progress = ScanProgress(
            scan_id=scan_id,
            project_id=project_id,
            total=total,
            target_link_ids=list(target_link_ids or []),
        )
        with self._lock:
            self._evict_expired()
            self._records[scan_id] = progress
            self._terminal_since.pop(scan_id, None)
        logger.info(f"Initialized scan {scan_id} for project {project_id} ({total} pages)")
        return progress.model_copy(deep=True)

    def update(self, scan_id: str, **changes) -> Optional[ScanProgress]:
        """
        Apply changes to a running scan.

        `current` is clamped to [previous current, total]. Updates to a record
        in a terminal status are ignored. Returns the new state, or None when
        the scan is unknown.
        """
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {sorted(unknown)}")
        if "status" in changes:
            changes["status"] = ScanStatus(changes["status"])

        with self._lock:
            self._evict_expired()
            progress = self._records.get(scan_id)
            if progress is None:
                return None
            if progress.is_terminal:
                return progress.model_copy(deep=True)

            updated = progress.model_copy(update=changes, deep=True)
            if "current" in changes:
                updated.current = min(max(updated.current, progress.current), updated.total)
            if updated.status.is_terminal and updated.completed_at is None:
                updated.completed_at = utc_now()
            self._store(scan_id, updated)
            return updated.model_copy(deep=True)

    def get(self, scan_id: str) -> Optional[ScanProgress]:
        with self._lock:
            self._evict_expired()
            progress = self._records.get(scan_id)
            return progress.model_copy(deep=True) if progress else None

    def require(self, scan_id: str) -> ScanProgress:
        progress = self.get(scan_id)
        if progress is None:
            raise ScanNotFound(scan_id)
        return progress

    def request_cancel(self, scan_id: str) -> Optional[ScanProgress]:
        """Flag a running scan for cancellation. Idempotent; terminal scans are left unchanged."""
        with self._lock:
            self._evict_expired()
            progress = self._records.get(scan_id)
            if progress is None:
                return None
            if not progress.is_terminal and not progress.cancel_requested:
                progress = progress.model_copy(update={"cancel_requested": True}, deep=True)
                self._records[scan_id] = progress
                logger.info(f"Cancellation requested for scan {scan_id}")
            return progress.model_copy(deep=True)

    def is_cancel_requested(self, scan_id: str) -> bool:
        with self._lock:
            progress = self._records.get(scan_id)
            return bool(progress and progress.cancel_requested)

    def mark_cancelled(self, scan_id: str) -> Optional[ScanProgress]:
        return self.update(scan_id, status=ScanStatus.CANCELLED, current_url="")

    def mark_page_completed(
        self, scan_id: str, link_id: str, change_status: ChangeStatus
    ) -> Optional[ScanProgress]:
        """Count one resolved page: bump current, record the link and its outcome."""
        with self._lock:
            self._evict_expired()
            progress = self._records.get(scan_id)
            if progress is None:
                return None
            if progress.is_terminal:
                return progress.model_copy(deep=True)

            completed = list(progress.completed_link_ids)
            if link_id not in completed:
                completed.append(link_id)
            summary: ScanSummary = progress.summary.record(change_status)
            updated = progress.model_copy(
                update={
                    "current": min(progress.current + 1, progress.total),
                    "completed_link_ids": completed,
                    "summary": summary,
                },
                deep=True,
            )
            self._records[scan_id] = updated
            return updated.model_copy(deep=True)

    def list_running(self, project_id: Optional[str] = None) -> List[ScanProgress]:
        with self._lock:
            self._evict_expired()
            return [
                progress.model_copy(deep=True)
                for progress in self._records.values()
                if progress.status == ScanStatus.RUNNING
                and (project_id is None or progress.project_id == project_id)
            ]

    def list_all(self) -> List[ScanProgress]:
        with self._lock:
            self._evict_expired()
            return [progress.model_copy(deep=True) for progress in self._records.values()]

    def find_active(self, project_id: str) -> Optional[ScanProgress]:
        """The running, non-cancelling scan for a project, if any."""
        for progress in self.list_running(project_id):
            if not progress.cancel_requested:
                return progress
        return None

    def add_eviction_listener(self, listener: Callable[[str], None]) -> None:
        """Call listener(scan_id) whenever a finished scan is evicted."""
        with self._lock:
            self._eviction_listeners.append(listener)

    def _store(self, scan_id: str, progress: ScanProgress) -> None:
        self._records[scan_id] = progress
        if progress.is_terminal:
            self._terminal_since[scan_id] = self._clock()
            logger.info(f"Scan {scan_id} finished with status {progress.status.value}")

    def _evict_expired(self) -> None:
        now = self._clock()
        expired = [
            scan_id
            for scan_id, finished_at in self._terminal_since.items()
            if now - finished_at >= self.retention_seconds
        ]
        for scan_id in expired:
            self._records.pop(scan_id, None)
            self._terminal_since.pop(scan_id, None)
            for listener in self._eviction_listeners:
                listener(scan_id)
        if expired:
            logger.debug(f"Evicted {len(expired)} finished scans")


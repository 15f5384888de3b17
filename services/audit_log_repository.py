"""
Persistence for audit log entries.

Entries are append-only. Retention cleanup removes entries older than a
cutoff but always keeps the most recent entries of every link, so the next
scan still has a baseline to compare against.
"""
import asyncio
import base64
import datetime
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel
from supabase import Client, create_client

from .config import StorageConfig, storage_config
from .errors import PersistenceFailure
from .models import AuditLogEntry, utc_now
from .utils.db_helpers import DbHelpers

logger = logging.getLogger(__name__)


class CleanupResult(BaseModel):
    deleted: int = 0
    kept: int = 0


class AuditLogRepository(ABC):
    @abstractmethod
    async def get_latest_entry(self, project_id: str, link_id: str) -> Optional[AuditLogEntry]:
        ...

    @abstractmethod
    async def save_entry(self, entry: AuditLogEntry) -> str:
        """Persist an entry and return its id."""

    @abstractmethod
    async def get_recent_entries(self, project_id: str, link_id: str, limit: int = 2) -> List[AuditLogEntry]:
        """Most recent entries first."""

    @abstractmethod
    async def delete_entries_for_link(self, project_id: str, link_id: str) -> int:
        ...

    @abstractmethod
    async def cleanup_older_than(self, max_age_days: int = 30, keep_per_link: int = 2) -> CleanupResult:
        ...


def _select_for_deletion(
    entries: List[Tuple[str, str, str, datetime.datetime]],
    cutoff: datetime.datetime,
    keep_per_link: int,
) -> List[str]:
    """
    Ids to delete from (id, project_id, link_id, timestamp) tuples: older than
    cutoff and not among the keep_per_link newest of their link.
    """
    by_link: Dict[Tuple[str, str], List[Tuple[str, datetime.datetime]]] = defaultdict(list)
    for entry_id, project_id, link_id, timestamp in entries:
        by_link[(project_id, link_id)].append((entry_id, timestamp))

    doomed: List[str] = []
    for rows in by_link.values():
        rows.sort(key=lambda row: row[1], reverse=True)
        for entry_id, timestamp in rows[max(keep_per_link, 0):]:
            if timestamp < cutoff:
                doomed.append(entry_id)
    return doomed


class InMemoryAuditLogRepository(AuditLogRepository):
    """Process-local repository used in tests and when Supabase is not configured."""

    def __init__(self):
        self._entries: Dict[str, AuditLogEntry] = {}
        self._lock = threading.Lock()

    async def get_latest_entry(self, project_id: str, link_id: str) -> Optional[AuditLogEntry]:
        recent = await self.get_recent_entries(project_id, link_id, limit=1)
        return recent[0] if recent else None

    async def save_entry(self, entry: AuditLogEntry) -> str:
        entry_id = entry.id or uuid.uuid4().hex
        with self._lock:
            self._entries[entry_id] = entry.model_copy(update={"id": entry_id}, deep=True)
        return entry_id

    async def get_recent_entries(self, project_id: str, link_id: str, limit: int = 2) -> List[AuditLogEntry]:
        with self._lock:
            matching = [
                entry.model_copy(deep=True)
                for entry in self._entries.values()
                if entry.project_id == project_id and entry.link_id == link_id
            ]
        matching.sort(key=lambda entry: entry.timestamp, reverse=True)
        return matching[:limit]

    async def delete_entries_for_link(self, project_id: str, link_id: str) -> int:
        with self._lock:
            doomed = [
                entry_id
                for entry_id, entry in self._entries.items()
                if entry.project_id == project_id and entry.link_id == link_id
            ]
            for entry_id in doomed:
                del self._entries[entry_id]
        return len(doomed)

    async def cleanup_older_than(self, max_age_days: int = 30, keep_per_link: int = 2) -> CleanupResult:
        cutoff = utc_now() - datetime.timedelta(days=max_age_days)
        with self._lock:
            doomed = _select_for_deletion(
                [(e.id, e.project_id, e.link_id, e.timestamp) for e in self._entries.values()],
                cutoff,
                keep_per_link,
            )
            for entry_id in doomed:
                del self._entries[entry_id]
            kept = len(self._entries)
        return CleanupResult(deleted=len(doomed), kept=kept)

    def all_entries(self) -> List[AuditLogEntry]:
        with self._lock:
            return [entry.model_copy(deep=True) for entry in self._entries.values()]


class SupabaseAuditLogRepository(AuditLogRepository):
    """
    audit_logs table backed repository.

    Screenshots are uploaded to a storage bucket and referenced by URL; when the
    upload fails the screenshot is stored inline as base64 instead. supabase-py
    is synchronous, so every call runs in a worker thread.
    """

    def __init__(self, client: Optional[Client] = None, config: Optional[StorageConfig] = None):
        self.config = config or storage_config
        self.supabase = client or create_client(self.config.supabase_url, self.config.supabase_key)
        self.table = self.config.audit_logs_table

    async def get_latest_entry(self, project_id: str, link_id: str) -> Optional[AuditLogEntry]:
        recent = await self.get_recent_entries(project_id, link_id, limit=1)
        return recent[0] if recent else None

    async def get_recent_entries(self, project_id: str, link_id: str, limit: int = 2) -> List[AuditLogEntry]:
        try:
            rows = await asyncio.to_thread(
                DbHelpers.get_latest_rows, self.supabase, self.table, project_id, link_id, limit
            )
        except Exception as e:
            raise PersistenceFailure(f"Failed to read audit logs for {project_id}/{link_id}: {e}") from e
        return [DbHelpers.row_to_entry(row) for row in rows]

    async def save_entry(self, entry: AuditLogEntry) -> str:
        if entry.screenshot and not entry.screenshot_url:
            screenshot_url = await self._upload_screenshot(entry)
            if screenshot_url:
                entry = entry.model_copy(update={"screenshot_url": screenshot_url, "screenshot": None})

        row = DbHelpers.entry_to_row(entry)
        try:
            result = await asyncio.to_thread(lambda: self.supabase.table(self.table).insert(row).execute())
        except Exception as e:
            raise PersistenceFailure(f"Failed to save audit log for {entry.url}: {e}") from e
        if not result.data:
            raise PersistenceFailure(f"Insert returned no row for {entry.url}")
        return str(result.data[0]["id"])

    async def delete_entries_for_link(self, project_id: str, link_id: str) -> int:
        def delete() -> int:
            result = (
                self.supabase.table(self.table)
                .delete()
                .eq("project_id", project_id)
                .eq("link_id", link_id)
                .execute()
            )
            return len(result.data or [])

        try:
            return await asyncio.to_thread(delete)
        except Exception as e:
            raise PersistenceFailure(f"Failed to delete audit logs for {project_id}/{link_id}: {e}") from e

    async def cleanup_older_than(self, max_age_days: int = 30, keep_per_link: int = 2) -> CleanupResult:
        cutoff = utc_now() - datetime.timedelta(days=max_age_days)

        def cleanup() -> CleanupResult:
            old_rows = DbHelpers.get_rows_older_than(self.supabase, self.table, cutoff)
            protected = set()
            for project_id, link_id in {(row["project_id"], row["link_id"]) for row in old_rows}:
                protected.update(
                    DbHelpers.get_newest_ids_per_link(
                        self.supabase, self.table, project_id, link_id, keep_per_link
                    )
                )
            doomed = [str(row["id"]) for row in old_rows if str(row["id"]) not in protected]
            deleted = DbHelpers.delete_ids(self.supabase, self.table, doomed)
            return CleanupResult(deleted=deleted, kept=DbHelpers.count_rows(self.supabase, self.table))

        try:
            result = await asyncio.to_thread(cleanup)
        except Exception as e:
            raise PersistenceFailure(f"Audit log cleanup failed: {e}") from e
        logger.info(f"Audit log cleanup: deleted {result.deleted}, kept {result.kept}")
        return result

    async def _upload_screenshot(self, entry: AuditLogEntry) -> Optional[str]:
        """Upload the inline screenshot, returning its public URL or None on failure."""
        timestamp = entry.timestamp.strftime("%Y%m%dT%H%M%S%f")
        path = f"{entry.project_id}/{entry.link_id}/{timestamp}.png"
        data = base64.b64decode(entry.screenshot)
        bucket = self.supabase.storage.from_(self.config.screenshot_bucket)

        def upload() -> str:
            try:
                bucket.upload(
                    path,
                    data,
                    {"content-type": "image/png", "cache-control": "3600", "upsert": "true"},
                )
            except Exception as e:
                logger.debug(f"Upload of {path} failed ({e}), retrying as update")
                bucket.update(path, data, {"content-type": "image/png", "cache-control": "3600"})
            return bucket.get_public_url(path)

        try:
            return await asyncio.to_thread(upload)
        except Exception as e:
            logger.warning(f"Error uploading screenshot to storage, storing inline: {e}")
            return None

"""
Database helper functions for audit log and catalog tables
"""
import datetime
from typing import Any, Dict, Iterable, List, Optional

from supabase import Client

from entities.fastapi.schema_public_latest import (
    AuditLogsInsert,
    ProjectLinksBaseSchema,
    ProjectsBaseSchema,
)

from ..models import AuditLogEntry, ChangeStatus, FieldChange, PageType, Project, ProjectLink

# PostgREST URL length limits how many ids fit in one in_() filter
DELETE_CHUNK_SIZE = 100


class DbHelpers:
    @staticmethod
    def entry_to_row(entry: AuditLogEntry) -> Dict[str, Any]:
        """Convert an AuditLogEntry to an audit_logs insert row"""
        row = AuditLogsInsert(
            id=entry.id,
            schema_version=entry.schema_version,
            project_id=entry.project_id,
            link_id=entry.link_id,
            url=entry.url,
            timestamp=entry.timestamp,
            full_hash=entry.full_hash,
            content_hash=entry.content_hash,
            html_source=entry.html_source,
            screenshot_url=entry.screenshot_url,
            screenshot=entry.screenshot,
            diff_patch=entry.diff_patch,
            change_status=entry.change_status.value if entry.change_status else None,
            field_changes=[change.model_dump(mode="json") for change in entry.field_changes] or None,
            change_summary=entry.change_summary,
        )
        return row.model_dump(mode="json", exclude_none=True)

    @staticmethod
    def row_to_entry(row: Dict[str, Any]) -> AuditLogEntry:
        """Convert an audit_logs row to an AuditLogEntry"""
        change_status = row.get("change_status")
        return AuditLogEntry(
            schema_version=row.get("schema_version") or 1,
            id=str(row["id"]) if row.get("id") is not None else None,
            project_id=row["project_id"],
            link_id=row["link_id"],
            url=row.get("url") or "",
            timestamp=row["timestamp"],
            full_hash=row.get("full_hash") or "",
            content_hash=row.get("content_hash") or "",
            html_source=row.get("html_source") or "",
            screenshot_url=row.get("screenshot_url"),
            screenshot=row.get("screenshot"),
            diff_patch=row.get("diff_patch"),
            change_status=ChangeStatus(change_status) if change_status else None,
            field_changes=[FieldChange(**change) for change in row.get("field_changes") or []],
            change_summary=row.get("change_summary"),
        )

    @staticmethod
    def get_latest_rows(
        supabase: Client, table: str, project_id: str, link_id: str, limit: int = 1
    ) -> List[Dict]:
        """Get the most recent audit log rows for a link"""
        result = (
            supabase.table(table)
            .select("*")
            .eq("project_id", project_id)
            .eq("link_id", link_id)
            .order("timestamp", desc=True)
            .limit(limit)
            .execute()
        )
        return result.data if result.data else []

    @staticmethod
    def get_rows_older_than(supabase: Client, table: str, cutoff: datetime.datetime) -> List[Dict]:
        """Get id, link and timestamp of every audit log row older than cutoff"""
        result = (
            supabase.table(table)
            .select("id, project_id, link_id, timestamp")
            .lt("timestamp", cutoff.isoformat())
            .execute()
        )
        return result.data if result.data else []

    @staticmethod
    def get_newest_ids_per_link(
        supabase: Client, table: str, project_id: str, link_id: str, keep: int
    ) -> List[str]:
        """Ids of the `keep` most recent rows for a link"""
        if keep <= 0:
            return []
        result = (
            supabase.table(table)
            .select("id")
            .eq("project_id", project_id)
            .eq("link_id", link_id)
            .order("timestamp", desc=True)
            .limit(keep)
            .execute()
        )
        return [str(row["id"]) for row in result.data or []]

    @staticmethod
    def delete_ids(supabase: Client, table: str, ids: Iterable[str]) -> int:
        """Delete rows by id in chunks, returning the number of ids submitted"""
        ids = list(ids)
        for start in range(0, len(ids), DELETE_CHUNK_SIZE):
            chunk = ids[start : start + DELETE_CHUNK_SIZE]
            supabase.table(table).delete().in_("id", chunk).execute()
        return len(ids)

    @staticmethod
    def count_rows(supabase: Client, table: str) -> int:
        result = supabase.table(table).select("id", count="exact").limit(1).execute()
        return result.count or 0

    @staticmethod
    def row_to_link(row: Dict[str, Any]) -> ProjectLink:
        link = ProjectLinksBaseSchema(
            **{**row, "id": str(row["id"]), "project_id": str(row.get("project_id", ""))}
        )
        return ProjectLink(
            id=link.id,
            url=link.url,
            title=link.title,
            page_type=PageType(link.page_type),
            source=link.source,
        )

    @staticmethod
    def row_to_project(row: Dict[str, Any], links: Optional[List[ProjectLink]] = None) -> Project:
        project = ProjectsBaseSchema(**{**row, "id": str(row["id"])})
        return Project(
            id=project.id,
            name=project.name,
            sitemap_url=project.sitemap_url,
            links=links or [],
        )

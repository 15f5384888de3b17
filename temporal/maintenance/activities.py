"""
Temporal activities for scheduled audit maintenance.

Activities call the scan orchestrator and the audit log repository directly,
wrapping them with Temporal's retry and error handling capabilities.
"""

import asyncio
from typing import List

from temporalio import activity

from ..shared import (
    CleanupActivityResult,
    CleanupInput,
    DailyAuditInput,
    ProjectScanResult,
)
from services.audit_log_repository import AuditLogRepository, SupabaseAuditLogRepository
from services.config import storage_config
from services.errors import AuditServiceError, ProjectNotFound, ScanAlreadyRunning
from services.models import ScanStatus
from services.progress_store import ScanProgressStore
from services.project_catalog import ProjectCatalog, SupabaseProjectCatalog
from services.renderer import PageRenderer
from services.scan_orchestrator import ScanOrchestrator

HEARTBEAT_INTERVAL_SECONDS = 10


class AuditMaintenanceActivities:
    """Activities for the daily scan and retention cleanup."""

    def __init__(
        self,
        orchestrator: ScanOrchestrator,
        catalog: ProjectCatalog,
        repository: AuditLogRepository,
    ):
        self.orchestrator = orchestrator
        self.catalog = catalog
        self.repository = repository

    @classmethod
    def from_storage_config(cls, renderer: PageRenderer) -> "AuditMaintenanceActivities":
        """Build activities backed by Supabase."""
        if not storage_config.enabled:
            raise ValueError("SUPABASE_URL and SUPABASE_KEY environment variables are required")

        repository = SupabaseAuditLogRepository()
        catalog = SupabaseProjectCatalog()
        orchestrator = ScanOrchestrator(
            store=ScanProgressStore(),
            renderer=renderer,
            repository=repository,
            catalog=catalog,
        )
        return cls(orchestrator, catalog, repository)

    @activity.defn
    async def list_scan_projects(self, input_data: DailyAuditInput) -> List[str]:
        """Ids of projects to scan: the requested ones, or every project with a sitemap."""
        projects = await self.catalog.list_projects()
        if input_data.project_ids:
            wanted = set(input_data.project_ids)
            project_ids = [project.id for project in projects if project.id in wanted]
        else:
            project_ids = [project.id for project in projects if project.sitemap_url]

        activity.logger.info(f"Found {len(project_ids)} projects to scan")
        return project_ids

    @activity.defn
    async def scan_project(self, project_id: str) -> ProjectScanResult:
        """
        Run a bulk scan of one project and wait for it to finish.

        Heartbeats while the scan runs. If the activity is cancelled the scan
        is asked to stop at its next page boundary.
        """
        try:
            started = await self.orchestrator.start_project_scan(project_id)
        except ProjectNotFound as e:
            activity.logger.warning(e.message)
            return ProjectScanResult(project_id=project_id, success=False, error_message=e.message)
        except ScanAlreadyRunning as e:
            activity.logger.info(f"Skipping project {project_id}: scan {e.scan_id} already running")
            return ProjectScanResult(
                project_id=project_id, scan_id=e.scan_id, success=False, error_message=e.message
            )

        if started.scan_id is None:
            activity.logger.info(f"Project {project_id} has no pages to scan")
            return ProjectScanResult(project_id=project_id, total_pages=0, success=True)

        scan_id = started.scan_id
        activity.logger.info(f"Scanning project {project_id}: {started.total_pages} pages ({scan_id})")

        waiter = asyncio.ensure_future(self.orchestrator.wait(scan_id))
        try:
            while not waiter.done():
                activity.heartbeat(scan_id)
                await asyncio.wait({waiter}, timeout=HEARTBEAT_INTERVAL_SECONDS)
        except asyncio.CancelledError:
            self.orchestrator.cancel(scan_id)
            raise

        progress = waiter.result()
        if progress is None:
            return ProjectScanResult(
                project_id=project_id,
                scan_id=scan_id,
                total_pages=started.total_pages,
                success=False,
                error_message="Scan progress expired before completion",
            )

        summary = progress.summary
        activity.logger.info(
            f"Scan {scan_id} {progress.status.value}: {summary.no_change} unchanged, "
            f"{summary.tech_change} technical, {summary.content_changed} changed, {summary.failed} failed"
        )
        return ProjectScanResult(
            project_id=project_id,
            scan_id=scan_id,
            status=progress.status.value,
            total_pages=progress.total,
            no_change=summary.no_change,
            tech_change=summary.tech_change,
            content_changed=summary.content_changed,
            failed=summary.failed,
            success=progress.status == ScanStatus.COMPLETED,
            error_message=progress.error,
        )

    @activity.defn
    async def cleanup_audit_logs(self, input_data: CleanupInput) -> CleanupActivityResult:
        """Delete audit logs older than max_age_days, keeping the newest per link."""
        try:
            result = await self.repository.cleanup_older_than(
                max_age_days=input_data.max_age_days, keep_per_link=input_data.keep_per_link
            )
        except AuditServiceError as e:
            activity.logger.error(f"Audit log cleanup failed: {e.message}")
            raise

        activity.logger.info(f"Audit logs: deleted {result.deleted}, kept {result.kept}")
        return CleanupActivityResult(deleted=result.deleted, kept=result.kept, success=True)

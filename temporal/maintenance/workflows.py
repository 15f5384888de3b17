"""
Temporal workflow for the daily audit.

Scans every project that has a sitemap, one after another, then prunes old
audit logs. Replaces the cron-triggered daily scan and cleanup endpoints
with a durable workflow.
"""

from datetime import timedelta
from typing import List

from temporalio import workflow
from temporalio.exceptions import ActivityError

with workflow.unsafe.imports_passed_through():
    from .activities import AuditMaintenanceActivities
    from ..config import temporal_config
    from ..shared import (
        CleanupActivityResult,
        CleanupInput,
        DailyAuditInput,
        DailyAuditResult,
        ProjectScanResult,
    )


@workflow.defn
class DailyAuditWorkflow:
    """
    Daily audit pipeline:
    1. List the projects to scan
    2. Scan each project sequentially, pausing between projects
    3. Delete audit logs past the retention window
    """

    @workflow.run
    async def run(self, input_data: DailyAuditInput) -> DailyAuditResult:
        start_time = workflow.now()
        retry_policy = temporal_config.default_retry_policy

        workflow.logger.info("Starting daily audit")

        project_ids: List[str] = await workflow.execute_activity_method(
            AuditMaintenanceActivities.list_scan_projects,
            input_data,
            start_to_close_timeout=temporal_config.list_projects_timeout,
            retry_policy=retry_policy,
        )
        workflow.logger.info(f"Scanning {len(project_ids)} projects")

        project_results = await self._scan_projects(project_ids, input_data)

        cleanup = None
        if input_data.run_cleanup:
            cleanup = await self._cleanup(input_data)

        total_errors = sum(1 for r in project_results if not r.success)
        if cleanup is not None and not cleanup.success:
            total_errors += 1
        duration_seconds = (workflow.now() - start_time).total_seconds()

        workflow.logger.info(
            f"Daily audit completed! Errors: {total_errors}, Duration: {duration_seconds:.2f}s"
        )
        return DailyAuditResult(
            project_results=project_results,
            cleanup=cleanup,
            total_success=total_errors == 0,
            total_errors=total_errors,
            duration_seconds=duration_seconds,
        )

    async def _scan_projects(
        self, project_ids: List[str], input_data: DailyAuditInput
    ) -> List[ProjectScanResult]:
        results: List[ProjectScanResult] = []

        for index, project_id in enumerate(project_ids):
            try:
                result = await workflow.execute_activity_method(
                    AuditMaintenanceActivities.scan_project,
                    project_id,
                    start_to_close_timeout=temporal_config.scan_project_timeout,
                    heartbeat_timeout=temporal_config.scan_heartbeat_timeout,
                    retry_policy=temporal_config.default_retry_policy,
                )
            except ActivityError as e:
                workflow.logger.error(f"Scan failed for project {project_id}: {e}")
                result = ProjectScanResult(project_id=project_id, success=False, error_message=str(e))
            results.append(result)

            # Be nice to the audited servers
            if index < len(project_ids) - 1 and input_data.project_delay_seconds > 0:
                await workflow.sleep(timedelta(seconds=input_data.project_delay_seconds))

        successful = sum(1 for r in results if r.success)
        workflow.logger.info(f"Project scans completed: {successful}/{len(project_ids)} successful")
        return results

    async def _cleanup(self, input_data: DailyAuditInput) -> CleanupActivityResult:
        try:
            return await workflow.execute_activity_method(
                AuditMaintenanceActivities.cleanup_audit_logs,
                CleanupInput(max_age_days=input_data.max_age_days, keep_per_link=input_data.keep_per_link),
                start_to_close_timeout=temporal_config.cleanup_timeout,
                retry_policy=temporal_config.default_retry_policy,
            )
        except ActivityError as e:
            workflow.logger.error(f"Audit log cleanup failed: {e}")
            return CleanupActivityResult(success=False, error_message=str(e))

"""
Client to start the daily audit workflow.

Runs the workflow once and prints the results, or registers it as a cron
workflow when DAILY_AUDIT_CRON is set.

Usage:
    python temporal/maintenance/run_workflow.py

Environment Variables:
    TEMPORAL_HOST: Temporal server host (default: localhost:7233)
    TEMPORAL_NAMESPACE: Temporal namespace (default: default)
    DAILY_AUDIT_CRON: cron expression, e.g. "0 6 * * *"
    AUDIT_RETENTION_DAYS / AUDIT_KEEP_PER_LINK: retention settings
"""

import asyncio
import sys
import traceback
from datetime import datetime
from pathlib import Path

# Add the project root to the Python path so we can import temporal modules
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from temporalio.client import Client, WorkflowFailureError
from temporalio.contrib.pydantic import pydantic_data_converter

from temporal.config import maintenance_config, temporal_config
from temporal.maintenance.workflows import DailyAuditWorkflow
from temporal.shared import MAINTENANCE_TASK_QUEUE_NAME, DailyAuditInput


async def main() -> None:
    """Start the daily audit workflow."""
    print("Starting daily audit...")
    print(f"Connecting to Temporal at {temporal_config.host}, namespace: {temporal_config.namespace}")

    client: Client = await Client.connect(
        temporal_config.host,
        namespace=temporal_config.namespace,
        data_converter=pydantic_data_converter,
    )

    print("Connected to Temporal server")

    input_data = DailyAuditInput(
        max_age_days=maintenance_config.max_age_days,
        keep_per_link=maintenance_config.keep_per_link,
        project_delay_seconds=maintenance_config.project_delay_seconds,
    )

    if maintenance_config.cron_schedule:
        handle = await client.start_workflow(
            DailyAuditWorkflow.run,
            input_data,
            id="daily-audit-cron",
            task_queue=MAINTENANCE_TASK_QUEUE_NAME,
            cron_schedule=maintenance_config.cron_schedule,
        )
        print(f"Scheduled daily audit '{maintenance_config.cron_schedule}' as {handle.id}")
        return

    workflow_id = f"daily-audit-{datetime.now().strftime('%Y%m%d-%H%M%S')}"
    print(f"Starting workflow with ID: {workflow_id}")

    try:
        result = await client.execute_workflow(
            DailyAuditWorkflow.run,
            input_data,
            id=workflow_id,
            task_queue=MAINTENANCE_TASK_QUEUE_NAME,
            execution_timeout=temporal_config.workflow_execution_timeout,
        )

        print("\nDaily audit completed!")
        print("Results:")
        print(f"  Projects scanned: {len([r for r in result.project_results if r.success])}/{len(result.project_results)}")
        for project_result in result.project_results:
            print(
                f"  {project_result.project_id}: {project_result.status or 'skipped'} "
                f"({project_result.content_changed} changed, {project_result.tech_change} technical, "
                f"{project_result.no_change} unchanged, {project_result.failed} failed)"
            )
        if result.cleanup is not None:
            print(f"  Audit logs deleted: {result.cleanup.deleted}, kept: {result.cleanup.kept}")
        print(f"  Total errors: {result.total_errors}")
        print(f"  Duration: {result.duration_seconds:.2f} seconds")

        if result.total_errors > 0:
            print("\nErrors encountered:")
            for project_result in result.project_results:
                if not project_result.success:
                    print(f"  Scan failed for {project_result.project_id}: {project_result.error_message}")
            if result.cleanup is not None and not result.cleanup.success:
                print(f"  Cleanup failed: {result.cleanup.error_message}")

    except WorkflowFailureError as e:
        print(f"\nWorkflow failed: {e}")
        print(f"Traceback: {traceback.format_exc()}")
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nWorkflow interrupted by user")
        sys.exit(1)
    except Exception as e:
        print(f"\nUnexpected error: {e}")
        print(f"Traceback: {traceback.format_exc()}")
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())

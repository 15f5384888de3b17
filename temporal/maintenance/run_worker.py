"""
Temporal worker process for audit maintenance.

This script starts a Temporal worker that executes the daily audit workflow
and its activities. Run this in a separate process/terminal from the workflow client.

Usage:
    python temporal/maintenance/run_worker.py

Environment Variables:
    TEMPORAL_HOST: Temporal server host (default: localhost:7233)
    TEMPORAL_NAMESPACE: Temporal namespace (default: default)
    SUPABASE_URL, SUPABASE_KEY: audit log and project storage
"""

import asyncio
import sys
from pathlib import Path

# Add the project root to the Python path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from temporalio.client import Client
from temporalio.contrib.pydantic import pydantic_data_converter
from temporalio.worker import Worker

from services.renderer import PlaywrightRenderer
from temporal.config import temporal_config
from temporal.maintenance.activities import AuditMaintenanceActivities
from temporal.maintenance.workflows import DailyAuditWorkflow
from temporal.shared import MAINTENANCE_TASK_QUEUE_NAME


async def main() -> None:
    """Start the Temporal worker."""
    print(f"Connecting to Temporal at {temporal_config.host}, namespace: {temporal_config.namespace}")

    client: Client = await Client.connect(
        temporal_config.host,
        namespace=temporal_config.namespace,
        data_converter=pydantic_data_converter,
    )

    print("Connected to Temporal server")

    async with PlaywrightRenderer() as renderer:
        activities = AuditMaintenanceActivities.from_storage_config(renderer)

        print(f"Starting worker for task queue: {MAINTENANCE_TASK_QUEUE_NAME}")

        worker: Worker = Worker(
            client,
            task_queue=MAINTENANCE_TASK_QUEUE_NAME,
            workflows=[DailyAuditWorkflow],
            activities=[
                activities.list_scan_projects,
                activities.scan_project,
                activities.cleanup_audit_logs,
            ],
        )

        print("Audit maintenance worker started!")
        print("Press Ctrl+C to stop the worker")

        try:
            await worker.run()
        except KeyboardInterrupt:
            print("\nWorker stopped by user")
        except Exception as e:
            print(f"Worker failed: {e}")
            raise
        finally:
            await activities.orchestrator.shutdown()


if __name__ == "__main__":
    asyncio.run(main())

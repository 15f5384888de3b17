"""
Shared data models and constants for the Temporal audit maintenance workflow.

This module contains the data structures passed between the daily audit
workflow and its activities.
"""

from typing import List, Optional
from pydantic import BaseModel, Field

MAINTENANCE_TASK_QUEUE_NAME = "AUDIT_MAINTENANCE_TASK_QUEUE"


class DailyAuditInput(BaseModel):
    """Input data for the daily audit workflow."""
    project_ids: Optional[List[str]] = None  # None scans every project with a sitemap
    run_cleanup: bool = True
    max_age_days: int = 30
    keep_per_link: int = 2
    project_delay_seconds: float = 2.0


class ProjectScanResult(BaseModel):
    """Result from scanning a single project."""
    project_id: str
    scan_id: Optional[str] = None
    status: Optional[str] = None
    total_pages: int = 0
    no_change: int = 0
    tech_change: int = 0
    content_changed: int = 0
    failed: int = 0
    success: bool
    error_message: Optional[str] = None


class CleanupInput(BaseModel):
    """Retention settings for audit log cleanup."""
    max_age_days: int = 30
    keep_per_link: int = 2


class CleanupActivityResult(BaseModel):
    """Result from pruning old audit logs."""
    deleted: int = 0
    kept: int = 0
    success: bool
    error_message: Optional[str] = None


class DailyAuditResult(BaseModel):
    """Complete result from the daily audit workflow."""
    project_results: List[ProjectScanResult] = Field(default_factory=list)
    cleanup: Optional[CleanupActivityResult] = None
    total_success: bool
    total_errors: int
    duration_seconds: float

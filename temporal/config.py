"""
Configuration management for Temporal audit maintenance workflows.

Centralized configuration loading from environment variables with sensible defaults.
"""

import os
from datetime import timedelta
from typing import List
from pydantic import BaseModel, ConfigDict, Field, field_validator
from temporalio.common import RetryPolicy
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class TemporalConfig(BaseModel):
    """Configuration for Temporal connection and workflows."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    # Temporal server settings
    host: str = Field(default_factory=lambda: os.getenv("TEMPORAL_HOST", "localhost:7233"))
    namespace: str = Field(default_factory=lambda: os.getenv("TEMPORAL_NAMESPACE", "default"))

    # Activity timeout settings (in seconds, converted to timedelta when accessed)
    list_projects_timeout_seconds: int = 30
    scan_project_timeout_seconds: int = 3600  # 1 hour
    scan_heartbeat_timeout_seconds: int = 120
    cleanup_timeout_seconds: int = 600  # 10 minutes

    # Workflow timeout (in seconds)
    workflow_execution_timeout_seconds: int = 6 * 3600

    # Retry policy settings
    retry_initial_interval_seconds: int = 1
    retry_backoff_coefficient: float = 2.0
    retry_maximum_interval_seconds: int = 60
    retry_maximum_attempts: int = 3
    retry_non_retryable_error_types: List[str] = ["ValueError", "ProjectNotFound"]

    @property
    def list_projects_timeout(self) -> timedelta:
        return timedelta(seconds=self.list_projects_timeout_seconds)

    @property
    def scan_project_timeout(self) -> timedelta:
        return timedelta(seconds=self.scan_project_timeout_seconds)

    @property
    def scan_heartbeat_timeout(self) -> timedelta:
        return timedelta(seconds=self.scan_heartbeat_timeout_seconds)

    @property
    def cleanup_timeout(self) -> timedelta:
        return timedelta(seconds=self.cleanup_timeout_seconds)

    @property
    def workflow_execution_timeout(self) -> timedelta:
        return timedelta(seconds=self.workflow_execution_timeout_seconds)

    @property
    def default_retry_policy(self) -> RetryPolicy:
        """Get the default retry policy for activities."""
        return RetryPolicy(
            initial_interval=timedelta(seconds=self.retry_initial_interval_seconds),
            backoff_coefficient=self.retry_backoff_coefficient,
            maximum_interval=timedelta(seconds=self.retry_maximum_interval_seconds),
            maximum_attempts=self.retry_maximum_attempts,
            non_retryable_error_types=self.retry_non_retryable_error_types,
        )


class MaintenanceConfig(BaseModel):
    """Settings for the daily scan and audit log retention."""

    max_age_days: int = Field(default_factory=lambda: int(os.getenv("AUDIT_RETENTION_DAYS", "30")))
    keep_per_link: int = Field(default_factory=lambda: int(os.getenv("AUDIT_KEEP_PER_LINK", "2")))
    project_delay_seconds: float = Field(
        default_factory=lambda: float(os.getenv("DAILY_SCAN_PROJECT_DELAY_SECONDS", "2"))
    )
    # e.g. "0 6 * * *"; empty runs the workflow once
    cron_schedule: str = Field(default_factory=lambda: os.getenv("DAILY_AUDIT_CRON", ""))

    @field_validator("max_age_days", "keep_per_link")
    @classmethod
    def validate_non_negative(cls, v):
        if v < 0:
            raise ValueError("Retention settings must not be negative")
        return v


# Global configuration instances
temporal_config = TemporalConfig()
maintenance_config = MaintenanceConfig()

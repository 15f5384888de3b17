"""
Error taxonomy for the scan-and-diff pipeline.

Per-page failures (RenderFailure) are captured into scan outcomes, decode
failures are surfaced to API callers as 4xx responses, persistence write
failures are logged and skipped, and OrchestratorFault ends a scan as failed.
"""
from typing import Optional


class AuditServiceError(Exception):
    """Base class with a machine readable code and a user facing message."""

    code = "AUDIT_ERROR"
    default_user_message = "An unexpected error occurred"

    def __init__(self, message: str, user_message: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.user_message = user_message or self.default_user_message


class RenderFailure(AuditServiceError):
    """A page could not be rendered. Transient failures are retried."""

    code = "RENDER_FAILURE"
    default_user_message = "The page could not be loaded."

    def __init__(self, url: str, message: str, transient: bool = True):
        super().__init__(f"{url}: {message}")
        self.url = url
        self.transient = transient


class DecodeFailure(AuditServiceError):
    code = "DECODE_FAILURE"
    default_user_message = "The submitted content could not be decoded."


class ImageDecodeError(DecodeFailure):
    code = "IMAGE_DECODE_ERROR"
    default_user_message = "One of the screenshots is not a valid image."


class PersistenceFailure(AuditServiceError):
    code = "PERSISTENCE_FAILURE"
    default_user_message = "Database error. Please try again later."


class OrchestratorFault(AuditServiceError):
    code = "ORCHESTRATOR_FAULT"
    default_user_message = "The scan stopped because of an internal error."


class ScanNotFound(AuditServiceError):
    code = "SCAN_NOT_FOUND"
    default_user_message = (
        "The scan may have expired or never existed. "
        "Scans are cleaned up 10 minutes after completion."
    )

    def __init__(self, scan_id: str):
        super().__init__(f"Scan not found: {scan_id}")
        self.scan_id = scan_id


class ScanAlreadyRunning(AuditServiceError):
    code = "SCAN_ALREADY_RUNNING"
    default_user_message = "A scan is already running for this project"

    def __init__(self, project_id: str, scan_id: str):
        super().__init__(f"Scan {scan_id} is already running for project {project_id}")
        self.project_id = project_id
        self.scan_id = scan_id


class ProjectNotFound(AuditServiceError):
    code = "PROJECT_NOT_FOUND"
    default_user_message = "Project not found"

    def __init__(self, project_id: str):
        super().__init__(f"Project not found: {project_id}")
        self.project_id = project_id

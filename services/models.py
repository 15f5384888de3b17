"""
Domain models shared by the scan pipeline and the API.

Models serialize with camelCase aliases so API payloads match what the
dashboard polls for; Python code uses the snake_case attribute names.
"""
import datetime
import hashlib
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel

SCHEMA_VERSION = 1


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class CamelModel(BaseModel):
    """Base model with camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ChangeStatus(str, Enum):
    NO_CHANGE = "NO_CHANGE"
    TECH_CHANGE_ONLY = "TECH_CHANGE_ONLY"
    CONTENT_CHANGED = "CONTENT_CHANGED"
    SCAN_FAILED = "SCAN_FAILED"


class ScanStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not ScanStatus.RUNNING


class PageType(str, Enum):
    STATIC = "static"
    COLLECTION = "collection"


class FieldChangeType(str, Enum):
    ADDED = "added"
    REMOVED = "removed"
    MODIFIED = "modified"


class FieldChange(CamelModel):
    """One user-visible field that differs between two captures."""

    field: str
    old_value: Any = None
    new_value: Any = None
    change_type: FieldChangeType


class ContentSnapshot(CamelModel):
    """Reader-facing facts extracted from a captured page."""

    title: str = ""
    h1: str = ""
    meta_description: str = ""
    word_count: int = 0
    headings: List[str] = Field(default_factory=list)  # "[H2] text"
    images: List[str] = Field(default_factory=list)
    links: List[str] = Field(default_factory=list)
    body_text_preview: str = ""


class ScanSummary(CamelModel):
    """Counts of page outcomes for one scan."""

    no_change: int = 0
    tech_change: int = 0
    content_changed: int = 0
    failed: int = 0

    def record(self, status: ChangeStatus) -> "ScanSummary":
        """Return a copy with the outcome counted."""
        counts = self.model_dump()
        if status == ChangeStatus.NO_CHANGE:
            counts["no_change"] += 1
        elif status == ChangeStatus.TECH_CHANGE_ONLY:
            counts["tech_change"] += 1
        elif status == ChangeStatus.CONTENT_CHANGED:
            counts["content_changed"] += 1
        else:
            counts["failed"] += 1
        return ScanSummary(**counts)

    @property
    def resolved(self) -> int:
        return self.no_change + self.tech_change + self.content_changed


class ScanProgress(CamelModel):
    """Ephemeral state of one bulk scan run."""

    schema_version: int = SCHEMA_VERSION
    scan_id: str
    project_id: str
    status: ScanStatus = ScanStatus.RUNNING
    current: int = 0
    total: int = 0
    current_url: str = ""
    started_at: datetime.datetime = Field(default_factory=utc_now)
    completed_at: Optional[datetime.datetime] = None
    error: Optional[str] = None
    summary: ScanSummary = Field(default_factory=ScanSummary)
    cancel_requested: bool = False
    target_link_ids: List[str] = Field(default_factory=list)
    completed_link_ids: List[str] = Field(default_factory=list)

    @computed_field
    @property
    def percentage(self) -> int:
        if self.total <= 0:
            return 0
        return round(self.current / self.total * 100)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


class AuditLogEntry(CamelModel):
    """One page capture. Immutable once written."""

    schema_version: int = SCHEMA_VERSION
    id: Optional[str] = None
    project_id: str
    link_id: str
    url: str
    timestamp: datetime.datetime = Field(default_factory=utc_now)
    full_hash: str
    content_hash: str
    html_source: str = ""
    screenshot_url: Optional[str] = None
    screenshot: Optional[str] = None  # base64 PNG when not uploaded
    diff_patch: Optional[str] = None
    change_status: Optional[ChangeStatus] = None
    field_changes: List[FieldChange] = Field(default_factory=list)
    change_summary: Optional[str] = None


class ImageDiffResult(CamelModel):
    diff_image: str  # base64 PNG, empty for a 0x0 canvas
    diff_pixel_count: int
    diff_percentage: float
    width: int
    height: int


class DiffStats(CamelModel):
    additions: int = 0
    deletions: int = 0


class HtmlDiffResult(CamelModel):
    diff_html: str
    stats: DiffStats = Field(default_factory=DiffStats)
    stylesheets: List[str] = Field(default_factory=list)
    base_url: Optional[str] = None


class ScanTarget(CamelModel):
    link_id: str
    url: str

    @classmethod
    def from_url(cls, url: str) -> "ScanTarget":
        return cls(link_id=hashlib.md5(url.encode()).hexdigest(), url=url)


class ScanOptions(CamelModel):
    """Per-scan overrides of ScanConfig."""

    warmup: Optional[bool] = None
    concurrency: Optional[int] = Field(default=None, ge=1)
    retry_attempts: Optional[int] = Field(default=None, ge=1)
    page_delay_seconds: Optional[float] = Field(default=None, ge=0)


class RenderResult(BaseModel):
    html: str = ""
    screenshot: Optional[bytes] = None
    error: Optional[str] = None


class PageOutcome(CamelModel):
    link_id: str
    url: str
    change_status: ChangeStatus
    attempts: int = 0
    error: Optional[str] = None
    entry_id: Optional[str] = None
    persisted: bool = False
    field_changes: List[FieldChange] = Field(default_factory=list)
    change_summary: Optional[str] = None


class ProjectLink(CamelModel):
    id: str
    url: str
    title: Optional[str] = None
    page_type: PageType = PageType.STATIC
    source: str = "auto"


class Project(CamelModel):
    id: str
    name: Optional[str] = None
    sitemap_url: Optional[str] = None
    links: List[ProjectLink] = Field(default_factory=list)


class ScanStartResult(CamelModel):
    scan_id: Optional[str] = None
    total_pages: int = 0
    message: str = ""

"""
Configuration for the scan pipeline.

Centralized configuration loading from environment variables with sensible defaults.
"""

import os
from typing import List, Optional
from pydantic import BaseModel, Field
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if not raw:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


DEFAULT_DYNAMIC_SELECTORS = [
    # Randomized "related stories" listings re-ordered on every load
    ".stories-listing_item",
    ".stories-listing-wrapper",
    # Ad slots
    "ins.adsbygoogle",
    "[data-ad-slot]",
    "[id^='google_ads_']",
    # Rotating / auto-refreshing widgets
    "[data-dynamic]",
    "[data-rotating]",
]


class ScanConfig(BaseModel):
    """Configuration for bulk scan orchestration."""

    concurrency: int = Field(default_factory=lambda: int(os.getenv("SCAN_CONCURRENCY", "1")))
    # Upper bound for per-scan concurrency overrides; each worker drives one browser page
    max_concurrency: int = Field(default_factory=lambda: int(os.getenv("SCAN_MAX_CONCURRENCY", "4")))
    retry_attempts: int = Field(default_factory=lambda: int(os.getenv("SCAN_RETRY_ATTEMPTS", "3")))
    retry_delay_seconds: float = Field(
        default_factory=lambda: float(os.getenv("SCAN_RETRY_DELAY_SECONDS", "1.0"))
    )
    render_timeout_ms: int = Field(default_factory=lambda: int(os.getenv("RENDER_TIMEOUT_MS", "30000")))
    page_delay_seconds: float = Field(
        default_factory=lambda: float(os.getenv("SCAN_PAGE_DELAY_SECONDS", "0.5"))
    )
    warmup: bool = Field(default_factory=lambda: _env_bool("SCAN_WARMUP", True))

    # Stored HTML above this size is truncated (storage quota, not semantics)
    max_html_bytes: int = Field(default_factory=lambda: int(os.getenv("AUDIT_MAX_HTML_BYTES", "900000")))
    max_diff_patch_bytes: int = Field(
        default_factory=lambda: int(os.getenv("AUDIT_MAX_DIFF_PATCH_BYTES", "200000"))
    )

    progress_retention_seconds: int = Field(
        default_factory=lambda: int(os.getenv("SCAN_PROGRESS_RETENTION_SECONDS", "600"))
    )

    @property
    def render_timeout_seconds(self) -> float:
        return self.render_timeout_ms / 1000.0


class RendererConfig(BaseModel):
    """Configuration for the Playwright page renderer."""

    headless: bool = Field(default_factory=lambda: _env_bool("RENDERER_HEADLESS", True))
    viewport_width: int = Field(default_factory=lambda: int(os.getenv("RENDERER_VIEWPORT_WIDTH", "1280")))
    viewport_height: int = Field(default_factory=lambda: int(os.getenv("RENDERER_VIEWPORT_HEIGHT", "800")))
    full_page: bool = Field(default_factory=lambda: _env_bool("RENDERER_FULL_PAGE", False))
    locale: str = "en-US"
    timezone_id: str = "UTC"
    user_agent: str = Field(
        default_factory=lambda: os.getenv(
            "RENDERER_USER_AGENT", "Mozilla/5.0 (compatible; PageAuditBot/1.0)"
        )
    )
    # Freezes Date inside the page when set, e.g. "2025-01-01T00:00:00Z"
    frozen_time_iso: Optional[str] = Field(default_factory=lambda: os.getenv("RENDERER_FROZEN_TIME"))

    # Warmup scroll settings
    warmup_step_ratio: float = 0.8
    warmup_delay_ms: int = 200
    warmup_max_passes: int = Field(default_factory=lambda: int(os.getenv("WARMUP_MAX_PASSES", "2")))
    warmup_settle_ms: int = 600
    ready_state_timeout_ms: int = 10000


class NormalizerConfig(BaseModel):
    """Selectors for page regions that change on every load."""

    dynamic_selectors: List[str] = Field(
        default_factory=lambda: _env_list("NORMALIZER_DYNAMIC_SELECTORS", DEFAULT_DYNAMIC_SELECTORS)
    )


class StorageConfig(BaseModel):
    """Supabase connection and table settings."""

    supabase_url: str = Field(default_factory=lambda: os.getenv("SUPABASE_URL", ""))
    supabase_key: str = Field(default_factory=lambda: os.getenv("SUPABASE_KEY", ""))
    audit_logs_table: str = "audit_logs"
    projects_table: str = "projects"
    project_links_table: str = "project_links"
    screenshot_bucket: str = Field(default_factory=lambda: os.getenv("SCREENSHOT_BUCKET", "screenshots"))

    @property
    def enabled(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)


# Global configuration instances
scan_config = ScanConfig()
renderer_config = RendererConfig()
normalizer_config = NormalizerConfig()
storage_config = StorageConfig()

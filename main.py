import asyncio
import html
import logging
import os
from contextlib import asynccontextmanager
from typing import List, Optional

import uvicorn
from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, Query, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import Field

from services.audit_log_repository import (
    AuditLogRepository,
    InMemoryAuditLogRepository,
    SupabaseAuditLogRepository,
)
from services.config import storage_config
from services.errors import DecodeFailure, PersistenceFailure, ProjectNotFound, ScanAlreadyRunning
from services.html_differ import compute_html_diff, wrap_diff_html
from services.image_differ import compare_images
from services.models import CamelModel, DiffStats, ScanOptions
from services.normalizer import strip_tags
from services.progress_store import ScanProgressStore
from services.project_catalog import InMemoryProjectCatalog, ProjectCatalog, SupabaseProjectCatalog
from services.renderer import PageRenderer, PlaywrightRenderer
from services.scan_orchestrator import ScanOrchestrator
from services.utils.image_sources import load_image_bytes

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("audit-service")

PREVIEW_CHARS = 500


class AppContainer:
    """Long-lived collaborators shared by all requests."""

    def __init__(
        self,
        store: ScanProgressStore,
        repository: AuditLogRepository,
        catalog: ProjectCatalog,
        renderer: PageRenderer,
        orchestrator: Optional[ScanOrchestrator] = None,
    ):
        self.store = store
        self.repository = repository
        self.catalog = catalog
        self.renderer = renderer
        self.orchestrator = orchestrator or ScanOrchestrator(
            store=store, renderer=renderer, repository=repository, catalog=catalog
        )

    async def close(self) -> None:
        await self.orchestrator.shutdown()
        await self.renderer.close()


def build_container() -> AppContainer:
    if storage_config.enabled:
        repository: AuditLogRepository = SupabaseAuditLogRepository()
        catalog: ProjectCatalog = SupabaseProjectCatalog()
    else:
        logger.warning("SUPABASE_URL/SUPABASE_KEY not set, using in-memory storage")
        repository = InMemoryAuditLogRepository()
        catalog = InMemoryProjectCatalog()
    return AppContainer(
        store=ScanProgressStore(),
        repository=repository,
        catalog=catalog,
        renderer=PlaywrightRenderer(),
    )


_container: Optional[AppContainer] = None


def get_container() -> AppContainer:
    global _container
    if _container is None:
        _container = build_container()
    return _container


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    if _container is not None:
        await _container.close()


app = FastAPI(title="Page Audit Service", lifespan=lifespan)

origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class ScanBulkOptions(ScanOptions):
    scan_collections: bool = False
    link_ids: Optional[List[str]] = None


class ScanBulkRequest(CamelModel):
    project_id: Optional[str] = None
    options: ScanBulkOptions = Field(default_factory=ScanBulkOptions)


class CancelScanRequest(CamelModel):
    scan_id: Optional[str] = None


class CompareScreenshotsRequest(CamelModel):
    before: Optional[str] = None
    after: Optional[str] = None


class VisualDiffResponse(CamelModel):
    diff_html: str
    stats: DiffStats
    base_url: str
    is_first_scan: bool
    current_timestamp: Optional[str] = None
    previous_timestamp: Optional[str] = None


def _preview(html_source: str) -> str:
    text = " ".join(strip_tags(html_source))
    preview = html.escape(text[:PREVIEW_CHARS])
    ellipsis = "..." if len(text) > PREVIEW_CHARS else ""
    return f'<p style="color: #666;">{preview}{ellipsis}</p>'


@app.get("/")
def root():
    return {"message": "Page audit service"}


@app.get("/health")
def health_check():
    return {"status": "healthy"}


@app.post("/scan-bulk")
async def start_bulk_scan(request: ScanBulkRequest, container: AppContainer = Depends(get_container)):
    """Start a background scan of a project's pages. Poll /scan-bulk/status for progress."""
    if not request.project_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing projectId")

    options = request.options
    try:
        result = await container.orchestrator.start_project_scan(
            request.project_id,
            link_ids=options.link_ids,
            scan_collections=options.scan_collections,
            options=ScanOptions(**options.model_dump(include=set(ScanOptions.model_fields))),
        )
        return result.model_dump(by_alias=True)

    except ProjectNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")
    except ScanAlreadyRunning as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"error": e.user_message, "scanId": e.scan_id},
        )
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("Failed to start bulk scan")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to start bulk scan: {str(e)}",
        )


@app.get("/scan-bulk/status")
async def get_scan_status(
    scan_id: Optional[str] = Query(default=None, alias="scanId"),
    container: AppContainer = Depends(get_container),
):
    """Latest known progress of a bulk scan."""
    if not scan_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing scanId parameter")

    progress = container.store.get(scan_id)
    if progress is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "error": "Scan not found",
                "message": "The scan may have expired or never existed. "
                "Scans are cleaned up 10 minutes after completion.",
            },
        )
    return progress.model_dump(by_alias=True, mode="json")


@app.post("/scan-bulk/cancel")
async def cancel_scan(request: CancelScanRequest, container: AppContainer = Depends(get_container)):
    """
    Request cancellation of a scan. The scan stops at the next page boundary.
    Cancelling a scan that already finished is a successful no-op.
    """
    if not request.scan_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing scanId")

    progress = container.orchestrator.cancel(request.scan_id)
    if progress is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Scan not found")

    message = "Scan already finished." if progress.is_terminal else "Cancellation requested."
    return {
        "success": True,
        "scanId": progress.scan_id,
        "status": progress.status.value,
        "message": message,
    }


@app.get("/scan-bulk/running")
async def get_running_scans(
    project_id: Optional[str] = Query(default=None, alias="projectId"),
    container: AppContainer = Depends(get_container),
):
    """Running scans for a project, used to resume progress display after a refresh."""
    if not project_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing projectId parameter")

    scans = [scan.model_dump(by_alias=True, mode="json") for scan in container.store.list_running(project_id)]
    return {"scans": scans, "hasRunningScans": len(scans) > 0}


@app.get("/scan-bulk/running-all")
async def get_all_running_scans(container: AppContainer = Depends(get_container)):
    scans = [scan.model_dump(by_alias=True, mode="json") for scan in container.store.list_running()]
    return {"scans": scans, "hasRunningScans": len(scans) > 0}


@app.get("/visual-diff")
async def get_visual_diff(
    project_id: Optional[str] = Query(default=None, alias="projectId"),
    link_id: Optional[str] = Query(default=None, alias="linkId"),
    container: AppContainer = Depends(get_container),
):
    """Inline HTML diff between the two most recent captures of a page."""
    if not project_id or not link_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing projectId or linkId")

    try:
        logs = await container.repository.get_recent_entries(project_id, link_id, limit=2)
        if not logs:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="No audit logs found for this page",
            )

        current_log = logs[0]
        previous_log = logs[1] if len(logs) > 1 else None

        if previous_log is None:
            content = _preview(current_log.html_source) if current_log.html_source else "<p>No content available</p>"
            first_scan_html = (
                '<div class="no-diff"><p>This is the first scan for this page. '
                "No previous version to compare against.</p>"
                f'<div style="margin-top: 16px; padding: 16px; background: #f5f5f5; border-radius: 8px;">{content}</div>'
                "</div>"
            )
            response = VisualDiffResponse(
                diff_html=wrap_diff_html(first_scan_html, current_log.url),
                stats=DiffStats(),
                base_url=current_log.url,
                is_first_scan=True,
                current_timestamp=current_log.timestamp.isoformat(),
            )
            return response.model_dump(by_alias=True)

        if not current_log.html_source or not previous_log.html_source:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="HTML source not available for comparison",
            )

        result = await asyncio.to_thread(
            compute_html_diff, previous_log.html_source, current_log.html_source, current_log.url
        )
        response = VisualDiffResponse(
            diff_html=wrap_diff_html(result.diff_html, current_log.url, result.stylesheets),
            stats=result.stats,
            base_url=current_log.url,
            is_first_scan=False,
            current_timestamp=current_log.timestamp.isoformat(),
            previous_timestamp=previous_log.timestamp.isoformat(),
        )
        return response.model_dump(by_alias=True)

    except HTTPException:
        raise
    except PersistenceFailure as e:
        logger.error(f"Failed to load audit logs: {e.message}")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.user_message)
    except Exception as e:
        logger.exception("Error computing visual diff")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to compute visual diff: {str(e)}",
        )


@app.post("/compare-screenshots")
async def compare_screenshots(request: CompareScreenshotsRequest):
    """Pixel diff of two screenshots given as base64, data URLs or http(s) URLs."""
    if not request.before or not request.after:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing before or after screenshot",
        )

    try:
        before = await load_image_bytes(request.before)
        after = await load_image_bytes(request.after)
        result = await asyncio.to_thread(compare_images, before, after)
        return {"success": True, **result.model_dump(by_alias=True)}

    except DecodeFailure as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"{e.user_message} {e.message}")
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("Failed to compare screenshots")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to compare screenshots: {str(e)}",
        )


def main():
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))


if __name__ == "__main__":
    main()

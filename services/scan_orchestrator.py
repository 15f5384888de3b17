"""
Bulk scan orchestration.

A bulk scan renders every target page, normalizes and hashes it, compares the
result with the latest stored capture and records a new audit log entry when
something changed. Scans run as background asyncio tasks and report into a
ScanProgressStore that API callers poll.

Cancellation is cooperative: the cancel flag is checked before each page is
started, never while a page is being rendered. A page that cannot be rendered
is counted as failed and the scan moves on; only faults outside a single
page (such as losing access to prior captures) fail the whole scan.
"""
import asyncio
import base64
import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .audit_log_repository import AuditLogRepository
from .config import ScanConfig, scan_config
from .errors import (
    OrchestratorFault,
    PersistenceFailure,
    ProjectNotFound,
    RenderFailure,
    ScanAlreadyRunning,
)
from .change_report import build_change_report, summarize_field_changes
from .html_differ import generate_diff_patch
from .models import (
    AuditLogEntry,
    ChangeStatus,
    PageOutcome,
    PageType,
    ProjectLink,
    RenderResult,
    ScanOptions,
    ScanProgress,
    ScanStartResult,
    ScanStatus,
    ScanTarget,
)
from .normalizer import HtmlNormalizer
from .progress_store import ScanProgressStore
from .project_catalog import ProjectCatalog
from .renderer import PageRenderer
from .utils.content_hasher import ContentHasher

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "<!-- [TRUNCATED] -->"


def truncate_utf8(text: Optional[str], max_bytes: int) -> Optional[str]:
    """Cap text at max_bytes of UTF-8, appending a marker when cut."""
    if text is None:
        return None
    encoded = text.encode("utf-8")
    if max_bytes <= 0 or len(encoded) <= max_bytes:
        return text
    budget = max(max_bytes - len(TRUNCATION_MARKER.encode("utf-8")), 0)
    return encoded[:budget].decode("utf-8", errors="ignore") + TRUNCATION_MARKER


def select_scan_links(
    links: Iterable[ProjectLink],
    link_ids: Optional[Sequence[str]] = None,
    scan_collections: bool = False,
) -> List[ProjectLink]:
    """Auto-discovered links, optionally narrowed to link_ids, collections excluded unless requested."""
    selected = [link for link in links if link.source == "auto"]
    if link_ids:
        wanted = set(link_ids)
        selected = [link for link in selected if link.id in wanted]
    if not scan_collections:
        selected = [link for link in selected if link.page_type != PageType.COLLECTION]
    return selected


class ScanOrchestrator:
    def __init__(
        self,
        store: ScanProgressStore,
        renderer: PageRenderer,
        repository: AuditLogRepository,
        catalog: Optional[ProjectCatalog] = None,
        config: Optional[ScanConfig] = None,
        normalizer: Optional[HtmlNormalizer] = None,
        hasher: Optional[ContentHasher] = None,
    ):
        self.store = store
        self.renderer = renderer
        self.repository = repository
        self.catalog = catalog
        self.config = config or scan_config
        self.normalizer = normalizer or HtmlNormalizer()
        self.hasher = hasher or ContentHasher(self.normalizer)
        self._tasks: Dict[str, asyncio.Task] = {}
        self._outcomes: Dict[str, List[PageOutcome]] = {}
        # Outcomes live exactly as long as the scan's progress record
        self.store.add_eviction_listener(self._forget)

    async def start_project_scan(
        self,
        project_id: str,
        link_ids: Optional[Sequence[str]] = None,
        scan_collections: bool = False,
        options: Optional[ScanOptions] = None,
    ) -> ScanStartResult:
        """
        Start a bulk scan over a project's tracked links.

        Raises:
            ProjectNotFound: the catalog has no such project
            ScanAlreadyRunning: a scan for the project is running and not cancelling
        """
        if self.catalog is None:
            raise OrchestratorFault("No project catalog configured")

        project = await self.catalog.get_project(project_id)
        if project is None:
            raise ProjectNotFound(project_id)

        active = self.store.find_active(project_id)
        if active is not None:
            raise ScanAlreadyRunning(project_id, active.scan_id)

        links = select_scan_links(project.links, link_ids, scan_collections)
        if not links:
            return ScanStartResult(scan_id=None, total_pages=0, message="No pages to scan")

        targets = [ScanTarget(link_id=link.id, url=link.url) for link in links]
        scan_id = await self.run_bulk_scan(project_id, targets, options)
        return ScanStartResult(
            scan_id=scan_id,
            total_pages=len(targets),
            message="Scan started. Poll /scan-bulk/status for progress.",
        )

    async def run_bulk_scan(
        self,
        project_id: str,
        targets: Sequence[Union[ScanTarget, str]],
        options: Optional[ScanOptions] = None,
    ) -> str:
        """Register a scan and run it in the background. Returns the scan id immediately."""
        resolved = [target if isinstance(target, ScanTarget) else ScanTarget.from_url(target) for target in targets]
        settings = self._settings(options)

        scan_id = self.store.generate_scan_id()
        self.store.init(scan_id, project_id, len(resolved), [target.link_id for target in resolved])
        self._outcomes[scan_id] = []

        task = asyncio.create_task(self._run(scan_id, project_id, resolved, settings))
        self._tasks[scan_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(scan_id, None))
        logger.info(f"Started scan {scan_id} for project {project_id} ({len(resolved)} pages)")
        return scan_id

    def cancel(self, scan_id: str) -> Optional[ScanProgress]:
        """Request cancellation. Takes effect before the next page starts."""
        return self.store.request_cancel(scan_id)

    async def wait(self, scan_id: str) -> Optional[ScanProgress]:
        """Wait for a scan task to finish and return its final progress."""
        task = self._tasks.get(scan_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return self.store.get(scan_id)

    def outcomes(self, scan_id: str) -> List[PageOutcome]:
        return list(self._outcomes.get(scan_id, []))

    def _forget(self, scan_id: str) -> None:
        self._outcomes.pop(scan_id, None)

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _settings(self, options: Optional[ScanOptions]) -> ScanConfig:
        settings = self.config
        if options is not None:
            settings = settings.model_copy(update=options.model_dump(exclude_none=True))
        cap = max(1, settings.max_concurrency)
        if settings.concurrency > cap:
            logger.warning(f"Requested concurrency {settings.concurrency} exceeds the limit, using {cap}")
            settings = settings.model_copy(update={"concurrency": cap})
        return settings

    async def _run(
        self, scan_id: str, project_id: str, targets: List[ScanTarget], settings: ScanConfig
    ) -> None:
        try:
            cancelled = await self._process_targets(scan_id, project_id, targets, settings)
        except asyncio.CancelledError:
            self.store.update(
                scan_id, status=ScanStatus.CANCELLED, current_url="", error="Scan task was cancelled"
            )
            raise
        except OrchestratorFault as e:
            logger.error(f"Scan {scan_id} failed: {e.message}")
            self.store.update(scan_id, status=ScanStatus.FAILED, current_url="", error=e.message)
            return
        except Exception as e:
            logger.exception(f"Scan {scan_id} failed unexpectedly")
            self.store.update(scan_id, status=ScanStatus.FAILED, current_url="", error=str(e) or type(e).__name__)
            return

        if cancelled:
            progress = self.store.mark_cancelled(scan_id)
            logger.info(f"Scan {scan_id} cancelled after {progress.current if progress else '?'} pages")
        else:
            progress = self.store.update(scan_id, status=ScanStatus.COMPLETED, current_url="")
            if progress:
                summary = progress.summary
                logger.info(
                    f"Completed scan {scan_id}: {summary.no_change} unchanged, "
                    f"{summary.tech_change} technical, {summary.content_changed} changed, "
                    f"{summary.failed} failed"
                )

    async def _process_targets(
        self, scan_id: str, project_id: str, targets: List[ScanTarget], settings: ScanConfig
    ) -> bool:
        """Drain the targets with a bounded worker pool. Returns True when stopped by a cancel request."""
        next_index = 0
        cancelled = False

        async def worker() -> None:
            nonlocal next_index, cancelled
            while True:
                if next_index >= len(targets):
                    return
                if self.store.is_cancel_requested(scan_id):
                    cancelled = True
                    return
                target = targets[next_index]
                next_index += 1

                self.store.update(scan_id, current_url=target.url)
                outcome = await self._scan_page(project_id, target, settings)
                self._outcomes.setdefault(scan_id, []).append(outcome)
                self.store.mark_page_completed(scan_id, target.link_id, outcome.change_status)

                if next_index < len(targets) and settings.page_delay_seconds > 0:
                    await asyncio.sleep(settings.page_delay_seconds)

        workers = [asyncio.create_task(worker()) for _ in range(max(1, min(settings.concurrency, len(targets))))]
        try:
            await asyncio.gather(*workers)
        except BaseException:
            for task in workers:
                task.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            raise
        return cancelled

    async def _render_with_retry(
        self, url: str, settings: ScanConfig
    ) -> Tuple[Optional[RenderResult], int, Optional[str]]:
        attempts = max(1, settings.retry_attempts)
        error: Optional[str] = None

        for attempt in range(1, attempts + 1):
            try:
                result = await asyncio.wait_for(
                    self.renderer.render(url, warmup=settings.warmup, timeout_ms=settings.render_timeout_ms),
                    timeout=settings.render_timeout_seconds,
                )
                if result.error and not result.html:
                    raise RenderFailure(url, result.error)
                return result, attempt, None
            except asyncio.TimeoutError:
                error = f"Render timed out after {settings.render_timeout_ms}ms"
                transient = True
            except RenderFailure as e:
                error = e.message
                transient = e.transient
            except Exception as e:
                error = str(e) or type(e).__name__
                transient = False

            logger.warning(f"Render attempt {attempt}/{attempts} failed for {url}: {error}")
            if not transient:
                return None, attempt, error
            if attempt < attempts and settings.retry_delay_seconds > 0:
                await asyncio.sleep(settings.retry_delay_seconds * attempt)

        return None, attempts, error

    async def _scan_page(self, project_id: str, target: ScanTarget, settings: ScanConfig) -> PageOutcome:
        result, attempts, error = await self._render_with_retry(target.url, settings)
        if result is None:
            return PageOutcome(
                link_id=target.link_id,
                url=target.url,
                change_status=ChangeStatus.SCAN_FAILED,
                attempts=attempts,
                error=error,
            )

        normalized = self.normalizer.normalize(result.html)
        full_hash, content_hash = self.hasher.generate_hashes(normalized)

        try:
            previous = await self.repository.get_latest_entry(project_id, target.link_id)
        except PersistenceFailure as e:
            raise OrchestratorFault(f"Cannot read previous capture of {target.url}: {e.message}") from e

        change_status = self.hasher.compute_change_status(
            full_hash,
            content_hash,
            previous.full_hash if previous else None,
            previous.content_hash if previous else None,
        )
        outcome = PageOutcome(
            link_id=target.link_id, url=target.url, change_status=change_status, attempts=attempts
        )
        if change_status == ChangeStatus.NO_CHANGE:
            return outcome

        diff_patch = None
        if previous is None:
            outcome.change_summary = "Initial snapshot"
        elif previous.html_source:
            if change_status == ChangeStatus.CONTENT_CHANGED:
                diff_patch = truncate_utf8(
                    generate_diff_patch(previous.html_source, normalized), settings.max_diff_patch_bytes
                )
            outcome.field_changes = build_change_report(previous.html_source, normalized)
        if previous is not None:
            outcome.change_summary = summarize_field_changes(outcome.field_changes) or "Changes detected"

        entry = AuditLogEntry(
            project_id=project_id,
            link_id=target.link_id,
            url=target.url,
            full_hash=full_hash,
            content_hash=content_hash,
            html_source=truncate_utf8(normalized, settings.max_html_bytes),
            screenshot=base64.b64encode(result.screenshot).decode("ascii") if result.screenshot else None,
            diff_patch=diff_patch,
            change_status=change_status,
            field_changes=outcome.field_changes,
            change_summary=outcome.change_summary,
        )
        try:
            outcome.entry_id = await self.repository.save_entry(entry)
            outcome.persisted = True
        except PersistenceFailure as e:
            logger.warning(f"Could not save audit log for {target.url}, continuing: {e.message}")
            outcome.error = e.message
        return outcome

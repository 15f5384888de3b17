"""
Shared fixtures: a canned-HTML renderer and in-memory storage.
"""
import asyncio
from typing import Callable, Dict, Iterable, List, Optional

import pytest

from services.audit_log_repository import InMemoryAuditLogRepository
from services.config import ScanConfig
from services.errors import RenderFailure
from services.models import PageType, Project, ProjectLink, RenderResult
from services.progress_store import ScanProgressStore
from services.project_catalog import InMemoryProjectCatalog
from services.scan_orchestrator import ScanOrchestrator


class FakeRenderer:
    """
    Serves canned HTML per URL.

    URLs in `hang` never finish rendering, `failures` maps a URL to the error
    it always raises and `flaky` to how many transient failures it raises
    before succeeding. When `gate` is set every render waits for it.
    """

    def __init__(
        self,
        pages: Optional[Dict[str, str]] = None,
        hang: Iterable[str] = (),
        failures: Optional[Dict[str, RenderFailure]] = None,
        on_render: Optional[Callable[[str], None]] = None,
    ):
        self.pages: Dict[str, str] = dict(pages or {})
        self.hang = set(hang)
        self.failures = dict(failures or {})
        self.flaky: Dict[str, int] = {}
        self.on_render = on_render
        self.gate: Optional[asyncio.Event] = None
        self.calls: List[str] = []
        self.closed = False

    async def render(self, url: str, *, warmup: bool = True, timeout_ms: int = 30000) -> RenderResult:
        self.calls.append(url)
        if self.on_render is not None:
            self.on_render(url)
        if self.gate is not None:
            await self.gate.wait()
        if url in self.hang:
            await asyncio.sleep(3600)
        if url in self.failures:
            raise self.failures[url]
        if self.flaky.get(url, 0) > 0:
            self.flaky[url] -= 1
            raise RenderFailure(url, "net::ERR_CONNECTION_RESET")
        html = self.pages.get(url, f"<html><body><h1>{url}</h1><p>Welcome</p></body></html>")
        return RenderResult(html=html, screenshot=b"\x89PNG-fake")

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fast_config() -> ScanConfig:
    return ScanConfig(
        concurrency=1,
        retry_attempts=2,
        retry_delay_seconds=0,
        render_timeout_ms=200,
        page_delay_seconds=0,
        warmup=False,
    )


@pytest.fixture
def store() -> ScanProgressStore:
    return ScanProgressStore(retention_seconds=600)


@pytest.fixture
def renderer() -> FakeRenderer:
    return FakeRenderer()


@pytest.fixture
def repository() -> InMemoryAuditLogRepository:
    return InMemoryAuditLogRepository()


@pytest.fixture
def catalog() -> InMemoryProjectCatalog:
    links = [ProjectLink(id=f"link-{i}", url=f"https://example.com/page-{i}") for i in range(1, 4)]
    links.append(ProjectLink(id="link-blog", url="https://example.com/blog", page_type=PageType.COLLECTION))
    links.append(ProjectLink(id="link-manual", url="https://example.com/manual", source="manual"))
    return InMemoryProjectCatalog(
        [
            Project(id="proj-1", name="Example", sitemap_url="https://example.com/sitemap.xml", links=links),
            Project(id="proj-empty", name="Empty"),
        ]
    )


@pytest.fixture
def orchestrator(store, renderer, repository, catalog, fast_config) -> ScanOrchestrator:
    return ScanOrchestrator(
        store=store, renderer=renderer, repository=repository, catalog=catalog, config=fast_config
    )

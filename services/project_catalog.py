"""
Read-only access to projects and their tracked links
"""
import asyncio
from typing import Dict, Iterable, List, Optional, Protocol

from supabase import Client, create_client

from .config import StorageConfig, storage_config
from .errors import PersistenceFailure
from .models import Project
from .utils.db_helpers import DbHelpers


class ProjectCatalog(Protocol):
    async def get_project(self, project_id: str) -> Optional[Project]:
        ...

    async def list_projects(self) -> List[Project]:
        ...


class InMemoryProjectCatalog:
    def __init__(self, projects: Optional[Iterable[Project]] = None):
        self._projects: Dict[str, Project] = {project.id: project for project in projects or []}

    def add_project(self, project: Project) -> None:
        self._projects[project.id] = project

    async def get_project(self, project_id: str) -> Optional[Project]:
        project = self._projects.get(project_id)
        return project.model_copy(deep=True) if project else None

    async def list_projects(self) -> List[Project]:
        return [project.model_copy(deep=True) for project in self._projects.values()]


class SupabaseProjectCatalog:
    def __init__(self, client: Optional[Client] = None, config: Optional[StorageConfig] = None):
        self.config = config or storage_config
        self.supabase = client or create_client(self.config.supabase_url, self.config.supabase_key)

    def _fetch_links(self, project_id: str) -> List[Dict]:
        result = (
            self.supabase.table(self.config.project_links_table)
            .select("*")
            .eq("project_id", project_id)
            .execute()
        )
        return result.data if result.data else []

    def _fetch_project(self, project_id: str) -> Optional[Project]:
        result = (
            self.supabase.table(self.config.projects_table)
            .select("*")
            .eq("id", project_id)
            .limit(1)
            .execute()
        )
        if not result.data:
            return None
        links = [DbHelpers.row_to_link(row) for row in self._fetch_links(project_id)]
        return DbHelpers.row_to_project(result.data[0], links)

    def _fetch_projects(self) -> List[Project]:
        result = self.supabase.table(self.config.projects_table).select("*").execute()
        return [
            DbHelpers.row_to_project(row, [DbHelpers.row_to_link(link) for link in self._fetch_links(str(row["id"]))])
            for row in result.data or []
        ]

    async def get_project(self, project_id: str) -> Optional[Project]:
        try:
            return await asyncio.to_thread(self._fetch_project, project_id)
        except Exception as e:
            raise PersistenceFailure(f"Failed to load project {project_id}: {e}") from e

    async def list_projects(self) -> List[Project]:
        try:
            return await asyncio.to_thread(self._fetch_projects)
        except Exception as e:
            raise PersistenceFailure(f"Failed to list projects: {e}") from e

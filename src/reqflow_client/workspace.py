"""Workspace: everything a signed-in client session needs, wired once.

The API client, query cache, stores and resources are passed in or built
here and handed to each other explicitly; nothing is global.
"""
import logging
from pathlib import Path
from typing import Optional

import httpx

from .api import ApiClient
from .query_cache import QueryCache
from .resources import (
    CollectionResource,
    DocumentResource,
    EntityResource,
    ProjectResource,
    RequirementResource,
)
from .stores import JsonFileStorage, MemoryStorage, RecentStore, SelectionStore, StateStorage

logger = logging.getLogger("reqflow-client.workspace")


class Workspace:
    """
    Client session for one user.

    Example:
        async with Workspace.connect("http://localhost:8000", user_id="u1") as ws:
            project = await ws.projects.create({"name": "Alpha"})
            ws.selection.set_active_project(project.id)
    """

    def __init__(
        self,
        api: ApiClient,
        user_id: Optional[str] = None,
        storage: Optional[StateStorage] = None,
        cache: Optional[QueryCache] = None,
    ):
        self.api = api
        self.user_id = user_id
        self.cache = cache or QueryCache()
        storage = storage or MemoryStorage()
        self.selection = SelectionStore(storage)
        self.recent = RecentStore(storage)

        shared = dict(api=api, cache=self.cache, selection=self.selection, recent=self.recent, user_id=user_id)
        self.requirements = RequirementResource(**shared)
        self.projects = ProjectResource(**shared, requirements=self.requirements)
        self.collections = CollectionResource(**shared)
        self.documents = DocumentResource(**shared)

    @classmethod
    def connect(
        cls,
        base_url: str,
        user_id: Optional[str] = None,
        state_dir: Optional[str | Path] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "Workspace":
        """Build a workspace talking to base_url, persisting store state under state_dir if given."""
        storage = JsonFileStorage(state_dir) if state_dir is not None else None
        logger.info(f"Workspace for {user_id or 'anonymous'} on {base_url}")
        return cls(ApiClient(base_url, transport=transport), user_id=user_id, storage=storage)

    def resource(self, entity_type: str) -> EntityResource:
        resources = {
            r.entity_type: r for r in (self.projects, self.requirements, self.collections, self.documents)
        }
        try:
            return resources[entity_type]
        except KeyError:
            raise ValueError(f"Unknown entity type: {entity_type}") from None

    async def close(self) -> None:
        await self.api.aclose()

    async def __aenter__(self) -> "Workspace":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

"""ReqFlow client - cached, change-aware access to the ReqFlow Core API.

Modules:
- api: httpx transport and error mapping
- query_cache: composite-key query cache with stale-response protection
- resources: per-entity cache & mutation layer
- stores: selection and recency state with durable persistence
- workspace: wiring of all of the above for one signed-in user
"""

__version__ = "1.0.0"

from .api import ApiClient
from .query_cache import QueryCache
from .resources import (
    CollectionResource,
    DocumentResource,
    EntityResource,
    ProjectResource,
    RequirementResource,
)
from .stores import JsonFileStorage, MemoryStorage, RecentStore, SelectionStore
from .workspace import Workspace

__all__ = [
    "ApiClient",
    "QueryCache",
    "EntityResource",
    "ProjectResource",
    "RequirementResource",
    "CollectionResource",
    "DocumentResource",
    "JsonFileStorage",
    "MemoryStorage",
    "RecentStore",
    "SelectionStore",
    "Workspace",
    "__version__",
]

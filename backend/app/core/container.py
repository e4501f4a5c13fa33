from __future__ import annotations

from dataclasses import dataclass

from backend.app.core.config import Settings
from backend.app.services.catalog_service import CatalogService
from backend.app.services.definition_service import DefinitionService
from backend.app.services.loop_service import LoopService
from backend.app.services.routing_service import RoutingService
from backend.app.services.studio_file_service import StudioFileService
from backend.app.services.studio_service import StudioService
from backend.app.storage.db import Database
from backend.app.storage.repositories.studio_repository import StudioRepository


@dataclass(slots=True)
class AppContainer:
    settings: Settings
    database: Database
    studio_repository: StudioRepository
    loop_service: LoopService
    routing_service: RoutingService
    definition_service: DefinitionService
    studio_file_service: StudioFileService
    catalog_service: CatalogService
    studio_service: StudioService

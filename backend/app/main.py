from __future__ import annotations

import argparse
import os
from contextlib import asynccontextmanager
from pathlib import Path

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backend.app.api import catalog, studios
from backend.app.core.config import Settings, get_settings
from backend.app.core.container import AppContainer
from backend.app.core.logging import configure_logging
from backend.app.services.catalog_service import CatalogService
from backend.app.services.definition_service import DefinitionService
from backend.app.services.loop_service import LoopService
from backend.app.services.routing_service import RoutingService
from backend.app.services.studio_file_service import StudioFileService
from backend.app.services.studio_service import StudioService
from backend.app.storage.db import Database
from backend.app.storage.repositories.studio_repository import StudioRepository


def _build_container(settings: Settings) -> AppContainer:
    if settings.database_url.startswith("sqlite:///"):
        db_path = Path(settings.database_url.replace("sqlite:///", "", 1))
        db_path.parent.mkdir(parents=True, exist_ok=True)

    database = Database(settings.database_url)
    database.create_all()

    studio_repository = StudioRepository(database.session)
    loop_service = LoopService()
    routing_service = RoutingService()
    definition_service = DefinitionService(routing_service=routing_service)
    studio_file_service = StudioFileService()
    catalog_service = CatalogService()
    studio_service = StudioService(
        repository=studio_repository,
        loop_service=loop_service,
        routing_service=routing_service,
        definition_service=definition_service,
        studio_file_service=studio_file_service,
    )

    return AppContainer(
        settings=settings,
        database=database,
        studio_repository=studio_repository,
        loop_service=loop_service,
        routing_service=routing_service,
        definition_service=definition_service,
        studio_file_service=studio_file_service,
        catalog_service=catalog_service,
        studio_service=studio_service,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.debug)

    app.state.container = _build_container(settings)
    yield


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(studios.router, prefix=settings.api_prefix)
    app.include_router(catalog.router, prefix=settings.api_prefix)

    @app.get("/api/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "version": settings.app_version}

    return app


app = create_app()


def run() -> None:
    parser = argparse.ArgumentParser(description="Run the StudioGraph backend")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--log-level", default="info")
    parser.add_argument("--reload", action=argparse.BooleanOptionalAction, default=True)
    parser.add_argument("--access-log", action=argparse.BooleanOptionalAction, default=True)
    parser.add_argument("--debug", action=argparse.BooleanOptionalAction, default=None)
    args = parser.parse_args()

    if args.debug is True:
        os.environ["STUDIOGRAPH_DEBUG"] = "1"
    elif args.debug is False:
        os.environ["STUDIOGRAPH_DEBUG"] = "0"

    get_settings.cache_clear()
    globals()["app"] = create_app()

    uvicorn.run(
        "backend.app.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=args.log_level,
        access_log=args.access_log,
    )


if __name__ == "__main__":
    run()

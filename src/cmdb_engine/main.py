"""CMDB Engine service FastAPI application."""
from __future__ import annotations

import sqlite3
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import yaml
from fastapi import FastAPI

from src.cmdb_engine.container import CmdbServices
from src.cmdb_engine.seeds.loader import seed_reference_data
from src.shared.config import CmdbConfig
from src.shared.constants import CMDB_ENGINE_SERVICE_NAME, INTERNAL_PORT, VERSION
from src.shared.errors import register_exception_handlers
from src.shared.logging import TraceIDMiddleware, setup_logging

config = CmdbConfig()
logger = setup_logging(CMDB_ENGINE_SERVICE_NAME, config.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan - initialize and cleanup resources."""
    app.state.start_time = time.time()

    services = CmdbServices.open(config)
    if services.ci_store.available:
        try:
            seed_reference_data(
                services.ci_store,
                services.relationship_store,
                config.reference_data_path,
            )
        except (OSError, yaml.YAMLError, sqlite3.Error, ValueError) as exc:
            logger.warning("Reference data not loaded: %s", exc)
    app.state.services = services

    logger.info(
        "Service started: name=%s version=%s port=%d db=%s inventory_db=%s",
        CMDB_ENGINE_SERVICE_NAME, VERSION, INTERNAL_PORT, config.database_path,
        config.inventory_database_path,
    )
    yield

    await services.discovery.wait_for_pending()
    services.close()
    logger.info("Service stopped: name=%s", CMDB_ENGINE_SERVICE_NAME)


app = FastAPI(
    title="CMDB Engine",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(TraceIDMiddleware)
register_exception_handlers(app)

# Register all routers
from src.cmdb_engine.routers.health import router as health_router
from src.cmdb_engine.routers.cis import router as cis_router
from src.cmdb_engine.routers.relationships import router as relationships_router
from src.cmdb_engine.routers.impact import router as impact_router
from src.cmdb_engine.routers.discovery import router as discovery_router
from src.cmdb_engine.routers.mappings import router as mappings_router

app.include_router(health_router)
app.include_router(cis_router)
app.include_router(relationships_router)
app.include_router(impact_router)
app.include_router(discovery_router)
app.include_router(mappings_router)

"""Shared test fixtures for the CMDB engine test suite."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Awaitable, Callable, Generator

import pytest

from src.cmdb_engine.container import CmdbServices
from src.cmdb_engine.seeds.loader import seed_reference_data
from src.cmdb_engine.services.discovery_probes import ProbeRegistry
from src.shared.config import CmdbConfig
from src.shared.db.connection import ConnectionPool
from src.shared.db.schema import init_cmdb_db, init_inventory_db
from src.shared.models.cmdb import CICreate, ConfigurationItem, Criticality


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cmdb_pool(tmp_path: Path) -> Generator[ConnectionPool, None, None]:
    """Connection pool on a fresh CMDB database with the schema applied."""
    pool = ConnectionPool(tmp_path / "cmdb.db")
    init_cmdb_db(pool)
    yield pool
    pool.close()


@pytest.fixture
def inventory_pool(tmp_path: Path) -> Generator[ConnectionPool, None, None]:
    pool = ConnectionPool(tmp_path / "inventory.db")
    init_inventory_db(pool)
    yield pool
    pool.close()


@pytest.fixture
def cmdb_config(tmp_path: Path) -> CmdbConfig:
    return CmdbConfig(
        database_path=str(tmp_path / "cmdb.db"),
        inventory_database_path=str(tmp_path / "inventory.db"),
    )


@pytest.fixture
def probes() -> ProbeRegistry:
    """Default registry; replaced per test where a probe double is needed."""
    return ProbeRegistry.default(max_hosts=4, timeout=0.05)


@pytest.fixture
def services(
    cmdb_pool: ConnectionPool,
    inventory_pool: ConnectionPool,
    cmdb_config: CmdbConfig,
    probes: ProbeRegistry,
) -> CmdbServices:
    """Every store and service wired onto seeded temporary databases."""
    wired = CmdbServices(cmdb_pool, inventory_pool, cmdb_config, probes)
    seed_reference_data(wired.ci_store, wired.relationship_store)
    return wired


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


@pytest.fixture
def make_ci(
    services: CmdbServices,
) -> Callable[..., Awaitable[ConfigurationItem]]:
    """Async factory creating a CI through the CI service."""

    async def _make(
        name: str,
        ci_type: str = "hardware",
        criticality: Criticality = Criticality.MEDIUM,
        **fields: Any,
    ) -> ConfigurationItem:
        return await services.ci_service.create_ci(
            CICreate(name=name, ci_type=ci_type, criticality=criticality, **fields)
        )

    return _make

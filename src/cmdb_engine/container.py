"""Wires pools, stores and services for one running CMDB engine."""
from __future__ import annotations

import logging

from src.cmdb_engine.services.ci_service import CIService
from src.cmdb_engine.services.ci_store import CIStore
from src.cmdb_engine.services.cycle_validator import CircularDependencyValidator
from src.cmdb_engine.services.dependency_tree import DependencyTreeBuilder
from src.cmdb_engine.services.discovery_probes import ProbeRegistry
from src.cmdb_engine.services.discovery_service import DiscoveryService
from src.cmdb_engine.services.discovery_store import DiscoveryStore
from src.cmdb_engine.services.graph_audit import GraphAuditor
from src.cmdb_engine.services.impact_analyzer import ImpactAnalyzer
from src.cmdb_engine.services.inventory_store import InventoryStore
from src.cmdb_engine.services.inventory_sync import MappingSynchronizer
from src.cmdb_engine.services.mapping_store import MappingStore
from src.cmdb_engine.services.relationship_manager import RelationshipManager
from src.cmdb_engine.services.relationship_store import RelationshipStore
from src.cmdb_engine.services.store_base import open_pool
from src.shared.config import CmdbConfig
from src.shared.db.connection import ConnectionPool
from src.shared.db.schema import init_cmdb_db, init_inventory_db

logger = logging.getLogger(__name__)


class CmdbServices:
    """Every store and service of the engine, sharing two pools.

    A ``None`` pool leaves the stores on it in the unavailable state; the
    services still construct and report :class:`StoreUnavailableError` on use.
    """

    def __init__(
        self,
        cmdb_pool: ConnectionPool | None,
        inventory_pool: ConnectionPool | None,
        config: CmdbConfig,
        probes: ProbeRegistry | None = None,
    ) -> None:
        self.config = config
        self.cmdb_pool = cmdb_pool
        self.inventory_pool = inventory_pool

        self.ci_store = CIStore(cmdb_pool)
        self.relationship_store = RelationshipStore(cmdb_pool)
        self.discovery_store = DiscoveryStore(cmdb_pool)
        self.mapping_store = MappingStore(cmdb_pool)
        self.inventory_store = InventoryStore(inventory_pool)

        self.probes = probes or ProbeRegistry.default(
            max_hosts=config.network_probe_max_hosts,
            timeout=config.network_probe_timeout,
            ports=config.network_probe_ports,
        )

        self.ci_service = CIService(
            self.ci_store,
            self.relationship_store,
            ci_id_max_attempts=config.ci_id_max_attempts,
        )
        self.cycle_validator = CircularDependencyValidator(
            self.ci_store, self.relationship_store
        )
        self.relationships = RelationshipManager(
            self.ci_store, self.relationship_store, self.cycle_validator
        )
        self.impact = ImpactAnalyzer(
            self.ci_store,
            self.relationship_store,
            default_depth=config.impact_default_depth,
            max_depth=config.impact_max_depth,
        )
        self.dependency_tree = DependencyTreeBuilder(
            self.ci_store, self.relationship_store, max_depth=config.impact_max_depth
        )
        self.discovery = DiscoveryService(
            self.discovery_store, self.ci_store, self.ci_service, self.probes
        )
        self.mappings = MappingSynchronizer(
            self.mapping_store, self.ci_store, self.inventory_store
        )
        self.auditor = GraphAuditor(self.ci_store, self.relationship_store)

    @classmethod
    def open(
        cls, config: CmdbConfig, probes: ProbeRegistry | None = None
    ) -> CmdbServices:
        """Open both databases (initializing schemas) and build the services."""
        cmdb_pool = open_pool(
            config.database_path, init_cmdb_db, disabled=config.store_disabled
        )
        inventory_pool = open_pool(
            config.inventory_database_path, init_inventory_db, disabled=config.store_disabled
        )
        return cls(cmdb_pool, inventory_pool, config, probes)

    def close(self) -> None:
        for pool in (self.cmdb_pool, self.inventory_pool):
            if pool is not None:
                pool.close()

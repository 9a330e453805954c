"""Whole-graph data quality report for the CMDB, built with NetworkX."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone

import networkx as nx

from src.cmdb_engine.services.ci_store import CIStore
from src.cmdb_engine.services.relationship_store import RelationshipStore
from src.shared.constants import STALE_CI_DAYS
from src.shared.models.cmdb import CmdbHealth

logger = logging.getLogger(__name__)

_MAX_REPORTED_CYCLES = 20
_COMPLETENESS_FIELDS = ("name", "ci_type", "environment", "owner")


def accuracy_score(
    total_cis: int,
    active_cis: int,
    stale_cis: int,
    orphaned_cis: int,
    completeness_score: float,
) -> int:
    """Weighted 0-100 score: freshness 35%, integrity 25%, activity 20%,
    completeness 20%. ``completeness_score`` is a percentage."""
    if total_cis <= 0:
        return 0
    freshness = 1 - min(1.0, stale_cis / total_cis)
    integrity = 1 - min(1.0, orphaned_cis / total_cis)
    activity = min(1.0, active_cis / total_cis)
    completeness = max(0.0, min(1.0, completeness_score / 100))
    score = 0.35 * freshness + 0.25 * integrity + 0.2 * activity + 0.2 * completeness
    return int(score * 100 + 0.5)


class GraphAuditor:
    """Reports on the CMDB graph; nothing is repaired.

    Loads the active edge set into a ``networkx.DiGraph`` to count orphans
    and to list cycles that the per-edge check at creation time cannot see.
    """

    def __init__(self, ci_store: CIStore, relationship_store: RelationshipStore) -> None:
        self._cis = ci_store
        self._relationships = relationship_store

    def _build_graph(self, edges: list[tuple[str, str]]) -> nx.DiGraph:
        graph = nx.DiGraph()
        for ci_pk, ci_id in self._cis.list_keys().items():
            graph.add_node(ci_pk, ci_id=ci_id)
        graph.add_edges_from(edges)
        return graph

    def _completeness(self) -> float:
        rows = self._cis.list_completeness_fields()
        if not rows:
            return 100.0
        complete = sum(
            1
            for row in rows
            if all(row.get(f) and str(row[f]).strip() for f in _COMPLETENESS_FIELDS)
        )
        return round(complete / len(rows) * 100, 2)

    def _report(self) -> CmdbHealth:
        edges = self._relationships.list_active_edges()
        graph = self._build_graph(edges)
        total = self._cis.count()
        active = self._cis.count(ci_status="Active")
        cutoff = (datetime.now(timezone.utc) - timedelta(days=STALE_CI_DAYS)).isoformat()
        stale = self._cis.count(updated_before=cutoff)
        discovered = self._cis.count(is_discovered=True)
        orphaned = sum(1 for node in graph.nodes if graph.degree(node) == 0)

        cycles: list[list[str]] = []
        if not nx.is_directed_acyclic_graph(graph):
            try:
                for cycle in nx.simple_cycles(graph):
                    cycles.append([graph.nodes[n].get("ci_id", n) for n in cycle])
                    if len(cycles) >= _MAX_REPORTED_CYCLES:
                        break
            except (nx.NetworkXError, KeyError) as exc:
                logger.warning("Failed to detect cycles: %s", exc)

        completeness = self._completeness()
        return CmdbHealth(
            total_cis=total,
            active_cis=active,
            stale_cis=stale,
            orphaned_cis=orphaned,
            total_relationships=len(edges),
            discovered_cis=discovered,
            manual_cis=total - discovered,
            completeness_score=completeness,
            accuracy_score=accuracy_score(total, active, stale, orphaned, completeness),
            cycles=cycles,
        )

    async def cmdb_health(self) -> CmdbHealth:
        health = await asyncio.to_thread(self._report)
        if health.cycles:
            logger.warning("CMDB graph contains %d cycle(s)", len(health.cycles))
        return health

"""Circular dependency detection for proposed relationships."""
from __future__ import annotations

import asyncio
import logging

from src.cmdb_engine.services.ci_store import CIStore
from src.cmdb_engine.services.relationship_store import RelationshipStore
from src.shared.errors import NotFoundError
from src.shared.models.cmdb import CycleValidation

logger = logging.getLogger(__name__)


class CircularDependencyValidator:
    """Checks whether adding ``source -> target`` would close a loop.

    Only the closure of the proposed edge is inspected: a walk from the
    target along active outgoing edges that looks for the source. Cycles
    elsewhere in the graph are not reported here.
    """

    def __init__(self, ci_store: CIStore, relationship_store: RelationshipStore) -> None:
        self._cis = ci_store
        self._relationships = relationship_store

    async def would_create_cycle(self, source_id: str, target_id: str) -> bool:
        """Return True when *source_id* is reachable from *target_id*.

        A self-loop counts as a cycle. Arguments are opaque CI ids.
        """
        if source_id == target_id:
            return True
        return await self._reaches(target_id, source_id, set())

    async def _reaches(self, current: str, goal: str, path: set[str]) -> bool:
        if current == goal:
            return True
        if current in path:
            return False
        path.add(current)
        edges = await asyncio.to_thread(self._relationships.list_outgoing, current)
        for edge in edges:
            if await self._reaches(edge.target_ci_id, goal, path):
                return True
        path.discard(current)
        return False

    async def validate(self, source_ref: str, target_ref: str) -> CycleValidation:
        """Resolve two CI references and report whether the edge is safe."""
        source = await asyncio.to_thread(self._cis.get, source_ref)
        if source is None:
            raise NotFoundError(detail=f"Source CI not found: {source_ref}")
        target = await asyncio.to_thread(self._cis.get, target_ref)
        if target is None:
            raise NotFoundError(detail=f"Target CI not found: {target_ref}")

        has_cycle = await self.would_create_cycle(source.id, target.id)
        return CycleValidation(
            has_circular_dependency=has_cycle,
            validation_passed=not has_cycle,
        )

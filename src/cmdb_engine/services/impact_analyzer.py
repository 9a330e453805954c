"""Failure impact analysis over outgoing relationships."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

from src.cmdb_engine.services.ci_store import CIStore
from src.cmdb_engine.services.relationship_store import RelationshipStore
from src.shared.constants import CRITICALITY_LEVELS
from src.shared.errors import NotFoundError, ValidationError
from src.shared.models.cmdb import (
    BusinessServiceImpact,
    ConfigurationItem,
    Criticality,
    ImpactAnalysis,
    ImpactedCI,
    ImpactLevels,
    ServiceImpactedCI,
)

logger = logging.getLogger(__name__)

_CRITICALITY_RANK: dict[Criticality, int] = {
    Criticality(level): rank for rank, level in enumerate(CRITICALITY_LEVELS)
}


def impact_level(criticality: Criticality, depth: int) -> Criticality:
    """Severity of a CI failing *depth* hops downstream of the root."""
    if criticality == Criticality.CRITICAL:
        return Criticality.CRITICAL if depth == 1 else Criticality.HIGH
    if criticality == Criticality.HIGH:
        return Criticality.HIGH if depth <= 2 else Criticality.MEDIUM
    return Criticality.MEDIUM if depth <= 2 else Criticality.LOW


def max_criticality(levels: list[Criticality]) -> Criticality:
    if not levels:
        return Criticality.LOW
    return max(levels, key=_CRITICALITY_RANK.__getitem__)


class ImpactAnalyzer:
    """Answers "what breaks if this CI fails".

    The walk is a backtracking DFS: a CI is on the path while its subtree
    is explored and leaves it afterwards, so a CI reachable along several
    paths is recorded with the depth of the last path explored.
    """

    def __init__(
        self,
        ci_store: CIStore,
        relationship_store: RelationshipStore,
        default_depth: int = 3,
        max_depth: int = 10,
    ) -> None:
        self._cis = ci_store
        self._relationships = relationship_store
        self._default_depth = default_depth
        self._max_depth = max_depth

    async def _walk(
        self,
        ci_id: str,
        depth: int,
        max_depth: int,
        path: set[str],
        impacted: dict[str, ImpactedCI],
    ) -> None:
        path.add(ci_id)
        edges = await asyncio.to_thread(self._relationships.list_outgoing, ci_id)
        for edge in edges:
            target_id = edge.target_ci_id
            if target_id in path:
                continue
            target = await asyncio.to_thread(self._cis.get_by_pk, target_id)
            if target is None:
                continue
            child_depth = depth + 1
            if child_depth >= max_depth:
                continue
            impacted[target_id] = ImpactedCI(
                ci=target,
                depth=child_depth,
                impact_type=impact_level(target.criticality, child_depth),
            )
            await self._walk(target_id, child_depth, max_depth, path, impacted)
        path.discard(ci_id)

    async def _business_service_impact(
        self, root: ConfigurationItem, impacted: dict[str, ImpactedCI]
    ) -> list[BusinessServiceImpact]:
        ci_ids = [root.id, *impacted.keys()]
        links = await asyncio.to_thread(self._cis.list_service_links, ci_ids)

        by_service: dict[str, BusinessServiceImpact] = {}
        for service, ci, link_criticality in links:
            entry = by_service.get(service.id)
            if entry is None:
                entry = BusinessServiceImpact(service=service)
                by_service[service.id] = entry
            entry.impacted_cis.append(ServiceImpactedCI(ci=ci, criticality=link_criticality))
        for entry in by_service.values():
            entry.criticality_level = max_criticality(
                [item.criticality for item in entry.impacted_cis]
            )
        return list(by_service.values())

    async def analyze_impact(
        self, root_ref: str, max_depth: int | None = None
    ) -> ImpactAnalysis:
        """Collect every CI fewer than *max_depth* outgoing hops from the root.

        Depth counts from the root (depth 0); CIs at depths 1 through
        ``max_depth - 1`` are reported, so a *max_depth* of 1 reports nothing.
        """
        depth = self._default_depth if max_depth is None else max_depth
        if depth < 1 or depth > self._max_depth:
            raise ValidationError(
                detail=f"max_depth must be between 1 and {self._max_depth}"
            )
        root = await asyncio.to_thread(self._cis.get, root_ref)
        if root is None:
            raise NotFoundError(detail=f"Configuration Item not found: {root_ref}")

        impacted: dict[str, ImpactedCI] = {}
        await self._walk(root.id, 0, depth, set(), impacted)

        levels = ImpactLevels()
        for entry in impacted.values():
            if entry.depth == 1:
                levels.direct.append(entry)
            elif entry.depth == 2:
                levels.indirect.append(entry)
            else:
                levels.extended.append(entry)

        services = await self._business_service_impact(root, impacted)
        logger.info(
            "Impact analysis for %s: %d CIs, %d business services (depth %d)",
            root.ci_id, len(impacted), len(services), depth,
            extra={"ci_id": root.ci_id},
        )
        return ImpactAnalysis(
            root_ci=root,
            impact_levels=levels,
            business_service_impact=services,
            total_impacted_cis=len(impacted),
            analysis_depth=depth,
            generated_at=datetime.now(timezone.utc),
        )

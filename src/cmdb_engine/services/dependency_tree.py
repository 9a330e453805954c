"""Nested dependency trees around a CI."""
from __future__ import annotations

import asyncio

from src.cmdb_engine.services.ci_store import CIStore
from src.cmdb_engine.services.relationship_store import RelationshipStore
from src.shared.constants import RELATIONSHIP_DIRECTIONS
from src.shared.errors import NotFoundError, ValidationError
from src.shared.models.cmdb import (
    ConfigurationItem,
    DependencyTreeNode,
    Relationship,
    RelationshipDirection,
)


class DependencyTreeBuilder:
    """Builds a tree of every path of influence up to a depth.

    Nodes reachable along two paths appear under both; only a node already
    on the current path is cut off, which keeps cyclic graphs finite.
    """

    def __init__(
        self,
        ci_store: CIStore,
        relationship_store: RelationshipStore,
        max_depth: int = 10,
    ) -> None:
        self._cis = ci_store
        self._relationships = relationship_store
        self._max_depth = max_depth

    async def _build(
        self,
        ci: ConfigurationItem,
        relationship: Relationship | None,
        edge_direction: RelationshipDirection | None,
        remaining: int,
        direction: RelationshipDirection,
        path: set[str],
    ) -> DependencyTreeNode:
        node = DependencyTreeNode(ci=ci, relationship=relationship, direction=edge_direction)
        if remaining <= 0 or ci.id in path:
            return node

        path.add(ci.id)
        if direction in (RelationshipDirection.OUTGOING, RelationshipDirection.BOTH):
            for rel in await asyncio.to_thread(self._relationships.list_outgoing, ci.id):
                child = await asyncio.to_thread(self._cis.get_by_pk, rel.target_ci_id)
                if child is None:
                    continue
                node.children.append(
                    await self._build(
                        child, rel, RelationshipDirection.OUTGOING,
                        remaining - 1, direction, path,
                    )
                )
        if direction in (RelationshipDirection.INCOMING, RelationshipDirection.BOTH):
            for rel in await asyncio.to_thread(self._relationships.list_incoming, ci.id):
                child = await asyncio.to_thread(self._cis.get_by_pk, rel.source_ci_id)
                if child is None:
                    continue
                node.children.append(
                    await self._build(
                        child, rel, RelationshipDirection.INCOMING,
                        remaining - 1, direction, path,
                    )
                )
        path.discard(ci.id)
        return node

    async def get_dependency_tree(
        self,
        root_ref: str,
        direction: str = RelationshipDirection.BOTH.value,
        max_depth: int = 3,
    ) -> DependencyTreeNode:
        try:
            wanted = RelationshipDirection(direction)
        except ValueError:
            raise ValidationError(
                detail=(
                    f"Invalid direction: {direction}. "
                    f"Use one of: {', '.join(RELATIONSHIP_DIRECTIONS)}"
                )
            ) from None
        if max_depth < 0 or max_depth > self._max_depth:
            raise ValidationError(
                detail=f"max_depth must be between 0 and {self._max_depth}"
            )
        root = await asyncio.to_thread(self._cis.get, root_ref)
        if root is None:
            raise NotFoundError(detail=f"Configuration Item not found: {root_ref}")
        return await self._build(root, None, None, max_depth, wanted, set())

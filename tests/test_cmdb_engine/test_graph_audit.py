"""Tests for the NetworkX-based CMDB health report."""
from __future__ import annotations

import pytest

from src.cmdb_engine.services.graph_audit import accuracy_score
from src.shared.models.cmdb import Relationship, RelationshipCreate


class TestAccuracyScore:
    def test_empty_cmdb_scores_zero(self):
        assert accuracy_score(0, 0, 0, 0, 100.0) == 0

    def test_perfect_cmdb(self):
        assert accuracy_score(10, 10, 0, 0, 100.0) == 100

    def test_weights(self):
        # 0.35*0.75 + 0.25*1 + 0.2*1 + 0.2*1 = 0.9125
        assert accuracy_score(4, 4, 1, 0, 100.0) == 91
        # orphans and incomplete data pull the score down
        assert accuracy_score(4, 4, 0, 4, 0.0) == 55


class TestCmdbHealth:
    @pytest.mark.asyncio
    async def test_empty_cmdb(self, services):
        health = await services.auditor.cmdb_health()
        assert health.total_cis == 0
        assert health.completeness_score == 100.0
        assert health.accuracy_score == 0
        assert health.cycles == []

    @pytest.mark.asyncio
    async def test_counts_orphans_and_relationships(self, services, make_ci):
        a = await make_ci("a", environment="prod", owner="ops")
        b = await make_ci("b")
        await make_ci("loner")
        await services.relationships.create_relationship(
            RelationshipCreate(
                source_ci_id=a.ci_id, target_ci_id=b.ci_id, relationship_type_id="depends-on"
            )
        )

        health = await services.auditor.cmdb_health()
        assert health.total_cis == 3
        assert health.active_cis == 3
        assert health.stale_cis == 0
        assert health.orphaned_cis == 1
        assert health.total_relationships == 1
        assert health.discovered_cis == 0
        assert health.manual_cis == 3
        assert health.completeness_score == pytest.approx(33.33)

    @pytest.mark.asyncio
    async def test_reports_cycles_written_outside_the_manager(self, services, make_ci):
        a = await make_ci("a")
        b = await make_ci("b")
        for source, target in ((a, b), (b, a)):
            services.relationship_store.insert(
                Relationship(
                    source_ci_id=source.id,
                    target_ci_id=target.id,
                    relationship_type_id="depends-on",
                ),
                exclusive=False,
            )

        health = await services.auditor.cmdb_health()
        assert len(health.cycles) == 1
        assert sorted(health.cycles[0]) == sorted([a.ci_id, b.ci_id])
        assert health.total_relationships == 2

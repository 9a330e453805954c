"""Tests for MappingSynchronizer: field mapping, conflict policies, batch sync
and integration analysis."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from src.cmdb_engine.services.inventory_sync import (
    MappingSynchronizer,
    calculate_match_confidence,
    map_inventory_status,
)
from src.shared.errors import NotFoundError, SyncDisabledError
from src.shared.models.cmdb import (
    CmdbInventoryMapping,
    ConfigurationItem,
    ConflictResolution,
    IntegrationSummary,
    InventoryAsset,
    MappingCreate,
    MappingUpdate,
    SyncStatus,
)


def _asset(asset_id: str = "asset-1", **fields) -> InventoryAsset:
    return InventoryAsset(id=asset_id, **fields)


def _ci(**fields) -> ConfigurationItem:
    return ConfigurationItem(ci_id="CI100001", name="sample", ci_type="hardware", **fields)


@pytest.fixture
def add_asset(services):
    def _add(asset_id: str = "asset-1", **fields) -> InventoryAsset:
        return services.inventory_store.upsert(_asset(asset_id, **fields))

    return _add


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


class TestStatusMap:
    @pytest.mark.parametrize(
        "status,expected",
        [
            ("active", "Active"),
            ("IN_USE", "Active"),
            ("maintenance", "Non-Operational"),
            ("repair", "Non-Operational"),
            ("stolen", "Retired"),
            ("decommissioned", "Retired"),
            ("on-order", "Active"),
            (None, "Active"),
        ],
    )
    def test_map_inventory_status(self, status, expected):
        assert map_inventory_status(status) == expected


class TestMatchConfidence:
    def test_serial_and_model_match(self):
        asset = _asset(serial_number="SN1", model="R740")
        ci = _ci(serial_number="sn1", model="r740")
        assert calculate_match_confidence(asset, ci) == 30

    def test_only_compared_factors_count(self):
        asset = _asset(serial_number="SN1", asset_tag="T1", department="IT")
        ci = _ci(serial_number="SN1")
        assert calculate_match_confidence(asset, ci) == 40

    def test_model_substring_scores_ten(self):
        asset = _asset(model="R740")
        ci = _ci(model="PowerEdge R740xd")
        assert calculate_match_confidence(asset, ci) == 10

    def test_mismatches_lower_the_average(self):
        asset = _asset(serial_number="SN1", asset_tag="T1", model="X", department="IT")
        ci = _ci(serial_number="SN1", asset_tag="T2", model="Y", department="it")
        # (40 + 0 + 0 + 10) / 4 = 12.5 rounds half up
        assert calculate_match_confidence(asset, ci) == 13

    def test_no_shared_factors(self):
        assert calculate_match_confidence(_asset(), _ci()) == 0


class TestFieldMapping:
    def _mapping(self, **fields) -> CmdbInventoryMapping:
        return CmdbInventoryMapping(ci_id="ci", inventory_asset_id="asset-1", **fields)

    def test_default_map(self, services):
        asset = _asset(
            serial_number="SN1",
            vendor_id="V1",
            location_id="L9",
            assigned_to_user_id="U3",
            warranty_expiry="2027-01-01",
            status="repair",
        )
        payload = services.mappings.map_inventory_to_cmdb(asset, self._mapping())
        assert payload["serial_number"] == "SN1"
        assert payload["vendor"] == "vendor_V1"
        assert payload["location"] == "location_L9"
        assert payload["owner"] == "user_U3"
        assert payload["warranty_expiry_date"] == "2027-01-01"
        assert payload["ci_status"] == "Non-Operational"

    def test_override_replaces_matching_default(self, services):
        asset = _asset(serial_number="SN1", asset_tag="T1", custom_fields={"rackTag": "R-12"})
        mapping = self._mapping(
            field_mapping={"asset_tag": "rackTag", "description": "serialNumber"}
        )
        payload = services.mappings.map_inventory_to_cmdb(asset, mapping)
        assert payload["asset_tag"] == "R-12"
        assert payload["description"] == "SN1"
        assert payload["serial_number"] == "SN1"

    def test_override_to_missing_field_keeps_default(self, services):
        asset = _asset(asset_tag="T1")
        payload = services.mappings.map_inventory_to_cmdb(
            asset, self._mapping(field_mapping={"asset_tag": "nothingHere"})
        )
        assert payload["asset_tag"] == "T1"


class TestResolveConflicts:
    def test_inventory_wins_overwrites(self, services):
        ci = _ci(model="old", asset_tag="T1")
        fields = services.mappings.resolve_conflicts(
            {"model": "new", "asset_tag": "T1", "department": None},
            ci, _asset(), ConflictResolution.INVENTORY_WINS,
        )
        assert fields == {"model": "new"}

    def test_cmdb_wins_fills_only_empty(self, services):
        ci = _ci(model="old")
        fields = services.mappings.resolve_conflicts(
            {"model": "new", "asset_tag": "T9"},
            ci, _asset(), ConflictResolution.CMDB_WINS,
        )
        assert fields == {"asset_tag": "T9"}

    def test_newest_wins_follows_timestamps(self, services):
        now = datetime.now(timezone.utc)
        ci = _ci(model="old", updated_at=now)
        payload = {"model": "new"}

        newer_asset = _asset(updated_at=now + timedelta(hours=1))
        assert services.mappings.resolve_conflicts(
            payload, ci, newer_asset, ConflictResolution.NEWEST_WINS
        ) == {"model": "new"}

        older_asset = _asset(updated_at=now - timedelta(hours=1))
        assert services.mappings.resolve_conflicts(
            payload, ci, older_asset, ConflictResolution.NEWEST_WINS
        ) == {}


# ---------------------------------------------------------------------------
# Mappings and sync
# ---------------------------------------------------------------------------


class TestCreateMapping:
    @pytest.mark.asyncio
    async def test_create_runs_initial_sync(self, services, make_ci, add_asset):
        ci = await make_ci("srv", model="old")
        add_asset(serial_number="SN1", model="new", status="maintenance")

        mapping = await services.mappings.create_mapping(
            MappingCreate(
                ci_id=ci.ci_id,
                inventory_asset_id="asset-1",
                conflict_resolution=ConflictResolution.INVENTORY_WINS,
            )
        )
        assert mapping.ci_id == ci.id
        assert mapping.sync_status == SyncStatus.SUCCESS
        assert mapping.last_sync_at is not None

        synced = await services.ci_service.get_ci(ci.id)
        assert synced.serial_number == "SN1"
        assert synced.model == "new"
        assert synced.ci_status == "Non-Operational"

        trail = await services.ci_service.get_audit_trail(ci.id)
        sync_rows = [e for e in trail if e.operation == "SYNC"]
        assert {e.field_name for e in sync_rows} == {"serial_number", "model", "ci_status"}
        assert all(e.changed_by == "inventory-sync" for e in sync_rows)

    @pytest.mark.asyncio
    async def test_default_policy_overwrites_cmdb_values(self, services, make_ci, add_asset):
        ci = await make_ci("srv", serial_number="OLD", model="m1")
        add_asset(serial_number="SN9", model="m2", status="stolen")

        mapping = await services.mappings.create_mapping(
            MappingCreate(ci_id=ci.ci_id, inventory_asset_id="asset-1")
        )
        assert mapping.conflict_resolution == ConflictResolution.INVENTORY_WINS
        assert mapping.sync_status == SyncStatus.SUCCESS

        synced = await services.ci_service.get_ci(ci.id)
        assert synced.ci_status == "Retired"
        assert synced.serial_number == "SN9"
        assert synced.model == "m2"

    @pytest.mark.asyncio
    async def test_sync_disabled_skips_initial_sync(self, services, make_ci, add_asset):
        ci = await make_ci("srv")
        add_asset(serial_number="SN1")
        mapping = await services.mappings.create_mapping(
            MappingCreate(ci_id=ci.ci_id, inventory_asset_id="asset-1", sync_enabled=False)
        )
        assert mapping.sync_status == SyncStatus.PENDING
        assert (await services.ci_service.get_ci(ci.id)).serial_number is None

    @pytest.mark.asyncio
    async def test_missing_ci_or_asset(self, services, make_ci, add_asset):
        ci = await make_ci("srv")
        add_asset()
        with pytest.raises(NotFoundError, match="Configuration Item"):
            await services.mappings.create_mapping(
                MappingCreate(ci_id="CI000000", inventory_asset_id="asset-1")
            )
        with pytest.raises(NotFoundError, match="Inventory Asset"):
            await services.mappings.create_mapping(
                MappingCreate(ci_id=ci.ci_id, inventory_asset_id="nope")
            )

    @pytest.mark.asyncio
    async def test_failed_initial_sync_still_returns_mapping(
        self, services, make_ci, add_asset, monkeypatch
    ):
        ci = await make_ci("srv")
        add_asset(serial_number="SN1")

        def broken_update(ci_pk, fields):
            raise RuntimeError("disk full")

        monkeypatch.setattr(services.ci_store, "update", broken_update)
        mapping = await services.mappings.create_mapping(
            MappingCreate(ci_id=ci.ci_id, inventory_asset_id="asset-1")
        )
        assert mapping.sync_status == SyncStatus.FAILED
        assert mapping.sync_errors == "disk full"


class TestSyncMapping:
    @pytest.mark.asyncio
    async def test_unknown_and_disabled(self, services, make_ci, add_asset):
        with pytest.raises(NotFoundError):
            await services.mappings.sync_mapping("missing")

        ci = await make_ci("srv")
        add_asset()
        mapping = await services.mappings.create_mapping(
            MappingCreate(ci_id=ci.ci_id, inventory_asset_id="asset-1", sync_enabled=False)
        )
        with pytest.raises(SyncDisabledError):
            await services.mappings.sync_mapping(mapping.id)

    @pytest.mark.asyncio
    async def test_outcome_lists_updated_fields(self, services, make_ci, add_asset):
        ci = await make_ci("srv")
        add_asset()
        mapping = await services.mappings.create_mapping(
            MappingCreate(ci_id=ci.ci_id, inventory_asset_id="asset-1")
        )
        add_asset(serial_number="SN2", asset_tag="T2")

        outcome = await services.mappings.sync_mapping(mapping.id)
        assert outcome.success is True
        assert outcome.updated_fields == ["asset_tag", "serial_number"]

        trail_before = await services.ci_service.get_audit_trail(ci.id)
        again = await services.mappings.sync_mapping(mapping.id)
        assert again.updated_fields == []
        assert again.success is True
        trail_after = await services.ci_service.get_audit_trail(ci.id)
        assert len(trail_after) == len(trail_before)

    @pytest.mark.asyncio
    async def test_sync_all_isolates_failures(self, services, make_ci, add_asset, inventory_pool):
        good_ci = await make_ci("good")
        bad_ci = await make_ci("bad")
        add_asset("asset-good", serial_number="G1")
        add_asset("asset-bad", serial_number="B1")
        good = await services.mappings.create_mapping(
            MappingCreate(ci_id=good_ci.ci_id, inventory_asset_id="asset-good")
        )
        bad = await services.mappings.create_mapping(
            MappingCreate(ci_id=bad_ci.ci_id, inventory_asset_id="asset-bad")
        )
        conn = inventory_pool.get()
        conn.execute("DELETE FROM inventory_assets WHERE id = ?", ("asset-bad",))
        conn.commit()

        result = await services.mappings.sync_all_mappings()
        assert (result.total, result.successful, result.failed) == (2, 1, 1)
        by_id = {r.mapping_id: r for r in result.results}
        assert by_id[good.id].status == SyncStatus.SUCCESS
        assert by_id[bad.id].status == SyncStatus.FAILED
        assert "asset-bad" in by_id[bad.id].error

        stored_good = await services.mappings.get_mapping(good.id)
        stored_bad = await services.mappings.get_mapping(bad.id)
        assert stored_good.sync_status == SyncStatus.SUCCESS
        assert stored_bad.sync_status == SyncStatus.FAILED
        assert stored_bad.sync_errors
        assert stored_bad.inventory_asset is None

    @pytest.mark.asyncio
    async def test_sync_all_skips_disabled(self, services, make_ci, add_asset):
        ci = await make_ci("srv")
        add_asset()
        await services.mappings.create_mapping(
            MappingCreate(ci_id=ci.ci_id, inventory_asset_id="asset-1", sync_enabled=False)
        )
        result = await services.mappings.sync_all_mappings()
        assert result.total == 0


class TestMappingCrud:
    @pytest.mark.asyncio
    async def test_get_includes_linked_records(self, services, make_ci, add_asset):
        ci = await make_ci("srv")
        add_asset(model="M1")
        mapping = await services.mappings.create_mapping(
            MappingCreate(ci_id=ci.ci_id, inventory_asset_id="asset-1")
        )
        detail = await services.mappings.get_mapping(mapping.id)
        assert detail.configuration_item.id == ci.id
        assert detail.inventory_asset.model == "M1"

    @pytest.mark.asyncio
    async def test_list_filters_and_pages(self, services, make_ci, add_asset):
        cis = [await make_ci(f"srv{i}") for i in range(3)]
        for i, ci in enumerate(cis):
            add_asset(f"asset-{i}")
            await services.mappings.create_mapping(
                MappingCreate(
                    ci_id=ci.ci_id,
                    inventory_asset_id=f"asset-{i}",
                    mapping_type="direct" if i < 2 else "component",
                    sync_enabled=i != 1,
                )
            )

        page = await services.mappings.list_mappings(page=1, page_size=2)
        assert (page.total, page.pages, len(page.items)) == (3, 2, 2)

        by_ci = await services.mappings.list_mappings(ci_id=cis[0].ci_id)
        assert [m.inventory_asset_id for m in by_ci.items] == ["asset-0"]

        components = await services.mappings.list_mappings(mapping_type="component")
        assert components.total == 1
        disabled = await services.mappings.list_mappings(sync_enabled=False)
        assert [m.inventory_asset_id for m in disabled.items] == ["asset-1"]

    @pytest.mark.asyncio
    async def test_update_and_delete(self, services, make_ci, add_asset):
        ci = await make_ci("srv")
        add_asset()
        mapping = await services.mappings.create_mapping(
            MappingCreate(ci_id=ci.ci_id, inventory_asset_id="asset-1")
        )
        updated = await services.mappings.update_mapping(
            mapping.id,
            MappingUpdate(conflict_resolution=ConflictResolution.NEWEST_WINS, sync_enabled=False),
        )
        assert updated.conflict_resolution == ConflictResolution.NEWEST_WINS
        assert updated.sync_enabled is False

        await services.mappings.delete_mapping(mapping.id)
        with pytest.raises(NotFoundError):
            await services.mappings.get_mapping(mapping.id)
        with pytest.raises(NotFoundError):
            await services.mappings.delete_mapping(mapping.id)
        with pytest.raises(NotFoundError):
            await services.mappings.update_mapping("missing", MappingUpdate(mapping_type="x"))

    @pytest.mark.asyncio
    async def test_bulk_reports_each_entry(self, services, make_ci, add_asset):
        ci = await make_ci("srv")
        add_asset()
        result = await services.mappings.bulk_create_mappings(
            [
                MappingCreate(ci_id=ci.ci_id, inventory_asset_id="asset-1"),
                MappingCreate(ci_id=ci.ci_id, inventory_asset_id="ghost"),
            ]
        )
        assert (result.total, result.successful, result.failed) == (2, 1, 1)
        assert result.results[0].mapping is not None
        assert result.results[1].success is False
        assert "ghost" in result.results[1].error


# ---------------------------------------------------------------------------
# Integration analysis
# ---------------------------------------------------------------------------


class TestIntegrationAnalysis:
    @pytest.mark.asyncio
    async def test_opportunities_suggest_candidates(self, services, make_ci, add_asset):
        await make_ci("match", serial_number="SN-42", model="R740")
        await make_ci("unrelated")
        add_asset("asset-a", serial_number="sn-42", model="R740")
        add_asset("asset-b", serial_number="NOPE")

        result = await services.mappings.analyze_integration_opportunities()
        assert result.unmapped_assets == 2
        assert result.unmapped_cis == 2
        assert result.total_mappings == 0
        assert len(result.suggestions) == 1
        suggestion = result.suggestions[0]
        assert suggestion.inventory_asset.id == "asset-a"
        assert [ci.name for ci in suggestion.potential_cis] == ["match"]
        assert suggestion.confidence == 30

    @pytest.mark.asyncio
    async def test_report_health_and_recommendations(
        self, services, make_ci, add_asset, inventory_pool
    ):
        empty = await services.mappings.generate_integration_report()
        assert empty.summary.integration_health == "Healthy"
        assert any(r.title == "No CMDB-Inventory Integration" for r in empty.recommendations)

        ci = await make_ci("srv")
        add_asset()
        mapping = await services.mappings.create_mapping(
            MappingCreate(ci_id=ci.ci_id, inventory_asset_id="asset-1")
        )
        conn = inventory_pool.get()
        conn.execute("DELETE FROM inventory_assets")
        conn.commit()
        with pytest.raises(NotFoundError):
            await services.mappings.sync_mapping(mapping.id)

        report = await services.mappings.generate_integration_report()
        assert report.summary.total_mappings == 1
        assert report.summary.active_mappings == 1
        assert report.summary.failed_syncs == 1
        assert report.summary.integration_health == "Warning"
        assert report.recommendations[0].type == "error"
        assert [m.id for m in report.recent_activity] == [mapping.id]

    def test_recommendation_thresholds(self):
        summary = IntegrationSummary(
            total_mappings=10,
            active_mappings=10,
            failed_syncs=0,
            unmapped_assets=51,
            unmapped_cis=31,
            integration_health="Healthy",
        )
        types = [r.type for r in MappingSynchronizer.generate_recommendations(summary)]
        assert types == ["warning", "info"]

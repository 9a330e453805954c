"""Tests for fingerprinting, discovery probes and the reconciliation pipeline."""
from __future__ import annotations

import base64
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.cmdb_engine.services.discovery_probes import (
    DiscoveryProbe,
    NetworkProbe,
    ProbeRegistry,
    StaticProbe,
    infer_device_type,
)
from src.cmdb_engine.services.discovery_service import (
    NOTE_CREATED,
    NOTE_MANUAL_REVIEW,
    NOTE_UPDATED,
    DiscoveryService,
    map_to_ci_type,
    next_run_date,
)
from src.cmdb_engine.services.fingerprint import generate_fingerprint
from src.shared.errors import NotFoundError, ValidationError
from src.shared.models.cmdb import (
    DiscoveredItem,
    DiscoveredItemStatus,
    DiscoveryConfig,
    DiscoveryRunStatus,
    DiscoveryScheduleCreate,
    DiscoveryType,
    ProcessingAction,
)


def _static_run(observations: list[dict], **kwargs) -> DiscoveryConfig:
    return DiscoveryConfig(
        discovery_type=DiscoveryType.LINUX,
        scope_configuration={"observations": observations},
        **kwargs,
    )


async def _run_and_wait(services, config: DiscoveryConfig):
    run = await services.discovery.run_discovery(config)
    await services.discovery.wait_for_pending()
    return await services.discovery.get_discovery_run(run.id)


# ---------------------------------------------------------------------------
# Fingerprints
# ---------------------------------------------------------------------------


class TestFingerprint:
    def test_deterministic(self):
        observation = {"serialNumber": "SN1", "hostname": "srv1", "extra": 1}
        assert generate_fingerprint(observation) == generate_fingerprint(dict(observation))

    def test_ignores_non_identifying_fields(self):
        a = generate_fingerprint({"serialNumber": "SN1", "cpu": 4})
        b = generate_fingerprint({"serialNumber": "SN1", "cpu": 8})
        assert a == b

    def test_priority_order(self):
        fp = generate_fingerprint(
            {"ipAddress": "10.0.0.1", "hostname": "h", "serialNumber": "S", "macAddress": "M"}
        )
        assert base64.b64decode(fp).decode() == "S|M|h|10.0.0.1"

    def test_fallback_to_name_and_type(self):
        fp = generate_fingerprint({"name": "printer", "discoveryType": "Network"})
        assert base64.b64decode(fp).decode() == "printer|Network"

    def test_distinct_identities_differ(self):
        assert generate_fingerprint({"serialNumber": "A"}) != generate_fingerprint(
            {"serialNumber": "B"}
        )


# ---------------------------------------------------------------------------
# Probes and lookup tables
# ---------------------------------------------------------------------------


class TestProbes:
    def test_infer_device_type(self):
        assert infer_device_type([22, 80]) == "linux-server"
        assert infer_device_type([3389]) == "windows-server"
        assert infer_device_type([443]) == "web-server"
        assert infer_device_type([161]) == "network-device"
        assert infer_device_type([]) == "unknown-device"

    def test_probes_satisfy_protocol(self):
        assert isinstance(NetworkProbe(), DiscoveryProbe)
        assert isinstance(StaticProbe(DiscoveryType.CLOUD), DiscoveryProbe)

    def test_registry_rejects_unknown_type(self):
        with pytest.raises(ValidationError, match="Unsupported discovery type"):
            ProbeRegistry().get(DiscoveryType.CLOUD)
        with pytest.raises(ValidationError):
            ProbeRegistry.default().get("Mainframe")

    @pytest.mark.asyncio
    async def test_static_probe_stamps_type(self):
        observations = await StaticProbe(DiscoveryType.WINDOWS).discover(
            {"observations": [{"hostname": "win-1"}]}
        )
        assert observations[0]["discoveryType"] == "Windows"
        assert observations[0]["discoveredAt"]

    @pytest.mark.asyncio
    async def test_static_probe_rejects_bad_scope(self):
        with pytest.raises(ValidationError):
            await StaticProbe(DiscoveryType.LINUX).discover({"observations": "nope"})

    @pytest.mark.asyncio
    async def test_network_probe_requires_valid_range(self):
        probe = NetworkProbe(max_hosts=2, timeout=0.01)
        with pytest.raises(ValidationError):
            await probe.discover({})
        with pytest.raises(ValidationError):
            await probe.discover({"ip_range": "not-a-network"})

    @pytest.mark.asyncio
    async def test_network_probe_reports_open_hosts(self, monkeypatch):
        probe = NetworkProbe(max_hosts=3, timeout=0.01, ports=[22, 80])

        async def fake_is_open(ip, port):
            return ip == "192.168.1.2" and port == 22

        monkeypatch.setattr(probe, "_is_open", fake_is_open)
        observations = await probe.discover({"ipRange": "192.168.1.0/24"})

        assert len(observations) == 1
        host = observations[0]
        assert host["name"] == "Device-192.168.1.2"
        assert host["ipAddress"] == "192.168.1.2"
        assert host["openPorts"] == [22]
        assert host["deviceType"] == "linux-server"
        assert host["ciType"] == "network-device"

    def test_map_to_ci_type(self):
        assert map_to_ci_type("server") == "hardware"
        assert map_to_ci_type(None, "ec2-instance") == "virtual"
        assert map_to_ci_type("network-device") == "network"
        assert map_to_ci_type("toaster") == "hardware"


class TestNextRunDate:
    NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)

    @pytest.mark.parametrize(
        "expression,delta",
        [
            ("@hourly", timedelta(hours=1)),
            ("@daily", timedelta(days=1)),
            ("@weekly", timedelta(weeks=1)),
            ("*/15min", timedelta(minutes=15)),
            ("*/0min", timedelta(minutes=1)),
            ("*/9999min", timedelta(minutes=1440)),
            ("0 * * * *", timedelta(hours=1)),
            (None, timedelta(hours=1)),
        ],
    )
    def test_supported_expressions(self, expression, delta):
        assert next_run_date(expression, self.NOW) == self.NOW + delta


# ---------------------------------------------------------------------------
# Runs
# ---------------------------------------------------------------------------


class TestRunDiscovery:
    @pytest.mark.asyncio
    async def test_new_observation_creates_discovered_ci(self, services):
        run = await _run_and_wait(
            services, _static_run([{"serialNumber": "SN1", "hostname": "srv1"}])
        )
        assert run.status == DiscoveryRunStatus.COMPLETED
        assert run.items_discovered == 1
        assert run.items_created == 1
        assert run.end_time is not None

        listed = await services.ci_service.list_cis()
        assert listed.total == 1
        ci = listed.items[0]
        assert ci.name == "srv1"
        assert ci.serial_number == "SN1"
        assert ci.is_discovered is True
        assert ci.discovery_source == "Linux"
        assert ci.first_discovered_date is not None

        items = await services.discovery.get_discovered_items(run.id)
        assert len(items) == 1
        assert items[0].status == DiscoveredItemStatus.PROCESSED
        assert items[0].ci_id == ci.id
        assert items[0].processing_notes == NOTE_CREATED

    @pytest.mark.asyncio
    async def test_repeat_observation_updates_in_place(self, services):
        observation = {"serialNumber": "SN1", "hostname": "srv1"}
        first = await _run_and_wait(services, _static_run([observation]))
        second = await _run_and_wait(
            services, _static_run([{**observation, "osVersion": "22.04"}])
        )

        first_items = await services.discovery.get_discovered_items(first.id)
        second_items = await services.discovery.get_discovered_items(second.id)
        assert first_items[0].fingerprint == second_items[0].fingerprint
        assert second.items_updated == 1
        assert second.items_created == 0

        listed = await services.ci_service.list_cis()
        assert listed.total == 1
        ci = listed.items[0]
        assert second_items[0].ci_id == ci.id
        assert second_items[0].processing_notes == NOTE_UPDATED
        assert ci.attributes["osVersion"] == "22.04"

    @pytest.mark.asyncio
    async def test_run_returns_before_processing(self, services):
        run = await services.discovery.run_discovery(_static_run([{"hostname": "h"}]))
        assert run.status == DiscoveryRunStatus.RUNNING
        await services.discovery.wait_for_pending()
        assert services.discovery.pending_runs == 0

    @pytest.mark.asyncio
    async def test_probe_failure_marks_run_failed(self, services):
        probe = MagicMock()
        probe.discover = AsyncMock(side_effect=RuntimeError("collector offline"))
        services.probes.register(DiscoveryType.CLOUD, probe)

        run = await _run_and_wait(
            services, DiscoveryConfig(discovery_type=DiscoveryType.CLOUD)
        )
        assert run.status == DiscoveryRunStatus.FAILED
        assert run.error_message == "collector offline"
        assert run.end_time is not None

    @pytest.mark.asyncio
    async def test_unregistered_type_marks_run_failed(self, services):
        discovery = DiscoveryService(
            services.discovery_store, services.ci_store, services.ci_service, ProbeRegistry()
        )
        run = await discovery.run_discovery(DiscoveryConfig(discovery_type=DiscoveryType.LINUX))
        await discovery.wait_for_pending()
        stored = await discovery.get_discovery_run(run.id)
        assert stored.status == DiscoveryRunStatus.FAILED
        assert "Unsupported discovery type" in stored.error_message

    @pytest.mark.asyncio
    async def test_auto_process_off_leaves_items_new(self, services):
        run = await _run_and_wait(
            services, _static_run([{"hostname": "h1"}], auto_process=False)
        )
        assert run.status == DiscoveryRunStatus.COMPLETED
        items = await services.discovery.get_discovered_items(run.id, DiscoveredItemStatus.NEW)
        assert len(items) == 1
        assert (await services.ci_service.list_cis()).total == 0

    @pytest.mark.asyncio
    async def test_item_failure_counted_and_recorded(self, services):
        run = await _run_and_wait(
            services,
            _static_run([{"macAddress": "aa:bb:cc:dd:ee:ff"}, {"hostname": "good"}]),
        )
        assert run.status == DiscoveryRunStatus.COMPLETED
        assert run.items_failed == 1
        assert run.items_created == 1

        errors = await services.discovery.get_discovered_items(
            run.id, DiscoveredItemStatus.ERROR
        )
        assert len(errors) == 1
        assert errors[0].processing_notes.startswith("Processing failed:")

    @pytest.mark.asyncio
    async def test_run_history(self, services):
        await _run_and_wait(services, _static_run([]))
        await _run_and_wait(services, _static_run([]))
        runs = await services.discovery.get_discovery_runs()
        assert len(runs) == 2
        with pytest.raises(NotFoundError):
            await services.discovery.get_discovery_run("missing")
        with pytest.raises(NotFoundError):
            await services.discovery.get_discovered_items("missing")


# ---------------------------------------------------------------------------
# Item processing
# ---------------------------------------------------------------------------


class TestProcessDiscoveredItem:
    async def _item(self, services, data: dict) -> DiscoveredItem:
        run = await _run_and_wait(services, _static_run([data], auto_process=False))
        items = await services.discovery.get_discovered_items(run.id)
        return items[0]

    @pytest.mark.asyncio
    async def test_manual_review_when_auto_create_disabled(self, services):
        item = await self._item(services, {"hostname": "lonely"})
        outcome = await services.discovery.process_discovered_item(item.id, auto_create=False)

        assert outcome.action == ProcessingAction.MANUAL_REVIEW
        assert outcome.status == DiscoveredItemStatus.NEW
        assert outcome.ci is None
        stored = services.discovery_store.get_item(item.id)
        assert stored.processing_notes == NOTE_MANUAL_REVIEW
        assert (await services.ci_service.list_cis()).total == 0

    @pytest.mark.asyncio
    async def test_matches_manual_ci_by_hostname(self, services, make_ci):
        ci = await make_ci("db-host", manufacturer="Dell")
        item = await self._item(
            services, {"hostname": "db-host", "model": "R740", "manufacturer": None}
        )
        outcome = await services.discovery.process_discovered_item(item.id)

        assert outcome.action == ProcessingAction.UPDATED
        assert outcome.ci.id == ci.id
        assert outcome.ci.model == "R740"
        assert outcome.ci.manufacturer == "Dell"
        assert outcome.ci.is_discovered is True
        assert outcome.ci.last_discovered_date is not None

    @pytest.mark.asyncio
    async def test_matches_by_ip_address(self, services):
        await _run_and_wait(
            services, _static_run([{"hostname": "edge-1", "ipAddress": "10.0.0.5"}])
        )
        item = await self._item(services, {"ipAddress": "10.0.0.5", "macAddress": "m1"})
        outcome = await services.discovery.process_discovered_item(item.id)
        assert outcome.action == ProcessingAction.UPDATED
        assert outcome.ci.name == "edge-1"

    @pytest.mark.asyncio
    async def test_matches_by_fingerprint(self, services):
        await _run_and_wait(services, _static_run([{"name": "printer-3"}]))
        item = await self._item(services, {"name": "printer-3"})
        outcome = await services.discovery.process_discovered_item(item.id)
        assert outcome.action == ProcessingAction.UPDATED
        assert (await services.ci_service.list_cis()).total == 1

    @pytest.mark.asyncio
    async def test_created_ci_type_from_observation(self, services):
        item = await self._item(services, {"hostname": "vm-7", "subType": "ec2-instance"})
        outcome = await services.discovery.process_discovered_item(item.id)
        assert outcome.action == ProcessingAction.CREATED
        assert outcome.ci.ci_type == "virtual"

    @pytest.mark.asyncio
    async def test_error_marks_item_and_reraises(self, services):
        item = await self._item(services, {"macAddress": "only-a-mac"})
        with pytest.raises(ValidationError):
            await services.discovery.process_discovered_item(item.id)
        stored = services.discovery_store.get_item(item.id)
        assert stored.status == DiscoveredItemStatus.ERROR

    @pytest.mark.asyncio
    async def test_unknown_item(self, services):
        with pytest.raises(NotFoundError):
            await services.discovery.process_discovered_item("missing")


# ---------------------------------------------------------------------------
# Schedules
# ---------------------------------------------------------------------------


class TestSchedules:
    @pytest.mark.asyncio
    async def test_create_sets_next_run(self, services):
        before = datetime.now(timezone.utc)
        schedule = await services.discovery.create_schedule(
            DiscoveryScheduleCreate(
                name="nightly", discovery_type=DiscoveryType.LINUX, cron_expression="@daily"
            )
        )
        assert schedule.next_run_date >= before + timedelta(hours=23)
        assert [s.id for s in await services.discovery.list_schedules()] == [schedule.id]

    @pytest.mark.asyncio
    async def test_run_schedule_starts_linked_run(self, services):
        schedule = await services.discovery.create_schedule(
            DiscoveryScheduleCreate(
                name="linux",
                discovery_type=DiscoveryType.LINUX,
                scope_configuration={"observations": [{"hostname": "sched-1"}]},
            )
        )
        run = await services.discovery.run_schedule(schedule.id)
        await services.discovery.wait_for_pending()

        stored = await services.discovery.get_discovery_run(run.id)
        assert stored.schedule_id == schedule.id
        assert stored.items_created == 1

    @pytest.mark.asyncio
    async def test_inactive_schedule_rejected(self, services):
        schedule = await services.discovery.create_schedule(
            DiscoveryScheduleCreate(
                name="off", discovery_type=DiscoveryType.LINUX, is_active=False
            )
        )
        with pytest.raises(ValidationError):
            await services.discovery.run_schedule(schedule.id)
        with pytest.raises(NotFoundError):
            await services.discovery.run_schedule("missing")

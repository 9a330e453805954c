"""Discovery runs and reconciliation of discovered items into the CMDB."""
from __future__ import annotations

import asyncio
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any

from src.cmdb_engine.services.ci_service import CIService
from src.cmdb_engine.services.ci_store import CIStore, new_ci_pk
from src.cmdb_engine.services.discovery_probes import ProbeRegistry
from src.cmdb_engine.services.discovery_store import DiscoveryStore
from src.cmdb_engine.services.fingerprint import generate_fingerprint
from src.shared.errors import NotFoundError, ValidationError
from src.shared.models.cmdb import (
    ConfigurationItem,
    DiscoveredItem,
    DiscoveredItemStatus,
    DiscoveryConfig,
    DiscoveryRun,
    DiscoveryRunStatus,
    DiscoverySchedule,
    DiscoveryScheduleCreate,
    ProcessingAction,
    ProcessingOutcome,
)

logger = logging.getLogger(__name__)

# Observed ``ciType`` / ``subType`` -> CI type id
CI_TYPE_MAP: dict[str, str] = {
    "computer": "hardware",
    "server": "hardware",
    "workstation": "hardware",
    "network-device": "network",
    "virtual-machine": "virtual",
    "database": "database",
    "ec2-instance": "virtual",
}
DEFAULT_CI_TYPE = "hardware"

# Observation keys copied onto CI columns during a merge
_MERGED_COLUMNS: tuple[tuple[str, str], ...] = (
    ("serialNumber", "serial_number"),
    ("manufacturer", "manufacturer"),
    ("model", "model"),
)

_EVERY_N_MIN_RE = re.compile(r"^\*/(\d+)min$")

NOTE_UPDATED = "Updated existing CI"
NOTE_CREATED = "Created new CI"
NOTE_MANUAL_REVIEW = "Requires manual review"


def map_to_ci_type(ci_type: str | None, sub_type: str | None = None) -> str:
    """CI type id for an observation, looked up by ``ciType`` then ``subType``."""
    return CI_TYPE_MAP.get(ci_type or "") or CI_TYPE_MAP.get(sub_type or "") or DEFAULT_CI_TYPE


def next_run_date(cron_expression: str | None, now: datetime | None = None) -> datetime:
    """Next run time for the minimal schedule syntax.

    Supports ``@hourly``, ``@daily``, ``@weekly`` and ``*/Nmin`` (N clamped
    to 1..1440). Anything else runs again in one hour.
    """
    now = now or datetime.now(timezone.utc)
    if cron_expression == "@hourly":
        return now + timedelta(hours=1)
    if cron_expression == "@daily":
        return now + timedelta(days=1)
    if cron_expression == "@weekly":
        return now + timedelta(weeks=1)
    match = _EVERY_N_MIN_RE.match(cron_expression or "")
    if match:
        minutes = max(1, min(1440, int(match.group(1))))
        return now + timedelta(minutes=minutes)
    return now + timedelta(hours=1)


class DiscoveryService:
    """Runs probes in the background and reconciles their observations.

    ``run_discovery`` returns as soon as the run record exists; the probe
    and item processing continue in a task tracked by this service until
    it finishes. :meth:`wait_for_pending` awaits all such tasks.
    """

    def __init__(
        self,
        discovery_store: DiscoveryStore,
        ci_store: CIStore,
        ci_service: CIService,
        probes: ProbeRegistry,
    ) -> None:
        self._store = discovery_store
        self._cis = ci_store
        self._ci_service = ci_service
        self._probes = probes
        self._pending: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # runs
    # ------------------------------------------------------------------

    async def run_discovery(self, config: DiscoveryConfig) -> DiscoveryRun:
        run = DiscoveryRun(
            schedule_id=config.schedule_id,
            discovery_type=config.discovery_type,
        )
        run = await asyncio.to_thread(self._store.create_run, run)
        logger.info(
            "Discovery run started: %s (%s)", run.id, run.discovery_type.value,
            extra={"run_id": run.id, "discovery_type": run.discovery_type.value},
        )
        task = asyncio.create_task(self._execute(run.id, config), name=f"discovery-{run.id}")
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return run

    async def wait_for_pending(self) -> None:
        """Block until every background run started so far has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @property
    def pending_runs(self) -> int:
        return len(self._pending)

    async def _finish(self, run_id: str, status: DiscoveryRunStatus, **counts: Any) -> None:
        try:
            await asyncio.to_thread(self._store.finish_run, run_id, status, **counts)
        except Exception as exc:
            logger.error(
                "Could not record discovery run outcome %s: %s", status.value, exc,
                extra={"run_id": run_id},
            )

    async def _execute(self, run_id: str, config: DiscoveryConfig) -> None:
        items: list[DiscoveredItem] = []
        created = updated = failed = 0
        try:
            probe = self._probes.get(config.discovery_type)
            observations = await probe.discover(config.scope_configuration)
            for observation in observations:
                data = dict(observation)
                data.setdefault("discoveryType", config.discovery_type.value)
                item = DiscoveredItem(
                    run_id=run_id,
                    discovered_data=data,
                    fingerprint=generate_fingerprint(data),
                )
                await asyncio.to_thread(self._store.insert_item, item)
                items.append(item)
        except Exception as exc:
            logger.error(
                "Discovery run failed: %s", exc,
                extra={"run_id": run_id, "discovery_type": config.discovery_type.value},
            )
            await self._finish(
                run_id,
                DiscoveryRunStatus.FAILED,
                items_discovered=len(items),
                error_message=str(exc),
            )
            return

        if config.auto_process:
            for item in items:
                try:
                    outcome = await self.process_discovered_item(
                        item.id, auto_create=config.auto_create
                    )
                except Exception:
                    # Already written onto the item as an Error note.
                    failed += 1
                    continue
                if outcome.action == ProcessingAction.CREATED:
                    created += 1
                elif outcome.action == ProcessingAction.UPDATED:
                    updated += 1

        await self._finish(
            run_id,
            DiscoveryRunStatus.COMPLETED,
            items_discovered=len(items),
            items_created=created,
            items_updated=updated,
            items_failed=failed,
        )
        logger.info(
            "Discovery run completed: %s - %d discovered, %d created, %d updated, %d failed",
            run_id, len(items), created, updated, failed,
            extra={"run_id": run_id},
        )

    async def get_discovery_runs(self, limit: int = 50) -> list[DiscoveryRun]:
        return await asyncio.to_thread(self._store.list_runs, limit)

    async def get_discovery_run(self, run_id: str) -> DiscoveryRun:
        run = await asyncio.to_thread(self._store.get_run, run_id)
        if run is None:
            raise NotFoundError(detail=f"Discovery run not found: {run_id}")
        return run

    async def get_discovered_items(
        self, run_id: str, status: DiscoveredItemStatus | None = None
    ) -> list[DiscoveredItem]:
        await self.get_discovery_run(run_id)
        return await asyncio.to_thread(self._store.list_items, run_id, status)

    # ------------------------------------------------------------------
    # reconciliation
    # ------------------------------------------------------------------

    async def _find_existing_ci(
        self, data: dict[str, Any], fingerprint: str
    ) -> ConfigurationItem | None:
        if data.get("serialNumber"):
            ci = await asyncio.to_thread(self._cis.find_by_serial, str(data["serialNumber"]))
            if ci is not None:
                return ci
        if data.get("hostname"):
            ci = await asyncio.to_thread(self._cis.find_by_name, str(data["hostname"]))
            if ci is not None:
                return ci
        if data.get("ipAddress"):
            ci = await asyncio.to_thread(self._cis.find_by_ip_address, str(data["ipAddress"]))
            if ci is not None:
                return ci
        return await asyncio.to_thread(self._cis.find_by_fingerprint, fingerprint)

    async def _record_network_details(self, ci_pk: str, data: dict[str, Any]) -> None:
        ip_address = data.get("ipAddress") or data.get("privateIp")
        mac_address = data.get("macAddress")
        hostname = data.get("hostname")
        fqdn = hostname if hostname and "." in str(hostname) else None
        if not (ip_address or mac_address or fqdn):
            return
        await asyncio.to_thread(
            self._cis.upsert_network_detail, ci_pk, ip_address, mac_address, fqdn
        )

    async def _update_existing_ci(
        self, existing: ConfigurationItem, data: dict[str, Any]
    ) -> ConfigurationItem:
        now = datetime.now(timezone.utc)
        observed = {key: value for key, value in data.items() if value is not None}
        fields: dict[str, Any] = {
            "attributes": {**existing.attributes, **observed},
            "is_discovered": True,
            "last_discovered_date": now,
            "discovery_source": data.get("discoveryType"),
        }
        if existing.first_discovered_date is None:
            fields["first_discovered_date"] = now
        for key, column in _MERGED_COLUMNS:
            if data.get(key) is not None:
                fields[column] = data[key]

        ci = await asyncio.to_thread(self._cis.update, existing.id, fields)
        await self._record_network_details(ci.id, data)
        logger.info("Updated existing CI: %s from discovery", ci.ci_id, extra={"ci_id": ci.ci_id})
        return ci

    async def _create_ci(self, data: dict[str, Any]) -> ConfigurationItem:
        name = data.get("hostname") or data.get("name") or data.get("ipAddress") or data.get("instanceId")
        if not name:
            raise ValidationError(detail="Discovered item has no hostname, name or address")
        now = datetime.now(timezone.utc)
        discovery_type = data.get("discoveryType")
        ci = ConfigurationItem(
            id=new_ci_pk(),
            ci_id=await self._ci_service.generate_ci_id(),
            name=str(name),
            display_name=data.get("name"),
            description=f"Discovered {discovery_type} device",
            ci_type=map_to_ci_type(data.get("ciType"), data.get("subType")),
            ci_sub_type=data.get("subType"),
            serial_number=data.get("serialNumber"),
            manufacturer=data.get("manufacturer"),
            model=data.get("model"),
            attributes=dict(data),
            is_discovered=True,
            discovery_source=discovery_type,
            first_discovered_date=now,
            last_discovered_date=now,
            created_by="discovery",
        )
        created = await asyncio.to_thread(self._cis.insert, ci)
        await self._record_network_details(created.id, data)
        await asyncio.to_thread(
            self._cis.record_audit, created.id, "CREATE", changed_by="discovery"
        )
        logger.info("Created new CI from discovery: %s", created.ci_id, extra={"ci_id": created.ci_id})
        return created

    async def process_discovered_item(
        self, item_id: str, auto_create: bool = True
    ) -> ProcessingOutcome:
        """Reconcile one discovered item into the CMDB.

        Matches by serial number, then hostname as CI name, then IP address,
        then the CI of an earlier processed item with the same fingerprint.
        A match is merged additively; no match creates a CI unless
        *auto_create* is False, in which case the item waits for manual
        review. Failures mark the item ``Error`` and are re-raised; changes
        already written are kept.
        """
        item = await asyncio.to_thread(self._store.get_item, item_id)
        if item is None:
            raise NotFoundError(detail=f"Discovered item not found: {item_id}")
        data = item.discovered_data

        try:
            existing = await self._find_existing_ci(data, item.fingerprint)
            if existing is not None:
                ci = await self._update_existing_ci(existing, data)
                await asyncio.to_thread(
                    self._store.update_item,
                    item.id, DiscoveredItemStatus.PROCESSED, NOTE_UPDATED, ci.id,
                )
                return ProcessingOutcome(
                    item_id=item.id,
                    status=DiscoveredItemStatus.PROCESSED,
                    action=ProcessingAction.UPDATED,
                    ci=ci,
                )

            if not auto_create:
                await asyncio.to_thread(
                    self._store.update_item,
                    item.id, DiscoveredItemStatus.NEW, NOTE_MANUAL_REVIEW,
                )
                return ProcessingOutcome(
                    item_id=item.id,
                    status=DiscoveredItemStatus.NEW,
                    action=ProcessingAction.MANUAL_REVIEW,
                )

            ci = await self._create_ci(data)
            await asyncio.to_thread(
                self._store.update_item,
                item.id, DiscoveredItemStatus.PROCESSED, NOTE_CREATED, ci.id,
            )
            return ProcessingOutcome(
                item_id=item.id,
                status=DiscoveredItemStatus.PROCESSED,
                action=ProcessingAction.CREATED,
                ci=ci,
            )
        except Exception as exc:
            logger.error(
                "Processing failed for discovered item %s: %s", item.id, exc,
                extra={"item_id": item.id, "run_id": item.run_id},
            )
            try:
                await asyncio.to_thread(
                    self._store.update_item,
                    item.id, DiscoveredItemStatus.ERROR, f"Processing failed: {exc}",
                )
            except Exception as note_exc:
                logger.error(
                    "Could not record failure on discovered item %s: %s", item.id, note_exc,
                    extra={"item_id": item.id},
                )
            raise

    # ------------------------------------------------------------------
    # schedules
    # ------------------------------------------------------------------

    async def create_schedule(self, body: DiscoveryScheduleCreate) -> DiscoverySchedule:
        schedule = DiscoverySchedule(
            **body.model_dump(),
            next_run_date=next_run_date(body.cron_expression),
        )
        created = await asyncio.to_thread(self._store.insert_schedule, schedule)
        logger.info("Discovery schedule created: %s (%s)", created.name, created.discovery_type.value)
        return created

    async def list_schedules(self) -> list[DiscoverySchedule]:
        return await asyncio.to_thread(self._store.list_schedules)

    async def run_schedule(self, schedule_id: str) -> DiscoveryRun:
        """Start a run for a schedule and move its next run date forward."""
        schedule = await asyncio.to_thread(self._store.get_schedule, schedule_id)
        if schedule is None:
            raise NotFoundError(detail=f"Discovery schedule not found: {schedule_id}")
        if not schedule.is_active:
            raise ValidationError(detail=f"Discovery schedule is inactive: {schedule.name}")
        run = await self.run_discovery(
            DiscoveryConfig(
                discovery_type=schedule.discovery_type,
                schedule_id=schedule.id,
                scope_configuration=schedule.scope_configuration,
            )
        )
        await asyncio.to_thread(
            self._store.set_next_run,
            schedule.id,
            next_run_date(schedule.cron_expression).isoformat(),
        )
        return run

"""Discovery probes: sources of raw observations for a discovery run."""
from __future__ import annotations

import asyncio
import ipaddress
import itertools
import logging
from typing import Any, Protocol, runtime_checkable

from src.shared.errors import ValidationError
from src.shared.models.cmdb import DiscoveryType
from src.shared.utils import now_iso

logger = logging.getLogger(__name__)

_DEFAULT_PORTS: tuple[int, ...] = (22, 80, 443, 3389)
_MAX_CONCURRENT_HOSTS = 32


@runtime_checkable
class DiscoveryProbe(Protocol):
    """Protocol for discovery probes."""

    async def discover(self, scope: dict[str, Any]) -> list[dict[str, Any]]:
        """Collect raw observations for the given scope.

        Args:
            scope: Probe-specific scope configuration.

        Returns:
            List of observation payloads (open-schema dicts).
        """
        ...


def infer_device_type(open_ports: list[int]) -> str:
    """Guess what a host is from the TCP ports it answers on."""
    if 22 in open_ports:
        return "linux-server"
    if 3389 in open_ports:
        return "windows-server"
    if 80 in open_ports or 443 in open_ports:
        return "web-server"
    if 161 in open_ports:
        return "network-device"
    return "unknown-device"


class NetworkProbe:
    """TCP connect sweep over a CIDR range.

    A host is reported when at least one of the scanned ports accepts a
    connection. The sweep is capped at ``max_hosts`` addresses.
    """

    def __init__(
        self,
        max_hosts: int = 256,
        timeout: float = 1.0,
        ports: list[int] | None = None,
    ) -> None:
        self._max_hosts = max_hosts
        self._timeout = timeout
        self._ports = list(ports) if ports else list(_DEFAULT_PORTS)

    async def _is_open(self, ip: str, port: int) -> bool:
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(ip, port), timeout=self._timeout
            )
        except (OSError, asyncio.TimeoutError):
            return False
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return True

    async def _probe_host(
        self, ip: str, ports: list[int], semaphore: asyncio.Semaphore
    ) -> dict[str, Any] | None:
        async with semaphore:
            open_ports = [port for port in ports if await self._is_open(ip, port)]
        if not open_ports:
            return None
        return {
            "name": f"Device-{ip}",
            "ipAddress": ip,
            "discoveryType": DiscoveryType.NETWORK.value,
            "discoveredAt": now_iso(),
            "alive": True,
            "openPorts": open_ports,
            "deviceType": infer_device_type(open_ports),
            "ciType": "network-device",
        }

    async def discover(self, scope: dict[str, Any]) -> list[dict[str, Any]]:
        ip_range = scope.get("ip_range") or scope.get("ipRange")
        if not ip_range:
            raise ValidationError(detail="Network discovery requires an ip_range")
        try:
            network = ipaddress.ip_network(ip_range, strict=False)
        except ValueError as exc:
            raise ValidationError(detail=f"Invalid ip_range: {ip_range}") from exc

        ports = scope.get("scan_ports") or scope.get("scanPorts") or self._ports
        hosts = [str(h) for h in itertools.islice(network.hosts(), self._max_hosts)]
        logger.info(
            "Network sweep of %s: %d hosts, ports %s", ip_range, len(hosts), ports,
            extra={"discovery_type": DiscoveryType.NETWORK.value},
        )
        semaphore = asyncio.Semaphore(_MAX_CONCURRENT_HOSTS)
        results = await asyncio.gather(
            *(self._probe_host(ip, ports, semaphore) for ip in hosts)
        )
        return [r for r in results if r is not None]


class StaticProbe:
    """Replays observations supplied in ``scope["observations"]``.

    Agents that collect data out of band (WMI, SSH, cloud APIs) post their
    payloads with the run request; this probe stamps them with the
    discovery type and a discovery timestamp.
    """

    def __init__(self, discovery_type: DiscoveryType) -> None:
        self._discovery_type = discovery_type

    async def discover(self, scope: dict[str, Any]) -> list[dict[str, Any]]:
        observations = scope.get("observations", [])
        if not isinstance(observations, list) or not all(
            isinstance(obs, dict) for obs in observations
        ):
            raise ValidationError(detail="observations must be a list of objects")
        stamped: list[dict[str, Any]] = []
        for obs in observations:
            entry = dict(obs)
            entry["discoveryType"] = entry.get("discoveryType") or self._discovery_type.value
            entry["discoveredAt"] = entry.get("discoveredAt") or now_iso()
            stamped.append(entry)
        return stamped


class ProbeRegistry:
    """Maps discovery types to probes."""

    def __init__(self, probes: dict[DiscoveryType, DiscoveryProbe] | None = None) -> None:
        self._probes: dict[DiscoveryType, DiscoveryProbe] = dict(probes or {})

    def register(self, discovery_type: DiscoveryType, probe: DiscoveryProbe) -> None:
        self._probes[discovery_type] = probe

    def get(self, discovery_type: DiscoveryType | str) -> DiscoveryProbe:
        try:
            probe = self._probes[DiscoveryType(discovery_type)]
        except (KeyError, ValueError):
            raise ValidationError(
                detail=f"Unsupported discovery type: {discovery_type}"
            ) from None
        return probe

    @classmethod
    def default(
        cls,
        max_hosts: int = 256,
        timeout: float = 1.0,
        ports: list[int] | None = None,
    ) -> ProbeRegistry:
        """Network sweep for ``Network``; replayed observations for the rest."""
        registry = cls()
        registry.register(
            DiscoveryType.NETWORK,
            NetworkProbe(max_hosts=max_hosts, timeout=timeout, ports=ports),
        )
        for discovery_type in (
            DiscoveryType.WINDOWS,
            DiscoveryType.LINUX,
            DiscoveryType.CLOUD,
            DiscoveryType.DATABASE,
        ):
            registry.register(discovery_type, StaticProbe(discovery_type))
        return registry

"""
Telemetry Sampler

Produces one MetricSnapshot for one server: provider status from the
provisioning API, utilization from the server's Glances agent, and response
time from a TCP connect probe.
"""

import logging
import re
from typing import Any, Awaitable, Callable, Optional

from apps.backend.src.core.clock import Clock
from apps.backend.src.core.exceptions import UnreachableError
from apps.backend.src.models.server import Server
from apps.backend.src.schemas.metrics import MetricSnapshotData
from apps.backend.src.utils.connectivity import probe_tcp
from apps.backend.src.utils.glances_client import SNAPSHOT_ENDPOINTS, GlancesClient
from apps.backend.src.utils.provisioning_client import ProvisioningClient

logger = logging.getLogger(__name__)

RUNNING_STATUS = "running"

_UPTIME_RE = re.compile(r"^(?:(?P<days>\d+)\s+days?,\s*)?(?P<h>\d+):(?P<m>\d{2}):(?P<s>\d{2})")

GlancesFactory = Callable[[str, float], GlancesClient]
Probe = Callable[[str, int, float], Awaitable[Optional[float]]]


def parse_uptime(value: Any) -> int | None:
    """Convert a Glances uptime value ("3 days, 4:05:06" or seconds) to seconds."""
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, dict):
        seconds = value.get("seconds")
        return int(seconds) if seconds is not None else None

    match = _UPTIME_RE.match(str(value).strip())
    if not match:
        return None
    days = int(match.group("days") or 0)
    return days * 86400 + int(match.group("h")) * 3600 + int(match.group("m")) * 60 + int(match.group("s"))


def _first(data: Any) -> dict[str, Any] | None:
    if isinstance(data, list):
        data = data[0] if data else None
    return data if isinstance(data, dict) else None


def _cpu_fields(data: Any) -> dict[str, Any]:
    cpu = _first(data)
    if cpu is None or cpu.get("total") is None:
        return {}
    return {"cpu_usage_percent": min(max(float(cpu["total"]), 0.0), 100.0)}


def _memory_fields(data: Any) -> dict[str, Any]:
    mem = _first(data)
    if mem is None:
        return {}
    fields: dict[str, Any] = {}
    if mem.get("total") is not None:
        fields["memory_total_bytes"] = int(mem["total"])
    if mem.get("used") is not None:
        fields["memory_used_bytes"] = int(mem["used"])
    if mem.get("percent") is not None:
        fields["memory_usage_percent"] = float(mem["percent"])
    return fields


def _disk_fields(data: Any) -> dict[str, Any]:
    """Root filesystem, or the largest one when / is not reported."""
    if not isinstance(data, list):
        return {}
    filesystems = [fs for fs in data if isinstance(fs, dict) and fs.get("size")]
    if not filesystems:
        return {}

    root = next((fs for fs in filesystems if fs.get("mnt_point") == "/"), None)
    chosen = root or max(filesystems, key=lambda fs: fs.get("size", 0))

    size = int(chosen["size"])
    used = int(chosen.get("used", 0))
    percent = chosen.get("percent")
    if percent is None:
        percent = used * 100 / size
    return {
        "disk_total_bytes": size,
        "disk_used_bytes": used,
        "disk_usage_percent": float(percent),
    }


def _counter(interface: dict[str, Any], *keys: str) -> int:
    for key in keys:
        if interface.get(key) is not None:
            return int(interface[key])
    return 0


def _network_fields(data: Any) -> dict[str, Any]:
    """Sum cumulative counters over non-loopback interfaces."""
    if not isinstance(data, list):
        return {}
    interfaces = [
        iface
        for iface in data
        if isinstance(iface, dict) and not str(iface.get("interface_name", "")).startswith("lo")
    ]
    if not interfaces:
        return {}

    bytes_in = sum(_counter(i, "bytes_recv_gauge", "cumulative_rx", "rx") for i in interfaces)
    bytes_out = sum(_counter(i, "bytes_sent_gauge", "cumulative_tx", "tx") for i in interfaces)
    return {"network_bytes_in": bytes_in, "network_bytes_out": bytes_out}


def _load_fields(data: Any) -> dict[str, Any]:
    load = _first(data)
    if load is None or load.get("min1") is None:
        return {}
    return {"load_average_1m": float(load["min1"])}


class TelemetrySampler:
    """Samples a single server at a single point in time"""

    def __init__(
        self,
        provisioning_client: ProvisioningClient,
        clock: Clock,
        glances_timeout: float = 5.0,
        lookup_timeout: float = 10.0,
        probe_port: int = 80,
        probe_timeout: float = 5.0,
        glances_factory: GlancesFactory | None = None,
        probe: Probe | None = None,
    ):
        self.provisioning_client = provisioning_client
        self.clock = clock
        self.glances_timeout = glances_timeout
        self.lookup_timeout = lookup_timeout
        self.probe_port = probe_port
        self.probe_timeout = probe_timeout
        self.glances_factory = glances_factory or (lambda url, timeout: GlancesClient(url, timeout=timeout))
        self.probe = probe or probe_tcp

    async def sample(self, server: Server) -> MetricSnapshotData:
        """Produce a snapshot for ``server``.

        Raises:
            ServerNotFoundError: the provider does not know the instance
            UnreachableError: the Glances agent did not answer any request
            ExternalServiceError: the provider lookup failed
        """
        sampled_at = self.clock.now()

        instance = await self.provisioning_client.get_instance(
            server.provider_instance_id, timeout=self.lookup_timeout
        )
        provider_status = str(instance.get("status", "unknown")).lower()

        if provider_status != RUNNING_STATUS:
            logger.info(
                "telemetry.server.offline",
                extra={"server_id": str(server.id), "provider_status": provider_status},
            )
            return MetricSnapshotData(server_id=server.id, time=sampled_at, is_online=False)

        async with self.glances_factory(server.glances_endpoint, self.glances_timeout) as glances:
            data = await glances.get_multiple_endpoints(SNAPSHOT_ENDPOINTS)

        answered = [endpoint for endpoint, result in data.items() if result is not None]
        if not answered:
            raise UnreachableError(
                str(server.id), endpoint=server.glances_endpoint, reason="no Glances endpoint answered"
            )

        fields: dict[str, Any] = {}
        fields.update(_cpu_fields(data.get("cpu")))
        fields.update(_memory_fields(data.get("mem")))
        fields.update(_disk_fields(data.get("fs")))
        fields.update(_network_fields(data.get("network")))
        fields.update(_load_fields(data.get("load")))
        fields["uptime_seconds"] = parse_uptime(data.get("uptime"))

        if server.ip_address:
            fields["response_time_ms"] = await self.probe(
                server.ip_address, self.probe_port, self.probe_timeout
            )

        missing = sorted(set(SNAPSHOT_ENDPOINTS) - set(answered))
        if missing:
            logger.info(
                "telemetry.sample.partial",
                extra={"server_id": str(server.id), "missing_endpoints": missing},
            )

        return MetricSnapshotData(server_id=server.id, time=sampled_at, is_online=True, **fields)

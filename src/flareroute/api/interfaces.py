from pathlib import Path
from typing import Protocol

from flareroute.models import DnsRecordRef, TunnelHandle, ZoneRef
from flareroute.typealias import Domain, RecordId, TunnelName


class DnsProvider(Protocol):
    """Zone and record side of the provider. Failures raise ProviderFailure."""

    async def resolve_zone(self, domain: Domain) -> ZoneRef: ...

    async def find_records(self, zone: ZoneRef, fqdn: Domain) -> list[DnsRecordRef]:
        """Every record named exactly `fqdn`, whatever its type."""
        ...

    async def delete_record(self, zone: ZoneRef, record_id: RecordId) -> None: ...

    async def find_record(self, zone: ZoneRef, fqdn: Domain) -> DnsRecordRef | None:
        records = await self.find_records(zone, fqdn)
        return records[0] if records else None

    async def record_exists(self, zone: ZoneRef, fqdn: Domain) -> bool:
        return bool(await self.find_records(zone, fqdn))


class TunnelDaemon(Protocol):
    """Control surface of the tunnel daemon. Failures raise ProviderFailure."""

    async def version(self) -> str: ...

    async def list_tunnels(self, name: TunnelName | None = None) -> list[TunnelHandle]: ...

    async def find_tunnel(self, name: TunnelName) -> TunnelHandle | None: ...

    async def create_tunnel(self, name: TunnelName) -> TunnelHandle: ...

    async def delete_tunnel(self, name: TunnelName) -> None: ...

    async def cleanup_connections(self, name: TunnelName) -> None: ...

    async def route_dns(self, name: TunnelName, fqdn: Domain) -> None: ...

    async def run(self, config_path: Path, name: TunnelName) -> int:
        """Blocks until the daemon exits. Raises DaemonRunFailure on a non-zero exit."""
        ...

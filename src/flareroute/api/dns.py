from contextlib import contextmanager
from typing import Iterator, Self

import cloudflare
from cloudflare import AsyncCloudflare
from cloudflare.types.dns import record_list_params
from loguru import logger
from pydantic import SecretStr, ValidationError

from flareroute.api.interfaces import DnsProvider
from flareroute.errors import FailureKind, ProviderFailure
from flareroute.models import DnsRecordRef, ZoneRef, normalize_domain, parent_zone_name
from flareroute.typealias import Domain, RecordId


def _failure_kind(error: cloudflare.APIError) -> FailureKind:
    match error:
        case cloudflare.AuthenticationError() | cloudflare.PermissionDeniedError():
            return FailureKind.UNAUTHORIZED
        case cloudflare.NotFoundError():
            return FailureKind.NOT_FOUND
        case cloudflare.RateLimitError():
            return FailureKind.RATE_LIMITED
        case cloudflare.ConflictError():
            return FailureKind.CONFLICT
        case cloudflare.APIConnectionError():
            return FailureKind.NETWORK
        case cloudflare.APIResponseValidationError():
            return FailureKind.MALFORMED
        case _:
            return FailureKind.REJECTED


@contextmanager
def _translated(action: str) -> Iterator[None]:
    try:
        yield
    except cloudflare.APIError as e:
        raise ProviderFailure(_failure_kind(e), f"{action}: {e.message}") from e
    except ValidationError as e:
        raise ProviderFailure(FailureKind.MALFORMED, f"{action}: unexpected response shape") from e


class CloudflareDns(DnsProvider):
    """
    Zone and record access through the Cloudflare v4 API.
    The SDK's own retries are disabled: a failed call surfaces once and the
    caller decides what it means.
    """

    def __init__(self, api_token: SecretStr | str, client: AsyncCloudflare | None = None):
        if isinstance(api_token, SecretStr):
            api_token = api_token.get_secret_value()
        self.client = client or AsyncCloudflare(api_token=api_token, max_retries=0)

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.client.close()

    async def resolve_zone(self, domain: Domain) -> ZoneRef:
        zone_name = parent_zone_name(domain)
        zones: list[ZoneRef] = []
        with _translated(f"Zone lookup for {zone_name}"):
            async for zone in self.client.zones.list(name=zone_name):
                zones.append(ZoneRef(zone_id=zone.id, zone_name=zone.name))

        if not zones:
            raise ProviderFailure(FailureKind.NOT_FOUND, f"No zone named {zone_name} is visible to this token")
        if len(zones) > 1:
            # Provider order is all we have to go on
            logger.warning(
                f"{len(zones)} zones are named {zone_name}, using the first one ({zones[0].zone_id})"
            )
        return zones[0]

    async def find_records(self, zone: ZoneRef, fqdn: Domain) -> list[DnsRecordRef]:
        fqdn = normalize_domain(fqdn)
        records: list[DnsRecordRef] = []
        with _translated(f"Record lookup for {fqdn}"):
            async for record in self.client.dns.records.list(
                    zone_id=zone.zone_id,
                    name=record_list_params.Name(exact=fqdn)):
                records.append(DnsRecordRef(record_id=record.id, fqdn=record.name))
        if len(records) > 1:
            logger.debug(f"{len(records)} records are named {fqdn}")
        return records

    async def delete_record(self, zone: ZoneRef, record_id: RecordId) -> None:
        try:
            with _translated(f"Deleting record {record_id}"):
                await self.client.dns.records.delete(dns_record_id=record_id, zone_id=zone.zone_id)
        except ProviderFailure as failure:
            if failure.kind is not FailureKind.NOT_FOUND:
                raise
            logger.debug(f"Record {record_id} was already gone")

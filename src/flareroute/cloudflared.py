import json
import re
from pathlib import Path

from loguru import logger
from pydantic import TypeAdapter, ValidationError

from flareroute.api.interfaces import TunnelDaemon
from flareroute.binary.binary import BinaryWrapper, TextResult
from flareroute.binary.process import ProcessExecutor
from flareroute.errors import DaemonRunFailure, FailureKind, ProviderFailure
from flareroute.models import CreatedTunnel, TunnelHandle, TunnelListing, normalize_domain
from flareroute.typealias import Domain, TunnelName

__all__ = ["Cloudflared", "classify_failure"]

# First match wins
_failure_patterns: list[tuple[re.Pattern[str], FailureKind]] = [
    (re.compile(r"already exists", re.I), FailureKind.CONFLICT),
    # Before NOT_FOUND: a missing certificate is not a missing tunnel
    (re.compile(r"unauthori[sz]ed|authentication|forbidden|origin ?cert|cert\.pem", re.I),
     FailureKind.UNAUTHORIZED),
    (re.compile(r"not found|no tunnel|does not exist|couldn't find", re.I), FailureKind.NOT_FOUND),
    (re.compile(r"\b429\b|too many requests|rate limit", re.I), FailureKind.RATE_LIMITED),
    (re.compile(r"dial tcp|no such host|connection refused|i/o timeout|timed out|network is unreachable", re.I),
     FailureKind.NETWORK),
]

_list_adapter = TypeAdapter(list[TunnelListing] | None)


def classify_failure(stderr: str) -> FailureKind:
    for pattern, kind in _failure_patterns:
        if pattern.search(stderr):
            return kind
    return FailureKind.REJECTED


class Cloudflared(TunnelDaemon):
    """
    Drives `cloudflared tunnel ...` subcommands. Every tunnel command carries the
    origin certificate explicitly, so the state directory is the only place the
    daemon looks for credentials.
    """

    def __init__(self, binary: str | Path, origin_cert: Path):
        self.binary = BinaryWrapper(binary)
        self.origin_cert = origin_cert

    def _tunnel_args(self, *args: str) -> tuple[str, ...]:
        return "tunnel", "--origincert", str(self.origin_cert), *args

    async def _execute(self, *args: str) -> TextResult:
        return await self.binary.execute_await_response(*args)

    async def _checked(self, action: str, *args: str) -> TextResult:
        result = await self._execute(*self._tunnel_args(*args))
        if result.return_code != 0:
            detail = result.stderr or result.stdout or f"exit code {result.return_code}"
            raise ProviderFailure(classify_failure(detail), f"{action}: {detail}")
        return result

    def credentials_path(self, tunnel_id: str) -> Path:
        # cloudflared writes <id>.json next to the origin certificate
        return self.origin_cert.parent / f"{tunnel_id}.json"

    def _handle(self, tunnel_id: str, name: TunnelName) -> TunnelHandle:
        return TunnelHandle(tunnel_id=tunnel_id, name=name, credentials_path=self.credentials_path(tunnel_id))

    async def version(self) -> str:
        result = await self._execute("version")
        if result.return_code != 0:
            raise ProviderFailure(classify_failure(result.stderr), f"cloudflared version: {result.stderr}")
        return result.stdout

    async def list_tunnels(self, name: TunnelName | None = None) -> list[TunnelHandle]:
        args = ["list", "--output", "json"]
        if name:
            args += ["--name", name]
        result = await self._checked("Listing tunnels", *args)

        try:
            listings = _list_adapter.validate_json(result.stdout or "null") or []
        except ValidationError as e:
            raise ProviderFailure(FailureKind.MALFORMED, f"Unreadable tunnel list: {result.stdout[:200]}") from e

        return [self._handle(listing.id, listing.name) for listing in listings
                if name is None or listing.name == name]

    async def find_tunnel(self, name: TunnelName) -> TunnelHandle | None:
        tunnels = await self.list_tunnels(name)
        if len(tunnels) > 1:
            logger.warning(f"{len(tunnels)} tunnels are named {name}, using {tunnels[0].tunnel_id}")
        return tunnels[0] if tunnels else None

    async def create_tunnel(self, name: TunnelName) -> TunnelHandle:
        result = await self._checked(f"Creating tunnel {name}", "create", "--output", "json", name)
        try:
            created = CreatedTunnel.model_validate(json.loads(result.stdout))
        except (ValueError, ValidationError) as e:
            # The tunnel may exist even though we could not read its id
            raise ProviderFailure(
                FailureKind.MALFORMED, f"Could not capture the id of tunnel {name}: {result.stdout[:200]!r}"
            ) from e
        logger.info(f"Created tunnel {created.name} ({created.id})")
        return self._handle(created.id, created.name)

    async def _idempotent(self, action: str, *args: str) -> None:
        try:
            await self._checked(action, *args)
        except ProviderFailure as failure:
            if failure.kind is not FailureKind.NOT_FOUND:
                raise
            logger.debug(f"{action}: nothing to do, tunnel is gone")

    async def delete_tunnel(self, name: TunnelName) -> None:
        await self._idempotent(f"Deleting tunnel {name}", "delete", "-f", name)

    async def cleanup_connections(self, name: TunnelName) -> None:
        await self._idempotent(f"Cleaning up connections of {name}", "cleanup", name)

    async def route_dns(self, name: TunnelName, fqdn: Domain) -> None:
        fqdn = normalize_domain(fqdn)
        await self._checked(f"Routing {fqdn} to {name}", "route", "dns", name, fqdn)
        logger.info(f"Routed {fqdn} to tunnel {name}")

    def run_executor(self, config_path: Path, name: TunnelName) -> ProcessExecutor:
        return self.binary.execute_streaming_response(
            *self._tunnel_args("--config", str(config_path), "run", name))

    async def run(self, config_path: Path, name: TunnelName) -> int:
        return_code = await self.run_executor(config_path, name).run_to_completion()
        if return_code != 0:
            raise DaemonRunFailure(f"cloudflared exited with code {return_code}", return_code=return_code)
        return return_code

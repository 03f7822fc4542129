"""
The provisioning state machine.

A run walks INIT -> ZONE_RESOLVED -> CLEAN -> TUNNEL_CREATED -> CONFIG_WRITTEN
-> ROUTE_CREATED -> RUNNING -> TORN_DOWN. Any fatal step moves it to FAILED and
raises a TunnelError carrying the stage it failed in.

Once a tunnel may exist, teardown is registered on an AsyncExitStack, so it runs
when the daemon exits, when a later step fails, and when the provisioning task
is cancelled by a signal. It runs at most once per Reconciler, and a
cancellation that lands while it runs waits for it to finish.
"""
import asyncio
from collections.abc import Awaitable
from contextlib import AsyncExitStack
from enum import StrEnum, auto

from loguru import logger

from flareroute.api.interfaces import DnsProvider, TunnelDaemon
from flareroute.errors import (
    ConfigWriteFailed,
    ConvergenceTimeout,
    DaemonRunFailure,
    FailureKind,
    PreconditionMissing,
    ProviderFailure,
    ProviderLookupFailed,
    ProviderWriteFailed,
    TunnelError,
)
from flareroute.models import TunnelConfig, TunnelHandle, ZoneRef, normalize_domain, tunnel_identity
from flareroute.poller import PollOutcome, wait_for_absence
from flareroute.settings import Settings
from flareroute.typealias import Domain, ExistenceCheck, Port, ReadyHook


class ReconcileState(StrEnum):
    INIT = auto()
    ZONE_RESOLVED = auto()
    CLEAN = auto()
    TUNNEL_CREATED = auto()
    CONFIG_WRITTEN = auto()
    ROUTE_CREATED = auto()
    RUNNING = auto()
    TORN_DOWN = auto()
    FAILED = auto()


class Reconciler:

    def __init__(
            self,
            settings: Settings,
            dns: DnsProvider,
            daemon: TunnelDaemon,
            domain: Domain,
            on_ready: ReadyHook | None = None):
        try:
            self.domain = normalize_domain(domain)
        except ValueError as e:
            raise PreconditionMissing(str(e)) from e

        self.settings = settings
        self.dns = dns
        self.daemon = daemon
        self.on_ready = on_ready

        self.identity = tunnel_identity(self.domain)
        self.config_path = settings.config_path(self.domain)

        self.state = ReconcileState.INIT
        self.history: list[ReconcileState] = [ReconcileState.INIT]
        self.failure: TunnelError | None = None

        self.zone: ZoneRef | None = None
        self.handle: TunnelHandle | None = None
        self.config: TunnelConfig | None = None

        self._teardown_armed = False
        self._teardown_started = False

    @property
    def public_url(self) -> str:
        return f"https://{self.domain}"

    def _advance(self, state: ReconcileState) -> None:
        logger.debug(f"{self.identity}: {self.state} -> {state}")
        self.state = state
        self.history.append(state)

    def _fail[E: TunnelError](self, error_type: type[E], message: str) -> E:
        error = error_type(message, stage=str(self.state))
        logger.debug(f"{self.identity}: {self.state} -> {ReconcileState.FAILED} ({message})")
        self.failure = error
        self.state = ReconcileState.FAILED
        self.history.append(ReconcileState.FAILED)
        return error

    @staticmethod
    async def _best_effort(action: str, call: Awaitable[None]) -> None:
        try:
            await call
        except ProviderFailure as failure:
            logger.warning(f"{action} failed, carrying on: {failure}")

    async def _tunnel_exists(self) -> bool:
        return await self.daemon.find_tunnel(self.identity) is not None

    async def _record_exists(self) -> bool:
        return await self.dns.record_exists(self.zone, self.domain)

    async def _occupied(self) -> bool:
        return await self._tunnel_exists() or await self._record_exists()

    # -- public entry points -------------------------------------------------

    async def provision(self, port: Port) -> None:
        """
        Bring up the tunnel for `port` and block while it serves traffic.
        Returns after teardown once the daemon exits or the task is cancelled.
        """
        if not 0 < port < 65536:
            raise PreconditionMissing(f"Port {port} is outside 1-65535")

        async with AsyncExitStack() as stack:
            await self._resolve_zone()
            await self._clean()

            stack.push_async_callback(self._teardown_if_armed)
            handle = await self._create_tunnel()
            self._write_config(handle, port)
            await self._create_route()
            await self._run()

    async def cleanup(self) -> None:
        """Remove the tunnel and record for the domain. Leftovers are fatal here."""
        await self._resolve_zone()
        await self.teardown(fatal=True)

    # -- steps ---------------------------------------------------------------

    async def _resolve_zone(self) -> None:
        try:
            self.zone = await self.dns.resolve_zone(self.domain)
        except ProviderFailure as failure:
            raise self._fail(ProviderLookupFailed, f"Zone for {self.domain} not resolved: {failure}") from failure

        logger.info(f"Zone {self.zone.zone_name} ({self.zone.zone_id})")
        self._advance(ReconcileState.ZONE_RESOLVED)

    async def _retire_tunnel(self) -> None:
        # Connections first, a tunnel with live connections refuses to go
        await self._best_effort(
            f"Cleaning up connections of {self.identity}", self.daemon.cleanup_connections(self.identity))
        await self._best_effort(f"Deleting tunnel {self.identity}", self.daemon.delete_tunnel(self.identity))

    async def _clean(self) -> None:
        try:
            tunnel = await self.daemon.find_tunnel(self.identity)
            records = await self.dns.find_records(self.zone, self.domain)
        except ProviderFailure as failure:
            raise self._fail(ProviderLookupFailed, f"Checking for leftovers failed: {failure}") from failure

        if tunnel or records:
            if tunnel:
                logger.info(f"Removing leftover tunnel {tunnel.name} ({tunnel.tunnel_id})")
                await self._retire_tunnel()
            for record in records:
                logger.info(f"Removing leftover record {record.fqdn} ({record.record_id})")
                await self._best_effort(
                    f"Deleting record {record.fqdn}", self.dns.delete_record(self.zone, record.record_id))

            try:
                outcome = await wait_for_absence(
                    self._occupied,
                    interval=self.settings.poll_interval,
                    timeout=self.settings.convergence_timeout,
                    what=f"leftovers of {self.domain}")
                # Checked again: creating on top of anything still there is not allowed
                still_there = outcome is PollOutcome.TIMED_OUT or await self._occupied()
            except ProviderFailure as failure:
                raise self._fail(ProviderLookupFailed, f"Checking for leftovers failed: {failure}") from failure

            if still_there:
                raise self._fail(
                    ConvergenceTimeout,
                    f"Leftover tunnel/record for {self.domain} still present after "
                    f"{self.settings.convergence_timeout:g}s")

        self._advance(ReconcileState.CLEAN)

    async def _create_tunnel(self) -> TunnelHandle:
        try:
            handle = await self.daemon.create_tunnel(self.identity)
        except ProviderFailure as failure:
            if failure.kind is FailureKind.MALFORMED:
                # Created, but the id was lost on the way back
                self._teardown_armed = True
            raise self._fail(ProviderWriteFailed, f"Creating tunnel {self.identity} failed: {failure}") from failure
        except asyncio.CancelledError:
            self._teardown_armed = True
            raise

        self._teardown_armed = True
        if not handle.tunnel_id:
            raise self._fail(ProviderWriteFailed, f"Tunnel {self.identity} was created without an id")

        self.handle = handle
        self._advance(ReconcileState.TUNNEL_CREATED)
        return handle

    def _write_config(self, handle: TunnelHandle, port: Port) -> None:
        config = TunnelConfig.for_handle(handle, self.settings.local_host, port)
        try:
            config.write(self.config_path)
        except OSError as e:
            raise self._fail(ConfigWriteFailed, f"Writing {self.config_path} failed: {e}") from e

        logger.debug(f"Wrote {self.config_path}")
        self.config = config
        self._advance(ReconcileState.CONFIG_WRITTEN)

    async def _create_route(self) -> None:
        try:
            await self.daemon.route_dns(self.identity, self.domain)
        except ProviderFailure as failure:
            raise self._fail(ProviderWriteFailed, f"Routing {self.domain} failed: {failure}") from failure
        self._advance(ReconcileState.ROUTE_CREATED)

    async def _run(self) -> None:
        self._advance(ReconcileState.RUNNING)
        if self.on_ready:
            self.on_ready(self.public_url)
        logger.info(f"Serving {self.public_url} -> {self.config.local_url}")

        try:
            await self.daemon.run(self.config_path, self.identity)
        except DaemonRunFailure as e:
            logger.warning(f"{e}, tearing down")
        else:
            logger.info("cloudflared exited, tearing down")

    # -- teardown ------------------------------------------------------------

    async def _teardown_if_armed(self) -> None:
        if not self._teardown_armed:
            return
        # A stop signal arriving mid-teardown must not cut it short
        teardown = asyncio.create_task(self.teardown(fatal=False))
        try:
            await asyncio.shield(teardown)
        except asyncio.CancelledError:
            logger.info(f"Finishing teardown of {self.domain} before stopping")
            await teardown
            raise

    async def _await_gone(self, check: ExistenceCheck, what: str) -> bool:
        try:
            outcome = await wait_for_absence(
                check,
                interval=self.settings.poll_interval,
                timeout=self.settings.convergence_timeout,
                what=what)
        except ProviderFailure as failure:
            logger.warning(f"Could not confirm {what} is gone: {failure}")
            return False

        if outcome is PollOutcome.TIMED_OUT:
            logger.warning(f"{what} still exists after {self.settings.convergence_timeout:g}s")
            return False
        return True

    async def teardown(self, fatal: bool = False) -> None:
        """
        Remove the tunnel, then the record, waiting for each to disappear.
        Failures are logged and teardown carries on. With `fatal`, anything left
        behind raises ConvergenceTimeout at the end.
        """
        if self._teardown_started:
            logger.debug(f"{self.identity}: teardown already ran")
            return
        self._teardown_started = True

        leftovers: list[str] = []
        tunnel_what = f"tunnel {self.identity}"
        await self._best_effort(
            f"Cleaning up connections of {self.identity}", self.daemon.cleanup_connections(self.identity))
        try:
            if await self._tunnel_exists():
                logger.info(f"Deleting {tunnel_what}")
                await self._best_effort(f"Deleting {tunnel_what}", self.daemon.delete_tunnel(self.identity))
        except ProviderFailure as failure:
            logger.warning(f"Looking up {tunnel_what} failed: {failure}")
        if not await self._await_gone(self._tunnel_exists, tunnel_what):
            leftovers.append(tunnel_what)

        if self.zone is not None:
            record_what = f"record {self.domain}"
            try:
                for record in await self.dns.find_records(self.zone, self.domain):
                    logger.info(f"Deleting {record_what} ({record.record_id})")
                    await self._best_effort(
                        f"Deleting {record_what}", self.dns.delete_record(self.zone, record.record_id))
            except ProviderFailure as failure:
                logger.warning(f"Looking up {record_what} failed: {failure}")

            gone = await self._await_gone(self._record_exists, record_what)
            if gone and fatal:
                try:
                    gone = not await self._record_exists()
                except ProviderFailure as failure:
                    logger.warning(f"Could not confirm {record_what} is gone: {failure}")
                    gone = False
            if not gone:
                leftovers.append(record_what)

        if fatal and leftovers:
            raise self._fail(ConvergenceTimeout, f"Still present after cleanup: {', '.join(leftovers)}")

        if self.state is not ReconcileState.FAILED:
            self._advance(ReconcileState.TORN_DOWN)
        logger.info(f"Teardown of {self.domain} finished")

import asyncio
import logging
import sys
from pathlib import Path

import typer
from loguru import logger
from pydantic import SecretStr
from rich.console import Console
from rich.panel import Panel

from flareroute import consts
from flareroute.api.dns import CloudflareDns
from flareroute.binary.binary import locate_binary
from flareroute.cloudflared import Cloudflared
from flareroute.errors import PreconditionMissing, ProviderFailure, TunnelError
from flareroute.log.config import isolated_logging
from flareroute.models import normalize_domain
from flareroute.reconciler import Reconciler
from flareroute.runner import LifecycleRunner
from flareroute.settings import Settings, default_state_dir

app = typer.Typer(help="Expose a local port under your domain through a cloudflared tunnel.")

console = Console()


def display_tunnel_info(url: str) -> None:
    """
    Displays the public URL in a high-visibility panel.
    """
    content = f"[bold green]Tunnel is up![/bold green]\n\n" \
              f"Your URL is: [link={url}]{url}[/link]\n" \
              f"Press Ctrl-C to stop and clean up."

    panel = Panel(
        content,
        title="[bold blue]flareroute[/bold blue]",
        border_style="green",
        expand=False,
        padding=(1, 2)
    )
    console.print(panel)


def output_result(url: str) -> None:
    if sys.stdout.isatty():
        display_tunnel_info(url)
    else:
        # Piped output gets the raw URL only
        print(url, flush=True)


def version_callback(value: bool):
    if value:
        from importlib.metadata import version
        typer.echo(version("flareroute"))
        raise typer.Exit()


def check_target(domain: str, port: int | None, cleanup: bool) -> str:
    """Normalises DOMAIN and checks PORT. Problems exit 1 like any other precondition."""
    try:
        domain = normalize_domain(domain)
    except ValueError as e:
        raise PreconditionMissing(str(e)) from e
    if port is None and not cleanup:
        raise PreconditionMissing("PORT is required unless --cleanup is given")
    if port is not None and not 0 < port < 65536:
        raise PreconditionMissing(f"Port {port} is outside 1-65535")
    return domain


async def _session(settings: Settings, domain: str, port: int | None, cleanup: bool) -> bool:
    daemon = Cloudflared(settings.cloudflared, settings.cert_path)
    try:
        logger.debug(f"Using {(await daemon.version()).splitlines()[0]}")
    except (ProviderFailure, IndexError) as e:
        raise PreconditionMissing(f"{settings.cloudflared} does not answer `version`: {e}")

    async with CloudflareDns(settings.api_token) as dns:
        reconciler = Reconciler(settings, dns, daemon, domain, on_ready=output_result)
        if cleanup:
            await reconciler.cleanup()
            return False
        return await LifecycleRunner().run(reconciler.provision(port))


@app.command()
def main(
        domain: str = typer.Argument(..., help="Full domain to publish, e.g. api.example.com"),
        port: int | None = typer.Argument(None, help="Local port to expose"),
        cleanup: bool = typer.Option(False, "--cleanup", help="Only remove the tunnel and record for DOMAIN"),
        api_token: SecretStr | None = typer.Option(
            None,
            envvar=consts.token_envvar,
            parser=SecretStr,
            show_default=False,
            help="Cloudflare API token with Zone:Read and DNS:Edit.",
        ),
        state_dir: Path = typer.Option(
            default_state_dir(), "--state-dir", help="Directory holding cert.pem and the generated configs"),
        cloudflared: str | None = typer.Option(
            None, "--cloudflared", envvar=consts.binary_envvar, help="Path to the cloudflared binary"),
        host: str = typer.Option("localhost", "--host", help="Local host the service listens on"),
        timeout: float = typer.Option(
            consts.default_convergence_timeout, "--timeout", min=0.1, help="Seconds to wait for deletions to show"),
        interval: float = typer.Option(
            consts.default_poll_interval, "--interval", min=0.1, help="Seconds between existence checks"),
        verbose: bool = typer.Option(False, "--verbose", "-v", help="Show full cloudflared logs"),
        version: bool = typer.Option(
            False, "--version", callback=version_callback, is_eager=True, help="Show version and exit"),
):
    """Publish DOMAIN for local PORT until interrupted, then tear everything down."""
    with isolated_logging(logging.DEBUG if verbose else logging.INFO):
        try:
            domain = check_target(domain, port, cleanup)
            if not api_token:
                raise PreconditionMissing(f"{consts.token_envvar} is not set")
            settings = Settings(
                api_token=api_token,
                state_dir=state_dir,
                cloudflared=locate_binary(consts.binary_name, cloudflared),
                local_host=host,
                poll_interval=interval,
                convergence_timeout=timeout,
            )
            settings.check_preconditions()
            interrupted = asyncio.run(_session(settings, domain, port, cleanup))
        except TunnelError as e:
            logger.error(str(e))
            raise typer.Exit(code=1)

    if interrupted:
        logger.info("Stopped")

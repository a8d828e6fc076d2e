"""wabridge CLI entry point."""

from __future__ import annotations

import asyncio
import sys
import time
from typing import TYPE_CHECKING

import typer
from loguru import logger
from rich.console import Console
from rich.panel import Panel

app = typer.Typer(
    name="wabridge",
    no_args_is_help=True,
)

console = Console()

if TYPE_CHECKING:
    from .config.schema import Config
    from .gateway.client import GatewayClient


def _version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        from . import __version__

        console.print(f"wabridge v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """Relay WhatsApp chats between the Evolution gateway and the store backend."""
    pass


def _configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper())


def _load() -> Config:
    from .config.loader import load_config

    config = load_config()
    _configure_logging(config.log_level)
    return config


def _build_gateway(config: Config) -> GatewayClient:
    from .gateway.client import GatewayClient

    return GatewayClient(
        base_url=config.gateway.base_url,
        master_key=config.gateway.master_key,
        timeout=config.gateway.timeout,
        media_timeout=config.gateway.media_timeout,
    )


async def _run_serve_mode(config: Config) -> None:
    """Run the webhook receiver and the delivery loop in one event loop."""
    import uvicorn

    from .identity.cache import IdentityCache
    from .inbound.pipeline import InboundPipeline
    from .outbound.delivery import DeliveryLoop
    from .server.app import create_app
    from .store import build_store
    from .tenants.directory import TenantDirectory

    if config.store.backend == "memory":
        logger.warning(
            "Using the in-process memory store: data is lost on exit and "
            "other instances cannot see it"
        )

    store = build_store(config.store)
    gateway = _build_gateway(config)
    directory = TenantDirectory(store)
    cache = IdentityCache(directory, ttl=config.identity.cache_ttl)
    pipeline = InboundPipeline(
        store,
        directory,
        gateway,
        cache,
        conversation_prefix=config.delivery.conversation_prefix,
    )
    delivery = DeliveryLoop(
        store,
        directory,
        gateway,
        interval=config.delivery.poll_interval,
        max_attempts=config.delivery.max_attempts,
        backoff_base=config.delivery.backoff_base,
        conversation_prefix=config.delivery.conversation_prefix,
    )

    server = uvicorn.Server(
        uvicorn.Config(
            create_app(pipeline),
            host=config.server.host,
            port=config.server.port,
            log_level=config.log_level.lower(),
        )
    )

    console.print(
        Panel.fit(
            "[bold blue]wabridge[/bold blue] is running\n"
            f"Webhook: http://{config.server.host}:{config.server.port}/webhook/evolution\n"
            f"Store: {config.store.backend} {config.store.url}\n"
            f"Gateway: {config.gateway.base_url}\n"
            f"Poll interval: {config.delivery.poll_interval}s\n"
            "Press Ctrl+C to stop",
            title="Serve Mode",
            border_style="blue",
        )
    )

    try:
        await delivery.start()
        await server.serve()
    except (KeyboardInterrupt, asyncio.CancelledError):
        pass
    finally:
        await delivery.stop()
        await pipeline.drain()
        await gateway.close()
        await store.close()
        console.print("[yellow]wabridge stopped.[/yellow]")


@app.command()
def serve() -> None:
    """Start the webhook receiver and the outbound delivery loop."""
    config = _load()
    try:
        asyncio.run(_run_serve_mode(config))
    except KeyboardInterrupt:
        console.print("\n[yellow]wabridge stopped.[/yellow]")


@app.command()
def status() -> None:
    """Show wabridge configuration."""
    from . import __version__
    from .config.loader import CONFIG_FILE

    config = _load()
    config_exists = CONFIG_FILE.exists()

    console.print(
        Panel.fit(
            f"[bold]Version:[/bold] {__version__}\n"
            f"[bold]Config file:[/bold] {CONFIG_FILE} {'[green](exists)[/green]' if config_exists else '[red](missing)[/red]'}\n"
            f"\n[bold]Store:[/bold] {config.store.backend} {config.store.url or ''}\n"
            f"[bold]Gateway:[/bold] {config.gateway.base_url}\n"
            f"[bold]Master key:[/bold] {'set' if config.gateway.master_key else 'missing'}\n"
            f"\n[bold]Poll interval:[/bold] {config.delivery.poll_interval}s\n"
            f"[bold]Send attempts:[/bold] {config.delivery.max_attempts} "
            f"(backoff from {config.delivery.backoff_base}s)\n"
            f"[bold]Identity cache TTL:[/bold] {config.identity.cache_ttl}s\n"
            f"[bold]Listen:[/bold] {config.server.host}:{config.server.port}",
            title="wabridge status",
            border_style="blue",
        )
    )


async def _cleanup(config: Config) -> int:
    from .outbound.delivery import DeliveryLoop
    from .store import build_store
    from .tenants.directory import TenantDirectory

    store = build_store(config.store)
    gateway = _build_gateway(config)
    try:
        delivery = DeliveryLoop(store, TenantDirectory(store), gateway)
        return await delivery.sweep()
    finally:
        await gateway.close()
        await store.close()


@app.command()
def cleanup() -> None:
    """Delete sent and malformed pending responses without sending them."""
    config = _load()
    removed = asyncio.run(_cleanup(config))
    console.print(f"[green]Cleanup complete.[/green] Removed {removed} entries.")


async def _channel_status(config: Config, tenant_id: str, include_qr: bool) -> None:
    from .store import build_store, paths
    from .tenants.directory import TenantDirectory

    store = build_store(config.store)
    gateway = _build_gateway(config)
    try:
        binding = await TenantDirectory(store).primary_binding(tenant_id)
        if binding is None or not binding.api_key:
            console.print(f"[red]No channel configured for tenant {tenant_id}.[/red]")
            raise typer.Exit(1)

        state = await gateway.connection_state(binding.instance, binding.api_key)
        instance = state.get("instance", {}) if isinstance(state, dict) else {}
        connection = instance.get("connectionStatus") or instance.get("state") or "close"
        connected = connection == "open"

        qr = None
        if include_qr and not connected:
            qr = await gateway.fetch_qr(binding.instance, binding.api_key)

        await store.update(
            paths.tenant_channel(tenant_id),
            {
                "status": "connected" if connected else "pending",
                "connectionStatus": connection,
                "lastSyncedAt": int(time.time() * 1000),
            },
        )

        lines = [
            f"[bold]Channel:[/bold] {binding.instance}",
            f"[bold]Status:[/bold] {'[green]connected[/green]' if connected else '[yellow]pending[/yellow]'} ({connection})",
        ]
        if qr:
            lines.append(f"[bold]QR:[/bold] {qr[:60]}...")
        console.print(Panel.fit("\n".join(lines), title=f"Tenant {tenant_id}", border_style="blue"))
    finally:
        await gateway.close()
        await store.close()


@app.command("channel-status")
def channel_status(
    tenant_id: str = typer.Argument(..., help="Tenant id."),
    qr: bool = typer.Option(False, "--qr", help="Fetch a pairing QR if not connected."),
) -> None:
    """Show a tenant's primary channel connection state."""
    from .gateway.client import GatewayError

    config = _load()
    try:
        asyncio.run(_channel_status(config, tenant_id, qr))
    except GatewayError as e:
        console.print(f"[red]Gateway error ({e.status}): {e}[/red]")
        raise typer.Exit(1)


async def _queue_response(config: Config, slug: str, chat_id: str, text: str) -> str:
    from .store import build_store, paths

    store = build_store(config.store)
    try:
        return await store.push(
            paths.conversation_responses(slug, chat_id),
            {"text": text, "ts": int(time.time() * 1000)},
        )
    finally:
        await store.close()


@app.command()
def send(
    slug: str = typer.Argument(..., help="Tenant slug."),
    chat_id: str = typer.Argument(..., help="Conversation id, e.g. web_18091234567."),
    text: str = typer.Argument(..., help="Message text."),
) -> None:
    """Queue a pending response for the delivery loop."""
    config = _load()
    key = asyncio.run(_queue_response(config, slug, chat_id, text))
    console.print(f"Queued response [bold]{key}[/bold] for {slug}/{chat_id}")


if __name__ == "__main__":
    app()

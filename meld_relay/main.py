"""
main.py — meld-relay application entrypoint.

Bootstraps:
  1. Config loading
  2. Control host + Meld WebChannel client
  3. Control surface projector (actions / feedbacks / presets / variables)
  4. OSC bridge
  5. FastAPI server (uvicorn)

CLI:
  python run.py start          start the relay server
  python run.py init-config    create a default config.yaml
  python run.py check          test Meld Studio connectivity
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

import typer
import uvicorn
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from meld_relay import __version__
from meld_relay.api import create_app, set_managers
from meld_relay.config import reload_settings
from meld_relay.core import ConnectionPhase, MeldClient, init_meld_client
from meld_relay.osc import OSCBridge
from meld_relay.surface import ControlHost, ControlSurfaceProjector

console = Console()
app = typer.Typer(name="meld-relay", help="Meld Studio control relay for button-grid surfaces")


def setup_logging(level: str = "info") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
    )


async def build_and_run(config_path: Optional[Path] = None) -> None:
    settings = reload_settings(config_path)
    setup_logging(settings.api.log_level)
    log = logging.getLogger("meld_relay")

    console.rule(f"[bold blue]meld-relay v{__version__}[/bold blue]")

    # 1. Control host + Meld client
    control_host = ControlHost()
    meld_client = init_meld_client(
        host=settings.meld.host,
        port=settings.meld.port,
        control_host=control_host,
        reconnect_interval=settings.meld.reconnect_interval,
        tick_interval=settings.meld.tick_interval,
        open_timeout=settings.meld.open_timeout,
        object_name=settings.meld.object_name,
    )

    # 2. Projector: define variables & buttons before the first connection attempt
    projector = ControlSurfaceProjector(control_host, meld_client, label=settings.surface.label)
    projector.attach()

    # 3. Connection (non-fatal; the client keeps retrying in the background)
    meld_client.connect()

    # 4. OSC bridge
    osc_bridge: Optional[OSCBridge] = None
    if settings.osc.enabled:
        osc_bridge = OSCBridge(
            meld_client,
            listen_host=settings.osc.listen_host,
            listen_port=settings.osc.listen_port,
            reply_port=settings.osc.reply_port,
            client_host=settings.osc.client_host,
        )
        await osc_bridge.start()

    # 5. Wire managers into API
    set_managers(osc_bridge)
    fast_app = create_app()

    # 6. Startup summary
    console.print(f"\n[green]✓ Meld[/green]      {meld_client.url} (retry every {settings.meld.reconnect_interval}s)")
    console.print(f"[green]✓ API[/green]       http://{settings.api.host}:{settings.api.port}")
    console.print(f"[green]✓ WS[/green]        ws://{settings.api.host}:{settings.api.port}/ws")
    if osc_bridge:
        console.print(f"[green]✓ OSC[/green]       UDP :{settings.osc.listen_port} → reply :{settings.osc.reply_port}")
    console.print(f"[green]✓ Docs[/green]      http://{settings.api.host}:{settings.api.port}/docs\n")

    # 7. uvicorn
    config = uvicorn.Config(
        fast_app,
        host=settings.api.host,
        port=settings.api.port,
        log_level=settings.api.log_level,
        loop="asyncio",
    )
    server = uvicorn.Server(config)

    loop = asyncio.get_running_loop()

    def shutdown():
        log.info("Shutdown signal received.")
        server.should_exit = True
        if osc_bridge:
            loop.create_task(osc_bridge.stop())
        loop.create_task(meld_client.disconnect())

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, shutdown)
        except NotImplementedError:
            pass  # Windows

    try:
        await server.serve()
    finally:
        await meld_client.disconnect()


# ──────────────────────────────────────────────────────────────────────────────
# CLI commands
# ──────────────────────────────────────────────────────────────────────────────

@app.command()
def start(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to config.yaml"),
    host: Optional[str] = typer.Option(None, "--host", help="API bind host"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="API port"),
    meld_host: Optional[str] = typer.Option(None, "--meld-host", help="Meld Studio host"),
    meld_port: Optional[int] = typer.Option(None, "--meld-port", help="Meld Studio WebChannel port"),
):
    """Start the meld-relay server."""
    import os
    if host:
        os.environ["API_HOST"] = host
    if port:
        os.environ["API_PORT"] = str(port)
    if meld_host:
        os.environ["MELD_HOST"] = meld_host
    if meld_port:
        os.environ["MELD_PORT"] = str(meld_port)
    asyncio.run(build_and_run(config))


@app.command("init-config")
def init_config(
    output: Path = typer.Option(Path("config.yaml"), "--output", "-o"),
):
    """Generate a default config.yaml."""
    from meld_relay.config import Settings
    s = Settings.load()
    s.to_yaml(output)
    console.print(f"[green]✓[/green] Config written to [bold]{output}[/bold]")


@app.command("check")
def check_meld(
    host: str = typer.Option("127.0.0.1", "--host"),
    port: int = typer.Option(13376, "--port"),
    timeout: float = typer.Option(5.0, "--timeout", help="Seconds to wait for the handshake"),
):
    """Test Meld Studio connectivity and print what it exposes."""
    async def _check() -> bool:
        client = MeldClient(host, port, open_timeout=timeout)
        client.connect()
        deadline = asyncio.get_running_loop().time() + timeout
        while client.phase is not ConnectionPhase.BOUND and asyncio.get_running_loop().time() < deadline:
            await asyncio.sleep(0.1)
        if not client.is_connected():
            console.print(f"[red]✗ Could not connect to Meld Studio at {host}:{port}[/red]")
            if client.last_error:
                console.print(f"  [dim]{client.last_error}[/dim]")
            await client.disconnect()
            return False

        # Give getScenes() a moment to answer
        await asyncio.sleep(0.5)
        console.print("[green]✓ Connected to Meld Studio[/green]")
        console.print(f"  Objects:   {', '.join(sorted(client.connection.channel.objects))}")
        console.print(f"  Recording: {client.recording.active}")
        console.print(f"  Streaming: {client.streaming.active}")

        table = Table(title="Capabilities", show_header=True)
        table.add_column("Command", style="cyan")
        table.add_column("Meld method", style="green")
        for command, method_name in client.capabilities.describe().items():
            table.add_row(command, method_name or "[dim]-[/dim]")
        console.print(table)

        scenes = client.registry.list_scenes()
        console.print(f"  Scenes ({len(scenes)}): {', '.join(s['name'] for s in scenes)}")
        await client.disconnect()
        return True

    if not asyncio.run(_check()):
        sys.exit(1)


if __name__ == "__main__":
    app()

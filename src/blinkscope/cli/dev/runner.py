"""Allocate a port, run the debugger dev server and wait for shutdown."""

from __future__ import annotations

import asyncio

from rich.markup import escape

from blinkscope.cli.dev.lifecycle import LifecycleController
from blinkscope.cli.dev.ports import PortAllocator, PortEvictor
from blinkscope.cli.dev.supervisor import DevServerSupervisor, SpawnFailed
from blinkscope.models import BlinkScopeConfig, ServerReadyEvent, ShutdownResult
from blinkscope.utils import console


def announce_ready(event: ServerReadyEvent) -> None:
    console.print("[green]✓[/green] Development server started")
    console.print()
    console.print("[cyan]Your BlinkScope server is now running![/cyan]")
    console.print(f"[cyan]Open your browser and navigate to:[/cyan] [green]{escape(event.url)}[/green]")
    console.print()
    console.print("[yellow]Press Ctrl+C to stop the server and exit.[/yellow]")


def allocate_port(config: BlinkScopeConfig, evictor: PortEvictor) -> int:
    """Pick this run's port (previous port first, then the configured range)."""
    allocator = PortAllocator(config.port_file, evictor=evictor, host=config.host)
    return allocator.allocate(config.allocation_request())


async def supervise_dev_server(
    config: BlinkScopeConfig,
    port: int,
    *,
    evictor: PortEvictor,
) -> ShutdownResult:
    """Launch the dev server on `port` and block until the run is over.

    Raises:
        SpawnFailed: the dev server command could not be started
    """
    supervisor = DevServerSupervisor(
        config.repo_path,
        port,
        signature_env=config.signature_env,
        target_url=config.target_url,
        command=config.dev_command,
        on_ready=announce_ready,
    )
    controller = LifecycleController(
        supervisor,
        port,
        evictor=evictor,
        exit_on_child_failure=config.exit_on_child_failure,
    )
    supervisor.on_exit = controller.handle_child_exit

    # Install before spawning so an early Ctrl+C still stops the child.
    controller.install()
    try:
        await supervisor.launch()
    except SpawnFailed:
        controller.uninstall()
        raise

    readiness: asyncio.Task[None] | None = None
    if config.ready_timeout is not None:
        readiness = asyncio.create_task(controller.watch_readiness(config.ready_timeout))

    try:
        return await controller.run_until_cancelled()
    finally:
        if readiness is not None:
            readiness.cancel()

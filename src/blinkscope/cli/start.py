import asyncio
from pathlib import Path
from typing import Annotated

from typer import Exit, Option

from blinkscope.cli.dev.logging import configure_logging
from blinkscope.cli.dev.ports import NoPortAvailable, default_evictor
from blinkscope.cli.dev.runner import allocate_port, supervise_dev_server
from blinkscope.cli.dev.supervisor import SpawnFailed
from blinkscope.cli.project import install_dependencies, sync_repository, write_env_file
from blinkscope.constants import HOME_ENV, PROJECT_HOME_URL
from blinkscope.models import BlinkScopeConfig, ShutdownReason
from blinkscope.utils import console, is_bun_installed, is_git_installed


def print_banner() -> None:
    console.print()
    console.print("[bold cyan]🔍 BlinkScope[/bold cyan]")
    console.print("[cyan]Your friendly local Solana Blinks debugger[/cyan]")
    console.print("[dim]------------------------------------------------[/dim]")


def run(config: BlinkScopeConfig) -> None:
    """Prepare the debugger checkout, then serve it until Ctrl+C.

    Always ends by raising typer.Exit with the run's exit status.
    """
    print_banner()

    if not config.skip_sync:
        if not is_git_installed():
            console.print("[red]❌ git is not installed. Please install git to continue.[/red]")
            raise Exit(code=1)
        sync_repository(config.repo_url, config.repo_path)

    if not config.repo_path.is_dir():
        console.print(
            f"[red]❌ BlinkScope repository not found at {config.repo_path}. "
            "Run without --skip-sync to clone it.[/red]"
        )
        raise Exit(code=1)

    write_env_file(config.repo_path, config.rpc_url)

    if not is_bun_installed():
        console.print("[red]❌ bun is not installed. Please install bun to continue.[/red]")
        raise Exit(code=1)
    if not config.skip_install:
        install_dependencies(config.repo_path)

    console.print("[cyan]🔍 Finding an available port...[/cyan]")
    evictor = default_evictor()
    try:
        port = allocate_port(config, evictor)
    except NoPortAvailable as e:
        console.print(
            f"[red]❌ {e}. Please ensure ports {e.range_start}-{e.range_end} are not in use.[/red]"
        )
        raise Exit(code=1)
    console.print(f"[green]✓[/green] Using port {port}")

    console.print("[bold chartreuse1]🚀 Starting the development server...[/bold chartreuse1]")
    try:
        result = asyncio.run(supervise_dev_server(config, port, evictor=evictor))
    except SpawnFailed as e:
        console.print(f"[red]❌ {e}[/red]")
        raise Exit(code=1)

    if result.reason == ShutdownReason.INTERRUPT:
        console.print()
        console.print("[bold yellow]🛑 Development server stopped[/bold yellow]")
        console.print(f"[cyan]✨ For more information, visit:[/cyan] [blue underline]{PROJECT_HOME_URL}[/blue underline]")
        console.print("[green]🎉 Happy debugging with BlinkScope! 🎉[/green]")
    raise Exit(code=result.exit_code)


def start(
    home: Annotated[
        Path | None,
        Option(
            "--home",
            envvar=HOME_ENV,
            help="Directory holding the debugger checkout and port state (default: ~/.blinkscope)",
        ),
    ] = None,
    url: Annotated[
        str | None,
        Option("--url", "-u", help="Blink URL to open in the debugger"),
    ] = None,
    repo_url: Annotated[
        str | None, Option("--repo-url", help="Git URL of the debugger project")
    ] = None,
    rpc_url: Annotated[
        str | None, Option("--rpc-url", help="Solana RPC URL written to the debugger's .env")
    ] = None,
    base_port: Annotated[
        int | None,
        Option("--base-port", min=1, max=65535, help="First port of the allocation range"),
    ] = None,
    max_port: Annotated[
        int | None,
        Option("--max-port", min=1, max=65535, help="Last port of the allocation range"),
    ] = None,
    ready_timeout: Annotated[
        float | None,
        Option(
            "--ready-timeout",
            help="Give up if the dev server hasn't reported its URL after this many seconds",
        ),
    ] = None,
    exit_on_crash: Annotated[
        bool,
        Option("--exit-on-crash", help="Exit when the dev server exits with an error"),
    ] = False,
    skip_sync: Annotated[
        bool, Option("--skip-sync", help="Don't clone or pull the debugger repository")
    ] = False,
    skip_install: Annotated[
        bool, Option("--skip-install", help="Don't run bun install")
    ] = False,
    verbose: Annotated[
        bool, Option("--verbose", "-v", help="Show debug logs")
    ] = False,
) -> None:
    """Clone or update the debugger, then serve it locally until Ctrl+C."""
    configure_logging(verbose=verbose)

    # Build config from CLI options (use defaults from BlinkScopeConfig if not specified)
    default_config = BlinkScopeConfig()
    config = BlinkScopeConfig(
        home_dir=home if home is not None else default_config.home_dir,
        repo_url=repo_url if repo_url is not None else default_config.repo_url,
        rpc_url=rpc_url if rpc_url is not None else default_config.rpc_url,
        base_port=base_port if base_port is not None else default_config.base_port,
        max_port=max_port if max_port is not None else default_config.max_port,
        target_url=url,
        ready_timeout=ready_timeout,
        exit_on_child_failure=exit_on_crash,
        skip_sync=skip_sync,
        skip_install=skip_install,
    )

    if config.base_port > config.max_port:
        console.print(
            f"[red]❌ --base-port ({config.base_port}) must not be greater than --max-port ({config.max_port})[/red]"
        )
        raise Exit(code=1)

    run(config)

"""Prepare the local blinks-debugger checkout: sync, .env and dependencies."""

import os
import shutil
import subprocess
from pathlib import Path

from dotenv import set_key
from rich.markup import escape
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from typer import Exit

from blinkscope.cli.dev.logging import LogComponent, get_logger
from blinkscope.constants import DEFAULT_CLONE_RETRIES, RPC_ENV_KEY
from blinkscope.utils import console, ensure_dir, progress_spinner, run_subprocess

logger = get_logger(LogComponent.SYNC)


def log_retry_attempt(retry_state: RetryCallState) -> None:
    """Log retry attempts to the retry logger.

    Args:
        retry_state: Tenacity retry state
    """
    attempt_number = retry_state.attempt_number
    if retry_state.outcome and retry_state.outcome.failed:
        exception = retry_state.outcome.exception()
        get_logger(LogComponent.RETRY).warning(
            f"Attempt {attempt_number} failed with error: {exception}. Retrying..."
        )


@retry(
    stop=stop_after_attempt(DEFAULT_CLONE_RETRIES),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    before_sleep=log_retry_attempt,
    retry=retry_if_exception_type(subprocess.CalledProcessError),
    reraise=True,
)
def git_clone(repo_url: str, repo_path: Path) -> None:
    """Clone `repo_url` into `repo_path`, retrying transient network failures."""
    # git refuses to clone into a non-empty directory left by a failed attempt.
    if repo_path.exists():
        shutil.rmtree(repo_path)
    subprocess.run(
        ["git", "clone", repo_url, str(repo_path)],
        check=True,
        capture_output=True,
        text=True,
    )


def git_pull(repo_path: Path) -> None:
    subprocess.run(
        ["git", "pull"],
        cwd=repo_path,
        check=True,
        capture_output=True,
        text=True,
    )


def sync_repository(repo_url: str, repo_path: Path) -> None:
    """Clone the debugger, or pull the latest changes into an existing checkout.

    A failed pull is not fatal: the existing checkout is still usable.
    """
    if repo_path.exists():
        console.print("[yellow]BlinkScope repository already exists. Updating...[/yellow]")
        try:
            with progress_spinner(
                "🔄 Pulling latest changes...", "✅ Repository updated"
            ):
                git_pull(repo_path)
        except subprocess.CalledProcessError as e:
            console.print(
                "[yellow]⚠️  Failed to update repository, using the existing checkout[/yellow]"
            )
            if e.stderr:
                logger.warning(e.stderr.strip())
        return

    ensure_dir(repo_path.parent)
    try:
        with progress_spinner(
            "📥 Setting up the local environment...", "✅ Repository cloned"
        ):
            git_clone(repo_url, repo_path)
    except subprocess.CalledProcessError as e:
        console.print("[red]❌ Repository cloning failed[/red]")
        if e.stderr:
            console.print(f"[red]{escape(e.stderr.strip())}[/red]")
        raise Exit(code=1)


def write_env_file(repo_path: Path, rpc_url: str) -> None:
    """Point the debugger at `rpc_url` via its .env file. Failures only warn."""
    env_path = repo_path / ".env"
    try:
        env_path.touch(exist_ok=True)
        set_key(env_path, RPC_ENV_KEY, rpc_url, quote_mode="never")
    except OSError as e:
        console.print(f"[yellow]⚠️  Failed to create .env file: {e}[/yellow]")
        return
    console.print(f"[green]✓[/green] Wrote {RPC_ENV_KEY}={rpc_url} to {env_path}")


def install_dependencies(repo_path: Path) -> None:
    """Run bun install, honouring BUN_CACHE_DIR when set."""
    cmd = ["bun", "install"]

    bun_cache_dir = os.environ.get("BUN_CACHE_DIR")
    if bun_cache_dir:
        cache_path = Path(bun_cache_dir).resolve()
        cmd.extend(["--cache-dir", str(cache_path)])

    with progress_spinner(
        "📦 Installing dependencies...", "✅ Dependencies installed"
    ):
        run_subprocess(cmd, cwd=repo_path, error_msg="Failed to install dependencies")

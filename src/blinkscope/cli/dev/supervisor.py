"""Launch and watch the debugger's `bun run dev` process."""

from __future__ import annotations

import asyncio
import os
import re
import subprocess
from pathlib import Path
from typing import Any, Callable
from urllib.parse import quote

from blinkscope.cli.dev.logging import LogComponent, get_logger
from blinkscope.cli.dev.process_control import stop_tracked_descendants, track_process
from blinkscope.constants import ERROR_MARKER, READY_MARKER, SIGNATURE_ENV, TARGET_URL_PARAM
from blinkscope.models import ServerReadyEvent, TrackedProcess

logger = get_logger(LogComponent.DEV_SERVER)

READY_PATTERN = re.compile(re.escape(READY_MARKER) + r"\s+(http://localhost:\d+)")
CHUNK_SIZE = 4096


class SpawnFailed(RuntimeError):
    """Raised when the dev server command can't be started at all."""


def extract_ready_url(chunk: str, target_url: str | None = None) -> str | None:
    """Pull the local server URL out of a chunk of dev server output.

    When `target_url` is given it is passed to the debugger as the `url` query
    parameter, e.g. ``http://localhost:3001/?url=https%3A%2F%2Fexample.com%2Fx``.
    """
    match = READY_PATTERN.search(chunk)
    if match is None:
        return None
    base_url = match.group(1)
    if not target_url:
        return base_url
    return f"{base_url}/?{TARGET_URL_PARAM}={quote(target_url, safe='')}"


class DevServerSupervisor:
    """Owns the dev server child process for its whole life.

    `launch()` returns as soon as the child is spawned. Output is read as raw
    chunks in a background task; the ready marker must appear within a single
    chunk and only the first one counts.
    """

    def __init__(
        self,
        project_dir: Path,
        port: int,
        *,
        signature_env: str = SIGNATURE_ENV,
        target_url: str | None = None,
        command: list[str] | None = None,
        on_ready: Callable[[ServerReadyEvent], None] | None = None,
        on_output: Callable[[str], None] | None = None,
        on_exit: Callable[[int], None] | None = None,
    ):
        self.project_dir: Path = project_dir
        self.port: int = port
        self.signature_env: str = signature_env
        self.target_url: str | None = target_url
        self.command: list[str] = command if command is not None else ["bun"]
        self.on_ready: Callable[[ServerReadyEvent], None] | None = on_ready
        self.on_output: Callable[[str], None] = (
            on_output if on_output is not None else logger.error
        )
        self.on_exit: Callable[[int], None] | None = on_exit

        self.process: asyncio.subprocess.Process | None = None
        self.tracked: TrackedProcess | None = None
        self.ready_event: ServerReadyEvent | None = None
        self._ready: asyncio.Event = asyncio.Event()
        self._watcher: asyncio.Task[None] | None = None
        self._terminating: bool = False

    def build_command(self) -> list[str]:
        return [*self.command, "run", "dev", "--port", str(self.port)]

    def build_env(self) -> dict[str, str]:
        return {**os.environ, self.signature_env: "true"}

    async def launch(self) -> asyncio.subprocess.Process:
        """Spawn the dev server and start watching its output.

        Raises:
            SpawnFailed: the command is missing or the project dir is unusable
        """
        if self.process is not None:
            raise RuntimeError("Dev server has already been launched")

        # Own process group/session so we can stop the full bun -> node tree.
        popen_kwargs: dict[str, Any] = {}
        if os.name == "nt":
            popen_kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP  # type: ignore[attr-defined]
        else:
            popen_kwargs["start_new_session"] = True

        cmd = self.build_command()
        logger.debug(f"Starting `{' '.join(cmd)}` in {self.project_dir}")
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=self.project_dir,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
                env=self.build_env(),
                **popen_kwargs,
            )
        except OSError as e:
            raise SpawnFailed(
                f"Could not start `{' '.join(cmd)}` in {self.project_dir}: {e}"
            ) from e

        self.process = process
        # Track immediately: bun may hand off to node and exit quickly.
        self.tracked = track_process(process.pid)
        self._watcher = asyncio.create_task(self._watch(process))
        return process

    def handle_output(self, chunk: str) -> None:
        """Process one chunk of stdout: detect readiness and relay error lines."""
        if self.ready_event is None:
            url = extract_ready_url(chunk, self.target_url)
            if url is not None:
                self.ready_event = ServerReadyEvent(url=url)
                self._ready.set()
                if self.on_ready is not None:
                    self.on_ready(self.ready_event)

        for line in chunk.splitlines():
            if ERROR_MARKER in line.lower():
                self.on_output(line.rstrip())

    def handle_exit(self, code: int) -> None:
        """Report a non-zero exit, unless we caused it."""
        if code == 0 or self._terminating:
            return
        if self.on_exit is not None:
            self.on_exit(code)

    async def _watch(self, process: asyncio.subprocess.Process) -> None:
        assert process.stdout is not None, "stdout must be piped"
        while True:
            data = await process.stdout.read(CHUNK_SIZE)
            if not data:
                break
            self.handle_output(data.decode("utf-8", errors="replace"))
        code = await process.wait()
        self.handle_exit(code)

    async def wait_until_ready(self, timeout: float | None = None) -> ServerReadyEvent:
        """Wait for the ready marker. No timeout by default.

        Raises:
            asyncio.TimeoutError: `timeout` elapsed before the marker appeared
        """
        await asyncio.wait_for(self._ready.wait(), timeout)
        assert self.ready_event is not None
        return self.ready_event

    async def terminate(self, timeout: float = 5.0) -> None:
        """Stop the dev server and its children. Safe to call more than once."""
        if self.process is None or self._terminating:
            return
        self._terminating = True
        process = self.process

        # Children first, then the root through its asyncio handle so the
        # event loop reaps it and `returncode` keeps the real exit status.
        if self.tracked is not None:
            await asyncio.to_thread(
                stop_tracked_descendants, self.tracked, name="dev-server", timeout=timeout
            )
        if process.returncode is None:
            try:
                process.terminate()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(process.wait(), timeout)
            except asyncio.TimeoutError:
                logger.debug(f"Dev server pid={process.pid} ignored terminate, killing it")
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
                await process.wait()

        if self._watcher is not None:
            _, pending = await asyncio.wait({self._watcher}, timeout=timeout)
            for task in pending:
                task.cancel()

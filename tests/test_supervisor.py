"""Tests for the dev server supervisor."""

from __future__ import annotations

import asyncio
import signal
import sys
from pathlib import Path
from unittest.mock import Mock

import pytest

from blinkscope.cli.dev.supervisor import (
    DevServerSupervisor,
    SpawnFailed,
    extract_ready_url,
)
from blinkscope.models import ServerReadyEvent

# Stands in for `bun`: argv ends with `run dev --port <port>`.
FAKE_DEV_SERVER = """
import os, sys
print("  > Next.js 14.2.3", flush=True)
print(f"  - Local:        http://localhost:{sys.argv[-1]}", flush=True)
print("error: flag=" + os.environ.get("BLINKSCOPE_DEBUGGER_INSTANCE", "missing"), flush=True)
sys.exit(3)
"""

SLEEPING_DEV_SERVER = """
import sys, time
print(f"  - Local:        http://localhost:{sys.argv[-1]}", flush=True)
time.sleep(60)
"""


def python_command(script: str) -> list[str]:
    return [sys.executable, "-c", script]


class TestExtractReadyUrl:
    def test_plain_url(self) -> None:
        assert extract_ready_url("- Local:  http://localhost:3001") == "http://localhost:3001"

    def test_with_target_url(self) -> None:
        assert (
            extract_ready_url("- Local:  http://localhost:3001", "https://example.com/x")
            == "http://localhost:3001/?url=https%3A%2F%2Fexample.com%2Fx"
        )

    def test_marker_inside_larger_chunk(self) -> None:
        chunk = "  ▲ Next.js 14\n  - Local:        http://localhost:3002\n  - Network: ...\n"
        assert extract_ready_url(chunk) == "http://localhost:3002"

    def test_no_marker(self) -> None:
        assert extract_ready_url("compiling...") is None
        assert extract_ready_url("- Local: https://localhost:3001") is None


class TestOutputHandling:
    @pytest.fixture
    def supervisor(self, tmp_path: Path) -> DevServerSupervisor:
        return DevServerSupervisor(
            tmp_path,
            3001,
            on_ready=Mock(),
            on_output=Mock(),
            on_exit=Mock(),
        )

    def test_first_ready_marker_wins(self, supervisor: DevServerSupervisor) -> None:
        supervisor.handle_output("- Local:  http://localhost:3001")
        supervisor.handle_output("- Local:  http://localhost:3009")

        supervisor.on_ready.assert_called_once_with(  # type: ignore[attr-defined]
            ServerReadyEvent(url="http://localhost:3001")
        )
        assert supervisor.ready_event == ServerReadyEvent(url="http://localhost:3001")

    def test_target_url_is_appended(self, tmp_path: Path) -> None:
        on_ready = Mock()
        supervisor = DevServerSupervisor(
            tmp_path, 3001, target_url="https://example.com/x", on_ready=on_ready
        )
        supervisor.handle_output("- Local:  http://localhost:3001")
        on_ready.assert_called_once_with(
            ServerReadyEvent(url="http://localhost:3001/?url=https%3A%2F%2Fexample.com%2Fx")
        )

    def test_only_error_lines_are_relayed(self, supervisor: DevServerSupervisor) -> None:
        supervisor.handle_output("compiling /page ...\nError: Module not found\n ✓ compiled\n")
        supervisor.handle_output("unhandledRejection: TypeError occurred\n")

        assert [c.args[0] for c in supervisor.on_output.call_args_list] == [  # type: ignore[attr-defined]
            "Error: Module not found",
            "unhandledRejection: TypeError occurred",
        ]

    def test_exit_codes(self, supervisor: DevServerSupervisor) -> None:
        supervisor.handle_exit(0)
        supervisor.on_exit.assert_not_called()  # type: ignore[attr-defined]
        supervisor.handle_exit(1)
        supervisor.on_exit.assert_called_once_with(1)  # type: ignore[attr-defined]

    def test_command_and_env(self, supervisor: DevServerSupervisor) -> None:
        assert supervisor.build_command() == ["bun", "run", "dev", "--port", "3001"]
        assert supervisor.build_env()["BLINKSCOPE_DEBUGGER_INSTANCE"] == "true"


class TestLaunch:
    @pytest.mark.asyncio
    async def test_full_run(self, tmp_path: Path) -> None:
        on_output = Mock()
        on_exit = Mock()
        supervisor = DevServerSupervisor(
            tmp_path,
            3456,
            command=python_command(FAKE_DEV_SERVER),
            on_output=on_output,
            on_exit=on_exit,
        )

        process = await supervisor.launch()
        event = await supervisor.wait_until_ready(timeout=10)
        await asyncio.wait_for(process.wait(), timeout=10)
        # let the watcher drain stdout and report the exit
        for _ in range(100):
            if on_exit.called:
                break
            await asyncio.sleep(0.05)

        assert event.url == "http://localhost:3456"
        assert any("flag=true" in c.args[0] for c in on_output.call_args_list)
        on_exit.assert_called_once_with(3)

    @pytest.mark.asyncio
    async def test_missing_binary(self, tmp_path: Path) -> None:
        supervisor = DevServerSupervisor(tmp_path, 3000, command=["blinkscope-no-such-binary"])
        with pytest.raises(SpawnFailed):
            await supervisor.launch()

    @pytest.mark.asyncio
    async def test_missing_project_dir(self, tmp_path: Path) -> None:
        supervisor = DevServerSupervisor(
            tmp_path / "missing", 3000, command=python_command("pass")
        )
        with pytest.raises(SpawnFailed):
            await supervisor.launch()

    @pytest.mark.asyncio
    async def test_terminate(self, tmp_path: Path) -> None:
        on_exit = Mock()
        supervisor = DevServerSupervisor(
            tmp_path, 3457, command=python_command(SLEEPING_DEV_SERVER), on_exit=on_exit
        )
        process = await supervisor.launch()
        await supervisor.wait_until_ready(timeout=10)

        await supervisor.terminate(timeout=5)
        await supervisor.terminate(timeout=5)

        assert process.returncode is not None
        on_exit.assert_not_called()

    @pytest.mark.asyncio
    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX signal exit status")
    async def test_terminate_keeps_real_exit_status(self, tmp_path: Path) -> None:
        supervisor = DevServerSupervisor(
            tmp_path, 3459, command=python_command(SLEEPING_DEV_SERVER)
        )
        process = await supervisor.launch()
        await supervisor.wait_until_ready(timeout=10)

        await supervisor.terminate(timeout=5)

        assert process.returncode == -signal.SIGTERM

    @pytest.mark.asyncio
    async def test_launch_twice(self, tmp_path: Path) -> None:
        supervisor = DevServerSupervisor(
            tmp_path, 3458, command=python_command(SLEEPING_DEV_SERVER)
        )
        await supervisor.launch()
        try:
            with pytest.raises(RuntimeError):
                await supervisor.launch()
        finally:
            await supervisor.terminate()

    @pytest.mark.asyncio
    async def test_ready_timeout(self, tmp_path: Path) -> None:
        supervisor = DevServerSupervisor(tmp_path, 3000)
        with pytest.raises(asyncio.TimeoutError):
            await supervisor.wait_until_ready(timeout=0.05)

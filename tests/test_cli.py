from collections.abc import Iterator
from pathlib import Path
from unittest.mock import AsyncMock, Mock, patch

import pytest
from typer.testing import CliRunner

from blinkscope import __version__
from blinkscope.__main__ import app
from blinkscope.cli.dev.ports import NoPortAvailable
from blinkscope.cli.dev.supervisor import SpawnFailed
from blinkscope.models import ShutdownReason, ShutdownResult

runner: CliRunner = CliRunner()


@pytest.fixture
def home(tmp_path: Path) -> Path:
    (tmp_path / "blinks-debugger").mkdir()
    return tmp_path


@pytest.fixture
def tools() -> Iterator[None]:
    with (
        patch("blinkscope.cli.start.is_bun_installed", return_value=True),
        patch("blinkscope.cli.start.is_git_installed", return_value=True),
    ):
        yield


def start_args(home: Path, *extra: str) -> list[str]:
    return ["start", "--home", str(home), "--skip-sync", "--skip-install", *extra]


def test_version() -> None:
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


@pytest.mark.usefixtures("tools")
class TestStart:
    def test_interrupted_run_exits_zero(self, home: Path) -> None:
        supervise = AsyncMock(
            return_value=ShutdownResult(reason=ShutdownReason.INTERRUPT, exit_code=0)
        )
        with (
            patch("blinkscope.cli.start.allocate_port", return_value=3001),
            patch("blinkscope.cli.start.supervise_dev_server", supervise),
        ):
            result = runner.invoke(
                app, start_args(home, "--url", "https://example.com/x")
            )

        assert result.exit_code == 0, result.output
        config, port = supervise.await_args.args
        assert port == 3001
        assert config.target_url == "https://example.com/x"
        assert config.home_dir == home
        assert "NEXT_PUBLIC_RPC=" in (home / "blinks-debugger" / ".env").read_text()

    def test_no_port_available(self, home: Path) -> None:
        with patch(
            "blinkscope.cli.start.allocate_port",
            side_effect=NoPortAvailable(3000, 3010),
        ):
            result = runner.invoke(app, start_args(home))

        assert result.exit_code == 1
        assert "No available ports" in result.output

    def test_spawn_failure(self, home: Path) -> None:
        with (
            patch("blinkscope.cli.start.allocate_port", return_value=3001),
            patch(
                "blinkscope.cli.start.supervise_dev_server",
                AsyncMock(side_effect=SpawnFailed("bun not found")),
            ),
        ):
            result = runner.invoke(app, start_args(home))

        assert result.exit_code == 1
        assert "bun not found" in result.output

    def test_child_exit_code_is_propagated(self, home: Path) -> None:
        supervise = AsyncMock(
            return_value=ShutdownResult(reason=ShutdownReason.CHILD_EXITED, exit_code=3)
        )
        with (
            patch("blinkscope.cli.start.allocate_port", return_value=3001),
            patch("blinkscope.cli.start.supervise_dev_server", supervise),
        ):
            result = runner.invoke(app, start_args(home, "--exit-on-crash"))

        assert result.exit_code == 3
        assert supervise.await_args.args[0].exit_on_child_failure is True

    def test_missing_checkout(self, tmp_path: Path) -> None:
        result = runner.invoke(app, start_args(tmp_path))
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_inverted_port_range(self, home: Path) -> None:
        result = runner.invoke(
            app, start_args(home, "--base-port", "3010", "--max-port", "3000")
        )
        assert result.exit_code == 1

    def test_out_of_range_port_is_rejected(self, home: Path) -> None:
        with patch("blinkscope.cli.start.allocate_port") as allocate:
            result = runner.invoke(
                app, start_args(home, "--base-port", "70000", "--max-port", "70001")
            )

        assert result.exit_code == 2
        assert not isinstance(result.exception, OverflowError)
        allocate.assert_not_called()

    def test_sync_runs_unless_skipped(self, home: Path) -> None:
        sync = Mock()
        with (
            patch("blinkscope.cli.start.sync_repository", sync),
            patch("blinkscope.cli.start.install_dependencies") as install,
            patch(
                "blinkscope.cli.start.allocate_port",
                side_effect=NoPortAvailable(3000, 3010),
            ),
        ):
            runner.invoke(app, ["start", "--home", str(home)])

        sync.assert_called_once()
        assert sync.call_args.args[1] == home / "blinks-debugger"
        install.assert_called_once_with(home / "blinks-debugger")


def test_bare_invocation_runs_start(home: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BLINKSCOPE_HOME", str(home))
    with patch("blinkscope.cli.start.run") as run:
        result = runner.invoke(app, [])

    assert result.exit_code == 0, result.output
    run.assert_called_once()
    assert run.call_args.args[0].home_dir == home

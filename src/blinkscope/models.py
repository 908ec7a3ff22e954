"""Centralized Pydantic models, enums, and type aliases for blinkscope."""

from __future__ import annotations

import os
from enum import Enum
from pathlib import Path
from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field, model_validator

from blinkscope.constants import (
    BASE_PORT,
    DEFAULT_HOST,
    DEFAULT_RPC_URL,
    HOME_DIR_NAME,
    HOME_ENV,
    MAX_PORT,
    PORT_FILE_NAME,
    REPO_DIR_NAME,
    REPO_URL,
    SIGNATURE_ENV,
)

MIN_VALID_PORT = 1
MAX_VALID_PORT = 65535


# === Enums ===


class ShutdownReason(str, Enum):
    """Why the supervised run came to an end."""

    INTERRUPT = "interrupt"
    CHILD_EXITED = "child_exited"
    READY_TIMEOUT = "ready_timeout"


# === Base Models (Building Blocks) ===


class TrackedProcess(BaseModel):
    """A process we started and are allowed to manage.

    create_time protects against PID reuse (bun may hand off to node and exit).
    """

    pid: int | None = None
    create_time: float | None = None

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True)


class PortState(BaseModel):
    """The last port handed out by the allocator, persisted between runs."""

    last_used_port: int = BASE_PORT

    @classmethod
    def read(cls, path: Path, default: int = BASE_PORT) -> PortState:
        """Read the persisted port, falling back to `default` when absent or garbled."""
        try:
            port = int(path.read_text(encoding="utf-8").strip())
        except (OSError, ValueError):
            return cls(last_used_port=default)
        if not MIN_VALID_PORT <= port <= MAX_VALID_PORT:
            return cls(last_used_port=default)
        return cls(last_used_port=port)

    def write(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(str(self.last_used_port), encoding="utf-8")


class AllocationRequest(BaseModel):
    """A single port allocation: try `preferred_port`, then scan the range."""

    preferred_port: int
    range_start: int
    range_end: int

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _check_range(self) -> AllocationRequest:
        if self.range_start > self.range_end:
            raise ValueError(
                f"Invalid port range {self.range_start}-{self.range_end}: start is after end"
            )
        return self


class ServerReadyEvent(BaseModel):
    """Emitted once, when the dev server announces its local address."""

    url: str

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True)


class ShutdownResult(BaseModel):
    """Outcome of `LifecycleController.run_until_cancelled`."""

    reason: ShutdownReason
    exit_code: int = 0

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True)


# === Configuration ===


def default_home_dir() -> Path:
    """~/.blinkscope, unless overridden through the BLINKSCOPE_HOME environment variable."""
    override = os.environ.get(HOME_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / HOME_DIR_NAME


class BlinkScopeConfig(BaseModel):
    """Complete configuration for a blinkscope run.

    This is the single source of truth for all defaults. Paths are plain values
    so tests can point them at a temporary directory.
    """

    home_dir: Path = Field(default_factory=default_home_dir)
    repo_url: str = REPO_URL
    rpc_url: str = DEFAULT_RPC_URL
    host: str = DEFAULT_HOST
    base_port: int = BASE_PORT
    max_port: int = MAX_PORT
    signature_env: str = SIGNATURE_ENV
    dev_command: list[str] = Field(default_factory=lambda: ["bun"])
    target_url: str | None = None
    ready_timeout: float | None = None
    exit_on_child_failure: bool = False
    skip_install: bool = False
    skip_sync: bool = False

    @property
    def repo_path(self) -> Path:
        return self.home_dir / REPO_DIR_NAME

    @property
    def port_file(self) -> Path:
        return self.home_dir / PORT_FILE_NAME

    def allocation_request(self) -> AllocationRequest:
        """Build this run's allocation request from the persisted port state."""
        state = PortState.read(self.port_file, default=self.base_port)
        return AllocationRequest(
            preferred_port=state.last_used_port,
            range_start=self.base_port,
            range_end=self.max_port,
        )

"""Centralized logging for `blinkscope start` (routing and CLI formatting)."""

from __future__ import annotations

import logging
from enum import Enum

from pydantic import BaseModel

from blinkscope.utils import PrefixedLogHandler


class LogComponent(str, Enum):
    """Where a log originated (used for prefixes and fine-grained filtering)."""

    PORTS = "ports"
    EVICTOR = "evictor"
    DEV_SERVER = "dev_server"
    LIFECYCLE = "lifecycle"
    PROCESS_CONTROL = "process_control"
    SYNC = "sync"
    RETRY = "retry"


_COMPONENT_PREFIX: dict[LogComponent, tuple[str, str]] = {
    LogComponent.PORTS: ("[ports]", "bright_blue"),
    LogComponent.EVICTOR: ("[ports]", "bright_blue"),
    LogComponent.DEV_SERVER: ("[debugger]", "cyan"),
    LogComponent.LIFECYCLE: ("[blinkscope]", "bright_blue"),
    LogComponent.PROCESS_CONTROL: ("[blinkscope]", "bright_blue"),
    LogComponent.SYNC: ("[git]", "magenta"),
    LogComponent.RETRY: ("[blinkscope]", "bright_blue"),
}


class _LogState(BaseModel):
    configured: bool = False


_STATE = _LogState()


def configure_logging(*, verbose: bool = False) -> None:
    """Attach a prefixed console handler to every component logger."""
    level = logging.DEBUG if verbose else logging.INFO
    for component in LogComponent:
        prefix, color = _COMPONENT_PREFIX[component]
        logger = logging.getLogger(f"blinkscope.{component.value}")
        logger.setLevel(level)
        logger.handlers.clear()
        handler = PrefixedLogHandler(prefix=prefix, color=color)
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)
        logger.propagate = False

    _STATE.configured = True


def get_logger(component: LogComponent) -> logging.Logger:
    """Get a logger for a component (do not call stdlib logging directly)."""
    logger = logging.getLogger(f"blinkscope.{component.value}")
    if not _STATE.configured and not logger.handlers:
        # Keep library use quiet until the CLI configures output.
        logger.addHandler(logging.NullHandler())
    return logger

"""Port allocation and dev server supervision for blinkscope."""

from blinkscope.cli.dev.lifecycle import LifecycleController
from blinkscope.cli.dev.ports import (
    NoPortAvailable,
    PortAllocator,
    PortEvictor,
    PosixPortEvictor,
    WindowsPortEvictor,
    default_evictor,
    evict_port,
    probe_port,
)
from blinkscope.cli.dev.supervisor import DevServerSupervisor, SpawnFailed

__all__ = [
    "DevServerSupervisor",
    "LifecycleController",
    "NoPortAvailable",
    "PortAllocator",
    "PortEvictor",
    "PosixPortEvictor",
    "SpawnFailed",
    "WindowsPortEvictor",
    "default_evictor",
    "evict_port",
    "probe_port",
]

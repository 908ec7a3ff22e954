"""Port probing, eviction and allocation for the debugger dev server.

The allocator always retries the previously used port first so the debug URL
stays stable across runs, then scans the configured range in ascending order.
Eviction is best-effort: whatever holds a port is force-killed before probing.
"""

from __future__ import annotations

import errno
import os
import re
import shutil
import socket
import subprocess
from functools import partial
from pathlib import Path
from typing import Callable, Protocol

import psutil

from blinkscope.cli.dev.logging import LogComponent, get_logger
from blinkscope.cli.dev.process_control import kill_pid
from blinkscope.constants import DEFAULT_HOST
from blinkscope.models import AllocationRequest, PortState

logger = get_logger(LogComponent.PORTS)
evictor_logger = get_logger(LogComponent.EVICTOR)

# Eviction commands are expected to be quick; don't let a wedged one hang startup.
COMMAND_TIMEOUT = 5.0


class NoPortAvailable(RuntimeError):
    """Raised when every port in the allocation range is busy and can't be evicted."""

    def __init__(self, range_start: int, range_end: int):
        super().__init__(
            f"No available ports found in range {range_start}-{range_end}"
        )
        self.range_start: int = range_start
        self.range_end: int = range_end


# === Prober ===

# Node binds `localhost` to ::1 first; a listener there holds the port too.
IPV6_LOOPBACK = "::1"


def _bind_and_listen(family: socket.AddressFamily, host: str, port: int) -> None:
    with socket.socket(family, socket.SOCK_STREAM) as sock:
        # Don't set SO_REUSEADDR - we want to know if it's actually in use
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 0)
        sock.bind((host, port))
        sock.listen(1)


def _ipv6_loopback_free(port: int) -> bool:
    try:
        _bind_and_listen(socket.AF_INET6, IPV6_LOOPBACK, port)
    except OverflowError:
        return False
    except OSError as e:
        # No IPv6 stack or no ::1 configured: nothing can be listening there.
        return e.errno in (errno.EAFNOSUPPORT, errno.EADDRNOTAVAIL)
    return True


def probe_port(port: int, host: str = DEFAULT_HOST) -> bool:
    """Check if a port can be bound and listened on.

    Any failure (in use, permission denied, bad host, out-of-range port) counts
    as unavailable. IPv6 loopback is checked as well when the platform has it.
    Sockets are always closed before returning.
    """
    try:
        _bind_and_listen(socket.AF_INET, host, port)
    except (OSError, OverflowError):
        return False
    if socket.has_ipv6:
        return _ipv6_loopback_free(port)
    return True


# === Evictors ===


class PortEvictor(Protocol):
    """Platform capability for finding and killing the owner of a port."""

    def find_process_on_port(self, port: int) -> int | None: ...

    def kill(self, pid: int) -> None: ...


_PID_LINE = re.compile(r"^\s*(\d+)\s*$")


def parse_lsof_output(output: str) -> int | None:
    """Return the first pid from `lsof -t` output."""
    for line in output.splitlines():
        match = _PID_LINE.match(line)
        if match:
            return int(match.group(1))
    return None


def parse_netstat_output(output: str, port: int) -> int | None:
    """Return the pid of the first LISTENING row bound to `port` in `netstat -ano` output.

    Rows look like: ``TCP    0.0.0.0:3000    0.0.0.0:0    LISTENING    1234``
    """
    for line in output.splitlines():
        parts = line.split()
        if len(parts) < 5 or parts[3].upper() != "LISTENING":
            continue
        _, _, local_port = parts[1].rpartition(":")
        if local_port != str(port):
            continue
        if parts[-1].isdigit():
            return int(parts[-1])
    return None


class PosixPortEvictor:
    """Finds port owners with lsof."""

    def find_process_on_port(self, port: int) -> int | None:
        if shutil.which("lsof") is None:
            evictor_logger.debug("lsof not found, skipping port owner lookup")
            return None
        # lsof exits 1 when nothing matches; that's not an error here.
        result = subprocess.run(
            ["lsof", "-ti", f"tcp:{port}", "-sTCP:LISTEN"],
            capture_output=True,
            text=True,
            timeout=COMMAND_TIMEOUT,
        )
        return parse_lsof_output(result.stdout)

    def kill(self, pid: int) -> None:
        kill_pid(pid)


class WindowsPortEvictor:
    """Finds port owners with netstat."""

    def find_process_on_port(self, port: int) -> int | None:
        result = subprocess.run(
            ["netstat", "-ano", "-p", "tcp"],
            capture_output=True,
            text=True,
            timeout=COMMAND_TIMEOUT,
        )
        return parse_netstat_output(result.stdout, port)

    def kill(self, pid: int) -> None:
        kill_pid(pid)


def default_evictor() -> PortEvictor:
    """Pick the evictor for the host platform."""
    if os.name == "nt":
        return WindowsPortEvictor()
    return PosixPortEvictor()


def evict_port(evictor: PortEvictor, port: int) -> None:
    """Kill whatever listens on `port`. Never raises: a free port is the success case."""
    try:
        pid = evictor.find_process_on_port(port)
        if pid is None:
            return
        evictor_logger.debug(f"Evicting pid {pid} from port {port}")
        evictor.kill(pid)
    except (psutil.Error, OSError, subprocess.SubprocessError) as e:
        evictor_logger.debug(f"Could not evict port {port}: {e}")


# === Allocator ===


class PortAllocator:
    """Hands out one usable port per run and remembers it for the next one."""

    def __init__(
        self,
        state_file: Path,
        *,
        evictor: PortEvictor | None = None,
        probe: Callable[[int], bool] | None = None,
        host: str = DEFAULT_HOST,
    ):
        self.state_file: Path = state_file
        self.evictor: PortEvictor = evictor if evictor is not None else default_evictor()
        self.probe: Callable[[int], bool] = (
            probe if probe is not None else partial(probe_port, host=host)
        )

    def _claim(self, port: int) -> bool:
        evict_port(self.evictor, port)
        return self.probe(port)

    def _find_port(self, request: AllocationRequest) -> int:
        if self._claim(request.preferred_port):
            return request.preferred_port

        logger.debug(
            f"Port {request.preferred_port} is busy, scanning {request.range_start}-{request.range_end}"
        )
        for port in range(request.range_start, request.range_end + 1):
            if self._claim(port):
                return port

        raise NoPortAvailable(request.range_start, request.range_end)

    def allocate(self, request: AllocationRequest) -> int:
        """Return a free port for `request`, persisting it as the new port state.

        Raises:
            NoPortAvailable: every port in the range is held and can't be evicted
        """
        port = self._find_port(request)
        PortState(last_used_port=port).write(self.state_file)
        logger.debug(f"Allocated port {port}")
        return port

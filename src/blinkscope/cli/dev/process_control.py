"""Cross-platform process tracking and stop helpers for the debugger dev server.

Design goals:
- Only stop processes we started (tracked by pid + create_time), or a pid the
  caller explicitly asked us to evict.
- Stop children before the root so bun -> node handoffs don't leave orphans.
- Never wait on our own child through psutil; asyncio owns reaping it.
- Escalate from terminate to kill deterministically.
"""

from __future__ import annotations

import os

import psutil

from blinkscope.cli.dev.logging import LogComponent, get_logger
from blinkscope.models import TrackedProcess

logger = get_logger(LogComponent.PROCESS_CONTROL)


def track_process(pid: int) -> TrackedProcess | None:
    """Create a TrackedProcess for a running PID, recording create_time."""
    try:
        proc = psutil.Process(pid)
        return TrackedProcess(pid=pid, create_time=float(proc.create_time()))
    except psutil.Error:
        return None


def validate_tracked(tp: TrackedProcess) -> psutil.Process | None:
    """Return a psutil.Process only if PID matches create_time (prevents PID reuse bugs)."""
    if tp.pid is None or tp.create_time is None:
        return None
    try:
        proc = psutil.Process(tp.pid)
        if abs(float(proc.create_time()) - float(tp.create_time)) > 0.001:
            return None
        return proc
    except psutil.Error:
        return None


def terminate_descendants(root: psutil.Process, timeout: float) -> None:
    """Terminate everything below `root` (best-effort), killing whatever outlives `timeout`.

    The root itself is left alone: it is our own child and is reaped through
    its asyncio handle, so psutil must not wait on it.
    """
    try:
        children = root.children(recursive=True)
    except psutil.Error:
        return
    if not children:
        return

    for c in children:
        try:
            c.terminate()
        except psutil.Error:
            pass

    _, alive = psutil.wait_procs(children, timeout=timeout)
    if alive:
        for p in alive:
            try:
                p.kill()
            except psutil.Error:
                pass
        psutil.wait_procs(alive, timeout=max(0.5, timeout / 2))


def stop_tracked_descendants(tp: TrackedProcess, *, name: str, timeout: float = 5.0) -> None:
    """Stop the children of a tracked process. No-op if it is already gone."""
    proc = validate_tracked(tp)
    if proc is None:
        return
    logger.debug(f"Stopping children of {name} pid={tp.pid}")
    terminate_descendants(proc, timeout=timeout)


def kill_pid(pid: int) -> None:
    """Forcefully kill a single pid (SIGKILL on POSIX, TerminateProcess on Windows).

    Raises psutil.Error when the process is gone or not ours to kill.
    """
    if pid == os.getpid():
        raise psutil.AccessDenied(pid, msg="refusing to kill the current process")
    psutil.Process(pid).kill()
    logger.debug(f"Killed pid {pid}")

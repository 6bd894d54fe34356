"""Watchdog that kills the poller's process tree once time runs out."""

import logging
import signal
import threading

from .errors import KillError
from .killtree import kill_process, terminate_tree


logger = logging.getLogger("procwait.timeout_guard")

# Longest single wait the platform accepts
MAX_WAIT = threading.TIMEOUT_MAX


def run_timeout_guard(after: float, target_pid: int, cancelled) -> None:
    """
    Process entry point: wait `after` seconds, then SIGKILL the target tree.

    Args:
        after: Seconds to wait before firing
        target_pid: Root of the tree to kill (the poller process)
        cancelled: multiprocessing.Event set by the coordinator when the
            poller finished on its own
    """
    if cancelled.wait(min(after, MAX_WAIT)):
        return

    try:
        terminate_tree(target_pid, signal.SIGKILL)
    except KillError as e:
        logger.error(f"failed to kill process tree of {target_pid}: {e}")
        kill_process(target_pid)

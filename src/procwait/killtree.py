"""Termination of a whole process tree, one process at a time.

There is no process group to signal: the tree is walked live through the
process table, children before their parent, so no descendant gets
re-parented to init and escapes.
"""

import logging
import os
import signal
from typing import Callable, List, Optional

from .errors import InvalidTargetError, KillError, SignalDeliveryError
from .process_state import children_of as _children_of
from .process_state import get_process_state


logger = logging.getLogger("procwait.killtree")


def _send(pid: int, sig: int) -> None:
    """Deliver sig to pid. A process that is already gone is not an error."""
    try:
        os.kill(pid, sig)
    except ProcessLookupError:
        logger.debug(f"process {pid} already gone, skipping signal {sig}")
    except OSError as e:
        raise SignalDeliveryError(pid, sig, str(e)) from e


def _send_quietly(pid: int, sig: int) -> None:
    try:
        os.kill(pid, sig)
    except OSError:
        pass


def kill_process(pid: int) -> None:
    """SIGKILL a single process, skipping its tree.

    Last resort when terminate_tree failed part way: a process it left
    stopped would otherwise never exit.
    """
    try:
        os.kill(pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    except OSError as e:
        logger.error(f"failed to SIGKILL {pid}: {e}")


def terminate_tree(
    pid: Optional[int],
    sig: int = signal.SIGTERM,
    children_of: Callable[[int], List[int]] = _children_of,
) -> None:
    """
    Send sig to pid and all of its descendants, deepest first.

    The target is stopped before its children are listed, so it cannot
    fork new ones between the snapshot and the kill. This narrows the
    race with a fast-forking process but does not close it.

    Args:
        pid: Root of the tree to terminate
        sig: Signal delivered to every process in the tree
        children_of: Returns the immediate children of a pid

    Raises:
        InvalidTargetError: If pid is empty or not a positive integer
        EnumerationError: If the children of a process cannot be listed
        KillError: The first failure seen while signalling the tree;
            the rest of the tree is still signalled
    """
    if pid is None or isinstance(pid, bool) or not isinstance(pid, int) or pid <= 0:
        raise InvalidTargetError(f"invalid pid: {pid!r}")

    _send_quietly(pid, signal.SIGSTOP)
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(f"stopped {pid}, state {get_process_state(pid)}")

    children = children_of(pid)

    first_error: Optional[KillError] = None
    for child in children:
        try:
            terminate_tree(child, sig, children_of)
        except KillError as e:
            if first_error is None:
                first_error = e

    try:
        _send(pid, sig)
    except SignalDeliveryError as e:
        if first_error is None:
            first_error = e

    # Let a stopped process run so the pending signal is acted upon
    _send_quietly(pid, signal.SIGCONT)

    if first_error is not None:
        raise first_error

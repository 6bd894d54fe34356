"""Process table introspection.

On Linux, the process table is read straight from /proc: every
/proc/<pid>/stat carries the parent pid, so the children of a process are
the entries whose parent field matches. Other platforms fall back to
pgrep(1) and kill(pid, 0).

The table is queried live on every call, so the answers can be stale by the
time they are acted upon (pids may exit or be reused in between).
"""

import os
import platform
import subprocess
from pathlib import Path
from typing import List, Optional

from .errors import EnumerationError


PROC_ROOT = Path("/proc")


def is_linux() -> bool:
    """Check if we're running on Linux."""
    return platform.system() == 'Linux'


def _read_stat_fields(pid: int) -> Optional[List[str]]:
    """Return the /proc/<pid>/stat fields following the command name.

    comm can contain spaces/parens, so split after the last ')'.
    """
    try:
        content = (PROC_ROOT / str(pid) / "stat").read_text()
    except (FileNotFoundError, ProcessLookupError, PermissionError, OSError):
        return None
    last_paren = content.rfind(')')
    if last_paren == -1:
        return None
    return content[last_paren + 2:].split()


def get_process_state(pid: int) -> str:
    """Get single-character process state from /proc/<pid>/stat.

    Returns:
        'R' = Running
        'S' = Sleeping (interruptible)
        'D' = Disk sleep (uninterruptible)
        'Z' = Zombie
        'T' = Stopped
        '?' = Unknown/error
    """
    fields = _read_stat_fields(pid)
    if fields:
        return fields[0]
    return '?'


def get_parent_pid(pid: int) -> Optional[int]:
    """Get the parent pid recorded in /proc/<pid>/stat, or None."""
    fields = _read_stat_fields(pid)
    try:
        return int(fields[1]) if fields else None
    except (IndexError, ValueError):
        return None


def _children_from_proc(pid: int) -> List[int]:
    try:
        entries = os.listdir(PROC_ROOT)
    except OSError as e:
        raise EnumerationError(f"cannot list {PROC_ROOT}: {e}") from e

    children = []
    for entry in entries:
        if not entry.isdigit():
            continue
        candidate = int(entry)
        # Entries that vanish mid-scan simply yield no parent
        if get_parent_pid(candidate) == pid:
            children.append(candidate)
    return sorted(children)


def _children_from_pgrep(pid: int) -> List[int]:
    try:
        result = subprocess.run(
            ["pgrep", "-P", str(pid)],
            capture_output=True, text=True
        )
    except OSError as e:
        raise EnumerationError(f"cannot run pgrep: {e}") from e

    # pgrep exits 1 when nothing matched
    if result.returncode == 1:
        return []
    if result.returncode != 0:
        raise EnumerationError(
            f"pgrep -P {pid} failed with status {result.returncode}"
        )
    return sorted(int(p) for p in result.stdout.split() if p.strip())


def children_of(pid: int) -> List[int]:
    """Get the immediate child pids of a process.

    An empty list means no children. Raises EnumerationError if the
    process table itself could not be read.
    """
    if is_linux():
        return _children_from_proc(pid)
    return _children_from_pgrep(pid)


def process_exists(pid: int) -> bool:
    """Check whether a process entry exists for pid.

    Any failure other than "exists but not ours" counts as gone, so a
    broken lookup can never keep a wait alive forever.
    """
    if PROC_ROOT.is_dir():
        try:
            return (PROC_ROOT / str(pid)).exists()
        except OSError:
            return False

    try:
        os.kill(pid, 0)
    except PermissionError:
        return True
    except (OSError, OverflowError, ValueError):
        return False
    return True

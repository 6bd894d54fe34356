"""Conditions evaluated on every poll tick.

A predicate evaluates to an integer status, compared by the poller against
the expected result: the exit status of a command, or 0/1 for "a matching
socket is listening".
"""

import re
import socket
import subprocess
from pathlib import Path
from typing import Iterator, List

from .process_state import PROC_ROOT


# /proc/net/tcp state column
TCP_LISTEN = "0A"
# /proc/net/udp state column for an unbound-peer (listening) socket
UDP_UNCONNECTED = "07"
# /proc/net/unix flags bit for sockets accepting connections
UNIX_ACCEPTCON = 0x10000

_INET_TABLES = (
    ("tcp", socket.AF_INET, TCP_LISTEN),
    ("tcp6", socket.AF_INET6, TCP_LISTEN),
    ("udp", socket.AF_INET, UDP_UNCONNECTED),
    ("udp6", socket.AF_INET6, UDP_UNCONNECTED),
)


class Predicate:
    """Base class for wait conditions."""

    def evaluate(self) -> int:
        """Evaluate the condition once and return its status."""
        raise NotImplementedError

    def describe(self) -> str:
        """Short human-readable form used in log messages."""
        raise NotImplementedError


class CommandPredicate(Predicate):
    """Runs a shell command; the status is its exit code."""

    def __init__(self, command: str):
        self.command = command

    def evaluate(self) -> int:
        try:
            # Output goes to the inherited stdout/stderr
            result = subprocess.run(self.command, shell=True)
        except OSError:
            return 127
        return result.returncode

    def describe(self) -> str:
        return self.command

    def __repr__(self) -> str:
        return f"CommandPredicate({self.command!r})"


def _decode_address(hex_addr: str, family: int) -> str:
    """Decode a /proc/net address like '0100007F:1F90' to '127.0.0.1:8080'."""
    host_hex, port_hex = hex_addr.split(':')
    raw = bytes.fromhex(host_hex)
    # The kernel prints each 32-bit word in host (little-endian) order
    host = b''.join(raw[i:i + 4][::-1] for i in range(0, len(raw), 4))
    return f"{socket.inet_ntop(family, host)}:{int(port_hex, 16)}"


def _inet_lines(proc_net: Path) -> Iterator[str]:
    for proto, family, wanted_state in _INET_TABLES:
        try:
            rows = (proc_net / proto).read_text().splitlines()[1:]
        except OSError:
            continue
        for row in rows:
            fields = row.split()
            if len(fields) < 4 or fields[3] != wanted_state:
                continue
            try:
                local = _decode_address(fields[1], family)
                remote = _decode_address(fields[2], family)
            except ValueError:
                continue
            remote = remote.rsplit(':', 1)[0] + ":*"
            state = "LISTEN" if proto.startswith("tcp") else ""
            yield f"{proto} {local} {remote} {state}".rstrip() + " "


def _unix_lines(proc_net: Path) -> Iterator[str]:
    try:
        rows = (proc_net / "unix").read_text().splitlines()[1:]
    except OSError:
        return
    for row in rows:
        # Num RefCount Protocol Flags Type St Inode [Path]
        fields = row.split(None, 7)
        if len(fields) < 7:
            continue
        try:
            flags = int(fields[3], 16)
        except ValueError:
            continue
        if not flags & UNIX_ACCEPTCON:
            continue
        if len(fields) > 7:
            yield f"unix {fields[7].strip()} LISTEN"
        else:
            yield "unix LISTEN"


def listening_sockets(proc_root: Path = PROC_ROOT) -> List[str]:
    """List listening sockets as netstat-style lines.

    Network sockets read as ``tcp 0.0.0.0:8080 0.0.0.0:* LISTEN`` and
    UNIX sockets as ``unix /run/app.sock LISTEN``.
    """
    proc_net = proc_root / "net"
    return list(_inet_lines(proc_net)) + list(_unix_lines(proc_net))


def socket_search_expression(pattern: str) -> str:
    """Build the regular expression a socket pattern is searched with.

    A pattern ending in a digit is a port number; anything else (a UNIX
    socket path, usually) is used as-is. Patterns are not escaped.
    """
    if pattern[-1:].isdigit():
        return rf":{pattern}\s"
    return pattern


class SocketPredicate(Predicate):
    """Status 0 when a listening socket matches the pattern, 1 otherwise."""

    def __init__(self, pattern: str, proc_root: Path = PROC_ROOT):
        self.pattern = pattern
        self.proc_root = proc_root
        self._regex = re.compile(socket_search_expression(pattern))

    def evaluate(self) -> int:
        for line in listening_sockets(self.proc_root):
            if self._regex.search(line):
                return 0
        return 1

    def describe(self) -> str:
        return self.pattern

    def __repr__(self) -> str:
        return f"SocketPredicate({self.pattern!r})"

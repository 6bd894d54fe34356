"""Wait for a command or a listening socket, bounded by a timeout."""

from .api import wait_for_command, wait_for_socket
from .coordinator import OutcomeKind, WaitCoordinator, WaitOutcome, WaitRequest

__version__ = "1.0.0"

__all__ = [
    "OutcomeKind",
    "WaitCoordinator",
    "WaitOutcome",
    "WaitRequest",
    "wait_for_command",
    "wait_for_socket",
]

"""Custom exception types for procwait."""


class ProcwaitError(Exception):
    """Base exception for all procwait errors."""

    pass


class UsageError(ProcwaitError):
    """Raised when wait options are missing or malformed."""

    pass


class ConfigError(ProcwaitError):
    """Raised when configuration loading, validation, or saving fails."""

    pass


class KillError(ProcwaitError):
    """Raised when a process tree could not be fully terminated."""

    pass


class InvalidTargetError(KillError):
    """Raised when the pid handed to the terminator is empty or invalid."""

    pass


class EnumerationError(KillError):
    """Raised when the children of a process cannot be listed."""

    pass


class SignalDeliveryError(KillError):
    """Raised when a signal could not be delivered to a live process."""

    def __init__(self, pid: int, sig: int, reason: str):
        super().__init__(f"failed to send signal {sig} to {pid}: {reason}")
        self.pid = pid
        self.sig = sig

"""Wait coordination: race the poller against the timeout guard."""

import logging
import multiprocessing
import os
import re
import signal
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Optional

from .errors import KillError, UsageError
from .killtree import kill_process, terminate_tree
from .poller import PollResult, run_poller
from .predicates import Predicate, SocketPredicate
from .timeout_guard import run_timeout_guard


# Exit status reported for malformed or missing options
USAGE_ERROR_STATUS = 127

# Seconds to wait for a guard process that has just fired to exit
GUARD_REAP_TIMEOUT = 5.0

# Poller exit codes that mean it was killed from outside (by the guard)
_KILLED_EXIT_CODES = frozenset({-signal.SIGKILL, -signal.SIGTERM})

_DIGITS = re.compile(r"^[0-9]+$")
_DELAY = re.compile(r"^[0-9.]+$")

# Log messages per outcome; socket waits word them differently
_COMMAND_MESSAGES = {
    "matched": "Wait successful!",
    "guard_died": "specified PID was terminated!",
    "timed_out": "Timeout reached",
}
_SOCKET_MESSAGES = {
    "matched": "Socket opened!",
    "guard_died": "PID terminated!",
    "timed_out": "Timeout elapsed",
}


def _messages_for(predicate: Predicate) -> dict:
    if isinstance(predicate, SocketPredicate):
        return _SOCKET_MESSAGES
    return _COMMAND_MESSAGES


class OutcomeKind(Enum):
    """How a wait ended."""
    SUCCESS = auto()
    GUARD_PROCESS_DIED = auto()
    MAX_INVOCATIONS_REACHED = auto()
    TIMED_OUT = auto()
    PARSE_OR_USAGE_ERROR = auto()
    INTERNAL_ERROR = auto()


@dataclass(frozen=True)
class WaitOutcome:
    """The single result of one wait call."""

    kind: OutcomeKind
    detail: Optional[str] = None

    @property
    def status(self) -> int:
        """Caller-visible status: 0 on success, 127 for bad usage, else 1."""
        if self.kind is OutcomeKind.SUCCESS:
            return 0
        if self.kind is OutcomeKind.PARSE_OR_USAGE_ERROR:
            return USAGE_ERROR_STATUS
        return 1


@dataclass(frozen=True)
class WaitRequest:
    """Validated parameters of one wait call."""

    predicate: Predicate
    timeout: int = 120
    guard_pid: int = field(default_factory=os.getpid)
    max_invocations: Optional[int] = None
    delay: float = 1.0
    expected_result: int = 0
    routine_name: str = "procwait"

    def validate(self) -> tuple[bool, str | None]:
        """
        Validate the numeric fields.

        Returns:
            tuple[bool, str | None]: (is_valid, error_message)
        """
        if not _is_int(self.timeout) or self.timeout < 0:
            return False, "Invalid timeout provided"

        if not _is_int(self.guard_pid) or self.guard_pid < 0:
            return False, "Invalid PID provided"

        if self.max_invocations is not None and (
            not _is_int(self.max_invocations) or self.max_invocations <= 0
        ):
            return False, "Invalid maximum number of invocations provided"

        if (
            isinstance(self.delay, bool)
            or not isinstance(self.delay, (int, float))
            or not self.delay >= 0
        ):
            return False, "Invalid delay specified"

        if not _is_int(self.expected_result):
            return False, "Invalid expected command return value provided"

        return True, None


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _parse_digits(value, error: str) -> int:
    """Parse a non-negative integer given as an int or a string of digits."""
    if _is_int(value) and value >= 0:
        return value
    if isinstance(value, str) and _DIGITS.match(value):
        return int(value)
    raise UsageError(error)


def _parse_delay(value) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool) and value >= 0:
        return float(value)
    # delay can be fractional, so "." is OK
    if isinstance(value, str) and _DELAY.match(value):
        try:
            return float(value)
        except ValueError:
            pass
    raise UsageError("Invalid delay specified")


def parse_request(
    predicate: Predicate,
    routine_name: str,
    timeout=120,
    guard_pid=None,
    max_invocations=None,
    delay=1,
    expected_result=0,
) -> WaitRequest:
    """
    Build a WaitRequest from raw option values.

    Values may be Python numbers or strings as typed on a command line.

    Raises:
        UsageError: If any value is malformed
    """
    timeout = _parse_digits(timeout, "Invalid timeout provided")
    if guard_pid is None:
        guard_pid = os.getpid()
    else:
        guard_pid = _parse_digits(guard_pid, "Invalid PID provided")
    if max_invocations is not None and max_invocations != "":
        max_invocations = _parse_digits(
            max_invocations, "Invalid maximum number of invocations provided"
        )
        if max_invocations == 0:
            raise UsageError("Invalid maximum number of invocations provided")
    else:
        max_invocations = None
    delay = _parse_delay(delay)
    expected_result = _parse_digits(
        expected_result, "Invalid expected command return value provided"
    )

    return WaitRequest(
        predicate=predicate,
        timeout=timeout,
        guard_pid=guard_pid,
        max_invocations=max_invocations,
        delay=delay,
        expected_result=expected_result,
        routine_name=routine_name,
    )


class WaitCoordinator:
    """Runs one wait: poller and timeout guard in two separate processes.

    The coordinator blocks on the poller only. A poller that exits on its
    own decides the outcome and the guard is cancelled; a poller that was
    killed means the guard fired first. Whichever side loses the race is
    terminated along with all its descendants before wait() returns.

    wait() never raises for an expected failure: every path ends in a
    WaitOutcome, so a failing wait cannot abort the calling test run.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger("procwait")
        self._ctx = multiprocessing.get_context("fork")

    def wait(self, request: WaitRequest) -> WaitOutcome:
        """Run the wait protocol once and report how it ended."""
        if request.predicate is None:
            raise TypeError("WaitRequest.predicate must not be None")

        routine = request.routine_name
        is_valid, error = request.validate()
        if not is_valid:
            self.logger.error(f"{routine}: {error}")
            return WaitOutcome(OutcomeKind.PARSE_OR_USAGE_ERROR, error)

        try:
            return self._race(request)
        except Exception as e:
            self.logger.error(f"{routine}: Wait failed: {e}")
            return WaitOutcome(OutcomeKind.INTERNAL_ERROR, str(e))

    def _race(self, request: WaitRequest) -> WaitOutcome:
        routine = request.routine_name
        messages = _messages_for(request.predicate)
        cancelled = self._ctx.Event()

        poller = self._ctx.Process(
            target=run_poller,
            args=(
                request.predicate,
                request.guard_pid,
                request.delay,
                request.max_invocations,
                request.expected_result,
            ),
            name=f"{routine}-poller",
            daemon=True,
        )
        poller.start()

        try:
            guard = self._ctx.Process(
                target=run_timeout_guard,
                args=(request.timeout, poller.pid, cancelled),
                name=f"{routine}-timeout",
                daemon=True,
            )
            guard.start()
        except Exception:
            self._kill(routine, poller.pid)
            poller.join()
            raise

        poller.join()
        exit_code = poller.exitcode

        if exit_code in _KILLED_EXIT_CODES:
            # The guard already did its job; only reap it
            guard.join(GUARD_REAP_TIMEOUT)
            self.logger.warning(f"{routine}: {messages['timed_out']}")
            return WaitOutcome(OutcomeKind.TIMED_OUT)

        self._cancel_guard(routine, guard, cancelled)

        if exit_code == PollResult.MATCHED:
            self.logger.info(f"{routine}: {messages['matched']}")
            return WaitOutcome(OutcomeKind.SUCCESS)

        if exit_code == PollResult.GUARD_DIED:
            self.logger.warning(f"{routine}: {messages['guard_died']}")
            return WaitOutcome(OutcomeKind.GUARD_PROCESS_DIED)

        if exit_code == PollResult.EXHAUSTED:
            self.logger.warning(
                f"{routine}: Max number of test command invocations reached!"
            )
            return WaitOutcome(OutcomeKind.MAX_INVOCATIONS_REACHED)

        self.logger.error(
            f"{routine}: Unknown termination cause! Return code: {exit_code}"
        )
        return WaitOutcome(
            OutcomeKind.INTERNAL_ERROR, f"poller exit code {exit_code}"
        )

    def _cancel_guard(self, routine: str, guard, cancelled) -> None:
        """Stop the timeout guard; a guard that already exited is fine."""
        cancelled.set()
        self._kill(routine, guard.pid)
        guard.join()

    def _kill(self, routine: str, pid: int) -> None:
        try:
            terminate_tree(pid, signal.SIGKILL)
        except KillError as e:
            self.logger.error(f"{routine}: failed to kill process tree {pid}: {e}")
            kill_process(pid)

"""Predicate polling loop, run in its own process."""

import logging
import os
import sys
import threading
import time
from enum import IntEnum
from typing import Callable, Optional

from .predicates import Predicate
from .process_state import process_exists


logger = logging.getLogger("procwait.poller")


class PollResult(IntEnum):
    """Why the poller stopped. Values double as its process exit codes."""
    MATCHED = 0
    GUARD_DIED = 1
    EXHAUSTED = 2


# Exit code of a poller process whose predicate raised
POLLER_FAILED = 3

# Longest single sleep the platform accepts; larger delays are clamped to it
MAX_SLEEP = threading.TIMEOUT_MAX


class ConditionPoller:
    """Evaluates a predicate every `delay` seconds until it matches.

    Stops early when the guard process disappears, or after
    `max_invocations` evaluations when a limit is set. With no limit the
    loop only ends on a match or guard death; the timeout guard is what
    bounds it otherwise.
    """

    def __init__(
        self,
        predicate: Predicate,
        guard_pid: int,
        delay: float = 1.0,
        max_invocations: Optional[int] = None,
        expected_result: int = 0,
        is_alive: Optional[Callable[[int], bool]] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.predicate = predicate
        self.guard_pid = guard_pid
        self.delay = delay
        self.max_invocations = max_invocations
        self.expected_result = expected_result
        self.is_alive = is_alive or process_exists
        self.sleep = sleep or time.sleep
        self.invocations = 0

    def _may_continue(self) -> bool:
        return self.max_invocations is None or self.invocations < self.max_invocations

    def run(self) -> PollResult:
        """Run the loop and return why it stopped."""
        while self._may_continue():
            if self.predicate.evaluate() == self.expected_result:
                return PollResult.MATCHED

            if not self.is_alive(self.guard_pid):
                return PollResult.GUARD_DIED

            self.sleep(min(self.delay, MAX_SLEEP))
            self.invocations += 1

        return PollResult.EXHAUSTED


def run_poller(
    predicate: Predicate,
    guard_pid: int,
    delay: float,
    max_invocations: Optional[int],
    expected_result: int,
) -> None:
    """Process entry point: poll, then exit with the PollResult value."""
    try:
        result = ConditionPoller(
            predicate, guard_pid, delay, max_invocations, expected_result
        ).run()
    except Exception as e:
        logger.error(f"poller for {predicate.describe()} failed: {e}")
        sys.stdout.flush()
        sys.stderr.flush()
        os._exit(POLLER_FAILED)
    sys.exit(int(result))

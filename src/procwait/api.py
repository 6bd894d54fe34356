"""Entry points for waiting on a command or a listening socket.

Both return an integer status instead of raising:

    0    the condition was met
    1    timeout, guard process death, invocation limit, or internal error
    127  malformed options
"""

import logging
import re
from typing import Optional

from .coordinator import (
    USAGE_ERROR_STATUS,
    WaitCoordinator,
    parse_request,
)
from .errors import UsageError
from .predicates import CommandPredicate, SocketPredicate


WAIT_FOR_CMD = "rlWaitForCmd"
WAIT_FOR_SOCKET = "rlWaitForSocket"


def _get_logger(logger: Optional[logging.Logger]) -> logging.Logger:
    return logger or logging.getLogger("procwait")


def wait_for_command(
    command: str,
    timeout=120,
    guard_pid=None,
    max_invocations=None,
    delay=1,
    expected_result=0,
    logger: Optional[logging.Logger] = None,
) -> int:
    """
    Run `command` until it exits with `expected_result`.

    Args:
        command: Shell command, run with the caller's environment and cwd
        timeout: Seconds before the command loop is killed
        guard_pid: Stop waiting if this process goes away. Defaults to us.
        max_invocations: Give up after this many runs. Default is no limit.
        delay: Seconds between runs (fractions allowed)
        expected_result: Exit status that ends the wait

    Returns:
        int: 0, 1 or 127 (see module docstring)
    """
    log = _get_logger(logger)
    if not command:
        log.error(f"{WAIT_FOR_CMD}: No command specified")
        return USAGE_ERROR_STATUS

    try:
        request = parse_request(
            CommandPredicate(command),
            WAIT_FOR_CMD,
            timeout=timeout,
            guard_pid=guard_pid,
            max_invocations=max_invocations,
            delay=delay,
            expected_result=expected_result,
        )
    except UsageError as e:
        log.error(f"{WAIT_FOR_CMD}: {e}")
        return USAGE_ERROR_STATUS

    log.info(
        f"{WAIT_FOR_CMD}: waiting for `{command}' to return "
        f"{request.expected_result} in {request.timeout} seconds"
    )
    return WaitCoordinator(log).wait(request).status


def wait_for_socket(
    pattern: str,
    timeout=120,
    guard_pid=None,
    logger: Optional[logging.Logger] = None,
) -> int:
    """
    Wait until a socket matching `pattern` is listening.

    A pattern ending in a digit is taken as a port number, anything else
    as a regular expression matched against UNIX socket paths and
    addresses.
    """
    log = _get_logger(logger)
    if not pattern:
        log.error(f"{WAIT_FOR_SOCKET}: No socket specified")
        return USAGE_ERROR_STATUS

    try:
        predicate = SocketPredicate(pattern)
    except re.error as e:
        log.error(f"{WAIT_FOR_SOCKET}: Invalid socket pattern: {e}")
        return USAGE_ERROR_STATUS

    try:
        request = parse_request(
            predicate,
            WAIT_FOR_SOCKET,
            timeout=timeout,
            guard_pid=guard_pid,
        )
    except UsageError as e:
        log.error(f"{WAIT_FOR_SOCKET}: {e}")
        return USAGE_ERROR_STATUS

    log.info(
        f"{WAIT_FOR_SOCKET}: Waiting max {request.timeout}s for socket "
        f"`{pattern}' to start listening"
    )
    return WaitCoordinator(log).wait(request).status

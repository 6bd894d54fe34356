"""End-to-end waits with real poller and timeout guard processes."""

import logging
import os
import socket
import subprocess
import threading
import time

import pytest

from procwait import wait_for_command, wait_for_socket
from procwait.coordinator import OutcomeKind, WaitCoordinator, parse_request
from procwait.predicates import CommandPredicate
from procwait.process_state import children_of, get_process_state, is_linux


pytestmark = [
    pytest.mark.skipif(not is_linux(), reason="Linux-only test"),
    pytest.mark.slow,
]


def _dead_pid() -> int:
    proc = subprocess.Popen(["true"])
    proc.wait()
    return proc.pid


def _timed(fn, *args, **kwargs):
    start = time.monotonic()
    result = fn(*args, **kwargs)
    return result, time.monotonic() - start


def _no_children_left():
    """Every process a wait started has been reaped."""
    return children_of(os.getpid()) == []


class TestWaitForCommand:
    """wait_for_command scenarios."""

    def test_true_succeeds_immediately(self):
        """An already-true command returns 0 well inside the timeout."""
        status, elapsed = _timed(wait_for_command, "true", timeout=5, delay=1)
        assert status == 0
        assert elapsed < 2
        assert _no_children_left()

    def test_max_invocations_counts_evaluations(self, tmp_path):
        """A never-true command runs exactly max_invocations times."""
        counter = tmp_path / "runs"
        status, elapsed = _timed(
            wait_for_command,
            f"echo run >> {counter}; false",
            timeout=3, delay=1, max_invocations=2,
        )
        assert status == 1
        assert elapsed < 3
        assert counter.read_text().splitlines() == ["run", "run"]
        assert _no_children_left()

    def test_expected_result(self):
        """Waiting for a non-zero status succeeds when it is returned."""
        assert wait_for_command("exit 3", timeout=5, expected_result=3) == 0

    def test_becomes_true_later(self, tmp_path):
        """The wait ends as soon as the condition starts holding."""
        flag = tmp_path / "flag"
        toucher = subprocess.Popen(["bash", "-c", f"sleep 0.5; touch {flag}"])
        try:
            status = wait_for_command(f"test -e {flag}", timeout=10, delay=0.1)
        finally:
            toucher.wait()
        assert status == 0

    def test_timeout(self):
        """A condition that never holds times out after about `timeout`."""
        status, elapsed = _timed(wait_for_command, "false", timeout=1, delay=0.1)
        assert status == 1
        assert 1 <= elapsed < 4
        assert _no_children_left()

    def test_huge_delay_still_times_out(self):
        """A delay too long for sleep() is clamped and the timeout still ends the wait."""
        request = parse_request(
            CommandPredicate("false"), "rlWaitForCmd",
            timeout=1, delay="99999999999999999999",
        )
        outcome, elapsed = _timed(WaitCoordinator().wait, request)
        assert outcome.kind is OutcomeKind.TIMED_OUT
        assert elapsed < 4
        assert _no_children_left()

    def test_timeout_kills_command_subtree(self, tmp_path):
        """Processes started by the polled command die with the poller."""
        pid_file = tmp_path / "sleeper.pid"
        status = wait_for_command(
            f"sleep 60 & echo $! > {pid_file}; wait",
            timeout=1, delay=0.1,
        )
        assert status == 1

        sleeper = int(pid_file.read_text())
        deadline = time.monotonic() + 5
        while get_process_state(sleeper) not in ('?', 'Z') and time.monotonic() < deadline:
            time.sleep(0.05)
        assert get_process_state(sleeper) in ('?', 'Z')

    def test_dead_guard_process(self):
        """A guard process that is already gone ends the wait, not the timeout."""
        status, elapsed = _timed(
            wait_for_command, "false", timeout=10, guard_pid=_dead_pid(), delay=0.1
        )
        assert status == 1
        assert elapsed < 5

    def test_guard_dies_mid_wait(self):
        """The wait stops shortly after the guard process exits."""
        guard = subprocess.Popen(["sleep", "0.5"])
        # Reap the guard as soon as it exits so /proc forgets it
        reaper = threading.Thread(target=guard.wait)
        reaper.start()
        request = parse_request(
            CommandPredicate("false"), "rlWaitForCmd",
            timeout=10, guard_pid=guard.pid, delay=0.1,
        )
        outcome, elapsed = _timed(WaitCoordinator().wait, request)
        reaper.join()
        assert outcome.kind is OutcomeKind.GUARD_PROCESS_DIED
        assert elapsed < 5

    def test_outcome_kinds(self, tmp_path):
        """Each ending is reported with its own kind."""
        coordinator = WaitCoordinator()

        def run(command, **kwargs):
            request = parse_request(CommandPredicate(command), "rlWaitForCmd", **kwargs)
            return coordinator.wait(request).kind

        assert run("true", timeout=5) is OutcomeKind.SUCCESS
        assert run("false", timeout=5, max_invocations=1, delay=0) is OutcomeKind.MAX_INVOCATIONS_REACHED
        assert run("false", timeout=1, delay=0.1) is OutcomeKind.TIMED_OUT
        assert run("false", timeout=5, guard_pid=_dead_pid()) is OutcomeKind.GUARD_PROCESS_DIED

    @pytest.mark.parametrize("kwargs", [
        {"timeout": "abc"},
        {"delay": -1},
        {"delay": "-1"},
        {"max_invocations": 0},
        {"guard_pid": "self"},
        {"expected_result": "x"},
    ])
    def test_invalid_options_return_127(self, kwargs):
        """Bad options are rejected before anything is started."""
        status, elapsed = _timed(wait_for_command, "true", **kwargs)
        assert status == 127
        assert elapsed < 1

    def test_missing_command_returns_127(self):
        assert wait_for_command("") == 127

    def test_logs_progress(self, caplog):
        """The wait announces itself and its result."""
        with caplog.at_level(logging.INFO, logger="procwait"):
            wait_for_command("true", timeout=5)
        assert "rlWaitForCmd: waiting for `true' to return 0 in 5 seconds" in caplog.text
        assert "rlWaitForCmd: Wait successful!" in caplog.text


class TestWaitForSocket:
    """wait_for_socket scenarios."""

    def test_listening_tcp_port(self):
        """A listening port is found on the first check."""
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as server:
            server.bind(("127.0.0.1", 0))
            server.listen()
            port = server.getsockname()[1]
            status, elapsed = _timed(wait_for_socket, str(port), timeout=5)
        assert status == 0
        assert elapsed < 2

    def test_unused_port_times_out(self):
        """Nothing listening means a timeout after about `timeout`."""
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as spare:
            spare.bind(("127.0.0.1", 0))
            port = spare.getsockname()[1]
        status, elapsed = _timed(wait_for_socket, str(port), timeout=2)
        assert status == 1
        assert 2 <= elapsed < 5
        assert _no_children_left()

    def test_unix_socket_path(self, tmp_path):
        """UNIX socket paths are matched too."""
        path = tmp_path / "app.sock"
        with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as server:
            server.bind(str(path))
            server.listen()
            assert wait_for_socket(str(path), timeout=5) == 0

    def test_dead_guard_process(self):
        status, elapsed = _timed(wait_for_socket, "/nonexistent/sock", timeout=10, guard_pid=_dead_pid())
        assert status == 1
        assert elapsed < 5

    def test_invalid_options_return_127(self):
        assert wait_for_socket("") == 127
        assert wait_for_socket("8080", timeout="abc") == 127
        assert wait_for_socket("/run/[broken", timeout=1) == 127

    def test_logs_socket_outcome(self, caplog):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as server:
            server.bind(("127.0.0.1", 0))
            server.listen()
            port = server.getsockname()[1]
            with caplog.at_level(logging.INFO, logger="procwait"):
                assert wait_for_socket(str(port), timeout=5) == 0
        assert "rlWaitForSocket: Socket opened!" in caplog.text

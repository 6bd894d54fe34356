"""Pytest configuration and fixtures for procwait tests."""

import json
import logging
import subprocess
import time

import pytest

from procwait.process_state import children_of


@pytest.fixture(autouse=True)
def _reset_procwait_logger():
    """Drop handlers added by setup_logging() so tests don't leak them."""
    logger = logging.getLogger("procwait")
    saved = list(logger.handlers)
    yield
    logger.handlers = saved


@pytest.fixture
def tmp_home(tmp_path, monkeypatch):
    """
    Mock home directory for isolated tests.

    Args:
        tmp_path: Pytest temporary directory
        monkeypatch: Pytest monkeypatch fixture

    Yields:
        Path: Temporary home directory
    """
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.delenv("PROCWAIT_CONFIG", raising=False)
    yield tmp_path


@pytest.fixture
def tmp_config_file(tmp_home):
    """
    Temporary ~/.procwait.json config file.

    Yields:
        Path: Path to temporary config file
    """
    config_path = tmp_home / ".procwait.json"
    config_path.write_text(json.dumps({"timeout": 30, "delay": 0.5}))
    yield config_path


def wait_for_descendants(pid: int, depth: int, timeout: float = 5.0) -> list[int]:
    """Poll until pid has a chain of `depth` descendants; return the chain."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        chain = []
        current = pid
        while True:
            kids = children_of(current)
            if not kids:
                break
            current = kids[0]
            chain.append(current)
        if len(chain) >= depth:
            return chain
        time.sleep(0.05)
    raise AssertionError(f"process {pid} never grew {depth} descendants")


@pytest.fixture
def process_chain():
    """
    Spawn a root process with three nested descendants.

    The trailing `; :` keeps each shell from exec'ing its child, so the
    chain really is root -> bash -> bash -> sleep.

    Yields:
        tuple[subprocess.Popen, list[int]]: Root process and descendant pids
    """
    proc = subprocess.Popen(
        ["bash", "-c", "bash -c 'bash -c \"sleep 60; :\"; :'; :"]
    )
    try:
        descendants = wait_for_descendants(proc.pid, 3)
        yield proc, descendants
    finally:
        if proc.poll() is None:
            proc.kill()
        proc.wait()

"""Tests for process helpers."""

import subprocess
import sys

from claude_local_proxy.utils.platform_helper import is_process_running, kill_process


def test_kill_process_tree():
    parent = subprocess.Popen([
        sys.executable,
        "-c",
        "import subprocess, sys, time; "
        "subprocess.Popen([sys.executable, '-c', 'import time; time.sleep(30)']); "
        "time.sleep(30)",
    ])
    try:
        assert is_process_running(parent.pid)
        assert kill_process(parent.pid, timeout=5)
        parent.wait(timeout=5)
        assert not is_process_running(parent.pid)
    finally:
        if parent.poll() is None:
            parent.kill()


def test_missing_pid():
    assert not is_process_running(None)
    assert kill_process(None)

"""Shared pytest fixtures for claude-local-proxy tests."""

import json
import sys
import textwrap
from pathlib import Path
from typing import List, Optional

import pytest

from claude_local_proxy.config.config_manager import ProxySettings


def parse_sse(text: str) -> List[tuple]:
    """Split an SSE body into (event, data) pairs."""
    events = []
    for frame in text.strip().split("\n\n"):
        if not frame.strip():
            continue
        name, data = None, None
        for line in frame.split("\n"):
            if line.startswith("event: "):
                name = line[len("event: "):]
            elif line.startswith("data: "):
                data = json.loads(line[len("data: "):])
        events.append((name, data))
    return events


class FakeCli:
    """Writes small Python scripts that stand in for the claude executable."""

    def __init__(self, directory: Path):
        self.directory = directory
        self.capture_file = directory / "captured.txt"
        self.pid_file = directory / "pid.txt"
        self._count = 0

    def _write(self, body: str) -> List[str]:
        self._count += 1
        script = self.directory / f"fake_claude_{self._count}.py"
        script.write_text(textwrap.dedent(body), encoding="utf-8")
        return [sys.executable, str(script)]

    def batch(self, stdout: str, exit_code: int = 0, stderr: str = "", delay: float = 0.0) -> List[str]:
        """Records its last argument (the prompt) and prints a fixed stdout."""
        return self._write(f"""
            import sys, time
            with open({str(self.capture_file)!r}, "w", encoding="utf-8") as f:
                f.write(sys.argv[-1])
            time.sleep({delay!r})
            sys.stdout.write({stdout!r})
            sys.stdout.flush()
            sys.stderr.write({stderr!r})
            sys.exit({exit_code!r})
        """)

    def stream(
        self,
        chunks: List[str],
        exit_code: int = 0,
        stderr: str = "",
        echo_input: bool = False,
        delay: float = 0.01,
    ) -> List[str]:
        """Reads one stdin line, then writes stdout in the given raw chunks."""
        return self._write(f"""
            import os, sys, time
            with open({str(self.pid_file)!r}, "w", encoding="utf-8") as f:
                f.write(str(os.getpid()))
            payload = sys.stdin.readline()
            with open({str(self.capture_file)!r}, "w", encoding="utf-8") as f:
                f.write(payload)
            if {echo_input!r} and payload:
                sys.stdout.write(payload)
                sys.stdout.flush()
            for chunk in {chunks!r}:
                sys.stdout.write(chunk)
                sys.stdout.flush()
                time.sleep({delay!r})
            sys.stderr.write({stderr!r})
            sys.exit({exit_code!r})
        """)

    def pid(self) -> int:
        """PID of the last streaming fake, written before it reads stdin."""
        return int(self.pid_file.read_text(encoding="utf-8"))

    def captured(self) -> Optional[str]:
        if not self.capture_file.exists():
            return None
        return self.capture_file.read_text(encoding="utf-8")


def assistant_line(*content) -> str:
    """One stream-json assistant event, newline terminated."""
    return json.dumps({"type": "assistant", "message": {"role": "assistant", "content": list(content)}}) + "\n"


@pytest.fixture
def fake_cli(tmp_path):
    return FakeCli(tmp_path)


@pytest.fixture
def make_settings(tmp_path):
    def _make(command: List[str], timeout: Optional[float] = None) -> ProxySettings:
        return ProxySettings(
            claude_command=command,
            execution_timeout=timeout,
            log_file=tmp_path / "proxy.log",
        )

    return _make


@pytest.fixture
def missing_command(tmp_path):
    return [str(tmp_path / "no-such-claude-binary")]

"""Shared fixtures: a scripted command runner and config snapshots."""

import subprocess
from dataclasses import dataclass
from typing import List, Optional

import pytest

from vps_bootstrap.config import ConfigSnapshot
from vps_bootstrap.errors import ExecutionError
from vps_bootstrap.probe import StateProbe


@dataclass
class Call:
    cmd: object
    user: Optional[str]
    check: bool
    capture_output: bool
    timeout: Optional[int]

    @property
    def text(self) -> str:
        return self.cmd if isinstance(self.cmd, str) else " ".join(self.cmd)


class FakeRunner:
    """
    Stand-in for ``run_command``.

    Responses are matched by substring against the joined command line; the
    most recently registered match wins. Unmatched commands succeed silently.
    """

    def __init__(self):
        self.calls: List[Call] = []
        self._responses = []

    def on(self, fragment, stdout="", returncode=0, stderr="", error=None):
        self._responses.append((fragment, stdout, returncode, stderr, error))
        return self

    def __call__(
        self,
        cmd,
        env=None,
        check=True,
        capture_output=True,
        timeout=None,
        user=None,
    ):
        call = Call(cmd, user, check, capture_output, timeout)
        self.calls.append(call)
        for fragment, stdout, returncode, stderr, error in reversed(self._responses):
            if fragment in call.text:
                if error is not None:
                    raise error
                if check and returncode != 0:
                    raise ExecutionError(
                        f"Command failed (code {returncode}): {call.text}\nError: {stderr}"
                    )
                return subprocess.CompletedProcess(cmd, returncode, stdout, stderr)
        return subprocess.CompletedProcess(cmd, 0, "", "")

    def commands(self) -> List[str]:
        return [call.text for call in self.calls]

    def ran(self, fragment: str) -> bool:
        return any(fragment in text for text in self.commands())


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def probe(runner):
    return StateProbe(runner)


@pytest.fixture
def config():
    return ConfigSnapshot(USERNAME="deploy", TIMEZONE="Asia/Jakarta")

"""Shared fixtures for swarm_cli tests."""

from __future__ import annotations

import itertools
import os
import time
from pathlib import Path
from typing import Callable, Iterator

import pytest

from swarm_cli.orchestrator.launch import Launcher

AGENT_EXECUTABLES = ("claude", "codex", "gemini", "cursor-agent", "opencode", "copilot")


@pytest.fixture(autouse=True)
def isolated_swarm_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Path]:
    """Keep every test away from the real swarm home and mode settings."""
    home = tmp_path / "swarm-home"
    monkeypatch.setenv("SWARM_HOME", str(home))
    for var in ("SWARM_DEFAULT_MODE", "SWARM_MODE", "SWARM_RALPH_FILE", "SWARM_DISABLE_RALPH"):
        monkeypatch.delenv(var, raising=False)
    yield home


@pytest.fixture()
def agents_dir(tmp_path: Path) -> Path:
    path = tmp_path / "agents"
    path.mkdir()
    return path


@pytest.fixture()
def workdir(tmp_path: Path) -> Path:
    path = tmp_path / "project"
    path.mkdir()
    return path


@pytest.fixture()
def fake_bin(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Put a stub executable for every agent CLI first on PATH."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    for exe in AGENT_EXECUTABLES:
        write_cli_script(bin_dir, exe, "exit 0\n")
    monkeypatch.setenv("PATH", str(bin_dir) + os.pathsep + os.environ.get("PATH", ""))
    return bin_dir


def write_cli_script(bin_dir: Path, name: str, body: str) -> Path:
    """Write an executable shell script standing in for an agent CLI."""
    path = bin_dir / (f"{name}.exe" if os.name == "nt" else name)
    path.write_text("#!/bin/sh\n" + body, encoding="utf-8")
    path.chmod(0o755)
    return path


def wait_until(predicate: Callable[[], bool], timeout: float = 10.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


class FakeLauncher(Launcher):
    """Launcher that records calls instead of starting processes.

    Launched pids stay alive until ``finish`` is called or the agent is
    signalled; pids listed in ``stubborn`` ignore SIGTERM.
    """

    def __init__(self) -> None:
        super().__init__()
        self._pids = itertools.count(900_001)
        self.launched: list[tuple[list[str], str | None, Path]] = []
        self.alive: set[int] = set()
        self.exit_codes: dict[int, int] = {}
        self.stubborn: set[int] = set()
        self.terminated: list[int] = []
        self.killed: list[int] = []

    def launch(self, argv: list[str], cwd: str | None, log_path: Path) -> int:
        pid = next(self._pids)
        self.launched.append((list(argv), cwd, log_path))
        self.alive.add(pid)
        return pid

    def finish(self, pid: int, exit_code: int = 0) -> None:
        self.alive.discard(pid)
        self.exit_codes[pid] = exit_code

    def is_alive(self, pid: int) -> bool:
        return pid in self.alive

    def exit_code(self, pid: int) -> int | None:
        return self.exit_codes.get(pid)

    def terminate(self, pid: int) -> None:
        self.terminated.append(pid)
        if pid not in self.stubborn:
            self.finish(pid, -15)

    def kill(self, pid: int) -> None:
        self.killed.append(pid)
        self.finish(pid, -9)


@pytest.fixture()
def fake_launcher() -> FakeLauncher:
    return FakeLauncher()


@pytest.fixture()
def launcher_factory() -> Callable[[], FakeLauncher]:
    """Fresh launchers, e.g. to simulate a restarted manager process."""
    return FakeLauncher


@pytest.fixture()
def write_cli(fake_bin: Path) -> Callable[[str, str], Path]:
    def _write(name: str, body: str) -> Path:
        return write_cli_script(fake_bin, name, body)

    return _write


@pytest.fixture(name="wait_until")
def wait_until_fixture() -> Callable[..., bool]:
    return wait_until

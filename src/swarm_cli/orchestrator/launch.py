"""Platform launch strategies for agent processes.

Both launchers start the agent in the background with its combined output
appended to a per-agent log file, and detach it from the caller so it
outlives the process that spawned it.

POSIX passes argv straight to the OS. On Windows, npm-installed CLIs are
``.ps1``/``.cmd`` shims and arguments cross several quoting layers, so the
agent is started from a generated PowerShell script that decodes every
argument from base64 and appends an exit-code sentinel line to the log.
"""

from __future__ import annotations

import base64
import logging
import os
import signal
import subprocess
import tempfile
from functools import lru_cache
from pathlib import Path

from swarm_cli.errors import SpawnFailure

logger = logging.getLogger(__name__)

# Set by Claude Code in its own children; a nested `claude` refuses to start when it sees it.
NESTED_SESSION_ENV = "CLAUDECODE"

EXIT_CODE_KEY = "__exit_code__"

_WINDOWS_STILL_ACTIVE = 259
_WINDOWS_PROCESS_QUERY_LIMITED_INFORMATION = 0x1000
_WINDOWS_ERROR_ACCESS_DENIED = 5


def child_environment() -> dict[str, str]:
    """Environment for agent processes (the caller's, minus the nesting marker)."""
    env = dict(os.environ)
    env.pop(NESTED_SESSION_ENV, None)
    return env


def _windows_pid_alive(pid: int) -> bool:
    import ctypes

    kernel32 = ctypes.windll.kernel32  # type: ignore[attr-defined]
    handle = kernel32.OpenProcess(_WINDOWS_PROCESS_QUERY_LIMITED_INFORMATION, False, pid)
    if not handle:
        return kernel32.GetLastError() == _WINDOWS_ERROR_ACCESS_DENIED
    try:
        exit_code = ctypes.c_ulong()
        if not kernel32.GetExitCodeProcess(handle, ctypes.byref(exit_code)):
            return True
        return exit_code.value == _WINDOWS_STILL_ACTIVE
    finally:
        kernel32.CloseHandle(handle)


def is_process_alive(pid: int | None) -> bool:
    """Check if a process with the given PID is alive."""
    if pid is None or pid <= 0:
        return False
    if os.name == "nt":
        return _windows_pid_alive(pid)
    try:
        os.kill(pid, 0)  # signal 0 only checks existence
        return True
    except (ProcessLookupError, OverflowError):
        return False
    except PermissionError:
        # Exists, owned by someone else
        return True


class Launcher:
    """Launch capability used by the lifecycle manager.

    Processes started by a launcher instance are tracked by pid so the
    launcher can reap them and report real exit codes. Processes started by
    another interpreter (found after a restart) are only probed for liveness.
    """

    def __init__(self) -> None:
        self._processes: dict[int, subprocess.Popen] = {}

    def launch(self, argv: list[str], cwd: str | None, log_path: Path) -> int:
        """Start ``argv`` in the background and return its pid.

        Raises:
            SpawnFailure: If the OS refuses to start the process.
        """
        raise NotImplementedError

    def is_alive(self, pid: int) -> bool:
        proc = self._processes.get(pid)
        if proc is not None:
            return proc.poll() is None
        return is_process_alive(pid)

    def exit_code(self, pid: int) -> int | None:
        """Exit code of a process started here, None while running or if unknown."""
        proc = self._processes.get(pid)
        if proc is None:
            return None
        return proc.poll()

    def terminate(self, pid: int) -> None:
        raise NotImplementedError

    def kill(self, pid: int) -> None:
        raise NotImplementedError


class PosixLauncher(Launcher):
    """Starts agents in their own session with output appended to the log."""

    def launch(self, argv: list[str], cwd: str | None, log_path: Path) -> int:
        try:
            with open(log_path, "ab") as log_file:
                proc = subprocess.Popen(
                    argv,
                    cwd=cwd,
                    stdin=subprocess.DEVNULL,
                    stdout=log_file,
                    stderr=subprocess.STDOUT,
                    env=child_environment(),
                    start_new_session=True,
                )
        except OSError as e:
            raise SpawnFailure(f"Failed to start {argv[0]}: {e}") from e

        self._processes[proc.pid] = proc
        logger.debug(f"Started {argv[0]} with pid {proc.pid}")
        return proc.pid

    def _signal_group(self, pid: int, sig: signal.Signals) -> None:
        try:
            # start_new_session makes the agent its own process group leader
            os.killpg(pid, sig)
            return
        except ProcessLookupError:
            pass
        except PermissionError as e:
            logger.debug(f"Cannot signal process group {pid}: {e}")
        try:
            os.kill(pid, sig)
        except ProcessLookupError:
            pass

    def terminate(self, pid: int) -> None:
        self._signal_group(pid, signal.SIGTERM)

    def kill(self, pid: int) -> None:
        self._signal_group(pid, signal.SIGKILL)


def _ps_escape(value: str) -> str:
    """Escape for a PowerShell single-quoted string."""
    return value.replace("'", "''")


def _b64(value: str) -> str:
    return base64.b64encode(value.encode("utf-8")).decode("ascii")


def build_windows_spawn_ps1(cmd: list[str], stdout_path: str | Path, working_directory: str | Path) -> str:
    """Render the PowerShell wrapper that runs ``cmd`` and captures its output.

    Arguments are never embedded as literals: PowerShell treats typographic
    quotes (U+2018/U+2019) as string delimiters, so each one is base64
    encoded and decoded at run time.
    """
    log = _ps_escape(str(stdout_path))
    exe = _ps_escape(cmd[0])
    arg_lines = [
        f"$psi.ArgumentList.Add($enc.GetString([System.Convert]::FromBase64String('{_b64(arg)}')))"
        for arg in cmd[1:]
    ]
    lines = [
        "$env:CLAUDECODE = $null",
        "$enc = [System.Text.UTF8Encoding]::new($false)",
        # npm installs most agent CLIs as .ps1/.cmd shims; resolve the real file first.
        f"$resolved = Get-Command '{exe}' -ErrorAction SilentlyContinue",
        f"if ($null -eq $resolved) {{ [System.IO.File]::WriteAllText('{log}', "
        f"\"ERROR: '{exe}' not found in PATH\" + [Environment]::NewLine + "
        f"'{{\"{EXIT_CODE_KEY}\":1}}' + [Environment]::NewLine, $enc); exit 1 }}",
        "$exe = $resolved.Source",
        "$psi = [System.Diagnostics.ProcessStartInfo]::new()",
        "switch -Wildcard ($exe) {",
        "  '*.ps1' { $psi.FileName = 'pwsh.exe'; $psi.ArgumentList.Add('-NoProfile'); "
        "$psi.ArgumentList.Add('-NonInteractive'); $psi.ArgumentList.Add('-File'); "
        "$psi.ArgumentList.Add($exe) }",
        "  '*.cmd' { $psi.FileName = 'cmd.exe'; $psi.ArgumentList.Add('/c'); $psi.ArgumentList.Add($exe) }",
        "  '*.bat' { $psi.FileName = 'cmd.exe'; $psi.ArgumentList.Add('/c'); $psi.ArgumentList.Add($exe) }",
        "  default  { $psi.FileName = $exe }",
        "}",
        *arg_lines,
        f"$psi.WorkingDirectory = '{_ps_escape(str(working_directory))}'",
        "$psi.RedirectStandardInput = $true",
        "$psi.RedirectStandardOutput = $true",
        "$psi.RedirectStandardError = $true",
        "$psi.UseShellExecute = $false",
        "$psi.StandardOutputEncoding = $enc",
        "$psi.StandardErrorEncoding = $enc",
        "$p = [System.Diagnostics.Process]::Start($psi)",
        # npm shims wait on pipeline input unless stdin is closed
        "$p.StandardInput.Close()",
        "$outTask = $p.StandardOutput.ReadToEndAsync()",
        "$errTask = $p.StandardError.ReadToEndAsync()",
        "$p.WaitForExit()",
        "[void][System.Threading.Tasks.Task]::WhenAll($outTask, $errTask)",
        f"$exitJson = '{{\"{EXIT_CODE_KEY}\":' + $p.ExitCode.ToString() + '}}'",
        f"[System.IO.File]::WriteAllText('{log}', $outTask.Result + $errTask.Result + "
        "[Environment]::NewLine + $exitJson + [Environment]::NewLine, $enc)",
        "exit $p.ExitCode",
    ]
    return "\n".join(lines)


class WindowsLauncher(Launcher):
    """Starts agents through a generated PowerShell wrapper script."""

    def __init__(self, script_dir: Path | None = None) -> None:
        super().__init__()
        self.script_dir = script_dir or Path(tempfile.gettempdir())

    def launch(self, argv: list[str], cwd: str | None, log_path: Path) -> int:
        working_directory = cwd or os.getcwd()
        script_path = self.script_dir / f"swarm-agent-{log_path.parent.name}.ps1"
        creationflags = getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0) | getattr(
            subprocess, "CREATE_NO_WINDOW", 0
        )
        try:
            script_path.write_text(
                build_windows_spawn_ps1(argv, log_path, working_directory),
                encoding="utf-8",
            )
            proc = subprocess.Popen(
                ["pwsh.exe", "-NoProfile", "-NonInteractive", "-File", str(script_path)],
                cwd=working_directory,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                env=child_environment(),
                creationflags=creationflags,
            )
        except OSError as e:
            raise SpawnFailure(f"Failed to start {argv[0]} via PowerShell: {e}") from e

        self._processes[proc.pid] = proc
        logger.debug(f"Started {argv[0]} via {script_path} with pid {proc.pid}")
        return proc.pid

    def _taskkill(self, pid: int, force: bool) -> None:
        args = ["taskkill", "/PID", str(pid), "/T"]
        if force:
            args.append("/F")
        result = subprocess.run(args, capture_output=True, text=True, check=False)
        if result.returncode != 0:
            logger.debug(f"taskkill {pid} exited {result.returncode}: {result.stderr.strip()}")

    def terminate(self, pid: int) -> None:
        self._taskkill(pid, force=False)

    def kill(self, pid: int) -> None:
        self._taskkill(pid, force=True)


@lru_cache(maxsize=1)
def get_launcher() -> Launcher:
    """Return the process-wide launcher for the current platform."""
    if os.name == "nt":
        return WindowsLauncher()
    return PosixLauncher()

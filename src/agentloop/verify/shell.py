from __future__ import annotations

import os
import signal
import subprocess
import time
from typing import Optional, Tuple

from ..interfaces import ExecOptions, ExecResult


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def _signal_name(returncode: int) -> str:
    try:
        return signal.Signals(-returncode).name
    except ValueError:
        return str(-returncode)


def _split_returncode(returncode: Optional[int]) -> Tuple[Optional[int], Optional[str]]:
    if returncode is None:
        return None, None
    if returncode < 0:
        return None, _signal_name(returncode)
    return returncode, None


def _terminate_process_group(proc: subprocess.Popen[str], grace_s: float) -> None:
    if proc.poll() is not None:
        return
    try:
        if hasattr(os, "killpg"):
            os.killpg(proc.pid, signal.SIGTERM)
        else:
            proc.terminate()
    except ProcessLookupError:
        return
    try:
        proc.wait(timeout=grace_s)
        return
    except subprocess.TimeoutExpired:
        pass
    try:
        if hasattr(os, "killpg"):
            os.killpg(proc.pid, signal.SIGKILL)
        else:
            proc.kill()
    except ProcessLookupError:
        return


class LocalShellRunner:
    """Runs one command through ``/bin/sh -c`` in its own process group."""

    def __init__(self, shell: str = "/bin/sh", kill_grace_s: float = 2.0) -> None:
        self.shell = shell
        self.kill_grace_s = kill_grace_s

    def run(self, options: ExecOptions) -> ExecResult:
        started = time.monotonic()
        env = os.environ.copy()
        if options.env:
            env.update(options.env)
        try:
            proc = subprocess.Popen(
                [self.shell, "-c", options.cmd],
                cwd=options.cwd,
                env=env,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
                start_new_session=True,
            )
        except OSError as exc:
            return ExecResult(
                code=None, stderr=str(exc), duration_ms=_elapsed_ms(started), error=str(exc)
            )

        timeout_s = None
        if options.timeout_ms is not None and options.timeout_ms > 0:
            timeout_s = options.timeout_ms / 1000
        timed_out = False
        try:
            stdout, stderr = proc.communicate(timeout=timeout_s)
        except subprocess.TimeoutExpired:
            timed_out = True
            _terminate_process_group(proc, self.kill_grace_s)
            stdout, stderr = proc.communicate()

        code, signal_name = _split_returncode(proc.returncode)
        return ExecResult(
            code=code,
            stdout=stdout or "",
            stderr=stderr or "",
            duration_ms=_elapsed_ms(started),
            signal=signal_name,
            timed_out=timed_out,
        )

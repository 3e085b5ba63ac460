"""Cancellable subprocess execution with process-group cleanup."""

from __future__ import annotations

import os
import signal
import subprocess
import threading
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

POLL_INTERVAL = 0.2


@dataclass(frozen=True, slots=True)
class ProcessResult:
    returncode: int
    stdout: str
    stderr: str
    terminated: bool = False
    reason: str | None = None


def run_cancellable(
    argv: Sequence[str],
    *,
    cwd: Path,
    env: Mapping[str, str],
    timeout: float | None = None,
    cancel: threading.Event | None = None,
) -> ProcessResult:
    """Run *argv* in its own process group.

    The whole group is killed when *timeout* elapses or *cancel* is set, and
    the child is always reaped before returning.
    """
    process = subprocess.Popen(
        list(argv),
        cwd=str(cwd),
        env=dict(env),
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        start_new_session=True,
    )
    deadline = None if timeout is None else time.monotonic() + timeout
    try:
        while True:
            try:
                stdout, stderr = process.communicate(timeout=POLL_INTERVAL)
            except subprocess.TimeoutExpired:
                reason = None
                if cancel is not None and cancel.is_set():
                    reason = "cancelled"
                elif deadline is not None and time.monotonic() >= deadline:
                    reason = "timeout"
                if reason is None:
                    continue
                _kill_group(process)
                stdout, stderr = process.communicate()
                return ProcessResult(
                    returncode=process.returncode,
                    stdout=stdout or "",
                    stderr=stderr or "",
                    terminated=True,
                    reason=reason,
                )
            return ProcessResult(
                returncode=process.returncode,
                stdout=stdout or "",
                stderr=stderr or "",
            )
    except BaseException:
        _kill_group(process)
        process.wait()
        raise


def _kill_group(process: subprocess.Popen[str]) -> None:
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass

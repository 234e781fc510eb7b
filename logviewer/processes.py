"""Detached launch and termination of managed processes."""

from __future__ import annotations

import logging
import os
import signal
import subprocess
from pathlib import Path
from typing import Mapping, Optional, Sequence

from .errors import ProcessLaunchError


def launch_detached(
    command: Sequence[str],
    cwd: Path,
    env: Mapping[str, str],
    log_path: Path,
    logger: logging.Logger,
    component: Optional[str] = None,
) -> subprocess.Popen:
    """Start ``command`` in its own session with output appended to ``log_path``."""
    kwargs = {}
    if os.name == "nt":
        kwargs["creationflags"] = getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0)
    else:
        kwargs["start_new_session"] = True

    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with log_path.open("ab") as log_file:
            process = subprocess.Popen(
                list(command),
                cwd=str(cwd),
                env=dict(env),
                stdin=subprocess.DEVNULL,
                stdout=log_file,
                stderr=subprocess.STDOUT,
                **kwargs,
            )
    except OSError as exc:
        raise ProcessLaunchError(f"Failed to start {' '.join(command)}: {exc}", component=component) from exc

    logger.info("Started %s (PID %s); output in %s", component or command[0], process.pid, log_path)
    return process


def _signal_group(process: subprocess.Popen, sig: int) -> None:
    if os.name == "nt":
        if sig == signal.SIGTERM:
            process.terminate()
        else:
            process.kill()
        return
    try:
        os.killpg(os.getpgid(process.pid), sig)
    except (ProcessLookupError, PermissionError):
        pass


def safe_kill_process(process: Optional[subprocess.Popen], timeout: float = 5) -> None:
    """Terminate a child process and its session if running."""
    if process is None:
        return
    if process.poll() is None:
        _signal_group(process, signal.SIGTERM)
        try:
            process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            _signal_group(process, getattr(signal, "SIGKILL", signal.SIGTERM))
            try:
                process.wait(timeout=1)
            except subprocess.TimeoutExpired:
                pass

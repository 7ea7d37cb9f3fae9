"""Fire-and-forget shell jobs.

A detached job runs in its own session with stdio discarded and its output
redirected to a log file. The caller gets the PID and log path back and does
not wait: the job is expected to outlive the request, and even the process,
that started it. Whether it finished is only observable through the log file
and through the state it changes.
"""

from __future__ import annotations

import os
import shlex
import subprocess  # nosec B404
from dataclasses import dataclass
from pathlib import Path

from openclaw_panel.logging import get_logger
from openclaw_panel.updater.errors import PlatformUnsupportedError
from openclaw_panel.updater.state import now_iso

log = get_logger("openclaw_panel.updater.jobs")


@dataclass(frozen=True)
class DetachedJob:
    """Handle to a launched background job."""

    pid: int
    log_path: str
    started_at: str


def spawn_detached(script: str, log_path: str | Path, *, shell: str = "bash") -> DetachedJob:
    """Launch ``script`` in a new session, logging stdout/stderr to ``log_path``.

    Raises:
        PlatformUnsupportedError: on platforms without POSIX sessions.
    """
    if os.name != "posix":
        raise PlatformUnsupportedError(f"detached jobs need a POSIX platform, not {os.name}")
    log_file = Path(log_path)
    log_file.parent.mkdir(parents=True, exist_ok=True)
    wrapper = f"({script}\n) > {shlex.quote(str(log_file))} 2>&1"
    proc = subprocess.Popen(  # nosec B603
        [shell, "-lc", wrapper],
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        start_new_session=True,
        close_fds=True,
    )
    job = DetachedJob(pid=proc.pid, log_path=str(log_file), started_at=now_iso())
    log.info("detached_job_started", pid=job.pid, log_path=job.log_path)
    return job

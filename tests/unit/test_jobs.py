"""Tests for openclaw_panel.updater.jobs — detached shell jobs."""

from __future__ import annotations

import subprocess
import time
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from openclaw_panel.updater.errors import PlatformUnsupportedError
from openclaw_panel.updater.jobs import DetachedJob, spawn_detached


class TestSpawnDetached:
    def test_launches_in_new_session_with_log_redirect(self, tmp_path: Path) -> None:
        log_path = tmp_path / "logs" / "apply-1.log"
        proc = MagicMock(pid=4242)

        with patch(
            "openclaw_panel.updater.jobs.subprocess.Popen", return_value=proc
        ) as mock_popen:
            job = spawn_detached("echo hello", log_path)

        assert isinstance(job, DetachedJob)
        assert job.pid == 4242
        assert job.log_path == str(log_path)
        assert job.started_at
        assert log_path.parent.is_dir()

        argv = mock_popen.call_args.args[0]
        kwargs = mock_popen.call_args.kwargs
        assert argv[:2] == ["bash", "-lc"]
        assert argv[2].startswith("(echo hello\n)")
        assert argv[2].endswith(f"> {log_path} 2>&1")
        assert kwargs["start_new_session"] is True
        assert kwargs["stdin"] is subprocess.DEVNULL
        assert kwargs["stdout"] is subprocess.DEVNULL
        assert kwargs["stderr"] is subprocess.DEVNULL

    def test_log_path_is_shell_quoted(self, tmp_path: Path) -> None:
        log_path = tmp_path / "with space" / "apply.log"

        with patch(
            "openclaw_panel.updater.jobs.subprocess.Popen", return_value=MagicMock(pid=1)
        ) as mock_popen:
            spawn_detached("true", log_path, shell="sh")

        argv = mock_popen.call_args.args[0]
        assert argv[0] == "sh"
        assert argv[2].endswith(f"> '{log_path}' 2>&1")

    def test_non_posix_platform_raises(self, tmp_path: Path) -> None:
        with (
            patch("openclaw_panel.updater.jobs.os.name", "nt"),
            patch("openclaw_panel.updater.jobs.subprocess.Popen") as mock_popen,
            pytest.raises(PlatformUnsupportedError),
        ):
            spawn_detached("true", tmp_path / "job.log")

        mock_popen.assert_not_called()

    def test_real_job_writes_log(self, tmp_path: Path) -> None:
        log_path = tmp_path / "job.log"

        job = spawn_detached("echo detached-output", log_path, shell="sh")

        for _ in range(50):
            if log_path.exists() and "detached-output" in log_path.read_text():
                break
            time.sleep(0.1)
        assert job.pid > 0
        assert "detached-output" in log_path.read_text()

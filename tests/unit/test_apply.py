"""Tests for openclaw_panel.updater.apply: apply script and detached launch."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import MagicMock, patch

import httpx
import pytest

from openclaw_panel.updater.apply import (
    RECONNECT_AFTER_MS,
    apply_panel_update,
    build_apply_script,
)
from openclaw_panel.updater.errors import NotFoundError
from openclaw_panel.updater.jobs import DetachedJob
from openclaw_panel.updater.panel import stage_panel_update
from openclaw_panel.updater.releases import ReleaseClient
from openclaw_panel.updater.state import pending_path, read_pending_update

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _dirs(tmp_path: Path) -> tuple[Path, Path]:
    app_dir = tmp_path / "app"
    state_dir = tmp_path / "state"
    app_dir.mkdir()
    (app_dir / "package.json").write_text(json.dumps({"version": "0.1.3"}))
    return app_dir, state_dir


def _github(release_tag: str = "v2026.3.0") -> tuple[ReleaseClient, list[httpx.Request]]:
    """ReleaseClient over a fake GitHub that knows ``release_tag`` only."""
    seen: list[httpx.Request] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        path = request.url.path
        if path.endswith(f"/releases/tags/{release_tag}"):
            return httpx.Response(
                200,
                json={
                    "tag_name": release_tag,
                    "tarball_url": f"https://api.github.com/repos/foo/bar/tarball/{release_tag}",
                    "published_at": "2026-03-01T00:00:00Z",
                },
            )
        if "/tarball/" in path:
            return httpx.Response(200, content=b"tgz-bytes")
        return httpx.Response(404, text="Not Found")

    return ReleaseClient(httpx.AsyncClient(transport=httpx.MockTransport(_handler))), seen


def _fake_spawn() -> MagicMock:
    def _spawn(script: str, log_path: str | Path) -> DetachedJob:
        return DetachedJob(pid=4242, log_path=str(log_path), started_at="now")

    return MagicMock(side_effect=_spawn)


# ---------------------------------------------------------------------------
# build_apply_script
# ---------------------------------------------------------------------------


class TestBuildApplyScript:
    def _script(self, **overrides: str) -> str:
        params = {
            "app_dir": "/opt/openclaw-panel",
            "service_name": "openclaw-panel",
            "tarball_path": "/var/lib/openclaw-panel/update/panel-v1.tar.gz",
            "tag": "v1.0.0",
            "release_repo": "foo/bar",
            "pending_file": "/var/lib/openclaw-panel/update/pending.json",
            "applied_at": "2026-03-01T00:00:00+00:00",
        }
        params.update(overrides)
        return build_apply_script(**params)

    def test_step_order(self) -> None:
        script = self._script()
        steps = [
            "set -euo pipefail",
            "TMP_DIR=$(mktemp -d)",
            'tar -xzf "$TARBALL" -C "$TMP_DIR"',
            "release unpack failed",
            "rsync -a --delete",
            "npm install --omit=dev",
            "cat > /opt/openclaw-panel/.panel-release.json <<'JSON'",
            'rm -f "$PENDING"',
            "systemctl daemon-reload || true",
            'systemctl restart "$SERVICE_NAME"',
        ]
        positions = [script.index(step) for step in steps]
        assert positions == sorted(positions)

    def test_extracts_into_temp_dir_before_touching_app_dir(self) -> None:
        script = self._script()
        assert script.index('-C "$TMP_DIR"') < script.index('mkdir -p "$APP_DIR"')
        assert "trap cleanup EXIT" in script

    def test_sync_excludes_and_fallback(self) -> None:
        script = self._script()
        assert "--exclude .git --exclude node_modules --exclude .runtime" in script
        assert "command -v rsync" in script
        assert "! -name .runtime -exec rm -rf {} +" in script
        assert 'cp -a "$SRC_DIR"/. "$APP_DIR"/' in script

    def test_writes_version_marker_payload(self) -> None:
        script = self._script()
        body = script.split("<<'JSON'\n", 1)[1].split("\nJSON", 1)[0]
        assert json.loads(body) == {
            "tag": "v1.0.0",
            "releaseRepo": "foo/bar",
            "appliedAt": "2026-03-01T00:00:00+00:00",
        }

    def test_values_are_shell_quoted(self) -> None:
        script = self._script(
            app_dir="/opt/it's here", service_name="panel; rm -rf /", tag="v1.0.0"
        )
        assert "APP_DIR='/opt/it'\"'\"'s here'" in script
        assert "SERVICE_NAME='panel; rm -rf /'" in script


# ---------------------------------------------------------------------------
# apply_panel_update
# ---------------------------------------------------------------------------


class TestApplyPanelUpdate:
    async def test_non_linux_is_rejected_without_touching_disk(self, tmp_path: Path) -> None:
        state_dir = tmp_path / "state"
        spawn = _fake_spawn()

        with patch("openclaw_panel.updater.apply.spawn_detached", spawn):
            result = await apply_panel_update(state_dir=state_dir, platform="darwin")

        assert result.ok is False
        assert result.message == "apply is Linux-only"
        assert result.requires_reconnect is False
        assert not state_dir.exists()
        spawn.assert_not_called()

    async def test_nothing_staged_and_no_tag_fails(self, tmp_path: Path) -> None:
        app_dir, state_dir = _dirs(tmp_path)
        client, seen = _github()
        spawn = _fake_spawn()

        with patch("openclaw_panel.updater.apply.spawn_detached", spawn):
            result = await apply_panel_update(
                app_dir=app_dir, state_dir=state_dir, release_client=client, platform="linux"
            )

        assert result.ok is False
        assert "stage first" in result.message
        assert seen == []
        spawn.assert_not_called()

    async def test_stage_then_apply_without_restaging(self, tmp_path: Path) -> None:
        app_dir, state_dir = _dirs(tmp_path)
        client, seen = _github()

        staged = await stage_panel_update(
            tag="2026.3.0",
            release_repo="foo/bar",
            app_dir=app_dir,
            state_dir=state_dir,
            release_client=client,
        )
        pending = read_pending_update(state_dir)
        assert staged.ok is True
        assert pending is not None
        assert Path(pending.tarball_path).is_file()
        requests_after_stage = len(seen)

        spawn = _fake_spawn()
        with patch("openclaw_panel.updater.apply.spawn_detached", spawn):
            result = await apply_panel_update(
                release_repo="foo/bar",
                state_dir=state_dir,
                service_name="openclaw-panel",
                release_client=client,
                platform="linux",
            )

        assert len(seen) == requests_after_stage
        assert result.ok is True
        assert result.action == "apply"
        assert result.requires_reconnect is True
        assert result.reconnect_after_ms == RECONNECT_AFTER_MS
        assert result.target_image == "panel:v2026.3.0"
        assert result.old_image == "panel:v0.1.3"
        assert result.log_path
        assert Path(result.log_path).parent == state_dir.resolve()
        assert Path(result.log_path).name.startswith("apply-")

        script, log_path = spawn.call_args.args
        assert log_path == Path(result.log_path)
        assert pending.tarball_path in script
        assert str(pending_path(state_dir.resolve())) in script
        assert str(app_dir.resolve()) in script

    async def test_unprefixed_release_tag_is_written_with_v(self, tmp_path: Path) -> None:
        app_dir, state_dir = _dirs(tmp_path)
        client, _ = _github(release_tag="2026.3.0")
        await stage_panel_update(
            tag="2026.3.0",
            release_repo="foo/bar",
            app_dir=app_dir,
            state_dir=state_dir,
            release_client=client,
        )
        assert read_pending_update(state_dir).tag == "2026.3.0"

        spawn = _fake_spawn()
        with patch("openclaw_panel.updater.apply.spawn_detached", spawn):
            result = await apply_panel_update(state_dir=state_dir, platform="linux")

        script = spawn.call_args.args[0]
        body = script.split("<<'JSON'\n", 1)[1].split("\nJSON", 1)[0]
        assert json.loads(body)["tag"] == "v2026.3.0"
        assert result.target_image == "panel:v2026.3.0"

    async def test_missing_pending_with_tag_stages_first(self, tmp_path: Path) -> None:
        app_dir, state_dir = _dirs(tmp_path)
        client, seen = _github()
        spawn = _fake_spawn()

        with patch("openclaw_panel.updater.apply.spawn_detached", spawn):
            result = await apply_panel_update(
                tag="v2026.3.0",
                release_repo="foo/bar",
                app_dir=app_dir,
                state_dir=state_dir,
                release_client=client,
                platform="linux",
            )

        assert result.ok is True
        assert any("/tarball/" in r.url.path for r in seen)
        assert read_pending_update(state_dir).tag == "v2026.3.0"
        spawn.assert_called_once()

    async def test_pending_with_missing_tarball_is_restaged(self, tmp_path: Path) -> None:
        app_dir, state_dir = _dirs(tmp_path)
        client, seen = _github()
        await stage_panel_update(
            tag="v2026.3.0",
            release_repo="foo/bar",
            app_dir=app_dir,
            state_dir=state_dir,
            release_client=client,
        )
        Path(read_pending_update(state_dir).tarball_path).unlink()
        seen.clear()

        with patch("openclaw_panel.updater.apply.spawn_detached", _fake_spawn()):
            result = await apply_panel_update(
                tag="v2026.3.0",
                release_repo="foo/bar",
                app_dir=app_dir,
                state_dir=state_dir,
                release_client=client,
                platform="linux",
            )

        assert result.ok is True
        assert any("/tarball/" in r.url.path for r in seen)

    async def test_pending_with_missing_tarball_and_no_tag_fails(self, tmp_path: Path) -> None:
        app_dir, state_dir = _dirs(tmp_path)
        state_dir.mkdir()
        pending_path(state_dir).write_text(
            json.dumps({"tag": "v1", "tarballPath": str(state_dir / "gone.tar.gz")})
        )

        with patch("openclaw_panel.updater.apply.spawn_detached", _fake_spawn()) as spawn:
            result = await apply_panel_update(
                app_dir=app_dir, state_dir=state_dir, platform="linux"
            )

        assert result.ok is False
        assert "stage first" in result.message
        spawn.assert_not_called()

    async def test_stage_failure_propagates(self, tmp_path: Path) -> None:
        app_dir, state_dir = _dirs(tmp_path)
        client, _ = _github()

        with (
            patch("openclaw_panel.updater.apply.spawn_detached", _fake_spawn()) as spawn,
            pytest.raises(NotFoundError, match="release not found"),
        ):
            await apply_panel_update(
                tag="v0.0.1",
                release_repo="foo/bar",
                app_dir=app_dir,
                state_dir=state_dir,
                release_client=client,
                platform="linux",
            )

        spawn.assert_not_called()

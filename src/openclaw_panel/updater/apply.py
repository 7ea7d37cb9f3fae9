"""Apply a staged panel release in place.

The panel cannot replace itself from inside the request that asked for it:
the restart at the end kills the serving process. So ``apply_panel_update``
generates a shell procedure, launches it as a detached job and returns at
once with ``requires_reconnect=True``.

Known limitation: failures inside the detached procedure happen after the
response was sent. They are only visible in the job's log file
(``<state_dir>/apply-<ms>.log``) and in the next check still reporting the
old version.
"""

from __future__ import annotations

import json
import shlex
import sys
import time
from pathlib import Path

from openclaw_panel.config import (
    DEFAULT_PANEL_RELEASE_REPO,
    resolve_app_dir,
    resolve_service_name,
    resolve_state_dir,
)
from openclaw_panel.logging import get_logger
from openclaw_panel.updater.jobs import spawn_detached
from openclaw_panel.updater.models import MutationResult, VersionMarker
from openclaw_panel.updater.panel import read_panel_current_version, stage_panel_update
from openclaw_panel.updater.releases import ReleaseClient
from openclaw_panel.updater.state import (
    now_iso,
    pending_path,
    read_pending_update,
    version_marker_path,
)
from openclaw_panel.updater.versions import normalize_repo, normalize_tag

log = get_logger("openclaw_panel.updater.apply")

RECONNECT_AFTER_MS = 12000
BUILD_OUTPUT_DIR = ".runtime"
SYNC_EXCLUDES = (".git", "node_modules", BUILD_OUTPUT_DIR)


def build_apply_script(
    *,
    app_dir: str | Path,
    service_name: str,
    tarball_path: str | Path,
    tag: str,
    release_repo: str,
    pending_file: str | Path,
    applied_at: str | None = None,
) -> str:
    """Return the bash procedure that installs a staged tarball.

    Extraction happens in a fresh temp directory; the live ``app_dir`` is only
    touched once a top-level release directory was found.
    """
    q = shlex.quote
    marker = VersionMarker(tag=tag, release_repo=release_repo, applied_at=applied_at or now_iso())
    marker_json = json.dumps(marker.to_dict(), indent=2)
    excludes = " ".join(f"--exclude {q(name)}" for name in SYNC_EXCLUDES)

    lines = [
        "set -euo pipefail",
        f"APP_DIR={q(str(app_dir))}",
        f"SERVICE_NAME={q(service_name)}",
        f"TARBALL={q(str(tarball_path))}",
        f"PENDING={q(str(pending_file))}",
        'TMP_DIR=$(mktemp -d)',
        'cleanup(){ rm -rf "$TMP_DIR"; }',
        "trap cleanup EXIT",
        'tar -xzf "$TARBALL" -C "$TMP_DIR"',
        'SRC_DIR=$(find "$TMP_DIR" -mindepth 1 -maxdepth 1 -type d | head -n 1)',
        "if [ -z \"$SRC_DIR\" ]; then echo 'release unpack failed' >&2; exit 1; fi",
        'mkdir -p "$APP_DIR"',
        "if command -v rsync >/dev/null 2>&1; then",
        f'  rsync -a --delete {excludes} "$SRC_DIR"/ "$APP_DIR"/',
        "else",
        f'  find "$APP_DIR" -mindepth 1 -maxdepth 1 ! -name {q(BUILD_OUTPUT_DIR)} '
        "-exec rm -rf {} +",
        '  cp -a "$SRC_DIR"/. "$APP_DIR"/',
        "fi",
        'cd "$APP_DIR"',
        "npm install --omit=dev",
        f"cat > {q(str(version_marker_path(app_dir)))} <<'JSON'",
        marker_json,
        "JSON",
        'rm -f "$PENDING"',
        "systemctl daemon-reload || true",
        'systemctl restart "$SERVICE_NAME"',
    ]
    return "\n".join(lines)


async def apply_panel_update(
    *,
    tag: str = "",
    release_repo: str = DEFAULT_PANEL_RELEASE_REPO,
    github_token: str = "",
    app_dir: str | Path = "",
    state_dir: str | Path = "",
    service_name: str = "",
    release_client: ReleaseClient | None = None,
    platform: str | None = None,
) -> MutationResult:
    """Install the staged release (staging ``tag`` first if needed) and restart.

    Returns immediately after launching the detached install job.
    """
    if not (platform or sys.platform).startswith("linux"):
        return MutationResult(
            ok=False,
            action="apply",
            rolled_back=False,
            requires_reconnect=False,
            message="apply is Linux-only",
        )

    final_state_dir = resolve_state_dir(str(state_dir))
    final_state_dir.mkdir(parents=True, exist_ok=True)

    pending = read_pending_update(final_state_dir)
    if pending is None:
        if not tag.strip():
            return MutationResult(
                ok=False,
                action="apply",
                rolled_back=False,
                requires_reconnect=False,
                message="no staged update; stage first",
            )
        log.info("panel_apply_staging_first", tag=tag)
        await stage_panel_update(
            tag=tag,
            release_repo=release_repo,
            github_token=github_token,
            app_dir=app_dir,
            state_dir=final_state_dir,
            release_client=release_client,
        )
        pending = read_pending_update(final_state_dir)
        if pending is None:
            return MutationResult(
                ok=False,
                action="apply",
                rolled_back=False,
                requires_reconnect=False,
                message="no staged update found after staging",
            )

    final_app_dir = resolve_app_dir(pending.app_dir or str(app_dir))
    final_service = resolve_service_name(service_name)
    final_tag = normalize_tag(pending.tag or tag) or "unknown"
    final_repo = normalize_repo(pending.release_repo or release_repo, DEFAULT_PANEL_RELEASE_REPO)

    script = build_apply_script(
        app_dir=final_app_dir,
        service_name=final_service,
        tarball_path=pending.tarball_path,
        tag=final_tag,
        release_repo=final_repo,
        pending_file=pending_path(final_state_dir),
    )
    log_path = final_state_dir / f"apply-{int(time.time() * 1000)}.log"
    job = spawn_detached(script, log_path)

    current_tag = read_panel_current_version(final_app_dir)
    log.info(
        "panel_apply_started",
        tag=final_tag,
        current=current_tag,
        service=final_service,
        pid=job.pid,
        log_path=job.log_path,
    )
    return MutationResult(
        ok=True,
        action="apply",
        target_image=f"panel:{final_tag}",
        old_image=f"panel:{current_tag}" if current_tag else "",
        rolled_back=False,
        requires_reconnect=True,
        reconnect_after_ms=RECONNECT_AFTER_MS,
        message=f"applying {final_tag} and restarting the panel service; reconnect shortly",
        log_path=job.log_path,
    )

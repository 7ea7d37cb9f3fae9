"""Panel release checks and staging.

Staging downloads a release archive into the state directory and records it
in the pending marker. It never touches the live installation and never
restarts anything; :mod:`openclaw_panel.updater.apply` does that.
"""

from __future__ import annotations

from pathlib import Path

from openclaw_panel.config import DEFAULT_PANEL_RELEASE_REPO, resolve_app_dir, resolve_state_dir
from openclaw_panel.logging import get_logger
from openclaw_panel.updater.errors import UpdaterError
from openclaw_panel.updater.models import MutationResult, PendingUpdate, UpdateStatus
from openclaw_panel.updater.releases import ReleaseClient
from openclaw_panel.updater.state import (
    now_iso,
    read_json_safe,
    read_version_marker,
    write_pending_update,
)
from openclaw_panel.updater.versions import (
    normalize_repo,
    normalize_tag,
    safe_tag_for_filename,
    strip_leading_v,
)

log = get_logger("openclaw_panel.updater.panel")


def read_panel_current_version(app_dir: str | Path) -> str:
    """Return the installed panel tag, or ``""`` when unknown.

    The version marker written by the apply script wins; older installs
    without one fall back to ``package.json``.
    """
    marker = read_version_marker(app_dir)
    if marker is not None:
        return marker.tag

    package_json = read_json_safe(Path(app_dir) / "package.json") or {}
    version = package_json.get("version")
    if isinstance(version, str) and version.strip():
        return normalize_tag(version)
    return ""


def artifact_path_for(state_dir: str | Path, tag: str) -> Path:
    return Path(state_dir) / f"panel-{safe_tag_for_filename(tag)}.tar.gz"


async def check_panel_update(
    *,
    release_repo: str = DEFAULT_PANEL_RELEASE_REPO,
    github_token: str = "",
    app_dir: str | Path = "",
    release_client: ReleaseClient | None = None,
) -> UpdateStatus:
    """Compare the installed panel version with the latest release.

    Release API failures degrade to ``warning`` instead of raising.

    Raises:
        ValidationError: if ``release_repo`` is malformed.
    """
    final_repo = normalize_repo(release_repo, DEFAULT_PANEL_RELEASE_REPO)
    final_app_dir = resolve_app_dir(str(app_dir))
    current_tag = read_panel_current_version(final_app_dir)
    client = release_client or ReleaseClient()

    try:
        latest = await client.fetch_latest_release(final_repo, github_token)
    except UpdaterError as exc:
        log.warning("panel_update_check_failed", repo=final_repo, error=str(exc))
        return UpdateStatus(
            ok=True,
            current_tag=current_tag,
            latest_tag="",
            update_available=False,
            warning=str(exc),
            release_repo=final_repo,
            latest_published_at=None,
        )

    # An unknown current version means "assume an update is available"
    update_available = (
        strip_leading_v(current_tag) != strip_leading_v(latest.tag) if current_tag else True
    )
    return UpdateStatus(
        ok=True,
        current_tag=current_tag,
        latest_tag=latest.tag,
        update_available=update_available,
        warning="",
        release_repo=final_repo,
        latest_published_at=latest.published_at or None,
    )


async def stage_panel_update(
    *,
    tag: str = "",
    release_repo: str = DEFAULT_PANEL_RELEASE_REPO,
    github_token: str = "",
    app_dir: str | Path = "",
    state_dir: str | Path = "",
    release_client: ReleaseClient | None = None,
) -> MutationResult:
    """Download a panel release and record it as the pending update.

    Resolves ``tag`` (either ``v`` variant) or the latest release when no tag
    is given. Failures (network, 404, disk) propagate to the caller.
    """
    final_repo = normalize_repo(release_repo, DEFAULT_PANEL_RELEASE_REPO)
    final_app_dir = resolve_app_dir(str(app_dir))
    final_state_dir = resolve_state_dir(str(state_dir))
    final_state_dir.mkdir(parents=True, exist_ok=True)
    client = release_client or ReleaseClient()

    if tag.strip():
        release = await client.fetch_release_by_tag(final_repo, tag, github_token)
    else:
        release = await client.fetch_latest_release(final_repo, github_token)

    current_tag = read_panel_current_version(final_app_dir)
    tarball_path = artifact_path_for(final_state_dir, release.tag)
    await client.download_artifact(release.tarball_url, tarball_path, github_token)

    pending = PendingUpdate(
        tag=release.tag,
        release_repo=final_repo,
        app_dir=str(final_app_dir),
        tarball_path=str(tarball_path),
        staged_at=now_iso(),
        published_at=release.published_at,
    )
    write_pending_update(final_state_dir, pending)
    log.info(
        "panel_update_staged",
        tag=release.tag,
        repo=final_repo,
        tarball=str(tarball_path),
        current=current_tag,
    )

    return MutationResult(
        ok=True,
        action="stage",
        target_image=f"panel:{release.tag}",
        old_image=f"panel:{current_tag}" if current_tag else "",
        rolled_back=False,
        requires_restart=True,
        message=f"release {release.tag} is staged; apply it to restart the panel on the new version",
    )

"""Target-scoped entry points for the route layer.

``UpdateOrchestrator`` dispatches check/upgrade/rollback/apply to the bot or
panel implementation and serialises mutations per target, so two concurrent
stages cannot race on the same pending marker.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import httpx

from openclaw_panel.config import (
    DEFAULT_BOT_RELEASE_REPO,
    DEFAULT_PANEL_RELEASE_REPO,
    Settings,
    get_settings,
)
from openclaw_panel.logging import get_logger
from openclaw_panel.updater.apply import apply_panel_update
from openclaw_panel.updater.bot import check_bot_update, mutate_bot_update
from openclaw_panel.updater.commands import RunCmd, run_command
from openclaw_panel.updater.errors import (
    ExternalAPIError,
    NotFoundError,
    ReleaseParseError,
    ValidationError,
)
from openclaw_panel.updater.models import MutationResult, UpdateStatus
from openclaw_panel.updater.panel import check_panel_update, stage_panel_update
from openclaw_panel.updater.releases import ReleaseClient
from openclaw_panel.updater.versions import normalize_repo

log = get_logger("openclaw_panel.updater.orchestrator")

TARGETS = ("bot", "panel")

# Operational failures reported as ok=False instead of raised
_OPERATIONAL_ERRORS = (ExternalAPIError, NotFoundError, ReleaseParseError, OSError)


class UpdateOrchestrator:
    """Runs update operations for the bot and the panel.

    Typical flow for the panel:
    1. ``check("panel")`` to populate the dashboard
    2. ``upgrade("panel", tag)`` to stage a release
    3. ``apply("panel")`` to install it and restart
    """

    def __init__(
        self,
        settings: Settings | None = None,
        run_cmd: RunCmd | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._run_cmd: RunCmd = run_cmd or run_command
        self._releases = ReleaseClient(
            http_client, timeout=self._settings.http_timeout_seconds
        )
        self._locks = {target: asyncio.Lock() for target in TARGETS}

    def is_busy(self, target: str) -> bool:
        return self._locks[self._target(target)].locked()

    @staticmethod
    def _target(target: str) -> str:
        value = (target or "bot").strip().lower()
        if value not in TARGETS:
            raise ValidationError(f"unknown update target: {target!r}")
        return value

    def _release_repo(self, target: str) -> str:
        if target == "panel":
            return normalize_repo(self._settings.panel_release_repo, DEFAULT_PANEL_RELEASE_REPO)
        return normalize_repo(self._settings.bot_release_repo, DEFAULT_BOT_RELEASE_REPO)

    # ------------------------------------------------------------------
    # Check
    # ------------------------------------------------------------------

    async def check(self, target: str) -> UpdateStatus:
        """Check for a newer version; recoverable failures become ``warning``."""
        target = self._target(target)
        if target == "panel":
            return await check_panel_update(
                release_repo=self._release_repo(target),
                github_token=self._settings.github_token_value,
                app_dir=self._settings.panel_app_dir,
                release_client=self._releases,
            )
        return await check_bot_update(self._run_cmd, self._release_repo(target))

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def upgrade(self, target: str, tag: str = "") -> MutationResult:
        """Stage a panel release, or upgrade the bot in place."""
        target = self._target(target)
        if target == "panel":
            return await self._locked(target, "stage", lambda: self._stage(tag, "stage"))
        return await self._locked(
            target, "upgrade", lambda: mutate_bot_update(self._run_cmd, "upgrade", tag)
        )

    async def rollback(self, target: str, tag: str = "") -> MutationResult:
        """Roll back to ``tag``.

        The panel rollback only stages the older release; ``apply`` finishes
        it.

        Raises:
            ValidationError: for a panel rollback without a tag.
        """
        target = self._target(target)
        if target == "panel":
            if not tag.strip():
                raise ValidationError("rollback requires a target tag")
            return await self._locked(
                target, "rollback-stage", lambda: self._stage(tag, "rollback-stage")
            )
        return await self._locked(
            target, "rollback", lambda: mutate_bot_update(self._run_cmd, "rollback", tag)
        )

    async def apply(self, target: str, tag: str = "") -> MutationResult:
        """Apply the staged panel release, or upgrade the bot."""
        target = self._target(target)
        if target == "panel":
            return await self._locked(target, "apply", lambda: self._apply_panel(tag))
        return await self._locked(
            target, "upgrade", lambda: mutate_bot_update(self._run_cmd, "upgrade", tag)
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _locked(
        self,
        target: str,
        action: str,
        operation: Callable[[], Awaitable[MutationResult]],
    ) -> MutationResult:
        lock = self._locks[target]
        if lock.locked():
            log.warning("update_already_in_progress", target=target, action=action)
            return MutationResult(
                ok=False,
                action=action,
                rolled_back=False,
                message=f"{target} update already in progress",
                target=target,
            )
        async with lock:
            result: MutationResult = await operation()
        result.target = target
        return result

    async def _stage(self, tag: str, action: str) -> MutationResult:
        try:
            result = await stage_panel_update(
                tag=tag,
                release_repo=self._release_repo("panel"),
                github_token=self._settings.github_token_value,
                app_dir=self._settings.panel_app_dir,
                state_dir=self._settings.panel_update_state_dir,
                release_client=self._releases,
            )
        except _OPERATIONAL_ERRORS as exc:
            log.warning("panel_stage_failed", tag=tag, action=action, error=str(exc))
            return MutationResult(ok=False, action=action, rolled_back=False, message=str(exc))

        if action == "rollback-stage":
            result.action = action
            result.message = (
                f"rollback release {tag.strip()} is staged; apply it to complete the rollback"
            )
        return result

    async def _apply_panel(self, tag: str) -> MutationResult:
        try:
            return await apply_panel_update(
                tag=tag,
                release_repo=self._release_repo("panel"),
                github_token=self._settings.github_token_value,
                app_dir=self._settings.panel_app_dir,
                state_dir=self._settings.panel_update_state_dir,
                service_name=self._settings.panel_service_name,
                release_client=self._releases,
            )
        except _OPERATIONAL_ERRORS as exc:
            log.warning("panel_apply_failed", tag=tag, error=str(exc))
            return MutationResult(
                ok=False,
                action="apply",
                rolled_back=False,
                requires_reconnect=False,
                message=str(exc),
            )

"""Bot update driver.

Wraps the ``openclaw`` CLI: reads the installed version, probes
``openclaw update status`` and performs upgrades/rollbacks. The bot process
is the source of truth, so nothing is persisted here.

Bot tags are always handled without a leading ``v`` (the CLI convention).
"""

from __future__ import annotations

from openclaw_panel.config import DEFAULT_BOT_RELEASE_REPO
from openclaw_panel.logging import get_logger
from openclaw_panel.updater.commands import RunCmd
from openclaw_panel.updater.errors import ExecutionError, ValidationError
from openclaw_panel.updater.models import MutationResult, UpdateStatus
from openclaw_panel.updater.versions import (
    parse_openclaw_update_status,
    parse_version_from_text,
    strip_leading_v,
)

log = get_logger("openclaw_panel.updater.bot")

BOT_CLI = "openclaw"
VERSION_TIMEOUT = 15.0
STATUS_TIMEOUT = 30.0
UPDATE_TIMEOUT = 20 * 60.0
POST_CHECK_TIMEOUT = 120.0

BOT_ACTIONS = ("upgrade", "rollback")

# (label, args) run in order after a successful version change
POST_CHECKS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("doctor", ("doctor",)),
    ("gateway restart", ("gateway", "restart")),
    ("health", ("health",)),
)


async def get_current_bot_version(run_cmd: RunCmd) -> str:
    """Return the installed bot version from ``openclaw --version``.

    Raises:
        ExecutionError: if the CLI is missing or exits non-zero.
    """
    result = await run_cmd(BOT_CLI, ["--version"], VERSION_TIMEOUT)
    if not result.ok:
        raise ExecutionError(
            result.error_text("unable to read the current openclaw version"), result=result
        )
    return parse_version_from_text(result.stdout)


async def check_bot_update(
    run_cmd: RunCmd, release_repo: str = DEFAULT_BOT_RELEASE_REPO
) -> UpdateStatus:
    """Check whether a newer bot version is available.

    A failing ``openclaw --version`` is fatal. A failing status probe is not:
    the check still succeeds with ``update_available=False`` and the probe's
    error text in ``warning``.
    """
    current_tag = await get_current_bot_version(run_cmd)

    status_result = await run_cmd(BOT_CLI, ["update", "status"], STATUS_TIMEOUT)
    if not status_result.ok:
        warning = status_result.error_text("unable to check update status")
        log.warning("bot_update_status_failed", current=current_tag, warning=warning)
        return UpdateStatus(
            ok=True,
            current_tag=current_tag,
            latest_tag="",
            update_available=False,
            warning=warning,
            install_method="global",
            strategy="package-manager",
            release_repo=release_repo,
        )

    parsed = parse_openclaw_update_status(status_result.stdout)
    update_available = parsed.update_available
    # A plain version mismatch counts even when the CLI wording was not recognised
    if not update_available and parsed.latest_tag and current_tag:
        update_available = strip_leading_v(parsed.latest_tag) != strip_leading_v(current_tag)

    log.info(
        "bot_update_checked",
        current=current_tag,
        latest=parsed.latest_tag,
        update_available=update_available,
        install_method=parsed.install_method,
    )
    return UpdateStatus(
        ok=True,
        current_tag=current_tag,
        latest_tag=parsed.latest_tag,
        update_available=update_available,
        warning="",
        install_method=parsed.install_method,
        strategy=parsed.strategy,
        release_repo=release_repo,
    )


async def run_post_checks(run_cmd: RunCmd) -> list[str]:
    """Run the post-change checks and return a warning per failed check."""
    warnings: list[str] = []
    for label, args in POST_CHECKS:
        result = await run_cmd(BOT_CLI, list(args), POST_CHECK_TIMEOUT)
        if not result.ok:
            warnings.append(f"{label}: {result.error_text('failed')}")
    return warnings


async def mutate_bot_update(run_cmd: RunCmd, action: str = "upgrade", tag: str = "") -> MutationResult:
    """Upgrade or roll back the bot through ``openclaw update``.

    Operational failures come back as ``ok=False`` results; only an unknown
    ``action`` raises.

    Raises:
        ValidationError: if ``action`` is not ``upgrade`` or ``rollback``.
    """
    if action not in BOT_ACTIONS:
        raise ValidationError(f"unsupported bot update action: {action!r}")

    target_tag = strip_leading_v(tag)
    if action == "rollback" and not target_tag:
        return MutationResult(
            ok=False,
            action=action,
            rolled_back=False,
            message="rollback requires a target tag",
        )

    args = ["update", "--yes"]
    if target_tag:
        args.extend(["--tag", target_tag])

    log.info("bot_update_started", action=action, tag=target_tag or "latest")
    result = await run_cmd(BOT_CLI, args, UPDATE_TIMEOUT)
    if not result.ok:
        message = result.error_text("openclaw update failed")
        log.warning("bot_update_failed", action=action, tag=target_tag, error=message[:500])
        return MutationResult(ok=False, action=action, rolled_back=False, message=message)

    try:
        current_tag = await get_current_bot_version(run_cmd)
    except ExecutionError:
        current_tag = target_tag

    warnings = await run_post_checks(run_cmd)
    base = "openclaw rollback succeeded" if action == "rollback" else "openclaw update succeeded"
    message = base
    if warnings:
        message = f"{base}; post-check warnings: {' | '.join(warnings)}"

    log.info("bot_update_succeeded", action=action, version=current_tag, warnings=len(warnings))
    return MutationResult(
        ok=True,
        action=action,
        target_image=f"openclaw:{current_tag or target_tag or 'latest'}",
        old_image="",
        rolled_back=False,
        requires_restart=False,
        message=message,
    )

"""Command-line entry point for the update orchestrator.

Usage:
    python -m openclaw_panel check --target panel
    python -m openclaw_panel upgrade --target bot --tag 2026.2.19
    python -m openclaw_panel rollback --target panel --tag v0.3.2
    python -m openclaw_panel apply --target panel
"""

import argparse
import asyncio
import json
import sys

from openclaw_panel.logging import get_logger, setup_logging
from openclaw_panel.updater import UpdateOrchestrator
from openclaw_panel.updater.errors import UpdaterError
from openclaw_panel.updater.orchestrator import TARGETS

ACTIONS = ("check", "upgrade", "rollback", "apply")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="openclaw-panel-update",
        description="Check, stage, apply or roll back bot and panel releases.",
    )
    parser.add_argument("action", choices=ACTIONS)
    parser.add_argument("--target", choices=TARGETS, default="bot")
    parser.add_argument("--tag", default="", help="Release tag (required for rollback)")
    return parser


async def run(action: str, target: str, tag: str) -> dict[str, object]:
    orchestrator = UpdateOrchestrator()
    if action == "check":
        return (await orchestrator.check(target)).to_dict()
    if action == "upgrade":
        return (await orchestrator.upgrade(target, tag)).to_dict()
    if action == "rollback":
        return (await orchestrator.rollback(target, tag)).to_dict()
    return (await orchestrator.apply(target, tag)).to_dict()


def main(argv: list[str] | None = None) -> int:
    """Run one update action and print its result as JSON."""
    args = build_parser().parse_args(argv)
    setup_logging()
    log = get_logger("openclaw_panel.main")

    try:
        result = asyncio.run(run(args.action, args.target, args.tag))
    except UpdaterError as exc:
        log.error("update_command_failed", action=args.action, target=args.target, error=str(exc))
        print(json.dumps({"ok": False, "message": str(exc)}, indent=2))
        return 2

    print(json.dumps(result, indent=2))
    return 0 if result.get("ok") else 1


if __name__ == "__main__":
    sys.exit(main())

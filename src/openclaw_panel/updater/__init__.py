"""Update and rollback orchestration for the bot and the panel.

Checks GitHub releases and the ``openclaw`` CLI for newer versions, stages
panel releases on disk, applies them through a detached install job, and
drives ``openclaw update`` for bot upgrades and rollbacks.
"""

from openclaw_panel.updater.orchestrator import UpdateOrchestrator

__all__ = ["UpdateOrchestrator"]

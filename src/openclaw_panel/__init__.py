"""OpenClaw panel: update and rollback orchestration for the bot and the panel."""

__version__ = "0.4.0"

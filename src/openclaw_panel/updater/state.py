"""On-disk marker records.

Two small JSON files carry all persisted update state:

- ``<state_dir>/pending.json``: the staged, not yet applied release
  (:class:`PendingUpdate`);
- ``<app_dir>/.panel-release.json``: the installed panel release
  (:class:`VersionMarker`).

Readers treat missing or corrupt files as "no record" and never raise.
"""

from __future__ import annotations

import json
import os
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from openclaw_panel.logging import get_logger
from openclaw_panel.updater.models import PendingUpdate, VersionMarker

log = get_logger("openclaw_panel.updater.state")

PENDING_FILENAME = "pending.json"
VERSION_MARKER_FILENAME = ".panel-release.json"
MARKER_FILE_MODE = 0o600


def now_iso() -> str:
    return datetime.now(UTC).isoformat()


def pending_path(state_dir: str | Path) -> Path:
    return Path(state_dir) / PENDING_FILENAME


def version_marker_path(app_dir: str | Path) -> Path:
    return Path(app_dir) / VERSION_MARKER_FILENAME


def read_json_safe(path: str | Path) -> dict[str, Any] | None:
    """Return the JSON object stored at ``path``, or None if unreadable."""
    try:
        raw = Path(path).read_text(encoding="utf-8")
    except OSError:
        return None
    try:
        data = json.loads(raw)
    except ValueError:
        log.warning("marker_file_corrupt", path=str(path))
        return None
    if not isinstance(data, dict):
        return None
    return data


def write_json_atomic(path: str | Path, data: dict[str, Any], mode: int = MARKER_FILE_MODE) -> None:
    """Write ``data`` to a sibling temp file and rename it over ``path``."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = target.with_name(target.name + ".tmp")
    fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
    with os.fdopen(fd, "w", encoding="utf-8") as fh:
        fh.write(json.dumps(data, indent=2) + "\n")
    os.chmod(tmp_path, mode)
    tmp_path.replace(target)


def read_pending_update(state_dir: str | Path) -> PendingUpdate | None:
    """Return the staged update, or None when nothing usable is staged.

    A marker whose tarball no longer exists counts as not staged.
    """
    path = pending_path(state_dir)
    data = read_json_safe(path)
    if data is None:
        return None
    try:
        pending = PendingUpdate.from_dict(data)
    except ValueError:
        log.warning("pending_update_invalid", path=str(path))
        return None
    if not Path(pending.tarball_path).is_file():
        log.warning(
            "pending_update_tarball_missing",
            path=str(path),
            tarball=pending.tarball_path,
        )
        return None
    return pending


def write_pending_update(state_dir: str | Path, pending: PendingUpdate) -> Path:
    path = pending_path(state_dir)
    write_json_atomic(path, pending.to_dict())
    return path


def read_version_marker(app_dir: str | Path) -> VersionMarker | None:
    data = read_json_safe(version_marker_path(app_dir))
    if data is None:
        return None
    marker = VersionMarker.from_dict(data)
    return marker if marker.tag else None

"""Data records shared by the update and rollback operations.

Marker records are persisted as JSON using the camelCase keys the installed
panel already writes, so ``from_dict``/``to_dict`` translate between the two
spellings.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one CLI invocation."""

    ok: bool
    code: int | None = 0
    stdout: str = ""
    stderr: str = ""
    message: str = ""

    def error_text(self, default: str = "") -> str:
        """Return the most useful failure description available."""
        return (self.stderr or self.message or default).strip()


@dataclass(frozen=True)
class ReleaseRef:
    """One fetchable release artifact."""

    tag: str
    tarball_url: str
    published_at: str
    html_url: str
    release_repo: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "tag": self.tag,
            "tarball_url": self.tarball_url,
            "published_at": self.published_at,
            "html_url": self.html_url,
            "release_repo": self.release_repo,
        }


@dataclass(frozen=True)
class BotStatusTable:
    """Best-effort reading of ``openclaw update status`` output."""

    install_raw: str = ""
    update_raw: str = ""
    install_method: str = "global"
    strategy: str = "package-manager"
    latest_tag: str = ""
    update_available: bool = False


@dataclass
class UpdateStatus:
    """Result of an update check for either target."""

    ok: bool
    current_tag: str
    latest_tag: str = ""
    update_available: bool = False
    warning: str = ""
    install_method: str = ""
    strategy: str = ""
    release_repo: str = ""
    latest_published_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "current_tag": self.current_tag,
            "latest_tag": self.latest_tag,
            "update_available": self.update_available,
            "warning": self.warning,
            "install_method": self.install_method,
            "strategy": self.strategy,
            "release_repo": self.release_repo,
            "latest_published_at": self.latest_published_at,
        }


@dataclass
class MutationResult:
    """Uniform result of stage, apply, upgrade and rollback."""

    ok: bool
    action: str
    message: str
    target_image: str = ""
    old_image: str = ""
    rolled_back: bool = False
    requires_restart: bool = False
    requires_reconnect: bool = False
    reconnect_after_ms: int | None = None
    log_path: str | None = None
    target: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "ok": self.ok,
            "action": self.action,
            "message": self.message,
            "target_image": self.target_image,
            "old_image": self.old_image,
            "rolled_back": self.rolled_back,
            "requires_restart": self.requires_restart,
            "requires_reconnect": self.requires_reconnect,
            "reconnect_after_ms": self.reconnect_after_ms,
        }
        if self.log_path:
            data["log_path"] = self.log_path
        if self.target:
            data["target"] = self.target
        return data


@dataclass(frozen=True)
class PendingUpdate:
    """A staged, not yet applied panel release."""

    tag: str
    release_repo: str
    app_dir: str
    tarball_path: str
    staged_at: str
    published_at: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PendingUpdate:
        """Build from the on-disk JSON payload.

        Raises:
            ValueError: if ``tarballPath`` is missing or empty.
        """
        tarball_path = _text(data.get("tarballPath"))
        if not tarball_path:
            raise ValueError("pending update is missing tarballPath")
        return cls(
            tag=_text(data.get("tag")),
            release_repo=_text(data.get("releaseRepo")),
            app_dir=_text(data.get("appDir")),
            tarball_path=tarball_path,
            staged_at=_text(data.get("stagedAt")),
            published_at=_text(data.get("publishedAt")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "tag": self.tag,
            "releaseRepo": self.release_repo,
            "appDir": self.app_dir,
            "tarballPath": self.tarball_path,
            "stagedAt": self.staged_at,
            "publishedAt": self.published_at,
        }


@dataclass(frozen=True)
class VersionMarker:
    """What panel release is installed in an app directory."""

    tag: str
    release_repo: str = ""
    applied_at: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VersionMarker:
        return cls(
            tag=_text(data.get("tag")),
            release_repo=_text(data.get("releaseRepo")),
            applied_at=_text(data.get("appliedAt")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "tag": self.tag,
            "releaseRepo": self.release_repo,
            "appliedAt": self.applied_at,
        }

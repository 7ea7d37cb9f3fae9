"""Error taxonomy for update operations."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from openclaw_panel.updater.models import CommandResult


class UpdaterError(Exception):
    """Base class for all updater errors."""


class ValidationError(UpdaterError):
    """Raised for invalid input before any external call is made."""


class ExternalAPIError(UpdaterError):
    """Raised when the release API or an artifact download fails.

    ``status`` is the HTTP status code, or None for transport failures.
    """

    def __init__(self, message: str, *, status: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class NotFoundError(UpdaterError):
    """Raised when a release cannot be found under any tag variant."""


class ReleaseParseError(UpdaterError):
    """Raised when release metadata is not JSON or lacks required fields."""


class ExecutionError(UpdaterError):
    """Raised when a required CLI command exits non-zero."""

    def __init__(self, message: str, *, result: CommandResult | None = None) -> None:
        super().__init__(message)
        self.result = result


class PlatformUnsupportedError(UpdaterError):
    """Raised when an operation is attempted on an unsupported platform."""

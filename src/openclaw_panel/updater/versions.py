"""Version tag helpers and ``openclaw update status`` parsing.

Everything here is pure: no I/O, and the parsers never raise on unexpected
input. The status table printed by the CLI has no published schema, so the
parser matches rows loosely and falls back to empty/False values.
"""

from __future__ import annotations

import re

from openclaw_panel.updater.errors import ValidationError
from openclaw_panel.updater.models import BotStatusTable

_REPO_RE = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")

# Date-shaped release versions: 2026.2.19 or 2026.2.19-2
_DATE_VERSION = r"[0-9]{4}\.[0-9]+\.[0-9]+(?:-[0-9A-Za-z._-]+)?"
_DATE_VERSION_RE = re.compile(f"({_DATE_VERSION})")

_INSTALL_ROW_RE = re.compile(r"│\s*Install\s*│\s*([^│\n]+)\s*│", re.IGNORECASE)
_UPDATE_ROW_RE = re.compile(r"│\s*Update\s*│\s*([^│\n]+)\s*│", re.IGNORECASE)

_SOURCE_INSTALL_RE = re.compile(r"(git|source|checkout|workspace|repo)")

_AVAILABLE_RE = re.compile(r"available", re.IGNORECASE)
_UPDATE_AVAILABLE_RE = re.compile(r"update available", re.IGNORECASE)
_UP_TO_DATE_RE = re.compile(r"up[\s-]?to[\s-]?date", re.IGNORECASE)
_ALREADY_UP_TO_DATE_RE = re.compile(r"already up[\s-]?to[\s-]?date", re.IGNORECASE)

# Order matters: the most explicit hint wins.
_LATEST_TAG_PATTERNS = (
    re.compile(r"npm update\s+([0-9][0-9A-Za-z._-]*)", re.IGNORECASE),
    re.compile(r"latest(?:\s+version)?\s*[:：]?\s*([0-9][0-9A-Za-z._-]*)", re.IGNORECASE),
    re.compile(rf"available[^\n]*\b({_DATE_VERSION})", re.IGNORECASE),
    re.compile(rf"({_DATE_VERSION})", re.IGNORECASE),
)


def strip_leading_v(text: str | None) -> str:
    """Remove one leading ``v``/``V`` from a trimmed tag."""
    value = (text or "").strip()
    if value[:1] in ("v", "V"):
        return value[1:]
    return value


def normalize_tag(text: str | None) -> str:
    """Return the tag with exactly one leading ``v`` (empty stays empty)."""
    value = (text or "").strip()
    if not value:
        return ""
    if value[:1] in ("v", "V"):
        return value
    return f"v{value}"


def normalize_repo(text: str | None, fallback: str) -> str:
    """Validate an ``owner/repo`` string, falling back when empty.

    Raises:
        ValidationError: if the value is non-empty and malformed.
    """
    value = (text or "").strip()
    if not value:
        return fallback
    if not _REPO_RE.match(value):
        raise ValidationError(f"invalid release repository {value!r} (expected owner/repo)")
    return value


def parse_version_from_text(text: str | None) -> str:
    """Extract a version from free text such as ``openclaw --version`` output.

    Returns an empty string when nothing usable is found.
    """
    value = (text or "").strip()
    if not value:
        return ""
    match = _DATE_VERSION_RE.search(value)
    if match:
        return strip_leading_v(match.group(1))
    return strip_leading_v(value.split()[0])


def classify_install_method(install_raw: str) -> str:
    value = install_raw.strip().lower()
    if value and _SOURCE_INSTALL_RE.search(value):
        return "source"
    return "global"


def _find_latest_tag(update_raw: str, text: str) -> str:
    for source in (update_raw, text):
        if not source:
            continue
        for pattern in _LATEST_TAG_PATTERNS:
            match = pattern.search(source)
            if match and match.group(1):
                return strip_leading_v(match.group(1))
    return ""


def parse_openclaw_update_status(raw_output: str | None) -> BotStatusTable:
    """Parse the table printed by ``openclaw update status``.

    Example input::

        │ Install  │ pnpm                                      │
        │ Update   │ available · pnpm · npm update 2026.2.19-2 │
    """
    text = raw_output or ""
    install_match = _INSTALL_ROW_RE.search(text)
    update_match = _UPDATE_ROW_RE.search(text)
    install_raw = install_match.group(1).strip() if install_match else ""
    update_raw = update_match.group(1).strip() if update_match else ""

    install_method = classify_install_method(install_raw)
    strategy = "openclaw-update" if install_method == "source" else "package-manager"

    has_available = bool(_AVAILABLE_RE.search(update_raw) or _UPDATE_AVAILABLE_RE.search(text))
    has_up_to_date = bool(
        _UP_TO_DATE_RE.search(update_raw) or _ALREADY_UP_TO_DATE_RE.search(text)
    )

    return BotStatusTable(
        install_raw=install_raw,
        update_raw=update_raw,
        install_method=install_method,
        strategy=strategy,
        latest_tag=_find_latest_tag(update_raw, text),
        update_available=has_available and not has_up_to_date,
    )


def safe_tag_for_filename(tag: str) -> str:
    """Replace anything outside ``[0-9A-Za-z._-]`` so the tag is a safe filename."""
    return re.sub(r"[^0-9A-Za-z._-]", "_", (tag or "").strip())

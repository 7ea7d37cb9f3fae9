"""GitHub release client.

Resolving release metadata and downloading the archive are separate calls so
that staging can validate a release (tag exists, archive URL present) before
committing to a potentially large transfer.
"""

from __future__ import annotations

import json
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any
from urllib.parse import quote

import httpx

from openclaw_panel.logging import get_logger
from openclaw_panel.updater.errors import (
    ExternalAPIError,
    NotFoundError,
    ReleaseParseError,
    ValidationError,
)
from openclaw_panel.updater.models import ReleaseRef

log = get_logger("openclaw_panel.updater.releases")

GITHUB_API_BASE = "https://api.github.com"
USER_AGENT = "openclaw-panel-updater"
ARTIFACT_FILE_MODE = 0o600
DOWNLOAD_CHUNK_SIZE = 64 * 1024


def parse_release_payload(payload: Any, release_repo: str) -> ReleaseRef:
    """Build a ``ReleaseRef`` from a GitHub release object.

    The tag comes from ``tag_name`` (or ``name``) and the archive from
    ``tarball_url`` (or ``zipball_url``).

    Raises:
        ReleaseParseError: if the payload is not an object or lacks a tag or
            an archive URL.
    """
    if not isinstance(payload, dict):
        raise ReleaseParseError(f"release payload is not an object (repo={release_repo})")

    def field(*names: str) -> str:
        for name in names:
            value = payload.get(name)
            if isinstance(value, str) and value.strip():
                return value.strip()
        return ""

    tag = field("tag_name", "name")
    tarball_url = field("tarball_url", "zipball_url")
    if not tag or not tarball_url:
        raise ReleaseParseError(f"release metadata is incomplete (repo={release_repo})")
    return ReleaseRef(
        tag=tag,
        tarball_url=tarball_url,
        published_at=field("published_at"),
        html_url=field("html_url"),
        release_repo=release_repo,
    )


def tag_candidates(tag: str) -> list[str]:
    """Return the tag as given followed by its opposite ``v``-prefix variant."""
    value = (tag or "").strip()
    if not value:
        return []
    alternate = value[1:] if value[:1] in ("v", "V") else f"v{value}"
    candidates = [value]
    if alternate and alternate not in candidates:
        candidates.append(alternate)
    return candidates


class ReleaseClient:
    """Stateless client for the GitHub releases API.

    Pass an ``httpx.AsyncClient`` to share a connection pool (or a mock
    transport in tests); otherwise a client is created per call.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        *,
        timeout: float = 30.0,
        api_base: str = GITHUB_API_BASE,
    ) -> None:
        self._http_client = http_client
        self._timeout = timeout
        self._api_base = api_base.rstrip("/")

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            yield client

    @staticmethod
    def _headers(github_token: str | None) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": USER_AGENT,
        }
        token = (github_token or "").strip()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def _get_json(self, url: str, github_token: str | None) -> Any:
        try:
            async with self._client() as client:
                resp = await client.get(url, headers=self._headers(github_token))
        except httpx.RequestError as exc:
            log.warning("release_api_request_failed", url=url, error=str(exc))
            raise ExternalAPIError(f"GitHub API request failed: {exc}") from exc

        if not resp.is_success:
            raise ExternalAPIError(
                f"GitHub API request failed: HTTP {resp.status_code}",
                status=resp.status_code,
                body=resp.text[:500],
            )
        try:
            return json.loads(resp.text)
        except ValueError as exc:
            raise ReleaseParseError(f"GitHub API returned non-JSON content: {exc}") from exc

    async def fetch_latest_release(
        self, release_repo: str, github_token: str | None = None
    ) -> ReleaseRef:
        """Resolve the latest published release of ``release_repo``."""
        url = f"{self._api_base}/repos/{release_repo}/releases/latest"
        payload = await self._get_json(url, github_token)
        release = parse_release_payload(payload, release_repo)
        log.debug("release_latest_resolved", repo=release_repo, tag=release.tag)
        return release

    async def fetch_release_by_tag(
        self, release_repo: str, tag: str, github_token: str | None = None
    ) -> ReleaseRef:
        """Resolve a release by tag, trying both ``v``-prefix variants.

        A 404 on one candidate falls through to the next; any other failure
        is raised immediately.

        Raises:
            ValidationError: if ``tag`` is empty.
            NotFoundError: if every candidate returned 404.
        """
        candidates = tag_candidates(tag)
        if not candidates:
            raise ValidationError("a release tag is required")

        for candidate in candidates:
            url = f"{self._api_base}/repos/{release_repo}/releases/tags/{quote(candidate, safe='')}"
            try:
                payload = await self._get_json(url, github_token)
            except ExternalAPIError as exc:
                if exc.status == 404:
                    log.debug("release_tag_not_found", repo=release_repo, tag=candidate)
                    continue
                raise
            return parse_release_payload(payload, release_repo)

        raise NotFoundError(f"release not found: {tag.strip()} (repo={release_repo})")

    async def download_artifact(
        self, url: str, destination: str | Path, github_token: str | None = None
    ) -> Path:
        """Stream a release archive to ``destination`` with mode 0600.

        Bytes go to a ``.part`` file first, which is renamed into place only
        after the transfer completes.

        Raises:
            ExternalAPIError: on a non-2xx response or transport failure.
        """
        dest = Path(destination)
        part = dest.with_name(dest.name + ".part")
        written = 0
        try:
            async with self._client() as client:
                async with client.stream(
                    "GET",
                    url,
                    headers=self._headers(github_token),
                    follow_redirects=True,
                ) as resp:
                    if not resp.is_success:
                        raise ExternalAPIError(
                            f"artifact download failed: HTTP {resp.status_code}",
                            status=resp.status_code,
                        )
                    fd = os.open(part, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, ARTIFACT_FILE_MODE)
                    with os.fdopen(fd, "wb") as fh:
                        async for chunk in resp.aiter_bytes(DOWNLOAD_CHUNK_SIZE):
                            fh.write(chunk)
                            written += len(chunk)
        except httpx.RequestError as exc:
            part.unlink(missing_ok=True)
            raise ExternalAPIError(f"artifact download failed: {exc}") from exc
        except BaseException:
            part.unlink(missing_ok=True)
            raise

        os.chmod(part, ARTIFACT_FILE_MODE)
        os.replace(part, dest)
        log.info("release_artifact_downloaded", path=str(dest), size=written)
        return dest

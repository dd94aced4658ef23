"""
Release publisher: upload packaged artifacts to the "nightly" release.

The release channel is a single, mutable release identified by its tag.
Publishing does not version it: each successful Run replaces assets of the
same name, so the channel always holds whatever the last successful Run
uploaded.

Architecture:
    ::

        ReleasePublisher(stage handler)
            │  token = ctx.secret("GITHUB_TOKEN")   (only this stage holds it)
            │  files = select_artifacts(workspace, "project-*.deb;...")
            ▼
        ReleaseClient (httpx)
            GET    /repos/{repo}/releases/tags/{tag}         → release | 404
            POST   /repos/{repo}/releases                     (prerelease, if missing)
            GET    /repos/{repo}/releases/{id}/assets
            DELETE /repos/{repo}/releases/assets/{asset_id}   (same-named asset)
            POST   {uploads}/repos/{repo}/releases/{id}/assets?name=<file>
            ▼
        PublishReport(outcomes: one UploadOutcome per file)

    Any failed file fails the stage; the report still lists every file so
    the operator can see which uploads landed.

Tags:
    publish, release, httpx, artifacts, nightshift

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

import httpx

from nightshift import __version__
from nightshift.core.errors import ConfigError, ErrorCategory, PublishError
from nightshift.core.logging import get_logger
from nightshift.core.secrets import SecretValue
from nightshift.orchestration.stage_result import StageResult
from nightshift.publish.artifacts import select_artifacts

if TYPE_CHECKING:
    from nightshift.core.config import NightshiftSettings
    from nightshift.orchestration.run_context import RunContext
    from nightshift.orchestration.stage_types import Stage

logger = get_logger(__name__)

API_VERSION = "2022-11-28"
_PAGE_SIZE = 100


# =============================================================================
# REPORT
# =============================================================================


@dataclass
class UploadOutcome:
    """Result of uploading one artifact."""

    name: str
    success: bool
    size: int = 0
    asset_id: int | None = None
    url: str | None = None
    replaced: bool = False
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"name": self.name, "success": self.success, "size": self.size}
        if self.asset_id is not None:
            result["asset_id"] = self.asset_id
        if self.url:
            result["url"] = self.url
        if self.replaced:
            result["replaced"] = True
        if self.error:
            result["error"] = self.error
        return result


@dataclass
class PublishReport:
    """Per-file outcome of one publish."""

    tag: str
    release_id: int | None = None
    outcomes: list[UploadOutcome] = field(default_factory=list)

    @property
    def published(self) -> list[str]:
        return [o.name for o in self.outcomes if o.success]

    @property
    def failed(self) -> list[str]:
        return [o.name for o in self.outcomes if not o.success]

    @property
    def success(self) -> bool:
        return bool(self.outcomes) and not self.failed

    def to_dict(self) -> dict[str, Any]:
        return {
            "tag": self.tag,
            "release_id": self.release_id,
            "published": self.published,
            "failed": self.failed,
            "files": [o.to_dict() for o in self.outcomes],
        }


# =============================================================================
# CLIENT
# =============================================================================


class ReleaseClient:
    """Minimal client for the source host's release REST API.

    Attributes:
        repository: ``owner/name`` slug
        upload_url: Base URL for asset uploads (a separate host on GitHub)
    """

    def __init__(
        self,
        repository: str,
        token: SecretValue,
        *,
        api_url: str = "https://api.github.com",
        upload_url: str = "https://uploads.github.com",
        timeout: float = 300.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.repository = repository
        self.upload_url = upload_url.rstrip("/")
        self._client = httpx.Client(
            base_url=api_url.rstrip("/"),
            headers={
                "Authorization": f"Bearer {token.get_secret()}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": API_VERSION,
                "User-Agent": f"nightshift/{__version__}",
            },
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> ReleaseClient:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def get_release_by_tag(self, tag: str) -> dict[str, Any] | None:
        """The release for ``tag``, or ``None`` if it does not exist."""
        response = self._client.get(f"/repos/{self.repository}/releases/tags/{tag}")
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.json()

    def create_release(
        self,
        tag: str,
        *,
        prerelease: bool = True,
        target_commitish: str | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"tag_name": tag, "name": tag, "prerelease": prerelease}
        if target_commitish:
            payload["target_commitish"] = target_commitish
        response = self._client.post(f"/repos/{self.repository}/releases", json=payload)
        response.raise_for_status()
        return response.json()

    def list_assets(self, release_id: int) -> list[dict[str, Any]]:
        assets: list[dict[str, Any]] = []
        page = 1
        while True:
            response = self._client.get(
                f"/repos/{self.repository}/releases/{release_id}/assets",
                params={"per_page": _PAGE_SIZE, "page": page},
            )
            response.raise_for_status()
            batch = response.json()
            assets.extend(batch)
            if len(batch) < _PAGE_SIZE:
                return assets
            page += 1

    def delete_asset(self, asset_id: int) -> None:
        response = self._client.delete(f"/repos/{self.repository}/releases/assets/{asset_id}")
        if response.status_code != 404:
            response.raise_for_status()

    def upload_asset(self, release_id: int, path: Path) -> dict[str, Any]:
        response = self._client.post(
            f"{self.upload_url}/repos/{self.repository}/releases/{release_id}/assets",
            params={"name": path.name},
            headers={"Content-Type": "application/octet-stream"},
            content=path.read_bytes(),
        )
        response.raise_for_status()
        return response.json()


# =============================================================================
# PUBLISHER
# =============================================================================


class ReleasePublisher:
    """Selects artifacts and uploads them to the release channel.

    Instances are action-stage handlers: ``Stage.action("publish",
    publisher, secrets=[publisher.token_secret])``.
    """

    def __init__(
        self,
        repository: str,
        *,
        pattern: str,
        tag: str = "nightly",
        token_secret: str = "GITHUB_TOKEN",
        api_url: str = "https://api.github.com",
        upload_url: str = "https://uploads.github.com",
        timeout: float = 300.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.repository = repository
        self.pattern = pattern
        self.tag = tag
        self.token_secret = token_secret
        self.api_url = api_url
        self.upload_url = upload_url
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(
        cls,
        settings: NightshiftSettings,
        transport: httpx.BaseTransport | None = None,
    ) -> ReleasePublisher:
        return cls(
            settings.repository,
            pattern=settings.artifact_pattern,
            tag=settings.release_tag,
            token_secret=settings.token_secret,
            api_url=settings.api_url,
            upload_url=settings.upload_url,
            timeout=settings.http_timeout_seconds,
            transport=transport,
        )

    def client(self, token: SecretValue) -> ReleaseClient:
        return ReleaseClient(
            self.repository,
            token,
            api_url=self.api_url,
            upload_url=self.upload_url,
            timeout=self.timeout,
            transport=self._transport,
        )

    def publish(
        self,
        files: Sequence[Path],
        token: SecretValue,
        *,
        commit: str | None = None,
    ) -> PublishReport:
        """Upload ``files`` to the release for ``self.tag``.

        Raises:
            ConfigError: If no repository is configured
            PublishError: If the release cannot be found or created
        """
        if not self.repository:
            raise ConfigError("No repository configured for publishing (NIGHTSHIFT_REPOSITORY)")

        report = PublishReport(tag=self.tag)
        with self.client(token) as client:
            try:
                release = client.get_release_by_tag(self.tag)
                if release is None:
                    logger.info("release.create", tag=self.tag, commit=commit)
                    release = client.create_release(self.tag, target_commitish=commit)
                report.release_id = release["id"]
                existing = {a["name"]: a for a in client.list_assets(release["id"])}
            except httpx.HTTPError as exc:
                raise PublishError(
                    f"Could not prepare release {self.tag!r}: {exc}", cause=exc
                ).with_context(tag=self.tag) from exc

            for path in files:
                report.outcomes.append(self._upload_one(client, release["id"], path, existing))
        return report

    def _upload_one(
        self,
        client: ReleaseClient,
        release_id: int,
        path: Path,
        existing: dict[str, dict[str, Any]],
    ) -> UploadOutcome:
        replaced = False
        try:
            if path.name in existing:
                client.delete_asset(existing[path.name]["id"])
                replaced = True
            asset = client.upload_asset(release_id, path)
        except (httpx.HTTPError, OSError) as exc:
            logger.error("release.upload_failed", file=path.name, error=str(exc))
            return UploadOutcome(name=path.name, success=False, replaced=replaced, error=str(exc))

        logger.info("release.uploaded", file=path.name, size=asset.get("size"), replaced=replaced)
        return UploadOutcome(
            name=path.name,
            success=True,
            size=asset.get("size", 0),
            asset_id=asset.get("id"),
            url=asset.get("browser_download_url"),
            replaced=replaced,
        )

    def __call__(self, ctx: RunContext, stage: Stage) -> StageResult:
        files = select_artifacts(ctx.workspace, self.pattern)
        if not files:
            raise PublishError(f"No artifacts match {self.pattern!r} in {ctx.workspace}")

        token = ctx.secret(self.token_secret)
        report = self.publish(files, token, commit=ctx.run.commit_ref)
        if not report.success:
            return StageResult.fail(
                f"{len(report.failed)} of {len(files)} artifacts failed to upload: "
                + ", ".join(report.failed),
                category=ErrorCategory.PUBLISH,
                output=report.to_dict(),
            )
        return StageResult.ok(report.to_dict())


__all__ = [
    "API_VERSION",
    "PublishReport",
    "ReleaseClient",
    "ReleasePublisher",
    "UploadOutcome",
]

"""Tests for artifact selection and release publishing against a mock host."""

from __future__ import annotations

import httpx
import pytest

from nightshift.core.errors import ConfigError, PublishError
from nightshift.core.secrets import SecretValue
from nightshift.orchestration.stage_types import Stage
from nightshift.publish import ReleaseClient, ReleasePublisher, select_artifacts
from nightshift.publish.release import API_VERSION

PATTERN = "widget-*.deb;widget-*.xz;widget-*.tar.gz"
TOKEN = SecretValue("ghp_s3cr3t")


def _publisher(host, **kwargs) -> ReleasePublisher:
    return ReleasePublisher("acme/widget", pattern=PATTERN, transport=host.transport, **kwargs)


@pytest.fixture
def files(workspace):
    paths = []
    for name in ("widget-1.deb", "widget-1.tar.xz", "widget-1.tar.gz"):
        path = workspace / name
        path.write_bytes(name.encode() * 10)
        paths.append(path)
    return paths


# ---------------------------------------------------------------------------
# select_artifacts
# ---------------------------------------------------------------------------


class TestSelectArtifacts:
    def test_top_level_only(self, workspace, files):
        (workspace / "target").mkdir()
        (workspace / "target" / "widget-debug.deb").write_text("x")
        (workspace / "README.md").write_text("x")
        names = [p.name for p in select_artifacts(workspace, PATTERN)]
        assert names == ["widget-1.deb", "widget-1.tar.gz", "widget-1.tar.xz"]

    def test_nested_pattern(self, workspace):
        (workspace / "dist").mkdir()
        (workspace / "dist" / "widget.deb").write_text("x")
        assert [p.name for p in select_artifacts(workspace, "dist/*.deb")] == ["widget.deb"]

    def test_nothing_matches(self, workspace):
        assert select_artifacts(workspace, PATTERN) == []

    def test_missing_root(self, tmp_path):
        assert select_artifacts(tmp_path / "nope", PATTERN) == []


# ---------------------------------------------------------------------------
# ReleaseClient
# ---------------------------------------------------------------------------


class TestReleaseClient:
    def test_headers(self, release_host):
        with ReleaseClient("acme/widget", TOKEN, transport=release_host.transport) as client:
            client.get_release_by_tag("nightly")
        request = release_host.requests[0]
        assert request.headers["authorization"] == "Bearer ghp_s3cr3t"
        assert request.headers["x-github-api-version"] == API_VERSION
        assert request.headers["user-agent"].startswith("nightshift/")

    def test_missing_release_is_none(self, make_release_host):
        host = make_release_host(existing_release=False)
        with ReleaseClient("acme/widget", TOKEN, transport=host.transport) as client:
            assert client.get_release_by_tag("nightly") is None

    def test_upload_goes_to_upload_host(self, release_host, files):
        with ReleaseClient("acme/widget", TOKEN, transport=release_host.transport) as client:
            release_id = client.get_release_by_tag("nightly")["id"]
            asset = client.upload_asset(release_id, files[0])
        upload = release_host.requests[-1]
        assert upload.url.host == "uploads.github.com"
        assert upload.url.params["name"] == "widget-1.deb"
        assert upload.headers["content-type"] == "application/octet-stream"
        assert asset["size"] == len(files[0].read_bytes())

    def test_error_status_raises(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(401, json={"message": "Bad credentials"}))
        with ReleaseClient("acme/widget", TOKEN, transport=transport) as client:
            with pytest.raises(httpx.HTTPStatusError):
                client.get_release_by_tag("nightly")


# ---------------------------------------------------------------------------
# ReleasePublisher
# ---------------------------------------------------------------------------


class TestReleasePublisher:
    def test_publish_all(self, release_host, files):
        report = _publisher(release_host).publish(files, TOKEN)
        assert report.success
        assert report.published == [f.name for f in files]
        assert release_host.asset_names() == sorted(f.name for f in files)

    def test_creates_release_when_missing(self, make_release_host, files):
        host = make_release_host(existing_release=False)
        report = _publisher(host).publish(files, TOKEN, commit="abc")
        assert report.success
        assert "nightly" in host.releases

    def test_replaces_existing_asset(self, release_host, files):
        publisher = _publisher(release_host)
        publisher.publish(files, TOKEN)
        files[0].write_bytes(b"new build")
        report = publisher.publish(files, TOKEN)

        assert report.success
        assert release_host.asset_names() == sorted(f.name for f in files)
        deb = next(o for o in report.outcomes if o.name == "widget-1.deb")
        assert deb.replaced
        assert deb.size == len(b"new build")

    def test_partial_failure_is_reported(self, make_release_host, files):
        host = make_release_host(fail_uploads=["widget-1.tar.xz"])
        report = _publisher(host).publish(files, TOKEN)
        assert not report.success
        assert report.failed == ["widget-1.tar.xz"]
        assert report.published == ["widget-1.deb", "widget-1.tar.gz"]

    def test_no_outcomes_is_not_success(self, release_host):
        assert not _publisher(release_host).publish([], TOKEN).success

    def test_no_repository(self, release_host, files):
        publisher = ReleasePublisher("", pattern=PATTERN, transport=release_host.transport)
        with pytest.raises(ConfigError):
            publisher.publish(files, TOKEN)

    def test_release_unreachable(self, files):
        transport = httpx.MockTransport(lambda request: httpx.Response(503))
        publisher = ReleasePublisher("acme/widget", pattern=PATTERN, transport=transport)
        with pytest.raises(PublishError):
            publisher.publish(files, TOKEN)

    def test_from_settings(self, settings):
        publisher = ReleasePublisher.from_settings(settings)
        assert publisher.repository == "acme/widget"
        assert publisher.tag == "nightly"
        assert publisher.pattern == PATTERN


class TestPublishStage:
    def test_stage_success(self, release_host, files, run_context):
        publisher = _publisher(release_host)
        stage = Stage.action("publish", publisher, secrets=["GITHUB_TOKEN"])
        ctx = run_context.with_secrets({"GITHUB_TOKEN": TOKEN})
        result = publisher(ctx, stage)
        assert result.success
        assert result.output["published"] == ["widget-1.deb", "widget-1.tar.gz", "widget-1.tar.xz"]

    def test_stage_without_artifacts(self, release_host, run_context):
        publisher = _publisher(release_host)
        stage = Stage.action("publish", publisher, secrets=["GITHUB_TOKEN"])
        with pytest.raises(PublishError):
            publisher(run_context.with_secrets({"GITHUB_TOKEN": TOKEN}), stage)
        assert release_host.requests == []

    def test_stage_partial_failure(self, make_release_host, files, run_context):
        host = make_release_host(fail_uploads=["widget-1.deb"])
        publisher = _publisher(host)
        stage = Stage.action("publish", publisher, secrets=["GITHUB_TOKEN"])
        result = publisher(run_context.with_secrets({"GITHUB_TOKEN": TOKEN}), stage)
        assert not result.success
        assert result.error_category == "PUBLISH"
        assert result.output["failed"] == ["widget-1.deb"]

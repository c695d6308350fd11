"""Unit tests for release metadata fetching and target selection."""

import httpx
import pytest

from conftest import RELEASE_SOURCE
from stager.exceptions import ReleaseMetadataError, UntrustedSourceError
from stager.models.release import ProjectReleases
from stager.models.status import CronMode, StageType
from stager.policy.rules import PolicyContext
from stager.services.releases import ReleaseChooser, ReleaseMetadataFetcher


@pytest.mark.unit
class TestReleaseMetadataFetcher:
    @pytest.mark.asyncio
    async def test_fetch(self, http_transport):
        fetcher = ReleaseMetadataFetcher([RELEASE_SOURCE], transport=http_transport)

        releases = await fetcher.get_project_releases("core")

        assert releases.project == "core"
        assert [r.version for r in releases.releases][:2] == ["9.8.2", "9.8.1"]
        assert releases.releases[1].is_security_release is True

    @pytest.mark.asyncio
    async def test_untrusted_source_refused(self, http_transport):
        fetcher = ReleaseMetadataFetcher([RELEASE_SOURCE], transport=http_transport)

        with pytest.raises(UntrustedSourceError, match="not trusted"):
            await fetcher.get_project_releases("core", source="https://evil.test/history")

    @pytest.mark.asyncio
    async def test_explicit_trusted_source(self, http_transport):
        fetcher = ReleaseMetadataFetcher([RELEASE_SOURCE + "/"], transport=http_transport)

        releases = await fetcher.get_project_releases("core", source=RELEASE_SOURCE)

        assert releases.releases

    @pytest.mark.asyncio
    async def test_falls_back_to_next_source(self, release_history):
        """A failing mirror is skipped."""
        # Arrange
        requested = []

        def handler(request: httpx.Request) -> httpx.Response:
            requested.append(request.url.host)
            if request.url.host == "down.test":
                return httpx.Response(503)
            return httpx.Response(200, json=release_history)

        fetcher = ReleaseMetadataFetcher(
            ["https://down.test/history", "https://up.test/history"],
            transport=httpx.MockTransport(handler),
        )

        # Act
        releases = await fetcher.get_project_releases("core")

        # Assert
        assert requested == ["down.test", "up.test"]
        assert releases.supported_branches == ["9.7.", "9.8."]

    @pytest.mark.asyncio
    async def test_all_sources_fail(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "broken.test":
                return httpx.Response(200, content=b"<html>maintenance</html>")
            return httpx.Response(404)

        fetcher = ReleaseMetadataFetcher(
            ["https://broken.test/history", "https://missing.test/history"],
            transport=httpx.MockTransport(handler),
        )

        with pytest.raises(ReleaseMetadataError) as exc_info:
            await fetcher.get_project_releases("core")
        assert "broken.test" in exc_info.value.message
        assert "missing.test" in exc_info.value.message


@pytest.mark.unit
class TestReleaseChooser:
    @pytest.fixture
    def releases(self, release_history):
        return ProjectReleases(**release_history)

    @pytest.fixture
    def chooser(self):
        return ReleaseChooser()

    @pytest.fixture
    def attended(self, releases):
        return PolicyContext(supported_branches=releases.supported_branches)

    @pytest.fixture
    def cron_security(self, releases):
        return PolicyContext(
            stage_type=StageType.UNATTENDED,
            cron_mode=CronMode.SECURITY,
            supported_branches=releases.supported_branches,
        )

    def test_installable_attended(self, chooser, releases, attended):
        allowed = chooser.get_installable_releases("9.8.0", releases, attended)

        assert [r.version for r in allowed] == ["9.8.2", "9.8.1"]

    def test_installable_cron_security(self, chooser, releases, cron_security):
        allowed = chooser.get_installable_releases("9.8.0", releases, cron_security)

        assert [r.version for r in allowed] == ["9.8.1"]

    def test_unpublished_releases_skipped(self, chooser, release_history, attended):
        release_history["releases"][0]["status"] = "unpublished"
        releases = ProjectReleases(**release_history)

        allowed = chooser.get_installable_releases("9.8.0", releases, attended)

        assert "9.8.2" not in [r.version for r in allowed]

    def test_latest_in_installed_minor(self, chooser, releases, attended, cron_security):
        assert chooser.get_latest_in_installed_minor("9.8.0", releases, attended).version == "9.8.2"
        assert (
            chooser.get_latest_in_installed_minor("9.8.0", releases, cron_security).version
            == "9.8.1"
        )

    def test_nothing_newer(self, chooser, releases, attended, cron_security):
        """The installed version itself is never offered."""
        assert chooser.get_latest_in_installed_minor("9.8.1", releases, cron_security) is None
        assert chooser.get_latest_in_installed_minor("9.8.2", releases, attended) is None
        assert chooser.get_latest_in_installed_minor("9.8.2", releases, cron_security) is None

    def test_next_minor(self, chooser, releases, attended):
        allow_minor = attended.model_copy(update={"allow_minor_updates": True})

        assert chooser.get_latest_in_next_minor("9.7.1", releases, allow_minor).version == "9.8.2"
        assert chooser.get_latest_in_next_minor("9.7.1", releases, attended) is None
        assert chooser.get_latest_in_next_minor("9.8.0", releases, allow_minor) is None

    def test_version_without_patch(self, chooser, releases, attended):
        with pytest.raises(ValueError, match="does not contain a patch version"):
            chooser.get_most_recent_release_in_minor("9.8.0", "9.8", releases, attended)

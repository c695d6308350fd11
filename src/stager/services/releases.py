"""Release metadata: fetching from trusted sources and choosing a target."""

import logging
from typing import Optional, Sequence

import httpx
from packaging.version import Version

from stager.exceptions import ReleaseMetadataError, UntrustedSourceError
from stager.models.release import ProjectReleases, Release
from stager.policy.engine import VersionPolicy
from stager.policy.rules import PolicyContext
from stager.utils.versions import get_major, get_minor, parse_version


class ReleaseMetadataFetcher:
    """Fetches ``<source>/<project>.json`` from trusted release sources."""

    def __init__(
        self,
        trusted_sources: Sequence[str],
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize release metadata fetcher.

        Args:
            trusted_sources: Base URLs, tried in order
            timeout: HTTP timeout in seconds
            transport: Custom httpx transport (tests use httpx.MockTransport)
        """
        self.logger = logging.getLogger("stager.releases")
        self.trusted_sources = [s.rstrip("/") for s in trusted_sources]
        self.timeout = timeout
        self.transport = transport

    def assert_trusted(self, source: str) -> None:
        if source.rstrip("/") not in self.trusted_sources:
            raise UntrustedSourceError(f"Release metadata source is not trusted: {source}")

    async def get_project_releases(
        self, project: str, source: Optional[str] = None
    ) -> ProjectReleases:
        """Fetch release metadata for a project.

        Args:
            project: Project machine name, e.g. "core"
            source: A specific trusted source (all trusted sources if None)

        Returns:
            Parsed ProjectReleases

        Raises:
            UntrustedSourceError: If ``source`` is not on the trusted list
            ReleaseMetadataError: If no source returned valid metadata
        """
        if source is not None:
            self.assert_trusted(source)
            sources = [source.rstrip("/")]
        else:
            sources = self.trusted_sources

        errors = []
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            for base_url in sources:
                url = f"{base_url}/{project}.json"
                try:
                    response = await client.get(url)
                    response.raise_for_status()
                    releases = ProjectReleases(**response.json())
                except (httpx.HTTPError, ValueError, TypeError) as e:
                    self.logger.warning(f"Failed to fetch release metadata from {url}: {e}")
                    errors.append(f"{url}: {e}")
                    continue
                self.logger.debug(
                    f"Fetched {len(releases.releases)} releases of {project} from {base_url}"
                )
                return releases

        raise ReleaseMetadataError(
            f"Unable to fetch release metadata for {project} from any trusted source. "
            + "; ".join(errors)
        )


class ReleaseChooser:
    """Picks the newest installable release the version policy allows."""

    def __init__(self, policy: Optional[VersionPolicy] = None):
        self.policy = policy or VersionPolicy()

    def get_installable_releases(
        self,
        installed_version: str,
        project_releases: ProjectReleases,
        context: PolicyContext,
    ) -> list[Release]:
        """Installable releases newer than ``installed_version`` that the policy
        accepts, newest first."""
        installed = parse_version(installed_version)
        installable = [
            release
            for release in project_releases.get_installable_releases()
            if installed is None or _is_newer(release.version, installed)
        ]
        allowed = [
            release
            for release in installable
            if not self.policy.validate_version(
                installed_version, release.version, installable, context
            )
        ]
        return sorted(allowed, key=_sort_key, reverse=True)

    def get_most_recent_release_in_minor(
        self,
        installed_version: str,
        version: str,
        project_releases: ProjectReleases,
        context: PolicyContext,
    ) -> Optional[Release]:
        """Newest allowed release in ``version``'s minor, at or above ``version``.

        Raises:
            ValueError: If ``version`` has no patch component
        """
        base = parse_version(version)
        if base is None or len(base.release) < 3:
            raise ValueError(f"The version number {version} does not contain a patch version")
        for release in self.get_installable_releases(installed_version, project_releases, context):
            candidate = parse_version(release.version)
            if (
                candidate is not None
                and candidate >= base
                and get_major(release.version) == base.major
                and get_minor(release.version) == base.minor
            ):
                return release
        return None

    def get_latest_in_installed_minor(
        self, installed_version: str, project_releases: ProjectReleases, context: PolicyContext
    ) -> Optional[Release]:
        return self.get_most_recent_release_in_minor(
            installed_version, installed_version, project_releases, context
        )

    def get_latest_in_next_minor(
        self, installed_version: str, project_releases: ProjectReleases, context: PolicyContext
    ) -> Optional[Release]:
        major, minor = get_major(installed_version), get_minor(installed_version)
        if major is None or minor is None:
            return None
        return self.get_most_recent_release_in_minor(
            installed_version, f"{major}.{minor + 1}.0", project_releases, context
        )


def _is_newer(version: str, installed: Version) -> bool:
    parsed = parse_version(version)
    return parsed is not None and parsed > installed


def _sort_key(release: Release):
    parsed = parse_version(release.version)
    return (parsed is not None, parsed or parse_version("0"))

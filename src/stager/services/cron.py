"""Unattended updates: pick a release and run the whole lifecycle."""

import logging
from typing import Optional

from stager.config import StagerSettings
from stager.exceptions import (
    ApplyFailedError,
    ExternalOperationError,
    ReleaseMetadataError,
    StageEventException,
    StageException,
)
from stager.models.release import Release
from stager.models.status import StageType
from stager.services.releases import ReleaseChooser, ReleaseMetadataFetcher
from stager.services.reporter import ReportService
from stager.services.update_stage import UpdateStage
from stager.validators.version_policy import build_policy_context

VERSIONS_METADATA_KEY = "versions"


class CronUpdater:
    """Runs begin -> stage -> apply -> post-apply -> destroy in one call.

    Only updates within the installed minor version, to the newest release
    the version policy accepts for unattended updates.
    """

    def __init__(
        self,
        settings: StagerSettings,
        stage: UpdateStage,
        fetcher: ReleaseMetadataFetcher,
        chooser: Optional[ReleaseChooser] = None,
        reporter: Optional[ReportService] = None,
    ):
        """Initialize cron updater.

        Args:
            settings: Runtime settings (cron_mode, core_project, ...)
            stage: An unattended update stage
            fetcher: Release metadata fetcher
            chooser: Release chooser (default policy if None)
            reporter: Webhook reporter for failures
        """
        self.logger = logging.getLogger("stager.cron")
        self.settings = settings
        self.stage = stage
        self.fetcher = fetcher
        self.chooser = chooser or ReleaseChooser()
        self.reporter = reporter

    async def get_target_release(self, installed_version: str) -> Optional[Release]:
        try:
            project_releases = await self.fetcher.get_project_releases(self.settings.core_project)
        except ReleaseMetadataError as e:
            self.logger.error(f"Cannot choose a release: {e.message}")
            return None
        context = build_policy_context(
            self.settings, StageType.UNATTENDED, project_releases.supported_branches
        )
        try:
            return self.chooser.get_latest_in_installed_minor(
                installed_version, project_releases, context
            )
        except ValueError as e:
            self.logger.warning(f"Cannot choose a release for {installed_version}: {e}")
            return None

    async def perform_update(self) -> bool:
        """Update to the chosen release if possible.

        Returns:
            True if an update was started

        Raises:
            ApplyFailedError: If apply was interrupted. The failure marker
                stays set and the stage is left in place.
        """
        if not self.settings.is_cron_enabled:
            self.logger.debug("Unattended updates are disabled")
            return False

        if not self.stage.is_available():
            if self.stage.failure_marker.exists():
                self.logger.error(
                    "Cron will not perform any updates because a previous update failed: "
                    f"{self.stage.failure_marker.get_message(include_trace=False)}"
                )
            else:
                self.logger.info(
                    "Cron will not perform any updates because there is an existing stage."
                )
            return False

        try:
            installed_version = await self.stage.runner.get_installed_version(
                self.settings.active_dir, self.settings.core_packages
            )
        except ExternalOperationError as e:
            self.logger.error(f"Unable to determine the installed version: {e.message}")
            return False
        if not installed_version:
            self.logger.error(
                f"Unable to determine the current version of {self.settings.project_title}."
            )
            return False

        release = await self.get_target_release(installed_version)
        if release is None:
            self.logger.info(f"No unattended update available for {installed_version}")
            return False
        target_version = release.version

        update_started = True
        try:
            await self.stage.begin({self.settings.core_project: target_version})
            self.stage.set_metadata(VERSIONS_METADATA_KEY, [installed_version, target_version])
            await self.stage.stage()
            await self.stage.apply()
        except ApplyFailedError as e:
            await self._report_failure(installed_version, target_version, e)
            raise
        except StageException as e:
            if isinstance(e, StageEventException) and e.event_name == "PreCreateEvent":
                update_started = False
            self.logger.error(
                f"Unattended update from {installed_version} to {target_version} failed: "
                f"{e.message}"
            )
            await self._report_failure(installed_version, target_version, e)
            if self._holds_stage():
                await self.stage.destroy()
            return update_started

        self.logger.info(
            f"{self.settings.project_title} has been updated from {installed_version} "
            f"to {target_version}"
        )
        try:
            await self.stage.post_apply()
        except StageException as e:
            self.logger.error(f"Post-apply failed after unattended update: {e.message}")
        await self.stage.destroy()
        return True

    def _holds_stage(self) -> bool:
        record = self.stage.lock.get_record()
        return record is not None and record.token == self.stage.get_stage_id()

    async def _report_failure(
        self, installed_version: str, target_version: str, error: StageException
    ) -> None:
        if self.reporter is None:
            return
        await self.reporter.report(
            event="CronUpdateFailed",
            stage_id=self.stage.get_stage_id(),
            phase=error.phase.value if error.phase else "uncreated",
            message=f"Unattended update from {installed_version} to {target_version} failed",
            errors=[error.message],
        )

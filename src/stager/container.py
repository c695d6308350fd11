"""Builds and holds the collaborators shared by the API and the CLI."""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from stager.config import StagerSettings, load_settings
from stager.exceptions import StageException, StateCorruptedError
from stager.models.status import StageType
from stager.policy.engine import VersionPolicy
from stager.services.cron import CronUpdater
from stager.services.events import EventDispatcher
from stager.services.failure_marker import FailureMarker
from stager.services.hooks import PostApplyTasks
from stager.services.lock import OwnershipLock
from stager.services.mirror import FilesystemMirror
from stager.services.package_manager import PackageOperationRunner
from stager.services.process import CommandRunner
from stager.services.releases import ReleaseChooser, ReleaseMetadataFetcher
from stager.services.reporter import ReportService
from stager.services.state_store import StateStore
from stager.services.status_checker import StatusChecker
from stager.services.update_stage import UpdateStage
from stager.validators.existing_stage import ExistingStageValidator
from stager.validators.staged_packages import StagedPackagesValidator
from stager.validators.version_policy import VersionPolicyValidator


@dataclass
class Container:
    settings: StagerSettings
    store: StateStore
    lock: OwnershipLock
    failure_marker: FailureMarker
    dispatcher: EventDispatcher
    command_runner: CommandRunner
    runner: PackageOperationRunner
    mirror: FilesystemMirror
    policy: VersionPolicy
    fetcher: ReleaseMetadataFetcher
    chooser: ReleaseChooser
    status_checker: StatusChecker
    reporter: ReportService
    post_apply_tasks: PostApplyTasks

    def create_stage(
        self, owner: str = "api", stage_type: StageType = StageType.ATTENDED
    ) -> UpdateStage:
        return UpdateStage(
            settings=self.settings,
            store=self.store,
            lock=self.lock,
            failure_marker=self.failure_marker,
            dispatcher=self.dispatcher,
            runner=self.runner,
            mirror=self.mirror,
            owner=owner,
            stage_type=stage_type,
            post_apply_hooks=self.post_apply_tasks.get_hooks(),
        )

    def create_cron_updater(self, owner: str = "cron") -> CronUpdater:
        return CronUpdater(
            settings=self.settings,
            stage=self.create_stage(owner=owner, stage_type=StageType.UNATTENDED),
            fetcher=self.fetcher,
            chooser=self.chooser,
            reporter=self.reporter,
        )

    def fill_phase(self, e: StageException) -> StageException:
        """Give an error raised before any stage was claimed the current phase.

        The phase stays unset (reported as ``unknown``) only when the stage
        record itself is unreadable.
        """
        if e.phase is None:
            try:
                e.phase = self.create_stage().get_phase()
            except StateCorruptedError as read_error:
                logging.getLogger("stager.container").error(
                    f"Cannot determine the stage phase: {read_error.message}"
                )
        return e


def build_container(
    settings: Optional[StagerSettings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Container:
    """Wire every collaborator and subscribe the validators.

    Args:
        settings: Settings (loaded from environment if None)
        transport: httpx transport shared by the release fetcher and the
            reporter (tests pass an httpx.MockTransport)
    """
    settings = settings or load_settings()
    store = StateStore(settings.state_dir)
    dispatcher = EventDispatcher()
    command_runner = CommandRunner()
    runner = PackageOperationRunner(
        settings.package_manager,
        command_runner=command_runner,
        timeout=settings.package_manager_timeout,
    )
    failure_marker = FailureMarker(store)
    policy = VersionPolicy()
    fetcher = ReleaseMetadataFetcher(settings.trusted_release_sources, transport=transport)
    status_checker = StatusChecker(
        store, dispatcher, failure_marker, ttl_hours=settings.status_check_ttl_hours
    )
    reporter = ReportService(settings.report_url, transport=transport)

    status_checker.subscribe()
    VersionPolicyValidator(settings, runner, fetcher, policy).subscribe(dispatcher)
    StagedPackagesValidator(settings, runner).subscribe(dispatcher)
    ExistingStageValidator().subscribe(dispatcher)
    reporter.subscribe(dispatcher)

    logging.getLogger("stager.container").debug(
        f"Container built: active_dir={settings.active_dir}, stage_root={settings.stage_root}"
    )
    return Container(
        settings=settings,
        store=store,
        lock=OwnershipLock(store, settings.stage_root),
        failure_marker=failure_marker,
        dispatcher=dispatcher,
        command_runner=command_runner,
        runner=runner,
        mirror=FilesystemMirror(settings.excluded_paths),
        policy=policy,
        fetcher=fetcher,
        chooser=ReleaseChooser(policy),
        status_checker=status_checker,
        reporter=reporter,
        post_apply_tasks=PostApplyTasks(settings, command_runner, status_checker, reporter),
    )


_container: Optional[Container] = None


def get_container() -> Container:
    """Process-wide container, built on first use."""
    global _container
    if _container is None:
        _container = build_container()
    return _container


def set_container(container: Optional[Container]) -> None:
    global _container
    _container = container

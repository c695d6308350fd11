"""Plugs the version policy into stage creation and status checks."""

import logging
from typing import Optional

from stager.config import StagerSettings
from stager.exceptions import ExternalOperationError, ReleaseMetadataError
from stager.models.status import StageType
from stager.policy.engine import VersionPolicy
from stager.policy.rules import PolicyContext
from stager.services.events import EventDispatcher, PreCreateEvent, StageEvent, StatusCheckEvent
from stager.services.package_manager import PackageOperationRunner
from stager.services.releases import ReleaseMetadataFetcher
from stager.services.update_stage import UpdateStage


def build_policy_context(
    settings: StagerSettings,
    stage_type: StageType,
    supported_branches: Optional[list[str]] = None,
) -> PolicyContext:
    return PolicyContext(
        stage_type=stage_type,
        cron_mode=settings.cron_mode,
        allow_minor_updates=settings.allow_minor_updates,
        supported_branches=list(supported_branches or []),
        project_title=settings.project_title,
    )


class VersionPolicyValidator:
    """Refuses to create an update stage the version policy does not allow.

    On PreCreateEvent the target is the core version recorded by begin().
    On StatusCheckEvent it is the ``target_version`` passed to the check, if
    any, so an attended status check only validates the installed version.
    """

    def __init__(
        self,
        settings: StagerSettings,
        runner: PackageOperationRunner,
        fetcher: ReleaseMetadataFetcher,
        policy: Optional[VersionPolicy] = None,
    ):
        self.logger = logging.getLogger("stager.validators.version_policy")
        self.settings = settings
        self.runner = runner
        self.fetcher = fetcher
        self.policy = policy or VersionPolicy()

    def subscribe(self, dispatcher: EventDispatcher) -> None:
        dispatcher.subscribe(PreCreateEvent, self.check_version)
        dispatcher.subscribe(StatusCheckEvent, self.check_version)

    async def check_version(self, event: StageEvent) -> None:
        stage = event.stage
        if not isinstance(stage, UpdateStage):
            return

        if isinstance(event, StatusCheckEvent):
            target_version = event.context.get("target_version")
        else:
            target_version = stage.get_target_version()
            if target_version is None:
                event.add_error(
                    [f"The target version of {self.settings.project_title} could not be determined."]
                )
                return

        try:
            installed_version = await self.runner.get_installed_version(
                self.settings.active_dir, self.settings.core_packages
            )
        except ExternalOperationError as e:
            event.add_error([e.message])
            return
        if installed_version is None:
            event.add_error(
                [f"The installed version of {self.settings.project_title} could not be determined."]
            )
            return

        try:
            project_releases = await self.fetcher.get_project_releases(self.settings.core_project)
        except ReleaseMetadataError as e:
            event.add_error([e.message])
            return

        context = build_policy_context(
            self.settings, stage.stage_type, project_releases.supported_branches
        )
        messages = self.policy.validate_version(
            installed_version,
            target_version,
            project_releases.get_installable_releases(),
            context,
        )
        if not messages:
            self.logger.debug(f"Version policy allows {installed_version} -> {target_version}")
            return

        title = self.settings.project_title
        if target_version:
            summary = f"Updating from {title} {installed_version} to {target_version} is not allowed."
        else:
            summary = f"Updating from {title} {installed_version} is not allowed."
        event.add_error(messages, summary)

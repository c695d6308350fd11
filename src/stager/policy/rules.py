"""Version policy rules.

Each rule inspects (installed version, target version, available releases,
context) and returns a list of error messages; an empty list means the rule
has no objection. Rules are stateless and have no side effects.
"""

from typing import Optional

from pydantic import BaseModel, Field

from stager.models.release import Release
from stager.models.status import CronMode, StageType
from stager.utils.versions import (
    get_branch,
    get_major,
    is_dev_snapshot,
    is_lower,
    is_release_candidate,
    is_stable,
    same_minor,
)


class PolicyContext(BaseModel):
    """Configuration a rule may consult."""

    stage_type: StageType = StageType.ATTENDED
    cron_mode: CronMode = CronMode.DISABLED
    allow_minor_updates: bool = False
    supported_branches: list[str] = Field(default_factory=list)
    project_title: str = "Core"

    @property
    def is_unattended(self) -> bool:
        return self.stage_type == StageType.UNATTENDED

    @property
    def cron_enabled(self) -> bool:
        return self.is_unattended and self.cron_mode != CronMode.DISABLED


class VersionPolicyRule:
    """Base class for version policy rules."""

    # Whether the rule needs a known target version to say anything
    requires_target = True

    @property
    def name(self) -> str:
        return type(self).__name__

    def applies(self, target_version: Optional[str], context: PolicyContext) -> bool:
        return target_version is not None or not self.requires_target

    def validate(
        self,
        installed_version: str,
        target_version: Optional[str],
        available_releases: list[Release],
        context: PolicyContext,
    ) -> list[str]:
        raise NotImplementedError


class ForbidDevSnapshot(VersionPolicyRule):
    """Updates from a dev snapshot are never supported."""

    requires_target = False

    def validate(self, installed_version, target_version, available_releases, context):
        if is_dev_snapshot(installed_version):
            return [
                f"{context.project_title} cannot be automatically updated from the "
                f"installed version, {installed_version}, because automatic updates "
                f"from a dev version to any other version are not supported."
            ]
        return []


class ForbidDowngrade(VersionPolicyRule):
    def validate(self, installed_version, target_version, available_releases, context):
        if target_version and is_lower(target_version, installed_version):
            return [
                f"Update version {target_version} is lower than {installed_version}, "
                f"downgrading is not supported."
            ]
        return []


class MajorVersionMatch(VersionPolicyRule):
    def validate(self, installed_version, target_version, available_releases, context):
        if get_major(installed_version) != get_major(target_version):
            return [
                f"{context.project_title} cannot be automatically updated from "
                f"{installed_version} to {target_version} because automatic updates "
                f"from one major version to another are not supported."
            ]
        return []


class TargetVersionInstallable(VersionPolicyRule):
    """The target must be a known installable release.

    For attended updates a jump across minor versions is reported here
    instead, unless minor updates are allowed by configuration.
    """

    def validate(self, installed_version, target_version, available_releases, context):
        if not context.allow_minor_updates and not same_minor(installed_version, target_version):
            return [
                f"{context.project_title} cannot be automatically updated from "
                f"{installed_version} to {target_version} because automatic updates "
                f"from one minor version to another are not supported."
            ]
        if any(release.version == target_version for release in available_releases):
            return []
        return [
            f"Cannot update {context.project_title} to {target_version} because it is "
            f"not in the list of installable releases."
        ]


class TargetVersionNotPreRelease(VersionPolicyRule):
    """Attended updates may target stable releases or release candidates."""

    def applies(self, target_version, context):
        return target_version is not None and not context.is_unattended

    def validate(self, installed_version, target_version, available_releases, context):
        if is_stable(target_version) or is_release_candidate(target_version):
            return []
        return [
            f"{context.project_title} cannot be updated to {target_version} because "
            f"it is not a stable version or a release candidate."
        ]


class StableReleaseInstalled(VersionPolicyRule):
    requires_target = False

    def applies(self, target_version, context):
        return context.cron_enabled

    def validate(self, installed_version, target_version, available_releases, context):
        if is_stable(installed_version):
            return []
        return [
            f"{context.project_title} cannot be automatically updated during cron from "
            f"its current version, {installed_version}, because it is not a stable version."
        ]


class SupportedBranchInstalled(VersionPolicyRule):
    requires_target = False

    def applies(self, target_version, context):
        return context.cron_enabled

    def validate(self, installed_version, target_version, available_releases, context):
        branch = get_branch(installed_version)
        if branch is not None and branch in context.supported_branches:
            return []
        messages = [
            f"The currently installed version of {context.project_title}, "
            f"{installed_version}, is not in a supported minor version. Your site will "
            f"not be automatically updated during cron until it is updated to a "
            f"supported minor version."
        ]
        if context.allow_minor_updates:
            messages.append("Run an attended update to move to a supported version.")
        else:
            messages.append("Check the available releases for supported versions.")
        return messages


class TargetVersionStable(VersionPolicyRule):
    def applies(self, target_version, context):
        return target_version is not None and context.cron_enabled

    def validate(self, installed_version, target_version, available_releases, context):
        if is_stable(target_version):
            return []
        return [
            f"{context.project_title} cannot be automatically updated during cron to the "
            f"recommended version, {target_version}, because it is not a stable version."
        ]


class ForbidMinorUpdates(VersionPolicyRule):
    def applies(self, target_version, context):
        return target_version is not None and context.cron_enabled

    def validate(self, installed_version, target_version, available_releases, context):
        if same_minor(installed_version, target_version):
            return []
        return [
            f"{context.project_title} cannot be automatically updated from "
            f"{installed_version} to {target_version} because automatic updates from "
            f"one minor version to another are not supported during cron."
        ]


class TargetSecurityRelease(VersionPolicyRule):
    def applies(self, target_version, context):
        return (
            target_version is not None
            and context.cron_enabled
            and context.cron_mode == CronMode.SECURITY
        )

    def validate(self, installed_version, target_version, available_releases, context):
        for release in available_releases:
            if release.version == target_version and release.is_security_release:
                return []
        return [
            f"{context.project_title} cannot be automatically updated during cron from "
            f"{installed_version} to {target_version} because {target_version} is not a "
            f"security release."
        ]

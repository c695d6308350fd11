"""Version policy engine: runs the rules and merges their findings."""

import logging
from typing import Mapping, Optional, Sequence

from stager.models.release import Release
from stager.models.validation import ValidationResult
from stager.policy.rules import (
    ForbidDevSnapshot,
    ForbidDowngrade,
    ForbidMinorUpdates,
    MajorVersionMatch,
    PolicyContext,
    StableReleaseInstalled,
    SupportedBranchInstalled,
    TargetSecurityRelease,
    TargetVersionInstallable,
    TargetVersionNotPreRelease,
    TargetVersionStable,
    VersionPolicyRule,
)

# Order matters only for the order messages are shown in.
DEFAULT_RULES: tuple[VersionPolicyRule, ...] = (
    ForbidDevSnapshot(),
    ForbidDowngrade(),
    MajorVersionMatch(),
    TargetVersionInstallable(),
    TargetVersionNotPreRelease(),
    StableReleaseInstalled(),
    SupportedBranchInstalled(),
    TargetVersionStable(),
    ForbidMinorUpdates(),
    TargetSecurityRelease(),
)

# A rule on the left, when it reports anything, suppresses the less specific
# rules on the right. E.g. a major version jump is never in the installable
# list, so "not installable" adds nothing after "major versions differ".
DEFAULT_SUPERSESSIONS: dict[str, tuple[str, ...]] = {
    "ForbidDowngrade": ("TargetVersionInstallable", "MajorVersionMatch"),
    "ForbidDevSnapshot": ("StableReleaseInstalled",),
    "MajorVersionMatch": ("TargetVersionInstallable",),
    "ForbidMinorUpdates": ("TargetVersionInstallable",),
    "TargetVersionStable": ("TargetVersionNotPreRelease",),
}


class VersionPolicy:
    """An ordered, statically composed set of version policy rules."""

    def __init__(
        self,
        rules: Optional[Sequence[VersionPolicyRule]] = None,
        supersessions: Optional[Mapping[str, Sequence[str]]] = None,
    ):
        """Initialize version policy.

        Args:
            rules: Rules in display order (DEFAULT_RULES if None)
            supersessions: Rule name -> names of rules it supersedes
        """
        self.logger = logging.getLogger("stager.policy")
        self.rules = list(DEFAULT_RULES if rules is None else rules)
        self.supersessions = {
            k: tuple(v)
            for k, v in (DEFAULT_SUPERSESSIONS if supersessions is None else supersessions).items()
        }

    def evaluate(
        self,
        installed_version: str,
        target_version: Optional[str],
        available_releases: Sequence[Release],
        context: Optional[PolicyContext] = None,
    ) -> list[ValidationResult]:
        """Run every applicable rule and return the non-superseded errors.

        Args:
            installed_version: Currently installed version
            target_version: Version to update to, or None when not yet known
            available_releases: Installable releases
            context: Stage type and configuration

        Returns:
            One ERROR result per objecting rule, in rule order
        """
        context = context or PolicyContext()
        releases = list(available_releases)

        findings: dict[str, list[str]] = {}
        for rule in self.rules:
            if not rule.applies(target_version, context):
                continue
            messages = rule.validate(installed_version, target_version, releases, context)
            if messages:
                findings[rule.name] = messages

        results = []
        for rule_name, messages in findings.items():
            if self.is_superseded(rule_name, findings):
                self.logger.debug(f"{rule_name} superseded for {installed_version} -> {target_version}")
                continue
            summary = messages[0] if len(messages) > 1 else None
            results.append(ValidationResult.create_error(messages, summary))
        return results

    def validate_version(
        self,
        installed_version: str,
        target_version: Optional[str],
        available_releases: Sequence[Release],
        context: Optional[PolicyContext] = None,
    ) -> list[str]:
        """Flattened messages of ``evaluate``; empty means the target is allowed."""
        return [
            message
            for result in self.evaluate(
                installed_version, target_version, available_releases, context
            )
            for message in result.messages
        ]

    def is_superseded(self, rule_name: str, findings: Mapping[str, list[str]]) -> bool:
        for specific, less_specific in self.supersessions.items():
            if findings.get(specific) and rule_name in less_specific:
                return True
        return False

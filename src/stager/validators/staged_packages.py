"""Refuses to apply a stage that changed packages other than core."""

import logging
from pathlib import Path
from typing import Sequence

from stager.config import StagerSettings
from stager.models.release import InstalledPackage
from stager.services.events import EventDispatcher, PreApplyEvent
from stager.services.package_manager import PackageOperationRunner
from stager.services.update_stage import UpdateStage


def _plural(count: int, singular: str, plural: str) -> str:
    return singular if count == 1 else plural


class StagedPackagesValidator:
    """Compares active and staged package lists before apply.

    Only packages whose type is in ``guarded_package_types`` are checked:
    installing, removing or changing the version of one of those as a side
    effect of a core update is refused.
    """

    def __init__(self, settings: StagerSettings, runner: PackageOperationRunner):
        self.logger = logging.getLogger("stager.validators.staged_packages")
        self.settings = settings
        self.runner = runner

    def subscribe(self, dispatcher: EventDispatcher) -> None:
        dispatcher.subscribe(PreApplyEvent, self.validate_staged_packages)

    def _type_label(self, package: InstalledPackage) -> str:
        return (package.type or "package").replace("-", " ")

    def _guarded(self, packages: Sequence[InstalledPackage]) -> dict[str, InstalledPackage]:
        return {
            p.name: p for p in packages if p.type in self.settings.guarded_package_types
        }

    async def validate_staged_packages(self, event: PreApplyEvent) -> None:
        stage = event.stage
        if not isinstance(stage, UpdateStage):
            return

        active = self._guarded(await self.runner.inspect(self.settings.active_dir))
        staged = self._guarded(await self.runner.inspect(Path(stage.get_stage_directory())))

        installed = [staged[name] for name in staged if name not in active]
        if installed:
            messages = [f"{self._type_label(p)} '{p.name}' installed." for p in installed]
            event.add_error(
                messages,
                "The update cannot proceed because the following "
                + _plural(len(messages), "project was", "projects were")
                + " installed during the update.",
            )

        removed = [active[name] for name in active if name not in staged]
        if removed:
            messages = [f"{self._type_label(p)} '{p.name}' removed." for p in removed]
            event.add_error(
                messages,
                "The update cannot proceed because the following "
                + _plural(len(messages), "project was", "projects were")
                + " removed during the update.",
            )

        updated = [
            (active[name], staged[name])
            for name in active
            if name in staged and active[name].version != staged[name].version
        ]
        if updated:
            messages = [
                f"{self._type_label(old)} '{old.name}' from {old.version} to {new.version}."
                for old, new in updated
            ]
            event.add_error(
                messages,
                "The update cannot proceed because the following "
                + _plural(len(messages), "project was", "projects were")
                + " unexpectedly updated. Only core updates are currently supported.",
            )

        if not (installed or removed or updated):
            self.logger.debug("No guarded packages changed in the stage")

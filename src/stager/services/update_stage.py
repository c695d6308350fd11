"""Update stage: begins a stage from a target project version."""

from typing import Optional

from stager.exceptions import StageException
from stager.models.status import PhaseEnum
from stager.services.stage import StageOrchestrator


class UpdateStage(StageOrchestrator):
    """Stage specialised for updating the core project.

    Callers name a project and a version (``{"core": "9.8.1"}``); the stage
    maps it onto the configured core packages actually installed in the
    active directory.
    """

    failure_marker_message = (
        "Automatic updates failed to apply, and the site is in an indeterminate "
        "state. Consider restoring the code and database from a backup."
    )

    async def begin(self, project_versions: dict[str, str]) -> str:
        """Create a stage targeting the given project version.

        Args:
            project_versions: Exactly one entry, for the core project

        Returns:
            The new stage id

        Raises:
            StageException: If a project other than core is requested, or no
                core package is installed
        """
        unknown = [p for p in project_versions if p != self.settings.core_project]
        if unknown or not project_versions:
            raise StageException(
                f"Only the '{self.settings.core_project}' project can be updated; "
                f"got: {', '.join(project_versions) or 'nothing'}.",
                phase=PhaseEnum.UNCREATED,
            )
        # Check before the slow inspect so a marker is reported first
        self.failure_marker.assert_not_exists()
        target_version = project_versions[self.settings.core_project]

        installed = await self.runner.inspect(self.settings.active_dir)
        installed_names = {p.name for p in installed}
        core_names = [n for n in self.settings.core_packages if n in installed_names]
        if not core_names:
            raise StageException(
                "No core packages are installed in the active directory "
                f"(looked for {', '.join(self.settings.core_packages)}).",
                phase=PhaseEnum.UNCREATED,
            )

        package_versions = {"production": {name: target_version for name in core_names}, "dev": {}}
        self.logger.info(f"Beginning update of {self.settings.core_project} to {target_version}")
        return await self.create(package_versions=package_versions)

    async def stage(self) -> None:
        """Require the versions recorded by begin()."""
        versions = self.get_package_versions()
        runtime = [f"{name}:{version}" for name, version in versions["production"].items()]
        dev = [f"{name}:{version}" for name, version in versions["dev"].items()]
        await self.require(runtime, dev)

    def get_package_versions(self) -> dict[str, dict[str, str]]:
        record = self.get_record()
        if record is None:
            return {"production": {}, "dev": {}}
        return {group: dict(packages) for group, packages in record.package_versions.items()}

    def get_target_version(self) -> Optional[str]:
        """Target core version, taken from the first core package requested."""
        production = self.get_package_versions().get("production", {})
        for name in self.settings.core_packages:
            if name in production:
                return production[name]
        return None

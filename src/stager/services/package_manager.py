"""External package manager operations run against a directory."""

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence

from stager.exceptions import ExternalOperationError
from stager.models.release import InstalledPackage
from stager.models.status import PhaseEnum
from stager.services.process import CommandResult, CommandRunner

# vendor/name, optionally followed by ":constraint"
CONSTRAINT_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_.-]*/[a-z0-9][a-z0-9_.-]*(:[^\s:]+)?$")


@dataclass
class OperationOutcome:
    """Structured result of one package manager operation."""

    operation: str
    directory: str
    constraints: list[str] = field(default_factory=list)
    success: bool = True
    stdout: str = ""
    stderr: str = ""

    @property
    def diagnostic_output(self) -> str:
        return (self.stderr.strip() or self.stdout.strip())

    @classmethod
    def from_result(
        cls, operation: str, directory: Path, constraints: Sequence[str], result: CommandResult
    ) -> "OperationOutcome":
        return cls(
            operation=operation,
            directory=str(directory),
            constraints=list(constraints),
            success=result.ok,
            stdout=result.stdout,
            stderr=result.stderr,
        )


def validate_constraints(constraints: Sequence[str]) -> None:
    """Reject malformed ``vendor/name[:constraint]`` requirements.

    Raises:
        ValueError: Naming every invalid requirement
    """
    invalid = [c for c in constraints if not CONSTRAINT_PATTERN.match(c)]
    if invalid:
        raise ValueError(f"Invalid package requirements: {', '.join(invalid)}")


class PackageOperationRunner:
    """Invokes the package manager as an opaque subprocess.

    The command line follows Composer conventions:
        <executable> require --working-dir=DIR --no-interaction [--dev] a/b:1.2.3
        <executable> update --working-dir=DIR --no-interaction --with-all-dependencies a/b
        <executable> remove --working-dir=DIR --no-interaction a/b
        <executable> show --working-dir=DIR --format=json
    Output is not parsed except for ``show``, which yields the installed
    package names and versions.
    """

    def __init__(
        self,
        executable: Sequence[str],
        command_runner: Optional[CommandRunner] = None,
        timeout: Optional[float] = None,
    ):
        """Initialize package operation runner.

        Args:
            executable: argv prefix, e.g. ["composer"] or ["php", "composer.phar"]
            command_runner: Subprocess runner (new instance if None)
            timeout: Seconds before an operation is killed
        """
        self.logger = logging.getLogger("stager.package_manager")
        self.executable = list(executable)
        self.command_runner = command_runner or CommandRunner()
        self.timeout = timeout

    async def require(
        self, directory: Path, constraints: Sequence[str], dev: bool = False
    ) -> OperationOutcome:
        """Require packages inside ``directory``.

        Raises:
            ValueError: If a requirement is malformed
            ExternalOperationError: If the package manager fails; the outcome
                carries the failed constraints and diagnostic output
        """
        validate_constraints(constraints)
        args = ["require", f"--working-dir={directory}", "--no-interaction"]
        if dev:
            args.append("--dev")
        outcome = await self._run("require", directory, args, constraints)
        if not outcome.success:
            raise ExternalOperationError(
                f"Failed to require {', '.join(constraints)}: {outcome.diagnostic_output}",
                phase=PhaseEnum.REQUIRING,
                outcome=outcome,
            )
        return outcome

    async def update(self, directory: Path, packages: Sequence[str]) -> OperationOutcome:
        validate_constraints(packages)
        args = [
            "update",
            f"--working-dir={directory}",
            "--no-interaction",
            "--with-all-dependencies",
        ]
        return await self._run("update", directory, args, packages)

    async def remove(self, directory: Path, packages: Sequence[str]) -> OperationOutcome:
        validate_constraints(packages)
        args = ["remove", f"--working-dir={directory}", "--no-interaction"]
        return await self._run("remove", directory, args, packages)

    async def inspect(self, directory: Path) -> list[InstalledPackage]:
        """List installed packages in ``directory``.

        Raises:
            ExternalOperationError: If the command fails or prints invalid JSON
        """
        args = ["show", f"--working-dir={directory}", "--format=json"]
        outcome = await self._run("show", directory, args, [])
        if not outcome.success:
            raise ExternalOperationError(
                f"Failed to list installed packages in {directory}: "
                f"{outcome.diagnostic_output}",
                outcome=outcome,
            )
        try:
            data = json.loads(outcome.stdout or "{}")
            return [InstalledPackage(**entry) for entry in data.get("installed", [])]
        except (json.JSONDecodeError, TypeError, ValueError) as e:
            raise ExternalOperationError(
                f"Unexpected output listing packages in {directory}: {e}",
                outcome=outcome,
            ) from e

    async def get_installed_version(
        self, directory: Path, package_names: Sequence[str]
    ) -> Optional[str]:
        """Version of the first installed package among ``package_names``."""
        installed = {p.name: p for p in await self.inspect(directory)}
        for name in package_names:
            if name in installed:
                return installed[name].version
        return None

    async def _run(
        self, operation: str, directory: Path, args: list[str], constraints: Sequence[str]
    ) -> OperationOutcome:
        argv = self.executable + args + list(constraints)
        self.logger.info(f"Package manager {operation} in {directory}: {' '.join(constraints)}")
        result = await self.command_runner.run(argv, cwd=directory, timeout=self.timeout)
        outcome = OperationOutcome.from_result(operation, directory, constraints, result)
        if not outcome.success:
            self.logger.error(
                f"Package manager {operation} failed in {directory}: "
                f"{outcome.diagnostic_output}"
            )
        return outcome

"""Post-apply tasks run by ``StageOrchestrator.post_apply()``.

Every task is idempotent so a failed post-apply can simply be retried.
"""

import logging
import shlex
from typing import TYPE_CHECKING, Optional

from stager.config import StagerSettings
from stager.services.process import CommandRunner
from stager.services.reporter import ReportService
from stager.services.status_checker import StatusChecker

if TYPE_CHECKING:
    from stager.services.stage import PostApplyHook, StageOrchestrator


class PostApplyTasks:
    def __init__(
        self,
        settings: StagerSettings,
        command_runner: CommandRunner,
        status_checker: Optional[StatusChecker] = None,
        reporter: Optional[ReportService] = None,
    ):
        self.logger = logging.getLogger("stager.hooks")
        self.settings = settings
        self.command_runner = command_runner
        self.status_checker = status_checker
        self.reporter = reporter

    def get_hooks(self) -> list["PostApplyHook"]:
        hooks: list["PostApplyHook"] = []
        if self.status_checker is not None:
            hooks.append(self.clear_status_cache)
        hooks.append(self.run_post_apply_commands)
        hooks.append(self.restart_services)
        if self.reporter is not None:
            hooks.append(self.notify)
        return hooks

    async def clear_status_cache(self, stage: "StageOrchestrator") -> None:
        self.status_checker.clear_stored_results()

    async def run_post_apply_commands(self, stage: "StageOrchestrator") -> None:
        """Run configured commands in the active directory.

        Raises:
            RuntimeError: On the first command that fails
        """
        for command in self.settings.post_apply_commands:
            argv = shlex.split(command)
            result = await self.command_runner.run(
                argv, cwd=self.settings.active_dir, timeout=self.settings.package_manager_timeout
            )
            if not result.ok:
                raise RuntimeError(
                    f"Command '{command}' exited with {result.returncode}: "
                    f"{result.stderr.strip() or result.stdout.strip()}"
                )
            self.logger.info(f"Post-apply command succeeded: {command}")

    async def restart_services(self, stage: "StageOrchestrator") -> None:
        for service in self.settings.restart_services:
            await self.command_runner.restart_service(service)

    async def notify(self, stage: "StageOrchestrator") -> None:
        await self.reporter.report(
            event="PostApply",
            stage_id=stage.get_stage_id(),
            phase=stage.get_phase().value,
            message="Post-apply tasks completed",
        )

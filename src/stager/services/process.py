"""Subprocess execution for the package manager and post-apply commands."""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence


@dataclass
class CommandResult:
    """Captured result of one subprocess run."""

    argv: list[str]
    returncode: int
    stdout: str
    stderr: str
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out


class CommandRunner:
    """Runs external commands and captures their output.

    Never raises on a non-zero exit: callers decide what a failure means.
    Failing to start the executable at all (missing binary) is reported as
    exit code 127 with the OS error in stderr.
    """

    def __init__(self):
        """Initialize command runner."""
        self.logger = logging.getLogger("stager.process")

    async def run(
        self,
        argv: Sequence[str],
        cwd: Optional[Path] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        """Run a command.

        Args:
            argv: Program and arguments (no shell)
            cwd: Working directory
            timeout: Seconds before the process is killed (None = no limit)

        Returns:
            CommandResult with decoded stdout/stderr
        """
        argv = list(argv)
        self.logger.debug(f"Running: {' '.join(argv)} (cwd={cwd})")

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=str(cwd) if cwd else None,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            self.logger.error(f"Failed to start {argv[0]}: {e}")
            return CommandResult(argv=argv, returncode=127, stdout="", stderr=str(e))

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            process.kill()
            stdout, stderr = await process.communicate()
            self.logger.error(f"Command timed out after {timeout}s: {' '.join(argv)}")
            return CommandResult(
                argv=argv,
                returncode=process.returncode if process.returncode is not None else -9,
                stdout=stdout.decode(errors="replace"),
                stderr=stderr.decode(errors="replace")
                + f"\nProcess killed after {timeout} seconds.",
                timed_out=True,
            )

        result = CommandResult(
            argv=argv,
            returncode=process.returncode,
            stdout=stdout.decode(errors="replace"),
            stderr=stderr.decode(errors="replace"),
        )
        if result.ok:
            self.logger.debug(f"Command succeeded: {argv[0]}")
        else:
            self.logger.warning(
                f"Command failed with exit code {result.returncode}: {' '.join(argv)}"
            )
        return result

    async def restart_service(self, service_name: str) -> None:
        """Restart a systemd service.

        Args:
            service_name: Systemd unit name (e.g., "php-fpm")

        Raises:
            RuntimeError: If restart command fails
        """
        self.logger.info(f"Restarting service: {service_name}")
        result = await self.run(["systemctl", "restart", service_name])
        if not result.ok:
            raise RuntimeError(
                f"Failed to restart {service_name}: "
                f"exit code {result.returncode}, stderr: {result.stderr.strip()}"
            )
        self.logger.info(f"Service {service_name} restarted successfully")

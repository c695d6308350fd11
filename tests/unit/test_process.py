"""Unit tests for CommandRunner."""

import sys
from unittest.mock import AsyncMock, patch

import pytest

from stager.services.process import CommandResult, CommandRunner


@pytest.mark.unit
class TestCommandRunner:
    """Test CommandRunner in isolation."""

    @pytest.fixture
    def runner(self):
        """Create CommandRunner instance."""
        return CommandRunner()

    @pytest.mark.asyncio
    async def test_run_success(self, runner):
        """Test capturing output of a successful command."""
        # Arrange
        mock_process = AsyncMock()
        mock_process.communicate = AsyncMock(return_value=(b"done\n", b""))
        mock_process.returncode = 0

        with patch("asyncio.create_subprocess_exec", return_value=mock_process) as mock_exec:
            # Act
            result = await runner.run(["composer", "show"], cwd="/srv/site")

            # Assert
            assert result.ok is True
            assert result.stdout == "done\n"
            assert mock_exec.call_args.args == ("composer", "show")
            assert mock_exec.call_args.kwargs["cwd"] == "/srv/site"

    @pytest.mark.asyncio
    async def test_run_failure_not_raised(self, runner):
        """Test non-zero exit is reported, not raised."""
        # Arrange
        mock_process = AsyncMock()
        mock_process.communicate = AsyncMock(return_value=(b"", b"conflict\n"))
        mock_process.returncode = 2

        with patch("asyncio.create_subprocess_exec", return_value=mock_process):
            # Act
            result = await runner.run(["composer", "require", "a/b"])

            # Assert
            assert result.ok is False
            assert result.returncode == 2
            assert result.stderr == "conflict\n"

    @pytest.mark.asyncio
    async def test_run_missing_executable(self, runner):
        """Test a missing binary maps to exit code 127."""
        with patch(
            "asyncio.create_subprocess_exec",
            side_effect=FileNotFoundError("No such file or directory: 'composer'"),
        ):
            result = await runner.run(["composer", "show"])

        assert result.returncode == 127
        assert "No such file" in result.stderr

    @pytest.mark.asyncio
    async def test_run_timeout_kills_process(self, runner):
        """Test a slow command is killed after the timeout."""
        result = await runner.run(
            [sys.executable, "-c", "import time; time.sleep(10)"], timeout=0.5
        )

        assert result.timed_out is True
        assert result.ok is False
        assert "killed after 0.5 seconds" in result.stderr

    @pytest.mark.asyncio
    async def test_run_real_command(self, runner, tmp_path):
        result = await runner.run(
            [sys.executable, "-c", "import os; print(os.getcwd())"], cwd=tmp_path
        )

        assert result.ok is True
        assert result.stdout.strip() == str(tmp_path)

    @pytest.mark.asyncio
    async def test_restart_service_success(self, runner):
        with patch.object(
            runner, "run", AsyncMock(return_value=CommandResult(["systemctl"], 0, "", ""))
        ) as mock_run:
            await runner.restart_service("php-fpm")

        mock_run.assert_awaited_once_with(["systemctl", "restart", "php-fpm"])

    @pytest.mark.asyncio
    async def test_restart_service_failure(self, runner):
        failed = CommandResult(["systemctl"], 5, "", "Unit php-fpm.service not found.\n")
        with patch.object(runner, "run", AsyncMock(return_value=failed)):
            with pytest.raises(RuntimeError, match="Unit php-fpm.service not found."):
                await runner.restart_service("php-fpm")


@pytest.mark.unit
def test_command_result_ok():
    assert CommandResult(["x"], 0, "", "").ok is True
    assert CommandResult(["x"], 0, "", "", timed_out=True).ok is False
    assert CommandResult(["x"], 1, "", "").ok is False

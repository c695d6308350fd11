"""Unit tests for main.py lifespan startup logic."""

from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from stager.models.status import PhaseEnum


# -----------------------------------------------------------------------
# 辅助工厂
# -----------------------------------------------------------------------

def _start(container):
    """运行 lifespan，返回 mock logger。"""
    from stager.main import app

    mock_logger = MagicMock()
    with patch("stager.main.setup_logger", return_value=mock_logger) as mock_setup:
        with TestClient(app) as c:
            resp = c.get("/")
            assert resp.status_code == 200
    mock_setup.assert_called_once_with(
        "stager", container.settings.log_file, level=container.settings.log_level
    )
    return mock_logger


def _messages(mock_method):
    return [call.args[0] for call in mock_method.call_args_list]


# -----------------------------------------------------------------------
# lifespan
# -----------------------------------------------------------------------

@pytest.mark.unit
class TestLifespan:
    """lifespan 启动：只报告状态，从不自动清理。"""

    def test_no_stage_starts_fresh(self, container):
        """无 stage 时服务应正常启动。"""
        logger = _start(container)

        assert "No existing stage found, starting fresh" in _messages(logger.info)
        logger.critical.assert_not_called()

    @pytest.mark.asyncio
    async def test_existing_stage_is_reported_and_kept(self, container):
        """已有 stage 应记录 warning，且不被删除。"""
        stage = container.create_stage(owner="operator")
        stage_id = await stage.create()

        logger = _start(container)

        warning = _messages(logger.warning)[0]
        assert stage_id in warning
        assert "phase=created" in warning
        assert "owner=operator" in warning
        assert container.lock.is_available() is False

    @pytest.mark.asyncio
    async def test_failure_marker_is_critical(self, container):
        """failure marker 存在时应记录 critical，且不被清除。"""
        stage = container.create_stage()
        await stage.create()
        record = stage.get_record()
        record.phase = PhaseEnum.APPLYING
        stage._save(record)
        container.failure_marker.write(stage.failure_marker_message, stage_id=record.id)

        logger = _start(container)

        assert "all stage operations are blocked" in _messages(logger.critical)[0]
        assert "interrupted" in _messages(logger.error)[0]
        assert container.failure_marker.exists() is True

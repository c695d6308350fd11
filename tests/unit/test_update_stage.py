"""Unit tests for UpdateStage with the fully wired container."""

import pytest

from conftest import read_packages, write_packages
from stager.exceptions import StageEventException, StageException
from stager.models.status import PhaseEnum


@pytest.mark.unit
class TestUpdateStage:
    @pytest.fixture
    def stage(self, container):
        return container.create_stage(owner="cli")

    @pytest.mark.asyncio
    async def test_begin_maps_core_packages(self, stage):
        # Act
        stage_id = await stage.begin({"core": "9.8.1"})

        # Assert
        assert stage_id == stage.get_stage_id()
        assert stage.get_phase() == PhaseEnum.CREATED
        assert stage.get_package_versions() == {
            "production": {"drupal/core": "9.8.1", "drupal/core-recommended": "9.8.1"},
            "dev": {},
        }
        assert stage.get_target_version() == "9.8.1"

    @pytest.mark.asyncio
    async def test_begin_only_core(self, stage):
        with pytest.raises(StageException, match="Only the 'core' project can be updated"):
            await stage.begin({"core": "9.8.1", "acme_blog": "2.0.0"})
        with pytest.raises(StageException, match="got: nothing"):
            await stage.begin({})
        assert stage.is_available() is True

    @pytest.mark.asyncio
    async def test_begin_without_core_installed(self, stage, settings):
        write_packages(settings.active_dir, [{"name": "acme/blog", "version": "1.0.0"}])

        with pytest.raises(StageException, match="No core packages are installed"):
            await stage.begin({"core": "9.8.1"})

    @pytest.mark.asyncio
    async def test_begin_vetoed_by_version_policy(self, stage):
        """A disallowed target never produces a stage."""
        # Act
        with pytest.raises(StageEventException) as exc_info:
            await stage.begin({"core": "10.0.0"})

        # Assert
        error = exc_info.value
        assert error.event_name == "PreCreateEvent"
        assert error.message == "Updating from Core 9.8.0 to 10.0.0 is not allowed."
        assert any(
            "one major version to another" in m for m in error.results[0].messages
        )
        assert stage.is_available() is True

    @pytest.mark.asyncio
    async def test_begin_rejects_downgrade(self, stage):
        with pytest.raises(StageEventException) as exc_info:
            await stage.begin({"core": "9.7.1"})

        assert "lower than 9.8.0" in exc_info.value.results[0].messages[0]

    @pytest.mark.asyncio
    async def test_stage_requires_recorded_versions(self, stage, settings):
        await stage.begin({"core": "9.8.1"})

        await stage.stage()

        staged = read_packages(stage.get_stage_directory())
        assert staged["drupal/core"] == "9.8.1"
        assert staged["drupal/core-recommended"] == "9.8.1"
        assert read_packages(settings.active_dir)["drupal/core"] == "9.8.0"
        assert stage.get_phase() == PhaseEnum.REQUIRED

    def test_target_unknown_without_stage(self, stage):
        assert stage.get_target_version() is None
        assert stage.get_package_versions() == {"production": {}, "dev": {}}

    @pytest.mark.asyncio
    async def test_failure_marker_checked_first(self, stage):
        stage.failure_marker.write(stage.failure_marker_message)

        with pytest.raises(StageException, match="Automatic updates failed to apply"):
            await stage.begin({"core": "9.8.1"})

"""Unit tests for version helpers."""

import pytest

from stager.utils.versions import (
    get_branch,
    get_major,
    get_minor,
    is_dev_snapshot,
    is_lower,
    is_release_candidate,
    is_stable,
    same_minor,
)


@pytest.mark.unit
class TestVersionHelpers:
    @pytest.mark.parametrize(
        "version,expected",
        [("9.8.0-dev", True), ("9.8.x-dev", True), ("9.8.0", False), ("9.8.0-rc2", False)],
    )
    def test_is_dev_snapshot(self, version, expected):
        assert is_dev_snapshot(version) is expected

    def test_major_minor_of_branch_snapshot(self):
        """9.8.x-dev is not PEP 440 but still has a major and minor."""
        assert get_major("9.8.x-dev") == 9
        assert get_minor("9.8.x-dev") == 8
        assert get_branch("9.8.x-dev") == "9.8."

    def test_branch(self):
        assert get_branch("9.8.2") == "9.8."
        assert get_branch("10.0.0-rc1") == "10.0."
        assert get_branch("garbage") is None

    @pytest.mark.parametrize(
        "version,stable,rc",
        [
            ("9.8.1", True, False),
            ("9.8.0-rc2", False, True),
            ("9.8.0-alpha1", False, False),
            ("9.8.0-beta3", False, False),
            ("9.8.0-dev", False, False),
        ],
    )
    def test_stability(self, version, stable, rc):
        assert is_stable(version) is stable
        assert is_release_candidate(version) is rc

    def test_is_lower(self):
        assert is_lower("9.8.0", "9.8.2") is True
        assert is_lower("9.8.2", "9.8.0") is False
        assert is_lower("9.8.0-rc1", "9.8.0") is True
        # Unparseable versions never count as a downgrade
        assert is_lower("9.8.x-dev", "9.8.2") is False

    def test_same_minor(self):
        assert same_minor("9.8.0", "9.8.2") is True
        assert same_minor("9.8.0", "9.9.0") is False
        assert same_minor("9.8.0", "10.8.0") is False

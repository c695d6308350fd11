"""Global pytest fixtures and configuration."""

import json
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from stager.config import StagerSettings  # noqa: E402
from stager.container import build_container, set_container  # noqa: E402
from stager.models.status import CronMode  # noqa: E402

FAKE_COMPOSER = Path(__file__).parent / "fixtures" / "fake_composer.py"
RELEASE_SOURCE = "https://releases.test/history"


def write_packages(directory: Path, packages: list[dict]) -> None:
    (directory / "packages.json").write_text(
        json.dumps({"installed": packages}, indent=2), encoding="utf-8"
    )


def read_packages(directory: Path) -> dict[str, str]:
    data = json.loads((directory / "packages.json").read_text(encoding="utf-8"))
    return {p["name"]: p["version"] for p in data["installed"]}


@pytest.fixture
def temp_dir(tmp_path):
    """Create a temporary directory for test files."""
    yield tmp_path


@pytest.fixture
def active_dir(tmp_path):
    """A small code base with core 9.8.0 and one contrib module installed."""
    root = tmp_path / "active"
    root.mkdir()
    (root / "index.php").write_text("<?php // front controller\n")
    (root / "core").mkdir()
    (root / "core" / "lib.php").write_text("<?php // core 9.8.0\n")
    (root / "settings.local.json").write_text('{"db": "production"}')
    (root / ".git").mkdir()
    (root / ".git" / "HEAD").write_text("ref: refs/heads/main\n")
    write_packages(
        root,
        [
            {"name": "drupal/core", "version": "9.8.0", "type": "core"},
            {"name": "drupal/core-recommended", "version": "9.8.0", "type": "metapackage"},
            {"name": "acme/blog", "version": "1.0.0", "type": "module"},
        ],
    )
    return root


@pytest.fixture
def release_history():
    """Release metadata served by the fake trusted source."""
    return {
        "project": "core",
        "supported_branches": ["9.7.", "9.8."],
        "releases": [
            {"version": "9.8.2", "is_security_release": False},
            {"version": "9.8.1", "is_security_release": True},
            {"version": "9.8.0", "is_security_release": False},
            {"version": "9.7.1", "is_security_release": True},
        ],
    }


@pytest.fixture
def http_transport(release_history):
    """httpx.MockTransport serving release history and recording webhook posts."""
    reports = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/core.json"):
            return httpx.Response(200, json=release_history)
        if request.url.path == "/report":
            reports.append(json.loads(request.content))
            return httpx.Response(200, json={"ok": True})
        return httpx.Response(404)

    transport = httpx.MockTransport(handler)
    transport.reports = reports
    return transport


@pytest.fixture
def settings(tmp_path, active_dir):
    """Settings pointing every path into tmp_path and using the fake composer."""
    return StagerSettings(
        active_dir=active_dir,
        stage_root=tmp_path / "stages",
        state_dir=tmp_path / "state",
        log_file=tmp_path / "logs" / "stager.log",
        package_manager=[sys.executable, str(FAKE_COMPOSER)],
        package_manager_timeout=30,
        trusted_release_sources=[RELEASE_SOURCE],
        cron_mode=CronMode.SECURITY,
        report_url="http://webhook.test/report",
    )


@pytest.fixture
def container(settings, http_transport):
    """Fully wired container; also installed as the process-wide container."""
    c = build_container(settings, transport=http_transport)
    set_container(c)
    yield c
    set_container(None)


@pytest.fixture
def mock_runner():
    """Mock PackageOperationRunner for unit tests."""
    runner = MagicMock()
    runner.require = AsyncMock()
    runner.update = AsyncMock()
    runner.remove = AsyncMock()
    runner.inspect = AsyncMock(return_value=[])
    runner.get_installed_version = AsyncMock(return_value="9.8.0")
    return runner

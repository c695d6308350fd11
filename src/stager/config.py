"""Runtime settings for the stager service.

Order of precedence (highest → lowest):
    1. Environment variables (``STAGER_ACTIVE_DIR``, ``STAGER_CRON_MODE``, ...)
    2. JSON file named by ``STAGER_CONFIG_FILE`` (see ``load_settings``)
    3. ``.env`` file
    4. Defaults below
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from stager.models.status import CronMode


class StagerSettings(BaseSettings):
    """Settings consumed read-only by the orchestrator and its collaborators."""

    # ── Paths ────────────────────────────────────────────────────────────
    active_dir: Path = Field(default=Path("."), description="Production code base root")
    stage_root: Path = Field(
        default=Path(tempfile.gettempdir()) / "stager" / "stages",
        description="Parent of stage directories; must be outside active_dir",
    )
    state_dir: Path = Field(
        default=Path("./.stager/state"),
        description="Lock, failure marker and stage records",
    )
    log_file: Path = Field(default=Path("./logs/stager.log"))
    log_level: str = Field(default="INFO")

    # ── Package manager ──────────────────────────────────────────────────
    package_manager: list[str] = Field(
        default_factory=lambda: ["composer"],
        description="argv prefix used to invoke the package manager",
    )
    package_manager_timeout: Optional[float] = Field(
        default=300.0, description="Seconds before a package manager run is killed"
    )

    # ── Project ──────────────────────────────────────────────────────────
    core_project: str = Field(default="core", description="Project name accepted by begin()")
    core_packages: list[str] = Field(
        default_factory=lambda: ["drupal/core", "drupal/core-recommended"],
        description="Package names that carry the core project version",
    )
    project_title: str = Field(default="Core", description="Name used in policy messages")
    excluded_paths: list[str] = Field(
        default_factory=lambda: [".git", ".stager", "logs", "settings.local.json"],
        description="Paths (relative, glob) never copied into a stage nor touched by apply",
    )
    guarded_package_types: list[str] = Field(
        default_factory=lambda: ["module", "custom-module", "theme", "custom-theme"],
        description="Package types that must not change as a side effect of an update",
    )

    # ── Policy ───────────────────────────────────────────────────────────
    allow_minor_updates: bool = Field(
        default=False, description="Allow attended updates across minor versions"
    )
    cron_mode: CronMode = Field(default=CronMode.SECURITY)
    trusted_release_sources: list[str] = Field(
        default_factory=lambda: ["https://updates.example.com/release-history"],
        description="Base URLs release metadata may be fetched from",
    )
    status_check_ttl_hours: int = Field(default=24, ge=1)

    # ── Post-apply ───────────────────────────────────────────────────────
    restart_services: list[str] = Field(default_factory=list)
    post_apply_commands: list[str] = Field(default_factory=list)
    report_url: Optional[str] = Field(
        default=None, description="Webhook receiving lifecycle event reports"
    )

    # ── Server ───────────────────────────────────────────────────────────
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=12316)

    model_config: dict[str, Any] = {
        "env_prefix": "STAGER_",
        "env_file": ".env",
        "extra": "ignore",
        "env_nested_delimiter": "__",
    }

    @field_validator("excluded_paths")
    @classmethod
    def no_absolute_exclusions(cls, v: list[str]) -> list[str]:
        """Exclusions are relative to the directory being copied."""
        for path in v:
            if path.startswith("/") or ".." in Path(path).parts:
                raise ValueError(f"Excluded path must be relative and inside the tree: {path}")
        return [path.rstrip("/") for path in v]

    @property
    def is_cron_enabled(self) -> bool:
        return self.cron_mode != CronMode.DISABLED


def load_settings(config_file: Optional[str] = None, **overrides: Any) -> StagerSettings:
    """Build settings from an optional JSON file plus environment.

    Values from the JSON file are passed as init kwargs, which pydantic-settings
    ranks above the environment, so file values are dropped for every key
    that is set in the environment.

    Args:
        config_file: JSON file path (defaults to ``$STAGER_CONFIG_FILE``)
        **overrides: Highest-precedence values (used by the CLI and tests)

    Returns:
        Validated StagerSettings
    """
    config_file = config_file or os.environ.get("STAGER_CONFIG_FILE")
    file_values: dict[str, Any] = {}
    if config_file:
        with open(config_file, "r", encoding="utf-8") as f:
            file_values = json.load(f)

    env_set = {
        name
        for name in StagerSettings.model_fields
        if f"STAGER_{name.upper()}" in os.environ
    }
    values = {k: v for k, v in file_values.items() if k not in env_set}
    values.update({k: v for k, v in overrides.items() if v is not None})
    return StagerSettings(**values)

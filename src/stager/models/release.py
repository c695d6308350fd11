"""Release and package models supplied by external collaborators."""

from typing import Optional

from pydantic import BaseModel, Field, field_validator


class Release(BaseModel):
    """An available upstream version of a project. Read-only to the core."""

    version: str = Field(..., min_length=1, description="Version string (e.g. 9.8.1)")
    status: str = Field(default="published", description="published/unpublished/revoked")
    is_security_release: bool = Field(
        default=False, description="Whether the release fixes security issues"
    )
    release_url: Optional[str] = Field(None, description="Release notes URL")

    @property
    def is_published(self) -> bool:
        return self.status == "published"


class ProjectReleases(BaseModel):
    """Release metadata document served by a trusted source.

    Example:
        {
            "project": "core",
            "supported_branches": ["9.7.", "9.8."],
            "releases": [
                {"version": "9.8.2", "is_security_release": true},
                {"version": "9.8.1"}
            ]
        }
    """

    project: str = Field(..., description="Project machine name")
    supported_branches: list[str] = Field(
        default_factory=list, description="Branch prefixes such as '9.8.'"
    )
    releases: list[Release] = Field(default_factory=list, description="Newest first")

    @field_validator("supported_branches")
    @classmethod
    def branches_end_with_dot(cls, v: list[str]) -> list[str]:
        """Normalize '9.8' to '9.8.' so prefix matching cannot hit 9.80."""
        return [b if b.endswith(".") else f"{b}." for b in v]

    def get_installable_releases(self) -> list[Release]:
        """Published releases only, preserving document order (newest first)."""
        return [r for r in self.releases if r.is_published]


class InstalledPackage(BaseModel):
    """One entry reported by the package manager's inspect operation."""

    name: str
    version: str
    type: Optional[str] = None

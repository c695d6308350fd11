"""Pydantic models for HTTP API requests and responses."""

from typing import Optional

from pydantic import BaseModel, Field, field_validator


class OwnedRequest(BaseModel):
    """Fields identifying the caller and its stage."""

    owner: str = Field(
        default="api",
        min_length=1,
        description="Owner fingerprint; must match the one used for begin",
        examples=["api", "operator-session-42"],
    )
    stage_id: Optional[str] = Field(
        None, description="Stage id returned by begin", examples=["k2Vq3n0c..."]
    )


class BeginRequest(BaseModel):
    """POST /api/v1.0/begin payload.

    Example:
        {
            "project_versions": {"core": "9.8.1"},
            "owner": "api"
        }
    """

    project_versions: dict[str, str] = Field(
        ...,
        description="Target version per project; only the core project is accepted",
        examples=[{"core": "9.8.1"}],
    )
    owner: str = Field(default="api", min_length=1)

    @field_validator("project_versions")
    @classmethod
    def not_empty(cls, v: dict[str, str]) -> dict[str, str]:
        if not v:
            raise ValueError("project_versions must name at least one project")
        return v


class StageRequest(OwnedRequest):
    """POST /api/v1.0/stage, /apply and /post-apply payload.

    Example:
        {
            "stage_id": "k2Vq3n0c...",
            "owner": "api"
        }
    """


class DestroyRequest(OwnedRequest):
    """POST /api/v1.0/destroy payload.

    ``force`` destroys whatever stage exists, without an ownership check.
    """

    force: bool = Field(default=False, description="Operator override")
    reason: Optional[str] = Field(
        None, description="Message shown to callers still holding the stage id"
    )


class StatusCheckRequest(BaseModel):
    """POST /api/v1.0/status-check payload."""

    target_version: Optional[str] = Field(
        None, description="Validate this core version as the update target"
    )
    unattended: bool = Field(
        default=False, description="Evaluate the rules that apply to cron updates"
    )


class SuccessResponse(BaseModel):
    """Success response for command endpoints."""

    code: int = Field(default=200, description="Application-level status code (200)")
    msg: str = Field(default="success", description="Success message")
    data: Optional[dict] = Field(None, description="Optional response data")


class ErrorResponse(BaseModel):
    """Error response for all endpoints.

    HTTP status code is always 200, real status in 'code' field.
    """

    code: int = Field(..., description="Application-level error code (400/403/409/422/423/500/502)")
    msg: str = Field(..., description="Human-readable error message")
    phase: str = Field(..., description="Stage phase when the operation failed, or \"unknown\"")
    kind: str = Field(..., description="Machine-readable error kind")
    results: Optional[list[dict]] = Field(None, description="Validation results, if any")


class ReportPayload(BaseModel):
    """Payload POSTed to the report webhook on lifecycle events."""

    event: str = Field(..., description="Event name, e.g. PostApplyEvent")
    stage_id: Optional[str] = None
    phase: str = Field(..., description="Stage phase the event belongs to")
    message: str = Field(..., description="Human-readable description")
    errors: list[str] = Field(default_factory=list)

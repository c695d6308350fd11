"""API route handlers for the stager endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks
from fastapi.responses import JSONResponse

from stager.api.models import (
    BeginRequest,
    DestroyRequest,
    ErrorResponse,
    OwnedRequest,
    StageRequest,
    StatusCheckRequest,
    SuccessResponse,
)
from stager.container import Container, get_container
from stager.exceptions import (
    ApplyFailedError,
    ExternalOperationError,
    OwnershipError,
    ReleaseMetadataError,
    StageEventException,
    StageException,
    StageFailureMarkerException,
    StageStateError,
    StateCorruptedError,
    UntrustedSourceError,
)
from stager.models.state import OperationRecord
from stager.models.status import PhaseEnum, StageType
from stager.models.validation import ValidationResult
from stager.services.update_stage import UpdateStage

LAST_OPERATION_KEY = "last_operation"

# Application-level codes; the HTTP status is always 200
ERROR_CODES = {
    OwnershipError: 403,
    StageStateError: 409,
    StageEventException: 422,
    StageFailureMarkerException: 423,
    ExternalOperationError: 502,
    ReleaseMetadataError: 502,
    UntrustedSourceError: 400,
    StateCorruptedError: 500,
}

router = APIRouter(prefix="/api/v1.0")
logger = logging.getLogger("stager.api")


def _success(data: Optional[dict] = None) -> JSONResponse:
    return JSONResponse(
        status_code=200,
        content=SuccessResponse(data=data).model_dump(mode="json"),
    )


def _error(container: Container, e: StageException) -> JSONResponse:
    payload = container.fill_phase(e).to_payload()
    code = next((c for cls, c in ERROR_CODES.items() if isinstance(e, cls)), 400)
    response = ErrorResponse(
        code=code,
        msg=payload["msg"],
        phase=payload["phase"],
        kind=payload["kind"],
        results=payload.get("results"),
    )
    content = response.model_dump(mode="json", exclude_none=True)
    if "constraints" in payload:
        content["constraints"] = payload["constraints"]
        content["output"] = payload["output"]
    return JSONResponse(status_code=200, content=content)


def _record_operation(
    container: Container,
    operation: str,
    phase: Optional[PhaseEnum],
    success: bool,
    message: str,
    kind: Optional[str] = None,
) -> None:
    container.store.save(
        LAST_OPERATION_KEY,
        OperationRecord(
            operation=operation,
            phase=phase,
            success=success,
            message=message,
            kind=kind,
        ),
    )


def _claimed_stage(container: Container, request: OwnedRequest) -> UpdateStage:
    """Attach a new stage instance to the caller's stage.

    Raises:
        OwnershipError: If no stage id was given or it is not the caller's
    """
    if not request.stage_id:
        raise OwnershipError("A stage_id is required for this operation.")
    stage = container.create_stage(owner=request.owner)
    return stage.claim(request.stage_id)


@router.get("/status")
async def get_status():
    """GET /api/v1.0/status - Stage phase, lock, failure marker, last results.

    Response format:
        {
            "code": 200,
            "msg": "success",
            "data": {
                "phase": "required",
                "available": false,
                "stage_id": "k2Vq3n0c...",
                "failure_marker": null,
                "last_operation": {"operation": "stage", "success": true, ...},
                "status_check": {"severity": "ok", "checked_at": "...", "results": []}
            }
        }
    """
    container = get_container()
    try:
        data = container.create_stage().get_status()
        last_operation = container.store.load(LAST_OPERATION_KEY, OperationRecord)
        results = container.status_checker.get_results()
    except StageException as e:
        logger.error(f"status failed: {e.message}")
        return _error(container, e)

    data["last_operation"] = last_operation.model_dump(mode="json") if last_operation else None

    last_run = container.status_checker.get_last_run_time()
    data["status_check"] = (
        None
        if results is None
        else {
            "severity": ValidationResult.get_overall_severity(results).name.lower(),
            "checked_at": last_run.isoformat() if last_run else None,
            "results": [r.to_payload() for r in results],
        }
    )
    return _success(data)


@router.post("/status-check")
async def post_status_check(request: StatusCheckRequest):
    """POST /api/v1.0/status-check - Run readiness checks now.

    Never changes stage state. An ERROR among the results means an update
    would be refused.
    """
    container = get_container()
    stage_type = StageType.UNATTENDED if request.unattended else StageType.ATTENDED
    stage = container.create_stage(owner="status-check", stage_type=stage_type)
    try:
        results = await container.status_checker.run(
            stage, target_version=request.target_version
        )
    except StageException as e:
        logger.warning(f"status check failed: {e.message}")
        return _error(container, e)
    return _success(
        {
            "severity": ValidationResult.get_overall_severity(results).name.lower(),
            "results": [r.to_payload() for r in results],
        }
    )


@router.post("/begin")
async def post_begin(request: BeginRequest):
    """POST /api/v1.0/begin - Create a stage targeting a core version.

    Returns:
        data.stage_id, to be passed to every later call together with owner
    """
    container = get_container()
    stage = container.create_stage(owner=request.owner)
    try:
        stage_id = await stage.begin(request.project_versions)
    except StageException as e:
        logger.warning(f"begin failed: {e.message}")
        container.fill_phase(e)
        _record_operation(container, "begin", e.phase, False, e.message, e.kind)
        return _error(container, e)

    _record_operation(container, "begin", stage.get_phase(), True, f"Stage {stage_id} created")
    return _success({"stage_id": stage_id, "phase": stage.get_phase().value})


@router.post("/stage")
async def post_stage(request: StageRequest, background_tasks: BackgroundTasks):
    """POST /api/v1.0/stage - Require the target versions in the background.

    Ownership is checked before the background task starts; its outcome is
    reported by GET /status as ``last_operation``.
    """
    container = get_container()
    try:
        stage = _claimed_stage(container, request)
    except StageException as e:
        return _error(container, e)

    background_tasks.add_task(_stage_workflow, container, stage)
    return _success({"stage_id": stage.get_stage_id(), "phase": stage.get_phase().value})


@router.post("/apply")
async def post_apply(request: StageRequest):
    """POST /api/v1.0/apply - Promote the stage into the active directory.

    An interrupted apply (ApplyFailedError) is not converted into a payload:
    it propagates and the failure marker stays set.
    """
    container = get_container()
    try:
        stage = _claimed_stage(container, request)
        await stage.apply()
    except StageException as e:
        if isinstance(e, ApplyFailedError):
            raise
        logger.warning(f"apply failed: {e.message}")
        return _error(container, e)

    _record_operation(container, "apply", stage.get_phase(), True, "Stage applied")
    return _success({"stage_id": stage.get_stage_id(), "phase": stage.get_phase().value})


@router.post("/post-apply")
async def post_post_apply(request: StageRequest):
    """POST /api/v1.0/post-apply - Run post-apply tasks. Safe to retry."""
    container = get_container()
    try:
        stage = _claimed_stage(container, request)
        await stage.post_apply()
    except StageException as e:
        logger.warning(f"post-apply failed: {e.message}")
        return _error(container, e)

    _record_operation(
        container, "post-apply", stage.get_phase(), True, "Post-apply tasks completed"
    )
    return _success({"stage_id": stage.get_stage_id(), "phase": stage.get_phase().value})


@router.post("/destroy")
async def post_destroy(request: DestroyRequest):
    """POST /api/v1.0/destroy - Delete the stage and release the lock.

    With ``force`` any existing stage is destroyed, including an abandoned
    stage owned by someone else.
    """
    container = get_container()
    try:
        if request.force:
            stage = container.create_stage(owner=request.owner)
        else:
            stage = _claimed_stage(container, request)
        phase = await stage.destroy(force=request.force, reason=request.reason)
    except StageException as e:
        logger.warning(f"destroy failed: {e.message}")
        return _error(container, e)

    _record_operation(container, "destroy", stage.get_phase(), True, "Stage destroyed")
    return _success({"stage_id": stage.get_stage_id(), "phase": phase.value})


@router.post("/failure-marker/clear")
async def post_clear_failure_marker():
    """POST /api/v1.0/failure-marker/clear - Operator acknowledgment.

    Only call this after verifying the active directory (or restoring it
    from a backup). The stage, if any, is left for ``destroy --force``.
    """
    container = get_container()
    try:
        message = container.failure_marker.get_message(include_trace=False)
    except StageException as e:
        return _error(container, e)
    if message is None:
        return _success({"cleared": False})
    container.failure_marker.clear()
    logger.warning(f"Failure marker cleared by operator: {message}")
    return _success({"cleared": True})


async def _stage_workflow(container: Container, stage: UpdateStage) -> None:
    """Background task for the stage (require) step."""
    try:
        await stage.stage()
    except StageException as e:
        logger.error(f"Background stage failed: {e.message}")
        container.fill_phase(e)
        _record_operation(container, "stage", e.phase, False, e.message, e.kind)
        return
    _record_operation(
        container, "stage", stage.get_phase(), True, "Packages required in the stage"
    )

"""
Command-line interface: ``stager begin|stage|apply|post-apply|destroy|...``.

Every command prints a JSON payload. Failures print ``{msg, kind, phase}``
to stderr and exit with status 1. An interrupted apply is not converted:
its traceback is printed and the failure marker stays set.
"""

import asyncio
import json
from contextlib import contextmanager
from typing import Any, Optional

import typer
from rich.console import Console

from stager.config import load_settings
from stager.container import Container, build_container, get_container, set_container
from stager.exceptions import ApplyFailedError, OwnershipError, StageException
from stager.models.status import SeverityEnum, StageType
from stager.models.validation import ValidationResult
from stager.services.update_stage import UpdateStage
from stager.utils.logging import setup_logger

app = typer.Typer(
    name="stager",
    help="Staged update orchestrator.",
    no_args_is_help=True,
)

console = Console()
err_console = Console(stderr=True)


# ── Helpers ──────────────────────────────────────────────────────────────


def _print(payload: dict[str, Any]) -> None:
    console.print_json(json.dumps(payload, default=str))


def _fail(e: StageException) -> None:
    payload = get_container().fill_phase(e).to_payload()
    err_console.print_json(json.dumps(payload, default=str))
    raise typer.Exit(code=1)


def _resolve_stage_id(container: Container, owner: str, stage_id: Optional[str]) -> str:
    """Explicit id, or the current stage if this owner created it."""
    if stage_id:
        return stage_id
    record = container.lock.get_record()
    if record is None:
        raise OwnershipError("There is no stage to operate on.")
    if record.owner != owner:
        raise OwnershipError(
            f"The current stage is owned by '{record.owner}'; pass --owner and --stage-id."
        )
    return record.token


def _claimed(owner: str, stage_id: Optional[str]) -> UpdateStage:
    container = get_container()
    stage = container.create_stage(owner=owner)
    return stage.claim(_resolve_stage_id(container, owner, stage_id))


@contextmanager
def _stage_errors():
    """Turn stage errors into a failure payload; ApplyFailedError propagates."""
    try:
        yield
    except ApplyFailedError:
        raise
    except StageException as e:
        _fail(e)


def _run(coro) -> Any:
    with _stage_errors():
        return asyncio.run(coro)


# ── Root callback ────────────────────────────────────────────────────────


@app.callback()
def main(
    config: Optional[str] = typer.Option(
        None, "--config", "-c", help="JSON settings file (overrides $STAGER_CONFIG_FILE)."
    ),
) -> None:
    """Create, stage, apply and destroy update stages."""
    if config:
        set_container(build_container(load_settings(config)))
    settings = get_container().settings
    setup_logger("stager", settings.log_file, level=settings.log_level)


# ── Commands ─────────────────────────────────────────────────────────────


@app.command("serve")
def serve() -> None:
    """Run the HTTP API."""
    from stager.main import main as run_server

    run_server()


@app.command("status")
def status() -> None:
    """Show stage phase, lock owner, failure marker and cached check results."""
    container = get_container()
    with _stage_errors():
        data = container.create_stage(owner="cli").get_status()
        results = container.status_checker.get_results()
    data["status_check"] = None if results is None else [r.to_payload() for r in results]
    _print(data)


@app.command("check")
def check(
    target_version: Optional[str] = typer.Option(
        None, "--target-version", "-t", help="Validate this core version as the target."
    ),
    unattended: bool = typer.Option(False, "--unattended", help="Apply the cron rules."),
) -> None:
    """Run status checks now. Exits 1 if any ERROR was found."""
    container = get_container()
    stage_type = StageType.UNATTENDED if unattended else StageType.ATTENDED
    stage = container.create_stage(owner="cli", stage_type=stage_type)
    results = _run(container.status_checker.run(stage, target_version=target_version))
    severity = ValidationResult.get_overall_severity(results)
    _print({"severity": severity.name.lower(), "results": [r.to_payload() for r in results]})
    if severity == SeverityEnum.ERROR:
        raise typer.Exit(code=1)


@app.command("begin")
def begin(
    version: str = typer.Argument(..., help="Target version, e.g. 9.8.1"),
    project: Optional[str] = typer.Option(None, "--project", help="Defaults to the core project."),
    owner: str = typer.Option("cli", "--owner", help="Owner fingerprint."),
) -> None:
    """Create a stage targeting a core version."""
    container = get_container()
    stage = container.create_stage(owner=owner)
    project = project or container.settings.core_project
    stage_id = _run(stage.begin({project: version}))
    _print({"stage_id": stage_id, "phase": stage.get_phase().value})


@app.command("stage")
def stage_command(
    stage_id: Optional[str] = typer.Option(None, "--stage-id"),
    owner: str = typer.Option("cli", "--owner"),
) -> None:
    """Require the versions recorded by begin inside the stage."""

    async def _stage() -> UpdateStage:
        stage = _claimed(owner, stage_id)
        await stage.stage()
        return stage

    stage = _run(_stage())
    _print({"stage_id": stage.get_stage_id(), "phase": stage.get_phase().value})


@app.command("apply")
def apply(
    stage_id: Optional[str] = typer.Option(None, "--stage-id"),
    owner: str = typer.Option("cli", "--owner"),
) -> None:
    """Promote the stage into the active directory."""

    async def _apply() -> UpdateStage:
        stage = _claimed(owner, stage_id)
        await stage.apply()
        return stage

    stage = _run(_apply())
    _print({"stage_id": stage.get_stage_id(), "phase": stage.get_phase().value})


@app.command("post-apply")
def post_apply(
    stage_id: Optional[str] = typer.Option(None, "--stage-id"),
    owner: str = typer.Option("cli", "--owner"),
) -> None:
    """Run post-apply tasks. Safe to retry."""

    async def _post_apply() -> UpdateStage:
        stage = _claimed(owner, stage_id)
        await stage.post_apply()
        return stage

    stage = _run(_post_apply())
    _print({"stage_id": stage.get_stage_id(), "phase": stage.get_phase().value})


@app.command("destroy")
def destroy(
    stage_id: Optional[str] = typer.Option(None, "--stage-id"),
    owner: str = typer.Option("cli", "--owner"),
    force: bool = typer.Option(
        False, "--force", help="Destroy any existing stage, whoever owns it."
    ),
    reason: Optional[str] = typer.Option(None, "--reason"),
) -> None:
    """Delete the stage and release the lock."""

    async def _destroy():
        if force:
            stage = get_container().create_stage(owner=owner)
        else:
            stage = _claimed(owner, stage_id)
        return stage, await stage.destroy(force=force, reason=reason)

    stage, phase = _run(_destroy())
    _print({"stage_id": stage.get_stage_id(), "phase": phase.value})


@app.command("cron")
def cron() -> None:
    """Run one unattended update attempt."""
    updater = get_container().create_cron_updater()
    started = _run(updater.perform_update())
    _print({"update_started": started, "phase": updater.stage.get_phase().value})


@app.command("clear-failure")
def clear_failure(
    yes: bool = typer.Option(
        False, "--yes", "-y", help="Confirm the active directory has been verified."
    ),
) -> None:
    """Clear the failure marker after verifying or restoring the site."""
    container = get_container()
    with _stage_errors():
        message = container.failure_marker.get_message(include_trace=False)
    if message is None:
        _print({"cleared": False})
        return
    if not yes:
        typer.confirm(f"{message}\nClear the failure marker?", abort=True)
    container.failure_marker.clear()
    _print({"cleared": True})


if __name__ == "__main__":
    app()

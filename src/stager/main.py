"""FastAPI application for the stager service."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
import uvicorn

from stager.api.routes import router
from stager.container import get_container
from stager.models.status import PhaseEnum
from stager.utils.logging import setup_logger

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown hooks.

    Startup:
    - Initialize logger
    - Build the container (state store, lock, validators, ...)
    - Report an interrupted apply or a stage left from a previous run

    Nothing is cleaned up automatically: a failure marker needs an operator,
    and a leftover stage belongs to whoever created it.
    """
    container = get_container()
    settings = container.settings
    logger = setup_logger("stager", settings.log_file, level=settings.log_level)
    logger.info("Stager starting up...")

    stage = container.create_stage(owner="startup")
    phase = stage.get_phase()
    marker = container.failure_marker.get_message(include_trace=False)
    if marker:
        logger.critical(
            f"Failure marker found, all stage operations are blocked until an operator "
            f"clears it: {marker}"
        )
    if phase == PhaseEnum.FAILED:
        logger.error("Previous apply was interrupted; the stage is kept for investigation")
    elif phase in (PhaseEnum.UNCREATED, PhaseEnum.DESTROYED):
        logger.info("No existing stage found, starting fresh")
    else:
        record = stage.get_record()
        logger.warning(
            f"Found existing stage {record.id}: phase={phase.value}, owner={record.owner}"
        )

    logger.info(f"Stager ready on port {settings.port}")

    yield

    logger.info("Stager shutting down...")


app = FastAPI(
    title="Stager",
    description="Staged update orchestrator",
    version=VERSION,
    lifespan=lifespan,
)

app.include_router(router)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "service": "stager", "version": VERSION}


def main():
    """Main entry point for running the server."""
    settings = get_container().settings
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level="info",
        access_log=True,
    )


if __name__ == "__main__":
    main()

"""Stage orchestrator: create -> require -> apply -> post-apply -> destroy."""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Sequence

from stager.config import StagerSettings
from stager.exceptions import (
    ApplyFailedError,
    ExternalOperationError,
    OwnershipError,
    StageException,
    StageStateError,
)
from stager.models.state import StageRecord
from stager.models.status import PhaseEnum, StageType
from stager.services.events import (
    EventDispatcher,
    PostApplyEvent,
    PostCreateEvent,
    PostRequireEvent,
    PreApplyEvent,
    PreCreateEvent,
    PreRequireEvent,
)
from stager.services.failure_marker import FailureMarker
from stager.services.lock import OwnershipLock
from stager.services.mirror import FilesystemMirror
from stager.services.package_manager import PackageOperationRunner, validate_constraints
from stager.services.state_store import StateStore

STAGE_KEY = "stage"

PostApplyHook = Callable[["StageOrchestrator"], Awaitable[None]]


class StageOrchestrator:
    """Sequences the lifecycle of the single system-wide stage.

    One instance represents one caller (an HTTP request, a CLI invocation, a
    cron run). All shared state lives in the state store, so a second
    instance in another process sees the same stage and the same lock.
    Every operation refuses to run while the failure marker is set.
    """

    failure_marker_message = (
        "Staged changes failed to apply to the active directory. "
        "Changes may have been partially applied."
    )

    def __init__(
        self,
        settings: StagerSettings,
        store: StateStore,
        lock: OwnershipLock,
        failure_marker: FailureMarker,
        dispatcher: EventDispatcher,
        runner: PackageOperationRunner,
        mirror: FilesystemMirror,
        owner: str = "api",
        stage_type: StageType = StageType.ATTENDED,
        post_apply_hooks: Optional[Sequence[PostApplyHook]] = None,
    ):
        """Initialize stage orchestrator.

        Args:
            settings: Runtime settings (active_dir, stage_root, ...)
            store: State store holding stage.json
            lock: Ownership lock
            failure_marker: Failure marker guarding apply
            dispatcher: Lifecycle event dispatcher
            runner: Package manager runner
            mirror: Filesystem mirror configured with the exclusion list
            owner: Owner fingerprint of this caller
            stage_type: Attended (operator) or unattended (cron)
            post_apply_hooks: Coroutines run by post_apply(), in order
        """
        self.logger = logging.getLogger("stager.stage")
        self.settings = settings
        self.store = store
        self.lock = lock
        self.failure_marker = failure_marker
        self.dispatcher = dispatcher
        self.runner = runner
        self.mirror = mirror
        self.owner = owner
        self.stage_type = stage_type
        self.post_apply_hooks = list(post_apply_hooks or [])

        self.stage_id: Optional[str] = None
        self._destroyed = False

    # ── Queries ──────────────────────────────────────────────────────────

    def get_record(self) -> Optional[StageRecord]:
        return self.store.load(STAGE_KEY, StageRecord)

    def get_stage_id(self) -> Optional[str]:
        return self.stage_id

    def get_stage_directory(self) -> Path:
        if self.stage_id is None:
            raise StageStateError("Stage directory is not known until the stage is created or claimed.")
        return self.lock.get_stage_directory(self.stage_id)

    def get_phase(self) -> PhaseEnum:
        """Phase of the system-wide stage.

        FAILED is reported when an apply was interrupted: the persisted phase
        is still APPLYING and the failure marker is set.
        """
        record = self.get_record()
        if record is None:
            return PhaseEnum.DESTROYED if self._destroyed else PhaseEnum.UNCREATED
        if record.phase == PhaseEnum.APPLYING and self.failure_marker.exists():
            return PhaseEnum.FAILED
        return record.phase

    def is_applying(self) -> bool:
        record = self.get_record()
        return record is not None and record.phase == PhaseEnum.APPLYING

    def is_available(self) -> bool:
        """True when a new stage could be created right now."""
        return self.lock.is_available() and not self.failure_marker.exists()

    def get_metadata(self, key: str, default: Any = None) -> Any:
        record = self.get_record()
        return record.metadata.get(key, default) if record else default

    def set_metadata(self, key: str, value: Any) -> None:
        record = self._check_owned()
        record.metadata[key] = value
        self._save(record)

    def get_status(self) -> dict:
        """Snapshot of stage, lock and failure marker for outer surfaces."""
        record = self.get_record()
        return {
            "phase": self.get_phase().value,
            "available": self.is_available(),
            "stage_id": record.id if record else None,
            "owner": record.owner if record else None,
            "type": record.type.value if record else None,
            "package_versions": record.package_versions if record else None,
            "created_at": record.created_at.isoformat() if record else None,
            "updated_at": record.updated_at.isoformat() if record else None,
            "failure_marker": self.failure_marker.get_message(include_trace=False),
        }

    # ── Operations ───────────────────────────────────────────────────────

    async def create(
        self,
        package_versions: Optional[dict[str, dict[str, str]]] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> str:
        """Claim the lock and mirror the active directory into a new stage.

        Args:
            package_versions: Target versions visible to pre-create subscribers
            metadata: Initial free-form metadata

        Returns:
            The new stage id

        Raises:
            StageFailureMarkerException: If a previous apply did not complete
            OwnershipError: If a stage already exists
            StageEventException: If a PreCreateEvent subscriber vetoed
        """
        self.failure_marker.assert_not_exists()
        self._assert_stage_root_outside_active_dir()

        token = self.lock.claim(self.owner)
        self.stage_id = token
        self._destroyed = False
        stage_dir = self.lock.get_stage_directory(token)
        record = StageRecord(
            id=token,
            directory=str(stage_dir),
            phase=PhaseEnum.UNCREATED,
            owner=self.owner,
            type=self.stage_type,
            metadata=dict(metadata or {}),
        )
        if package_versions:
            record.package_versions.update(package_versions)
        self._save(record)
        self.logger.info(f"Creating stage {token} for {self.owner} ({self.stage_type.value})")

        try:
            await self.dispatcher.dispatch(PreCreateEvent(self))
            self.mirror.copy(self.settings.active_dir, stage_dir)
        except Exception as e:
            self.logger.error(f"Stage creation aborted: {e}")
            self._release(token, "Stage creation was aborted.")
            if isinstance(e, StageException):
                raise
            raise StageException(
                f"Failed to copy the active directory into the stage: {e}",
                phase=PhaseEnum.UNCREATED,
            ) from e

        record.phase = PhaseEnum.CREATED
        self._save(record)
        await self.dispatcher.dispatch(PostCreateEvent(self))
        self.logger.info(f"Stage {token} created at {stage_dir}")
        return token

    def claim(self, stage_id: str) -> "StageOrchestrator":
        """Attach this instance to an existing stage it owns.

        Raises:
            StageFailureMarkerException: If a previous apply did not complete
            OwnershipError: If the stage is not owned by this caller
        """
        self.failure_marker.assert_not_exists()
        self.stage_id = self.lock.claim(self.owner, stage_id)
        self._destroyed = False
        return self

    async def require(self, runtime: Sequence[str], dev: Sequence[str] = ()) -> None:
        """Require packages inside the stage.

        Args:
            runtime: ``vendor/name[:constraint]`` production requirements
            dev: Development requirements

        Raises:
            StageStateError: If the stage is not CREATED or REQUIRED
            StageEventException: If a PreRequireEvent subscriber vetoed
            ExternalOperationError: If the package manager failed; the stage
                is restored to its previous phase and kept
        """
        record = self._check_owned()
        if record.phase not in (PhaseEnum.CREATED, PhaseEnum.REQUIRING, PhaseEnum.REQUIRED):
            raise StageStateError(
                f"Cannot require packages while the stage is {record.phase.value}.",
                phase=record.phase,
            )
        runtime, dev = list(runtime), list(dev)
        try:
            validate_constraints(runtime + dev)
        except ValueError as e:
            raise StageException(str(e), phase=PhaseEnum.REQUIRING) from e

        await self.dispatcher.dispatch(PreRequireEvent(self, runtime=runtime, dev=dev))

        previous_phase = record.phase
        self._set_phase(record, PhaseEnum.REQUIRING)
        stage_dir = Path(record.directory)
        try:
            if runtime:
                await self.runner.require(stage_dir, runtime)
            if dev:
                await self.runner.require(stage_dir, dev, dev=True)
        except ExternalOperationError:
            self._set_phase(record, previous_phase)
            raise

        record.package_versions["production"].update(_split_constraints(runtime))
        record.package_versions["dev"].update(_split_constraints(dev))
        self._set_phase(record, PhaseEnum.REQUIRED)
        await self.dispatcher.dispatch(PostRequireEvent(self, runtime=runtime, dev=dev))
        self.logger.info(f"Stage {record.id} required: {', '.join(runtime + dev)}")

    async def apply(self) -> None:
        """Promote the stage into the active directory.

        The failure marker is written before the first file is touched and
        cleared only after the sync completed. Any error in between leaves
        it set and is raised as ApplyFailedError.

        Raises:
            StageStateError: If the stage is not REQUIRED or its directory is gone
            StageEventException: If a PreApplyEvent subscriber vetoed
            ApplyFailedError: If promotion was interrupted
        """
        record = self._check_owned()
        if record.phase != PhaseEnum.REQUIRED:
            raise StageStateError(
                f"Cannot apply the stage while it is {record.phase.value}.",
                phase=record.phase,
            )
        self._assert_stage_directory_exists(record)

        await self.dispatcher.dispatch(PreApplyEvent(self))

        self._set_phase(record, PhaseEnum.APPLYING)
        self.failure_marker.write(self.failure_marker_message, stage_id=record.id)
        self.logger.info(f"Applying stage {record.id} to {self.settings.active_dir}")
        try:
            report = self.mirror.sync(Path(record.directory), self.settings.active_dir)
        except Exception as e:
            self.failure_marker.write(self.failure_marker_message, stage_id=record.id, exc=e)
            raise ApplyFailedError(
                f"{self.failure_marker_message} {e}", phase=PhaseEnum.APPLYING
            ) from e
        self.failure_marker.clear()

        record.metadata["applied_at"] = datetime.now().isoformat()
        record.metadata["applied_files"] = len(report.copied) + len(report.deleted)
        self._set_phase(record, PhaseEnum.APPLIED)
        self.logger.info(
            f"Stage {record.id} applied: {len(report.copied)} copied, "
            f"{len(report.deleted)} deleted"
        )
        await self.dispatcher.dispatch(PostApplyEvent(self))

    async def post_apply(self) -> None:
        """Run post-apply hooks. Safe to retry.

        Raises:
            StageStateError: If the stage is not APPLIED
            StageException: If a hook failed
        """
        record = self._check_owned()
        if record.phase != PhaseEnum.APPLIED:
            raise StageStateError(
                f"Cannot run post-apply tasks while the stage is {record.phase.value}.",
                phase=record.phase,
            )

        for hook in self.post_apply_hooks:
            hook_name = getattr(hook, "__name__", type(hook).__name__)
            self.logger.info(f"Running post-apply hook: {hook_name}")
            try:
                await hook(self)
            except StageException:
                raise
            except Exception as e:
                self.logger.error(f"Post-apply hook {hook_name} failed: {e}", exc_info=True)
                raise StageException(
                    f"Post-apply task {hook_name} failed: {e}", phase=PhaseEnum.APPLIED
                ) from e

        record.metadata["post_applied_at"] = datetime.now().isoformat()
        self._save(record)
        self.logger.info(f"Post-apply complete for stage {record.id}")

    async def destroy(self, force: bool = False, reason: Optional[str] = None) -> PhaseEnum:
        """Release the lock and delete the stage directory.

        Args:
            force: Operator override. Destroys whatever stage exists without
                an ownership check, even one in APPLYING.
            reason: Message given to late callers holding the destroyed id

        Returns:
            PhaseEnum.DESTROYED

        Raises:
            StageFailureMarkerException: If a previous apply did not complete
            OwnershipError: If not forced and the stage is not ours
            StageStateError: If not forced and the stage is being applied
        """
        self.failure_marker.assert_not_exists()
        record = self.get_record()
        if not force:
            self.lock.verify(self.owner, self.stage_id)
            if record is not None and record.phase == PhaseEnum.APPLYING:
                raise StageStateError(
                    "Cannot destroy the stage while it is being applied.",
                    phase=PhaseEnum.APPLYING,
                )

        token = self.stage_id
        if force:
            lock_record = self.lock.get_record()
            token = lock_record.token if lock_record else (record.id if record else token)
        self._release(token, reason, force=force)
        self.stage_id = token
        self._destroyed = True
        self.logger.info(f"Stage {token} destroyed (force={force})")
        return PhaseEnum.DESTROYED

    # ── Internals ────────────────────────────────────────────────────────

    def _check_owned(self) -> StageRecord:
        self.failure_marker.assert_not_exists()
        self.lock.verify(self.owner, self.stage_id)
        record = self.get_record()
        if record is None or record.id != self.stage_id:
            raise OwnershipError("The stage record does not match the claimed stage.")
        return record

    def _set_phase(self, record: StageRecord, phase: PhaseEnum) -> None:
        self.logger.debug(f"Stage {record.id}: {record.phase.value} -> {phase.value}")
        record.phase = phase
        self._save(record)

    def _save(self, record: StageRecord) -> None:
        record.updated_at = datetime.now()
        self.store.save(STAGE_KEY, record)

    def _release(self, token: Optional[str], reason: Optional[str], force: bool = True) -> None:
        self.lock.destroy(token, force=force, reason=reason)
        self.store.delete(STAGE_KEY)

    def _assert_stage_root_outside_active_dir(self) -> None:
        active = Path(self.settings.active_dir).resolve()
        stage_root = Path(self.settings.stage_root).resolve()
        if stage_root == active or active in stage_root.parents:
            raise StageException(
                f"The stage root {stage_root} must be outside the active directory {active}.",
                phase=PhaseEnum.UNCREATED,
            )

    def _assert_stage_directory_exists(self, record: StageRecord) -> None:
        if not Path(record.directory).is_dir():
            raise StageStateError(
                f"The stage directory {record.directory} no longer exists. "
                "Destroy the stage and start again.",
                phase=record.phase,
            )


def _split_constraints(constraints: Sequence[str]) -> dict[str, str]:
    """``a/b:1.2.3`` -> ``{"a/b": "1.2.3"}``; a bare name maps to ``*``."""
    versions = {}
    for constraint in constraints:
        name, _, version = constraint.partition(":")
        versions[name] = version or "*"
    return versions

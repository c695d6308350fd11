"""Ownership lock admitting at most one stage at a time."""

import logging
import secrets
import shutil
from pathlib import Path
from typing import Optional

from stager.exceptions import OwnershipError
from stager.models.state import DestroyedStage, DestroyedStageLog, LockRecord
from stager.services.state_store import StateStore

LOCK_KEY = "lock"
DESTROYED_KEY = "destroyed"

# How many destroyed tokens are remembered for late callers.
DESTROYED_LOG_SIZE = 10


class OwnershipLock:
    """Durable advisory lock stored outside the stage directory.

    The lock token doubles as the stage id, and the stage directory is
    ``<stage_root>/<token>``. Ownership is the pair (owner, token): the owner
    fingerprint identifies the session or process that created the stage, the
    token identifies this particular stage.
    """

    def __init__(self, store: StateStore, stage_root: Path):
        """Initialize ownership lock.

        Args:
            store: State store holding the lock record
            stage_root: Parent directory of stage directories
        """
        self.logger = logging.getLogger("stager.lock")
        self.store = store
        self.stage_root = Path(stage_root)

    def get_record(self) -> Optional[LockRecord]:
        return self.store.load(LOCK_KEY, LockRecord)

    def is_available(self) -> bool:
        """True iff no lock record exists."""
        return not self.store.exists(LOCK_KEY)

    def get_stage_directory(self, token: str) -> Path:
        return self.stage_root / token

    def claim(self, owner: str, existing_token: Optional[str] = None) -> str:
        """Create the lock, or re-claim it as its legitimate owner.

        Args:
            owner: Owner fingerprint of the caller
            existing_token: Token held by the caller, if re-claiming

        Returns:
            The lock token

        Raises:
            OwnershipError: If the lock is held by someone else, the token
                does not match, or the token belongs to a destroyed stage
        """
        if existing_token is None:
            token = secrets.token_urlsafe(24)
            if self.store.create_exclusive(LOCK_KEY, LockRecord(token=token, owner=owner)):
                self.logger.info(f"Lock claimed by {owner}: {token}")
                return token
            raise OwnershipError(
                "Cannot create a new stage because one already exists."
            )

        destroyed = self._load_destroyed().find(existing_token)
        if destroyed is not None:
            raise OwnershipError(destroyed.reason)

        record = self.get_record()
        if record is None:
            raise OwnershipError("Cannot claim the stage because no stage has been created.")
        if record.owner != owner:
            raise OwnershipError(
                "Cannot claim the stage because it is not owned by the current user or session."
            )
        if record.token != existing_token:
            raise OwnershipError(
                "Cannot claim the stage because the current lock does not match the stored lock."
            )
        self.logger.debug(f"Lock re-claimed by {owner}: {existing_token}")
        return existing_token

    def verify(self, owner: str, token: Optional[str]) -> None:
        """Raise OwnershipError unless (owner, token) holds the lock."""
        if token is None:
            raise OwnershipError("Stage is not claimed.")
        destroyed = self._load_destroyed().find(token)
        if destroyed is not None:
            raise OwnershipError(destroyed.reason)
        record = self.get_record()
        if record is None or record.token != token or record.owner != owner:
            raise OwnershipError("Stage is not owned by the current user or session.")

    def destroy(
        self,
        token: Optional[str],
        force: bool = False,
        reason: Optional[str] = None,
    ) -> None:
        """Remove the lock and the stage directory tree.

        Args:
            token: Token presented by the caller
            force: Remove the lock regardless of the token. The caller is
                responsible for checking that no apply is in progress.
            reason: Message given to late callers holding this token

        Raises:
            OwnershipError: If not forced and the token does not match
        """
        record = self.get_record()
        if not force and (record is None or record.token != token):
            raise OwnershipError("Cannot destroy the stage because it is not owned by the caller.")

        stage_token = record.token if record is not None else token
        if stage_token:
            stage_dir = self.get_stage_directory(stage_token)
            if stage_dir.exists():
                shutil.rmtree(stage_dir)
                self.logger.info(f"Removed stage directory: {stage_dir}")
            self._remember_destroyed(
                stage_token, reason or "This operation was already canceled."
            )

        self.store.delete(LOCK_KEY)
        self.logger.info(f"Lock released (force={force}): {stage_token}")

    def _load_destroyed(self) -> DestroyedStageLog:
        return self.store.load(DESTROYED_KEY, DestroyedStageLog) or DestroyedStageLog()

    def _remember_destroyed(self, token: str, reason: str) -> None:
        log = self._load_destroyed()
        log.entries.append(DestroyedStage(token=token, reason=reason))
        log.entries = log.entries[-DESTROYED_LOG_SIZE:]
        self.store.save(DESTROYED_KEY, log)

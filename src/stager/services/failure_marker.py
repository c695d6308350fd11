"""Failure marker guarding the apply step."""

import logging
import traceback
from typing import Optional

from stager.exceptions import StageFailureMarkerException
from stager.models.state import FailureMarkerRecord
from stager.services.state_store import StateStore

MARKER_KEY = "failure_marker"


class FailureMarker:
    """Durable flag meaning "the active directory may be half-updated".

    Written right before apply copies files into the active directory and
    cleared right after. If it survives, every stage operation is refused
    until an operator has verified the site and cleared it.
    """

    def __init__(self, store: StateStore):
        self.logger = logging.getLogger("stager.failure_marker")
        self.store = store

    def get_record(self) -> Optional[FailureMarkerRecord]:
        return self.store.load(MARKER_KEY, FailureMarkerRecord)

    def exists(self) -> bool:
        return self.store.exists(MARKER_KEY)

    def write(
        self,
        message: str,
        stage_id: Optional[str] = None,
        exc: Optional[BaseException] = None,
    ) -> None:
        """Persist the marker.

        Args:
            message: Human-readable explanation shown to operators
            stage_id: Stage being applied
            exc: Error that interrupted apply; its traceback is stored
        """
        trace = None
        if exc is not None:
            trace = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        self.store.save(
            MARKER_KEY,
            FailureMarkerRecord(message=message, stage_id=stage_id, trace=trace),
        )
        if exc is None:
            self.logger.debug(f"Failure marker written for stage {stage_id}")
        else:
            self.logger.critical(f"Failure marker updated after apply error: {exc}")

    def clear(self) -> None:
        self.store.delete(MARKER_KEY)
        self.logger.debug("Failure marker cleared")

    def get_message(self, include_trace: bool = True) -> Optional[str]:
        record = self.get_record()
        if record is None:
            return None
        message = record.message
        if include_trace and record.trace:
            message = f"{message} Caused by:\n{record.trace}"
        return message

    def assert_not_exists(self) -> None:
        """Raise if a previous apply did not complete.

        Raises:
            StageFailureMarkerException: Carrying the stored message
        """
        record = self.get_record()
        if record is not None:
            raise StageFailureMarkerException(
                f"{record.message} (failure marker written at "
                f"{record.created_at.isoformat()})"
            )

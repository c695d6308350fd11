"""Exception taxonomy for stage operations.

Every exception raised by a stage operation derives from StageException and
carries the phase in which it happened, so outer surfaces can build a
``{phase, kind, msg}`` payload without inspecting the traceback. Errors
raised before a stage is known leave ``phase`` unset; the outer surfaces
fill it with the current stage phase before reporting.
``ApplyFailedError`` is the only one outer surfaces must let propagate.
"""

from typing import Optional, TYPE_CHECKING

from stager.models.status import PhaseEnum
from stager.models.validation import ValidationResult

if TYPE_CHECKING:
    from stager.services.package_manager import OperationOutcome

# Reported when the stage record itself cannot be read
UNKNOWN_PHASE = "unknown"


class StageException(Exception):
    """Base class for all stage errors."""

    kind = "stage_error"

    def __init__(self, message: str, phase: Optional[PhaseEnum] = None):
        super().__init__(message)
        self.message = message
        self.phase = phase

    def to_payload(self) -> dict:
        return {
            "msg": self.message,
            "kind": self.kind,
            "phase": self.phase.value if self.phase else UNKNOWN_PHASE,
        }


class OwnershipError(StageException):
    """Wrong or missing ownership token. Always recoverable."""

    kind = "ownership"


class StageStateError(StageException):
    """Operation is not valid in the current phase."""

    kind = "invalid_phase"


class StageFailureMarkerException(StageException):
    """A previous apply did not complete; all work is blocked."""

    kind = "failure_marker"


class StageEventException(StageException):
    """A lifecycle event subscriber vetoed the operation."""

    kind = "validation"

    def __init__(
        self,
        message: str,
        phase: Optional[PhaseEnum] = None,
        results: Optional[list[ValidationResult]] = None,
        event_name: Optional[str] = None,
    ):
        super().__init__(message, phase)
        self.results = results or []
        self.event_name = event_name

    def to_payload(self) -> dict:
        payload = super().to_payload()
        payload["event"] = self.event_name
        payload["results"] = [r.to_payload() for r in self.results]
        return payload


class ExternalOperationError(StageException):
    """The package manager failed. The stage is kept for diagnosis."""

    kind = "external_operation"

    def __init__(
        self,
        message: str,
        phase: Optional[PhaseEnum] = None,
        outcome: Optional["OperationOutcome"] = None,
    ):
        super().__init__(message, phase)
        self.outcome = outcome

    def to_payload(self) -> dict:
        payload = super().to_payload()
        if self.outcome is not None:
            payload["constraints"] = list(self.outcome.constraints)
            payload["output"] = self.outcome.diagnostic_output
        return payload


class ApplyFailedError(StageException):
    """Apply was interrupted after the failure marker was written.

    Never caught and retried: the active directory may be half-updated.
    """

    kind = "apply_failed"


class UntrustedSourceError(StageException):
    """Release metadata was requested from a source not on the trusted list."""

    kind = "untrusted_source"


class ReleaseMetadataError(StageException):
    """No trusted source returned usable release metadata."""

    kind = "release_metadata"


class StateCorruptedError(StageException):
    """A state record exists but cannot be read. Needs an operator."""

    kind = "state_corrupted"

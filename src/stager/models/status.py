"""Status enums for the staged update lifecycle."""

from enum import Enum


class PhaseEnum(str, Enum):
    """Stage lifecycle phases.

    State transitions:
    uncreated → created → requiring → required → applying → applied → destroyed
                   ↑__________↓   ↑______↓          ↓
                                                  failed (failure marker set)

    ``requiring`` falls back to the previous phase when the package manager
    fails. ``failed`` is never persisted; it is reported when the persisted
    phase is ``applying`` and the failure marker exists.
    """

    UNCREATED = "uncreated"
    CREATED = "created"
    REQUIRING = "requiring"
    REQUIRED = "required"
    APPLYING = "applying"
    APPLIED = "applied"
    DESTROYED = "destroyed"
    FAILED = "failed"


class SeverityEnum(int, Enum):
    """Validation result severity, ordered so that ``max()`` picks the worst."""

    OK = 0
    WARNING = 1
    ERROR = 2


class StageType(str, Enum):
    """Who is driving the stage."""

    ATTENDED = "attended"
    UNATTENDED = "unattended"


class CronMode(str, Enum):
    """Which releases unattended updates may install."""

    DISABLED = "disabled"
    SECURITY = "security"
    ALL = "all"

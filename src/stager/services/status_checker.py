"""Readiness checks, run on demand and cached with a time-to-live."""

import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from stager.models.state import StoredStatusCheck
from stager.models.status import SeverityEnum
from stager.models.validation import ValidationResult
from stager.services.events import EventDispatcher, PostApplyEvent, StatusCheckEvent
from stager.services.failure_marker import FailureMarker
from stager.services.stage import StageOrchestrator
from stager.services.state_store import StateStore

STATUS_KEY = "status_check"


async def run_status_check(
    stage: StageOrchestrator,
    dispatcher: EventDispatcher,
    **context: Any,
) -> list[ValidationResult]:
    """Dispatch a StatusCheckEvent and return what subscribers reported.

    Never changes stage state, and never raises on subscriber errors: they
    are returned as ERROR results. A set failure marker comes first.
    """
    results = await _collect_results(stage, dispatcher, **context)
    return failure_marker_results(stage.failure_marker) + results


def failure_marker_results(failure_marker: FailureMarker) -> list[ValidationResult]:
    message = failure_marker.get_message(include_trace=False)
    if message is None:
        return []
    return [ValidationResult.create_error([message])]


async def _collect_results(
    stage: StageOrchestrator, dispatcher: EventDispatcher, **context: Any
) -> list[ValidationResult]:
    event = StatusCheckEvent(stage, **context)
    await dispatcher.dispatch(event)
    return list(event.results)


class StatusChecker:
    """Runs status checks and keeps the last results for ``ttl_hours``.

    The failure marker is never cached: it is read on every call, so an
    interrupted apply is reported even when cached results look clean.
    """

    def __init__(
        self,
        store: StateStore,
        dispatcher: EventDispatcher,
        failure_marker: FailureMarker,
        ttl_hours: int = 24,
    ):
        """Initialize status checker.

        Args:
            store: State store holding status_check.json
            dispatcher: Dispatcher delivering StatusCheckEvent
            failure_marker: Failure marker surfaced as an ERROR result
            ttl_hours: How long stored results stay valid
        """
        self.logger = logging.getLogger("stager.status_checker")
        self.store = store
        self.dispatcher = dispatcher
        self.failure_marker = failure_marker
        self.ttl = timedelta(hours=ttl_hours)

    def subscribe(self) -> None:
        """Drop stored results once an apply went through."""
        self.dispatcher.subscribe(PostApplyEvent, self.on_post_apply)

    def on_post_apply(self, event: PostApplyEvent) -> None:
        self.clear_stored_results()

    async def run(self, stage: StageOrchestrator, **context: Any) -> list[ValidationResult]:
        """Run all checks now and store the results.

        Args:
            stage: Stage the subscribers inspect (not mutated)
            **context: Passed to the event, e.g. target_version

        Returns:
            Failure marker result (if set) followed by subscriber results
        """
        self.logger.info("Running status checks")
        results = await _collect_results(stage, self.dispatcher, **context)
        self.store.save(
            STATUS_KEY, StoredStatusCheck(results=results, stage_type=stage.stage_type)
        )
        severity = ValidationResult.get_overall_severity(results)
        self.logger.info(
            f"Status checks finished: {len(results)} results, overall {severity.name}"
        )
        return self._with_failure_marker(results)

    def get_results(self, severity: Optional[SeverityEnum] = None) -> Optional[list[ValidationResult]]:
        """Stored results, or None if there are none or they expired.

        Args:
            severity: Only return results of this severity
        """
        stored = self.store.load(STATUS_KEY, StoredStatusCheck)
        if stored is None or datetime.now() - stored.checked_at > self.ttl:
            if not self.failure_marker.exists():
                return None
            results = self._with_failure_marker([])
        else:
            results = self._with_failure_marker(stored.results)
        if severity is not None:
            results = [r for r in results if r.severity == severity]
        return results

    def get_last_run_time(self) -> Optional[datetime]:
        stored = self.store.load(STATUS_KEY, StoredStatusCheck)
        return stored.checked_at if stored else None

    def clear_stored_results(self) -> None:
        self.store.delete(STATUS_KEY)
        self.logger.debug("Stored status check results cleared")

    def _with_failure_marker(self, results: list[ValidationResult]) -> list[ValidationResult]:
        return failure_marker_results(self.failure_marker) + list(results)

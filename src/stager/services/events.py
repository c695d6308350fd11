"""Lifecycle events and the dispatcher that delivers them.

Subscribers are plain callables (sync or async) taking the event. On a
pre-event they veto by calling ``event.add_error()``; the operation is then
aborted before it has side effects. Post-events are informational.
"""

import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, TYPE_CHECKING, Union

from stager.exceptions import StageEventException
from stager.models.status import PhaseEnum
from stager.models.validation import ValidationResult

if TYPE_CHECKING:
    from stager.services.stage import StageOrchestrator

Subscriber = Callable[["StageEvent"], Union[None, Awaitable[None]]]


class StageEvent:
    """Base class for all events; carries the stage and collected results."""

    # Phase reported when this event aborts an operation
    phase: PhaseEnum = PhaseEnum.UNCREATED
    vetoable = False

    def __init__(self, stage: "StageOrchestrator", **context: Any):
        self.stage = stage
        self.context = context
        self.results: list[ValidationResult] = []

    @property
    def name(self) -> str:
        return type(self).__name__

    def add_error(self, messages: list[str], summary: Optional[str] = None) -> None:
        self.results.append(ValidationResult.create_error(messages, summary))

    def add_warning(self, messages: list[str], summary: Optional[str] = None) -> None:
        self.results.append(ValidationResult.create_warning(messages, summary))

    def add_result(self, result: ValidationResult) -> None:
        self.results.append(result)

    def has_errors(self) -> bool:
        return ValidationResult.has_errors(self.results)


class PreOperationEvent(StageEvent):
    vetoable = True


class PreCreateEvent(PreOperationEvent):
    phase = PhaseEnum.UNCREATED


class PostCreateEvent(StageEvent):
    phase = PhaseEnum.CREATED


class PreRequireEvent(PreOperationEvent):
    phase = PhaseEnum.REQUIRING

    @property
    def runtime(self) -> list[str]:
        return self.context.get("runtime", [])

    @property
    def dev(self) -> list[str]:
        return self.context.get("dev", [])


class PostRequireEvent(StageEvent):
    phase = PhaseEnum.REQUIRED


class PreApplyEvent(PreOperationEvent):
    phase = PhaseEnum.APPLYING


class PostApplyEvent(StageEvent):
    phase = PhaseEnum.APPLIED


class StatusCheckEvent(StageEvent):
    """Dispatched by status checks; never mutates stage state."""

    phase = PhaseEnum.UNCREATED


class EventDispatcher:
    """Delivers events to subscribers in priority order (highest first)."""

    def __init__(self):
        self.logger = logging.getLogger("stager.events")
        self._subscribers: dict[type, list[tuple[int, int, Subscriber]]] = {}
        self._counter = 0

    def subscribe(
        self, event_class: type, subscriber: Subscriber, priority: int = 0
    ) -> None:
        self._counter += 1
        self._subscribers.setdefault(event_class, []).append(
            (priority, self._counter, subscriber)
        )
        self._subscribers[event_class].sort(key=lambda item: (-item[0], item[1]))

    def get_subscribers(self, event: StageEvent) -> list[Subscriber]:
        subscribers = []
        for event_class in type(event).__mro__:
            subscribers.extend(s for _, _, s in self._subscribers.get(event_class, []))
        return subscribers

    async def dispatch(self, event: StageEvent) -> StageEvent:
        """Deliver an event.

        Raises:
            StageEventException: On a vetoable event, if any subscriber
                attached an error or raised
        """
        self.logger.debug(f"Dispatching {event.name}")
        for subscriber in self.get_subscribers(event):
            try:
                outcome = subscriber(event)
                if inspect.isawaitable(outcome):
                    await outcome
            except StageEventException:
                raise
            except Exception as e:
                self.logger.error(f"Subscriber failed on {event.name}: {e}", exc_info=True)
                if not event.vetoable:
                    event.add_error([str(e)])
                    continue
                raise StageEventException(
                    str(e), phase=event.phase, event_name=event.name
                ) from e

        if event.has_errors():
            messages = [r.summary or "; ".join(r.messages) for r in event.results if r.messages]
            if event.vetoable:
                self.logger.error(f"{event.name} vetoed: {'; '.join(messages)}")
                raise StageEventException(
                    "; ".join(messages),
                    phase=event.phase,
                    results=list(event.results),
                    event_name=event.name,
                )
            self.logger.warning(f"Errors reported on {event.name}: {'; '.join(messages)}")
        return event

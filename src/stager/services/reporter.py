"""Lifecycle reporting to an external webhook."""

import logging
from typing import Optional

import httpx

from stager.api.models import ReportPayload
from stager.services.events import EventDispatcher, StageEvent, StatusCheckEvent


class ReportService:
    """Posts stage lifecycle events to ``report_url``."""

    def __init__(
        self,
        report_url: Optional[str] = None,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize report service.

        Args:
            report_url: Webhook URL (reporting disabled if None)
            timeout: HTTP timeout in seconds
            transport: Custom httpx transport (tests use httpx.MockTransport)
        """
        self.logger = logging.getLogger("stager.reporter")
        self.report_url = report_url
        self.timeout = timeout
        self.transport = transport

    def subscribe(self, dispatcher: EventDispatcher) -> None:
        # Lowest priority: report what the other subscribers decided
        dispatcher.subscribe(StageEvent, self.on_event, priority=-100)

    async def on_event(self, event: StageEvent) -> None:
        if isinstance(event, StatusCheckEvent):
            return
        errors = [m for r in event.results for m in r.messages]
        await self.report(
            event=event.name,
            stage_id=event.stage.get_stage_id(),
            phase=event.phase.value,
            message=f"{event.name} dispatched",
            errors=errors,
        )

    async def report(
        self,
        event: str,
        stage_id: Optional[str],
        phase: str,
        message: str,
        errors: Optional[list[str]] = None,
    ) -> None:
        """Send one report.

        Note:
            Failures are logged but not raised so reporting never blocks an
            update.
        """
        if not self.report_url:
            return

        payload = ReportPayload(
            event=event, stage_id=stage_id, phase=phase, message=message, errors=errors or []
        )
        self.logger.debug(f"Reporting {event} for stage {stage_id}")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(self.report_url, json=payload.model_dump(mode="json"))
                response.raise_for_status()
        except httpx.HTTPError as e:
            self.logger.warning(f"Failed to report {event} to {self.report_url}: {e}")

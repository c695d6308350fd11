"""Reports a stage left behind by another caller during status checks."""

from stager.models.status import PhaseEnum
from stager.services.events import EventDispatcher, StatusCheckEvent


class ExistingStageValidator:
    def subscribe(self, dispatcher: EventDispatcher) -> None:
        dispatcher.subscribe(StatusCheckEvent, self.check_existing_stage)

    def check_existing_stage(self, event: StatusCheckEvent) -> None:
        stage = event.stage
        record = stage.get_record()
        if record is None:
            return

        phase = stage.get_phase()
        # The failure marker itself is reported by the status checker
        if phase == PhaseEnum.FAILED:
            return
        if phase == PhaseEnum.APPLYING and not stage.failure_marker.exists():
            event.add_error(
                [
                    f"Stage {record.id} was interrupted while being applied. Verify the "
                    "site, then destroy the stage with --force."
                ]
            )
            return
        event.add_warning(
            [
                f"An update is already in progress (stage {record.id}, phase "
                f"{phase.value}, owner {record.owner})."
            ]
        )

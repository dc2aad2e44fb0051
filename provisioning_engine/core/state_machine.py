#provisioning_engine\core\state_machine.py

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from provisioning_engine.core.models import StepKind, StepStatus


ALLOWED_TRANSITIONS = {
    StepStatus.PENDING: {
        StepStatus.RUNNING,
        StepStatus.FAILED,
    },
    StepStatus.RUNNING: {
        StepStatus.SUCCESS,
        StepStatus.FAILED,
    },
}


class InvalidStateTransition(Exception):
    pass


@dataclass
class StepRun:
    """One invocation of a step: pending -> running -> success | failed."""
    kind: StepKind
    status: StepStatus = StepStatus.PENDING
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    def __post_init__(self):
        if self.created_at is None:
            self.created_at = datetime.now(timezone.utc)

    @property
    def is_finished(self) -> bool:
        return self.status in (StepStatus.SUCCESS, StepStatus.FAILED)

    def duration_ms(self) -> int:
        start = self.started_at or self.created_at
        end = self.finished_at or datetime.now(timezone.utc)
        return int((end - start).total_seconds() * 1000)


class StepStateMachine:
    @staticmethod
    def transition(
        run: StepRun,
        new_state: StepStatus,
        *,
        now: datetime | None = None,
    ) -> StepRun:
        now = now or datetime.now(timezone.utc)

        current = run.status

        if current == new_state:
            return run

        allowed = ALLOWED_TRANSITIONS.get(current, set())
        if new_state not in allowed:
            raise InvalidStateTransition(
                f"Cannot transition {run.kind.value} from {current.value} to {new_state.value}"
            )

        if new_state == StepStatus.RUNNING:
            run.started_at = now

        elif new_state in (StepStatus.SUCCESS, StepStatus.FAILED):
            run.finished_at = now

        run.status = new_state
        return run

"""Market process lifecycle.

A supply process (move-in, change of supplier, end of supply) moves
through a fixed set of states as DataHub acknowledges and effectuates
it. Settlement is triggered by processes in the ``completed`` and
``offboarding`` states.
"""

from datetime import date
from enum import StrEnum

from pydantic import BaseModel

from dk_settlement.errors import InvalidTransitionError


class ProcessStatus(StrEnum):
    PENDING = "pending"
    SENT_TO_DATAHUB = "sent_to_datahub"
    ACKNOWLEDGED = "acknowledged"
    REJECTED = "rejected"
    EFFECTUATION_PENDING = "effectuation_pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    OFFBOARDING = "offboarding"
    FINAL_SETTLED = "final_settled"


class ProcessEvent(StrEnum):
    SEND = "send"
    ACKNOWLEDGE = "acknowledge"
    REJECT = "reject"
    AWAIT_EFFECTUATION = "await_effectuation"
    COMPLETE = "complete"
    CANCEL = "cancel"
    OFFBOARD = "offboard"
    FINAL_SETTLE = "final_settle"


TRANSITIONS: dict[tuple[ProcessStatus, ProcessEvent], ProcessStatus] = {
    (ProcessStatus.PENDING, ProcessEvent.SEND): ProcessStatus.SENT_TO_DATAHUB,
    (ProcessStatus.PENDING, ProcessEvent.CANCEL): ProcessStatus.CANCELLED,
    (ProcessStatus.SENT_TO_DATAHUB, ProcessEvent.ACKNOWLEDGE): ProcessStatus.ACKNOWLEDGED,
    (ProcessStatus.SENT_TO_DATAHUB, ProcessEvent.REJECT): ProcessStatus.REJECTED,
    (ProcessStatus.SENT_TO_DATAHUB, ProcessEvent.CANCEL): ProcessStatus.CANCELLED,
    (ProcessStatus.ACKNOWLEDGED, ProcessEvent.AWAIT_EFFECTUATION): ProcessStatus.EFFECTUATION_PENDING,
    (ProcessStatus.ACKNOWLEDGED, ProcessEvent.CANCEL): ProcessStatus.CANCELLED,
    (ProcessStatus.EFFECTUATION_PENDING, ProcessEvent.COMPLETE): ProcessStatus.COMPLETED,
    (ProcessStatus.EFFECTUATION_PENDING, ProcessEvent.CANCEL): ProcessStatus.CANCELLED,
    (ProcessStatus.COMPLETED, ProcessEvent.OFFBOARD): ProcessStatus.OFFBOARDING,
    (ProcessStatus.OFFBOARDING, ProcessEvent.FINAL_SETTLE): ProcessStatus.FINAL_SETTLED,
}


def next_status(current: ProcessStatus | str, event: ProcessEvent | str) -> ProcessStatus:
    """Return the state reached from ``current`` on ``event``.

    Raises:
        InvalidTransitionError: If the pair is not in the transition table
    """
    try:
        key = (ProcessStatus(current), ProcessEvent(event))
    except ValueError as e:
        raise InvalidTransitionError(str(current), str(event)) from e

    if key not in TRANSITIONS:
        raise InvalidTransitionError(str(current), str(event))
    return TRANSITIONS[key]


class ProcessRecord(BaseModel):
    """A market process for one metering point."""

    id: str
    gsrn: str
    process_type: str
    status: ProcessStatus
    effective_date: date | None = None

"""Cycle count lifecycle: the closed set of actions and the transition table.

    DRAFT/SCHEDULED --start--> IN_PROGRESS --submit--> PENDING_REVIEW --approve--> COMPLETED
                                   ^                         |
                                   +--------reject-----------+

    cancel: any non-terminal status -> CANCELLED
"""

from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple

from cyclecount.core.exceptions import InvalidTransition
from cyclecount.models.cycle_count import CycleCountStatus


class CycleCountAction(str, Enum):
    EDIT = "edit"
    SCHEDULE = "schedule"
    UNSCHEDULE = "unschedule"
    START = "start"
    RECORD_COUNT = "record_count"
    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    CANCEL = "cancel"
    PUBLISH_ADJUSTMENTS = "publish_adjustments"


_PRE_START = frozenset({CycleCountStatus.DRAFT, CycleCountStatus.SCHEDULED})

# action -> (statuses the action is legal from, resulting status or None to keep it)
TRANSITIONS: Dict[CycleCountAction, Tuple[FrozenSet[CycleCountStatus], Optional[CycleCountStatus]]] = {
    CycleCountAction.EDIT: (_PRE_START, None),
    CycleCountAction.SCHEDULE: (_PRE_START, CycleCountStatus.SCHEDULED),
    CycleCountAction.UNSCHEDULE: (_PRE_START, CycleCountStatus.DRAFT),
    CycleCountAction.START: (_PRE_START, CycleCountStatus.IN_PROGRESS),
    CycleCountAction.RECORD_COUNT: (
        frozenset({CycleCountStatus.IN_PROGRESS}), CycleCountStatus.IN_PROGRESS
    ),
    CycleCountAction.SUBMIT: (
        frozenset({CycleCountStatus.IN_PROGRESS}), CycleCountStatus.PENDING_REVIEW
    ),
    CycleCountAction.APPROVE: (
        frozenset({CycleCountStatus.PENDING_REVIEW}), CycleCountStatus.COMPLETED
    ),
    CycleCountAction.REJECT: (
        frozenset({CycleCountStatus.PENDING_REVIEW}), CycleCountStatus.IN_PROGRESS
    ),
    CycleCountAction.CANCEL: (
        frozenset({
            CycleCountStatus.DRAFT,
            CycleCountStatus.SCHEDULED,
            CycleCountStatus.IN_PROGRESS,
            CycleCountStatus.PENDING_REVIEW,
        }),
        CycleCountStatus.CANCELLED,
    ),
    CycleCountAction.PUBLISH_ADJUSTMENTS: (
        frozenset({CycleCountStatus.COMPLETED}), CycleCountStatus.COMPLETED
    ),
}

TERMINAL_STATUSES = frozenset({CycleCountStatus.COMPLETED, CycleCountStatus.CANCELLED})

_STATUS_ORDER = list(CycleCountStatus)


def allowed_from(action: CycleCountAction) -> list:
    """Statuses from which ``action`` is legal, in lifecycle order."""
    sources, _ = TRANSITIONS[action]
    return [s for s in _STATUS_ORDER if s in sources]


def can_transition(status: CycleCountStatus, action: CycleCountAction) -> bool:
    sources, _ = TRANSITIONS[action]
    return status in sources


def next_status(status: CycleCountStatus, action: CycleCountAction) -> CycleCountStatus:
    """Return the status ``action`` leads to from ``status``.

    Raises:
        InvalidTransition: if the action is not legal from ``status``.
    """
    sources, target = TRANSITIONS[action]
    if status not in sources:
        raise InvalidTransition(status, action, allowed_from(action))
    return status if target is None else target

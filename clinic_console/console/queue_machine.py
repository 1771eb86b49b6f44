# clinic_console/console/queue_machine.py
"""Queue entry lifecycle.

    WAITING --call--> CALLED --start--> IN_PROGRESS --complete--> COMPLETED
    WAITING/CALLED --cancel--> CANCELLED

COMPLETED and CANCELLED are terminal. Everything here is pure: functions take
an entry (or a status) and return a new value without touching the input.
"""
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional

from ..enums import QueueStatus
from ..schemas import QueueEntry, utcnow
from .errors import InvalidTransitionError


class QueueAction(str, Enum):
    CALL = "call"
    START = "start"
    COMPLETE = "complete"
    CANCEL = "cancel"


TRANSITIONS = {
    (QueueStatus.WAITING, QueueAction.CALL): QueueStatus.CALLED,
    (QueueStatus.CALLED, QueueAction.START): QueueStatus.IN_PROGRESS,
    (QueueStatus.IN_PROGRESS, QueueAction.COMPLETE): QueueStatus.COMPLETED,
    (QueueStatus.WAITING, QueueAction.CANCEL): QueueStatus.CANCELLED,
    (QueueStatus.CALLED, QueueAction.CANCEL): QueueStatus.CANCELLED,
}

TERMINAL_STATUSES = frozenset({QueueStatus.COMPLETED, QueueStatus.CANCELLED})
ACTIVE_STATUSES = (QueueStatus.WAITING, QueueStatus.CALLED, QueueStatus.IN_PROGRESS)

DEFAULT_CANCEL_REASON = "Dibatalkan oleh admin"


def is_terminal(status: QueueStatus) -> bool:
    return status in TERMINAL_STATUSES


def can_apply(status: QueueStatus, action: QueueAction) -> bool:
    return (status, action) in TRANSITIONS


def allowed_actions(status: QueueStatus) -> List[QueueAction]:
    return [action for (source, action) in TRANSITIONS if source == status]


def next_status(status: QueueStatus, action: QueueAction) -> QueueStatus:
    try:
        return TRANSITIONS[(status, action)]
    except KeyError:
        if is_terminal(status):
            message = f"Queue entry is already {status.value} and cannot be changed"
        else:
            message = f"Cannot {action.value} a queue entry that is {status.value}"
        raise InvalidTransitionError(message, status=status, action=action) from None


def _not_before(earlier: Optional[datetime], now: datetime) -> datetime:
    # Timestamps never run backwards, even with a skewed clock
    if earlier is not None and now < earlier:
        return earlier
    return now


def apply(entry: QueueEntry, action: QueueAction, now: Optional[datetime] = None, reason: Optional[str] = None) -> QueueEntry:
    """Return a copy of ``entry`` with ``action`` applied; raises InvalidTransitionError."""
    target = next_status(entry.status, action)
    now = now or utcnow()
    changes = {"status": target}
    if target == QueueStatus.CALLED:
        changes["called_time"] = _not_before(entry.check_in_time, now)
    elif target == QueueStatus.COMPLETED:
        changes["completed_time"] = _not_before(entry.called_time or entry.check_in_time, now)
    elif target == QueueStatus.CANCELLED:
        changes["cancel_reason"] = (reason or "").strip() or DEFAULT_CANCEL_REASON
    return entry.model_copy(update=changes)


def waiting_time(entry: QueueEntry, now: Optional[datetime] = None) -> timedelta:
    """Time from check-in until called (or until ``now`` while still waiting)."""
    end = entry.called_time or now or utcnow()
    return max(end - entry.check_in_time, timedelta(0))


def consultation_time(entry: QueueEntry) -> Optional[timedelta]:
    if entry.called_time is None or entry.completed_time is None:
        return None
    return max(entry.completed_time - entry.called_time, timedelta(0))

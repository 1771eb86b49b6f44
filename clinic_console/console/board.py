# clinic_console/console/board.py
"""Queue board: the read model and the controller that keeps it fresh.

The board never patches entries locally. Every fetched snapshot replaces the
previous state wholesale, and every action is followed by a refresh whether
it succeeded or not.
"""
from datetime import date, datetime
from typing import Dict, Iterable, Optional, Tuple

import structlog
from pydantic import ConfigDict, Field

from ..config import get_settings
from ..enums import QueueStatus
from ..schemas import BaseSchema, QueueEntry, QueueStatistics, UtcDatetime, utcnow
from . import queue_machine
from .completion import CompletionDialog
from .errors import ConflictError, ConsoleError, StaleStateError
from .formatting import format_duration, mask_nik
from .poller import PeriodicRefresher
from .queue_machine import QueueAction

logger = structlog.get_logger(__name__)

CURRENT_STATUSES = (QueueStatus.WAITING, QueueStatus.CALLED)


def queue_order(entry: QueueEntry):
    return (entry.position, entry.check_in_time, entry.id)


class BoardView(BaseSchema):
    model_config = ConfigDict(frozen=True)

    current: Optional[QueueEntry] = None
    in_progress: Optional[QueueEntry] = None
    next: Tuple[QueueEntry, ...] = ()


def derive_board(queues: Iterable[QueueEntry], next_limit: int = 5) -> BoardView:
    """Current, in-progress and next-up entries of one snapshot.

    current: lowest-position WAITING or CALLED entry
    in_progress: lowest-position IN_PROGRESS entry
    next: remaining WAITING entries by position, then check-in time
    """
    ordered = sorted((e for e in queues if not queue_machine.is_terminal(e.status)), key=queue_order)
    current = next((e for e in ordered if e.status in CURRENT_STATUSES), None)
    in_progress = next((e for e in ordered if e.status == QueueStatus.IN_PROGRESS), None)
    waiting = [
        e for e in ordered
        if e.status == QueueStatus.WAITING and (current is None or e.id != current.id)
    ]
    return BoardView(current=current, in_progress=in_progress, next=tuple(waiting[:next_limit]))


class QueueCard(BaseSchema):
    """What one board card shows for an entry."""
    model_config = ConfigDict(frozen=True)

    id: str
    queue_number: str
    patient_name: str
    nik: str
    status: QueueStatus
    is_priority: bool = False
    waiting: str
    consultation: str
    actions: Tuple[QueueAction, ...] = ()


def queue_card(entry: QueueEntry, now: Optional[datetime] = None) -> QueueCard:
    return QueueCard(
        id=entry.id,
        queue_number=entry.queue_number,
        patient_name=entry.user.full_name,
        nik=mask_nik(entry.user.nik),
        status=entry.status,
        is_priority=entry.is_priority,
        waiting=format_duration(queue_machine.waiting_time(entry, now=now)),
        consultation=format_duration(queue_machine.consultation_time(entry)),
        actions=tuple(queue_machine.allowed_actions(entry.status)),
    )


class BoardState(BaseSchema):
    model_config = ConfigDict(frozen=True)

    queue_date: date
    queues: Tuple[QueueEntry, ...] = ()
    statistics: QueueStatistics = Field(default_factory=QueueStatistics)
    view: BoardView = Field(default_factory=BoardView)
    fetched_at: Optional[UtcDatetime] = None
    loading: bool = False
    error: Optional[str] = None
    notice: Optional[str] = None  # last rejected action, kept across refreshes
    pending: Dict[str, QueueAction] = Field(default_factory=dict)
    auto_refresh: bool = False

    def find(self, queue_id: str) -> Optional[QueueEntry]:
        return next((e for e in self.queues if e.id == queue_id), None)

    def cards(self, now: Optional[datetime] = None) -> Tuple[QueueCard, ...]:
        return tuple(queue_card(e, now=now) for e in sorted(self.queues, key=queue_order))


class QueueBoardController:
    def __init__(self, client, settings=None, queue_date: Optional[date] = None):
        self.client = client
        self.settings = settings or get_settings()
        self.state = BoardState(queue_date=queue_date or utcnow().date())
        self._poller = PeriodicRefresher(self.refresh, self.settings.poll_interval_seconds, name="queue-board")
        self._requested = 0
        self._applied = 0
        self._disposed = False

    # --- snapshot ---

    async def refresh(self) -> bool:
        """Fetch and apply a snapshot; False (with ``state.error`` set) when the fetch failed."""
        if self._disposed:
            return False
        self._requested += 1
        request = self._requested
        self.state = self.state.model_copy(update={"loading": True})
        try:
            snapshot = await self.client.get_active_queues(self.state.queue_date)
        except ConsoleError as e:
            if self._is_stale(request):
                return False
            self._applied = request
            logger.warning("queue.refresh.failed", error=e.message, retryable=e.retryable)
            self.state = self.state.model_copy(update={
                "queues": (),
                "statistics": QueueStatistics(),
                "view": BoardView(),
                "loading": False,
                "error": e.message,
            })
            return False
        if self._is_stale(request):
            logger.debug("queue.refresh.discarded", request=request, applied=self._applied)
            return False
        self._applied = request
        queues = tuple(snapshot.queues)
        self.state = self.state.model_copy(update={
            "queues": queues,
            "statistics": snapshot.statistics,
            "view": derive_board(queues, self.settings.board_next_limit),
            "fetched_at": utcnow(),
            "loading": False,
            "error": None,
        })
        return True

    def _is_stale(self, request: int) -> bool:
        # A response older than one already applied must not roll the board back
        return self._disposed or request < self._applied

    async def set_auto_refresh(self, enabled: bool):
        self.state = self.state.model_copy(update={"auto_refresh": enabled})
        if enabled:
            self._poller.start(immediate=True)
        else:
            await self._poller.stop()

    async def change_date(self, queue_date: date) -> bool:
        self.state = BoardState(queue_date=queue_date, auto_refresh=self.state.auto_refresh)
        return await self.refresh()

    # --- actions ---

    async def call(self, queue_id: str) -> QueueEntry:
        def precheck(entry: QueueEntry):
            current = self.state.view.current
            if entry.status == QueueStatus.WAITING and (current is None or current.id != entry.id):
                raise ConflictError(f"Queue {entry.queue_number} is not next; call {current.queue_number if current else 'the head of the queue'} first")
        return await self._act(queue_id, QueueAction.CALL, self.client.call_patient, precheck=precheck)

    async def start(self, queue_id: str) -> QueueEntry:
        return await self._act(queue_id, QueueAction.START, self.client.start_consultation)

    async def complete(self, queue_id: str, notes: Optional[str] = None) -> QueueEntry:
        return await self._act(queue_id, QueueAction.COMPLETE, self.client.complete_consultation, notes)

    async def cancel(self, queue_id: str, reason: Optional[str] = None) -> QueueEntry:
        reason = (reason or "").strip() or self.settings.default_cancel_reason
        return await self._act(queue_id, QueueAction.CANCEL, self.client.cancel_queue, reason)

    async def skip(self, queue_id: str, reason: Optional[str] = None) -> QueueEntry:
        """A no-show leaves the queue as a cancellation carrying the skip reason."""
        reason = (reason or "").strip() or self.settings.skip_reason
        return await self._act(queue_id, QueueAction.CANCEL, self.client.skip_patient, reason)

    def open_completion(self, queue_id: str) -> CompletionDialog:
        entry = self.state.find(queue_id)
        if entry is None:
            raise StaleStateError("This queue entry is no longer on the board")
        return CompletionDialog(self.client, entry, on_finished=self.refresh)

    def is_pending(self, queue_id: str) -> bool:
        return queue_id in self.state.pending

    async def _act(self, queue_id: str, action: QueueAction, send, *args, precheck=None) -> QueueEntry:
        if queue_id in self.state.pending:
            raise ConflictError("An action for this queue entry is already in progress")
        self._set_pending(queue_id, action)
        try:
            entry = self.state.find(queue_id)
            if entry is None:
                raise StaleStateError("This queue entry is no longer on the board")
            queue_machine.next_status(entry.status, action)
            if precheck is not None:
                precheck(entry)
            updated = await send(queue_id, *args)
            logger.info("queue.transition", queue_id=queue_id, action=action.value, status=updated.status.value)
            self.state = self.state.model_copy(update={"notice": None})
            return updated
        except ConsoleError as e:
            logger.warning("queue.transition.rejected", queue_id=queue_id, action=action.value, error=e.message)
            self.state = self.state.model_copy(update={"notice": e.message})
            raise
        finally:
            self._clear_pending(queue_id)
            await self.refresh()

    def _set_pending(self, queue_id: str, action: QueueAction):
        self.state = self.state.model_copy(update={"pending": {**self.state.pending, queue_id: action}})

    def _clear_pending(self, queue_id: str):
        pending = dict(self.state.pending)
        pending.pop(queue_id, None)
        self.state = self.state.model_copy(update={"pending": pending})

    async def dispose(self):
        self._disposed = True
        await self._poller.stop()

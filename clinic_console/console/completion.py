# clinic_console/console/completion.py
"""Consultation completion: the edit buffer and the dialog around it.

``CompletionDraft`` is an immutable value holding everything typed so far.
``CompletionDialog`` owns one draft and moves through

    EDITING -> SUBMITTING -> SUCCESS
                          -> FAILED (editable again, nothing lost)
"""
from enum import Enum
from typing import Callable, Optional, Tuple

import structlog
from pydantic import ConfigDict, Field

from ..schemas import (
    BaseSchema, CompletionResult, ConsultationCompletion, LabTestOrder,
    MedicationCatalogEntry, QueueEntry, VitalSigns,
)
from ..enums import QueueStatus
from ..validation import completion_issues
from .errors import ConflictError, ConsoleError, ValidationError
from .formatting import format_rupiah
from .lines import LineList

logger = structlog.get_logger(__name__)

EDITABLE_FIELDS = ("diagnosis", "treatment", "notes", "follow_up_days")


class CompletionDraft(BaseSchema):
    model_config = ConfigDict(frozen=True)

    queue_id: str
    diagnosis: str = ""
    treatment: str = ""
    notes: str = ""
    follow_up_days: Optional[int] = None
    vital_signs: VitalSigns = Field(default_factory=VitalSigns)
    lines: LineList = Field(default_factory=LineList)
    lab_tests: Tuple[LabTestOrder, ...] = ()

    def edit(self, **changes) -> "CompletionDraft":
        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise ConsoleError(f"Unknown completion field(s): {', '.join(sorted(unknown))}")
        data = {**self.model_dump(exclude={"lines", "vital_signs", "lab_tests"}), **changes}
        try:
            validated = type(self).model_validate(data)
        except ValueError as e:
            raise ConsoleError(f"Invalid completion value: {e}") from e
        return self.model_copy(update={name: getattr(validated, name) for name in changes})

    def with_vital(self, name: str, value: Optional[str]) -> "CompletionDraft":
        if name not in VitalSigns.model_fields:
            raise ConsoleError(f"Unknown vital sign: {name}")
        vital_signs = VitalSigns.model_validate({**self.vital_signs.model_dump(), name: value})
        return self.model_copy(update={"vital_signs": vital_signs})

    def with_lines(self, lines: LineList) -> "CompletionDraft":
        return self.model_copy(update={"lines": lines})

    def add_lab_test(self, **fields) -> "CompletionDraft":
        try:
            test = LabTestOrder().with_changes(**fields)
        except ValueError as e:
            raise ConsoleError(f"Invalid lab test: {e}") from e
        return self.model_copy(update={"lab_tests": self.lab_tests + (test,)})

    def update_lab_test(self, index: int, **changes) -> "CompletionDraft":
        self._check_lab_index(index)
        try:
            updated = self.lab_tests[index].with_changes(**changes)
        except ValueError as e:
            raise ConsoleError(f"Invalid value for lab test {index + 1}: {e}") from e
        tests = list(self.lab_tests)
        tests[index] = updated
        return self.model_copy(update={"lab_tests": tuple(tests)})

    def remove_lab_test(self, index: int) -> "CompletionDraft":
        self._check_lab_index(index)
        return self.model_copy(update={"lab_tests": self.lab_tests[:index] + self.lab_tests[index + 1:]})

    def _check_lab_index(self, index: int):
        if not 0 <= index < len(self.lab_tests):
            raise ConsoleError(f"There is no lab test {index + 1}")

    @property
    def estimated_total(self) -> int:
        return self.lines.estimated_total

    def issues(self):
        return completion_issues(
            self.diagnosis, self.treatment, self.lines.lines, self.lab_tests,
            notes=self.notes, follow_up_days=self.follow_up_days,
        )

    def has_content(self) -> bool:
        """Anything the doctor would lose by closing."""
        return bool(
            self.diagnosis.strip()
            or self.treatment.strip()
            or self.notes.strip()
            or self.lines.has_content()
            or self.lab_tests
            or self.vital_signs.has_values()
        )

    def build(self) -> ConsultationCompletion:
        """The request body; raises ValidationError without building anything if a rule fails."""
        issues = self.issues()
        if issues:
            raise ValidationError(issues)
        return ConsultationCompletion(
            queue_id=self.queue_id,
            diagnosis=self.diagnosis,
            treatment=self.treatment,
            notes=self.notes,
            vital_signs=self.vital_signs,
            follow_up_days=self.follow_up_days,
            prescriptions=list(self.lines.lines),
            lab_tests=list(self.lab_tests),
        )


class DialogPhase(str, Enum):
    EDITING = "EDITING"
    SUBMITTING = "SUBMITTING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class CloseOutcome(str, Enum):
    CLOSED = "CLOSED"
    NEEDS_CONFIRMATION = "NEEDS_CONFIRMATION"
    BLOCKED = "BLOCKED"


class CompletionDialog:
    def __init__(self, client, entry: QueueEntry, on_finished: Optional[Callable] = None):
        if entry.status != QueueStatus.IN_PROGRESS:
            raise ConflictError(f"Queue {entry.queue_number} is {entry.status.value}; only a consultation in progress can be completed")
        self.client = client
        self.entry = entry
        self.draft = CompletionDraft(queue_id=entry.id)
        self.phase = DialogPhase.EDITING
        self.error: Optional[str] = None
        self.notice: Optional[str] = None
        self.result: Optional[CompletionResult] = None
        self.disposed = False
        self._on_finished = on_finished

    # --- editing ---

    def _mutate(self, change: Callable[[CompletionDraft], CompletionDraft]):
        if self.disposed:
            raise ConflictError("The completion dialog has been closed")
        if self.phase == DialogPhase.SUBMITTING:
            raise ConflictError("The completion is being submitted")
        if self.phase == DialogPhase.SUCCESS:
            raise ConflictError("The consultation has already been completed")
        self.draft = change(self.draft)
        if self.phase == DialogPhase.FAILED:
            self.phase = DialogPhase.EDITING
            self.error = None
        self.notice = None

    def edit(self, **changes):
        self._mutate(lambda draft: draft.edit(**changes))

    def set_vital(self, name: str, value: Optional[str]):
        self._mutate(lambda draft: draft.with_vital(name, value))

    def add_medication(self, medication: MedicationCatalogEntry):
        try:
            self._mutate(lambda draft: draft.with_lines(draft.lines.add_catalog(medication)))
        except ConflictError as e:
            self.notice = e.message
            raise

    def add_manual_line(self, **fields):
        self._mutate(lambda draft: draft.with_lines(draft.lines.add_manual(**fields)))

    def update_line(self, index: int, **changes):
        self._mutate(lambda draft: draft.with_lines(draft.lines.update(index, **changes)))

    def remove_line(self, index: int):
        self._mutate(lambda draft: draft.with_lines(draft.lines.remove(index)))

    def add_lab_test(self, **fields):
        self._mutate(lambda draft: draft.add_lab_test(**fields))

    def update_lab_test(self, index: int, **changes):
        self._mutate(lambda draft: draft.update_lab_test(index, **changes))

    def remove_lab_test(self, index: int):
        self._mutate(lambda draft: draft.remove_lab_test(index))

    @property
    def estimated_total(self) -> int:
        return self.draft.estimated_total

    @property
    def total_label(self) -> str:
        return format_rupiah(self.estimated_total)

    @property
    def can_submit(self) -> bool:
        return self.phase in (DialogPhase.EDITING, DialogPhase.FAILED) and not self.disposed

    # --- submission ---

    async def submit(self) -> Optional[CompletionResult]:
        if not self.can_submit:
            raise ConflictError("The completion cannot be submitted now")
        completion = self.draft.build()

        self.phase = DialogPhase.SUBMITTING
        self.error = None
        logger.info("completion.submitting", queue_id=self.entry.id, medications=len(self.draft.lines.lines))
        try:
            result = await self.client.submit_consultation_completion(self.entry.id, completion)
        except ConsoleError as e:
            if self.disposed:
                logger.info("completion.failure.ignored", queue_id=self.entry.id, error=e.message)
                return None
            self.phase = DialogPhase.FAILED
            self.error = e.message
            logger.warning("completion.failed", queue_id=self.entry.id, error=e.message, retryable=e.retryable)
            raise
        finally:
            if self._on_finished is not None and not self.disposed:
                await self._on_finished()

        if self.disposed:
            logger.info("completion.response.ignored", queue_id=self.entry.id)
            return None
        self.phase = DialogPhase.SUCCESS
        self.result = result
        logger.info("completion.succeeded", queue_id=self.entry.id, total=completion.estimated_total)
        return result

    # --- closing ---

    def close(self, confirmed: bool = False) -> CloseOutcome:
        if self.phase == DialogPhase.SUBMITTING:
            return CloseOutcome.BLOCKED
        if self.phase != DialogPhase.SUCCESS and self.draft.has_content() and not confirmed:
            return CloseOutcome.NEEDS_CONFIRMATION
        self.dispose()
        return CloseOutcome.CLOSED

    def dispose(self):
        self.disposed = True

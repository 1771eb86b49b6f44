# tests/helpers.py
from datetime import date, datetime, timedelta, timezone

from clinic_console.console import queue_machine
from clinic_console.console.errors import ConflictError, InvalidTransitionError, StaleStateError
from clinic_console.enums import QueueStatus
from clinic_console.schemas import (
    ActiveQueues, CompletionResult, CompletionSummary, MedicalRecordSummary,
    MedicationCatalogEntry, MedicationCategory, MedicationSearchResult,
    PrescriptionSummary, QueueEntry, QueueStatistics, QueueUser,
)

T0 = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)


def make_entry(id, status=QueueStatus.WAITING, position=1, minutes=0, **fields):
    return QueueEntry(
        id=id,
        queue_number=f"A{position:03d}",
        queue_date=date(2026, 3, 2),
        status=status,
        position=position,
        check_in_time=T0 + timedelta(minutes=minutes),
        user=QueueUser(id=f"P-{id}", full_name=f"Patient {id}", nik="3201234567899001"),
        **fields,
    )


def make_medication(id="M1", name="Paracetamol", price=500, stock=100, **fields):
    data = dict(
        id=id,
        medication_code=f"MED-{id}",
        generic_name=name,
        strength="500mg",
        dosage_form="Tablet",
        category="Analgesik",
        price_per_unit=price,
        stock=stock,
        unit="tablet",
    )
    data.update(fields)
    return MedicationCatalogEntry(**data)


class FakeClinicService:
    """In-memory stand-in for ClinicServiceClient; records every call."""

    def __init__(self, entries=(), medications=(), categories=()):
        self.entries = {e.id: e for e in entries}
        self.medications = list(medications)
        self.categories = [MedicationCategory(category=c, count=1) for c in categories]
        self.calls = []
        self.failures = {}
        self.submissions = []

    def fail(self, method, error):
        self.failures[method] = error

    def _record(self, method, *args):
        self.calls.append((method,) + args)
        error = self.failures.pop(method, None)
        if error is not None:
            raise error

    def count(self, method):
        return sum(1 for call in self.calls if call[0] == method)

    async def get_active_queues(self, queue_date=None):
        self._record("get_active_queues", queue_date)
        entries = list(self.entries.values())
        return ActiveQueues(
            queues=[e for e in entries if not queue_machine.is_terminal(e.status)],
            statistics=QueueStatistics(
                total=len(entries),
                waiting=sum(1 for e in entries if e.status == QueueStatus.WAITING),
                completed=sum(1 for e in entries if e.status == QueueStatus.COMPLETED),
            ),
        )

    def _transition(self, queue_id, action, reason=None):
        entry = self.entries.get(queue_id)
        if entry is None:
            raise StaleStateError("Queue entry not found")
        try:
            updated = queue_machine.apply(entry, action, reason=reason)
        except InvalidTransitionError as e:
            raise ConflictError(e.message)
        self.entries[queue_id] = updated
        return updated

    async def call_patient(self, queue_id):
        self._record("call_patient", queue_id)
        return self._transition(queue_id, queue_machine.QueueAction.CALL)

    async def start_consultation(self, queue_id):
        self._record("start_consultation", queue_id)
        return self._transition(queue_id, queue_machine.QueueAction.START)

    async def complete_consultation(self, queue_id, notes=None):
        self._record("complete_consultation", queue_id)
        return self._transition(queue_id, queue_machine.QueueAction.COMPLETE)

    async def cancel_queue(self, queue_id, reason=None):
        self._record("cancel_queue", queue_id, reason)
        return self._transition(queue_id, queue_machine.QueueAction.CANCEL, reason=reason)

    async def skip_patient(self, queue_id, reason=None):
        self._record("skip_patient", queue_id, reason)
        return self._transition(queue_id, queue_machine.QueueAction.CANCEL, reason=reason)

    async def submit_consultation_completion(self, queue_id, completion):
        self._record("submit_consultation_completion", queue_id)
        self.submissions.append(completion)
        completed = self._transition(queue_id, queue_machine.QueueAction.COMPLETE)
        lines = completion.prescriptions or []
        return CompletionResult(
            completed_queue=completed,
            medical_record=MedicalRecordSummary(
                id="MR1", diagnosis=completion.diagnosis, treatment=completion.treatment, visit_date=T0,
            ),
            prescription=PrescriptionSummary(
                id="RX1", code="RX-20260302-ABC123", medications_count=len(lines),
                total_amount=completion.estimated_total, medications=lines,
            ) if lines else None,
            summary=CompletionSummary(
                medical_record_created=True,
                prescription_created=bool(lines),
                lab_results_created=len(completion.lab_tests or []),
                follow_up_scheduled=completion.follow_up_days is not None,
                total_medications=len(lines),
                total_lab_tests=len(completion.lab_tests or []),
            ),
        )

    async def search_medications(self, query, category=None, limit=20):
        self._record("search_medications", query, category)
        matches = [
            m for m in self.medications
            if query.lower() in m.generic_name.lower() and (category is None or m.category == category)
        ][:limit]
        return MedicationSearchResult(medications=matches, query=query, total=len(matches))

    async def get_medication_categories(self):
        self._record("get_medication_categories")
        return list(self.categories)

    async def search_patients(self, query, limit=10):
        self._record("search_patients", query)
        return []

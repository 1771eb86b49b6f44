# clinic_console/console/prescriptions.py
"""Pharmacy desk (payment and dispense) and the standalone prescription composer."""
from datetime import datetime
from typing import List, Optional

import structlog

from ..enums import PaymentMethod, PaymentStatus
from ..schemas import (
    DispenseRequest, MedicationCatalogEntry, PatientSummary, PaymentUpdate,
    Prescription, PrescriptionCreate, utcnow,
)
from .errors import ConflictError, ConsoleError, PrescriptionActionError, ValidationError
from .lines import LineList
from ..validation import ValidationIssue

logger = structlog.get_logger(__name__)


def can_update_payment(prescription: Prescription, now: Optional[datetime] = None) -> bool:
    return not prescription.is_dispensed and not prescription.expired_at(now)


def can_dispense(prescription: Prescription, now: Optional[datetime] = None) -> bool:
    return (
        prescription.payment_status == PaymentStatus.PAID
        and not prescription.is_dispensed
        and not prescription.expired_at(now)
    )


def available_actions(prescription: Prescription, now: Optional[datetime] = None) -> List[str]:
    now = now or utcnow()
    actions = []
    if can_update_payment(prescription, now):
        actions.append("payment")
    if can_dispense(prescription, now):
        actions.append("dispense")
    return actions


def _blocked_reason(prescription: Prescription, now: datetime) -> str:
    if prescription.is_dispensed:
        return "Prescription has already been dispensed"
    if prescription.expired_at(now):
        return "Prescription has expired"
    return "Prescription must be paid before it is dispensed"


class PrescriptionDesk:
    """One prescription open at the pharmacy counter.

    Gating is checked before any request is sent; the returned prescription
    replaces the local copy.
    """

    def __init__(self, client):
        self.client = client
        self.prescription: Optional[Prescription] = None
        self.busy = False

    async def load(self, prescription_id: str) -> Prescription:
        self.prescription = await self.client.get_prescription(prescription_id)
        return self.prescription

    async def load_by_code(self, code: str) -> Prescription:
        self.prescription = await self.client.get_prescription_by_code(code.strip().upper())
        return self.prescription

    def _require(self) -> Prescription:
        if self.prescription is None:
            raise ConsoleError("No prescription is open")
        if self.busy:
            raise ConflictError("A prescription action is already in progress")
        return self.prescription

    async def update_payment(
        self,
        payment_status: PaymentStatus,
        payment_method: Optional[PaymentMethod] = None,
        pharmacy_notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Prescription:
        prescription = self._require()
        now = now or utcnow()
        if not can_update_payment(prescription, now):
            raise PrescriptionActionError(_blocked_reason(prescription, now))
        update = PaymentUpdate(payment_status=payment_status, payment_method=payment_method, pharmacy_notes=pharmacy_notes)
        return await self._send(self.client.update_prescription_payment, prescription.id, update, "payment")

    async def dispense(
        self,
        pharmacy_notes: Optional[str] = None,
        dispensed_by: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Prescription:
        prescription = self._require()
        now = now or utcnow()
        if not can_dispense(prescription, now):
            raise PrescriptionActionError(_blocked_reason(prescription, now))
        request = DispenseRequest(pharmacy_notes=pharmacy_notes, dispensed_by=dispensed_by)
        return await self._send(self.client.dispense_prescription, prescription.id, request, "dispense")

    async def _send(self, call, prescription_id: str, body, action: str) -> Prescription:
        self.busy = True
        try:
            updated = await call(prescription_id, body)
        except ConsoleError as e:
            logger.warning("prescription.action.failed", prescription_id=prescription_id, action=action, error=e.message)
            raise
        finally:
            self.busy = False
        self.prescription = updated
        logger.info("prescription.action", prescription_id=prescription_id, action=action, code=updated.prescription_code)
        return updated


class PrescriptionComposer:
    """Builds a standalone digital prescription for one patient."""

    def __init__(self, client, doctor_id: Optional[str] = None, queue_id: Optional[str] = None):
        self.client = client
        self.doctor_id = doctor_id
        self.queue_id = queue_id
        self.patient: Optional[PatientSummary] = None
        self.lines = LineList()
        self.instructions = ""
        self.submitting = False
        self.created: Optional[Prescription] = None

    def _check_editable(self):
        if self.submitting:
            raise ConflictError("The prescription is being submitted")
        if self.created is not None:
            raise ConflictError("The prescription has already been created")

    def select_patient(self, patient: PatientSummary):
        self._check_editable()
        self.patient = patient

    def set_instructions(self, instructions: str):
        self._check_editable()
        self.instructions = instructions

    def add_medication(self, medication: MedicationCatalogEntry):
        self._check_editable()
        self.lines = self.lines.add_catalog(medication)

    def add_manual_line(self, **fields):
        self._check_editable()
        self.lines = self.lines.add_manual(**fields)

    def update_line(self, index: int, **changes):
        self._check_editable()
        self.lines = self.lines.update(index, **changes)

    def remove_line(self, index: int):
        self._check_editable()
        self.lines = self.lines.remove(index)

    @property
    def estimated_total(self) -> int:
        return self.lines.estimated_total

    def issues(self) -> List[ValidationIssue]:
        issues = []
        if self.patient is None:
            issues.append(ValidationIssue("userId", "Select a patient first"))
        if not self.lines.lines:
            issues.append(ValidationIssue("medications", "Add at least one medication"))
        return issues + self.lines.issues()

    async def submit(self) -> Prescription:
        self._check_editable()
        issues = self.issues()
        if issues:
            raise ValidationError(issues)
        request = PrescriptionCreate(
            user_id=self.patient.id,
            doctor_id=self.doctor_id,
            queue_id=self.queue_id,
            medications=list(self.lines.lines),
            instructions=self.instructions.strip() or None,
        )
        self.submitting = True
        try:
            self.created = await self.client.create_prescription(request)
        finally:
            self.submitting = False
        logger.info("prescription.created", code=self.created.prescription_code, total=self.created.total_amount)
        return self.created

# clinic_console/schemas.py
from datetime import datetime, date, timezone
from typing import Annotated, Generic, List, Optional, TypeVar
from pydantic import BaseModel, ConfigDict, Field, AfterValidator, field_validator, model_validator, computed_field
from pydantic.alias_generators import to_camel

from .enums import (
    QueueStatus, QueueType, Severity, ConsultationType, Gender,
    LabTestType, LabCategory, PaymentStatus, PaymentMethod
)
from . import validation
from .validation import DEFAULT_FREQUENCY, DEFAULT_DURATION


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


UtcDatetime = Annotated[datetime, AfterValidator(as_utc)]

DataT = TypeVar("DataT")


# --- Base Schemas ---
class BaseSchema(BaseModel):
    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )

    def to_wire(self) -> dict:
        """JSON-ready camelCase dict; absent optionals are omitted, not sent as null."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ApiResponse(BaseSchema, Generic[DataT]):
    success: bool = True
    message: str = ""
    data: Optional[DataT] = None

class Pagination(BaseSchema):
    current_page: int
    limit: int
    total_count: int
    total_pages: int
    has_next: bool
    has_prev: bool

    @classmethod
    def for_page(cls, page: int, limit: int, total_count: int) -> "Pagination":
        total_pages = max((total_count + limit - 1) // limit, 1)
        return cls(
            current_page=page,
            limit=limit,
            total_count=total_count,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_prev=page > 1,
        )


# --- Queue Schemas ---
class QueueUser(BaseSchema):
    id: str
    full_name: str
    nik: Optional[str] = None
    phone: Optional[str] = None
    gender: Optional[Gender] = None
    date_of_birth: Optional[date] = None

class QueueDoctor(BaseSchema):
    id: Optional[str] = None
    name: str
    specialty: str

class QueueConsultation(BaseSchema):
    type: Optional[ConsultationType] = None
    severity: Optional[Severity] = None
    symptoms: List[str] = Field(default_factory=list)

class QueueEntry(BaseSchema):
    model_config = ConfigDict(frozen=True)

    id: str
    queue_number: str
    queue_date: date
    queue_type: QueueType = QueueType.WALK_IN
    status: QueueStatus
    position: int
    is_priority: bool = False
    check_in_time: UtcDatetime
    called_time: Optional[UtcDatetime] = None
    completed_time: Optional[UtcDatetime] = None
    estimated_wait_time: Optional[int] = None  # minutes, advisory
    notes: Optional[str] = None
    cancel_reason: Optional[str] = None
    user: QueueUser
    doctor: Optional[QueueDoctor] = None
    consultation: Optional[QueueConsultation] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (QueueStatus.COMPLETED, QueueStatus.CANCELLED)

class QueueStatistics(BaseSchema):
    total: int = 0
    waiting: int = 0
    called: int = 0
    in_progress: int = 0
    completed: int = 0
    cancelled: int = 0

class ActiveQueues(BaseSchema):
    queues: List[QueueEntry] = Field(default_factory=list)
    statistics: QueueStatistics = Field(default_factory=QueueStatistics)

class QueueHistory(BaseSchema):
    queues: List[QueueEntry] = Field(default_factory=list)
    pagination: Pagination

class CheckInRequest(BaseSchema):
    patient_id: str
    doctor_id: Optional[str] = None
    queue_type: QueueType = QueueType.WALK_IN
    is_priority: bool = False
    notes: Optional[str] = Field(None, max_length=500)
    consultation_type: Optional[ConsultationType] = None
    severity: Optional[Severity] = None
    symptoms: List[str] = Field(default_factory=list)

class CancelRequest(BaseSchema):
    reason: Optional[str] = Field(None, max_length=255)

class SkipRequest(BaseSchema):
    reason: Optional[str] = Field(None, max_length=255)

class CompleteRequest(BaseSchema):
    notes: Optional[str] = Field(None, max_length=500)


# --- Consultation Completion Schemas ---
class VitalSigns(BaseSchema):
    temperature: Optional[str] = None  # °C
    blood_pressure: Optional[str] = None  # "sys/dia"
    heart_rate: Optional[str] = None
    respiratory_rate: Optional[str] = None
    weight: Optional[str] = None  # kg
    height: Optional[str] = None  # cm

    @field_validator("*", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    def has_values(self) -> bool:
        return any(getattr(self, name) for name in type(self).model_fields)

    @property
    def bmi(self) -> Optional[float]:
        return body_mass_index(self.weight, self.height)


def body_mass_index(weight: Optional[str], height: Optional[str]) -> Optional[float]:
    try:
        weight_kg = float(weight)
        height_m = float(height) / 100
    except (TypeError, ValueError):
        return None
    if weight_kg <= 0 or height_m <= 0:
        return None
    return round(weight_kg / (height_m ** 2), 1)


class PrescriptionLine(BaseSchema):
    model_config = ConfigDict(frozen=True)

    medication_id: Optional[str] = None
    medication_name: str = ""
    dosage: str = ""
    frequency: str = DEFAULT_FREQUENCY
    duration: str = DEFAULT_DURATION
    quantity: int = 1
    price: int = Field(0, ge=0)
    instructions: str = ""
    notes: str = ""

    @property
    def line_total(self) -> int:
        return self.quantity * self.price

    def with_changes(self, **changes) -> "PrescriptionLine":
        """Validated copy; unknown fields and wrongly typed values are rejected."""
        unknown = set(changes) - set(type(self).model_fields)
        if unknown:
            raise ValueError(f"Unknown prescription line field(s): {', '.join(sorted(unknown))}")
        return type(self).model_validate({**self.model_dump(), **changes})


class LabTestOrder(BaseSchema):
    model_config = ConfigDict(frozen=True)

    test_name: str = ""
    test_type: LabTestType = LabTestType.OTHER
    category: LabCategory = LabCategory.GENERAL
    notes: str = ""
    is_critical: bool = False

    def with_changes(self, **changes) -> "LabTestOrder":
        unknown = set(changes) - set(type(self).model_fields)
        if unknown:
            raise ValueError(f"Unknown lab test field(s): {', '.join(sorted(unknown))}")
        return type(self).model_validate({**self.model_dump(), **changes})


def estimated_total(lines) -> int:
    return sum(line.line_total for line in lines)


class ConsultationCompletion(BaseSchema):
    """Everything submitted, in one request, to close a consultation.

    Empty prescription and lab-test lists are normalised to None so that they
    are omitted on the wire; the service reads an absent list as "none given".
    """
    queue_id: str
    diagnosis: str
    treatment: str
    notes: Optional[str] = None
    vital_signs: Optional[VitalSigns] = None
    follow_up_days: Optional[int] = None
    prescriptions: Optional[List[PrescriptionLine]] = None
    lab_tests: Optional[List[LabTestOrder]] = None

    @field_validator("diagnosis", "treatment", "notes")
    @classmethod
    def strip_text(cls, v):
        if v is None:
            return v
        v = v.strip()
        return v

    @model_validator(mode="after")
    def check_content(self):
        issues = validation.completion_issues(
            self.diagnosis, self.treatment, self.prescriptions or (), self.lab_tests or (),
            notes=self.notes, follow_up_days=self.follow_up_days,
        )
        if issues:
            raise ValueError("; ".join(issue.message for issue in issues))
        if not self.notes:
            self.notes = None
        if not self.prescriptions:
            self.prescriptions = None
        if not self.lab_tests:
            self.lab_tests = None
        if self.vital_signs is not None and not self.vital_signs.has_values():
            self.vital_signs = None
        return self

    @property
    def estimated_total(self) -> int:
        return estimated_total(self.prescriptions or ())


class MedicalRecordSummary(BaseSchema):
    id: str
    diagnosis: str
    treatment: str
    notes: Optional[str] = None
    visit_date: UtcDatetime
    follow_up_date: Optional[date] = None
    vital_signs: Optional[VitalSigns] = None

class PrescriptionSummary(BaseSchema):
    id: str
    code: str
    medications_count: int
    total_amount: int
    medications: List[PrescriptionLine] = Field(default_factory=list)

class LabResultSummary(BaseSchema):
    id: str
    test_name: str
    test_type: LabTestType
    category: LabCategory
    is_critical: bool = False

class CompletionSummary(BaseSchema):
    medical_record_created: bool
    prescription_created: bool
    lab_results_created: int
    follow_up_scheduled: bool
    total_medications: int
    total_lab_tests: int

class CompletionResult(BaseSchema):
    completed_queue: QueueEntry
    medical_record: MedicalRecordSummary
    prescription: Optional[PrescriptionSummary] = None
    lab_results: List[LabResultSummary] = Field(default_factory=list)
    summary: CompletionSummary


# --- Medication Catalog Schemas ---
class MedicationCatalogEntry(BaseSchema):
    model_config = ConfigDict(frozen=True)

    id: str
    medication_code: Optional[str] = None
    generic_name: str
    brand_name: Optional[str] = None
    strength: str
    dosage_form: str
    category: str
    price_per_unit: int
    stock: int
    unit: str
    requires_prescription: bool = True
    is_controlled: bool = False
    dosage_instructions: Optional[str] = None

class MedicationSearchResult(BaseSchema):
    medications: List[MedicationCatalogEntry] = Field(default_factory=list)
    query: str = ""
    total: int = 0

class MedicationCategory(BaseSchema):
    category: str
    count: int


# --- Patient Schemas ---
class PatientSummary(BaseSchema):
    model_config = ConfigDict(frozen=True)

    id: str
    full_name: str
    nik: Optional[str] = None
    phone: Optional[str] = None
    gender: Optional[Gender] = None
    date_of_birth: Optional[date] = None


# --- Prescription Schemas ---
class Prescription(BaseSchema):
    id: str
    prescription_code: str
    user_id: str
    user: Optional[PatientSummary] = None
    doctor: Optional[QueueDoctor] = None
    queue_id: Optional[str] = None
    medications: List[PrescriptionLine] = Field(default_factory=list)
    instructions: Optional[str] = None
    total_amount: int = 0
    pharmacy_notes: Optional[str] = None
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_method: Optional[PaymentMethod] = None
    is_dispensed: bool = False
    dispensed_at: Optional[UtcDatetime] = None
    dispensed_by: Optional[str] = None
    expires_at: UtcDatetime
    created_at: UtcDatetime
    updated_at: Optional[UtcDatetime] = None

    def expired_at(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) > self.expires_at

    # Derived on every read, never stored
    @computed_field(alias="isExpired")
    @property
    def is_expired(self) -> bool:
        return self.expired_at()

    @computed_field(alias="isPaid")
    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.PAID

    @computed_field(alias="daysUntilExpiry")
    @property
    def days_until_expiry(self) -> int:
        remaining = self.expires_at - utcnow()
        return max(remaining.days, 0)

class PrescriptionCreate(BaseSchema):
    user_id: str
    doctor_id: Optional[str] = None
    queue_id: Optional[str] = None
    medications: List[PrescriptionLine] = Field(..., min_length=1)
    instructions: Optional[str] = Field(None, max_length=1000)

    @model_validator(mode="after")
    def check_lines(self):
        issues = validation.line_issues(self.medications)
        if issues:
            raise ValueError("; ".join(issue.message for issue in issues))
        return self

    @property
    def estimated_total(self) -> int:
        return estimated_total(self.medications)

class PaymentUpdate(BaseSchema):
    payment_status: Optional[PaymentStatus] = None
    payment_method: Optional[PaymentMethod] = None
    pharmacy_notes: Optional[str] = Field(None, max_length=1000)

class DispenseRequest(BaseSchema):
    pharmacy_notes: Optional[str] = Field(None, max_length=1000)
    dispensed_by: Optional[str] = Field(None, max_length=255)

class PrescriptionHistory(BaseSchema):
    prescriptions: List[Prescription] = Field(default_factory=list)
    pagination: Pagination


# --- Health Schemas ---
class HealthStatus(BaseSchema):
    status: str
    database: str
    checked_at: UtcDatetime

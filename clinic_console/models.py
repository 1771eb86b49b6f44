# clinic_console/models.py
import uuid
from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, Text, Date,
    Enum as SQLAlchemyEnum, Boolean, JSON, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from .database import Base
from .enums import (
    QueueStatus, QueueType, Severity, ConsultationType, Gender, LabTestType,
    LabCategory, PaymentStatus, PaymentMethod, AuditAction
)


def _new_id() -> str:
    return uuid.uuid4().hex


class Patient(Base):
    """Registered patient; queue entries and prescriptions snapshot it."""
    __tablename__ = "patients"
    __table_args__ = (
        Index('idx_patients_name', 'full_name'),
        Index('idx_patients_nik', 'nik'),
    )

    id = Column(String(32), primary_key=True, default=_new_id)
    full_name = Column(String(255), nullable=False)
    nik = Column(String(32), nullable=True)
    phone = Column(String(32), nullable=True)
    gender = Column(SQLAlchemyEnum(Gender), nullable=True)
    date_of_birth = Column(Date, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    queue_entries = relationship("QueueEntry", back_populates="patient")


class Doctor(Base):
    __tablename__ = "doctors"

    id = Column(String(32), primary_key=True, default=_new_id)
    name = Column(String(255), nullable=False)
    specialty = Column(String(255), nullable=False)
    license_number = Column(String(64), nullable=True)
    is_on_duty = Column(Boolean, default=True)


class Medication(Base):
    """Catalog entry. Stock is advisory here; nothing in this service decrements it."""
    __tablename__ = "medications"
    __table_args__ = (
        Index('idx_medications_generic', 'generic_name'),
        Index('idx_medications_category_active', 'category', 'is_active'),
    )

    id = Column(String(32), primary_key=True, default=_new_id)
    medication_code = Column(String(32), nullable=False, unique=True)
    generic_name = Column(String(255), nullable=False)
    brand_name = Column(String(255), nullable=True)
    category = Column(String(100), nullable=False)
    dosage_form = Column(String(50), nullable=False)
    strength = Column(String(50), nullable=False)
    unit = Column(String(30), nullable=False)
    price_per_unit = Column(Integer, nullable=False, default=0)
    stock = Column(Integer, nullable=False, default=0)
    dosage_instructions = Column(Text, nullable=True)
    requires_prescription = Column(Boolean, default=True)
    is_controlled = Column(Boolean, default=False)
    is_active = Column(Boolean, default=True)


class QueueEntry(Base):
    """One walk-in visit slot for one calendar day."""
    __tablename__ = "queue_entries"
    __table_args__ = (
        UniqueConstraint('queue_date', 'queue_number', name='uq_queue_date_number'),
        Index('idx_queue_date_status', 'queue_date', 'status'),
        Index('idx_queue_date_position', 'queue_date', 'position'),
    )

    id = Column(String(32), primary_key=True, default=_new_id)
    queue_number = Column(String(16), nullable=False)
    queue_date = Column(Date, nullable=False)
    queue_type = Column(SQLAlchemyEnum(QueueType), nullable=False, default=QueueType.WALK_IN)
    status = Column(SQLAlchemyEnum(QueueStatus), nullable=False, default=QueueStatus.WAITING)
    position = Column(Integer, nullable=False)
    is_priority = Column(Boolean, default=False, nullable=False)

    check_in_time = Column(DateTime(timezone=True), nullable=False)
    called_time = Column(DateTime(timezone=True), nullable=True)
    completed_time = Column(DateTime(timezone=True), nullable=True)

    notes = Column(Text, nullable=True)
    cancel_reason = Column(String(255), nullable=True)

    patient_id = Column(String(32), ForeignKey("patients.id"), nullable=False)
    doctor_id = Column(String(32), ForeignKey("doctors.id"), nullable=True)

    # Consultation snapshot taken at check-in
    consultation_type = Column(SQLAlchemyEnum(ConsultationType), nullable=True)
    severity = Column(SQLAlchemyEnum(Severity), nullable=True)
    symptoms = Column(JSON, nullable=True)

    patient = relationship("Patient", back_populates="queue_entries")
    doctor = relationship("Doctor")
    medical_record = relationship("MedicalRecord", back_populates="queue_entry", uselist=False)


class MedicalRecord(Base):
    """Diagnosis record produced by a consultation completion; one per queue entry."""
    __tablename__ = "medical_records"

    id = Column(String(32), primary_key=True, default=_new_id)
    queue_id = Column(String(32), ForeignKey("queue_entries.id"), nullable=False, unique=True)
    patient_id = Column(String(32), ForeignKey("patients.id"), nullable=False)
    doctor_id = Column(String(32), ForeignKey("doctors.id"), nullable=True)
    diagnosis = Column(Text, nullable=False)
    treatment = Column(Text, nullable=False)
    notes = Column(Text, nullable=True)
    vital_signs = Column(JSON, nullable=True)
    visit_date = Column(DateTime(timezone=True), nullable=False)
    follow_up_date = Column(Date, nullable=True)

    queue_entry = relationship("QueueEntry", back_populates="medical_record")
    lab_orders = relationship("LabTestOrder", back_populates="medical_record", order_by="LabTestOrder.sequence")


class LabTestOrder(Base):
    __tablename__ = "lab_test_orders"

    id = Column(String(32), primary_key=True, default=_new_id)
    medical_record_id = Column(String(32), ForeignKey("medical_records.id"), nullable=False)
    sequence = Column(Integer, nullable=False, default=0)
    test_name = Column(String(255), nullable=False)
    test_type = Column(SQLAlchemyEnum(LabTestType), nullable=False, default=LabTestType.OTHER)
    category = Column(SQLAlchemyEnum(LabCategory), nullable=False, default=LabCategory.GENERAL)
    notes = Column(Text, nullable=True)
    is_critical = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    medical_record = relationship("MedicalRecord", back_populates="lab_orders")


class Prescription(Base):
    """Digital prescription tracked through payment and dispensing."""
    __tablename__ = "prescriptions"
    __table_args__ = (
        Index('idx_prescriptions_patient', 'patient_id'),
        Index('idx_prescriptions_queue', 'queue_id'),
    )

    id = Column(String(32), primary_key=True, default=_new_id)
    prescription_code = Column(String(32), nullable=False, unique=True)
    patient_id = Column(String(32), ForeignKey("patients.id"), nullable=False)
    doctor_id = Column(String(32), ForeignKey("doctors.id"), nullable=True)
    queue_id = Column(String(32), ForeignKey("queue_entries.id"), nullable=True)

    # Ordered list of prescription lines as submitted
    medications = Column(JSON, nullable=False)
    instructions = Column(Text, nullable=True)
    total_amount = Column(Integer, nullable=False, default=0)
    pharmacy_notes = Column(Text, nullable=True)

    payment_status = Column(SQLAlchemyEnum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING)
    payment_method = Column(SQLAlchemyEnum(PaymentMethod), nullable=True)
    is_dispensed = Column(Boolean, default=False, nullable=False)
    dispensed_at = Column(DateTime(timezone=True), nullable=True)
    dispensed_by = Column(String(255), nullable=True)

    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    patient = relationship("Patient")
    doctor = relationship("Doctor")


class AuditLog(Base):
    __tablename__ = "audit_logs"
    __table_args__ = (
        Index('idx_audit_resource', 'resource_type', 'resource_id'),
    )

    id = Column(Integer, primary_key=True, index=True)
    action = Column(SQLAlchemyEnum(AuditAction), nullable=False)
    category = Column(String(50), nullable=False)
    severity = Column(String(20), nullable=False, default="INFO")
    resource_type = Column(String(50), nullable=True)
    resource_id = Column(String(32), nullable=True)
    details = Column(Text, nullable=True)
    username = Column(String(255), nullable=True)
    timestamp = Column(DateTime(timezone=True), nullable=False)

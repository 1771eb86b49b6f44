# clinic_console/crud.py
from sqlalchemy.orm import Session, joinedload
from sqlalchemy import or_, func
from sqlalchemy.exc import SQLAlchemyError
from datetime import datetime, timedelta, date, timezone
from typing import Optional, List
import secrets
import logging

from . import models, schemas
from .audit_logger import audit_logger
from .config import get_settings
from .console import queue_machine
from .console.errors import InvalidTransitionError
from .console.queue_machine import QueueAction
from .enums import QueueStatus, PaymentStatus, AuditAction
from .schemas import utcnow, as_utc

logger = logging.getLogger(__name__)


class CRUDError(Exception):
    pass

class NotFoundError(CRUDError):
    pass

class ConflictError(CRUDError):
    pass


TRANSITION_AUDIT_ACTIONS = {
    QueueAction.CALL: AuditAction.QUEUE_CALL,
    QueueAction.START: AuditAction.QUEUE_START,
    QueueAction.COMPLETE: AuditAction.QUEUE_COMPLETE,
    QueueAction.CANCEL: AuditAction.QUEUE_CANCEL,
}


# ==================== SCHEMA CONVERSION ====================

def patient_to_schema(patient: models.Patient) -> schemas.PatientSummary:
    return schemas.PatientSummary.model_validate(patient)

def doctor_to_schema(doctor: Optional[models.Doctor]) -> Optional[schemas.QueueDoctor]:
    if doctor is None:
        return None
    return schemas.QueueDoctor(id=doctor.id, name=doctor.name, specialty=doctor.specialty)

def queue_entry_to_schema(entry: models.QueueEntry, estimated_wait: Optional[int] = None) -> schemas.QueueEntry:
    consultation = None
    if entry.consultation_type or entry.severity or entry.symptoms:
        consultation = schemas.QueueConsultation(
            type=entry.consultation_type,
            severity=entry.severity,
            symptoms=entry.symptoms or [],
        )
    patient = entry.patient
    return schemas.QueueEntry(
        id=entry.id,
        queue_number=entry.queue_number,
        queue_date=entry.queue_date,
        queue_type=entry.queue_type,
        status=entry.status,
        position=entry.position,
        is_priority=bool(entry.is_priority),
        check_in_time=entry.check_in_time,
        called_time=entry.called_time,
        completed_time=entry.completed_time,
        estimated_wait_time=estimated_wait,
        notes=entry.notes,
        cancel_reason=entry.cancel_reason,
        user=schemas.QueueUser(
            id=patient.id,
            full_name=patient.full_name,
            nik=patient.nik,
            phone=patient.phone,
            gender=patient.gender,
            date_of_birth=patient.date_of_birth,
        ),
        doctor=doctor_to_schema(entry.doctor),
        consultation=consultation,
    )

def medication_to_schema(medication: models.Medication) -> schemas.MedicationCatalogEntry:
    return schemas.MedicationCatalogEntry.model_validate(medication)

def prescription_to_schema(prescription: models.Prescription) -> schemas.Prescription:
    return schemas.Prescription(
        id=prescription.id,
        prescription_code=prescription.prescription_code,
        user_id=prescription.patient_id,
        user=patient_to_schema(prescription.patient) if prescription.patient else None,
        doctor=doctor_to_schema(prescription.doctor),
        queue_id=prescription.queue_id,
        medications=[schemas.PrescriptionLine.model_validate(line) for line in prescription.medications or []],
        instructions=prescription.instructions,
        total_amount=prescription.total_amount or 0,
        pharmacy_notes=prescription.pharmacy_notes,
        payment_status=prescription.payment_status,
        payment_method=prescription.payment_method,
        is_dispensed=bool(prescription.is_dispensed),
        dispensed_at=prescription.dispensed_at,
        dispensed_by=prescription.dispensed_by,
        expires_at=prescription.expires_at,
        created_at=prescription.created_at,
        updated_at=prescription.updated_at,
    )


# ==================== PATIENTS & DOCTORS ====================

def create_patient(db: Session, full_name: str, nik: str = None, phone: str = None, gender=None, date_of_birth: date = None) -> models.Patient:
    try:
        patient = models.Patient(full_name=full_name, nik=nik, phone=phone, gender=gender, date_of_birth=date_of_birth)
        db.add(patient)
        db.commit()
        db.refresh(patient)
        return patient
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error creating patient '{full_name}': {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")

def get_patient(db: Session, patient_id: str) -> models.Patient:
    patient = db.get(models.Patient, patient_id)
    if patient is None:
        raise NotFoundError(f"Patient {patient_id} not found")
    return patient

def search_patients(db: Session, query: str, limit: int = 10) -> List[models.Patient]:
    """Substring match on name, NIK and phone."""
    term = (query or "").strip()
    if not term:
        return []
    pattern = f"%{term}%"
    try:
        return db.query(models.Patient).filter(
            or_(
                models.Patient.full_name.ilike(pattern),
                models.Patient.nik.ilike(pattern),
                models.Patient.phone.ilike(pattern),
            )
        ).order_by(models.Patient.full_name).limit(max(1, min(limit, 50))).all()
    except SQLAlchemyError as e:
        logger.error(f"Error searching patients for '{term}': {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")

def create_doctor(db: Session, name: str, specialty: str, license_number: str = None) -> models.Doctor:
    try:
        doctor = models.Doctor(name=name, specialty=specialty, license_number=license_number)
        db.add(doctor)
        db.commit()
        db.refresh(doctor)
        return doctor
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error creating doctor '{name}': {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")


# ==================== MEDICATION CATALOG ====================

def create_medication(db: Session, **fields) -> models.Medication:
    try:
        medication = models.Medication(**fields)
        db.add(medication)
        db.commit()
        db.refresh(medication)
        return medication
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error creating medication {fields.get('medication_code')}: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")

def get_medication(db: Session, medication_id: str) -> models.Medication:
    medication = db.get(models.Medication, medication_id)
    if medication is None:
        raise NotFoundError(f"Medication {medication_id} not found")
    return medication

def search_medications(db: Session, query: str, category: Optional[str] = None, limit: int = 20) -> List[models.Medication]:
    """Case-insensitive match on generic name, brand name and code; prefix matches rank first."""
    term = (query or "").strip()
    if not term:
        return []
    limit = max(1, min(limit, 50))
    pattern = f"%{term}%"
    try:
        q = db.query(models.Medication).filter(
            models.Medication.is_active.is_(True),
            or_(
                models.Medication.generic_name.ilike(pattern),
                models.Medication.brand_name.ilike(pattern),
                models.Medication.medication_code.ilike(pattern),
            ),
        )
        if category:
            q = q.filter(models.Medication.category == category)
        matches = q.all()
    except SQLAlchemyError as e:
        logger.error(f"Error searching medications for '{term}': {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")

    lowered = term.lower()

    def rank(medication):
        names = [medication.generic_name or "", medication.brand_name or ""]
        is_prefix = any(name.lower().startswith(lowered) for name in names)
        return (0 if is_prefix else 1, (medication.generic_name or "").lower(), medication.id)

    return sorted(matches, key=rank)[:limit]

def get_medication_categories(db: Session) -> List[schemas.MedicationCategory]:
    try:
        rows = db.query(models.Medication.category, func.count(models.Medication.id)).filter(
            models.Medication.is_active.is_(True)
        ).group_by(models.Medication.category).order_by(models.Medication.category).all()
    except SQLAlchemyError as e:
        logger.error(f"Error loading medication categories: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")
    return [schemas.MedicationCategory(category=category, count=count) for category, count in rows]


# ==================== QUEUE ====================

def _queue_query(db: Session):
    return db.query(models.QueueEntry).options(
        joinedload(models.QueueEntry.patient),
        joinedload(models.QueueEntry.doctor),
    )

def get_queue_entry(db: Session, queue_id: str) -> models.QueueEntry:
    entry = _queue_query(db).filter(models.QueueEntry.id == queue_id).first()
    if entry is None:
        raise NotFoundError(f"Queue entry {queue_id} not found")
    return entry

def check_in(db: Session, request: schemas.CheckInRequest, now: Optional[datetime] = None) -> models.QueueEntry:
    """Create a WAITING entry at the end of today's queue."""
    settings = get_settings()
    now = now or utcnow()
    get_patient(db, request.patient_id)
    if request.doctor_id and db.get(models.Doctor, request.doctor_id) is None:
        raise NotFoundError(f"Doctor {request.doctor_id} not found")

    queue_date = now.date()
    try:
        max_position = db.query(func.max(models.QueueEntry.position)).filter(
            models.QueueEntry.queue_date == queue_date
        ).scalar() or 0
        position = max_position + 1
        entry = models.QueueEntry(
            queue_number=f"{settings.queue_number_prefix}{position:03d}",
            queue_date=queue_date,
            queue_type=request.queue_type,
            status=QueueStatus.WAITING,
            position=position,
            is_priority=request.is_priority,
            check_in_time=now,
            notes=request.notes,
            patient_id=request.patient_id,
            doctor_id=request.doctor_id,
            consultation_type=request.consultation_type,
            severity=request.severity,
            symptoms=request.symptoms or None,
        )
        db.add(entry)
        db.flush()
        audit_logger.log_queue_transition(db, entry, AuditAction.QUEUE_CHECK_IN, details=f"Checked in as {entry.queue_number}")
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error checking in patient {request.patient_id}: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")
    logger.info(f"Patient {request.patient_id} checked in as {entry.queue_number}")
    return get_queue_entry(db, entry.id)

def _queue_order(entry: models.QueueEntry):
    return (entry.position, as_utc(entry.check_in_time), entry.id)

def get_active_queues(db: Session, queue_date: Optional[date] = None) -> schemas.ActiveQueues:
    """Non-terminal entries of the day, in queue order, plus statistics over every entry of the day."""
    settings = get_settings()
    queue_date = queue_date or utcnow().date()
    try:
        entries = _queue_query(db).filter(models.QueueEntry.queue_date == queue_date).all()
    except SQLAlchemyError as e:
        logger.error(f"Error fetching queues for {queue_date}: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")

    statistics = schemas.QueueStatistics(
        total=len(entries),
        waiting=sum(1 for e in entries if e.status == QueueStatus.WAITING),
        called=sum(1 for e in entries if e.status == QueueStatus.CALLED),
        in_progress=sum(1 for e in entries if e.status == QueueStatus.IN_PROGRESS),
        completed=sum(1 for e in entries if e.status == QueueStatus.COMPLETED),
        cancelled=sum(1 for e in entries if e.status == QueueStatus.CANCELLED),
    )

    active = sorted((e for e in entries if not queue_machine.is_terminal(e.status)), key=_queue_order)
    queues = []
    for ahead, entry in enumerate(active):
        estimated = ahead * settings.avg_consultation_minutes if entry.status == QueueStatus.WAITING else None
        queues.append(queue_entry_to_schema(entry, estimated_wait=estimated))
    return schemas.ActiveQueues(queues=queues, statistics=statistics)

def transition_queue(
    db: Session,
    queue_id: str,
    action: QueueAction,
    reason: Optional[str] = None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
    audit_action: Optional[AuditAction] = None,
) -> models.QueueEntry:
    """Apply one state-machine action; the entry is untouched when the action is illegal."""
    entry = get_queue_entry(db, queue_id)
    try:
        target = queue_machine.next_status(entry.status, action)
    except InvalidTransitionError as e:
        logger.warning(f"Rejected {action.value} on queue {entry.queue_number}: {e.message}")
        raise ConflictError(e.message)

    if action == QueueAction.COMPLETE and entry.medical_record is None:
        raise ConflictError("Consultation completion must be submitted before the queue can be completed")

    if action == QueueAction.CANCEL:
        reason = (reason or "").strip() or get_settings().default_cancel_reason

    # Reuse the pure transition so the service stamps times exactly as the console expects
    updated = queue_machine.apply(queue_entry_to_schema(entry), action, now=now or utcnow(), reason=reason)
    try:
        entry.status = target
        entry.called_time = updated.called_time
        entry.completed_time = updated.completed_time
        if action == QueueAction.CANCEL:
            entry.cancel_reason = updated.cancel_reason
        if notes:
            entry.notes = notes
        audit_logger.log_queue_transition(db, entry, audit_action or TRANSITION_AUDIT_ACTIONS[action])
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error applying {action.value} to queue {queue_id}: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")
    logger.info(f"Queue {entry.queue_number} -> {target.value}")
    return get_queue_entry(db, queue_id)

def skip_queue(db: Session, queue_id: str, reason: Optional[str] = None, now: Optional[datetime] = None) -> models.QueueEntry:
    """A patient who did not answer the call leaves the queue as CANCELLED with a skip reason."""
    reason = (reason or "").strip() or get_settings().skip_reason
    return transition_queue(db, queue_id, QueueAction.CANCEL, reason=reason, now=now, audit_action=AuditAction.QUEUE_SKIP)


# ==================== HISTORY ====================

def _page_bounds(page: int, limit: Optional[int]):
    page = max(page, 1)
    limit = max(1, min(limit or get_settings().history_page_size, 100))
    return page, limit

def _day_start(day: date) -> datetime:
    return datetime(day.year, day.month, day.day, tzinfo=timezone.utc)

def get_queue_history(
    db: Session,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    status: Optional[QueueStatus] = None,
    doctor_id: Optional[str] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: Optional[int] = None,
) -> schemas.QueueHistory:
    """Finished entries (completed or cancelled), newest day first."""
    if start_date and end_date and start_date > end_date:
        raise CRUDError("startDate must not be after endDate")
    page, limit = _page_bounds(page, limit)

    query = _queue_query(db)
    if status is not None:
        query = query.filter(models.QueueEntry.status == status)
    else:
        query = query.filter(models.QueueEntry.status.in_([QueueStatus.COMPLETED, QueueStatus.CANCELLED]))
    if start_date:
        query = query.filter(models.QueueEntry.queue_date >= start_date)
    if end_date:
        query = query.filter(models.QueueEntry.queue_date <= end_date)
    if doctor_id:
        query = query.filter(models.QueueEntry.doctor_id == doctor_id)
    term = (search or "").strip()
    if term:
        pattern = f"%{term}%"
        query = query.join(models.QueueEntry.patient).filter(
            or_(
                models.Patient.full_name.ilike(pattern),
                models.Patient.nik.ilike(pattern),
                models.QueueEntry.queue_number.ilike(pattern),
            )
        )

    try:
        total = query.count()
        entries = query.order_by(
            models.QueueEntry.queue_date.desc(), models.QueueEntry.position.desc()
        ).offset((page - 1) * limit).limit(limit).all()
    except SQLAlchemyError as e:
        logger.error(f"Error fetching queue history: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")
    return schemas.QueueHistory(
        queues=[queue_entry_to_schema(e) for e in entries],
        pagination=schemas.Pagination.for_page(page, limit, total),
    )


# ==================== CONSULTATION COMPLETION ====================

def complete_consultation(
    db: Session,
    queue_id: str,
    completion: schemas.ConsultationCompletion,
    now: Optional[datetime] = None,
) -> schemas.CompletionResult:
    """Close a consultation in one transaction.

    Creates the medical record, at most one prescription holding every line,
    one lab order per requested test, and moves the entry to COMPLETED.
    Either all of it is stored or none of it.
    """
    settings = get_settings()
    now = now or utcnow()
    if completion.queue_id != queue_id:
        raise CRUDError("queueId in the body does not match the queue being completed")

    entry = get_queue_entry(db, queue_id)
    try:
        target = queue_machine.next_status(entry.status, QueueAction.COMPLETE)
    except InvalidTransitionError as e:
        raise ConflictError(e.message)
    if entry.medical_record is not None:
        raise ConflictError("A completion has already been recorded for this queue entry")

    lines = completion.prescriptions or []
    for line in lines:
        if line.medication_id and db.get(models.Medication, line.medication_id) is None:
            raise CRUDError(f"Medication {line.medication_id} not found in catalog")

    completed = queue_machine.apply(queue_entry_to_schema(entry), QueueAction.COMPLETE, now=now)
    try:
        record = models.MedicalRecord(
            queue_id=entry.id,
            patient_id=entry.patient_id,
            doctor_id=entry.doctor_id,
            diagnosis=completion.diagnosis,
            treatment=completion.treatment,
            notes=completion.notes,
            vital_signs=completion.vital_signs.model_dump(exclude_none=True) if completion.vital_signs else None,
            visit_date=now,
            follow_up_date=now.date() + timedelta(days=completion.follow_up_days) if completion.follow_up_days else None,
        )
        db.add(record)
        db.flush()

        prescription = None
        if lines:
            prescription = models.Prescription(
                prescription_code=_generate_prescription_code(db, now),
                patient_id=entry.patient_id,
                doctor_id=entry.doctor_id,
                queue_id=entry.id,
                medications=[line.model_dump() for line in lines],
                total_amount=schemas.estimated_total(lines),
                payment_status=PaymentStatus.PENDING,
                expires_at=now + timedelta(days=settings.prescription_validity_days),
                created_at=now,
            )
            db.add(prescription)
            db.flush()
            audit_logger.log_prescription(db, prescription, AuditAction.PRESCRIPTION_CREATE)

        lab_orders = []
        for sequence, test in enumerate(completion.lab_tests or []):
            order = models.LabTestOrder(
                medical_record_id=record.id,
                sequence=sequence,
                test_name=test.test_name.strip(),
                test_type=test.test_type,
                category=test.category,
                notes=test.notes or None,
                is_critical=test.is_critical,
            )
            db.add(order)
            lab_orders.append(order)
        db.flush()

        entry.status = target
        entry.completed_time = completed.completed_time
        audit_logger.log_queue_transition(
            db, entry, AuditAction.CONSULTATION_COMPLETE,
            details=f"Completed with {len(lines)} medication(s) and {len(lab_orders)} lab test(s)",
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error completing consultation for queue {queue_id}: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")

    logger.info(f"Consultation for queue {entry.queue_number} completed")
    entry = get_queue_entry(db, queue_id)
    return schemas.CompletionResult(
        completed_queue=queue_entry_to_schema(entry),
        medical_record=schemas.MedicalRecordSummary(
            id=record.id,
            diagnosis=record.diagnosis,
            treatment=record.treatment,
            notes=record.notes,
            visit_date=record.visit_date,
            follow_up_date=record.follow_up_date,
            vital_signs=completion.vital_signs,
        ),
        prescription=schemas.PrescriptionSummary(
            id=prescription.id,
            code=prescription.prescription_code,
            medications_count=len(lines),
            total_amount=prescription.total_amount,
            medications=list(lines),
        ) if prescription else None,
        lab_results=[
            schemas.LabResultSummary(
                id=order.id,
                test_name=order.test_name,
                test_type=order.test_type,
                category=order.category,
                is_critical=order.is_critical,
            )
            for order in lab_orders
        ],
        summary=schemas.CompletionSummary(
            medical_record_created=True,
            prescription_created=prescription is not None,
            lab_results_created=len(lab_orders),
            follow_up_scheduled=record.follow_up_date is not None,
            total_medications=len(lines),
            total_lab_tests=len(lab_orders),
        ),
    )


# ==================== PRESCRIPTIONS ====================

def _generate_prescription_code(db: Session, now: datetime) -> str:
    while True:
        code = f"RX-{now:%Y%m%d}-{secrets.token_hex(3).upper()}"
        exists = db.query(models.Prescription.id).filter(models.Prescription.prescription_code == code).first()
        if not exists:
            return code

def _prescription_query(db: Session):
    return db.query(models.Prescription).options(
        joinedload(models.Prescription.patient),
        joinedload(models.Prescription.doctor),
    )

def get_prescription(db: Session, prescription_id: str) -> models.Prescription:
    prescription = _prescription_query(db).filter(models.Prescription.id == prescription_id).first()
    if prescription is None:
        raise NotFoundError(f"Prescription {prescription_id} not found")
    return prescription

def get_prescription_by_code(db: Session, code: str) -> models.Prescription:
    prescription = _prescription_query(db).filter(models.Prescription.prescription_code == code.strip().upper()).first()
    if prescription is None:
        raise NotFoundError(f"Prescription {code} not found")
    return prescription

def create_prescription(db: Session, data: schemas.PrescriptionCreate, now: Optional[datetime] = None) -> models.Prescription:
    """Standalone digital prescription, outside a queue completion."""
    settings = get_settings()
    now = now or utcnow()
    get_patient(db, data.user_id)
    if data.doctor_id and db.get(models.Doctor, data.doctor_id) is None:
        raise NotFoundError(f"Doctor {data.doctor_id} not found")
    for line in data.medications:
        if line.medication_id and db.get(models.Medication, line.medication_id) is None:
            raise CRUDError(f"Medication {line.medication_id} not found in catalog")
    try:
        prescription = models.Prescription(
            prescription_code=_generate_prescription_code(db, now),
            patient_id=data.user_id,
            doctor_id=data.doctor_id,
            queue_id=data.queue_id,
            medications=[line.model_dump() for line in data.medications],
            instructions=data.instructions,
            total_amount=data.estimated_total,
            payment_status=PaymentStatus.PENDING,
            expires_at=now + timedelta(days=settings.prescription_validity_days),
            created_at=now,
        )
        db.add(prescription)
        db.flush()
        audit_logger.log_prescription(db, prescription, AuditAction.PRESCRIPTION_CREATE)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error creating prescription for patient {data.user_id}: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")
    return get_prescription(db, prescription.id)

def _ensure_open(prescription: models.Prescription, now: datetime):
    if prescription.is_dispensed:
        raise ConflictError("Prescription has already been dispensed")
    if now > as_utc(prescription.expires_at):
        raise ConflictError("Prescription has expired")

def update_prescription_payment(db: Session, prescription_id: str, update: schemas.PaymentUpdate, now: Optional[datetime] = None) -> models.Prescription:
    now = now or utcnow()
    prescription = get_prescription(db, prescription_id)
    _ensure_open(prescription, now)
    try:
        if update.payment_status is not None:
            prescription.payment_status = update.payment_status
        if update.payment_method is not None:
            prescription.payment_method = update.payment_method
        if update.pharmacy_notes is not None:
            prescription.pharmacy_notes = update.pharmacy_notes
        prescription.updated_at = now
        audit_logger.log_prescription(
            db, prescription, AuditAction.PRESCRIPTION_PAYMENT,
            details=f"Payment {prescription.payment_status.value} via {prescription.payment_method.value if prescription.payment_method else '-'}",
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error updating payment for prescription {prescription_id}: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")
    return get_prescription(db, prescription_id)

def dispense_prescription(db: Session, prescription_id: str, request: schemas.DispenseRequest, now: Optional[datetime] = None) -> models.Prescription:
    """One-way: only a paid, undispensed, unexpired prescription can be dispensed."""
    now = now or utcnow()
    prescription = get_prescription(db, prescription_id)
    _ensure_open(prescription, now)
    if prescription.payment_status != PaymentStatus.PAID:
        raise ConflictError("Prescription must be paid before it is dispensed")
    try:
        prescription.is_dispensed = True
        prescription.dispensed_at = now
        prescription.dispensed_by = request.dispensed_by or "Pharmacy"
        if request.pharmacy_notes is not None:
            prescription.pharmacy_notes = request.pharmacy_notes
        prescription.updated_at = now
        audit_logger.log_prescription(db, prescription, AuditAction.PRESCRIPTION_DISPENSE, username=prescription.dispensed_by)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error dispensing prescription {prescription_id}: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")
    logger.info(f"Prescription {prescription.prescription_code} dispensed by {prescription.dispensed_by}")
    return get_prescription(db, prescription_id)

def list_prescriptions(
    db: Session,
    patient_id: Optional[str] = None,
    doctor_id: Optional[str] = None,
    payment_status: Optional[PaymentStatus] = None,
    is_dispensed: Optional[bool] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    page: int = 1,
    limit: Optional[int] = None,
) -> schemas.PrescriptionHistory:
    """Prescriptions filtered by patient, doctor, payment, dispensing and creation day; newest first."""
    if start_date and end_date and start_date > end_date:
        raise CRUDError("startDate must not be after endDate")
    page, limit = _page_bounds(page, limit)

    query = _prescription_query(db)
    if patient_id:
        query = query.filter(models.Prescription.patient_id == patient_id)
    if doctor_id:
        query = query.filter(models.Prescription.doctor_id == doctor_id)
    if payment_status is not None:
        query = query.filter(models.Prescription.payment_status == payment_status)
    if is_dispensed is not None:
        query = query.filter(models.Prescription.is_dispensed == is_dispensed)
    if start_date:
        query = query.filter(models.Prescription.created_at >= _day_start(start_date))
    if end_date:
        query = query.filter(models.Prescription.created_at < _day_start(end_date + timedelta(days=1)))

    try:
        total = query.count()
        prescriptions = query.order_by(
            models.Prescription.created_at.desc()
        ).offset((page - 1) * limit).limit(limit).all()
    except SQLAlchemyError as e:
        logger.error(f"Error listing prescriptions: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")
    return schemas.PrescriptionHistory(
        prescriptions=[prescription_to_schema(p) for p in prescriptions],
        pagination=schemas.Pagination.for_page(page, limit, total),
    )

def get_today_prescriptions(db: Session, doctor_id: Optional[str] = None, now: Optional[datetime] = None) -> schemas.PrescriptionHistory:
    today = (now or utcnow()).date()
    return list_prescriptions(db, doctor_id=doctor_id, start_date=today, end_date=today, limit=100)

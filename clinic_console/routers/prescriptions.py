# clinic_console/routers/prescriptions.py
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional
from datetime import date

from .. import crud, schemas
from ..database import get_db
from ..enums import PaymentStatus
from .queues import raise_http

router = APIRouter(
    prefix="/prescriptions",
    tags=["Prescriptions"],
    responses={404: {"description": "Not found"}},
)


def _response(prescription, message: str = ""):
    return schemas.ApiResponse(message=message, data=crud.prescription_to_schema(prescription))


@router.post("", response_model=schemas.ApiResponse[schemas.Prescription], response_model_exclude_none=True, status_code=201)
def create_new_prescription(prescription: schemas.PrescriptionCreate, db: Session = Depends(get_db)):
    """
    Create a standalone digital prescription.
    """
    try:
        created = crud.create_prescription(db, prescription)
    except crud.CRUDError as e:
        raise_http(e)
    return _response(created, f"Prescription {created.prescription_code} created")


@router.get("", response_model=schemas.ApiResponse[schemas.PrescriptionHistory], response_model_exclude_none=True)
def read_prescriptions(
    patient_id: Optional[str] = Query(None, alias="patientId"),
    doctor_id: Optional[str] = Query(None, alias="doctorId"),
    payment_status: Optional[PaymentStatus] = Query(None, alias="paymentStatus"),
    is_dispensed: Optional[bool] = Query(None, alias="isDispensed"),
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=100),
    db: Session = Depends(get_db),
):
    """
    Prescription history, newest first.
    """
    try:
        history = crud.list_prescriptions(
            db, patient_id=patient_id, doctor_id=doctor_id, payment_status=payment_status,
            is_dispensed=is_dispensed, start_date=start_date, end_date=end_date, page=page, limit=limit,
        )
    except crud.CRUDError as e:
        raise_http(e)
    return schemas.ApiResponse(data=history)


@router.get("/today", response_model=schemas.ApiResponse[schemas.PrescriptionHistory], response_model_exclude_none=True)
def read_today_prescriptions(doctor_id: Optional[str] = Query(None, alias="doctorId"), db: Session = Depends(get_db)):
    try:
        return schemas.ApiResponse(data=crud.get_today_prescriptions(db, doctor_id=doctor_id))
    except crud.CRUDError as e:
        raise_http(e)


@router.get("/code/{code}", response_model=schemas.ApiResponse[schemas.Prescription], response_model_exclude_none=True)
def read_prescription_by_code(code: str, db: Session = Depends(get_db)):
    try:
        return _response(crud.get_prescription_by_code(db, code))
    except crud.CRUDError as e:
        raise_http(e)


@router.get("/{prescription_id}", response_model=schemas.ApiResponse[schemas.Prescription], response_model_exclude_none=True)
def read_prescription(prescription_id: str, db: Session = Depends(get_db)):
    try:
        return _response(crud.get_prescription(db, prescription_id))
    except crud.CRUDError as e:
        raise_http(e)


@router.put("/{prescription_id}/payment", response_model=schemas.ApiResponse[schemas.Prescription], response_model_exclude_none=True)
def update_prescription_payment(prescription_id: str, update: schemas.PaymentUpdate, db: Session = Depends(get_db)):
    """
    Set payment status, method or pharmacy notes; refused once dispensed or expired.
    """
    try:
        return _response(crud.update_prescription_payment(db, prescription_id, update), "Payment updated")
    except crud.CRUDError as e:
        raise_http(e)


@router.put("/{prescription_id}/dispense", response_model=schemas.ApiResponse[schemas.Prescription], response_model_exclude_none=True)
def dispense_prescription(prescription_id: str, request: schemas.DispenseRequest, db: Session = Depends(get_db)):
    """
    Hand out the medication; only for a paid, unexpired prescription, and only once.
    """
    try:
        return _response(crud.dispense_prescription(db, prescription_id, request), "Prescription dispensed")
    except crud.CRUDError as e:
        raise_http(e)

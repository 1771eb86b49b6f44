# clinic_console/routers/queues.py
from fastapi import APIRouter, Depends, HTTPException, Query, Body
from sqlalchemy.orm import Session
from typing import Optional
from datetime import date
import logging

from .. import crud, schemas
from ..database import get_db
from ..console.queue_machine import QueueAction
from ..enums import QueueStatus

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/queues",
    tags=["Queues"],
    responses={404: {"description": "Not found"}, 409: {"description": "Not allowed in the current state"}},
)


def raise_http(e: crud.CRUDError):
    if isinstance(e, crud.NotFoundError):
        raise HTTPException(status_code=404, detail=str(e))
    if isinstance(e, crud.ConflictError):
        raise HTTPException(status_code=409, detail=str(e))
    raise HTTPException(status_code=400, detail=str(e))


@router.post("/check-in", response_model=schemas.ApiResponse[schemas.QueueEntry], response_model_exclude_none=True, status_code=201)
def check_in_patient(request: schemas.CheckInRequest, db: Session = Depends(get_db)):
    """
    Put a patient at the end of today's queue.
    """
    try:
        entry = crud.check_in(db, request)
    except crud.CRUDError as e:
        raise_http(e)
    return schemas.ApiResponse(message=f"Checked in as {entry.queue_number}", data=crud.queue_entry_to_schema(entry))


@router.get("/active", response_model=schemas.ApiResponse[schemas.ActiveQueues], response_model_exclude_none=True)
def read_active_queues(queue_date: Optional[date] = Query(None, alias="date"), db: Session = Depends(get_db)):
    """
    Non-terminal entries of the day in queue order, with statistics over the whole day.
    """
    try:
        active = crud.get_active_queues(db, queue_date)
    except crud.CRUDError as e:
        raise_http(e)
    return schemas.ApiResponse(data=active)


@router.get("/history", response_model=schemas.ApiResponse[schemas.QueueHistory], response_model_exclude_none=True)
def read_queue_history(
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    status: Optional[QueueStatus] = None,
    doctor_id: Optional[str] = Query(None, alias="doctorId"),
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=100),
    db: Session = Depends(get_db),
):
    """
    Finished queue entries, filtered by day range, status, doctor or patient, one page at a time.
    """
    try:
        history = crud.get_queue_history(
            db, start_date=start_date, end_date=end_date, status=status,
            doctor_id=doctor_id, search=search, page=page, limit=limit,
        )
    except crud.CRUDError as e:
        raise_http(e)
    return schemas.ApiResponse(data=history)


@router.get("/{queue_id}", response_model=schemas.ApiResponse[schemas.QueueEntry], response_model_exclude_none=True)
def read_queue_entry(queue_id: str, db: Session = Depends(get_db)):
    try:
        entry = crud.get_queue_entry(db, queue_id)
    except crud.CRUDError as e:
        raise_http(e)
    return schemas.ApiResponse(data=crud.queue_entry_to_schema(entry))


def _transition(db: Session, queue_id: str, action: QueueAction, message: str, **kwargs):
    try:
        entry = crud.transition_queue(db, queue_id, action, **kwargs)
    except crud.CRUDError as e:
        raise_http(e)
    return schemas.ApiResponse(message=message.format(number=entry.queue_number), data=crud.queue_entry_to_schema(entry))


@router.patch("/{queue_id}/call", response_model=schemas.ApiResponse[schemas.QueueEntry], response_model_exclude_none=True)
def call_patient(queue_id: str, db: Session = Depends(get_db)):
    return _transition(db, queue_id, QueueAction.CALL, "Queue {number} called")


@router.patch("/{queue_id}/start", response_model=schemas.ApiResponse[schemas.QueueEntry], response_model_exclude_none=True)
def start_consultation(queue_id: str, db: Session = Depends(get_db)):
    return _transition(db, queue_id, QueueAction.START, "Consultation for {number} started")


@router.patch("/{queue_id}/complete", response_model=schemas.ApiResponse[schemas.QueueEntry], response_model_exclude_none=True)
def complete_consultation(
    queue_id: str,
    request: Optional[schemas.CompleteRequest] = Body(None),
    db: Session = Depends(get_db),
):
    return _transition(db, queue_id, QueueAction.COMPLETE, "Queue {number} completed", notes=request.notes if request else None)


@router.patch("/{queue_id}/cancel", response_model=schemas.ApiResponse[schemas.QueueEntry], response_model_exclude_none=True)
def cancel_queue(
    queue_id: str,
    request: Optional[schemas.CancelRequest] = Body(None),
    db: Session = Depends(get_db),
):
    return _transition(db, queue_id, QueueAction.CANCEL, "Queue {number} cancelled", reason=request.reason if request else None)


@router.patch("/{queue_id}/skip", response_model=schemas.ApiResponse[schemas.QueueEntry], response_model_exclude_none=True)
def skip_patient(
    queue_id: str,
    request: Optional[schemas.SkipRequest] = Body(None),
    db: Session = Depends(get_db),
):
    """
    Take a patient who did not come when called off the queue.
    """
    try:
        entry = crud.skip_queue(db, queue_id, reason=request.reason if request else None)
    except crud.CRUDError as e:
        raise_http(e)
    return schemas.ApiResponse(message=f"Queue {entry.queue_number} skipped", data=crud.queue_entry_to_schema(entry))


@router.post("/{queue_id}/completion", response_model=schemas.ApiResponse[schemas.CompletionResult], response_model_exclude_none=True)
def submit_consultation_completion(
    queue_id: str,
    completion: schemas.ConsultationCompletion,
    db: Session = Depends(get_db),
):
    """
    Record diagnosis, treatment, prescription and lab orders and complete the queue entry, all or nothing.
    """
    try:
        result = crud.complete_consultation(db, queue_id, completion)
    except crud.CRUDError as e:
        raise_http(e)
    return schemas.ApiResponse(message="Consultation completed", data=result)

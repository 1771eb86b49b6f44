# clinic_console/routers/patients.py
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from typing import List

from .. import crud, schemas
from ..database import get_db

router = APIRouter(
    prefix="/patients",
    tags=["Patients"],
    responses={404: {"description": "Not found"}},
)


@router.get("/search", response_model=schemas.ApiResponse[List[schemas.PatientSummary]], response_model_exclude_none=True)
def search_patients(q: str = Query(..., min_length=1), limit: int = 10, db: Session = Depends(get_db)):
    """
    Patients whose name, NIK or phone contains the query.
    """
    try:
        patients = crud.search_patients(db, q, limit=limit)
    except crud.CRUDError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return schemas.ApiResponse(data=[crud.patient_to_schema(p) for p in patients])

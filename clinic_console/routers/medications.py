# clinic_console/routers/medications.py
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from typing import List, Optional

from .. import crud, schemas
from ..database import get_db

router = APIRouter(
    prefix="/medications",
    tags=["Medications"],
    responses={404: {"description": "Not found"}},
)


@router.get("/search", response_model=schemas.ApiResponse[schemas.MedicationSearchResult], response_model_exclude_none=True)
def search_medications(
    q: str = Query(..., min_length=1),
    category: Optional[str] = None,
    limit: int = 20,
    db: Session = Depends(get_db),
):
    """
    Active medications matching name, brand or code; prefix matches first.
    """
    try:
        medications = crud.search_medications(db, q, category=category, limit=limit)
    except crud.CRUDError as e:
        raise HTTPException(status_code=400, detail=str(e))
    entries = [crud.medication_to_schema(m) for m in medications]
    return schemas.ApiResponse(data=schemas.MedicationSearchResult(medications=entries, query=q.strip(), total=len(entries)))


@router.get("/categories", response_model=schemas.ApiResponse[List[schemas.MedicationCategory]])
def read_medication_categories(db: Session = Depends(get_db)):
    try:
        return schemas.ApiResponse(data=crud.get_medication_categories(db))
    except crud.CRUDError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/{medication_id}", response_model=schemas.ApiResponse[schemas.MedicationCatalogEntry], response_model_exclude_none=True)
def read_medication(medication_id: str, db: Session = Depends(get_db)):
    try:
        medication = crud.get_medication(db, medication_id)
    except crud.NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return schemas.ApiResponse(data=crud.medication_to_schema(medication))

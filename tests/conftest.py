# tests/conftest.py
import os

# Must be set before clinic_console.database creates its engine
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SEED_DEMO_DATA"] = "false"

import pytest
from fastapi.testclient import TestClient

from clinic_console import crud
from clinic_console.config import get_settings
from clinic_console.database import SessionLocal, create_tables, drop_tables
from clinic_console.enums import Gender
from clinic_console.main import app


@pytest.fixture(autouse=True)
def fresh_database():
    create_tables()
    yield
    drop_tables()


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def fast_settings():
    return get_settings().model_copy(update={
        "search_debounce_seconds": 0.05,
        "poll_interval_seconds": 0.05,
    })


@pytest.fixture
def clinic(db):
    """One doctor, two patients and a three-item catalog."""
    doctor = crud.create_doctor(db, name="dr. Siti Rahmawati", specialty="Dokter Umum")
    budi = crud.create_patient(db, "Budi Santoso", nik="3201234567899001", phone="081234567801", gender=Gender.MALE)
    ani = crud.create_patient(db, "Ani Wijaya", nik="3201234567899002", phone="081234567802", gender=Gender.FEMALE)
    paracetamol = crud.create_medication(
        db, id="M1", medication_code="MED-001", generic_name="Paracetamol", brand_name="Sanmol",
        category="Analgesik", dosage_form="Tablet", strength="500mg", unit="tablet", price_per_unit=500, stock=1000,
    )
    amoxicillin = crud.create_medication(
        db, id="M2", medication_code="MED-002", generic_name="Amoxicillin", brand_name="Amoxsan",
        category="Antibiotik", dosage_form="Kapsul", strength="500mg", unit="kapsul", price_per_unit=1500, stock=400,
    )
    crud.create_medication(
        db, id="M3", medication_code="MED-003", generic_name="Asam Mefenamat", brand_name="Ponstan",
        category="Analgesik", dosage_form="Tablet", strength="500mg", unit="tablet", price_per_unit=700, stock=50,
    )
    return {
        "doctor_id": doctor.id,
        "budi_id": budi.id,
        "ani_id": ani.id,
        "paracetamol_id": paracetamol.id,
        "amoxicillin_id": amoxicillin.id,
    }

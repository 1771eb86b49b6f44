# clinic_console/seed.py
import logging
from datetime import date

from sqlalchemy.exc import SQLAlchemyError

from . import crud, models
from .database import SessionLocal
from .enums import Gender

logger = logging.getLogger(__name__)

DEMO_DOCTOR = {"name": "dr. Siti Rahmawati", "specialty": "Dokter Umum", "license_number": "SIP-3201-0001"}

DEMO_PATIENTS = [
    {"full_name": "Budi Santoso", "nik": "3201234567899001", "phone": "081234567801", "gender": Gender.MALE, "date_of_birth": date(1985, 4, 12)},
    {"full_name": "Ani Wijaya", "nik": "3201234567899002", "phone": "081234567802", "gender": Gender.FEMALE, "date_of_birth": date(1992, 9, 3)},
    {"full_name": "Rudi Hartono", "nik": "3201234567899003", "phone": "081234567803", "gender": Gender.MALE, "date_of_birth": date(1970, 1, 27)},
]

DEMO_MEDICATIONS = [
    {"medication_code": "MED-001", "generic_name": "Paracetamol", "brand_name": "Sanmol", "category": "Analgesik",
     "dosage_form": "Tablet", "strength": "500mg", "unit": "tablet", "price_per_unit": 500, "stock": 1000,
     "dosage_instructions": "1 tablet diminum setelah makan"},
    {"medication_code": "MED-002", "generic_name": "Amoxicillin", "brand_name": "Amoxsan", "category": "Antibiotik",
     "dosage_form": "Kapsul", "strength": "500mg", "unit": "kapsul", "price_per_unit": 1500, "stock": 400,
     "dosage_instructions": "1 kapsul 3x sehari sampai habis"},
    {"medication_code": "MED-003", "generic_name": "Ibuprofen", "brand_name": "Proris", "category": "Analgesik",
     "dosage_form": "Tablet", "strength": "400mg", "unit": "tablet", "price_per_unit": 800, "stock": 300},
    {"medication_code": "MED-004", "generic_name": "Cetirizine", "brand_name": "Incidal", "category": "Antihistamin",
     "dosage_form": "Tablet", "strength": "10mg", "unit": "tablet", "price_per_unit": 1200, "stock": 150},
    {"medication_code": "MED-005", "generic_name": "Omeprazole", "brand_name": "Losec", "category": "Antasida",
     "dosage_form": "Kapsul", "strength": "20mg", "unit": "kapsul", "price_per_unit": 2500, "stock": 80},
    {"medication_code": "MED-006", "generic_name": "Diazepam", "category": "Psikotropika", "dosage_form": "Tablet",
     "strength": "5mg", "unit": "tablet", "price_per_unit": 3000, "stock": 20, "is_controlled": True},
]


def create_demo_data():
    """Doctor, patients and a small medication catalog, created only when the tables are empty."""
    db = SessionLocal()
    try:
        if db.query(models.Doctor).first() is None:
            crud.create_doctor(db, **DEMO_DOCTOR)
            logger.info(f"Demo doctor '{DEMO_DOCTOR['name']}' created.")
        if db.query(models.Patient).first() is None:
            for patient in DEMO_PATIENTS:
                crud.create_patient(db, **patient)
            logger.info(f"{len(DEMO_PATIENTS)} demo patients created.")
        if db.query(models.Medication).first() is None:
            for medication in DEMO_MEDICATIONS:
                crud.create_medication(db, **medication)
            logger.info(f"{len(DEMO_MEDICATIONS)} demo medications created.")
    except (crud.CRUDError, SQLAlchemyError) as e:
        logger.error(f"Error during demo data creation: {e}")
    finally:
        db.close()

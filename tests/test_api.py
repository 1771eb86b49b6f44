# tests/test_api.py
from datetime import timedelta

from clinic_console import models
from clinic_console.config import get_settings
from clinic_console.enums import AuditAction, QueueStatus
from clinic_console.schemas import utcnow
from clinic_console.seed import DEMO_MEDICATIONS, DEMO_PATIENTS, create_demo_data

API = "/api/v1"

COMPLETION = {
    "diagnosis": "Pasien demam tinggi",
    "treatment": "Berikan parasetamol dan istirahat",
}


def check_in(client, patient_id, **extra):
    response = client.post(f"{API}/queues/check-in", json={"patientId": patient_id, **extra})
    assert response.status_code == 201, response.text
    return response.json()["data"]


def advance(client, queue_id, *actions):
    for action in actions:
        response = client.patch(f"{API}/queues/{queue_id}/{action}")
        assert response.status_code == 200, response.text
    return response.json()["data"]


def test_check_in_assigns_positions_and_queue_numbers(client, clinic):
    first = check_in(client, clinic["budi_id"], doctorId=clinic["doctor_id"], isPriority=True)
    second = check_in(client, clinic["ani_id"], consultationType="GENERAL", severity="HIGH", symptoms=["demam", "batuk"])

    assert first["queueNumber"] == "A001" and first["position"] == 1
    assert second["queueNumber"] == "A002" and second["position"] == 2
    assert first["status"] == "WAITING"
    assert first["isPriority"] is True
    assert first["doctor"]["specialty"] == "Dokter Umum"
    assert second["consultation"] == {"type": "GENERAL", "severity": "HIGH", "symptoms": ["demam", "batuk"]}
    assert "calledTime" not in first


def test_check_in_unknown_patient_is_404(client, clinic):
    response = client.post(f"{API}/queues/check-in", json={"patientId": "nobody"})
    assert response.status_code == 404


def test_active_queues_with_statistics_and_estimated_wait(client, clinic):
    first = check_in(client, clinic["budi_id"])
    second = check_in(client, clinic["ani_id"])
    third = check_in(client, clinic["budi_id"])
    advance(client, first["id"], "call")
    client.patch(f"{API}/queues/{third['id']}/cancel", json={"reason": "Pasien pulang"})

    data = client.get(f"{API}/queues/active").json()["data"]
    assert [q["id"] for q in data["queues"]] == [first["id"], second["id"]]
    assert data["statistics"] == {"total": 3, "waiting": 1, "called": 1, "inProgress": 0, "completed": 0, "cancelled": 1}
    assert "estimatedWaitTime" not in data["queues"][0]
    assert data["queues"][1]["estimatedWaitTime"] == 15


def test_active_queues_for_another_day_is_empty(client, clinic):
    check_in(client, clinic["budi_id"])
    other_day = (utcnow() + timedelta(days=1)).date().isoformat()
    data = client.get(f"{API}/queues/active", params={"date": other_day}).json()["data"]
    assert data["queues"] == []
    assert data["statistics"]["total"] == 0


def test_illegal_transitions_are_409_and_leave_the_entry_alone(client, clinic):
    entry = check_in(client, clinic["budi_id"])
    response = client.patch(f"{API}/queues/{entry['id']}/start")
    assert response.status_code == 409

    advance(client, entry["id"], "call", "start")
    response = client.patch(f"{API}/queues/{entry['id']}/cancel", json={})
    assert response.status_code == 409
    assert client.get(f"{API}/queues/{entry['id']}").json()["data"]["status"] == "IN_PROGRESS"


def test_cancelled_entry_is_terminal(client, clinic):
    entry = check_in(client, clinic["budi_id"])
    cancelled = client.patch(f"{API}/queues/{entry['id']}/cancel").json()["data"]
    assert cancelled["status"] == "CANCELLED"
    assert cancelled["cancelReason"] == "Dibatalkan oleh admin"
    for action in ("call", "start", "complete", "cancel"):
        assert client.patch(f"{API}/queues/{entry['id']}/{action}").status_code == 409


def test_plain_complete_requires_a_submitted_completion(client, clinic):
    entry = check_in(client, clinic["budi_id"])
    advance(client, entry["id"], "call", "start")
    response = client.patch(f"{API}/queues/{entry['id']}/complete", json={})
    assert response.status_code == 409
    assert "completion" in response.json()["detail"]


def test_completion_creates_record_prescription_and_lab_orders(client, clinic, db):
    entry = check_in(client, clinic["budi_id"], doctorId=clinic["doctor_id"])
    advance(client, entry["id"], "call", "start")
    body = {
        "queueId": entry["id"],
        **COMPLETION,
        "vitalSigns": {"temperature": "38.9", "bloodPressure": "120/80"},
        "followUpDays": 7,
        "prescriptions": [
            {"medicationId": clinic["paracetamol_id"], "medicationName": "Paracetamol", "quantity": 10, "price": 500,
             "frequency": "3x sehari", "duration": "5 hari"},
            {"medicationName": "Racikan batuk", "quantity": 1, "price": 7500},
        ],
        "labTests": [
            {"testName": "Darah lengkap", "testType": "BLOOD", "category": "HEMATOLOGY", "isCritical": True},
            {"testName": "Urinalisis", "testType": "URINE"},
        ],
    }
    response = client.post(f"{API}/queues/{entry['id']}/completion", json=body)
    assert response.status_code == 200, response.text
    data = response.json()["data"]

    assert data["completedQueue"]["status"] == "COMPLETED"
    assert "completedTime" in data["completedQueue"]
    assert data["prescription"]["totalAmount"] == 12500
    assert data["prescription"]["code"].startswith("RX-")
    assert [lab["testName"] for lab in data["labResults"]] == ["Darah lengkap", "Urinalisis"]
    assert data["summary"] == {
        "medicalRecordCreated": True,
        "prescriptionCreated": True,
        "labResultsCreated": 2,
        "followUpScheduled": True,
        "totalMedications": 2,
        "totalLabTests": 2,
    }

    record = db.query(models.MedicalRecord).filter_by(queue_id=entry["id"]).one()
    assert record.vital_signs == {"temperature": "38.9", "blood_pressure": "120/80"}
    assert (record.follow_up_date - record.visit_date.date()).days == 7
    assert db.get(models.Medication, clinic["paracetamol_id"]).stock == 1000
    actions = {row.action for row in db.query(models.AuditLog).all()}
    assert AuditAction.CONSULTATION_COMPLETE in actions
    assert AuditAction.PRESCRIPTION_CREATE in actions


def test_completion_without_prescriptions_creates_none(client, clinic, db):
    entry = check_in(client, clinic["budi_id"])
    advance(client, entry["id"], "call", "start")
    response = client.post(f"{API}/queues/{entry['id']}/completion", json={"queueId": entry["id"], **COMPLETION})
    data = response.json()["data"]
    assert "prescription" not in data
    assert data["summary"]["prescriptionCreated"] is False
    assert db.query(models.Prescription).count() == 0


def test_second_completion_is_rejected(client, clinic, db):
    entry = check_in(client, clinic["budi_id"])
    advance(client, entry["id"], "call", "start")
    body = {"queueId": entry["id"], **COMPLETION}
    assert client.post(f"{API}/queues/{entry['id']}/completion", json=body).status_code == 200
    assert client.post(f"{API}/queues/{entry['id']}/completion", json=body).status_code == 409
    assert db.query(models.MedicalRecord).count() == 1


def test_completion_rules_are_enforced_by_the_service(client, clinic, db):
    entry = check_in(client, clinic["budi_id"])
    advance(client, entry["id"], "call", "start")
    url = f"{API}/queues/{entry['id']}/completion"

    short = client.post(url, json={"queueId": entry["id"], "diagnosis": "Demam", "treatment": COMPLETION["treatment"]})
    assert short.status_code == 422

    duplicate_line = {"medicationId": clinic["paracetamol_id"], "medicationName": "Paracetamol"}
    duplicate = client.post(url, json={"queueId": entry["id"], **COMPLETION, "prescriptions": [duplicate_line, duplicate_line]})
    assert duplicate.status_code == 422

    unknown = client.post(url, json={"queueId": entry["id"], **COMPLETION,
                                     "prescriptions": [{"medicationId": "nope", "medicationName": "Ghost"}]})
    assert unknown.status_code == 400
    assert db.query(models.MedicalRecord).count() == 0
    assert client.get(f"{API}/queues/{entry['id']}").json()["data"]["status"] == "IN_PROGRESS"


def test_completion_before_start_is_409(client, clinic):
    entry = check_in(client, clinic["budi_id"])
    advance(client, entry["id"], "call")
    response = client.post(f"{API}/queues/{entry['id']}/completion", json={"queueId": entry["id"], **COMPLETION})
    assert response.status_code == 409


def test_medication_search_ranks_prefix_matches_first(client, clinic):
    data = client.get(f"{API}/medications/search", params={"q": "am"}).json()["data"]
    assert [m["genericName"] for m in data["medications"]] == ["Amoxicillin", "Asam Mefenamat", "Paracetamol"]
    assert data["total"] == 3

    filtered = client.get(f"{API}/medications/search", params={"q": "am", "category": "Analgesik", "limit": 1}).json()["data"]
    assert [m["genericName"] for m in filtered["medications"]] == ["Asam Mefenamat"]

    by_brand = client.get(f"{API}/medications/search", params={"q": "sanmol"}).json()["data"]
    assert [m["id"] for m in by_brand["medications"]] == [clinic["paracetamol_id"]]


def test_medication_categories_and_lookup(client, clinic):
    categories = client.get(f"{API}/medications/categories").json()["data"]
    assert categories == [{"category": "Analgesik", "count": 2}, {"category": "Antibiotik", "count": 1}]
    medication = client.get(f"{API}/medications/{clinic['amoxicillin_id']}").json()["data"]
    assert medication["pricePerUnit"] == 1500
    assert client.get(f"{API}/medications/unknown").status_code == 404


def test_patient_search_matches_name_nik_and_phone(client, clinic):
    def names(q):
        return [p["fullName"] for p in client.get(f"{API}/patients/search", params={"q": q}).json()["data"]]

    assert names("budi") == ["Budi Santoso"]
    assert names("9002") == ["Ani Wijaya"]
    assert names("0812345678") == ["Ani Wijaya", "Budi Santoso"]


def create_prescription(client, clinic):
    response = client.post(f"{API}/prescriptions", json={
        "userId": clinic["budi_id"],
        "doctorId": clinic["doctor_id"],
        "medications": [{"medicationId": clinic["amoxicillin_id"], "medicationName": "Amoxicillin", "quantity": 15, "price": 1500}],
        "instructions": "Habiskan antibiotik",
    })
    assert response.status_code == 201, response.text
    return response.json()["data"]


def test_prescription_payment_and_dispense_gating(client, clinic):
    prescription = create_prescription(client, clinic)
    assert prescription["totalAmount"] == 22500
    assert prescription["isPaid"] is False and prescription["isExpired"] is False
    url = f"{API}/prescriptions/{prescription['id']}"

    assert client.put(f"{url}/dispense", json={}).status_code == 409

    paid = client.put(f"{url}/payment", json={"paymentStatus": "PAID", "paymentMethod": "CASH"}).json()["data"]
    assert paid["isPaid"] is True

    dispensed = client.put(f"{url}/dispense", json={"pharmacyNotes": "Diambil sendiri", "dispensedBy": "Apoteker Rina"}).json()["data"]
    assert dispensed["isDispensed"] is True
    assert dispensed["dispensedBy"] == "Apoteker Rina"

    assert client.put(f"{url}/dispense", json={}).status_code == 409
    assert client.put(f"{url}/payment", json={"paymentStatus": "FAILED"}).status_code == 409

    by_code = client.get(f"{API}/prescriptions/code/{prescription['prescriptionCode'].lower()}").json()["data"]
    assert by_code["id"] == prescription["id"]


def test_expired_prescription_cannot_be_paid_or_dispensed(client, clinic, db):
    prescription = create_prescription(client, clinic)
    row = db.get(models.Prescription, prescription["id"])
    row.expires_at = utcnow() - timedelta(minutes=1)
    db.commit()

    data = client.get(f"{API}/prescriptions/{prescription['id']}").json()["data"]
    assert data["isExpired"] is True
    assert client.put(f"{API}/prescriptions/{prescription['id']}/payment", json={"paymentStatus": "PAID"}).status_code == 409


def test_health(client):
    data = client.get(f"{API}/health").json()
    assert data["success"] is True
    assert data["data"]["database"] == "ok"


def test_unknown_queue_is_404(client):
    assert client.get(f"{API}/queues/missing").status_code == 404
    assert client.patch(f"{API}/queues/missing/call").status_code == 404


def test_queue_status_enum_values_are_wire_strings():
    assert [s.value for s in QueueStatus] == ["WAITING", "CALLED", "IN_PROGRESS", "COMPLETED", "CANCELLED"]


def test_demo_seed_runs_once(db):
    create_demo_data()
    create_demo_data()
    assert db.query(models.Doctor).count() == 1
    assert db.query(models.Patient).count() == len(DEMO_PATIENTS)
    assert db.query(models.Medication).count() == len(DEMO_MEDICATIONS)


def test_cancel_without_reason_uses_configured_default(client, clinic, monkeypatch):
    monkeypatch.setattr(get_settings(), "default_cancel_reason", "Klinik tutup lebih awal")
    entry = check_in(client, clinic["budi_id"])
    cancelled = client.patch(f"{API}/queues/{entry['id']}/cancel", json={"reason": "  "}).json()["data"]
    assert cancelled["cancelReason"] == "Klinik tutup lebih awal"


def test_skip_takes_a_no_show_off_the_queue(client, clinic, db):
    entry = check_in(client, clinic["budi_id"])
    advance(client, entry["id"], "call")
    response = client.patch(f"{API}/queues/{entry['id']}/skip")
    assert response.status_code == 200, response.text
    skipped = response.json()["data"]
    assert skipped["status"] == "CANCELLED"
    assert skipped["cancelReason"] == "Pasien tidak hadir saat dipanggil"
    assert client.patch(f"{API}/queues/{entry['id']}/skip").status_code == 409
    actions = [row.action for row in db.query(models.AuditLog).filter_by(resource_id=entry["id"]).all()]
    assert AuditAction.QUEUE_SKIP in actions
    assert AuditAction.QUEUE_CANCEL not in actions

    other = check_in(client, clinic["ani_id"])
    skipped = client.patch(f"{API}/queues/{other['id']}/skip", json={"reason": "Tidak datang setelah 3 panggilan"}).json()["data"]
    assert skipped["cancelReason"] == "Tidak datang setelah 3 panggilan"

    started = check_in(client, clinic["budi_id"])
    advance(client, started["id"], "call", "start")
    assert client.patch(f"{API}/queues/{started['id']}/skip").status_code == 409


def test_queue_history_filters_and_pages(client, clinic, db):
    today = utcnow().date()
    yesterday = today - timedelta(days=1)
    db.add(models.QueueEntry(
        id="OLD", queue_number="A001", queue_date=yesterday, status=QueueStatus.COMPLETED, position=1,
        check_in_time=utcnow() - timedelta(days=1), patient_id=clinic["ani_id"],
    ))
    db.commit()
    cancelled = check_in(client, clinic["budi_id"])
    completed = check_in(client, clinic["budi_id"])
    waiting = check_in(client, clinic["budi_id"])
    client.patch(f"{API}/queues/{cancelled['id']}/cancel")
    advance(client, completed["id"], "call", "start")
    response = client.post(f"{API}/queues/{completed['id']}/completion", json={"queueId": completed["id"], **COMPLETION})
    assert response.status_code == 200, response.text

    def history(**params):
        response = client.get(f"{API}/queues/history", params=params)
        assert response.status_code == 200, response.text
        return response.json()["data"]

    data = history()
    assert [q["id"] for q in data["queues"]] == [completed["id"], cancelled["id"], "OLD"]
    assert waiting["id"] not in [q["id"] for q in data["queues"]]
    assert data["pagination"]["totalCount"] == 3

    assert [q["id"] for q in history(status="COMPLETED")["queues"]] == [completed["id"], "OLD"]
    assert [q["id"] for q in history(startDate=today.isoformat())["queues"]] == [completed["id"], cancelled["id"]]
    assert [q["id"] for q in history(endDate=yesterday.isoformat())["queues"]] == ["OLD"]
    assert [q["id"] for q in history(search="ani")["queues"]] == ["OLD"]

    page = history(page=2, limit=2)
    assert [q["id"] for q in page["queues"]] == ["OLD"]
    assert page["pagination"] == {
        "currentPage": 2, "limit": 2, "totalCount": 3, "totalPages": 2, "hasNext": False, "hasPrev": True,
    }

    bad = client.get(f"{API}/queues/history", params={"startDate": today.isoformat(), "endDate": yesterday.isoformat()})
    assert bad.status_code == 400


def test_prescription_history_and_today(client, clinic, db):
    older = create_prescription(client, clinic)
    response = client.post(f"{API}/prescriptions", json={
        "userId": clinic["ani_id"],
        "medications": [{"medicationId": clinic["paracetamol_id"], "medicationName": "Paracetamol", "quantity": 10, "price": 500}],
    })
    assert response.status_code == 201, response.text
    newer = response.json()["data"]

    url = f"{API}/prescriptions/{older['id']}"
    client.put(f"{url}/payment", json={"paymentStatus": "PAID", "paymentMethod": "CASH"})
    client.put(f"{url}/dispense", json={"dispensedBy": "Apoteker Rina"})
    two_days_ago = utcnow() - timedelta(days=2)
    row = db.get(models.Prescription, older["id"])
    row.created_at = two_days_ago
    db.commit()

    def listing(path="", **params):
        response = client.get(f"{API}/prescriptions{path}", params=params)
        assert response.status_code == 200, response.text
        return [p["id"] for p in response.json()["data"]["prescriptions"]]

    assert listing() == [newer["id"], older["id"]]
    assert listing(patientId=clinic["ani_id"]) == [newer["id"]]
    assert listing(doctorId=clinic["doctor_id"]) == [older["id"]]
    assert listing(paymentStatus="PAID") == [older["id"]]
    assert listing(isDispensed="true") == [older["id"]]
    assert listing(isDispensed="false") == [newer["id"]]
    day = two_days_ago.date().isoformat()
    assert listing(startDate=day, endDate=day) == [older["id"]]
    assert listing("/today") == [newer["id"]]

    data = client.get(f"{API}/prescriptions", params={"limit": 1}).json()["data"]
    assert data["pagination"]["totalPages"] == 2
    assert data["pagination"]["hasNext"] is True

# tests/test_completion.py
import asyncio

import pytest

from clinic_console.console.completion import CloseOutcome, CompletionDialog, CompletionDraft, DialogPhase
from clinic_console.console.errors import (
    ConflictError, ConsoleError, DuplicateMedicationError, TransientServiceError, ValidationError,
)
from clinic_console.console.lines import LineList
from clinic_console.enums import QueueStatus
from clinic_console.validation import DEFAULT_DURATION, DEFAULT_FREQUENCY, DEFAULT_INSTRUCTIONS

from helpers import FakeClinicService, make_entry, make_medication

DIAGNOSIS = "Pasien demam tinggi"
TREATMENT = "Berikan parasetamol dan istirahat"


def in_progress_dialog(service=None, **kwargs):
    entry = make_entry("Q1", QueueStatus.IN_PROGRESS)
    service = service or FakeClinicService([entry])
    return service, CompletionDialog(service, entry, **kwargs)


def test_adding_the_same_medication_twice_keeps_one_line():
    lines = LineList().add_catalog(make_medication("M1"))
    with pytest.raises(DuplicateMedicationError):
        lines.add_catalog(make_medication("M1"))
    assert [line.medication_id for line in lines.lines] == ["M1"]


def test_catalog_line_defaults():
    line = LineList().add_catalog(make_medication("M1", price=500, dosage_instructions=None)).lines[0]
    assert line.medication_name == "Paracetamol"
    assert line.dosage == "500mg"
    assert line.quantity == 1
    assert line.price == 500
    assert line.frequency == DEFAULT_FREQUENCY
    assert line.duration == DEFAULT_DURATION
    assert line.instructions == DEFAULT_INSTRUCTIONS


def test_stock_warning_when_quantity_exceeds_stock_seen():
    lines = LineList().add_catalog(make_medication("M1", stock=5)).update(0, quantity=8)
    assert lines.stock_warnings() == ["Paracetamol: quantity 8 exceeds stock 5"]
    assert lines.remove(0).stock_warnings() == []


def test_line_updates_are_typed():
    lines = LineList().add_manual(medication_name="Racikan batuk", price=2000)
    with pytest.raises(ConsoleError):
        lines.update(0, quantity="banyak")
    with pytest.raises(ConsoleError):
        lines.update(0, shape="round")
    with pytest.raises(ConsoleError):
        lines.update(3, quantity=2)
    assert lines.update(0, quantity=3).estimated_total == 6000


def test_draft_build_raises_validation_error_with_issues():
    draft = CompletionDraft(queue_id="Q1").edit(diagnosis="Demam", treatment=TREATMENT)
    with pytest.raises(ValidationError) as excinfo:
        draft.build()
    assert excinfo.value.issues[0].field == "diagnosis"


def test_draft_rejects_unknown_fields():
    with pytest.raises(ConsoleError):
        CompletionDraft(queue_id="Q1").edit(prescriptions=[])


def test_draft_build_omits_empty_lists():
    completion = CompletionDraft(queue_id="Q1").edit(diagnosis=DIAGNOSIS, treatment=TREATMENT).build()
    assert completion.prescriptions is None
    assert completion.lab_tests is None
    assert completion.vital_signs is None


async def test_successful_submission():
    refreshed = []

    async def on_finished():
        refreshed.append(True)

    service, dialog = in_progress_dialog(on_finished=on_finished)
    dialog.edit(diagnosis=DIAGNOSIS, treatment=TREATMENT)
    dialog.add_medication(make_medication("M1"))
    dialog.update_line(0, quantity=10)
    dialog.add_lab_test(test_name="Darah lengkap", test_type="BLOOD", category="HEMATOLOGY")
    assert dialog.estimated_total == 5000
    assert dialog.total_label == "Rp 5.000"

    result = await dialog.submit()
    assert dialog.phase == DialogPhase.SUCCESS
    assert result.completed_queue.status == QueueStatus.COMPLETED
    assert result.prescription.total_amount == 5000
    assert refreshed == [True]
    assert len(service.submissions[0].lab_tests) == 1
    with pytest.raises(ConflictError):
        dialog.edit(notes="terlambat")


async def test_failed_submission_keeps_everything_entered():
    service, dialog = in_progress_dialog()
    dialog.edit(diagnosis=DIAGNOSIS, treatment=TREATMENT)
    dialog.add_medication(make_medication("M1"))
    service.fail("submit_consultation_completion", TransientServiceError("The clinic service did not answer in time"))

    with pytest.raises(TransientServiceError):
        await dialog.submit()
    assert dialog.phase == DialogPhase.FAILED
    assert dialog.error == "The clinic service did not answer in time"
    assert dialog.draft.diagnosis == DIAGNOSIS
    assert len(dialog.draft.lines.lines) == 1

    dialog.edit(notes="Kontrol bila demam berlanjut")
    assert dialog.phase == DialogPhase.EDITING
    await dialog.submit()
    assert dialog.phase == DialogPhase.SUCCESS


async def test_validation_failure_sends_nothing():
    service, dialog = in_progress_dialog()
    dialog.edit(diagnosis="Demam", treatment=TREATMENT)
    with pytest.raises(ValidationError):
        await dialog.submit()
    assert dialog.phase == DialogPhase.EDITING
    assert service.count("submit_consultation_completion") == 0


async def test_mutations_and_close_are_blocked_while_submitting():
    gate = asyncio.Event()
    service, dialog = in_progress_dialog()
    original = service.submit_consultation_completion

    async def slow_submit(queue_id, completion):
        await gate.wait()
        return await original(queue_id, completion)

    service.submit_consultation_completion = slow_submit
    dialog.edit(diagnosis=DIAGNOSIS, treatment=TREATMENT)
    pending = asyncio.ensure_future(dialog.submit())
    await asyncio.sleep(0)

    assert dialog.phase == DialogPhase.SUBMITTING
    with pytest.raises(ConflictError):
        dialog.add_medication(make_medication("M2"))
    with pytest.raises(ConflictError):
        await dialog.submit()
    assert dialog.close(confirmed=True) == CloseOutcome.BLOCKED

    gate.set()
    await pending
    assert dialog.close() == CloseOutcome.CLOSED


def test_closing_with_unsaved_content_needs_confirmation():
    _, dialog = in_progress_dialog()
    assert dialog.close() == CloseOutcome.CLOSED

    _, dialog = in_progress_dialog()
    dialog.set_vital("temperature", "38.2")
    assert dialog.close() == CloseOutcome.NEEDS_CONFIRMATION
    assert not dialog.disposed
    assert dialog.close(confirmed=True) == CloseOutcome.CLOSED
    assert dialog.disposed


async def test_late_response_after_dispose_is_ignored():
    gate = asyncio.Event()
    service, dialog = in_progress_dialog()
    original = service.submit_consultation_completion

    async def slow_submit(queue_id, completion):
        await gate.wait()
        return await original(queue_id, completion)

    service.submit_consultation_completion = slow_submit
    dialog.edit(diagnosis=DIAGNOSIS, treatment=TREATMENT)
    pending = asyncio.ensure_future(dialog.submit())
    await asyncio.sleep(0)
    dialog.dispose()
    gate.set()
    assert await pending is None
    assert dialog.result is None
    assert dialog.phase == DialogPhase.SUBMITTING


def test_dialog_only_opens_for_consultations_in_progress():
    entry = make_entry("Q1", QueueStatus.CALLED)
    with pytest.raises(ConflictError):
        CompletionDialog(FakeClinicService([entry]), entry)


def test_duplicate_add_sets_a_notice_and_changes_nothing():
    _, dialog = in_progress_dialog()
    dialog.add_medication(make_medication("M1"))
    before = dialog.draft
    with pytest.raises(DuplicateMedicationError):
        dialog.add_medication(make_medication("M1"))
    assert dialog.draft == before
    assert "already been added" in dialog.notice

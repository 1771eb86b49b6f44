# clinic_console/validation.py
"""Content rules for consultation completions and prescription line lists.

The console runs these before submitting; the service schemas run the same
functions on every request body, so both sides reject exactly the same input.
Each check returns issues in rule order; callers that only show one message
take the first.
"""
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

DIAGNOSIS_MIN_LENGTH = 10
DIAGNOSIS_MAX_LENGTH = 500
TREATMENT_MIN_LENGTH = 10
TREATMENT_MAX_LENGTH = 1000
NOTES_MAX_LENGTH = 500

FREQUENCY_OPTIONS = ("1x sehari", "2x sehari", "3x sehari", "4x sehari", "Sesuai kebutuhan")
DURATION_OPTIONS = ("3 hari", "5 hari", "7 hari", "10 hari", "14 hari", "30 hari")
FOLLOW_UP_OPTIONS = (3, 7, 14, 30)

DEFAULT_FREQUENCY = "3x sehari"
DEFAULT_DURATION = "7 hari"
DEFAULT_INSTRUCTIONS = "1 tablet diminum setelah makan"


@dataclass(frozen=True)
class ValidationIssue:
    field: str
    message: str

    def __str__(self):
        return self.message


def _length_issues(field: str, label: str, value: Optional[str], minimum: int, maximum: int) -> List[ValidationIssue]:
    text = (value or "").strip()
    if not text:
        return [ValidationIssue(field, f"{label} is required")]
    if len(text) < minimum:
        return [ValidationIssue(field, f"{label} must be at least {minimum} characters")]
    if len(text) > maximum:
        return [ValidationIssue(field, f"{label} must be at most {maximum} characters")]
    return []


def _name_issues(lines: Sequence) -> List[ValidationIssue]:
    return [
        ValidationIssue(f"prescriptions[{index}].medicationName", f"Medication name is required (line {index + 1})")
        for index, line in enumerate(lines)
        if not (line.medication_name or "").strip()
    ]


def _quantity_issues(lines: Sequence) -> List[ValidationIssue]:
    return [
        ValidationIssue(f"prescriptions[{index}].quantity", f"Quantity must be at least 1 (line {index + 1})")
        for index, line in enumerate(lines)
        if line.quantity is None or line.quantity < 1
    ]


def _duplicate_issues(lines: Sequence) -> List[ValidationIssue]:
    return [
        ValidationIssue("prescriptions", f"Medication {medication_id} is listed more than once")
        for medication_id in duplicate_medication_ids(lines)
    ]


def line_issues(lines: Sequence) -> List[ValidationIssue]:
    """Line rules (name, quantity, no repeated catalog medication) for a standalone prescription."""
    lines = list(lines)
    return _name_issues(lines) + _quantity_issues(lines) + _duplicate_issues(lines)


def lab_test_issues(lab_tests: Sequence) -> List[ValidationIssue]:
    return [
        ValidationIssue(f"labTests[{index}].testName", f"Lab test name is required (test {index + 1})")
        for index, test in enumerate(lab_tests)
        if not (test.test_name or "").strip()
    ]


def duplicate_medication_ids(lines: Iterable) -> List[str]:
    seen, duplicates = set(), []
    for line in lines:
        medication_id = line.medication_id
        if medication_id is None:
            continue
        if medication_id in seen and medication_id not in duplicates:
            duplicates.append(medication_id)
        seen.add(medication_id)
    return duplicates


def completion_issues(
    diagnosis: Optional[str],
    treatment: Optional[str],
    prescriptions: Sequence = (),
    lab_tests: Sequence = (),
    notes: Optional[str] = None,
    follow_up_days: Optional[int] = None,
) -> List[ValidationIssue]:
    """All rules for a consultation completion, in the order they are reported."""
    issues = []
    issues += _length_issues("diagnosis", "Diagnosis", diagnosis, DIAGNOSIS_MIN_LENGTH, DIAGNOSIS_MAX_LENGTH)
    issues += _length_issues("treatment", "Treatment", treatment, TREATMENT_MIN_LENGTH, TREATMENT_MAX_LENGTH)

    lines = list(prescriptions or ())
    issues += _name_issues(lines)
    issues += _quantity_issues(lines)
    issues += lab_test_issues(list(lab_tests or ()))
    issues += _duplicate_issues(lines)

    if notes and len(notes.strip()) > NOTES_MAX_LENGTH:
        issues.append(ValidationIssue("notes", f"Notes must be at most {NOTES_MAX_LENGTH} characters"))
    if follow_up_days is not None and follow_up_days not in FOLLOW_UP_OPTIONS:
        issues.append(ValidationIssue("followUpDays", "Follow-up must be 3, 7, 14 or 30 days"))
    return issues

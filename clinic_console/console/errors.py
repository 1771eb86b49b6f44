# clinic_console/console/errors.py
from typing import List, Optional, Sequence

from ..validation import ValidationIssue


class ConsoleError(Exception):
    """Base for every error the console shows to the operator."""

    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ConsoleError):
    """Local content check failed; nothing was sent."""

    def __init__(self, issues: Sequence[ValidationIssue], message: Optional[str] = None):
        self.issues: List[ValidationIssue] = list(issues)
        super().__init__(message or (self.issues[0].message if self.issues else "Invalid input"))


class ConflictError(ConsoleError):
    """Action refused because of the current state; no state was changed."""


class InvalidTransitionError(ConflictError):
    def __init__(self, message: str, status=None, action=None):
        super().__init__(message)
        self.status = status
        self.action = action


class DuplicateMedicationError(ConflictError):
    def __init__(self, medication_id: str, medication_name: Optional[str] = None):
        super().__init__(f"{medication_name or medication_id} has already been added")
        self.medication_id = medication_id


class PrescriptionActionError(ConflictError):
    pass


class StaleStateError(ConflictError):
    """The entry moved on (or disappeared) since the snapshot the action was based on."""

    retryable = True


class TransientServiceError(ConsoleError):
    """Network failure or 5xx; safe to retry from a refresh."""

    retryable = True

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

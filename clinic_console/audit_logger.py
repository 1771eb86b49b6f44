from typing import Optional
import logging
from sqlalchemy.orm import Session

from . import models
from .schemas import utcnow

logger = logging.getLogger(__name__)


class AuditLogger:
    """Writes audit events into the AuditLog table inside the caller's transaction.

    The row is only added to the session; it is committed (or rolled back)
    together with the change it describes.
    """

    def __init__(self, default_actor: str = 'System'):
        self.default_actor = default_actor

    def log_event(
        self,
        db: Session,
        action: models.AuditAction,
        category: str,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        details: Optional[str] = None,
        severity: str = 'INFO',
        username: Optional[str] = None,
    ) -> models.AuditLog:
        entry = models.AuditLog(
            action=action,
            category=category or 'GENERAL',
            severity=severity or 'INFO',
            resource_type=resource_type,
            resource_id=resource_id,
            details=details,
            username=username or self.default_actor,
            timestamp=utcnow(),
        )
        db.add(entry)
        logger.debug(f"Audit {action.value} {resource_type}:{resource_id} {details or ''}".rstrip())
        return entry

    def log_queue_transition(self, db: Session, entry: models.QueueEntry, action: models.AuditAction, details: Optional[str] = None):
        return self.log_event(
            db,
            action=action,
            category='QUEUE',
            resource_type='QueueEntry',
            resource_id=entry.id,
            details=details or f"Queue {entry.queue_number} is now {entry.status.value}",
        )

    def log_prescription(self, db: Session, prescription: models.Prescription, action: models.AuditAction, details: Optional[str] = None, username: Optional[str] = None):
        return self.log_event(
            db,
            action=action,
            category='PRESCRIPTIONS',
            resource_type='Prescription',
            resource_id=prescription.id,
            details=details or f"Prescription {prescription.prescription_code}",
            username=username,
        )


# Singleton instance for global import
audit_logger = AuditLogger()

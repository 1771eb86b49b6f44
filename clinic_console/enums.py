# clinic_console/enums.py
import enum


class QueueStatus(str, enum.Enum):
    WAITING = "WAITING"
    CALLED = "CALLED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

class QueueType(str, enum.Enum):
    WALK_IN = "WALK_IN"
    APPOINTMENT = "APPOINTMENT"

class Severity(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"

class ConsultationType(str, enum.Enum):
    AI = "AI"
    GENERAL = "GENERAL"
    CHAT_DOCTOR = "CHAT_DOCTOR"

class Gender(str, enum.Enum):
    MALE = "MALE"
    FEMALE = "FEMALE"

class LabTestType(str, enum.Enum):
    BLOOD = "BLOOD"
    URINE = "URINE"
    STOOL = "STOOL"
    IMAGING = "IMAGING"
    ECG = "ECG"
    OTHER = "OTHER"

class LabCategory(str, enum.Enum):
    GENERAL = "GENERAL"
    CHEMISTRY = "CHEMISTRY"
    HEMATOLOGY = "HEMATOLOGY"
    MICROBIOLOGY = "MICROBIOLOGY"
    IMMUNOLOGY = "IMMUNOLOGY"
    RADIOLOGY = "RADIOLOGY"
    CARDIOLOGY = "CARDIOLOGY"

class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"

class PaymentMethod(str, enum.Enum):
    CASH = "CASH"
    INSURANCE = "INSURANCE"
    CREDIT_CARD = "CREDIT_CARD"
    BANK_TRANSFER = "BANK_TRANSFER"

class AuditAction(str, enum.Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    QUEUE_CHECK_IN = "QUEUE_CHECK_IN"
    QUEUE_CALL = "QUEUE_CALL"
    QUEUE_START = "QUEUE_START"
    QUEUE_COMPLETE = "QUEUE_COMPLETE"
    QUEUE_CANCEL = "QUEUE_CANCEL"
    QUEUE_SKIP = "QUEUE_SKIP"
    CONSULTATION_COMPLETE = "CONSULTATION_COMPLETE"
    PRESCRIPTION_CREATE = "PRESCRIPTION_CREATE"
    PRESCRIPTION_PAYMENT = "PRESCRIPTION_PAYMENT"
    PRESCRIPTION_DISPENSE = "PRESCRIPTION_DISPENSE"

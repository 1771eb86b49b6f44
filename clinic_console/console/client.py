# clinic_console/console/client.py
"""Async HTTP client for the clinic service.

Unwraps the ``{success, message, data}`` envelope into schema objects and
turns every failure into one of the console errors.
"""
from datetime import date
from enum import Enum
from typing import Any, List, Optional

import httpx
import structlog

from ..config import get_settings
from ..schemas import (
    ActiveQueues, CancelRequest, CheckInRequest, CompleteRequest, CompletionResult,
    ConsultationCompletion, DispenseRequest, HealthStatus, MedicationCatalogEntry,
    MedicationCategory, MedicationSearchResult, PatientSummary, PaymentUpdate,
    Prescription, PrescriptionCreate, PrescriptionHistory, QueueEntry, QueueHistory, SkipRequest,
)
from ..validation import ValidationIssue
from .errors import ConflictError, ConsoleError, StaleStateError, TransientServiceError, ValidationError

logger = structlog.get_logger(__name__)


def _detail_message(body: Any, fallback: str) -> str:
    if isinstance(body, dict):
        detail = body.get("detail", body.get("message"))
        if isinstance(detail, str) and detail:
            return detail
        if isinstance(detail, list) and detail:
            return "; ".join(str(item.get("msg", item)) if isinstance(item, dict) else str(item) for item in detail)
    return fallback


def _query_params(**values) -> dict:
    """Drop unset filters and turn dates and enums into their wire strings."""
    params = {}
    for name, value in values.items():
        if value is None:
            continue
        if isinstance(value, date):
            value = value.isoformat()
        elif isinstance(value, Enum):
            value = value.value
        params[name] = value
    return params


def _detail_issues(body: Any, message: str) -> List[ValidationIssue]:
    detail = body.get("detail") if isinstance(body, dict) else None
    if isinstance(detail, list):
        issues = []
        for item in detail:
            if not isinstance(item, dict):
                continue
            location = [str(part) for part in item.get("loc", ()) if part != "body"]
            issues.append(ValidationIssue(".".join(location) or "request", str(item.get("msg", "Invalid value"))))
        if issues:
            return issues
    return [ValidationIssue("request", message)]


class ClinicServiceClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        settings=None,
    ):
        settings = settings or get_settings()
        self._http = httpx.AsyncClient(
            base_url=base_url or settings.api_base_url,
            timeout=timeout if timeout is not None else settings.api_timeout_seconds,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def aclose(self):
        await self._http.aclose()

    async def _request(self, method: str, path: str, *, params: dict = None, json: Any = None) -> Any:
        try:
            response = await self._http.request(method, path, params=params, json=json)
        except httpx.TimeoutException as e:
            logger.warning("service.timeout", method=method, path=path)
            raise TransientServiceError("The clinic service did not answer in time") from e
        except httpx.TransportError as e:
            logger.warning("service.unreachable", method=method, path=path, error=str(e))
            raise TransientServiceError("The clinic service is unreachable") from e

        status = response.status_code
        if status >= 500:
            logger.error("service.error", method=method, path=path, status=status)
            raise TransientServiceError(f"The clinic service failed ({status})", status_code=status)

        try:
            body = response.json()
        except ValueError as e:
            raise TransientServiceError("The clinic service sent an unreadable response", status_code=status) from e

        if status >= 400:
            message = _detail_message(body, f"Request failed ({status})")
            logger.info("service.rejected", method=method, path=path, status=status, detail=message)
            if status == 409:
                raise ConflictError(message)
            if status == 404:
                raise StaleStateError(message)
            if status in (400, 422):
                raise ValidationError(_detail_issues(body, message), message)
            raise ConsoleError(message)

        if isinstance(body, dict) and body.get("success") is False:
            raise ConflictError(body.get("message") or "The clinic service refused the request")
        return body.get("data") if isinstance(body, dict) else body

    # --- queues ---

    async def get_active_queues(self, queue_date: Optional[date] = None) -> ActiveQueues:
        params = {"date": queue_date.isoformat()} if queue_date else None
        return ActiveQueues.model_validate(await self._request("GET", "/queues/active", params=params))

    async def get_queue(self, queue_id: str) -> QueueEntry:
        return QueueEntry.model_validate(await self._request("GET", f"/queues/{queue_id}"))

    async def check_in(self, request: CheckInRequest) -> QueueEntry:
        return QueueEntry.model_validate(await self._request("POST", "/queues/check-in", json=request.to_wire()))

    async def call_patient(self, queue_id: str) -> QueueEntry:
        return QueueEntry.model_validate(await self._request("PATCH", f"/queues/{queue_id}/call"))

    async def start_consultation(self, queue_id: str) -> QueueEntry:
        return QueueEntry.model_validate(await self._request("PATCH", f"/queues/{queue_id}/start"))

    async def complete_consultation(self, queue_id: str, notes: Optional[str] = None) -> QueueEntry:
        body = CompleteRequest(notes=notes).to_wire()
        return QueueEntry.model_validate(await self._request("PATCH", f"/queues/{queue_id}/complete", json=body))

    async def cancel_queue(self, queue_id: str, reason: Optional[str] = None) -> QueueEntry:
        body = CancelRequest(reason=reason).to_wire()
        return QueueEntry.model_validate(await self._request("PATCH", f"/queues/{queue_id}/cancel", json=body))

    async def skip_patient(self, queue_id: str, reason: Optional[str] = None) -> QueueEntry:
        body = SkipRequest(reason=reason).to_wire()
        return QueueEntry.model_validate(await self._request("PATCH", f"/queues/{queue_id}/skip", json=body))

    async def get_queue_history(
        self,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        status=None,
        doctor_id: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> QueueHistory:
        params = _query_params(
            startDate=start_date, endDate=end_date, status=status, doctorId=doctor_id,
            search=search, page=page, limit=limit,
        )
        return QueueHistory.model_validate(await self._request("GET", "/queues/history", params=params))

    async def submit_consultation_completion(self, queue_id: str, completion: ConsultationCompletion) -> CompletionResult:
        data = await self._request("POST", f"/queues/{queue_id}/completion", json=completion.to_wire())
        return CompletionResult.model_validate(data)

    # --- catalog and patients ---

    async def search_medications(self, query: str, category: Optional[str] = None, limit: int = 20) -> MedicationSearchResult:
        params = {"q": query, "limit": limit}
        if category:
            params["category"] = category
        return MedicationSearchResult.model_validate(await self._request("GET", "/medications/search", params=params))

    async def get_medication_categories(self) -> List[MedicationCategory]:
        data = await self._request("GET", "/medications/categories")
        return [MedicationCategory.model_validate(item) for item in data or []]

    async def get_medication(self, medication_id: str) -> MedicationCatalogEntry:
        return MedicationCatalogEntry.model_validate(await self._request("GET", f"/medications/{medication_id}"))

    async def search_patients(self, query: str, limit: int = 10) -> List[PatientSummary]:
        data = await self._request("GET", "/patients/search", params={"q": query, "limit": limit})
        return [PatientSummary.model_validate(item) for item in data or []]

    # --- prescriptions ---

    async def create_prescription(self, request: PrescriptionCreate) -> Prescription:
        return Prescription.model_validate(await self._request("POST", "/prescriptions", json=request.to_wire()))

    async def get_prescription(self, prescription_id: str) -> Prescription:
        return Prescription.model_validate(await self._request("GET", f"/prescriptions/{prescription_id}"))

    async def get_prescription_by_code(self, code: str) -> Prescription:
        return Prescription.model_validate(await self._request("GET", f"/prescriptions/code/{code}"))

    async def list_prescriptions(
        self,
        patient_id: Optional[str] = None,
        doctor_id: Optional[str] = None,
        payment_status=None,
        is_dispensed: Optional[bool] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> PrescriptionHistory:
        params = _query_params(
            patientId=patient_id, doctorId=doctor_id, paymentStatus=payment_status, isDispensed=is_dispensed,
            startDate=start_date, endDate=end_date, page=page, limit=limit,
        )
        return PrescriptionHistory.model_validate(await self._request("GET", "/prescriptions", params=params))

    async def get_today_prescriptions(self, doctor_id: Optional[str] = None) -> PrescriptionHistory:
        data = await self._request("GET", "/prescriptions/today", params=_query_params(doctorId=doctor_id))
        return PrescriptionHistory.model_validate(data)

    async def update_prescription_payment(self, prescription_id: str, update: PaymentUpdate) -> Prescription:
        data = await self._request("PUT", f"/prescriptions/{prescription_id}/payment", json=update.to_wire())
        return Prescription.model_validate(data)

    async def dispense_prescription(self, prescription_id: str, request: DispenseRequest) -> Prescription:
        data = await self._request("PUT", f"/prescriptions/{prescription_id}/dispense", json=request.to_wire())
        return Prescription.model_validate(data)

    async def health(self) -> HealthStatus:
        return HealthStatus.model_validate(await self._request("GET", "/health"))

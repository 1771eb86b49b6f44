# clinic_console/console/patient_search.py
from typing import Optional, Tuple

import structlog
from pydantic import ConfigDict

from ..config import get_settings
from ..schemas import BaseSchema, PatientSummary
from .debounce import Debouncer
from .errors import ConsoleError

logger = structlog.get_logger(__name__)


class PatientSearchState(BaseSchema):
    model_config = ConfigDict(frozen=True)

    query: str = ""
    results: Tuple[PatientSummary, ...] = ()
    selected: Optional[PatientSummary] = None
    searching: bool = False
    warning: Optional[str] = None


class PatientSearch:
    def __init__(self, client, settings=None):
        self.client = client
        self.settings = settings or get_settings()
        self.state = PatientSearchState()
        self._debouncer = Debouncer(
            self._fetch,
            on_result=self._apply_result,
            on_error=self._apply_error,
            on_clear=self._clear_results,
            delay=self.settings.search_debounce_seconds,
            min_length=self.settings.search_min_length,
        )

    def set_query(self, query: str) -> bool:
        self.state = self.state.model_copy(update={"query": query})
        scheduled = self._debouncer.submit(query)
        if scheduled:
            self.state = self.state.model_copy(update={"searching": True})
        return scheduled

    async def _fetch(self, query: str):
        return await self.client.search_patients(query, limit=self.settings.patient_search_limit)

    def _apply_result(self, query: str, patients):
        self.state = self.state.model_copy(update={"results": tuple(patients), "searching": False, "warning": None})

    def _apply_error(self, query: str, error: Exception):
        message = error.message if isinstance(error, ConsoleError) else "Patient search is unavailable"
        logger.warning("patient.search.failed", query=query, error=str(error))
        self.state = self.state.model_copy(update={"results": (), "searching": False, "warning": message})

    def _clear_results(self):
        self.state = self.state.model_copy(update={"results": (), "searching": False})

    def select(self, patient_id: str) -> PatientSummary:
        patient = next((p for p in self.state.results if p.id == patient_id), None)
        if patient is None:
            raise ConsoleError("Patient is not in the current search results")
        self.state = self.state.model_copy(update={"selected": patient})
        return patient

    async def settle(self):
        await self._debouncer.drain()

    def close(self):
        self._debouncer.dispose()

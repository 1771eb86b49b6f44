# clinic_console/console/medication_search.py
from typing import Optional, Tuple

import structlog
from pydantic import ConfigDict

from ..config import get_settings
from ..schemas import BaseSchema, MedicationCatalogEntry, MedicationCategory, MedicationSearchResult
from .debounce import Debouncer
from .errors import ConsoleError

logger = structlog.get_logger(__name__)


class MedicationSearchState(BaseSchema):
    model_config = ConfigDict(frozen=True)

    query: str = ""
    category: Optional[str] = None
    results: Tuple[MedicationCatalogEntry, ...] = ()
    categories: Tuple[MedicationCategory, ...] = ()
    categories_loaded: bool = False
    searching: bool = False
    warning: Optional[str] = None


class MedicationSearch:
    """Catalog lookup behind a prescription dialog.

    Categories are fetched once per ``open``. Typing goes through a debouncer;
    service failures leave an empty result list and a warning, never an
    exception.
    """

    def __init__(self, client, settings=None):
        self.client = client
        self.settings = settings or get_settings()
        self.state = MedicationSearchState()
        self._debouncer = None

    async def open(self):
        if self._debouncer is not None:
            self._debouncer.dispose()
        debouncer = Debouncer(
            self._fetch,
            on_result=self._apply_result,
            on_error=self._apply_error,
            on_clear=self._clear_results,
            delay=self.settings.search_debounce_seconds,
            min_length=self.settings.search_min_length,
        )
        self._debouncer = debouncer
        self.state = MedicationSearchState()
        try:
            categories = await self.client.get_medication_categories()
        except ConsoleError as e:
            if self._debouncer is not debouncer:
                return
            logger.warning("medication.categories.failed", error=e.message)
            self.state = self.state.model_copy(update={"categories_loaded": True, "warning": e.message})
            return
        # closed or reopened while the categories were loading
        if self._debouncer is not debouncer:
            return
        self.state = self.state.model_copy(update={"categories": tuple(categories), "categories_loaded": True})

    def set_query(self, query: str) -> bool:
        self._require_open()
        self.state = self.state.model_copy(update={"query": query})
        return self._submit()

    def set_category(self, category: Optional[str]) -> bool:
        self._require_open()
        self.state = self.state.model_copy(update={"category": category or None})
        return self._submit()

    def _submit(self) -> bool:
        scheduled = self._debouncer.submit(self.state.query)
        if scheduled:
            self.state = self.state.model_copy(update={"searching": True})
        return scheduled

    async def _fetch(self, query: str) -> MedicationSearchResult:
        return await self.client.search_medications(
            query, category=self.state.category, limit=self.settings.medication_search_limit
        )

    def _apply_result(self, query: str, result: MedicationSearchResult):
        self.state = self.state.model_copy(update={
            "results": tuple(result.medications[: self.settings.medication_search_limit]),
            "searching": False,
            "warning": None,
        })

    def _apply_error(self, query: str, error: Exception):
        message = error.message if isinstance(error, ConsoleError) else "Medication search is unavailable"
        logger.warning("medication.search.failed", query=query, error=str(error))
        self.state = self.state.model_copy(update={"results": (), "searching": False, "warning": message})

    def _clear_results(self):
        self.state = self.state.model_copy(update={"results": (), "searching": False})

    def _require_open(self):
        if self._debouncer is None:
            raise ConsoleError("Medication search is not open")

    async def settle(self):
        """Wait for any scheduled or in-flight search to land."""
        if self._debouncer is not None:
            await self._debouncer.drain()

    def close(self):
        if self._debouncer is not None:
            self._debouncer.dispose()
            self._debouncer = None

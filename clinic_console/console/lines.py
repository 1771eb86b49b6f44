# clinic_console/console/lines.py
"""Prescription line list shared by the completion dialog and the prescription composer."""
from typing import Dict, List, Tuple

from pydantic import ConfigDict, Field

from ..schemas import BaseSchema, MedicationCatalogEntry, PrescriptionLine, estimated_total
from ..validation import DEFAULT_DURATION, DEFAULT_FREQUENCY, DEFAULT_INSTRUCTIONS, line_issues
from .errors import ConsoleError, DuplicateMedicationError


def line_from_catalog(medication: MedicationCatalogEntry) -> PrescriptionLine:
    return PrescriptionLine(
        medication_id=medication.id,
        medication_name=medication.generic_name,
        dosage=medication.strength,
        frequency=DEFAULT_FREQUENCY,
        duration=DEFAULT_DURATION,
        quantity=1,
        price=medication.price_per_unit,
        instructions=medication.dosage_instructions or DEFAULT_INSTRUCTIONS,
    )


class LineList(BaseSchema):
    """Immutable ordered list of prescription lines.

    Every operation returns a new list. ``stock_seen`` remembers the catalog
    stock of each medication at the time it was added, for advisory warnings.
    """
    model_config = ConfigDict(frozen=True)

    lines: Tuple[PrescriptionLine, ...] = ()
    stock_seen: Dict[str, int] = Field(default_factory=dict)

    def contains(self, medication_id: str) -> bool:
        return any(line.medication_id == medication_id for line in self.lines)

    def add_catalog(self, medication: MedicationCatalogEntry) -> "LineList":
        if self.contains(medication.id):
            raise DuplicateMedicationError(medication.id, medication.generic_name)
        return self.model_copy(update={
            "lines": self.lines + (line_from_catalog(medication),),
            "stock_seen": {**self.stock_seen, medication.id: medication.stock},
        })

    def add_manual(self, **fields) -> "LineList":
        """Line typed in by hand, without a catalog reference."""
        fields.pop("medication_id", None)
        try:
            line = PrescriptionLine(instructions=DEFAULT_INSTRUCTIONS).with_changes(**fields)
        except ValueError as e:
            raise ConsoleError(f"Invalid prescription line: {e}") from e
        return self.model_copy(update={"lines": self.lines + (line,)})

    def update(self, index: int, **changes) -> "LineList":
        line = self._line(index)
        if "medication_id" in changes and changes["medication_id"] != line.medication_id:
            raise ConsoleError("The catalog medication of a line cannot be changed; remove it and add another")
        try:
            updated = line.with_changes(**changes)
        except ValueError as e:
            raise ConsoleError(f"Invalid value for line {index + 1}: {e}") from e
        lines = list(self.lines)
        lines[index] = updated
        return self.model_copy(update={"lines": tuple(lines)})

    def remove(self, index: int) -> "LineList":
        removed = self._line(index)
        lines = self.lines[:index] + self.lines[index + 1:]
        stock_seen = dict(self.stock_seen)
        if removed.medication_id is not None:
            stock_seen.pop(removed.medication_id, None)
        return self.model_copy(update={"lines": lines, "stock_seen": stock_seen})

    def _line(self, index: int) -> PrescriptionLine:
        if not 0 <= index < len(self.lines):
            raise ConsoleError(f"There is no prescription line {index + 1}")
        return self.lines[index]

    @property
    def estimated_total(self) -> int:
        return estimated_total(self.lines)

    def issues(self):
        return line_issues(self.lines)

    def stock_warnings(self) -> List[str]:
        warnings = []
        for line in self.lines:
            stock = self.stock_seen.get(line.medication_id) if line.medication_id else None
            if stock is not None and line.quantity > stock:
                warnings.append(f"{line.medication_name}: quantity {line.quantity} exceeds stock {stock}")
        return warnings

    def has_content(self) -> bool:
        return bool(self.lines)

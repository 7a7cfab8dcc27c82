"""
Capacity modes. An offering either pools a fixed number of covers per slot (Simple) or
derives covers from its active tables (TableBased). The ledger and the materializer
consume the variant through the same two methods.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, Union

from app.core.constants import CAPACITY_MODE_TABLE_BASED

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from app.models.offering import Offering
    from app.models.schedule_definition import ScheduleDefinition


class CapacityModeBase(Protocol):
    def slot_capacity(self, definition: "ScheduleDefinition | None") -> int:
        ...

    def accepts_party(self, party_size: int) -> bool:
        ...


@dataclass(frozen=True)
class Simple:
    """Pooled covers: each slot gets the definition's max_per_slot."""

    max_per_slot: int | None = None

    def slot_capacity(self, definition: "ScheduleDefinition | None") -> int:
        if definition is not None and definition.max_per_slot is not None:
            return max(0, int(definition.max_per_slot))
        return max(0, int(self.max_per_slot or 0))

    def accepts_party(self, party_size: int) -> bool:
        return party_size >= 1


@dataclass(frozen=True)
class TableBased:
    """Covers are the sum of active table seats; a party must fit at one table."""

    tables: tuple[int, ...]  # seat count per active table

    def slot_capacity(self, definition: "ScheduleDefinition | None") -> int:
        return sum(self.tables)

    def accepts_party(self, party_size: int) -> bool:
        return party_size >= 1 and any(seats >= party_size for seats in self.tables)


CapacityMode = Union[Simple, TableBased]


def capacity_mode_for(db: "Session", offering: "Offering") -> CapacityMode:
    """Build the capacity variant for an offering from its stored mode (and tables)."""
    if offering.capacity_mode == CAPACITY_MODE_TABLE_BASED:
        from app.models.dining_table import DiningTable

        seats = [
            t.capacity
            for t in db.query(DiningTable)
            .filter(DiningTable.offering_id == offering.id, DiningTable.is_active.is_(True))
            .order_by(DiningTable.id.asc())
            .all()
        ]
        return TableBased(tables=tuple(seats))
    return Simple()

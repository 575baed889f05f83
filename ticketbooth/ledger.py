"""
Availability bookkeeping.

Everything here is a pure function over immutable snapshots so it can be
recomputed on every read:

    available = clamp(total - sold - held, 0, total)

sold = quantities of completed purchases, held = unexpired seat holds.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional


@dataclass(frozen=True)
class TypeSnapshot:
    id: str
    name: str
    price: int
    total: int
    description: str = ""
    event_date: Optional[str] = None
    event_time: Optional[str] = None
    location: Optional[str] = None


@dataclass(frozen=True)
class SoldLine:
    ticket_type_id: str
    quantity: int


@dataclass(frozen=True)
class TypeAvailability:
    type: TypeSnapshot
    sold: int
    held: int
    available: int

    @property
    def id(self) -> str:
        return self.type.id

    @property
    def name(self) -> str:
        return self.type.name

    @property
    def price(self) -> int:
        return self.type.price

    @property
    def total(self) -> int:
        return self.type.total

    @property
    def sold_out(self) -> bool:
        return self.available <= 0

    def as_dict(self) -> Dict[str, object]:
        t = self.type
        return {
            "id": t.id,
            "name": t.name,
            "price": t.price,
            "description": t.description,
            "event_date": t.event_date,
            "event_time": t.event_time,
            "location": t.location,
            "total": t.total,
            "sold": self.sold,
            "held": self.held,
            "available": self.available,
            "sold_out": self.sold_out,
        }


def sold_counts(lines: Iterable[SoldLine]) -> Dict[str, int]:
    out: Dict[str, int] = {}
    for line in lines:
        out[line.ticket_type_id] = (
            out.get(line.ticket_type_id, 0) + int(line.quantity)
        )
    return out


def available_for(total: int, sold: int, held: int = 0) -> int:
    return max(0, min(total, total - sold - held))


def compute_availability(
    types: Iterable[TypeSnapshot],
    sold_lines: Iterable[SoldLine],
    held: Optional[Mapping[str, int]] = None,
) -> List[TypeAvailability]:
    """One TypeAvailability per type, in the order the types were given."""
    sold = sold_counts(sold_lines)
    held = held or {}
    out: List[TypeAvailability] = []
    for t in types:
        s = sold.get(t.id, 0)
        h = int(held.get(t.id, 0))
        out.append(TypeAvailability(
            type=t, sold=s, held=h, available=available_for(t.total, s, h),
        ))
    return out


def would_oversell(
    total: int, sold: int, quantity: int
) -> bool:
    return sold + quantity > total

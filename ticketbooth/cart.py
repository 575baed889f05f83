from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping

from .errors import InsufficientAvailability, NotFound
from .ledger import TypeAvailability


@dataclass(frozen=True)
class CartItem:
    ticket_type_id: str
    name: str
    unit_price: int
    quantity: int

    @property
    def subtotal(self) -> int:
        return self.unit_price * self.quantity

    def as_dict(self) -> dict:
        return {
            "ticket_type_id": self.ticket_type_id,
            "name": self.name,
            "unit_price": self.unit_price,
            "quantity": self.quantity,
            "subtotal": self.subtotal,
        }


class Cart:
    """
    Pending order: ticket type id -> quantity, bounded by the availability
    snapshot each type carried when it was added. Nothing here talks to the
    database; the oversell race between buyers is settled at completion.
    """

    def __init__(self) -> None:
        self._types: Dict[str, TypeAvailability] = {}
        self._qty: Dict[str, int] = {}

    def quantity(self, type_id: str) -> int:
        return self._qty.get(type_id, 0)

    def add_one(self, t: TypeAvailability) -> int:
        current = self._qty.get(t.id, 0)
        if current >= t.available:
            raise InsufficientAvailability(
                f"not enough '{t.name}' tickets available",
                details={"ticket_type_id": t.id, "available": t.available},
            )
        self._types[t.id] = t
        self._qty[t.id] = current + 1
        return current + 1

    def remove_one(self, type_id: str) -> int:
        current = self._qty.get(type_id, 0)
        if current <= 1:
            self._qty.pop(type_id, None)
            self._types.pop(type_id, None)
            return 0
        self._qty[type_id] = current - 1
        return current - 1

    def items(self) -> List[CartItem]:
        return [
            CartItem(
                ticket_type_id=tid,
                name=self._types[tid].name,
                unit_price=self._types[tid].price,
                quantity=q,
            )
            for tid, q in self._qty.items()
        ]

    def total(self) -> int:
        return sum(i.subtotal for i in self.items())

    def count(self) -> int:
        return sum(self._qty.values())

    def is_empty(self) -> bool:
        return not self._qty

    def quantities(self) -> Dict[str, int]:
        return dict(self._qty)

    @classmethod
    def from_quantities(
        cls,
        types: Iterable[TypeAvailability],
        wanted: Mapping[str, int],
    ) -> "Cart":
        by_id = {t.id: t for t in types}
        cart = cls()
        for tid, qty in wanted.items():
            t = by_id.get(tid)
            if t is None:
                raise NotFound(f"unknown ticket type {tid}")
            for _ in range(int(qty)):
                cart.add_one(t)
        return cart

from sqlalchemy.orm import declarative_base
from sqlalchemy import (
    JSON,
    Column,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)


Base = declarative_base()

# purchase lifecycle
P_PENDING = "pending"
P_COMPLETED = "completed"
P_FAILED = "failed"

# ticket lifecycle
T_VALID = "valid"
T_USED = "used"


# ----------------------------
# ORM models
# ----------------------------
class TicketType(Base):
    __tablename__ = "ticket_types"
    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    price = Column(Integer, nullable=False)  # minor units (kobo / cents)
    description = Column(Text, nullable=False, default="")
    event_date = Column(String, nullable=True)
    event_time = Column(String, nullable=True)
    location = Column(String, nullable=True)
    total = Column(Integer, nullable=False)
    created_at = Column(Float, nullable=False)


class Purchase(Base):
    __tablename__ = "purchases"
    id = Column(String, primary_key=True)
    reference = Column(String, nullable=False, unique=True)
    # {"name", "email", "phone"}
    customer_info = Column(JSON, nullable=False)
    total_amount = Column(Integer, nullable=False)
    currency = Column(String, nullable=False)

    # pending | completed | failed
    status = Column(String, nullable=False, default=P_PENDING)
    created_at = Column(Float, nullable=False)
    completed_at = Column(Float, nullable=True)
    used_entries = Column(Integer, nullable=False, default=0)

    # whole-purchase code, kept so old printouts still scan
    qr_code = Column(String, nullable=True, unique=True)


class PurchaseItem(Base):
    """Cart line as it was at checkout time."""
    __tablename__ = "purchase_items"
    id = Column(Integer, primary_key=True, autoincrement=True)
    purchase_id = Column(
        String, ForeignKey("purchases.id", ondelete="CASCADE"), nullable=False
    )
    position = Column(Integer, nullable=False)
    # no FK: a type may only be deleted while it has no completed sales, and
    # pending/failed history must survive that
    ticket_type_id = Column(String, nullable=False)
    name = Column(String, nullable=False)
    unit_price = Column(Integer, nullable=False)
    quantity = Column(Integer, nullable=False)


Index("purchase_items_type_idx", PurchaseItem.ticket_type_id)


class Ticket(Base):
    __tablename__ = "tickets"
    id = Column(String, primary_key=True)
    ticket_number = Column(String, nullable=False, unique=True)
    qr_code = Column(Text, nullable=False)
    purchase_id = Column(
        String, ForeignKey("purchases.id"), nullable=False, index=True
    )
    ticket_type_id = Column(String, nullable=False)
    type_name = Column(String, nullable=False)
    unit_price = Column(Integer, nullable=False)
    seq = Column(Integer, nullable=False)  # issuance order within purchase

    # valid | used
    status = Column(String, nullable=False, default=T_VALID)
    created_at = Column(Float, nullable=False)
    used_at = Column(Float, nullable=True)


class Entry(Base):
    __tablename__ = "entries"
    id = Column(Integer, primary_key=True, autoincrement=True)
    ticket_id = Column(
        String, ForeignKey("tickets.id"), nullable=False, unique=True
    )
    purchase_id = Column(String, nullable=False)
    scanned_at = Column(Float, nullable=False)


class EventDetails(Base):
    __tablename__ = "event_details"
    id = Column(Integer, primary_key=True, autoincrement=True)
    event_name = Column(String, nullable=False)
    event_date = Column(String, nullable=False)
    venue = Column(String, nullable=False)
    created_at = Column(Float, nullable=False)


class Setting(Base):
    __tablename__ = "settings"
    key = Column(String, primary_key=True)
    value = Column(Text, nullable=False)


class SeatHold(Base):
    __tablename__ = "seat_holds"
    reference = Column(String, primary_key=True)
    ticket_type_id = Column(String, primary_key=True)
    qty = Column(Integer, nullable=False)
    expires_at = Column(Float, nullable=False)


class FulfillmentGate(Base):
    # one row per purchase whose issuance has been claimed
    __tablename__ = "fulfillment_gates"
    purchase_id = Column(String, primary_key=True)
    created_at = Column(Float, nullable=False)

"""Order models — the in-memory records the order service keeps.

Learn: Plain dataclasses, not ORM rows. Orders live in process memory for
the lifetime of the server; the real-time layer only ever sees them as
DomainEvents, never as these objects.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

ORDER_STATUSES = ("pending", "processing", "completed", "cancelled")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_order_id() -> str:
    return str(uuid.uuid4())


@dataclass
class OrderItem:
    name: str
    quantity: int
    price: float
    id: str = field(default_factory=lambda: str(uuid.uuid4()))


@dataclass
class Order:
    """One customer order.

    Key fields:
    - order_id: UUID string; its first dash-separated chunk is the short id
      shown in notifications
    - status: pending, processing, completed, cancelled
    - order_date: creation time (UTC)
    """

    customer_name: str
    amount: float
    order_id: str = field(default_factory=new_order_id)
    customer_email: Optional[str] = None
    status: str = "pending"
    order_date: datetime = field(default_factory=utcnow)
    items: list[OrderItem] = field(default_factory=list)

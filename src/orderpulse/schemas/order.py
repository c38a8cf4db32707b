"""Pydantic schemas for the order REST API.

Learn: Separate schemas for create/update/read keeps the API clean.
- OrderCreate: what you POST to create an order
- OrderPatch: what you PATCH to modify an order (all optional)
- OrderRead: what the API returns
- BulkStatusUpdate: one status applied to many orders (one bulk event)
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

STATUS_PATTERN = r"^(pending|processing|completed|cancelled)$"


class OrderItemSchema(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0)


class OrderItemRead(OrderItemSchema):
    id: str

    model_config = {"from_attributes": True}


class OrderCreate(BaseModel):
    customer_name: str = Field(..., min_length=1, max_length=200)
    amount: float = Field(..., gt=0)
    customer_email: Optional[str] = Field(None, max_length=320)
    items: list[OrderItemSchema] = Field(default_factory=list)


class OrderPatch(BaseModel):
    """Partial update — only non-None fields are applied."""
    customer_name: Optional[str] = Field(None, min_length=1, max_length=200)
    customer_email: Optional[str] = Field(None, max_length=320)
    amount: Optional[float] = Field(None, gt=0)
    status: Optional[str] = Field(None, pattern=STATUS_PATTERN)


class BulkStatusUpdate(BaseModel):
    order_ids: list[str] = Field(..., min_length=1)
    status: str = Field(..., pattern=STATUS_PATTERN)


class OrderRead(BaseModel):
    order_id: str
    customer_name: str
    customer_email: Optional[str]
    amount: float
    status: str
    order_date: datetime
    items: list[OrderItemRead]

    model_config = {"from_attributes": True}


class OrderPage(BaseModel):
    orders: list[OrderRead]
    next_offset: Optional[int] = None


class EmergencyBroadcast(BaseModel):
    message: str = Field(..., min_length=1, max_length=1000)
    kind: str = Field("alert", pattern=r"^(maintenance|alert|update)$")

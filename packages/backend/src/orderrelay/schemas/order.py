"""Pydantic schemas for orders.

Learn: Separate schemas for create/update/read keeps the API clean.
- OrderCreate: what you POST to create an order
- OrderStatusUpdate: what you PUT to change an order's status
- OrderRead: what the API returns
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class OrderCreate(BaseModel):
    customer_name: str = Field(..., min_length=1, max_length=200)
    product_name: str = Field(..., min_length=1, max_length=200)
    status: str = Field(default="pending", min_length=1, max_length=50)


class OrderStatusUpdate(BaseModel):
    status: str = Field(..., min_length=1, max_length=50)


class OrderRead(BaseModel):
    id: int
    customer_name: str
    product_name: str
    status: str
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    model_config = {"from_attributes": True}


class TriggerInfo(BaseModel):
    trigger_name: str
    event_manipulation: str
    action_timing: str
    action_statement: str


class TriggerReport(BaseModel):
    """GET /verify-triggers — is the change notification wired up?"""
    triggers: list[TriggerInfo]
    function_exists: bool
    function_source: Optional[str]

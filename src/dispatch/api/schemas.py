"""Pydantic API schemas for the Dispatch domain.

These are the external API contracts — separate from domain commands.
"""

from datetime import datetime

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------
class AssignDriverRequest(BaseModel):
    driver_id: str | None = None


class CancelBatchRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=500)


class LineItemRequest(BaseModel):
    product_id: str
    quantity: int = Field(ge=1)


class SeedOrderRequest(BaseModel):
    order_id: str
    approval_state: str = "approved"
    zone: str | None = None
    weight: float | None = Field(default=None, gt=0)
    address: dict = Field(default_factory=dict)
    line_items: list[LineItemRequest] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------
class BatchIdResponse(BaseModel):
    batch_id: str | None


class StatusResponse(BaseModel):
    status: str


class DriverResponse(BaseModel):
    batch_id: str
    driver_id: str


class CancelBatchResponse(BaseModel):
    batch_id: str
    released_orders: int


class BatchResponse(BaseModel):
    batch_id: str
    zone: str
    status: str
    total_weight: float
    min_threshold: float
    max_capacity: float
    remaining_capacity: float
    driver_id: str | None = None
    cancellation_reason: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class SweepResponse(BaseModel):
    assigned: dict[str, str]
    failed: dict[str, str]


class ConsolidationResponse(BaseModel):
    corrected: list[str]
    split: dict[str, list[str]]
    merged: list[list[str]]
    deleted: list[str]
    detached: list[str]
    skipped: list[str]
    deferred_zones: list[str]


class ReassignedResponse(BaseModel):
    reassigned: dict[str, str]


class DispatchedResponse(BaseModel):
    dispatched: dict[str, str]


class ViolationResponse(BaseModel):
    kind: str
    detail: str
    batch_id: str | None = None
    zone: str | None = None
    order_id: str | None = None


class AuditResponse(BaseModel):
    healthy: bool
    violations: list[ViolationResponse]

"""FastAPI routes for the Dispatch domain."""

import os
from dataclasses import asdict

from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from dispatch.api.schemas import (
    AssignDriverRequest,
    AuditResponse,
    BatchIdResponse,
    BatchResponse,
    CancelBatchRequest,
    CancelBatchResponse,
    ConsolidationResponse,
    DispatchedResponse,
    DriverResponse,
    ReassignedResponse,
    SeedOrderRequest,
    StatusResponse,
    SweepResponse,
    ViolationResponse,
)
from dispatch.batch.assignment import AssignOrder, SweepUnassignedOrders
from dispatch.batch.batch import Batch
from dispatch.batch.consolidation import ReresolveUnknownZones, RunConsolidation, WithdrawOrder
from dispatch.batch.lifecycle import (
    AssignDriver,
    CancelBatch,
    DispatchReadyBatches,
    RecordOrderDelivered,
    StartDelivery,
)
from dispatch.collaborators.fakes import FakeOrderStore
from dispatch.errors import DispatchError
from dispatch.services import get_services

# Seconds a client should wait before retrying after contention
RETRY_AFTER_SECONDS = 2


def _batch_response(batch) -> BatchResponse:
    return BatchResponse(
        batch_id=str(batch.id),
        zone=batch.zone,
        status=batch.status,
        total_weight=batch.total_weight,
        min_threshold=batch.min_threshold,
        max_capacity=batch.max_capacity,
        remaining_capacity=batch.remaining_capacity,
        driver_id=batch.driver_id,
        cancellation_reason=batch.cancellation_reason,
        created_at=batch.created_at,
        updated_at=batch.updated_at,
    )


# ---------------------------------------------------------------------------
# Order Router
# ---------------------------------------------------------------------------
order_router = APIRouter(prefix="/dispatch/orders", tags=["dispatch"])


@order_router.post("/{order_id}/assign", response_model=BatchIdResponse)
async def assign_order(order_id: str) -> BatchIdResponse:
    """Assign an approved order to a batch of its zone."""
    batch_id = current_domain.process(AssignOrder(order_id=order_id), asynchronous=False)
    return BatchIdResponse(batch_id=batch_id)


@order_router.post("/{order_id}/delivered", response_model=StatusResponse)
async def record_order_delivered(order_id: str) -> StatusResponse:
    """Record a delivered order; returns the resulting batch status."""
    status = current_domain.process(RecordOrderDelivered(order_id=order_id), asynchronous=False)
    return StatusResponse(status=status)


@order_router.post("/{order_id}/withdraw", response_model=BatchIdResponse)
async def withdraw_order(order_id: str) -> BatchIdResponse:
    """Remove a rejected order from its batch."""
    batch_id = current_domain.process(WithdrawOrder(order_id=order_id), asynchronous=False)
    return BatchIdResponse(batch_id=batch_id)


@order_router.post("/sweep", response_model=SweepResponse)
async def sweep_unassigned() -> SweepResponse:
    """Retry assignment for approved orders without a batch."""
    report = current_domain.process(SweepUnassignedOrders(requested_by="api"), asynchronous=False)
    return SweepResponse(assigned=report.assigned, failed=report.failed)


@order_router.post("/fake", status_code=201, response_model=StatusResponse)
async def seed_fake_order(body: SeedOrderRequest) -> StatusResponse:
    """Seed an order into the fake order store (non-production only)."""
    if os.environ.get("PROTEAN_ENV") == "production":
        raise HTTPException(status_code=403, detail="Order seeding not available in production")

    orders = get_services().orders
    if not isinstance(orders, FakeOrderStore):
        raise HTTPException(status_code=400, detail="Order seeding only available for FakeOrderStore")

    orders.add_order(
        body.order_id,
        approval_state=body.approval_state,
        zone=body.zone,
        weight=body.weight,
        address=body.address,
        line_items=[(item.product_id, item.quantity) for item in body.line_items],
    )
    return StatusResponse(status="order_seeded")


# ---------------------------------------------------------------------------
# Batch Router
# ---------------------------------------------------------------------------
batch_router = APIRouter(prefix="/dispatch/batches", tags=["dispatch"])


@batch_router.get("", response_model=list[BatchResponse])
async def list_batches(zone: str | None = None, status: str | None = None) -> list[BatchResponse]:
    statuses = [status] if status else None
    return [_batch_response(b) for b in current_domain.repository_for(Batch).list_batches(zone, statuses)]


@batch_router.get("/{batch_id}", response_model=BatchResponse)
async def get_batch(batch_id: str) -> BatchResponse:
    return _batch_response(current_domain.repository_for(Batch).get(batch_id))


@batch_router.put("/{batch_id}/driver", response_model=DriverResponse)
async def assign_driver(batch_id: str, body: AssignDriverRequest) -> DriverResponse:
    """Bind a driver to a ready batch."""
    driver_id = current_domain.process(
        AssignDriver(batch_id=batch_id, driver_id=body.driver_id),
        asynchronous=False,
    )
    return DriverResponse(batch_id=batch_id, driver_id=driver_id)


@batch_router.put("/{batch_id}/start-delivery", response_model=StatusResponse)
async def start_delivery(batch_id: str) -> StatusResponse:
    current_domain.process(StartDelivery(batch_id=batch_id), asynchronous=False)
    return StatusResponse(status="delivering")


@batch_router.put("/{batch_id}/cancel", response_model=CancelBatchResponse)
async def cancel_batch(batch_id: str, body: CancelBatchRequest) -> CancelBatchResponse:
    """Cancel a pending batch and release its orders."""
    released = current_domain.process(CancelBatch(batch_id=batch_id, reason=body.reason), asynchronous=False)
    return CancelBatchResponse(batch_id=batch_id, released_orders=released)


@batch_router.post("/dispatch-ready", response_model=DispatchedResponse)
async def dispatch_ready_batches() -> DispatchedResponse:
    dispatched = current_domain.process(DispatchReadyBatches(requested_by="api"), asynchronous=False)
    return DispatchedResponse(dispatched=dispatched)


# ---------------------------------------------------------------------------
# Maintenance Router
# ---------------------------------------------------------------------------
maintenance_router = APIRouter(prefix="/dispatch", tags=["dispatch-maintenance"])


@maintenance_router.post("/consolidation", response_model=ConsolidationResponse)
async def run_consolidation() -> ConsolidationResponse:
    """Run the consolidation job on demand."""
    report = current_domain.process(RunConsolidation(requested_by="api"), asynchronous=False)
    data = asdict(report)
    data["merged"] = [list(pair) for pair in report.merged]
    return ConsolidationResponse(**data)


@maintenance_router.post("/zones/reresolve", response_model=ReassignedResponse)
async def reresolve_unknown_zones() -> ReassignedResponse:
    reassigned = current_domain.process(ReresolveUnknownZones(requested_by="api"), asynchronous=False)
    return ReassignedResponse(reassigned=reassigned)


@maintenance_router.get("/audit", response_model=AuditResponse)
async def audit() -> AuditResponse:
    """List every batch invariant currently violated."""
    violations = get_services().consolidation.audit()
    return AuditResponse(
        healthy=not violations,
        violations=[ViolationResponse(**asdict(v)) for v in violations],
    )


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------
async def _dispatch_error(request: Request, exc: DispatchError) -> JSONResponse:
    if exc.retryable:
        return JSONResponse(
            status_code=503,
            content={"error": type(exc).__name__, "detail": str(exc), "retryable": True},
            headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
        )
    return JSONResponse(
        status_code=500,
        content={"error": type(exc).__name__, "detail": str(exc), "retryable": False},
    )


async def _validation_error(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": "ValidationError", "detail": exc.messages})


async def _not_found(request: Request, exc: ObjectNotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"error": "NotFound", "detail": str(exc)})


def register_exception_handlers(app: FastAPI) -> None:
    """Translate domain and engine errors into HTTP responses."""
    app.add_exception_handler(DispatchError, _dispatch_error)
    app.add_exception_handler(ValidationError, _validation_error)
    app.add_exception_handler(ObjectNotFoundError, _not_found)

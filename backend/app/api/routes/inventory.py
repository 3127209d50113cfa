"""
Inventory routes

Receptions from ateliers, the movement ledger and tracking-number checks.
Reception creation answers 201 even when some lines failed: the per-line
results in the body say what was applied.
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response, status

from app.api.deps import (
    StaffUser, get_inventory_staff, get_ledger, get_reception_service,
)
from app.schemas.schemas import (
    ReceptionCreate, ReceptionPaymentUpdate, ReceptionResponse,
    ReceptionOutcomeResponse, ItemStockResult,
    MovementCreate, MovementResponse,
    TrackingValidationResponse, SortieLookupResponse, SortieLineResponse,
)
from app.services.movement_ledger import MovementLedger
from app.services.reception_service import ReceptionService

logger = logging.getLogger(__name__)

router = APIRouter()


# ----- Receptions -----

@router.post("/receptions", response_model=ReceptionOutcomeResponse, status_code=status.HTTP_201_CREATED)
async def create_reception(
    data: ReceptionCreate,
    user: StaffUser = Depends(get_inventory_staff),
    service: ReceptionService = Depends(get_reception_service),
):
    """Record an intake batch and add its quantities to stock"""
    outcome = await service.create(
        atelier_id=data.atelier_id,
        items=[item.model_dump() for item in data.items],
        date=data.date,
        notes=data.notes,
    )
    logger.info(f"Reception {outcome.reception.id} created by user {user.id}")

    return ReceptionOutcomeResponse(
        reception=ReceptionResponse.model_validate(outcome.reception),
        results=[ItemStockResult.model_validate(r) for r in outcome.results],
        applied=len(outcome.applied),
        rejected=len(outcome.rejected),
        skipped=len(outcome.skipped),
        fully_applied=outcome.fully_applied,
    )


@router.get("/receptions", response_model=List[ReceptionResponse])
async def list_receptions(
    user: StaffUser = Depends(get_inventory_staff),
    service: ReceptionService = Depends(get_reception_service),
):
    """Most recent receptions first"""
    return await service.list()


@router.patch("/receptions/{reception_id}", response_model=ReceptionResponse)
async def update_reception(
    reception_id: int,
    data: ReceptionPaymentUpdate,
    user: StaffUser = Depends(get_inventory_staff),
    service: ReceptionService = Depends(get_reception_service),
):
    """Update payment status, amount paid or notes"""
    return await service.update_payment(
        reception_id,
        payment_status=data.payment_status,
        amount_paid=data.amount_paid,
        notes=data.notes,
    )


@router.delete("/receptions/{reception_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_reception(
    reception_id: int,
    user: StaffUser = Depends(get_inventory_staff),
    service: ReceptionService = Depends(get_reception_service),
):
    """Delete a reception. Stock already added is not reverted."""
    await service.delete(reception_id)
    logger.info(f"Reception {reception_id} deleted by user {user.id}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ----- Tracking numbers -----

@router.get("/validate-tracking", response_model=TrackingValidationResponse)
async def validate_tracking(
    tracking_number: str = Query(""),
    operation_type: str = Query(...),
    user: StaffUser = Depends(get_inventory_staff),
    ledger: MovementLedger = Depends(get_ledger),
):
    """Is the tracking number still unused for this operation type?"""
    check = await ledger.validate_tracking(tracking_number, operation_type)
    return TrackingValidationResponse(
        valid=check.valid,
        message=check.message,
        existing_count=check.existing_count,
    )


@router.get("/lookup-sortie-by-tracking", response_model=SortieLookupResponse)
async def lookup_sortie_by_tracking(
    tracking_number: str = Query(...),
    user: StaffUser = Depends(get_inventory_staff),
    ledger: MovementLedger = Depends(get_ledger),
):
    """Lines last shipped out under a tracking number, to prefill a return"""
    movements = await ledger.lookup_sortie(tracking_number)
    return SortieLookupResponse(
        tracking_number=tracking_number.strip(),
        found=bool(movements),
        items=[SortieLineResponse.model_validate(m) for m in movements],
    )


# ----- Movements -----

@router.post("/movements", response_model=MovementResponse, status_code=status.HTTP_201_CREATED)
async def create_movement(
    data: MovementCreate,
    user: StaffUser = Depends(get_inventory_staff),
    ledger: MovementLedger = Depends(get_ledger),
):
    """Append a movement to the ledger. Stock counters are not touched."""
    return await ledger.record(
        product_name=data.product_name,
        quantity=data.quantity,
        movement_type=data.type,
        operation_type=data.operation_type,
        product_reference=data.product_reference,
        size=data.size,
        barcode=data.barcode,
        old_stock=data.old_stock,
        new_stock=data.new_stock,
        order_number=data.order_number,
        tracking_number=data.tracking_number,
        notes=data.notes,
    )


@router.get("/movements", response_model=List[MovementResponse])
async def list_movements(
    movement_type: Optional[str] = Query(None, alias="type"),
    operation_type: Optional[str] = Query(None),
    limit: Optional[int] = Query(None, ge=1),
    user: StaffUser = Depends(get_inventory_staff),
    ledger: MovementLedger = Depends(get_ledger),
):
    """Ledger rows, newest first"""
    return await ledger.list(movement_type=movement_type, operation_type=operation_type, limit=limit)

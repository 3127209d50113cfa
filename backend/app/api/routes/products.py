"""
Product routes - barcode scan adjustments

A scan adds or removes exactly one unit. Barcodes are REFERENCE-SIZE for
sized products and the bare REFERENCE for accessories.
"""
import logging

from fastapi import APIRouter, Depends

from app.api.deps import StaffUser, get_inventory_staff, get_ledger, get_mutator
from app.schemas.schemas import ScanRequest, ScanResponse, ScannedProduct
from app.services.movement_ledger import MovementLedger
from app.services.stock_mutator import StockMutator

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/scan", response_model=ScanResponse)
async def scan_product(
    data: ScanRequest,
    user: StaffUser = Depends(get_inventory_staff),
    mutator: StockMutator = Depends(get_mutator),
    ledger: MovementLedger = Depends(get_ledger),
):
    """Adjust stock by one unit from a scanned barcode"""
    change = await mutator.scan(
        data.barcode,
        data.action,
        ledger=ledger,
        operation_type=data.operation_type,
        tracking_number=data.tracking_number,
        order_number=data.order_number,
        notes=data.notes,
    )
    target = change.target
    label = f"{target.product_name} ({target.size})" if target.size else target.product_name

    if change.delta > 0:
        message = f"Stock added for {label}: {change.old_stock} -> {change.new_stock}"
        message_fr = f"Stock ajouté pour {label} : {change.old_stock} -> {change.new_stock}"
    else:
        message = f"Stock removed for {label}: {change.old_stock} -> {change.new_stock}"
        message_fr = f"Stock retiré pour {label} : {change.old_stock} -> {change.new_stock}"

    logger.info(f"Scan {data.action} {data.barcode} by user {user.id}")

    return ScanResponse(
        success=True,
        product=ScannedProduct(
            name=target.product_name,
            reference=target.reference,
            size=target.size,
            old_stock=change.old_stock,
            new_stock=change.new_stock,
            product_stock=change.product_stock,
            image=target.image_url,
        ),
        message=message,
        message_fr=message_fr,
    )

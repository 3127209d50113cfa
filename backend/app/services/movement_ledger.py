"""
Movement ledger - append-only record of stock-affecting events

Rows are written by the scan workflow, reception intake, order reservation
and the manual movements endpoint. Nothing here updates or deletes a row.

Tracking numbers are unique per operation category, not globally: a parcel
can appear once as a sortie and again as its retour. The check is
read-then-decide, so two concurrent validations for the same pair can both
pass.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import ValidationError
from app.models import StockMovement, MovementType, OperationType
from app.models.stock_movement import DEFAULT_DIRECTION

logger = logging.getLogger(__name__)

OPERATION_LABELS_FR = {
    OperationType.ENTREE: "entrée",
    OperationType.SORTIE: "sortie",
    OperationType.ECHANGE: "échange",
    OperationType.RETOUR: "retour",
}


@dataclass
class TrackingCheck:
    valid: bool
    message: str
    existing_count: int = 0


def _coerce_operation(operation_type) -> Optional[OperationType]:
    if operation_type is None or operation_type == "":
        return None
    try:
        return OperationType(operation_type)
    except ValueError:
        raise ValidationError(
            f"Invalid operation type: {operation_type}",
            code="INVALID_OPERATION_TYPE",
            details={"operation_type": operation_type,
                     "allowed": [o.value for o in OperationType]},
            message_fr=f"Type d'opération invalide : {operation_type}",
        )


def _coerce_direction(movement_type) -> Optional[MovementType]:
    if movement_type is None or movement_type == "":
        return None
    try:
        return MovementType(movement_type)
    except ValueError:
        raise ValidationError(
            f"Invalid movement type: {movement_type}",
            code="INVALID_MOVEMENT_TYPE",
            details={"type": movement_type, "allowed": [m.value for m in MovementType]},
        )


class MovementLedger:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def record(
        self,
        product_name: str,
        quantity: int,
        movement_type=None,
        operation_type=None,
        product_reference: Optional[str] = None,
        size: Optional[str] = None,
        barcode: Optional[str] = None,
        old_stock: Optional[int] = None,
        new_stock: Optional[int] = None,
        order_number: Optional[str] = None,
        tracking_number: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> StockMovement:
        """
        Append one movement row. Flushes, does not commit.

        The direction defaults from the category (entree/retour in, sortie
        out); echange must state it.
        """
        operation = _coerce_operation(operation_type)
        direction = _coerce_direction(movement_type)
        if direction is None:
            direction = DEFAULT_DIRECTION.get(operation)
        if direction is None:
            raise ValidationError(
                "Movement type (in/out) is required for this operation",
                code="MOVEMENT_TYPE_REQUIRED",
                details={"operation_type": operation.value if operation else None},
                message_fr="Le sens du mouvement (in/out) est obligatoire pour cette opération",
            )
        if quantity is None or quantity <= 0:
            raise ValidationError(
                "Quantity must be positive",
                code="INVALID_QUANTITY",
                details={"quantity": quantity},
                message_fr="La quantité doit être positive",
            )

        movement = StockMovement(
            type=direction.value,
            operation_type=operation.value if operation else None,
            product_name=product_name,
            product_reference=product_reference,
            size=size,
            barcode=barcode,
            quantity=quantity,
            old_stock=old_stock,
            new_stock=new_stock,
            order_number=order_number,
            tracking_number=tracking_number.strip() if tracking_number else None,
            notes=notes,
        )
        self.db.add(movement)
        await self.db.flush()
        logger.debug(f"Recorded movement {movement.id}: {direction.value} {quantity} {product_reference}")
        return movement

    async def list(
        self,
        movement_type=None,
        operation_type=None,
        limit: Optional[int] = None,
    ) -> List[StockMovement]:
        """Newest first. The limit is clamped to MOVEMENTS_MAX_LIMIT."""
        if limit is None or limit <= 0:
            limit = settings.MOVEMENTS_DEFAULT_LIMIT
        limit = min(limit, settings.MOVEMENTS_MAX_LIMIT)

        query = select(StockMovement)
        direction = _coerce_direction(movement_type)
        if direction is not None:
            query = query.where(StockMovement.type == direction.value)
        operation = _coerce_operation(operation_type)
        if operation is not None:
            query = query.where(StockMovement.operation_type == operation.value)

        query = query.order_by(StockMovement.created_at.desc(), StockMovement.id.desc()).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def validate_tracking(self, tracking_number: Optional[str], operation_type) -> TrackingCheck:
        """Is this tracking number still free within this category?"""
        tracking = (tracking_number or "").strip()
        if not tracking:
            return TrackingCheck(valid=False, message="Numéro de suivi requis")

        operation = _coerce_operation(operation_type)
        if operation is None:
            raise ValidationError(
                "Operation type is required",
                code="OPERATION_TYPE_REQUIRED",
                message_fr="Type d'opération requis",
            )

        existing = await self.db.scalar(
            select(func.count(StockMovement.id)).where(
                StockMovement.tracking_number == tracking,
                StockMovement.operation_type == operation.value,
            )
        )
        label = OPERATION_LABELS_FR[operation]
        if existing:
            return TrackingCheck(
                valid=False,
                message=f"Ce numéro de suivi a déjà été utilisé pour une opération de type « {label} »",
                existing_count=existing,
            )
        return TrackingCheck(
            valid=True,
            message=f"Numéro de suivi disponible pour « {label} »",
        )

    async def lookup_sortie(self, tracking_number: str, limit: Optional[int] = None) -> List[StockMovement]:
        """Line items most recently shipped out under this tracking number."""
        tracking = (tracking_number or "").strip()
        if not tracking:
            raise ValidationError(
                "Tracking number is required",
                code="TRACKING_REQUIRED",
                message_fr="Numéro de suivi requis",
            )
        result = await self.db.execute(
            select(StockMovement)
            .where(
                StockMovement.tracking_number == tracking,
                StockMovement.operation_type == OperationType.SORTIE.value,
            )
            .order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
            .limit(limit or settings.SORTIE_LOOKUP_LIMIT)
        )
        return list(result.scalars().all())
